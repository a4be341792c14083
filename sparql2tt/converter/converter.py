from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple, Union

from rdflib import Literal
from rdflib.term import Variable

from .errors import (
    AmbiguousSubjectError,
    CrossTableUnsupportedError,
    UnresolvedEntityLabelError,
    UnsupportedConstructError,
)
from .resolver import closest, keyword_spans
from .schema import FieldType, WikidataSchema
from .sparql import (
    BasicPattern,
    Clause,
    FilterPattern,
    Query,
    Triple,
    UnionPattern,
    entity_id,
    parse_query,
    property_id,
    simplify_predicate,
    special_union,
)
from .thingtalk import (
    ENTITY_TYPE,
    AggregateCondition,
    AggregationQuery,
    AtomCondition,
    BooleanCondition,
    BooleanQuestionQuery,
    EntityValue,
    FilterQuery,
    IndexQuery,
    NumberValue,
    OrCondition,
    Program,
    ProjectionQuery,
    SortQuery,
    StringValue,
    TableExpression,
    Value,
    and_all,
    base_query,
    make_program,
)
from .wikidata import INSTANCE_OF, KnowledgeBase

logger = logging.getLogger(__name__)

DEFAULT_TABLE = "entity"

HAVING_OPERATORS = {">": ">=", ">=": ">=", "<": "<=", "<=": "<=", "=": "=="}


@dataclass
class Projection:
    variable: str
    field: str


@dataclass
class Table:
    """Everything known about one subject of the query."""

    subject: str
    name: str = DEFAULT_TABLE
    projections: List[Projection] = field(default_factory=list)
    filters: List[BooleanCondition] = field(default_factory=list)
    verifications: List[BooleanCondition] = field(default_factory=list)
    typed: bool = False

    @property
    def variable(self) -> Optional[str]:
        return self.subject[1:] if self.subject.startswith("?") else None

    def set_name(self, name: str) -> None:
        if self.typed and self.name != name:
            raise UnsupportedConstructError(f"conflicting domains for {self.subject}: {self.name}, {name}")
        self.name = name
        self.typed = True

    def add_filter(self, condition: BooleanCondition) -> None:
        if condition not in self.filters:
            self.filters.append(condition)

    def add_projection(self, projection: Projection) -> None:
        if self.verifications:
            raise UnsupportedConstructError(f"projection on verified subject {self.subject}", projection)
        self.projections.append(projection)

    def add_verification(self, condition: BooleanCondition) -> None:
        if self.projections:
            raise UnsupportedConstructError(f"verification on projected subject {self.subject}", condition)
        self.verifications.append(condition)

    def field_for(self, variable: str) -> Optional[str]:
        for projection in self.projections:
            if projection.variable == variable:
                return projection.field
        return None


@dataclass
class ConversionContext:
    spans: List[str]
    is_question: bool = False
    tables: Dict[str, Table] = field(default_factory=dict)

    def owner_of(self, variable: str) -> Optional[Tuple[Table, str]]:
        for table in self.tables.values():
            name = table.field_for(variable)
            if name is not None:
                return table, name
        return None


@dataclass(frozen=True)
class Atom:
    subject: str
    condition: BooleanCondition
    verification: bool = False


class QueryParser:
    """Folds WHERE and HAVING clauses into the per-subject tables."""

    def __init__(self, converter: "SPARQLToThingTalkConverter") -> None:
        self._converter = converter

    def parse(self, ctx: ConversionContext, query: Query) -> None:
        for clause in query.where:
            self._parse_where_clause(ctx, clause)
        if query.group or query.having:
            self._parse_having(ctx, query)

    def _parse_where_clause(self, ctx: ConversionContext, clause: Clause) -> None:
        if isinstance(clause, BasicPattern):
            self._parse_basic(ctx, clause)
        elif isinstance(clause, UnionPattern):
            self._parse_union(ctx, clause)
        elif isinstance(clause, FilterPattern):
            raise UnsupportedConstructError("filters not supported", clause.expression)
        else:
            raise UnsupportedConstructError("unsupported where clause", clause)

    def _attach(self, ctx: ConversionContext, atom: Atom) -> None:
        table = self._converter.table(ctx, atom.subject)
        if atom.verification:
            table.add_verification(atom.condition)
        else:
            table.add_filter(atom.condition)

    def _parse_basic(self, ctx: ConversionContext, pattern: BasicPattern) -> None:
        for atom in self._converter.convert_triples(ctx, pattern.triples):
            self._attach(ctx, atom)

    def _parse_union(self, ctx: ConversionContext, union: UnionPattern) -> None:
        triple = special_union(union)
        if triple is not None:
            self._parse_basic(ctx, BasicPattern([triple]))
            return
        if len(union.patterns) != 2 or not all(isinstance(p, BasicPattern) for p in union.patterns):
            raise UnsupportedConstructError("only unions of two basic patterns are supported", union)

        subject: Optional[str] = None
        verification = False
        operands: List[BooleanCondition] = []
        for branch in union.patterns:
            atoms = self._converter.convert_triples(ctx, branch.triples)
            if not atoms:
                raise UnsupportedConstructError("union branch without a filter", branch)
            for atom in atoms:
                if subject is None:
                    subject = atom.subject
                elif atom.subject != subject:
                    raise AmbiguousSubjectError(f"union over subjects {subject} and {atom.subject}")
                verification = verification or atom.verification
            operands.append(and_all(atom.condition for atom in atoms))

        self._attach(ctx, Atom(subject, OrCondition(tuple(operands)), verification))

    def _parse_having(self, ctx: ConversionContext, query: Query) -> None:
        if len(query.group) > 1:
            raise UnsupportedConstructError("group by with multiple fields", query.group)
        for condition in query.having:
            if not condition.is_simple or condition.function != "count":
                raise UnsupportedConstructError("unsupported having clause", condition.expression)
            operator = HAVING_OPERATORS.get(condition.operator)
            if operator is None:
                raise UnsupportedConstructError("unsupported having operator", condition.operator)
            owner = ctx.owner_of(condition.variable)
            if owner is None:
                raise UnsupportedConstructError("having over an unknown variable", condition.variable)
            table, field_name = owner
            table.add_filter(AggregateCondition("count", field_name, operator, condition.threshold))


class QueryGenerator:
    """Turns the folded tables into a single ThingTalk expression."""

    def generate(self, ctx: ConversionContext, query: Query) -> Program:
        if query.is_question:
            expression = self._generate_ask(ctx)
        else:
            expression = self._generate_select(ctx, query)
        return make_program(expression)

    @staticmethod
    def _single(tables: List[Table]) -> Table:
        if len(tables) > 1:
            names = ", ".join(t.subject for t in tables)
            raise CrossTableUnsupportedError(f"output spans multiple tables: {names}")
        if not tables:
            raise UnsupportedConstructError("no table to output")
        return tables[0]

    def _generate_ask(self, ctx: ConversionContext) -> TableExpression:
        table = self._single(list(ctx.tables.values()))
        if not table.verifications:
            raise UnsupportedConstructError(f"nothing to verify on {table.subject}")
        return BooleanQuestionQuery(base_query(table.name), and_all(table.filters + table.verifications))

    @staticmethod
    def _selected_variables(query: Query) -> List[str]:
        aliases = {aggregate.alias for aggregate in query.aggregates}
        selected = [v for v in query.variables if v not in aliases]
        for aggregate in query.aggregates:
            if aggregate.variable and aggregate.variable not in selected:
                selected.append(aggregate.variable)
        return selected

    def _generate_select(self, ctx: ConversionContext, query: Query) -> TableExpression:
        if len(query.aggregates) > 1:
            raise UnsupportedConstructError("multiple aggregates", [a.alias for a in query.aggregates])
        if query.aggregates and query.group:
            raise UnsupportedConstructError("aggregate over grouped results", query.group)

        selected = self._selected_variables(query)
        outputs: List[Tuple[Table, List[str]]] = []
        for table in ctx.tables.values():
            fields = ["id"] if table.variable in selected else []
            fields.extend(p.field for p in table.projections if p.variable in selected and p.field not in fields)
            if fields:
                outputs.append((table, fields))
        table = self._single([t for t, _ in outputs])
        fields = next(f for t, f in outputs if t is table)

        aggregate = query.aggregates[0] if query.aggregates else None
        aggregate_field = None
        if aggregate is not None and aggregate.variable and aggregate.variable != table.variable:
            aggregate_field = table.field_for(aggregate.variable)

        expression: TableExpression = base_query(table.name)
        if table.filters:
            expression = FilterQuery(expression, and_all(table.filters))
        if fields != ["id"] and aggregate_field is None:
            expression = ProjectionQuery(expression, tuple(fields))
        expression = self._add_ordering(expression, table, query)
        if aggregate is not None:
            expression = AggregationQuery(expression, aggregate.function, aggregate_field)
        if query.limit is not None:
            expression = IndexQuery(expression, query.limit)
        return expression

    @staticmethod
    def _add_ordering(expression: TableExpression, table: Table, query: Query) -> TableExpression:
        if not query.order:
            return expression
        if len(query.order) > 1:
            raise UnsupportedConstructError("ordering by multiple variables", query.order)
        order = query.order[0]
        field_name = table.field_for(order.variable) if order.variable else None
        if field_name is None:
            raise UnsupportedConstructError("ordering by an unprojected expression", order)
        return SortQuery(expression, field_name, order.direction)


class SPARQLToThingTalkConverter:
    """
    Convert a SPARQL query over Wikidata into a ThingTalk program.

    Each distinct subject of the query becomes a table; triples fold into
    filters and projections on their subject's table, and the single table
    the query asks about is rendered as the program. Entity values are
    labelled with the utterance span closest to their Wikidata label.
    """

    def __init__(
        self,
        schema: WikidataSchema,
        kb: KnowledgeBase,
        *,
        similarity_mode: str = "f1",
    ) -> None:
        self.schema = schema
        self.kb = kb
        self.similarity_mode = similarity_mode
        self._parser = QueryParser(self)
        self._generator = QueryGenerator()

    def fold(self, query: Query, keywords: Union[str, Iterable[str]]) -> ConversionContext:
        """Fold the clauses of a parsed query into a fresh set of tables."""
        if isinstance(keywords, str):
            keywords = [keywords]
        ctx = ConversionContext(spans=keyword_spans(keywords), is_question=query.is_question)
        self._parser.parse(ctx, query)
        return ctx

    def convert(self, sparql: str, keywords: Union[str, Iterable[str]]) -> Program:
        query = parse_query(sparql)
        ctx = self.fold(query, keywords)
        program = self._generator.generate(ctx, query)
        logger.debug("converted %s -> %s", " ".join(sparql.split()), program.render())
        return program

    # -- tables ----------------------------------------------------------

    def table(self, ctx: ConversionContext, subject: str) -> Table:
        table = ctx.tables.get(subject)
        if table is None:
            table = Table(subject=subject)
            if not subject.startswith("?"):
                domain = self.kb.get_domain(subject)
                if domain and self.schema.has_table(domain):
                    table.name = self.schema.table_name_for(domain)
            ctx.tables[subject] = table
        return table

    # -- values ----------------------------------------------------------

    def display(self, ctx: ConversionContext, entity: str) -> str:
        label = self.kb.get_label(entity)
        if label is None:
            raise UnresolvedEntityLabelError(entity)
        display = closest(label, ctx.spans, self.similarity_mode)
        if display is None:
            for alt_label in self.kb.get_alt_labels(entity):
                display = closest(alt_label, ctx.spans, self.similarity_mode)
                if display is not None:
                    break
        return display or label

    def value(self, ctx: ConversionContext, field_type: FieldType, term) -> Value:
        if field_type.is_entity:
            entity = entity_id(term)
            if entity is None:
                raise UnsupportedConstructError(f"expected an entity for {field_type.describe()}", term)
            return EntityValue(entity, field_type.entity_type, self.display(ctx, entity))
        if not isinstance(term, Literal):
            raise UnsupportedConstructError(f"expected a literal for {field_type.describe()}", term)
        python_value = term.toPython()
        if field_type.kind == "Number" and isinstance(python_value, (int, float)) and not isinstance(python_value, bool):
            return NumberValue(python_value)
        return StringValue(str(term))

    def atom(self, ctx: ConversionContext, pid: str, term, operator: Optional[str] = None) -> AtomCondition:
        field_name = self.schema.field_name_for(pid)
        field_type = self.schema.field_type_for(pid)
        if field_name is None or field_type is None:
            raise UnsupportedConstructError(f"unknown property {pid}")
        if operator is None:
            operator = "contains" if field_type.is_array else "=="
        return AtomCondition(field_name, operator, self.value(ctx, field_type, term))

    # -- triples ---------------------------------------------------------

    def convert_triples(self, ctx: ConversionContext, triples: Iterable[Triple]) -> List[Atom]:
        atoms: List[Atom] = []
        for triple in triples:
            atoms.extend(self._convert_triple(ctx, triple))
        return atoms

    def _subject_key(self, term) -> str:
        if isinstance(term, Variable):
            return f"?{term}"
        entity = entity_id(term)
        if entity is None:
            raise UnsupportedConstructError("unsupported subject", term)
        return entity

    def _convert_triple(self, ctx: ConversionContext, triple: Triple) -> List[Atom]:
        subject = self._subject_key(triple.subject)
        pid = property_id(simplify_predicate(triple.predicate))
        if pid is None:
            raise UnsupportedConstructError("unsupported predicate", triple.predicate)
        table = self.table(ctx, subject)
        concrete_subject = not isinstance(triple.subject, Variable)
        concrete_object = not isinstance(triple.object, Variable)
        atoms: List[Atom] = []

        if concrete_subject:
            identity = AtomCondition("id", "==", EntityValue(subject, ENTITY_TYPE, self.display(ctx, subject)))
            table.add_filter(identity)

        if not concrete_subject and concrete_object:
            if pid == INSTANCE_OF:
                domain = entity_id(triple.object)
                name = self.schema.table_name_for(domain) if domain else None
                if name is None:
                    raise UnsupportedConstructError(f"unknown domain {domain}", triple.object)
                table.set_name(name)
            else:
                atoms.append(Atom(subject, self.atom(ctx, pid, triple.object)))

        if not concrete_object:
            field_name = self.schema.field_name_for(pid)
            if field_name is None:
                raise UnsupportedConstructError(f"unknown property {pid}")
            table.add_projection(Projection(str(triple.object), field_name))

        if concrete_subject and concrete_object:
            atoms.append(Atom(subject, self.atom(ctx, pid, triple.object), verification=ctx.is_question))

        return atoms


__all__ = [
    "DEFAULT_TABLE",
    "Projection",
    "Table",
    "ConversionContext",
    "QueryParser",
    "QueryGenerator",
    "SPARQLToThingTalkConverter",
]

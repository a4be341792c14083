"""
SPARQL parsing on top of rdflib.

rdflib's algebra is unwrapped into a flat clause tree: the WHERE part becomes
an ordered list of basic patterns, unions and filters; the solution modifiers
(projection, aggregates, GROUP BY, HAVING, ORDER BY, LIMIT) become plain
fields of :class:`Query`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from rdflib import Literal, URIRef
from rdflib.paths import MulPath, Path, SequencePath
from rdflib.plugins.sparql import algebra, parser
from rdflib.plugins.sparql.parserutils import CompValue
from rdflib.term import Variable

from .errors import UnsupportedConstructError
from .wikidata import ENTITY_PREFIX, PROPERTY_PREFIX

DEFAULT_PREFIXES: Dict[str, str] = {
    "wd": ENTITY_PREFIX,
    "wdt": PROPERTY_PREFIX,
    "p": "http://www.wikidata.org/prop/",
    "ps": "http://www.wikidata.org/prop/statement/",
    "pq": "http://www.wikidata.org/prop/qualifier/",
    "wikibase": "http://wikiba.se/ontology#",
    "rdfs": "http://www.w3.org/2000/01/rdf-schema#",
}

AGGREGATE_FUNCTIONS = {
    "Aggregate_Count": "count",
    "Aggregate_Sum": "sum",
    "Aggregate_Avg": "avg",
    "Aggregate_Min": "min",
    "Aggregate_Max": "max",
}

Term = Union[Variable, URIRef, Literal]
Predicate = Union[URIRef, Path, Variable]


@dataclass(frozen=True)
class Triple:
    subject: Term
    predicate: Predicate
    object: Term


@dataclass
class BasicPattern:
    triples: List[Triple]


@dataclass
class UnionPattern:
    patterns: List[Any]


@dataclass
class FilterPattern:
    expression: Any


Clause = Union[BasicPattern, UnionPattern, FilterPattern]


@dataclass
class ProjectionAggregate:
    function: str
    variable: Optional[str]
    alias: str
    distinct: bool = False


@dataclass
class HavingCondition:
    """``function(?variable) operator threshold``; fields are None for other shapes."""

    expression: Any
    function: Optional[str] = None
    variable: Optional[str] = None
    operator: Optional[str] = None
    threshold: Optional[Union[int, float]] = None

    @property
    def is_simple(self) -> bool:
        return None not in (self.function, self.variable, self.operator, self.threshold)


@dataclass
class OrderCondition:
    variable: Optional[str]
    direction: str = "asc"


@dataclass
class Query:
    kind: str
    variables: List[str] = field(default_factory=list)
    aggregates: List[ProjectionAggregate] = field(default_factory=list)
    where: List[Clause] = field(default_factory=list)
    group: List[str] = field(default_factory=list)
    having: List[HavingCondition] = field(default_factory=list)
    order: List[OrderCondition] = field(default_factory=list)
    limit: Optional[int] = None
    distinct: bool = False

    @property
    def is_question(self) -> bool:
        return self.kind == "ask"


# -- term helpers ------------------------------------------------------------


def entity_id(term: Any) -> Optional[str]:
    if isinstance(term, URIRef) and str(term).startswith(ENTITY_PREFIX):
        return str(term)[len(ENTITY_PREFIX):]
    return None


def property_id(term: Any) -> Optional[str]:
    if isinstance(term, URIRef) and str(term).startswith(PROPERTY_PREFIX):
        return str(term)[len(PROPERTY_PREFIX):]
    return None


def _is_property(term: Any, pid: str) -> bool:
    return property_id(term) == pid


def simplify_predicate(predicate: Predicate) -> Predicate:
    """Drop path suffixes that do not change how the question reads."""
    if isinstance(predicate, SequencePath):
        args = predicate.args
        if (
            len(args) == 2
            and _is_property(args[0], "P31")
            and isinstance(args[1], MulPath)
            and args[1].mod == "*"
            and _is_property(args[1].path, "P279")
        ):
            return args[0]
        return SequencePath(*(simplify_predicate(arg) for arg in args))
    if isinstance(predicate, MulPath) and predicate.mod == "+" and _is_property(predicate.path, "P131"):
        return predicate.path
    return predicate


def special_union(union: UnionPattern) -> Optional[Triple]:
    """
    Collapse unions that only widen a single triple:

    ``{ ?s P ?o } UNION { ?s P/wdt:P17 ?o }`` and
    ``{ ?s P ?o } UNION { ?s P/wdt:P279* ?o }`` both read as ``?s P ?o``.
    """
    if len(union.patterns) != 2:
        return None
    first_branch, second_branch = union.patterns
    if not isinstance(first_branch, BasicPattern) or not isinstance(second_branch, BasicPattern):
        return None
    if len(first_branch.triples) != 1 or len(second_branch.triples) != 1:
        return None
    first = first_branch.triples[0]
    second = second_branch.triples[0]
    if first.subject != second.subject or first.object != second.object:
        return None
    if not isinstance(first.predicate, URIRef) or not isinstance(second.predicate, SequencePath):
        return None
    args = second.predicate.args
    if len(args) != 2 or args[0] != first.predicate:
        return None
    if _is_property(args[1], "P17"):
        return first
    if isinstance(args[1], MulPath) and args[1].mod == "*" and _is_property(args[1].path, "P279"):
        return first
    return None


# -- algebra adapter ---------------------------------------------------------


def _name(node: Any) -> Optional[str]:
    return node.name if isinstance(node, CompValue) else None


def _where_clauses(node: CompValue) -> List[Clause]:
    name = _name(node)
    if name == "BGP":
        return [BasicPattern([Triple(s, p, o) for s, p, o in node.triples])] if node.triples else []
    if name == "Join":
        return _where_clauses(node.p1) + _where_clauses(node.p2)
    if name == "Union":
        return [UnionPattern(_union_branches(node))]
    if name == "Filter":
        return _where_clauses(node.p) + [FilterPattern(node.expr)]
    raise UnsupportedConstructError("unsupported graph pattern", name or node)


def _union_branches(node: CompValue) -> List[Any]:
    branches: List[Any] = []
    for side in (node.p1, node.p2):
        if _name(side) == "Union":
            branches.extend(_union_branches(side))
            continue
        clauses = _where_clauses(side)
        branches.append(clauses[0] if len(clauses) == 1 else clauses)
    return branches


def _number(term: Any) -> Optional[Union[int, float]]:
    if not isinstance(term, Literal):
        return None
    value = term.toPython()
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value


def _having(expr: Any, aggregates: Mapping[str, CompValue]) -> List[HavingCondition]:
    name = _name(expr)
    if name == "ConditionalAndExpression":
        conditions = _having(expr.expr, aggregates)
        for other in expr.other or []:
            conditions.extend(_having(other, aggregates))
        return conditions
    condition = HavingCondition(expression=expr)
    if name != "RelationalExpression" or not isinstance(expr.expr, Variable):
        return [condition]
    aggregate = aggregates.get(str(expr.expr))
    if aggregate is None or aggregate.name not in AGGREGATE_FUNCTIONS:
        return [condition]
    if not isinstance(aggregate.vars, Variable):
        return [condition]
    condition.function = AGGREGATE_FUNCTIONS[aggregate.name]
    condition.variable = str(aggregate.vars)
    condition.operator = str(expr.op)
    condition.threshold = _number(expr.other)
    return [condition]


def _reaches_aggregate_join(node: Any) -> bool:
    while _name(node) == "Extend":
        node = node.p
    return _name(node) == "AggregateJoin"


def _fold(root: CompValue, kind: str) -> Query:
    query = Query(kind=kind)
    query.variables = [str(v) for v in root.PV or []]

    node = root.p
    extends: List[Tuple[str, Any]] = []
    having_expr = None
    aggregates: Dict[str, CompValue] = {}

    while True:
        name = _name(node)
        if name == "Slice":
            if node.start:
                raise UnsupportedConstructError("offset not supported", node.start)
            query.limit = int(node.length) if node.length is not None else None
        elif name in ("Distinct", "Reduced"):
            query.distinct = True
        elif name == "Project":
            pass
        elif name == "OrderBy":
            for cond in node.expr:
                if _name(cond) == "OrderCondition":
                    expr, order = cond.expr, cond.order
                else:
                    expr, order = cond, None
                variable = str(expr) if isinstance(expr, Variable) else None
                direction = "desc" if order == "DESC" else "asc"
                query.order.append(OrderCondition(variable, direction))
        elif name == "Extend":
            extends.append((str(node.var), node.expr))
        elif name == "Filter" and _reaches_aggregate_join(node.p):
            having_expr = node.expr
        elif name == "AggregateJoin":
            for aggregate in node.A:
                aggregates[str(aggregate.res)] = aggregate
        elif name == "Group":
            query.group = [str(v) for v in node.expr or []]
        else:
            break
        node = node.p

    query.where = _where_clauses(node)

    for alias, expr in reversed(extends):
        if not isinstance(expr, Variable):
            raise UnsupportedConstructError("unsupported projected expression", expr)
        aggregate = aggregates.get(str(expr))
        if aggregate is None:
            raise UnsupportedConstructError("unsupported projected expression", expr)
        if aggregate.name == "Aggregate_Sample":
            continue
        if aggregate.name not in AGGREGATE_FUNCTIONS:
            raise UnsupportedConstructError("unsupported aggregate", aggregate.name)
        variable = str(aggregate.vars) if isinstance(aggregate.vars, Variable) else None
        query.aggregates.append(
            ProjectionAggregate(
                function=AGGREGATE_FUNCTIONS[aggregate.name],
                variable=variable,
                alias=alias,
                distinct=bool(aggregate.distinct),
            )
        )

    if having_expr is not None:
        query.having = _having(having_expr, aggregates)
    return query


def parse_query(text: str, prefixes: Optional[Mapping[str, str]] = None) -> Query:
    """Parse a SELECT or ASK query; rdflib's parse errors propagate unchanged."""
    tree = parser.parseQuery(text)
    kind = tree[1].name
    if kind == "SelectQuery" and not tree[1].projection:
        raise UnsupportedConstructError("SELECT * is not supported")
    if kind not in ("SelectQuery", "AskQuery"):
        raise UnsupportedConstructError("unsupported query form", kind)
    namespaces = dict(DEFAULT_PREFIXES if prefixes is None else prefixes)
    translated = algebra.translateQuery(tree, initNs=namespaces)
    return _fold(translated.algebra, "select" if kind == "SelectQuery" else "ask")


__all__ = [
    "DEFAULT_PREFIXES",
    "Triple",
    "BasicPattern",
    "UnionPattern",
    "FilterPattern",
    "Clause",
    "ProjectionAggregate",
    "HavingCondition",
    "OrderCondition",
    "Query",
    "entity_id",
    "property_id",
    "simplify_predicate",
    "special_union",
    "parse_query",
]

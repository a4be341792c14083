from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, Tuple, Union

WIKIDATA_CLASS = "org.wikidata"
ENTITY_TYPE = f"{WIKIDATA_CLASS}:entity"


@dataclass(frozen=True)
class EntityValue:
    code: str
    type: str
    display: str


@dataclass(frozen=True)
class StringValue:
    text: str


@dataclass(frozen=True)
class NumberValue:
    number: Union[int, float]


Value = Union[EntityValue, StringValue, NumberValue]


@dataclass(frozen=True)
class AtomCondition:
    field: str
    operator: str
    value: Value


@dataclass(frozen=True)
class AndCondition:
    operands: Tuple["BooleanCondition", ...]


@dataclass(frozen=True)
class OrCondition:
    operands: Tuple["BooleanCondition", ...]


@dataclass(frozen=True)
class AggregateCondition:
    function: str
    field: str
    operator: str
    threshold: Union[int, float]


BooleanCondition = Union[AtomCondition, AndCondition, OrCondition, AggregateCondition]


@dataclass(frozen=True)
class InvocationQuery:
    domain: str
    class_name: str = WIKIDATA_CLASS


@dataclass(frozen=True)
class FilterQuery:
    expression: "TableExpression"
    condition: BooleanCondition


@dataclass(frozen=True)
class ProjectionQuery:
    expression: "TableExpression"
    fields: Tuple[str, ...]


@dataclass(frozen=True)
class AggregationQuery:
    expression: "TableExpression"
    function: str
    field: Optional[str] = None


@dataclass(frozen=True)
class BooleanQuestionQuery:
    expression: "TableExpression"
    condition: BooleanCondition


@dataclass(frozen=True)
class SortQuery:
    expression: "TableExpression"
    field: str
    direction: str = "asc"


@dataclass(frozen=True)
class IndexQuery:
    expression: "TableExpression"
    limit: int


TableExpression = Union[
    InvocationQuery,
    FilterQuery,
    ProjectionQuery,
    AggregationQuery,
    BooleanQuestionQuery,
    SortQuery,
    IndexQuery,
]


def and_all(conditions: Iterable[BooleanCondition]) -> BooleanCondition:
    """Collapse a conjunction; a single condition is returned as is."""
    operands = tuple(conditions)
    if not operands:
        raise ValueError("empty conjunction")
    if len(operands) == 1:
        return operands[0]
    return AndCondition(operands)


def base_query(domain: str) -> InvocationQuery:
    return InvocationQuery(domain=domain)


def _quote(text: str) -> str:
    return '"' + text.replace("\\", "\\\\").replace('"', '\\"') + '"'


def _format_number(number: Union[int, float]) -> str:
    if isinstance(number, float) and number.is_integer():
        return str(int(number))
    return str(number)


def render_value(value: Value) -> str:
    if isinstance(value, EntityValue):
        return f"{_quote(value.code)}^^{value.type}({_quote(value.display)})"
    if isinstance(value, StringValue):
        return _quote(value.text)
    if isinstance(value, NumberValue):
        return _format_number(value.number)
    raise TypeError(f"not a ThingTalk value: {value!r}")


def render_condition(condition: BooleanCondition) -> str:
    def _operand(op: BooleanCondition) -> str:
        text = render_condition(op)
        return f"({text})" if isinstance(op, (AndCondition, OrCondition)) else text

    if isinstance(condition, AtomCondition):
        value = render_value(condition.value)
        if condition.operator == "contains":
            return f"contains({condition.field}, {value})"
        return f"{condition.field} {condition.operator} {value}"
    if isinstance(condition, AndCondition):
        return " && ".join(_operand(op) for op in condition.operands)
    if isinstance(condition, OrCondition):
        return " || ".join(_operand(op) for op in condition.operands)
    if isinstance(condition, AggregateCondition):
        return (
            f"{condition.function}({condition.field}) {condition.operator} "
            f"{_format_number(condition.threshold)}"
        )
    raise TypeError(f"not a boolean condition: {condition!r}")


def render_expression(expression: TableExpression) -> str:
    def _inner(expr: TableExpression) -> str:
        text = render_expression(expr)
        # function-call shaped expressions never need parentheses
        if isinstance(expr, (InvocationQuery, AggregationQuery, SortQuery)):
            return text
        return f"({text})"

    if isinstance(expression, InvocationQuery):
        return f"@{expression.class_name}.{expression.domain}()"
    if isinstance(expression, FilterQuery):
        return f"{_inner(expression.expression)} filter {render_condition(expression.condition)}"
    if isinstance(expression, ProjectionQuery):
        return f"[{', '.join(expression.fields)}] of {_inner(expression.expression)}"
    if isinstance(expression, AggregationQuery):
        if expression.field:
            return f"{expression.function}({expression.field} of {_inner(expression.expression)})"
        return f"{expression.function}({render_expression(expression.expression)})"
    if isinstance(expression, BooleanQuestionQuery):
        return f"[{render_condition(expression.condition)}] of {_inner(expression.expression)}"
    if isinstance(expression, SortQuery):
        return f"sort({expression.field} {expression.direction} of {_inner(expression.expression)})"
    if isinstance(expression, IndexQuery):
        return f"{_inner(expression.expression)}[1:{expression.limit}]"
    raise TypeError(f"not a table expression: {expression!r}")


@dataclass(frozen=True)
class Program:
    statement: TableExpression

    def render(self) -> str:
        return render_expression(self.statement) + ";"

    def __str__(self) -> str:
        return self.render()


def make_program(expression: TableExpression) -> Program:
    return Program(statement=expression)


__all__ = [
    "WIKIDATA_CLASS",
    "ENTITY_TYPE",
    "EntityValue",
    "StringValue",
    "NumberValue",
    "Value",
    "AtomCondition",
    "AndCondition",
    "OrCondition",
    "AggregateCondition",
    "BooleanCondition",
    "InvocationQuery",
    "FilterQuery",
    "ProjectionQuery",
    "AggregationQuery",
    "BooleanQuestionQuery",
    "SortQuery",
    "IndexQuery",
    "TableExpression",
    "Program",
    "and_all",
    "base_query",
    "make_program",
    "render_value",
    "render_condition",
    "render_expression",
]

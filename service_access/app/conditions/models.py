"""
Condition data models for the Access Service.

A condition is an immutable tree: ``Scalar`` leaves compare one credential
claim against an expected value, ``AllOf``/``AnyOf`` combine children, and
``Literal`` is the shorthand "the request's claim equals this string".
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Tuple, Union


class ConditionOperator(str, Enum):
    """Scalar comparison operators."""
    EQUALS = "equals"
    GREATER_OR_EQUAL = ">="
    GREATER_THAN = ">"
    LESS_OR_EQUAL = "<="
    LESS_THAN = "<"
    CONTAINS = "contains"
    STARTS_WITH = "startsWith"
    ENDS_WITH = "endsWith"

    @property
    def is_numeric(self) -> bool:
        return self in NUMERIC_OPERATORS


NUMERIC_OPERATORS = frozenset({
    ConditionOperator.GREATER_OR_EQUAL,
    ConditionOperator.GREATER_THAN,
    ConditionOperator.LESS_OR_EQUAL,
    ConditionOperator.LESS_THAN,
})

# Spellings accepted from callers in addition to the canonical values
OPERATOR_ALIASES = {
    "==": ConditionOperator.EQUALS,
    "===": ConditionOperator.EQUALS,
    "eq": ConditionOperator.EQUALS,
    "includes": ConditionOperator.CONTAINS,
    "starts_with": ConditionOperator.STARTS_WITH,
    "ends_with": ConditionOperator.ENDS_WITH,
}


@dataclass(frozen=True)
class Scalar:
    """Compare one claim against an expected value."""
    op: ConditionOperator
    value: Any
    claim: Optional[str] = None


@dataclass(frozen=True)
class AllOf:
    """Logical AND over children."""
    children: Tuple["ConditionNode", ...]


@dataclass(frozen=True)
class AnyOf:
    """Logical OR over children."""
    children: Tuple["ConditionNode", ...]


@dataclass(frozen=True)
class Literal:
    """The fallback claim must equal ``value``."""
    value: str


ConditionNode = Union[Scalar, AllOf, AnyOf, Literal]


def primary_claim(node: ConditionNode) -> Optional[str]:
    """Return the first claim named in the tree, depth-first."""
    if isinstance(node, Scalar):
        return node.claim
    if isinstance(node, (AllOf, AnyOf)):
        for child in node.children:
            found = primary_claim(child)
            if found:
                return found
    return None


def _render_value(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return ",".join(_render_value(item) for item in value)
    return str(value)


def describe_condition(node: Optional[ConditionNode]) -> str:
    """Render a condition tree for audit display."""
    if node is None:
        return "no condition provided"
    if isinstance(node, Literal):
        return node.value
    if isinstance(node, AllOf):
        return "ALL[" + " & ".join(describe_condition(child) for child in node.children) + "]"
    if isinstance(node, AnyOf):
        return "ANY[" + " | ".join(describe_condition(child) for child in node.children) + "]"

    claim = f"{node.claim} " if node.claim else ""
    return f"{claim}{node.op.value} {_render_value(node.value)}"

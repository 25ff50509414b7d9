"""
Conversion between caller/storage condition shapes and ``ConditionNode``.

Accepted input shapes:

- ``"yes"`` -- a bare string, read as ``Literal``
- ``{"claim": "age", "op": ">=", "value": 21}`` -- a scalar comparison;
  ``operator`` and ``expected`` are accepted as aliases and a missing
  or null operator means ``equals``
- ``{"all": [...]}`` / ``{"any": [...]}`` -- non-empty combinators
"""

from typing import Any, Dict, Union

from shared.errors import InvalidConditionError
from .models import (
    AllOf, AnyOf, ConditionNode, ConditionOperator, Literal, OPERATOR_ALIASES, Scalar
)

MAX_CONDITION_DEPTH = 32


def parse_operator(raw: Any) -> ConditionOperator:
    """Resolve an operator spelling to a ``ConditionOperator``."""
    if isinstance(raw, ConditionOperator):
        return raw
    if not isinstance(raw, str):
        raise InvalidConditionError(f"Operator must be a string, got {type(raw).__name__}")

    key = raw.strip()
    if key in OPERATOR_ALIASES:
        return OPERATOR_ALIASES[key]
    try:
        return ConditionOperator(key)
    except ValueError:
        raise InvalidConditionError(f"Unknown operator: {raw}", {"operator": raw})


def parse_condition(raw: Any, _depth: int = 0) -> ConditionNode:
    """Normalize a raw condition into a validated ``ConditionNode``.

    Raises ``InvalidConditionError`` for anything that is not a
    well-formed tree, including empty ``all``/``any`` lists.
    """
    if _depth > MAX_CONDITION_DEPTH:
        raise InvalidConditionError(f"Condition nested deeper than {MAX_CONDITION_DEPTH} levels")

    if isinstance(raw, Literal):
        return parse_condition(raw.value, _depth)

    if isinstance(raw, Scalar):
        return _parse_scalar({"claim": raw.claim, "op": raw.op, "value": raw.value})

    if isinstance(raw, (AllOf, AnyOf)):
        if not raw.children:
            raise InvalidConditionError("Combinator requires at least one condition")
        children = tuple(parse_condition(child, _depth + 1) for child in raw.children)
        return type(raw)(children)

    if isinstance(raw, str):
        if not raw.strip():
            raise InvalidConditionError("Condition string must not be empty")
        return Literal(raw)

    if not isinstance(raw, dict):
        raise InvalidConditionError(f"Unsupported condition type: {type(raw).__name__}")

    if "all" in raw or "any" in raw:
        if "all" in raw and "any" in raw:
            raise InvalidConditionError("Condition cannot combine 'all' and 'any' at one level")
        key = "all" if "all" in raw else "any"
        entries = raw[key]
        if not isinstance(entries, list) or not entries:
            raise InvalidConditionError(f"'{key}' must be a non-empty list")
        children = tuple(parse_condition(entry, _depth + 1) for entry in entries)
        return AllOf(children) if key == "all" else AnyOf(children)

    return _parse_scalar(raw)


def _parse_scalar(raw: Dict[str, Any]) -> Scalar:
    claim = raw.get("claim")
    if claim is not None:
        if not isinstance(claim, str):
            raise InvalidConditionError("Condition claim must be a string")
        claim = claim.strip() or None

    if "value" in raw:
        value = raw["value"]
    elif "expected" in raw:
        value = raw["expected"]
    else:
        raise InvalidConditionError("Condition requires a 'value'", {"condition": raw})

    op = raw.get("op")
    if op is None:
        op = raw.get("operator")
    op = parse_operator(op if op is not None else ConditionOperator.EQUALS)
    return Scalar(op=op, value=value, claim=claim)


def condition_to_dict(node: ConditionNode) -> Union[str, Dict[str, Any]]:
    """Serialize a condition tree into plain JSON-compatible data."""
    if isinstance(node, Literal):
        return node.value
    if isinstance(node, AllOf):
        return {"all": [condition_to_dict(child) for child in node.children]}
    if isinstance(node, AnyOf):
        return {"any": [condition_to_dict(child) for child in node.children]}

    data: Dict[str, Any] = {"op": node.op.value, "value": node.value}
    if node.claim is not None:
        data["claim"] = node.claim
    return data

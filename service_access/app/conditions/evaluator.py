"""
Condition evaluator for the Access Service.

``evaluate_condition`` is a pure function over a claims map and a
condition tree. It never raises: every failure (missing claim, no claim
to compare, non-numeric comparison) is a ``passed=False`` result whose
reason is written verbatim into the request's audit trail.
"""

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from shared.logging import get_logger
from .models import AllOf, AnyOf, ConditionNode, ConditionOperator, Literal, Scalar

logger = get_logger("access.conditions.evaluator")

REASON_DELIMITER = " | "


@dataclass
class EvaluationResult:
    """Outcome of evaluating a condition against credential claims."""
    passed: bool
    reason: str
    values: Dict[str, Any] = field(default_factory=dict)


def evaluate_condition(
    claims: Dict[str, Any],
    condition: ConditionNode,
    fallback_claim: Optional[str] = None
) -> EvaluationResult:
    """Evaluate ``condition`` against ``claims``.

    ``fallback_claim`` names the claim used by leaves that do not name
    one themselves (and by ``Literal`` leaves).
    """
    try:
        return _evaluate(claims or {}, condition, fallback_claim)
    except Exception as e:
        logger.error("Condition evaluation error", error=str(e))
        return EvaluationResult(passed=False, reason=f"evaluation error: {e}")


def _evaluate(claims: Dict[str, Any], node: ConditionNode, fallback_claim: Optional[str]) -> EvaluationResult:
    if isinstance(node, AllOf):
        results = _evaluate_children(claims, node.children, fallback_claim)
        passed = all(result.passed for result in results)
        prefix = "All conditions satisfied" if passed else "Some conditions failed"
        return _aggregate(results, passed, prefix)

    if isinstance(node, AnyOf):
        results = _evaluate_children(claims, node.children, fallback_claim)
        passed = any(result.passed for result in results)
        prefix = "At least one condition satisfied" if passed else "No conditions satisfied"
        return _aggregate(results, passed, prefix)

    if isinstance(node, Literal):
        node = Scalar(op=ConditionOperator.EQUALS, value=node.value, claim=None)

    return _evaluate_scalar(claims, node, fallback_claim)


def _evaluate_children(claims, children, fallback_claim) -> List[EvaluationResult]:
    # Every child is evaluated so the audit trail carries all reasons and values
    return [_evaluate(claims, child, fallback_claim) for child in children]


def _aggregate(results: List[EvaluationResult], passed: bool, prefix: str) -> EvaluationResult:
    values: Dict[str, Any] = {}
    for result in results:
        # Last write wins on claim collisions
        values.update(result.values)
    reasons = REASON_DELIMITER.join(result.reason for result in results)
    return EvaluationResult(passed=passed, reason=f"{prefix}: {reasons}", values=values)


def _evaluate_scalar(claims: Dict[str, Any], node: Scalar, fallback_claim: Optional[str]) -> EvaluationResult:
    claim = node.claim or fallback_claim
    if not claim:
        return EvaluationResult(passed=False, reason="no claim specified for condition")

    if claim not in claims:
        return EvaluationResult(passed=False, reason=f'claim "{claim}" not present in credential')

    value = claims[claim]
    passed, reason = compare(value, node.op, node.value)
    return EvaluationResult(passed=passed, reason=f"{claim}: {reason}", values={claim: value})


def compare(actual: Any, op: ConditionOperator, expected: Any) -> Tuple[bool, str]:
    """Apply one operator, returning ``(passed, reason)``."""
    if op.is_numeric:
        return _compare_numeric(actual, op, expected)

    if op == ConditionOperator.CONTAINS:
        if isinstance(actual, (list, tuple)):
            passed = any(strict_equals(item, expected) for item in actual)
        elif isinstance(actual, str):
            passed = to_text(expected) in actual
        else:
            return False, "value is not list-like for contains check"
        verb = "contains" if passed else "does not contain"
        return passed, f'Value {verb} "{to_text(expected)}"'

    if op == ConditionOperator.STARTS_WITH:
        prefix = to_text(expected)
        passed = to_text(actual).startswith(prefix)
        verb = "starts with" if passed else "does not start with"
        return passed, f'Value {verb} "{prefix}"'

    if op == ConditionOperator.ENDS_WITH:
        suffix = to_text(expected)
        passed = to_text(actual).endswith(suffix)
        verb = "ends with" if passed else "does not end with"
        return passed, f'Value {verb} "{suffix}"'

    passed = strict_equals(actual, expected)
    verb = "equals" if passed else "does not equal"
    return passed, f'Value "{to_text(actual)}" {verb} "{to_text(expected)}"'


# operator -> (test, symbol when it holds, symbol when it does not)
_NUMERIC_TESTS = {
    ConditionOperator.GREATER_OR_EQUAL: (lambda a, b: a >= b, "≥", "<"),
    ConditionOperator.GREATER_THAN: (lambda a, b: a > b, ">", "≤"),
    ConditionOperator.LESS_OR_EQUAL: (lambda a, b: a <= b, "≤", ">"),
    ConditionOperator.LESS_THAN: (lambda a, b: a < b, "<", "≥"),
}


def _compare_numeric(actual: Any, op: ConditionOperator, expected: Any) -> Tuple[bool, str]:
    left = to_number(actual)
    right = to_number(expected)
    if left is None or right is None:
        return False, f"non-numeric comparison for {op.value} operator"

    test, holds, fails = _NUMERIC_TESTS[op]
    passed = test(left, right)
    symbol = holds if passed else fails
    return passed, f"Value {to_text(left)} is {symbol} {to_text(right)}"


def to_number(value: Any) -> Optional[float]:
    """Coerce ints, floats and numeric strings; anything else is ``None``."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        number = value
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            number = int(text)
        except ValueError:
            try:
                number = float(text)
            except ValueError:
                return None
    else:
        return None

    if isinstance(number, float) and not math.isfinite(number):
        return None
    return number


def to_text(value: Any) -> str:
    """Render a claim or expected value the way it is compared as text."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (list, tuple)):
        return ",".join(to_text(item) for item in value)
    return str(value)


def strict_equals(left: Any, right: Any) -> bool:
    """Type-sensitive equality: booleans never equal numbers, ints equal floats."""
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right
    if isinstance(left, (int, float)) and isinstance(right, (int, float)):
        return left == right
    return type(left) is type(right) and left == right

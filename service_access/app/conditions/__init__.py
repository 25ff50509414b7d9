"""
Condition package.

A condition is a boolean policy expression evaluated against the claims
of a verified credential:

- models: the immutable ``ConditionNode`` tree and its audit rendering.
- parser: normalization of caller/storage shapes into the tree.
- evaluator: the pure, total evaluation function.
"""

from .models import (
    AllOf, AnyOf, ConditionNode, ConditionOperator, Literal, Scalar,
    describe_condition, primary_claim
)
from .parser import condition_to_dict, parse_condition
from .evaluator import EvaluationResult, evaluate_condition

__all__ = [
    "AllOf",
    "AnyOf",
    "ConditionNode",
    "ConditionOperator",
    "Literal",
    "Scalar",
    "describe_condition",
    "primary_claim",
    "condition_to_dict",
    "parse_condition",
    "EvaluationResult",
    "evaluate_condition",
]

"""
Condition evaluation.

One rule = (variable, operator, value). A rule set is ordered: the first
rule that holds decides the output handle.
"""

import logging
import re
from typing import Any, Dict, Iterable, Optional

from engine.variables import coerce_number, get_value, interpolate, stringify

logger = logging.getLogger(__name__)

OPERATORS = (
    "equals",
    "not_equals",
    "contains",
    "gt",
    "lt",
    "gte",
    "lte",
    "regex",
    "exists",
    "not_exists",
)

_NUMERIC = {
    "gt": lambda a, b: a > b,
    "lt": lambda a, b: a < b,
    "gte": lambda a, b: a >= b,
    "lte": lambda a, b: a <= b,
}


def _exists(value: Any) -> bool:
    return value is not None and value != ""


def evaluate_condition(
    variable: str,
    operator: str,
    value: Any,
    variables: Dict[str, Any],
) -> bool:
    """
    Evaluate a single rule against the current variables.

    `value` is interpolated before comparison. Numeric operators coerce both
    sides to numbers; a failed coercion makes the rule false. Unknown
    operators and invalid regexes are false.
    """
    actual = get_value(variables, variable)

    if operator == "exists":
        return _exists(actual)
    if operator == "not_exists":
        return not _exists(actual)

    expected = interpolate(value, variables) if isinstance(value, str) else value

    if operator == "equals":
        return stringify(actual) == stringify(expected)
    if operator == "not_equals":
        return stringify(actual) != stringify(expected)
    if operator == "contains":
        if isinstance(actual, list):
            return any(stringify(item) == stringify(expected) for item in actual)
        return stringify(expected) in stringify(actual)

    if operator in _NUMERIC:
        left = coerce_number(actual)
        right = coerce_number(expected)
        if left is None or right is None:
            return False
        return _NUMERIC[operator](left, right)

    if operator == "regex":
        try:
            return re.search(stringify(expected), stringify(actual)) is not None
        except re.error as e:
            logger.warning(f"Invalid regex in condition on '{variable}': {e}")
            return False

    logger.warning(f"Unknown condition operator: {operator}")
    return False


def select_handle(
    rules: Iterable[Any],
    default_handle: Optional[str],
    variables: Dict[str, Any],
) -> str:
    """
    Return the output handle of the first rule that holds.

    Rules are objects with variable/operator/value/output_handle attributes.
    Falls back to default_handle, or "false" when none is configured.
    """
    for rule in rules:
        if evaluate_condition(rule.variable, rule.operator, rule.value, variables):
            return rule.output_handle
    return default_handle or "false"

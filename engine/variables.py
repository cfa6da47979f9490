"""
Variable interpolation and the restricted expression language.

Variables are a flat-ish mapping (values may be nested dicts/lists).
Templates reference them as {{name}} or {{path.to.value}}.
"""

import ast
import json
import logging
import math
import operator
import re
from typing import Any, Dict, Optional

from engine.errors import ExpressionError

logger = logging.getLogger(__name__)

TEMPLATE_PATTERN = re.compile(r"\{\{\s*([\w.\-]+)\s*\}\}")

_MISSING = object()


# ============================================================================
# PATH ACCESS
# ============================================================================

def get_value(variables: Dict[str, Any], path: str, default: Any = None) -> Any:
    """
    Read a dotted path ("user.address.city", "items.0.id").

    A key that exists verbatim (even with dots in it) wins over path lookup.
    """
    if not path:
        return default
    if path in variables:
        return variables[path]

    current: Any = variables
    for part in path.split("."):
        if isinstance(current, dict):
            current = current.get(part, _MISSING)
        elif isinstance(current, list) and part.lstrip("-").isdigit():
            index = int(part)
            current = current[index] if -len(current) <= index < len(current) else _MISSING
        else:
            current = _MISSING
        if current is _MISSING:
            return default
    return current


def set_value(variables: Dict[str, Any], path: str, value: Any) -> None:
    """Write a dotted path, creating intermediate dicts as needed."""
    parts = path.split(".")
    current = variables
    for part in parts[:-1]:
        nxt = current.get(part)
        if not isinstance(nxt, dict):
            nxt = {}
            current[part] = nxt
        current = nxt
    current[parts[-1]] = value


# ============================================================================
# RENDERING
# ============================================================================

def stringify(value: Any) -> str:
    """Render a variable value the way it appears inside a message."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def interpolate(template: Optional[str], variables: Dict[str, Any]) -> str:
    """
    Replace every {{name}} in template with its rendered value.

    Unknown variables render as the empty string.
    """
    if not template:
        return ""
    if not isinstance(template, str):
        return stringify(template)

    def _replace(match: re.Match) -> str:
        return stringify(get_value(variables, match.group(1)))

    return TEMPLATE_PATTERN.sub(_replace, template)


def coerce_number(value: Any) -> Optional[float]:
    """Best-effort numeric coercion. Returns None when not a number."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return None if math.isnan(value) else float(value)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
        return None if math.isnan(number) else number
    return None


def normalize_number(value: float) -> Any:
    """Collapse integral floats to int so 6/2 renders as 3."""
    if isinstance(value, float) and value.is_integer() and abs(value) < 2 ** 53:
        return int(value)
    return value


# ============================================================================
# EXPRESSIONS
# ============================================================================

_ARITHMETIC = {
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
}

_COMPARE = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
}

_FUNCTIONS = {
    "len": lambda v: len(v) if v is not None else 0,
    "upper": lambda v: stringify(v).upper(),
    "lower": lambda v: stringify(v).lower(),
    "trim": lambda v: stringify(v).strip(),
    "str": stringify,
    "int": lambda v: int(_as_number(v)),
    "float": lambda v: _as_number(v),
    "round": lambda v, digits=0: normalize_number(round(_as_number(v), int(digits))),
    "abs": lambda v: normalize_number(abs(_as_number(v))),
    "min": lambda *vs: normalize_number(min(_as_number(v) for v in vs)),
    "max": lambda *vs: normalize_number(max(_as_number(v) for v in vs)),
}


def _as_number(value: Any) -> float:
    number = coerce_number(value)
    if number is None:
        raise ExpressionError(f"Not a number: {value!r}")
    return number


def _dotted_name(node: ast.AST) -> Optional[str]:
    if isinstance(node, ast.Name):
        return node.id
    if isinstance(node, ast.Attribute):
        base = _dotted_name(node.value)
        return f"{base}.{node.attr}" if base else None
    return None


class _ExpressionEvaluator:
    """Walks a parsed expression, allowing only whitelisted node types."""

    def __init__(self, variables: Dict[str, Any]):
        self.variables = variables

    def eval(self, node: ast.AST) -> Any:
        if isinstance(node, ast.Expression):
            return self.eval(node.body)

        if isinstance(node, ast.Constant):
            if isinstance(node.value, (int, float, str, bool)) or node.value is None:
                return node.value
            raise ExpressionError(f"Unsupported literal: {node.value!r}")

        if isinstance(node, (ast.Name, ast.Attribute)):
            name = _dotted_name(node)
            if name is None:
                raise ExpressionError("Unsupported attribute access")
            if name in ("true", "false"):
                return name == "true"
            if name in ("null", "None"):
                return None
            return get_value(self.variables, name)

        if isinstance(node, ast.UnaryOp):
            operand = self.eval(node.operand)
            if isinstance(node.op, ast.USub):
                return normalize_number(-_as_number(operand))
            if isinstance(node.op, ast.UAdd):
                return normalize_number(_as_number(operand))
            if isinstance(node.op, ast.Not):
                return not operand
            raise ExpressionError("Unsupported unary operator")

        if isinstance(node, ast.BinOp):
            left = self.eval(node.left)
            right = self.eval(node.right)
            if isinstance(node.op, ast.Add):
                lnum, rnum = coerce_number(left), coerce_number(right)
                if lnum is not None and rnum is not None:
                    return normalize_number(lnum + rnum)
                return stringify(left) + stringify(right)
            func = _ARITHMETIC.get(type(node.op))
            if func is None:
                raise ExpressionError("Unsupported operator")
            try:
                return normalize_number(func(_as_number(left), _as_number(right)))
            except ZeroDivisionError:
                raise ExpressionError("Division by zero")

        if isinstance(node, ast.BoolOp):
            values = [self.eval(v) for v in node.values]
            if isinstance(node.op, ast.And):
                return all(values)
            return any(values)

        if isinstance(node, ast.Compare):
            left = self.eval(node.left)
            for op, comparator in zip(node.ops, node.comparators):
                right = self.eval(comparator)
                func = _COMPARE.get(type(op))
                if func is None:
                    raise ExpressionError("Unsupported comparison")
                lnum, rnum = coerce_number(left), coerce_number(right)
                if lnum is not None and rnum is not None:
                    result = func(lnum, rnum)
                elif isinstance(op, (ast.Eq, ast.NotEq)):
                    result = func(stringify(left), stringify(right))
                else:
                    raise ExpressionError("Ordering comparison needs numbers")
                if not result:
                    return False
                left = right
            return True

        if isinstance(node, ast.IfExp):
            return self.eval(node.body) if self.eval(node.test) else self.eval(node.orelse)

        if isinstance(node, ast.Call):
            if not isinstance(node.func, ast.Name) or node.func.id not in _FUNCTIONS:
                raise ExpressionError("Unsupported function call")
            if node.keywords:
                raise ExpressionError("Keyword arguments are not supported")
            args = [self.eval(arg) for arg in node.args]
            try:
                return _FUNCTIONS[node.func.id](*args)
            except ExpressionError:
                raise
            except (TypeError, ValueError) as e:
                raise ExpressionError(f"{node.func.id}() failed: {e}")

        raise ExpressionError(f"Unsupported expression element: {type(node).__name__}")


def evaluate_expression(expression: str, variables: Dict[str, Any]) -> Any:
    """
    Evaluate a restricted arithmetic/string expression.

    Supported: numbers, quoted strings, variable names (dotted paths or
    {{name}} references), + - * / // %, comparisons, and/or/not,
    conditional expressions, and a small set of functions
    (len, upper, lower, trim, str, int, float, round, abs, min, max).

    Numeric strings take part in arithmetic as numbers; "+" between
    non-numeric operands concatenates.

    Raises:
        ExpressionError: on syntax errors or anything outside the whitelist
    """
    source = TEMPLATE_PATTERN.sub(lambda m: m.group(1), (expression or "").strip())
    if not source:
        raise ExpressionError("Empty expression")
    try:
        tree = ast.parse(source, mode="eval")
    except SyntaxError as e:
        raise ExpressionError(f"Invalid expression '{expression}': {e.msg}")
    return _ExpressionEvaluator(variables).eval(tree)

"""
Variable, user-data and utility executors.

All of these are pure transforms over the variable snapshot and the
inbound event. User-data getters never fail; missing data becomes None.
"""

import copy
import math
from datetime import datetime, timedelta
from typing import Any, Dict

from engine.errors import NodeExecutionError
from engine.executors.base import NodeContext, NodeOutcome, executor
from engine.node_config import (
    DateTimeConfig,
    FormatPhoneNumberConfig,
    GetCustomerCountryConfig,
    GetCustomerNameConfig,
    GetCustomerPhoneConfig,
    GetMessageTimestampConfig,
    MathOperationConfig,
    RandomChoiceConfig,
    SetVariableConfig,
    TextOperationConfig,
)
from engine.phone import country_from_phone, format_phone_number
from engine.types import Node
from engine.variables import (
    coerce_number,
    evaluate_expression,
    get_value,
    interpolate,
    normalize_number,
    set_value,
    stringify,
)


def _assign(name: str, value: Any, **log) -> NodeOutcome:
    return NodeOutcome(deltas={name: value}, log={"variable": name, "value": value, **log})


# ============================================================================
# SET VARIABLE
# ============================================================================

@executor("setVariable")
async def set_variable(node: Node, config: SetVariableConfig, ctx: NodeContext) -> NodeOutcome:
    """
    Apply assignments in order; later assignments see earlier ones.

    static:        literal value, interpolated when it is a string
    expression:    restricted arithmetic/string expression
    from_variable: another variable's value, copied verbatim (type kept)
    """
    working = copy.deepcopy(ctx.variables)
    deltas: Dict[str, Any] = {}

    for assignment in config.assignments:
        if assignment.value_type == "expression":
            try:
                value = evaluate_expression(stringify(assignment.value), working)
            except NodeExecutionError as e:
                e.node_id, e.node_type = node.id, node.type
                raise
        elif assignment.value_type in ("from_variable", "variable"):
            value = copy.deepcopy(get_value(working, stringify(assignment.value)))
        elif isinstance(assignment.value, str):
            value = interpolate(assignment.value, working)
        else:
            value = assignment.value

        set_value(working, assignment.variable_name, value)
        deltas[assignment.variable_name] = value

    return NodeOutcome(deltas=deltas, log={"assigned": sorted(deltas)})


# ============================================================================
# USER DATA GETTERS
# ============================================================================

def _customer_phone(ctx: NodeContext) -> str:
    if ctx.event is not None:
        return ctx.event.sender_id
    return ctx.execution.customer_id


@executor("getCustomerPhone")
async def get_customer_phone(node: Node, config: GetCustomerPhoneConfig, ctx: NodeContext) -> NodeOutcome:
    phone = _customer_phone(ctx)
    value = format_phone_number(phone, config.format) if phone else None
    return _assign(config.variable_name, value)


@executor("getCustomerName")
async def get_customer_name(node: Node, config: GetCustomerNameConfig, ctx: NodeContext) -> NodeOutcome:
    name = ctx.event.contact_name if ctx.event is not None else None
    if not name:
        name = ctx.variables.get("customer_name")
    return _assign(config.variable_name, name or None)


@executor("getCustomerCountry")
async def get_customer_country(node: Node, config: GetCustomerCountryConfig, ctx: NodeContext) -> NodeOutcome:
    phone = _customer_phone(ctx)
    return _assign(config.variable_name, country_from_phone(phone) if phone else None)


@executor("getMessageTimestamp")
async def get_message_timestamp(node: Node, config: GetMessageTimestampConfig, ctx: NodeContext) -> NodeOutcome:
    timestamp = None
    if ctx.event is not None and ctx.event.timestamp is not None:
        timestamp = ctx.event.timestamp.isoformat()
    return _assign(config.variable_name, timestamp)


# ============================================================================
# UTILITIES
# ============================================================================

@executor("formatPhoneNumber")
async def format_phone(node: Node, config: FormatPhoneNumberConfig, ctx: NodeContext) -> NodeOutcome:
    source = get_value(ctx.variables, config.source_variable)
    value = format_phone_number(stringify(source), config.format) if source else None
    return _assign(config.variable_name, value)


def format_datetime(moment: datetime, fmt: str) -> Any:
    if fmt == "date":
        return moment.strftime("%Y-%m-%d")
    if fmt == "time":
        return moment.strftime("%H:%M:%S")
    if fmt == "timestamp":
        return int(moment.timestamp())
    if fmt == "readable":
        return moment.strftime("%B %d, %Y %I:%M %p")
    return moment.isoformat()


@executor("dateTime")
async def date_time(node: Node, config: DateTimeConfig, ctx: NodeContext) -> NodeOutcome:
    now = ctx.now()
    operation = config.operation

    if operation == "now":
        moment = now
    elif operation == "today":
        moment = now.replace(hour=0, minute=0, second=0, microsecond=0)
    elif operation == "addDays":
        moment = now + timedelta(days=config.days or 0)
    elif operation == "addHours":
        moment = now + timedelta(hours=config.hours or 0)
    else:
        raise NodeExecutionError(
            f"Unknown dateTime operation: {operation}", node.id, node.type
        )
    return _assign(config.variable_name, format_datetime(moment, config.format))


_BINARY_MATH = {
    "add": lambda a, b: a + b,
    "subtract": lambda a, b: a - b,
    "multiply": lambda a, b: a * b,
    "divide": lambda a, b: a / b,
    "modulo": lambda a, b: math.fmod(a, b),
    "min": min,
    "max": max,
}

_UNARY_MATH = {
    "round": round,
    "floor": math.floor,
    "ceil": math.ceil,
    "abs": abs,
}


@executor("mathOperation")
async def math_operation(node: Node, config: MathOperationConfig, ctx: NodeContext) -> NodeOutcome:
    def operand(raw: Any, label: str) -> float:
        rendered = interpolate(raw, ctx.variables) if isinstance(raw, str) else raw
        number = coerce_number(rendered)
        if number is None:
            raise NodeExecutionError(
                f"mathOperation {label} is not a number: {rendered!r}", node.id, node.type
            )
        return number

    operation = config.operation
    a = operand(config.value_a, "valueA")

    if operation in _UNARY_MATH:
        result = _UNARY_MATH[operation](a)
    elif operation in _BINARY_MATH:
        b = operand(config.value_b, "valueB")
        if operation in ("divide", "modulo") and b == 0:
            raise NodeExecutionError("mathOperation division by zero", node.id, node.type)
        result = _BINARY_MATH[operation](a, b)
    else:
        raise NodeExecutionError(f"Unknown math operation: {operation}", node.id, node.type)

    return _assign(config.variable_name, normalize_number(float(result)), operation=operation)


@executor("textOperation")
async def text_operation(node: Node, config: TextOperationConfig, ctx: NodeContext) -> NodeOutcome:
    text = interpolate(config.text, ctx.variables)
    operation = config.operation
    search = interpolate(config.search, ctx.variables) if config.search else ""

    if operation == "uppercase":
        result: Any = text.upper()
    elif operation == "lowercase":
        result = text.lower()
    elif operation == "trim":
        result = text.strip()
    elif operation == "length":
        result = len(text)
    elif operation == "capitalize":
        result = text[:1].upper() + text[1:]
    elif operation == "substring":
        result = text[config.start or 0:config.end]
    elif operation == "replace":
        replacement = interpolate(config.replace_with, ctx.variables) if config.replace_with else ""
        result = text.replace(search, replacement) if search else text
    elif operation == "contains":
        result = search in text
    elif operation == "split":
        result = text.split(config.delimiter or ",")
    elif operation == "join":
        items = get_value(ctx.variables, config.array_variable or "")
        if not isinstance(items, list):
            items = []
        result = (config.delimiter if config.delimiter is not None else ", ").join(
            stringify(item) for item in items
        )
    else:
        raise NodeExecutionError(f"Unknown text operation: {operation}", node.id, node.type)

    return _assign(config.variable_name, result, operation=operation)


@executor("randomChoice")
async def random_choice(node: Node, config: RandomChoiceConfig, ctx: NodeContext) -> NodeOutcome:
    choices = [interpolate(choice, ctx.variables) for choice in config.choices]
    value = ctx.rng.choice(choices) if choices else None
    return _assign(config.variable_name, value)

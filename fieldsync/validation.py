from __future__ import annotations

import datetime as dt
import json
import logging
import math
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"\S+@\S+\.\S+")
PHONE_RE = re.compile(r"^\+?[0-9\s\-()]{8,20}$")
LETTER_RE = re.compile(r"^[A-Za-z]$")
EXPRESSION_OPERATORS = "+-*/"
COMPARISON_OPERATORS = {"<", "<=", ">", ">=", "==", "===", "!=", "!=="}


class ValueType(str, Enum):
    TEXT = "TEXT"
    LONG_TEXT = "LONG_TEXT"
    NUMBER = "NUMBER"
    INTEGER = "INTEGER"
    INTEGER_POSITIVE = "INTEGER_POSITIVE"
    INTEGER_NEGATIVE = "INTEGER_NEGATIVE"
    INTEGER_ZERO_OR_POSITIVE = "INTEGER_ZERO_OR_POSITIVE"
    PERCENTAGE = "PERCENTAGE"
    EMAIL = "EMAIL"
    URL = "URL"
    PHONE_NUMBER = "PHONE_NUMBER"
    LETTER = "LETTER"
    DATE = "DATE"
    BOOLEAN = "BOOLEAN"


NUMERIC_TYPES = {
    ValueType.NUMBER,
    ValueType.INTEGER,
    ValueType.INTEGER_POSITIVE,
    ValueType.INTEGER_NEGATIVE,
    ValueType.INTEGER_ZERO_OR_POSITIVE,
    ValueType.PERCENTAGE,
}


@dataclass
class ValidationRules:
    value_type: ValueType = ValueType.TEXT
    required: bool = False
    min: float | None = None
    max: float | None = None
    regex: str | None = None
    error_message: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> ValidationRules:
        if not data:
            return cls()
        raw_type = data.get("valueType") or data.get("value_type") or ValueType.TEXT.value
        try:
            value_type = ValueType(str(raw_type))
        except ValueError:
            value_type = ValueType.TEXT
        return cls(
            value_type=value_type,
            required=bool(data.get("required", False)),
            min=_optional_float(data.get("min")),
            max=_optional_float(data.get("max")),
            regex=data.get("regex") or None,
            error_message=str(data.get("errorMessage") or data.get("error_message") or ""),
        )


@dataclass
class ComparisonRule:
    """Compare a field against a constant, another field, or an arithmetic expression."""

    field: str
    operator: str
    compare_to: Any = None
    message: str | None = None
    value: Any = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ComparisonRule:
        return cls(
            field=str(data.get("field") or ""),
            operator=str(data.get("operator") or ""),
            compare_to=data.get("compareTo", data.get("compare_to")),
            message=data.get("message"),
            value=data.get("value"),
        )


@dataclass
class CustomLogic:
    validations: list[ComparisonRule] = field(default_factory=list)


def _optional_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def parse_custom_logic(raw: Any) -> CustomLogic | None:
    """Accept the JSON string or mapping form used by form metadata."""

    if raw is None or raw == "":
        return None
    if isinstance(raw, CustomLogic):
        return raw
    data = raw
    if isinstance(raw, str):
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            return None
    if not isinstance(data, Mapping):
        return None
    validations = data.get("validations")
    if not isinstance(validations, list):
        return CustomLogic()
    rules = [ComparisonRule.from_dict(item) for item in validations if isinstance(item, Mapping)]
    return CustomLogic(validations=rules)


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value == "")


def to_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        text = str(value).strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
    if not math.isfinite(number):
        return None
    return number


def _format_bound(value: float) -> str:
    number = float(value)
    if number.is_integer():
        return str(int(number))
    return str(number)


def _validate_number(value: Any, rules: ValidationRules) -> str | None:
    number = to_number(value)
    if number is None:
        return rules.error_message or "Please enter a valid number"
    if rules.min is not None and number < rules.min:
        return rules.error_message or f"Value must be at least {_format_bound(rules.min)}"
    if rules.max is not None and number > rules.max:
        return rules.error_message or f"Value must be at most {_format_bound(rules.max)}"
    value_type = rules.value_type
    if value_type is ValueType.INTEGER and not number.is_integer():
        return rules.error_message or "Value must be an integer"
    if value_type is ValueType.INTEGER_POSITIVE and (number <= 0 or not number.is_integer()):
        return rules.error_message or "Value must be a positive integer"
    if value_type is ValueType.INTEGER_NEGATIVE and (number >= 0 or not number.is_integer()):
        return rules.error_message or "Value must be a negative integer"
    if value_type is ValueType.INTEGER_ZERO_OR_POSITIVE and (
        number < 0 or not number.is_integer()
    ):
        return rules.error_message or "Value must be zero or a positive integer"
    if value_type is ValueType.PERCENTAGE and (number < 0 or number > 100):
        return rules.error_message or "Percentage must be between 0 and 100"
    return None


def _valid_url(value: str) -> bool:
    parsed = urlparse(value)
    return bool(parsed.scheme and parsed.netloc)


def _valid_date(value: str) -> bool:
    try:
        dt.date.fromisoformat(value)
        return True
    except ValueError:
        pass
    try:
        dt.datetime.fromisoformat(value)
    except ValueError:
        return False
    return True


def _matches(pattern: str, text: str) -> bool:
    try:
        return re.search(pattern, text) is not None
    except re.error as exc:
        # A broken pattern in form metadata must not block data entry.
        logger.warning("ignoring invalid regex %r: %s", pattern, exc)
        return True


def _validate_type(value: Any, rules: ValidationRules) -> str | None:
    value_type = rules.value_type
    if value_type in NUMERIC_TYPES:
        return _validate_number(value, rules)
    text = str(value)
    if value_type is ValueType.EMAIL and not EMAIL_RE.search(text):
        return rules.error_message or "Please enter a valid email address"
    if value_type is ValueType.URL and not _valid_url(text):
        return rules.error_message or "Please enter a valid URL"
    if value_type is ValueType.PHONE_NUMBER and not PHONE_RE.match(text):
        return rules.error_message or "Please enter a valid phone number"
    if value_type is ValueType.LETTER and not (isinstance(value, str) and LETTER_RE.match(value)):
        return rules.error_message or "Please enter a single letter"
    if value_type is ValueType.DATE and not _valid_date(text):
        return rules.error_message or "Please enter a valid date"
    return None


def evaluate_expression(expression: str, values: Mapping[str, Any]) -> float:
    """Evaluate ``a+b*c`` strictly left to right; tokens may name fields in ``values``."""

    clean = re.sub(r"\s+", "", expression)
    tokens = [token for token in re.split(r"([+\-*/])", clean) if token]
    result = 0.0
    op = "+"
    for token in tokens:
        if token in EXPRESSION_OPERATORS:
            op = token
            continue
        raw = values[token] if token in values else token
        number = to_number(raw)
        if number is None:
            raise ValueError(f"Invalid value in expression: {token}")
        if op == "+":
            result += number
        elif op == "-":
            result -= number
        elif op == "*":
            result *= number
        elif op == "/":
            if number == 0:
                raise ValueError("Division by zero")
            result /= number
    return result


def _compare(left: Any, operator: str, right: Any) -> bool:
    if operator in {"==", "==="}:
        return left == right
    if operator in {"!=", "!=="}:
        return left != right
    try:
        if operator == "<":
            return left < right
        if operator == "<=":
            return left <= right
        if operator == ">":
            return left > right
        if operator == ">=":
            return left >= right
    except TypeError:
        return False
    return True


def _resolve_compare_value(rule: ComparisonRule, values: Mapping[str, Any]) -> Any:
    target = rule.compare_to
    if target is None:
        return rule.value
    if isinstance(target, str) and target in values:
        return values[target]
    if isinstance(target, str) and any(op in target for op in EXPRESSION_OPERATORS):
        # a bare negative number is not an expression
        if to_number(target) is None:
            return evaluate_expression(target, values)
    return target


def _check_rule(field_value: Any, rule: ComparisonRule, values: Mapping[str, Any]) -> bool:
    try:
        compare_value = _resolve_compare_value(rule, values)
    except ValueError:
        return True
    left_num = to_number(field_value) if not _is_empty(field_value) else None
    right_num = to_number(compare_value) if not _is_empty(compare_value) else None
    if left_num is not None and right_num is not None:
        return _compare(left_num, rule.operator, right_num)
    if right_num is None and rule.operator not in {"==", "===", "!=", "!=="}:
        # the referenced field has no usable value yet
        return True
    if rule.operator in {"==", "===", "!=", "!=="}:
        return _compare(
            "" if field_value is None else str(field_value),
            rule.operator,
            "" if compare_value is None else str(compare_value),
        )
    return False


def validate_input(
    value: Any,
    rules: ValidationRules,
    all_values: Mapping[str, Any] | None = None,
    custom_logic: CustomLogic | None = None,
) -> str | None:
    """Return the first error message for ``value`` or ``None`` when it is valid."""

    if _is_empty(value):
        if rules.required:
            return rules.error_message or "This field is required"
        return None

    error = _validate_type(value, rules)
    if error:
        return error

    if rules.regex and not _matches(rules.regex, str(value)):
        return rules.error_message or "Invalid format"

    if custom_logic is None:
        return None
    values = dict(all_values or {})
    for rule in custom_logic.validations:
        if rule.field != "value" or rule.operator not in COMPARISON_OPERATORS:
            continue
        if not _check_rule(value, rule, values):
            return rule.message or "Validation failed"
    return None


def validate_object(
    values: Mapping[str, Any],
    custom_logic: CustomLogic | None,
    field_rules: Mapping[str, ValidationRules] | None = None,
) -> dict[str, str]:
    """Validate the sub-fields of a structured value; returns ``{sub_field: message}``."""

    errors: dict[str, str] = {}
    for name, rules in (field_rules or {}).items():
        message = validate_input(values.get(name), rules)
        if message:
            errors[name] = message
    if custom_logic is None:
        return errors
    for rule in custom_logic.validations:
        if not rule.field or rule.operator not in COMPARISON_OPERATORS:
            continue
        if rule.field in errors:
            continue
        field_value = values.get(rule.field)
        if _is_empty(field_value):
            field_value = 0
        if not _check_rule(field_value, rule, values):
            errors[rule.field] = rule.message or f"Invalid value for {rule.field}"
    return errors


def serialize_value(value: Any, *, multi_select: bool = False) -> str:
    """Serialize a typed widget value into the stored string form."""

    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if multi_select and isinstance(value, Mapping):
        return ",".join(str(option) for option, selected in value.items() if selected)
    if isinstance(value, (Mapping, list, tuple)):
        return json.dumps(value, ensure_ascii=False, sort_keys=isinstance(value, Mapping))
    return str(value)

from __future__ import annotations

import logging

import pytest

from fieldsync.validation import (
    ValidationRules,
    ValueType,
    evaluate_expression,
    parse_custom_logic,
    serialize_value,
    validate_input,
    validate_object,
)


def test_required_and_optional_blank_values() -> None:
    assert validate_input("", ValidationRules(required=True)) == "This field is required"
    assert validate_input(None, ValidationRules()) is None


@pytest.mark.parametrize(
    ("value_type", "value", "message"),
    [
        (ValueType.NUMBER, "abc", "Please enter a valid number"),
        (ValueType.INTEGER, "1.5", "Value must be an integer"),
        (ValueType.INTEGER_POSITIVE, "0", "Value must be a positive integer"),
        (ValueType.INTEGER_NEGATIVE, "3", "Value must be a negative integer"),
        (ValueType.INTEGER_ZERO_OR_POSITIVE, "-1", "Value must be zero or a positive integer"),
        (ValueType.PERCENTAGE, "101", "Percentage must be between 0 and 100"),
        (ValueType.EMAIL, "nobody", "Please enter a valid email address"),
        (ValueType.URL, "example", "Please enter a valid URL"),
        (ValueType.PHONE_NUMBER, "12", "Please enter a valid phone number"),
        (ValueType.LETTER, "ab", "Please enter a single letter"),
        (ValueType.DATE, "2024-13-01", "Please enter a valid date"),
    ],
)
def test_value_type_messages(value_type: ValueType, value: str, message: str) -> None:
    assert validate_input(value, ValidationRules(value_type=value_type)) == message


def test_numeric_bounds_and_custom_message() -> None:
    rules = ValidationRules(value_type=ValueType.NUMBER, min=0, max=10)
    assert validate_input("42", rules) == "Value must be at most 10"
    assert validate_input("-1", rules) == "Value must be at least 0"
    assert validate_input("5", rules) is None

    custom = ValidationRules(value_type=ValueType.NUMBER, max=10, error_message="Too many")
    assert validate_input("11", custom) == "Too many"


def test_regex_rule() -> None:
    rules = ValidationRules(regex=r"^[A-Z]{3}$")
    assert validate_input("abc", rules) == "Invalid format"
    assert validate_input("ABC", rules) is None


def test_broken_regex_is_ignored_and_logged(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.WARNING, logger="fieldsync.validation"):
        assert validate_input("abc", ValidationRules(regex="[a-")) is None

    assert "invalid regex" in caplog.text


def test_bounds_given_as_ints_or_fractions_format_cleanly() -> None:
    ints = ValidationRules(value_type=ValueType.INTEGER, min=1, max=10)
    assert validate_input("11", ints) == "Value must be at most 10"
    assert validate_input("0", ints) == "Value must be at least 1"

    fractions = ValidationRules(value_type=ValueType.NUMBER, max=2.5)
    assert validate_input("3", fractions) == "Value must be at most 2.5"


def test_cross_field_rule_against_other_field() -> None:
    logic = parse_custom_logic(
        '{"validations": [{"field": "value", "operator": "<=", "compareTo": "total",'
        ' "message": "Cannot exceed total"}]}'
    )
    rules = ValidationRules(value_type=ValueType.NUMBER)

    assert validate_input("5", rules, {"total": "10"}, logic) is None
    assert validate_input("11", rules, {"total": "10"}, logic) == "Cannot exceed total"
    # no total entered yet
    assert validate_input("11", rules, {}, logic) is None


def test_evaluate_expression_is_left_to_right() -> None:
    assert evaluate_expression("a + b * 2", {"a": "1", "b": "2"}) == 6.0
    assert evaluate_expression("10 / 4", {}) == 2.5
    with pytest.raises(ValueError, match="Division by zero"):
        evaluate_expression("a / b", {"a": 1, "b": 0})
    with pytest.raises(ValueError, match="Invalid value in expression"):
        evaluate_expression("a + x", {"a": 1})


def test_validate_object_with_expression_rule() -> None:
    logic = parse_custom_logic(
        {
            "validations": [
                {"field": "total", "operator": "==", "compareTo": "male+female"},
            ]
        }
    )

    assert validate_object({"male": 3, "female": 4, "total": 7}, logic) == {}
    errors = validate_object({"male": 3, "female": 4, "total": 8}, logic)
    assert errors == {"total": "Invalid value for total"}


def test_validate_object_sub_field_rules() -> None:
    rules = {"male": ValidationRules(value_type=ValueType.INTEGER_ZERO_OR_POSITIVE)}

    errors = validate_object({"male": "-2"}, None, rules)

    assert errors == {"male": "Value must be zero or a positive integer"}


def test_parse_custom_logic_tolerates_garbage() -> None:
    assert parse_custom_logic("{not json") is None
    assert parse_custom_logic("") is None
    assert parse_custom_logic({"other": 1}).validations == []


def test_serialize_value() -> None:
    assert serialize_value(None) == ""
    assert serialize_value(True) == "true"
    assert serialize_value(42) == "42"
    assert serialize_value({"a": True, "b": False, "c": True}, multi_select=True) == "a,c"
    assert serialize_value({"b": 1, "a": 2}) == '{"a": 2, "b": 1}'

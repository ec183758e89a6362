import pytest

from backend.errors import MissingRequiredSetting, SettingsValidationError, ValidationError
from backend.providers.base import SettingItem
from backend.providers.settings_parser import parse_settings

SCHEMA = [
    SettingItem(key="apiKey", kind="secret", required=True),
    SettingItem(key="baseURL", kind="url", default_value="https://api.example.com/v1"),
    SettingItem(key="steps", kind="number", min=1, max=50, default_value=25),
    SettingItem(key="hd", kind="boolean"),
    SettingItem(key="style", kind="string", options=("vivid", "natural")),
]


def test_missing_required_key_fails():
    with pytest.raises(MissingRequiredSetting) as exc:
        parse_settings([SettingItem(key="apiKey", kind="secret", required=True)], {})
    assert exc.value.key == "apiKey"
    assert "apiKey" in exc.value.message


@pytest.mark.parametrize("value", ["", None, "   "])
def test_blank_required_value_fails(value):
    with pytest.raises(ValidationError):
        parse_settings([SettingItem(key="apiKey", kind="secret", required=True)], {"apiKey": value})


def test_defaults_and_omitted_keys():
    result = parse_settings(SCHEMA, {"apiKey": "  sk-123  "})
    assert result == {
        "apiKey": "sk-123",
        "baseURL": "https://api.example.com/v1",
        "steps": 25,
    }
    assert "hd" not in result
    assert "style" not in result


def test_unknown_keys_are_ignored():
    result = parse_settings(SCHEMA, {"apiKey": "k", "somethingElse": 1})
    assert "somethingElse" not in result


@pytest.mark.parametrize("raw,expected", [("12", 12), (" 7.5 ", 7.5), (3, 3), (1.0, 1.0)])
def test_number_coercion(raw, expected):
    assert parse_settings(SCHEMA, {"apiKey": "k", "steps": raw})["steps"] == expected


@pytest.mark.parametrize("raw", ["abc", "nan", float("nan"), True])
def test_number_rejects_non_numbers(raw):
    with pytest.raises(SettingsValidationError):
        parse_settings(SCHEMA, {"apiKey": "k", "steps": raw})


def test_number_range_error_carries_value():
    with pytest.raises(SettingsValidationError) as exc:
        parse_settings(SCHEMA, {"apiKey": "k", "steps": "99"})
    assert "99" in exc.value.message
    assert exc.value.key == "steps"


@pytest.mark.parametrize(
    "raw,expected",
    [(True, True), (False, False), ("TRUE", True), ("yes", True), ("1", True), ("No", False), ("0", False)],
)
def test_boolean_coercion(raw, expected):
    assert parse_settings(SCHEMA, {"apiKey": "k", "hd": raw})["hd"] is expected


@pytest.mark.parametrize("raw", ["maybe", 1, 0.0])
def test_boolean_rejects_other_values(raw):
    with pytest.raises(SettingsValidationError):
        parse_settings(SCHEMA, {"apiKey": "k", "hd": raw})


def test_string_must_be_string():
    with pytest.raises(SettingsValidationError):
        parse_settings(SCHEMA, {"apiKey": 123})


def test_options_are_enforced():
    assert parse_settings(SCHEMA, {"apiKey": "k", "style": "vivid"})["style"] == "vivid"
    with pytest.raises(SettingsValidationError):
        parse_settings(SCHEMA, {"apiKey": "k", "style": "cartoon"})


@pytest.mark.parametrize(
    "values",
    [
        {"apiKey": " k "},
        {"apiKey": "k", "steps": "10", "hd": "yes"},
        {"apiKey": "k", "baseURL": "   "},
        {"apiKey": "k", "style": " natural ", "extra": "x"},
    ],
)
def test_parse_is_idempotent(values):
    once = parse_settings(SCHEMA, values)
    assert parse_settings(SCHEMA, once) == once

# backend/providers/settings_parser.py

import math
from typing import Any, List, Mapping

from ..errors import MissingRequiredSetting, SettingsValidationError
from .base import ProviderSettings, SettingItem, SettingValue

TRUE_STRINGS = ("true", "1", "yes")
FALSE_STRINGS = ("false", "0", "no")


def _is_blank(value: Any) -> bool:
    return value is None or value == ""


def _parse_text(item: SettingItem, value: Any) -> str:
    if not isinstance(value, str):
        raise SettingsValidationError(
            item.key, f"Setting '{item.key}' must be a string, got {type(value).__name__}"
        )
    trimmed = value.strip()
    if item.required and not trimmed:
        raise SettingsValidationError(item.key, f"Setting '{item.key}' cannot be empty")
    if item.options is not None and trimmed and trimmed not in item.options:
        raise SettingsValidationError(
            item.key,
            f"Setting '{item.key}' must be one of {list(item.options)}, got '{trimmed}'",
        )
    return trimmed


def _parse_number(item: SettingItem, value: Any) -> SettingValue:
    if isinstance(value, bool):
        raise SettingsValidationError(
            item.key, f"Setting '{item.key}' must be a valid number, got '{value}'"
        )
    if isinstance(value, (int, float)):
        number = value
    elif isinstance(value, str):
        text = value.strip()
        try:
            number = int(text)
        except ValueError:
            try:
                number = float(text)
            except ValueError:
                raise SettingsValidationError(
                    item.key, f"Setting '{item.key}' must be a valid number, got '{value}'"
                ) from None
    else:
        raise SettingsValidationError(
            item.key, f"Setting '{item.key}' must be a valid number, got '{value}'"
        )

    if isinstance(number, float) and math.isnan(number):
        raise SettingsValidationError(
            item.key, f"Setting '{item.key}' must be a valid number, got '{value}'"
        )
    if item.min is not None and number < item.min:
        raise SettingsValidationError(
            item.key, f"Setting '{item.key}' must be at least {item.min}, got {number}"
        )
    if item.max is not None and number > item.max:
        raise SettingsValidationError(
            item.key, f"Setting '{item.key}' must be at most {item.max}, got {number}"
        )
    return number


def _parse_boolean(item: SettingItem, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in TRUE_STRINGS:
            return True
        if lowered in FALSE_STRINGS:
            return False
        raise SettingsValidationError(
            item.key, f"Setting '{item.key}' must be a boolean value, got '{value}'"
        )
    raise SettingsValidationError(
        item.key, f"Setting '{item.key}' must be a boolean, got {type(value).__name__}"
    )


def parse_settings(schema: List[SettingItem], values: Mapping[str, Any]) -> ProviderSettings:
    """
    Validate + ép kiểu settings theo schema của provider.

    - Key bắt buộc mà thiếu / rỗng / None -> MissingRequiredSetting.
    - Key không bắt buộc mà thiếu -> dùng defaultValue, không có default thì bỏ qua key.
    - Key lạ trong input bị bỏ qua.

    Chuỗi rỗng sau khi trim được coi như "thiếu", nên parse hai lần cho cùng kết quả.
    """
    result: ProviderSettings = {}

    for item in schema:
        value = values.get(item.key)

        if item.required and _is_blank(value):
            raise MissingRequiredSetting(item.key)

        parsed = None
        if not _is_blank(value):
            if item.kind in ("string", "secret", "url"):
                parsed = _parse_text(item, value) or None
            elif item.kind == "number":
                parsed = _parse_number(item, value)
            elif item.kind == "boolean":
                parsed = _parse_boolean(item, value)
            else:
                raise SettingsValidationError(item.key, f"Unknown setting type: {item.kind}")

        if parsed is not None:
            result[item.key] = parsed
        elif item.default_value is not None:
            result[item.key] = item.default_value

    return result

# backend/providers/base.py

from dataclasses import dataclass
from typing import Any, Dict, List, Literal, Mapping, Optional, Protocol, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

SettingKind = Literal["string", "secret", "url", "number", "boolean"]
SettingValue = Union[str, int, float, bool]
ProviderSettings = Dict[str, SettingValue]


@dataclass(frozen=True)
class SettingItem:
    key: str
    kind: SettingKind
    required: bool = False
    default_value: Optional[SettingValue] = None
    min: Optional[float] = None
    max: Optional[float] = None
    options: Optional[Tuple[str, ...]] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"key": self.key, "kind": self.kind, "required": self.required}
        if self.default_value is not None:
            data["defaultValue"] = self.default_value
        if self.min is not None:
            data["min"] = self.min
        if self.max is not None:
            data["max"] = self.max
        if self.options is not None:
            data["options"] = list(self.options)
        return data


@dataclass(frozen=True)
class AiModel:
    id: str
    name: str
    supports_image_edit: bool = False
    enabled_by_default: bool = True


class GenerateRequest(BaseModel):
    """
    Request chung gửi tới mọi provider (và qua relay).
    images: base64 thuần, không có prefix data URL.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    provider_id: str
    model_id: str
    prompt: str
    n: Optional[int] = Field(default=1, ge=1)
    images: Optional[List[str]] = None


class GenerateResult(BaseModel):
    images: List[str] = Field(default_factory=list)


class ImageProvider(Protocol):
    id: str
    name: str
    models: Tuple[AiModel, ...]
    supports_direct_call: bool
    enabled_by_default: bool

    def settings_schema(self) -> List[SettingItem]:
        ...

    async def generate(
        self, request: GenerateRequest, settings: Mapping[str, SettingValue]
    ) -> GenerateResult:
        ...


def describe_provider(provider: ImageProvider) -> Dict[str, Any]:
    return {
        "id": provider.id,
        "name": provider.name,
        "supportsDirectCall": provider.supports_direct_call,
        "enabledByDefault": provider.enabled_by_default,
        "settings": [item.to_dict() for item in provider.settings_schema()],
        "models": [
            {
                "id": m.id,
                "name": m.name,
                "supportsImageEdit": m.supports_image_edit,
                "enabledByDefault": m.enabled_by_default,
            }
            for m in provider.models
        ],
    }


def default_settings(schema: List[SettingItem]) -> ProviderSettings:
    return {item.key: item.default_value for item in schema if item.default_value is not None}

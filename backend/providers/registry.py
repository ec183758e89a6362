# backend/providers/registry.py

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

import httpx

from config.settings import Settings

from ..errors import GenerationDispatchError, NotFound, ProviderNotFound
from .base import (
    AiModel,
    GenerateRequest,
    GenerateResult,
    ImageProvider,
    SettingItem,
    SettingValue,
    describe_provider,
)
from .cloudflare import CloudflareProvider
from .openai import OpenAIProvider

logger = logging.getLogger(__name__)

RELAY_PATH = "/api/ai/no-auth/{provider_id}/generate"


class DispatchingProvider:
    """
    Bọc provider gốc, chọn cách gọi generate():
    - process tin cậy (server) hoặc provider cho phép gọi trực tiếp -> gọi thẳng API
    - ngược lại -> gửi {request, settings} qua relay của backend
    """

    def __init__(
        self,
        provider: ImageProvider,
        trusted: bool,
        relay_url: str,
        timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.raw = provider
        self.trusted = trusted
        self.relay_url = relay_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    @property
    def id(self) -> str:
        return self.raw.id

    @property
    def name(self) -> str:
        return self.raw.name

    @property
    def models(self) -> Tuple[AiModel, ...]:
        return self.raw.models

    @property
    def supports_direct_call(self) -> bool:
        return self.raw.supports_direct_call

    @property
    def enabled_by_default(self) -> bool:
        return self.raw.enabled_by_default

    def settings_schema(self) -> List[SettingItem]:
        return self.raw.settings_schema()

    def describe(self) -> Dict[str, Any]:
        return describe_provider(self.raw)

    def get_model(self, model_id: str) -> AiModel:
        for model in self.raw.models:
            if model.id == model_id:
                return model
        raise NotFound(f"Model {model_id} not found for provider {self.id}")

    def uses_relay(self) -> bool:
        return not self.trusted and not self.raw.supports_direct_call

    async def generate(
        self, request: GenerateRequest, settings: Mapping[str, SettingValue]
    ) -> GenerateResult:
        if not self.uses_relay():
            return await self.raw.generate(request, settings)
        return await self._relay(request, settings)

    async def _relay(
        self, request: GenerateRequest, settings: Mapping[str, SettingValue]
    ) -> GenerateResult:
        url = self.relay_url + RELAY_PATH.format(provider_id=self.id)
        payload = {
            "request": request.model_dump(by_alias=True, exclude_none=True),
            "settings": dict(settings),
        }
        logger.info("[Relay] Forwarding generation for provider %s", self.id)

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                r = await client.post(url, json=payload)
        except httpx.HTTPError as e:
            raise GenerationDispatchError(
                self.id, f"Failed to generate with provider {self.id}: {e}"
            ) from e

        try:
            body = r.json()
        except ValueError:
            body = None

        if not isinstance(body, dict):
            reason = r.reason_phrase if r.status_code >= 400 else "invalid relay response"
            raise GenerationDispatchError(
                self.id, f"Failed to generate with provider {self.id}: {reason}"
            )

        code = body.get("code")
        if r.status_code >= 400 or code != "ok":
            raise GenerationDispatchError(
                self.id,
                body.get("message") or f"Failed to generate with provider {self.id}",
                code=code if code and code != "ok" else None,
            )
        return GenerateResult.model_validate(body.get("data") or {})


class ProviderRegistry:
    def __init__(self, providers: Iterable[DispatchingProvider]):
        self._providers: List[DispatchingProvider] = list(providers)
        ids = [p.id for p in self._providers]
        if len(set(ids)) != len(ids):
            raise ValueError(f"Duplicate provider ids: {ids}")

    def providers(self) -> List[DispatchingProvider]:
        return list(self._providers)

    def resolve(self, provider_id: str) -> DispatchingProvider:
        for provider in self._providers:
            if provider.id == provider_id:
                return provider
        raise ProviderNotFound(provider_id)

    def default_provider(self) -> DispatchingProvider:
        if not self._providers:
            raise ProviderNotFound("<default>")
        return self._providers[0]


def build_registry(
    config: Settings,
    trusted: Optional[bool] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ProviderRegistry:
    """
    Thứ tự đăng ký quyết định provider mặc định (cloudflare trước).
    """
    if trusted is None:
        trusted = config.TRUSTED_RUNTIME

    raw: List[ImageProvider] = [
        CloudflareProvider(config, transport=transport),
        OpenAIProvider(
            http_client=httpx.AsyncClient(transport=transport) if transport else None,
            timeout=config.REQUEST_TIMEOUT,
        ),
    ]
    return ProviderRegistry(
        DispatchingProvider(
            p,
            trusted=trusted,
            relay_url=config.BACKEND_URL,
            timeout=config.REQUEST_TIMEOUT,
            transport=transport,
        )
        for p in raw
    )

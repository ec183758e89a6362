# backend/providers/cloudflare.py

import base64
import logging
from typing import List, Mapping, Optional, Tuple, TypedDict

import httpx

from config.settings import Settings

from .base import AiModel, GenerateRequest, GenerateResult, SettingItem, SettingValue
from .settings_parser import parse_settings

logger = logging.getLogger(__name__)

CLOUDFLARE_API_BASE = "https://api.cloudflare.com/client/v4"

SETTINGS_SCHEMA: List[SettingItem] = [
    SettingItem(key="accountId", kind="secret", required=True),
    SettingItem(key="apiKey", kind="secret", required=True),
]

# Deployment đã có sẵn credential Cloudflare -> user không cần nhập
BUILTIN_SETTINGS_SCHEMA: List[SettingItem] = [
    SettingItem(key="builtin", kind="boolean", required=True, default_value=True),
    SettingItem(key="accountId", kind="secret", required=False),
    SettingItem(key="apiKey", kind="secret", required=False),
]


class CloudflareSettings(TypedDict, total=False):
    builtin: bool
    accountId: str
    apiKey: str


MODELS: Tuple[AiModel, ...] = (
    AiModel(id="@cf/black-forest-labs/flux-1-schnell", name="FLUX.1-schnell"),
    AiModel(id="@cf/bytedance/stable-diffusion-xl-lightning", name="Stable Diffusion XL Lightning"),
    AiModel(id="@cf/lykon/dreamshaper-8-lcm", name="DreamShaper 8 LCM"),
    AiModel(
        id="@cf/runwayml/stable-diffusion-v1-5-img2img",
        name="Stable Diffusion v1.5 Img2Img",
        supports_image_edit=True,
    ),
    AiModel(id="@cf/runwayml/stable-diffusion-v1-5-inpainting", name="Stable Diffusion v1.5 Inpainting"),
    AiModel(id="@cf/stabilityai/stable-diffusion-xl-base-1.0", name="Stable Diffusion XL Base 1.0"),
)


class CloudflareProvider:
    id = "cloudflare"
    name = "Cloudflare AI"
    models = MODELS
    supports_direct_call = False
    enabled_by_default = True

    def __init__(self, config: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._config = config
        self._transport = transport

    def settings_schema(self) -> List[SettingItem]:
        if self._config.cloudflare_builtin_available:
            return BUILTIN_SETTINGS_SCHEMA
        return SETTINGS_SCHEMA

    def parse_settings(self, settings: Mapping[str, SettingValue]) -> CloudflareSettings:
        return parse_settings(self.settings_schema(), settings)  # type: ignore[return-value]

    def _credentials(self, parsed: CloudflareSettings) -> Tuple[str, str]:
        if parsed.get("builtin") is True and self._config.cloudflare_builtin_available:
            return self._config.CLOUDFLARE_ACCOUNT_ID, self._config.CLOUDFLARE_API_TOKEN  # type: ignore[return-value]

        account_id = parsed.get("accountId")
        api_key = parsed.get("apiKey")
        if not account_id or not api_key:
            raise RuntimeError("Cloudflare accountId and apiKey are required")
        return account_id, api_key

    async def generate(
        self, request: GenerateRequest, settings: Mapping[str, SettingValue]
    ) -> GenerateResult:
        parsed = self.parse_settings(settings)
        account_id, api_key = self._credentials(parsed)

        payload = {"prompt": request.prompt}
        if request.images:
            payload["image_b64"] = request.images[0]

        url = f"{CLOUDFLARE_API_BASE}/accounts/{account_id}/ai/run/{request.model_id}"
        logger.info("[Cloudflare] Running model %s", request.model_id)

        async with httpx.AsyncClient(
            timeout=self._config.REQUEST_TIMEOUT, transport=self._transport
        ) as client:
            r = await client.post(url, json=payload, headers={"Authorization": f"Bearer {api_key}"})

        if r.status_code >= 400:
            raise RuntimeError(
                f"Cloudflare API error: {r.status_code} {r.reason_phrase} - {r.text[:500]}"
            )

        content_type = r.headers.get("Content-Type", "")
        if "image/png" in content_type:
            return GenerateResult(images=[base64.b64encode(r.content).decode("ascii")])

        data = r.json()
        image = ((data or {}).get("result") or {}).get("image")
        return GenerateResult(images=[image] if image else [])

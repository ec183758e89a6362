# backend/providers/openai.py

import asyncio
import base64
import logging
from typing import List, Mapping, Optional, Tuple, TypedDict

import httpx
from openai import AsyncOpenAI

from .base import AiModel, GenerateRequest, GenerateResult, SettingItem, SettingValue
from .settings_parser import parse_settings

logger = logging.getLogger(__name__)

SETTINGS_SCHEMA: List[SettingItem] = [
    SettingItem(key="apiKey", kind="secret", required=True),
    SettingItem(key="baseURL", kind="url", required=False, default_value="https://api.openai.com/v1"),
    SettingItem(key="model", kind="string", required=False, default_value="gpt-image-1"),
]


class OpenAISettings(TypedDict, total=False):
    apiKey: str
    baseURL: str
    model: str


MODELS: Tuple[AiModel, ...] = (
    AiModel(id="gpt-image-1", name="GPT Image 1", supports_image_edit=True),
)


def _image_file(b64: str, index: int):
    return (f"image_{index}.png", base64.b64decode(b64), "image/png")


async def fetch_url_to_base64(client: httpx.AsyncClient, url: str) -> str:
    r = await client.get(url)
    if r.status_code >= 400:
        raise RuntimeError(f"Failed to fetch URL: {url}, status: {r.status_code}")
    return base64.b64encode(r.content).decode("ascii")


class OpenAIProvider:
    id = "openai"
    name = "OpenAI"
    models = MODELS
    supports_direct_call = True
    enabled_by_default = True

    def __init__(self, http_client: Optional[httpx.AsyncClient] = None, timeout: float = 120.0):
        self._http_client = http_client
        self._timeout = timeout

    def settings_schema(self) -> List[SettingItem]:
        return SETTINGS_SCHEMA

    def parse_settings(self, settings: Mapping[str, SettingValue]) -> OpenAISettings:
        return parse_settings(SETTINGS_SCHEMA, settings)  # type: ignore[return-value]

    async def generate(
        self, request: GenerateRequest, settings: Mapping[str, SettingValue]
    ) -> GenerateResult:
        parsed = self.parse_settings(settings)

        client = AsyncOpenAI(
            api_key=parsed["apiKey"],
            base_url=parsed.get("baseURL"),
            http_client=self._http_client,
            timeout=self._timeout,
        )
        n = request.n or 1

        if not request.images:
            result = await client.images.generate(model=request.model_id, prompt=request.prompt, n=n)
        else:
            files = [_image_file(img, i) for i, img in enumerate(request.images)]
            result = await client.images.edit(
                model=request.model_id,
                image=files if len(files) > 1 else files[0],
                prompt=request.prompt,
                n=n,
            )

        images: List[str] = []
        urls: List[str] = []
        for item in result.data or []:
            if item.b64_json:
                images.append(item.b64_json)
            elif item.url:
                urls.append(item.url)

        if urls:
            async with httpx.AsyncClient(timeout=self._timeout) as http:
                fetched = await asyncio.gather(
                    *(fetch_url_to_base64(http, u) for u in urls), return_exceptions=True
                )
            for url, value in zip(urls, fetched):
                if isinstance(value, Exception):
                    logger.error("[OpenAI] Image fetch error for %s: %s", url, value)
                    continue
                images.append(value)

        return GenerateResult(images=images)

import base64
import json

import httpx
import pytest

from backend.errors import MissingRequiredSetting
from backend.providers.base import GenerateRequest
from backend.providers.cloudflare import CloudflareProvider
from backend.providers.openai import OpenAIProvider
from config.settings import Settings

from conftest import PNG_B64

FLUX = "@cf/black-forest-labs/flux-1-schnell"
IMG2IMG = "@cf/runwayml/stable-diffusion-v1-5-img2img"


def cf_request(model_id=FLUX, images=None):
    return GenerateRequest(provider_id="cloudflare", model_id=model_id, prompt="a red fox", images=images)


def test_cloudflare_schema_depends_on_deployment():
    plain = CloudflareProvider(Settings())
    assert [(i.key, i.required) for i in plain.settings_schema()] == [
        ("accountId", True),
        ("apiKey", True),
    ]

    builtin = CloudflareProvider(
        Settings(PROVIDER_CLOUDFLARE_BUILTIN=True, CLOUDFLARE_ACCOUNT_ID="acc", CLOUDFLARE_API_TOKEN="tok")
    )
    schema = builtin.settings_schema()
    assert schema[0].key == "builtin"
    assert schema[0].default_value is True
    assert not any(i.required for i in schema[1:])


@pytest.mark.asyncio
async def test_cloudflare_png_response_is_base64_encoded():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, content=base64.b64decode(PNG_B64), headers={"Content-Type": "image/png"})

    provider = CloudflareProvider(Settings(), transport=httpx.MockTransport(handler))
    result = await provider.generate(cf_request(), {"accountId": "acc", "apiKey": "key"})

    assert result.images == [PNG_B64]
    assert seen["url"] == f"https://api.cloudflare.com/client/v4/accounts/acc/ai/run/{FLUX}"
    assert seen["auth"] == "Bearer key"
    assert seen["body"] == {"prompt": "a red fox"}


@pytest.mark.asyncio
async def test_cloudflare_json_response_and_reference_image():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"result": {"image": "b64data"}, "success": True})

    provider = CloudflareProvider(Settings(), transport=httpx.MockTransport(handler))
    result = await provider.generate(
        cf_request(IMG2IMG, images=["ref"]), {"accountId": "acc", "apiKey": "key"}
    )
    assert result.images == ["b64data"]
    assert seen["body"]["image_b64"] == "ref"


@pytest.mark.asyncio
async def test_cloudflare_builtin_uses_deployment_credentials():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        return httpx.Response(200, json={"result": {"image": "x"}})

    config = Settings(PROVIDER_CLOUDFLARE_BUILTIN=True, CLOUDFLARE_ACCOUNT_ID="acc", CLOUDFLARE_API_TOKEN="tok")
    provider = CloudflareProvider(config, transport=httpx.MockTransport(handler))
    await provider.generate(cf_request(), {"builtin": True})

    assert "/accounts/acc/" in seen["url"]
    assert seen["auth"] == "Bearer tok"


@pytest.mark.asyncio
async def test_cloudflare_error_status_raises():
    transport = httpx.MockTransport(lambda r: httpx.Response(401, text="unauthorized"))
    provider = CloudflareProvider(Settings(), transport=transport)
    with pytest.raises(RuntimeError, match="Cloudflare API error: 401"):
        await provider.generate(cf_request(), {"accountId": "acc", "apiKey": "bad"})


@pytest.mark.asyncio
async def test_cloudflare_missing_credentials():
    provider = CloudflareProvider(Settings())
    with pytest.raises(MissingRequiredSetting):
        await provider.generate(cf_request(), {})


@pytest.mark.asyncio
async def test_openai_generate_uses_b64_json():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"created": 1, "data": [{"b64_json": PNG_B64}]})

    provider = OpenAIProvider(http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    result = await provider.generate(
        GenerateRequest(provider_id="openai", model_id="gpt-image-1", prompt="a red fox"),
        {"apiKey": "sk-test", "baseURL": "https://api.example.com/v1"},
    )

    assert result.images == [PNG_B64]
    assert seen["path"] == "/v1/images/generations"
    assert seen["auth"] == "Bearer sk-test"
    assert seen["body"]["model"] == "gpt-image-1"
    assert seen["body"]["n"] == 1


@pytest.mark.asyncio
async def test_openai_edit_when_reference_images_given():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        return httpx.Response(200, json={"created": 1, "data": [{"b64_json": "edited"}]})

    provider = OpenAIProvider(http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    result = await provider.generate(
        GenerateRequest(provider_id="openai", model_id="gpt-image-1", prompt="make it blue", images=[PNG_B64]),
        {"apiKey": "sk-test", "baseURL": "https://api.example.com/v1"},
    )

    assert result.images == ["edited"]
    assert seen["path"] == "/v1/images/edits"

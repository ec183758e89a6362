"""Shared fixtures: in-memory Redis, temp file storage, a scriptable fake provider."""

from typing import List, Optional

import fakeredis
import pytest

from backend.context import build_context
from backend.providers.base import AiModel, GenerateResult, SettingItem
from backend.providers.registry import DispatchingProvider, ProviderRegistry
from config.settings import Settings

# 1x1 PNG
PNG_B64 = "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAQAAAC1HAwCAAAAC0lEQVR42mNkYAAAAAYAAjCB0C8AAAAASUVORK5CYII="


class FakeProvider:
    id = "fake"
    name = "Fake Images"
    supports_direct_call = False
    enabled_by_default = True
    models = (
        AiModel(id="fake-gen", name="Fake Gen"),
        AiModel(id="fake-edit", name="Fake Edit", supports_image_edit=True),
    )

    def __init__(self, images: Optional[List[str]] = None, error: Optional[Exception] = None):
        self.images = [PNG_B64] if images is None else images
        self.error = error
        self.calls = []

    def settings_schema(self):
        return [
            SettingItem(key="apiKey", kind="secret", required=True),
            SettingItem(key="quality", kind="string", default_value="standard"),
        ]

    async def generate(self, request, settings):
        self.calls.append((request, dict(settings)))
        if self.error is not None:
            raise self.error
        return GenerateResult(images=list(self.images))


@pytest.fixture
def settings(tmp_path):
    return Settings(
        STORAGE_DIR=str(tmp_path / "files"),
        BACKEND_URL="http://testserver",
        REQUEST_TIMEOUT=5.0,
    )


@pytest.fixture
def rds():
    return fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)


@pytest.fixture
def fake_provider():
    return FakeProvider()


@pytest.fixture
def ctx(settings, rds, fake_provider):
    registry = ProviderRegistry(
        [DispatchingProvider(fake_provider, trusted=True, relay_url=settings.BACKEND_URL)]
    )
    return build_context(settings, rds=rds, registry=registry)

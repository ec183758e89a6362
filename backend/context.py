# backend/context.py

from dataclasses import dataclass
from typing import Optional

import httpx
import redis.asyncio as redis

from config.settings import Settings

from .providers.registry import ProviderRegistry, build_registry
from .storage import FileStorage
from .store import (
    ChatStore,
    GenerationStore,
    JobQueue,
    MessageStore,
    ProviderSettingsStore,
    get_redis_client,
)


@dataclass
class ServiceContext:
    """
    Các dependency dùng chung, tạo một lần lúc khởi động rồi truyền vào từng component.
    """

    settings: Settings
    redis: redis.Redis
    chats: ChatStore
    messages: MessageStore
    generations: GenerationStore
    provider_settings: ProviderSettingsStore
    jobs: JobQueue
    files: FileStorage
    registry: ProviderRegistry

    async def close(self) -> None:
        await self.redis.aclose()


def build_context(
    settings: Settings,
    rds: Optional[redis.Redis] = None,
    registry: Optional[ProviderRegistry] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ServiceContext:
    if rds is None:
        rds = get_redis_client(settings.REDIS_URL)
    if registry is None:
        registry = build_registry(settings, transport=transport)

    return ServiceContext(
        settings=settings,
        redis=rds,
        chats=ChatStore(rds),
        messages=MessageStore(rds),
        generations=GenerationStore(rds),
        provider_settings=ProviderSettingsStore(rds),
        jobs=JobQueue(rds),
        files=FileStorage(settings.STORAGE_DIR, settings.BACKEND_URL),
        registry=registry,
    )

# backend/store.py

import json
import logging
from typing import Any, Dict, List, Optional

import redis.asyncio as redis
from redis.exceptions import WatchError

from .errors import NotFound
from .model import Chat, Generation, GenerationStatus, Message
from .utils import gen_id, get_timestamp_ms, now_iso

logger = logging.getLogger(__name__)

CHAT_KEY_PREFIX = "chat:"                  # chat:{chat_id}
USER_CHATS_PREFIX = "user_chats:"          # user_chats:{user_id} (zset theo thời gian tạo)
CHAT_MESSAGES_PREFIX = "chat_messages:"    # chat_messages:{chat_id} (list message id)
MESSAGE_KEY_PREFIX = "message:"            # message:{message_id}
GENERATION_KEY_PREFIX = "generation:"      # generation:{generation_id}
PROVIDER_SETTINGS_PREFIX = "provider_settings:"  # provider_settings:{user_id}:{provider_id}
QUEUE_KEY = "generation_jobs"

# pending -> generating -> completed | failed, pending -> failed
ALLOWED_TRANSITIONS: Dict[str, tuple] = {
    "pending": ("generating", "failed"),
    "generating": ("completed", "failed"),
    "completed": (),
    "failed": (),
}


def get_redis_client(url: str) -> redis.Redis:
    return redis.from_url(url, decode_responses=True)


class ChatStore:
    def __init__(self, rds: redis.Redis):
        self._rds = rds

    async def create(self, user_id: str, title: str, provider: str, model: str) -> Chat:
        now = now_iso()
        chat = Chat(
            id=gen_id(),
            title=title,
            user_id=user_id,
            provider=provider,
            model=model,
            created_at=now,
            updated_at=now,
        )
        await self._save(chat)
        await self._rds.zadd(f"{USER_CHATS_PREFIX}{user_id}", {chat.id: get_timestamp_ms()})
        return chat

    async def get(self, chat_id: str) -> Optional[Chat]:
        raw = await self._rds.get(f"{CHAT_KEY_PREFIX}{chat_id}")
        if not raw:
            return None
        return Chat.model_validate_json(raw)

    async def get_owned(self, chat_id: str, user_id: str) -> Chat:
        chat = await self.get(chat_id)
        if chat is None or chat.deleted or chat.user_id != user_id:
            raise NotFound("Chat not found")
        return chat

    async def list_for_user(self, user_id: str) -> List[Chat]:
        ids = await self._rds.zrevrange(f"{USER_CHATS_PREFIX}{user_id}", 0, -1)
        if not ids:
            return []
        raws = await self._rds.mget([f"{CHAT_KEY_PREFIX}{i}" for i in ids])
        chats = [Chat.model_validate_json(r) for r in raws if r]
        return [c for c in chats if not c.deleted]

    async def update(self, chat: Chat, **changes: Any) -> Chat:
        updated = chat.model_copy(update={**changes, "updated_at": now_iso()})
        await self._save(updated)
        return updated

    async def _save(self, chat: Chat) -> None:
        await self._rds.set(f"{CHAT_KEY_PREFIX}{chat.id}", chat.model_dump_json(by_alias=True))


class MessageStore:
    def __init__(self, rds: redis.Redis):
        self._rds = rds

    async def add(
        self,
        user_id: str,
        chat_id: str,
        content: str,
        role: str,
        type: str,
        generation_id: Optional[str] = None,
    ) -> Message:
        now = now_iso()
        message = Message(
            id=gen_id(),
            user_id=user_id,
            chat_id=chat_id,
            content=content,
            role=role,
            type=type,
            generation_id=generation_id,
            created_at=now,
            updated_at=now,
        )
        async with self._rds.pipeline(transaction=True) as pipe:
            pipe.set(
                f"{MESSAGE_KEY_PREFIX}{message.id}",
                message.model_dump_json(by_alias=True, exclude={"generation"}),
            )
            pipe.rpush(f"{CHAT_MESSAGES_PREFIX}{chat_id}", message.id)
            await pipe.execute()
        return message

    async def list_for_chat(self, chat_id: str) -> List[Message]:
        ids = await self._rds.lrange(f"{CHAT_MESSAGES_PREFIX}{chat_id}", 0, -1)
        if not ids:
            return []
        raws = await self._rds.mget([f"{MESSAGE_KEY_PREFIX}{i}" for i in ids])
        return [Message.model_validate_json(r) for r in raws if r]


class GenerationStore:
    """
    Generation record lưu dạng JSON ở generation:{id}.
    Mọi thay đổi status đi qua transition() (WATCH/MULTI), không ghi đè trạng thái cuối.
    """

    def __init__(self, rds: redis.Redis):
        self._rds = rds

    async def create(
        self,
        user_id: str,
        prompt: str,
        provider: str,
        model: str,
        parameters: Optional[Dict[str, Any]] = None,
    ) -> Generation:
        now = now_iso()
        generation = Generation(
            id=gen_id(),
            user_id=user_id,
            prompt=prompt,
            parameters=parameters,
            provider=provider,
            model=model,
            status="pending",
            created_at=now,
            updated_at=now,
        )
        await self._rds.set(self._key(generation.id), self._dump(generation))
        return generation

    async def get(self, generation_id: str) -> Optional[Generation]:
        raw = await self._rds.get(self._key(generation_id))
        if not raw:
            return None
        return Generation.model_validate_json(raw)

    async def get_many(self, generation_ids: List[str]) -> Dict[str, Generation]:
        if not generation_ids:
            return {}
        raws = await self._rds.mget([self._key(i) for i in generation_ids])
        result = {}
        for raw in raws:
            if raw:
                g = Generation.model_validate_json(raw)
                result[g.id] = g
        return result

    async def transition(
        self, generation_id: str, status: GenerationStatus, **changes: Any
    ) -> Optional[Generation]:
        """
        Chuyển trạng thái. Trả về record mới, hoặc None nếu không ghi gì
        (cùng trạng thái, hoặc chuyển không hợp lệ).
        """
        key = self._key(generation_id)
        async with self._rds.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(key)
                    raw = await pipe.get(key)
                    if not raw:
                        raise NotFound(f"Generation {generation_id} not found")
                    current = Generation.model_validate_json(raw)

                    if current.status == status:
                        return None
                    if status not in ALLOWED_TRANSITIONS[current.status]:
                        logger.warning(
                            "[GenerationStore] Rejected transition %s -> %s for %s",
                            current.status,
                            status,
                            generation_id,
                        )
                        return None

                    updated = current.model_copy(
                        update={**changes, "status": status, "updated_at": now_iso()}
                    )
                    pipe.multi()
                    pipe.set(key, self._dump(updated))
                    await pipe.execute()
                    return updated
                except WatchError:
                    continue

    @staticmethod
    def _key(generation_id: str) -> str:
        return f"{GENERATION_KEY_PREFIX}{generation_id}"

    @staticmethod
    def _dump(generation: Generation) -> str:
        return generation.model_dump_json(by_alias=True, exclude={"result_urls"})


class ProviderSettingsStore:
    def __init__(self, rds: redis.Redis):
        self._rds = rds

    async def get(self, user_id: str, provider_id: str) -> Optional[Dict[str, Any]]:
        raw = await self._rds.get(f"{PROVIDER_SETTINGS_PREFIX}{user_id}:{provider_id}")
        if not raw:
            return None
        return json.loads(raw)

    async def save(
        self, user_id: str, provider_id: str, settings: Dict[str, Any], enabled: bool = True
    ) -> None:
        await self._rds.set(
            f"{PROVIDER_SETTINGS_PREFIX}{user_id}:{provider_id}",
            json.dumps({"enabled": enabled, "settings": settings}),
        )


class JobQueue:
    """
    Hàng đợi job resolve generation (Redis list, LPUSH / BRPOP).
    """

    def __init__(self, rds: redis.Redis, key: str = QUEUE_KEY):
        self._rds = rds
        self.key = key

    async def enqueue(self, job_data: Dict[str, Any]) -> None:
        await self._rds.lpush(self.key, json.dumps(job_data))

    async def pop(self, timeout: float = 5) -> Optional[Dict[str, Any]]:
        item = await self._rds.brpop(self.key, timeout=timeout)
        if not item:
            return None
        _, job_json = item
        try:
            return json.loads(job_json)
        except ValueError:
            logger.error("[JobQueue] Invalid job JSON: %s", job_json)
            return None

    async def size(self) -> int:
        return await self._rds.llen(self.key)

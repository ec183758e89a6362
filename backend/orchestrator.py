# backend/orchestrator.py

import logging
import time
from typing import Any, Dict, List, Optional

from .context import ServiceContext
from .errors import ValidationError
from .model import CreateMessageRequest, Generation
from .providers.base import GenerateRequest, ProviderSettings
from .providers.registry import DispatchingProvider
from .utils import strip_data_url

logger = logging.getLogger(__name__)

NO_IMAGES_MESSAGE = "AI provider did not return any images"


class GenerationOrchestrator:
    """
    submit(): ghi message + generation (pending), đẩy job vào queue rồi trả về ngay.
    resolve(): chạy trong worker, gọi provider và chuyển trạng thái generation.
    """

    def __init__(self, ctx: ServiceContext):
        self.ctx = ctx

    async def submit(self, user_id: str, req: CreateMessageRequest) -> Dict[str, Any]:
        # Validate hết trước khi ghi bất cứ thứ gì
        provider = self.ctx.registry.resolve(req.provider)
        provider.get_model(req.model)
        if not req.content.strip():
            raise ValidationError("Prompt must not be empty")
        images = [strip_data_url(i) for i in req.images] if req.images else None

        chat = await self.ctx.chats.get_owned(req.chat_id, user_id)

        user_message = await self.ctx.messages.add(
            user_id=user_id,
            chat_id=chat.id,
            content=req.content,
            role="user",
            type=req.type,
        )
        await self.ctx.chats.update(chat)

        generation = await self.ctx.generations.create(
            user_id=user_id,
            prompt=req.content,
            provider=req.provider,
            model=req.model,
            parameters={"n": 1, "referenceImages": len(images) if images else 0},
        )

        assistant_message = await self.ctx.messages.add(
            user_id=user_id,
            chat_id=chat.id,
            content="",
            role="assistant",
            type="image",
            generation_id=generation.id,
        )

        job_data: Dict[str, Any] = {
            "generation_id": generation.id,
            "user_id": user_id,
            "chat_id": chat.id,
        }
        if images:
            job_data["images"] = images
        await self.ctx.jobs.enqueue(job_data)

        logger.info(
            "[Orchestrator] Queued generation %s (provider=%s, model=%s)",
            generation.id,
            req.provider,
            req.model,
        )

        return {
            "generation_id": generation.id,
            "user_message": user_message,
            "assistant_message": assistant_message.model_copy(update={"generation": generation}),
        }

    async def load_settings(self, user_id: str, provider: DispatchingProvider) -> ProviderSettings:
        stored = await self.ctx.provider_settings.get(user_id, provider.id)
        values: Dict[str, Any] = dict((stored or {}).get("settings") or {})

        settings: ProviderSettings = {}
        for item in provider.settings_schema():
            value = values.get(item.key)
            if value is None:
                value = item.default_value
            if value is not None:
                settings[item.key] = value
        return settings

    async def find_reference_image(
        self, chat_id: str, user_id: str, exclude_generation_id: str
    ) -> Optional[str]:
        """
        Ảnh gần nhất của assistant trong chat (đã có file) -> base64 của file cuối cùng.
        """
        messages = await self.ctx.messages.list_for_chat(chat_id)
        candidates = [
            m
            for m in messages
            if m.role == "assistant"
            and m.type == "image"
            and m.generation_id
            and m.generation_id != exclude_generation_id
        ]
        if not candidates:
            return None

        generations = await self.ctx.generations.get_many([m.generation_id for m in candidates])
        for message in reversed(candidates):
            generation = generations.get(message.generation_id)
            if generation and generation.file_ids:
                return await self.ctx.files.get_file_data(generation.file_ids[-1], user_id)
        return None

    async def resolve(
        self,
        generation_id: str,
        chat_id: str,
        images: Optional[List[str]] = None,
    ) -> Optional[Generation]:
        generations = self.ctx.generations

        generation = await generations.transition(generation_id, "generating")
        if generation is None:
            logger.warning(
                "[Orchestrator] Generation %s is no longer pending, skipping", generation_id
            )
            return await generations.get(generation_id)

        user_id = generation.user_id
        try:
            provider = self.ctx.registry.resolve(generation.provider)
            model = provider.get_model(generation.model)

            refer_images = images or None
            if not refer_images and model.supports_image_edit:
                last_image = await self.find_reference_image(chat_id, user_id, generation_id)
                if last_image:
                    refer_images = [last_image]

            settings = await self.load_settings(user_id, provider)

            started = time.monotonic()
            result = await provider.generate(
                GenerateRequest(
                    provider_id=generation.provider,
                    model_id=generation.model,
                    prompt=generation.prompt,
                    images=refer_images,
                ),
                settings,
            )

            if not result.images:
                logger.warning("[Orchestrator] Generation %s returned no images", generation_id)
                return await generations.transition(
                    generation_id, "failed", error_message=NO_IMAGES_MESSAGE
                )

            file_ids = await self.ctx.files.save_files(result.images, user_id)
            generation_time = int((time.monotonic() - started) * 1000)

            completed = await generations.transition(
                generation_id,
                "completed",
                file_ids=file_ids,
                generation_time=generation_time,
            )
            logger.info(
                "[Orchestrator] Generation %s completed with %d image(s) in %d ms",
                generation_id,
                len(file_ids),
                generation_time,
            )
            return completed

        except Exception as e:
            logger.exception("[Orchestrator] Generation %s failed", generation_id)
            message = getattr(e, "message", None) or str(e) or "Unknown error"
            return await generations.transition(generation_id, "failed", error_message=message)

# backend/app.py

import base64
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Header, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from config.settings import Settings

from .context import ServiceContext, build_context
from .errors import NotFound, ServiceError, ValidationError
from .model import (
    ChatDetail,
    ChatIdRequest,
    CreateChatRequest,
    CreateMessageRequest,
    Generation,
    GenerationStatusRequest,
    ProviderIdRequest,
    RelayRequest,
    UpdateChatRequest,
    UpdateProviderSettingsRequest,
    error,
    ok,
)
from .orchestrator import GenerationOrchestrator
from .providers.settings_parser import parse_settings
from .utils import configure_logging

logger = logging.getLogger(__name__)

LOCAL_USER_ID = "GUEST"

STATUS_BY_CODE = {
    "invalid_parameter": 400,
    "unauthorized": 401,
    "forbidden": 403,
    "not_found": 404,
}


def dump(obj: Any) -> Any:
    if isinstance(obj, list):
        return [dump(o) for o in obj]
    if hasattr(obj, "model_dump"):
        return obj.model_dump(mode="json", by_alias=True)
    return obj


def get_ctx(request: Request) -> ServiceContext:
    return request.app.state.ctx


def get_user_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    # Chưa có auth: không có header -> user local
    return x_user_id or LOCAL_USER_ID


class FileUrlResolver:
    """
    Resolve file id -> URL, mỗi id chỉ resolve một lần trong một request.
    """

    def __init__(self, ctx: ServiceContext, user_id: str):
        self._ctx = ctx
        self._user_id = user_id
        self._cache: Dict[str, str] = {}

    def url(self, file_id: str) -> str:
        if file_id not in self._cache:
            self._cache[file_id] = self._ctx.files.get_file_url(file_id, self._user_id)
        return self._cache[file_id]

    def attach(self, generation: Optional[Generation]) -> Optional[Generation]:
        if generation is None or not generation.file_ids:
            return generation
        return generation.model_copy(
            update={"result_urls": [self.url(f) for f in generation.file_ids]}
        )


def create_app(ctx: Optional[ServiceContext] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if ctx is not None:
            yield
            return
        settings = Settings.from_env()
        configure_logging(settings.LOG_LEVEL)
        app.state.ctx = build_context(settings)
        try:
            yield
        finally:
            await app.state.ctx.close()

    app = FastAPI(title="Image Chat Service", lifespan=lifespan)
    if ctx is not None:
        app.state.ctx = ctx

    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError):
        return JSONResponse(
            status_code=STATUS_BY_CODE.get(exc.code, 500), content=error(exc.code, exc.message)
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        details = "; ".join(
            f"{'.'.join(str(p) for p in e.get('loc', ()))}: {e.get('msg')}" for e in exc.errors()
        )
        return JSONResponse(status_code=400, content=error("invalid_parameter", details))

    @app.exception_handler(HTTPException)
    async def http_error_handler(request: Request, exc: HTTPException):
        code = {401: "unauthorized", 403: "forbidden", 404: "not_found"}.get(
            exc.status_code, "error"
        )
        return JSONResponse(status_code=exc.status_code, content=error(code, str(exc.detail)))

    # ---------- chats ----------

    @app.post("/api/chats/getChats")
    async def get_chats(
        ctx: ServiceContext = Depends(get_ctx), user_id: str = Depends(get_user_id)
    ):
        return ok(dump(await ctx.chats.list_for_user(user_id)))

    @app.post("/api/chats/createChat")
    async def create_chat(
        req: CreateChatRequest,
        ctx: ServiceContext = Depends(get_ctx),
        user_id: str = Depends(get_user_id),
    ):
        provider = ctx.registry.resolve(req.provider)
        provider.get_model(req.model)

        chat = await ctx.chats.create(user_id, req.title, req.provider, req.model)
        if req.content:
            await GenerationOrchestrator(ctx).submit(
                user_id,
                CreateMessageRequest(
                    chat_id=chat.id,
                    content=req.content,
                    type="text",
                    provider=req.provider,
                    model=req.model,
                    images=req.images,
                ),
            )
        return ok({"id": chat.id})

    @app.post("/api/chats/getChatById")
    async def get_chat_by_id(
        req: ChatIdRequest,
        ctx: ServiceContext = Depends(get_ctx),
        user_id: str = Depends(get_user_id),
    ):
        chat = await ctx.chats.get_owned(req.id, user_id)
        messages = await ctx.messages.list_for_chat(chat.id)
        generations = await ctx.generations.get_many(
            [m.generation_id for m in messages if m.generation_id]
        )

        resolver = FileUrlResolver(ctx, user_id)
        messages = [
            m.model_copy(
                update={
                    "generation": resolver.attach(generations.get(m.generation_id))
                    if m.generation_id
                    else None
                }
            )
            for m in messages
        ]
        detail = ChatDetail(**chat.model_dump(), messages=messages)
        return ok(dump(detail))

    @app.post("/api/chats/deleteChat")
    async def delete_chat(
        req: ChatIdRequest,
        ctx: ServiceContext = Depends(get_ctx),
        user_id: str = Depends(get_user_id),
    ):
        chat = await ctx.chats.get_owned(req.id, user_id)
        await ctx.chats.update(chat, deleted=True)
        return ok({"success": True})

    @app.post("/api/chats/updateChat")
    async def update_chat(
        req: UpdateChatRequest,
        ctx: ServiceContext = Depends(get_ctx),
        user_id: str = Depends(get_user_id),
    ):
        chat = await ctx.chats.get_owned(req.id, user_id)

        if req.provider and req.model:
            provider = ctx.registry.resolve(req.provider)
            try:
                provider.get_model(req.model)
            except NotFound as e:
                raise ValidationError("Model not found for the specified provider") from e

        changes = {}
        if req.provider and req.model:
            changes.update(provider=req.provider, model=req.model)
        if req.title:
            changes["title"] = req.title
        await ctx.chats.update(chat, **changes)
        return ok({"success": True})

    @app.post("/api/chats/createMessage")
    async def create_message(
        req: CreateMessageRequest,
        ctx: ServiceContext = Depends(get_ctx),
        user_id: str = Depends(get_user_id),
    ):
        submitted = await GenerationOrchestrator(ctx).submit(user_id, req)
        return ok({"messages": dump([submitted["user_message"], submitted["assistant_message"]])})

    @app.post("/api/chats/getGenerationStatus")
    async def get_generation_status(
        req: GenerationStatusRequest,
        ctx: ServiceContext = Depends(get_ctx),
        user_id: str = Depends(get_user_id),
    ):
        generation = await ctx.generations.get(req.generation_id)
        if generation is None or generation.user_id != user_id:
            return ok(None)
        return ok(dump(FileUrlResolver(ctx, user_id).attach(generation)))

    # ---------- providers ----------

    @app.post("/api/ai/getProviders")
    async def get_providers(
        ctx: ServiceContext = Depends(get_ctx), user_id: str = Depends(get_user_id)
    ):
        result: List[Dict[str, Any]] = []
        for provider in ctx.registry.providers():
            stored = await ctx.provider_settings.get(user_id, provider.id)
            info = provider.describe()
            info["enabled"] = stored["enabled"] if stored else provider.enabled_by_default
            result.append(info)
        return ok(result)

    @app.post("/api/ai/getProviderSettings")
    async def get_provider_settings(
        req: ProviderIdRequest,
        ctx: ServiceContext = Depends(get_ctx),
        user_id: str = Depends(get_user_id),
    ):
        provider = ctx.registry.resolve(req.provider_id)
        stored = await ctx.provider_settings.get(user_id, provider.id) or {}
        values = stored.get("settings") or {}
        return ok(
            {
                "id": provider.id,
                "enabled": stored.get("enabled", provider.enabled_by_default),
                "settings": [
                    {**item.to_dict(), "value": values.get(item.key)}
                    for item in provider.settings_schema()
                ],
            }
        )

    @app.post("/api/ai/updateProviderSettings")
    async def update_provider_settings(
        req: UpdateProviderSettingsRequest,
        ctx: ServiceContext = Depends(get_ctx),
        user_id: str = Depends(get_user_id),
    ):
        provider = ctx.registry.resolve(req.provider_id)
        settings = parse_settings(provider.settings_schema(), req.settings)
        await ctx.provider_settings.save(user_id, provider.id, settings, enabled=req.enabled)
        return ok({"success": True})

    @app.post("/api/ai/no-auth/{provider_id}/generate")
    async def relay_generate(provider_id: str, req: RelayRequest, ctx: ServiceContext = Depends(get_ctx)):
        provider = ctx.registry.resolve(provider_id)
        # Relay luôn gọi thẳng provider gốc, không relay lần nữa
        try:
            result = await provider.raw.generate(req.request, req.settings)
        except ServiceError:
            raise
        except Exception as e:
            logger.exception("[Relay] Provider %s failed", provider_id)
            return error("error", str(e) or f"Failed to generate with provider {provider_id}")
        return ok(dump(result))

    # ---------- files ----------

    @app.get("/api/files/preview/{file_id}")
    async def preview_file(
        file_id: str,
        request: Request,
        ctx: ServiceContext = Depends(get_ctx),
        user_id: str = Depends(get_user_id),
    ):
        etag = base64.b64encode(f'"{user_id}-{file_id}"'.encode()).decode("ascii")
        if request.headers.get("If-None-Match") == etag:
            return Response(status_code=304, headers={"ETag": etag})

        found = await ctx.files.read_file(file_id, user_id)
        if found is None:
            raise NotFound("File not found")
        data, content_type = found
        return Response(content=data, media_type=content_type, headers={"ETag": etag})

    return app


app = create_app()

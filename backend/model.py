# backend/model.py
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Optional, Literal, Dict, Any, List, Union

from .providers.base import GenerateRequest

GenerationStatus = Literal["pending", "generating", "completed", "failed"]

TERMINAL_STATUSES = ("completed", "failed")

Role = Literal["user", "assistant"]

MessageType = Literal["text", "image"]


class ApiModel(BaseModel):
    # JSON trên wire dùng camelCase (chatId, generationId, ...)
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Generation(ApiModel):
    id: str
    user_id: str
    type: Literal["image", "video"] = "image"
    prompt: str
    parameters: Optional[Dict[str, Any]] = None
    provider: str
    model: str
    status: GenerationStatus = "pending"
    file_ids: Optional[List[str]] = None
    error_message: Optional[str] = None
    generation_time: Optional[int] = None  # ms
    cost: Optional[float] = None
    created_at: str
    updated_at: str
    # chỉ có trong response, không lưu vào Redis
    result_urls: Optional[List[str]] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class Message(ApiModel):
    id: str
    user_id: str
    chat_id: str
    content: str
    role: Role
    type: MessageType = "text"
    generation_id: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    created_at: str
    updated_at: str
    generation: Optional[Generation] = None


class Chat(ApiModel):
    id: str
    title: str
    user_id: str
    provider: str
    model: str
    deleted: bool = False
    created_at: str
    updated_at: str


class ChatDetail(Chat):
    messages: List[Message] = Field(default_factory=list)


class CreateChatRequest(ApiModel):
    title: str
    provider: str
    model: str
    content: Optional[str] = None
    images: Optional[List[str]] = None  # base64, không có prefix data URL


class ChatIdRequest(ApiModel):
    id: str


class UpdateChatRequest(ApiModel):
    id: str = Field(min_length=1)
    provider: Optional[str] = None
    model: Optional[str] = None
    title: Optional[str] = None


class CreateMessageRequest(ApiModel):
    chat_id: str
    content: str
    type: MessageType = "text"
    provider: str
    model: str
    images: Optional[List[str]] = None  # base64, không có prefix data URL


class CreateMessageResponse(ApiModel):
    messages: List[Message]


class GenerationStatusRequest(ApiModel):
    generation_id: str


class RelayRequest(ApiModel):
    request: GenerateRequest
    settings: Dict[str, Union[bool, int, float, str]] = Field(default_factory=dict)


class ProviderIdRequest(ApiModel):
    provider_id: str


class UpdateProviderSettingsRequest(ApiModel):
    provider_id: str
    enabled: bool = True
    settings: Dict[str, Any] = Field(default_factory=dict)


class ApiResult(ApiModel):
    code: str
    data: Optional[Any] = None
    message: Optional[str] = None


def ok(data: Any = None) -> Dict[str, Any]:
    return {"code": "ok", "data": data}


def error(code: str, message: str) -> Dict[str, Any]:
    return {"code": code, "message": message}

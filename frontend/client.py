# frontend/client.py

from typing import Any, Dict, List, Optional

import requests


class ApiError(Exception):
    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


class ChatApiClient:
    """
    Gọi API backend (envelope {code, data|message}).
    """

    def __init__(
        self,
        base_url: str,
        user_id: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: float = 30,
    ):
        self.base_url = base_url.rstrip("/")
        self.user_id = user_id
        self.session = session or requests.Session()
        self.timeout = timeout

    def _headers(self) -> Dict[str, str]:
        return {"X-User-Id": self.user_id} if self.user_id else {}

    def _post(self, path: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        resp = self.session.post(
            f"{self.base_url}{path}",
            json=payload or {},
            headers=self._headers(),
            timeout=self.timeout,
        )
        try:
            body = resp.json()
        except ValueError:
            resp.raise_for_status()
            raise ApiError("error", f"Invalid response from server ({resp.status_code})")

        if not isinstance(body, dict) or body.get("code") != "ok":
            body = body if isinstance(body, dict) else {}
            raise ApiError(body.get("code", "error"), body.get("message") or resp.reason)
        return body.get("data")

    def get_providers(self) -> List[Dict[str, Any]]:
        return self._post("/api/ai/getProviders") or []

    def get_provider_settings(self, provider_id: str) -> Dict[str, Any]:
        return self._post("/api/ai/getProviderSettings", {"providerId": provider_id})

    def update_provider_settings(
        self, provider_id: str, settings: Dict[str, Any], enabled: bool = True
    ) -> None:
        self._post(
            "/api/ai/updateProviderSettings",
            {"providerId": provider_id, "settings": settings, "enabled": enabled},
        )

    def get_chats(self) -> List[Dict[str, Any]]:
        return self._post("/api/chats/getChats") or []

    def create_chat(self, title: str, provider: str, model: str) -> str:
        data = self._post(
            "/api/chats/createChat", {"title": title, "provider": provider, "model": model}
        )
        return data["id"]

    def get_chat(self, chat_id: str) -> Dict[str, Any]:
        return self._post("/api/chats/getChatById", {"id": chat_id})

    def delete_chat(self, chat_id: str) -> None:
        self._post("/api/chats/deleteChat", {"id": chat_id})

    def send_message(
        self,
        chat_id: str,
        content: str,
        provider: str,
        model: str,
        images: Optional[List[str]] = None,
    ) -> List[Dict[str, Any]]:
        payload: Dict[str, Any] = {
            "chatId": chat_id,
            "content": content,
            "provider": provider,
            "model": model,
            "type": "text",
        }
        if images:
            payload["images"] = images
        data = self._post("/api/chats/createMessage", payload)
        return data["messages"]

    def get_generation_status(self, generation_id: str) -> Optional[Dict[str, Any]]:
        return self._post("/api/chats/getGenerationStatus", {"generationId": generation_id})

    def download_file(self, url: str) -> bytes:
        resp = self.session.get(url, headers=self._headers(), timeout=self.timeout)
        resp.raise_for_status()
        return resp.content

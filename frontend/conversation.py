# frontend/conversation.py

import copy
import threading
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

TEMP_ID_PREFIX = "temp-user-"

TERMINAL_STATUSES = ("completed", "failed")

STATUS_RANK = {"pending": 0, "generating": 1, "completed": 2, "failed": 2}


def is_temp_id(message_id: str) -> bool:
    return message_id.startswith(TEMP_ID_PREFIX)


def is_terminal(generation: Optional[Dict[str, Any]]) -> bool:
    return bool(generation) and generation.get("status") in TERMINAL_STATUSES


class Conversation:
    """
    State của một chat ở phía client (list message dạng dict camelCase như API trả về).
    Poller cập nhật từ thread khác nên mọi thao tác đều giữ lock.
    """

    def __init__(self, chat_id: str, messages: Optional[List[Dict[str, Any]]] = None):
        self.chat_id = chat_id
        self._messages: List[Dict[str, Any]] = [dict(m) for m in (messages or [])]
        self._lock = threading.RLock()

    @property
    def messages(self) -> List[Dict[str, Any]]:
        with self._lock:
            return copy.deepcopy(self._messages)

    def replace_all(self, messages: List[Dict[str, Any]]) -> None:
        with self._lock:
            self._messages = [dict(m) for m in messages]

    def begin_submit(self, content: str, user_id: str) -> Dict[str, Any]:
        """
        Thêm ngay message user tạm (id tạm) vào cuối, chưa đợi server.
        """
        now = datetime.now(timezone.utc).isoformat()
        message = {
            "id": f"{TEMP_ID_PREFIX}{int(time.time() * 1000)}-{uuid.uuid4().hex[:6]}",
            "createdAt": now,
            "updatedAt": now,
            "userId": user_id,
            "chatId": self.chat_id,
            "content": content,
            "role": "user",
            "type": "text",
            "generationId": None,
            "metadata": None,
            "generation": None,
        }
        with self._lock:
            self._messages.append(message)
        return dict(message)

    def commit(self, temp_id: str, server_messages: List[Dict[str, Any]]) -> None:
        """
        Bỏ message tạm, chèn message thật của server vào đúng vị trí đó.
        Message đã có (cùng id) thì không chèn lại; message khác thêm vào trong lúc chờ giữ nguyên.
        """
        with self._lock:
            index = next(
                (i for i, m in enumerate(self._messages) if m["id"] == temp_id), None
            )
            if index is not None:
                del self._messages[index]
            else:
                index = len(self._messages)

            existing = {m["id"] for m in self._messages}
            fresh = []
            for m in server_messages:
                if m["id"] in existing:
                    continue
                existing.add(m["id"])
                fresh.append(dict(m))
            self._messages[index:index] = fresh

    def rollback(self, temp_id: str) -> None:
        with self._lock:
            self._messages = [m for m in self._messages if m["id"] != temp_id]

    def apply_generation(self, generation: Dict[str, Any]) -> bool:
        """
        Chỉ thay sub-object `generation` của các message trỏ tới generation này.
        Không cho status lùi lại (vd. completed -> pending).
        """
        generation_id = generation.get("id")
        new_rank = STATUS_RANK.get(generation.get("status"), -1)
        changed = False

        with self._lock:
            for m in self._messages:
                current = m.get("generation") or {}
                if m.get("generationId") != generation_id and current.get("id") != generation_id:
                    continue
                if is_terminal(current):
                    continue
                if STATUS_RANK.get(current.get("status"), -1) > new_rank:
                    continue
                m["generation"] = dict(generation)
                changed = True
        return changed

    def in_flight_generation_ids(self) -> List[str]:
        ids: List[str] = []
        with self._lock:
            for m in self._messages:
                if m.get("role") != "assistant" or m.get("type") != "image":
                    continue
                generation_id = m.get("generationId") or (m.get("generation") or {}).get("id")
                if not generation_id or is_terminal(m.get("generation")):
                    continue
                if generation_id not in ids:
                    ids.append(generation_id)
        return ids

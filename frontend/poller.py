# frontend/poller.py

import logging
import threading
from typing import Any, Callable, Dict, List, Optional

from .conversation import STATUS_RANK, is_terminal

logger = logging.getLogger(__name__)

FetchStatus = Callable[[str], Optional[Dict[str, Any]]]
OnUpdate = Callable[[Dict[str, Any]], Any]


class PollHandle:
    """
    Trả về từ GenerationPoller.watch(). stop() gọi bao nhiêu lần cũng được.
    """

    def __init__(self, poller: "GenerationPoller", generation_id: str, on_update: OnUpdate):
        self._poller = poller
        self.generation_id = generation_id
        self.on_update = on_update
        self._stopped = threading.Event()

    @property
    def stopped(self) -> bool:
        return self._stopped.is_set()

    def stop(self) -> None:
        if self._stopped.is_set():
            return
        self._stopped.set()
        self._poller._unsubscribe(self)


class _PollLoop:
    def __init__(self, poller: "GenerationPoller", generation_id: str):
        self.poller = poller
        self.generation_id = generation_id
        self.subscribers: List[PollHandle] = []
        self.stop_event = threading.Event()
        self.last: Optional[Dict[str, Any]] = None
        self.thread = threading.Thread(
            target=self.run, name=f"poll-{generation_id[:8]}", daemon=True
        )

    def run(self) -> None:
        # Poll ngay lần đầu, sau đó mỗi `interval` giây
        while not self.stop_event.is_set():
            try:
                generation = self.poller.fetch_status(self.generation_id)
            except Exception as e:
                logger.error("Error polling generation status %s: %s", self.generation_id, e)
                generation = None

            if generation is not None and self._accept(generation):
                self._deliver(generation)
                if is_terminal(generation):
                    self.poller._finish(self)
                    return

            self.stop_event.wait(self.poller.interval)

    def _accept(self, generation: Dict[str, Any]) -> bool:
        if self.last is None:
            return True
        if is_terminal(self.last):
            return False
        return STATUS_RANK.get(generation.get("status"), -1) >= STATUS_RANK.get(
            self.last.get("status"), -1
        )

    def _deliver(self, generation: Dict[str, Any]) -> None:
        self.last = generation
        with self.poller._lock:
            subscribers = [s for s in self.subscribers if not s.stopped]
        for handle in subscribers:
            if handle.stopped:
                continue
            try:
                handle.on_update(generation)
            except Exception:
                logger.exception("Poll subscriber failed for %s", self.generation_id)


class GenerationPoller:
    """
    Mỗi generation id chỉ có đúng một vòng poll đang chạy, dù nhiều message cùng theo dõi.
    Vòng poll tự hủy đăng ký khi thấy trạng thái cuối, hoặc khi không còn ai theo dõi.
    """

    def __init__(self, fetch_status: FetchStatus, interval: float = 3.0):
        self.fetch_status = fetch_status
        self.interval = interval
        self._loops: Dict[str, _PollLoop] = {}
        self._lock = threading.RLock()

    def watch(self, generation_id: str, on_update: OnUpdate) -> PollHandle:
        handle = PollHandle(self, generation_id, on_update)
        start = None
        with self._lock:
            loop = self._loops.get(generation_id)
            if loop is None:
                loop = _PollLoop(self, generation_id)
                self._loops[generation_id] = loop
                start = loop
            loop.subscribers.append(handle)
        if start is not None:
            start.thread.start()
        return handle

    def is_polling(self, generation_id: str) -> bool:
        with self._lock:
            return generation_id in self._loops

    def active_ids(self) -> List[str]:
        with self._lock:
            return list(self._loops)

    def stop_all(self) -> None:
        with self._lock:
            handles = [h for loop in self._loops.values() for h in loop.subscribers]
        for handle in handles:
            handle.stop()

    def _unsubscribe(self, handle: PollHandle) -> None:
        with self._lock:
            loop = self._loops.get(handle.generation_id)
            if loop is None:
                return
            if handle in loop.subscribers:
                loop.subscribers.remove(handle)
            if not loop.subscribers:
                loop.stop_event.set()
                del self._loops[handle.generation_id]

    def _finish(self, loop: _PollLoop) -> None:
        with self._lock:
            loop.stop_event.set()
            if self._loops.get(loop.generation_id) is loop:
                del self._loops[loop.generation_id]
            subscribers, loop.subscribers = loop.subscribers, []
        for handle in subscribers:
            handle._stopped.set()

import logging
import time
import uuid
from datetime import datetime, timezone


def gen_id() -> str:
    return str(uuid.uuid4())


def get_timestamp_ms() -> int:
    return int(time.time() * 1000)


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def strip_data_url(value: str) -> str:
    """
    "data:image/png;base64,AAAA" -> "AAAA". Chuỗi base64 thuần giữ nguyên.
    """
    if value.startswith("data:") and "," in value:
        return value.split(",", 1)[1]
    return value


_configured = False


def configure_logging(level: str = "INFO") -> None:
    global _configured
    if _configured:
        logging.getLogger().setLevel(level.upper())
        return
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    _configured = True

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Load biến môi trường trong .env
BASE_DIR = Path(__file__).resolve().parent
load_dotenv(BASE_DIR / ".env")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes")


class Settings:
    REDIS_URL: str = "redis://127.0.0.1:6379/0"

    # URL của API: client gọi vào đây, relay cũng đi qua đây
    BACKEND_URL: str = "http://127.0.0.1:8000"

    # False nếu process này không được giữ credential của provider
    TRUSTED_RUNTIME: bool = True

    PROVIDER_CLOUDFLARE_BUILTIN: bool = False
    CLOUDFLARE_ACCOUNT_ID: Optional[str] = None
    CLOUDFLARE_API_TOKEN: Optional[str] = None

    STORAGE_DIR: str = str(BASE_DIR.parent / "data" / "files")

    POLL_INTERVAL: float = 3.0  # giây
    WORKER_CONCURRENCY: int = 4
    REQUEST_TIMEOUT: float = 120.0

    LOG_LEVEL: str = "INFO"

    def __init__(self, **overrides):
        for key, value in overrides.items():
            if not hasattr(type(self), key):
                raise AttributeError(f"Unknown setting: {key}")
            setattr(self, key, value)

    @property
    def cloudflare_builtin_available(self) -> bool:
        return bool(
            self.PROVIDER_CLOUDFLARE_BUILTIN
            and self.CLOUDFLARE_ACCOUNT_ID
            and self.CLOUDFLARE_API_TOKEN
        )

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            REDIS_URL=os.getenv("REDIS_URL", cls.REDIS_URL),
            BACKEND_URL=os.getenv("BACKEND_URL", cls.BACKEND_URL),
            TRUSTED_RUNTIME=_env_bool("TRUSTED_RUNTIME", cls.TRUSTED_RUNTIME),
            PROVIDER_CLOUDFLARE_BUILTIN=_env_bool(
                "PROVIDER_CLOUDFLARE_BUILTIN", cls.PROVIDER_CLOUDFLARE_BUILTIN
            ),
            CLOUDFLARE_ACCOUNT_ID=os.getenv("CLOUDFLARE_ACCOUNT_ID"),
            CLOUDFLARE_API_TOKEN=os.getenv("CLOUDFLARE_API_TOKEN"),
            STORAGE_DIR=os.getenv("STORAGE_DIR", cls.STORAGE_DIR),
            POLL_INTERVAL=float(os.getenv("POLL_INTERVAL", cls.POLL_INTERVAL)),
            WORKER_CONCURRENCY=int(os.getenv("WORKER_CONCURRENCY", cls.WORKER_CONCURRENCY)),
            REQUEST_TIMEOUT=float(os.getenv("REQUEST_TIMEOUT", cls.REQUEST_TIMEOUT)),
            LOG_LEVEL=os.getenv("LOG_LEVEL", cls.LOG_LEVEL),
        )

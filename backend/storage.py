# backend/storage.py

import base64
import binascii
import logging
import re
from io import BytesIO
from pathlib import Path
from typing import List, Optional, Tuple

from PIL import Image, UnidentifiedImageError

from .utils import gen_id, strip_data_url

logger = logging.getLogger(__name__)

FILE_ID_RE = re.compile(r"^[0-9a-f-]{36}$")

CONTENT_TYPES = {
    "png": "image/png",
    "jpeg": "image/jpeg",
    "webp": "image/webp",
    "gif": "image/gif",
}


class FileStorage:
    """
    Lưu ảnh đã generate vào thư mục local: {root}/{user_id}/{file_id}.{ext}
    File id là opaque với client, URL do get_file_url() tạo ra.
    """

    def __init__(self, root_dir: str, base_url: str):
        self.root = Path(root_dir)
        self.base_url = base_url.rstrip("/")

    def _user_dir(self, user_id: str) -> Path:
        safe_user = re.sub(r"[^A-Za-z0-9_.-]", "_", user_id)
        return self.root / safe_user

    def _find(self, file_id: str, user_id: str) -> Optional[Path]:
        if not FILE_ID_RE.match(file_id):
            return None
        user_dir = self._user_dir(user_id)
        if not user_dir.exists():
            return None
        for path in user_dir.glob(f"{file_id}.*"):
            return path
        return None

    async def save_files(self, images: List[str], user_id: str) -> List[str]:
        user_dir = self._user_dir(user_id)
        user_dir.mkdir(parents=True, exist_ok=True)

        file_ids = []
        for image_b64 in images:
            try:
                data = base64.b64decode(strip_data_url(image_b64), validate=True)
            except binascii.Error as e:
                raise ValueError(f"Invalid base64 image data: {e}") from e
            try:
                fmt = (Image.open(BytesIO(data)).format or "png").lower()
            except UnidentifiedImageError as e:
                raise ValueError("Provider returned data that is not an image") from e

            file_id = gen_id()
            path = user_dir / f"{file_id}.{fmt}"
            path.write_bytes(data)
            logger.debug("[FileStorage] Saved %s (%d bytes)", path, len(data))
            file_ids.append(file_id)
        return file_ids

    async def read_file(self, file_id: str, user_id: str) -> Optional[Tuple[bytes, str]]:
        path = self._find(file_id, user_id)
        if path is None:
            return None
        ext = path.suffix.lstrip(".")
        return path.read_bytes(), CONTENT_TYPES.get(ext, f"image/{ext}")

    async def get_file_data(self, file_id: str, user_id: str) -> Optional[str]:
        found = await self.read_file(file_id, user_id)
        if found is None:
            return None
        return base64.b64encode(found[0]).decode("ascii")

    def get_file_url(self, file_id: str, user_id: str) -> str:
        return f"{self.base_url}/api/files/preview/{file_id}"

"""
Local filesystem storage for recipient uploads.
"""
import os
import uuid
from datetime import datetime
from pathlib import Path
from typing import Optional, BinaryIO
from urllib.parse import quote

from slugify import slugify

from ..config import settings
from .provider import StorageProvider


def canonical_key(notification_id: str, original_name: str) -> str:
    today = datetime.utcnow().strftime("%Y-%m-%d")
    year = datetime.utcnow().strftime("%Y")
    safe_name = slugify(os.path.splitext(original_name)[0]) or "upload"
    ext = os.path.splitext(original_name)[1].lower()
    return f"/compliance/{year}/{notification_id}/{today}_{uuid.uuid4().hex[:8]}_{safe_name}{ext}"


class LocalStorageProvider(StorageProvider):
    def __init__(self, base_dir: Optional[str] = None):
        self.base_dir = Path(base_dir or settings.storage_dir)
        (self.base_dir / "uploads").mkdir(parents=True, exist_ok=True)

    def _get_path(self, key: str) -> Path:
        # Remove leading slash and sanitize
        clean_key = key.lstrip("/").replace("..", "").replace("\\", "/")
        return self.base_dir / "uploads" / clean_key

    def get_download_url(self, key: str) -> Optional[str]:
        if self._get_path(key).exists():
            return f"{settings.public_base_url}/files/local/{quote(key.lstrip('/'))}"
        return None

    def exists(self, key: str) -> bool:
        return self._get_path(key).exists()

    def save(self, stream: BinaryIO | bytes, key: str) -> int:
        path = self._get_path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        data = stream.read() if hasattr(stream, "read") else stream
        with open(path, "wb") as f:
            f.write(data)
        return len(data)

    def delete(self, key: str) -> None:
        path = self._get_path(key)
        if path.exists():
            path.unlink()


def get_storage() -> StorageProvider:
    return LocalStorageProvider()

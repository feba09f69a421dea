import os
import uuid
from datetime import datetime
from typing import BinaryIO, Optional

from slugify import slugify


class StorageProvider:
    """Stores uploaded files and hands back the descriptor orders keep."""

    name = "base"

    def save(self, key: str, stream: BinaryIO, content_type: Optional[str] = None) -> dict:
        """Persist ``stream`` under ``key``; returns {url, key, filename, size, format}."""
        raise NotImplementedError

    def exists(self, key: str) -> bool:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def key_for_url(self, url: Optional[str]) -> Optional[str]:
        """Map a URL this provider issued back to its key; None for foreign URLs."""
        raise NotImplementedError


def canonical_key(owner: Optional[str], category: Optional[str], original_name: str) -> str:
    today = datetime.utcnow().strftime("%Y-%m-%d")
    year = datetime.utcnow().strftime("%Y")
    safe_name = slugify(os.path.splitext(original_name)[0]) or "file"
    ext = os.path.splitext(original_name)[1].lower()
    folder = slugify(category or "files")
    owner_part = slugify(str(owner or "misc"))
    return f"/{folder}/{year}/{owner_part}/{today}_{uuid.uuid4().hex[:8]}_{safe_name}{ext}"

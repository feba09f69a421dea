"""
Local filesystem storage provider for development.
Saves files to a local directory instead of Azure Blob Storage.
"""
import os
from typing import Optional, BinaryIO
from pathlib import Path
from urllib.parse import quote, unquote

from ..config import settings
from .provider import StorageProvider


class LocalStorageProvider(StorageProvider):
    """Local filesystem storage provider for development."""

    name = "local"

    def __init__(self, base_dir: Optional[str] = None):
        self.base_dir = Path(base_dir or settings.storage_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        (self.base_dir / "uploads").mkdir(exist_ok=True)

    @property
    def url_prefix(self) -> str:
        return f"{settings.public_base_url}/files/local/"

    def _get_path(self, key: str) -> Path:
        """Get the local filesystem path for a given key."""
        # Remove leading slash and sanitize
        clean_key = key.lstrip("/").replace("..", "").replace("\\", "/")
        return self.base_dir / "uploads" / clean_key

    def path_for(self, key: str) -> Optional[Path]:
        path = self._get_path(key)
        return path if path.is_file() else None

    def save(self, key: str, stream: BinaryIO, content_type: Optional[str] = None) -> dict:
        path = self._get_path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "wb") as f:
            f.write(stream.read())
        clean_key = key.lstrip("/")
        return {
            "url": f"{self.url_prefix}{quote(clean_key)}",
            "key": clean_key,
            "filename": path.name,
            "size": path.stat().st_size,
            "format": os.path.splitext(path.name)[1].lstrip(".").lower() or None,
        }

    def exists(self, key: str) -> bool:
        """Check if a file exists locally."""
        return self._get_path(key).exists()

    def delete(self, key: str) -> None:
        path = self._get_path(key)
        if path.exists():
            path.unlink()

    def key_for_url(self, url: Optional[str]) -> Optional[str]:
        if not url:
            return None
        if url.startswith(self.url_prefix):
            return unquote(url[len(self.url_prefix):])
        return None

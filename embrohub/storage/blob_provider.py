import os
from typing import Optional, BinaryIO

from azure.storage.blob import BlobServiceClient, ContentSettings

from ..config import settings
from .provider import StorageProvider


class BlobStorageProvider(StorageProvider):
    name = "blob"

    def __init__(self) -> None:
        if not settings.azure_blob_connection or not settings.azure_blob_container:
            raise RuntimeError("AZURE_BLOB_CONNECTION and AZURE_BLOB_CONTAINER must be set")
        self._service = BlobServiceClient.from_connection_string(settings.azure_blob_connection)
        self._container = settings.azure_blob_container

    @property
    def url_prefix(self) -> str:
        return self._service.get_container_client(self._container).url.rstrip("/") + "/"

    def save(self, key: str, stream: BinaryIO, content_type: Optional[str] = None) -> dict:
        blob_name = key.lstrip("/")
        client = self._service.get_blob_client(self._container, blob_name)
        data = stream.read()
        client.upload_blob(
            data,
            overwrite=True,
            content_settings=ContentSettings(content_type=content_type) if content_type else None,
        )
        filename = os.path.basename(blob_name)
        return {
            "url": client.url,
            "key": blob_name,
            "filename": filename,
            "size": len(data),
            "format": os.path.splitext(filename)[1].lstrip(".").lower() or None,
        }

    def exists(self, key: str) -> bool:
        client = self._service.get_blob_client(self._container, key.lstrip("/"))
        return client.exists()

    def delete(self, key: str) -> None:
        client = self._service.get_blob_client(self._container, key.lstrip("/"))
        client.delete_blob()

    def key_for_url(self, url: Optional[str]) -> Optional[str]:
        if not url:
            return None
        prefix = self.url_prefix
        if url.startswith(prefix):
            return url[len(prefix):].split("?", 1)[0]
        return None

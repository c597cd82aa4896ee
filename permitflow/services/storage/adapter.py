from abc import ABC, abstractmethod
from pathlib import Path, PurePosixPath

from permitflow.core.settings import settings


class StorageAdapter(ABC):
    provider: str = "local"
    bucket: str | None = None

    @abstractmethod
    def write_object(self, object_key: str, content: bytes, content_type: str) -> None:
        pass

    @abstractmethod
    def read_object(self, object_key: str) -> bytes:
        """Return the stored bytes; raises ``FileNotFoundError`` when missing."""
        pass

    @abstractmethod
    def delete_object(self, object_key: str):
        pass

    @abstractmethod
    def object_exists(self, object_key: str) -> bool:
        pass


class LocalFileSystemAdapter(StorageAdapter):
    def __init__(self, base_path: str):
        self.base_path = Path(base_path)
        self.provider = "local"
        self.bucket = "local"
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _resolve_safe_path(self, object_key: str) -> Path:
        if "\\" in object_key:
            raise ValueError("Invalid object key")
        key_path = PurePosixPath(object_key)
        if key_path.is_absolute() or ".." in key_path.parts:
            raise ValueError("Invalid object key")
        base = self.base_path.resolve()
        resolved = (base / Path(object_key)).resolve()
        if resolved != base and base not in resolved.parents:
            raise ValueError("Invalid object key")
        return resolved

    def write_object(self, object_key: str, content: bytes, content_type: str) -> None:
        path = self._resolve_safe_path(object_key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)

    def read_object(self, object_key: str) -> bytes:
        path = self._resolve_safe_path(object_key)
        if not path.is_file():
            raise FileNotFoundError(object_key)
        return path.read_bytes()

    def delete_object(self, object_key: str):
        path = self._resolve_safe_path(object_key)
        if path.exists():
            path.unlink()

    def object_exists(self, object_key: str) -> bool:
        try:
            path = self._resolve_safe_path(object_key)
        except ValueError:
            return False
        return path.exists()


class GCSStorageAdapter(StorageAdapter):
    def __init__(self, bucket: str):
        # Lazy import to avoid requiring dependency unless used
        from google.cloud import storage

        self.provider = "gcs"
        self.bucket = bucket
        self.client = storage.Client()
        self._bucket_ref = self.client.bucket(bucket)

    def write_object(self, object_key: str, content: bytes, content_type: str) -> None:
        blob = self._bucket_ref.blob(object_key)
        blob.upload_from_string(content, content_type=content_type)

    def read_object(self, object_key: str) -> bytes:
        from google.api_core.exceptions import NotFound

        blob = self._bucket_ref.blob(object_key)
        try:
            return blob.download_as_bytes()
        except NotFound as exc:
            raise FileNotFoundError(object_key) from exc

    def delete_object(self, object_key: str):
        blob = self._bucket_ref.blob(object_key)
        blob.delete()

    def object_exists(self, object_key: str) -> bool:
        blob = self._bucket_ref.blob(object_key)
        return blob.exists()


def get_storage_adapter(provider: str | None = None) -> StorageAdapter:
    provider = provider or settings.storage_provider
    if provider == "gcs":
        if not settings.gcs_bucket:
            raise ValueError("GCS bucket is not configured")
        return GCSStorageAdapter(bucket=settings.gcs_bucket)
    return LocalFileSystemAdapter(base_path=settings.local_upload_dir)

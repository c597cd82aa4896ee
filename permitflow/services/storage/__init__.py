from permitflow.services.storage.adapter import (
    GCSStorageAdapter,
    LocalFileSystemAdapter,
    StorageAdapter,
    get_storage_adapter,
)
from permitflow.services.storage.key_generator import KeyGenerator

__all__ = [
    "GCSStorageAdapter",
    "KeyGenerator",
    "LocalFileSystemAdapter",
    "StorageAdapter",
    "get_storage_adapter",
]

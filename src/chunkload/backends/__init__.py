from .http import AsyncHTTPStorageBackend, HTTPStorageBackend
from .memory import AsyncInMemoryBackend, InMemoryBackend, StoredObject

__all__ = [
    "InMemoryBackend",
    "AsyncInMemoryBackend",
    "StoredObject",
    "HTTPStorageBackend",
    "AsyncHTTPStorageBackend",
]

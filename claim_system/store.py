"""
Content-Addressed Store
=======================

StoreClient persists opaque ciphertext and hands back its content
address: the lower-case sha256 hex digest of the stored bytes. Identical
bytes always map to the same address, so re-storing is idempotent.

Backends:
- InMemoryStore:   memory://
- FileSystemStore: file:///abs/dir  (<dir>/<digest>.jwe)
"""

import hashlib
import os
import re
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Union

from .errors import NotFoundError, StorageError

SHA256_HEX_RE = re.compile(r"^[a-f0-9]{64}$")
BLOB_SUFFIX = ".jwe"


@dataclass(frozen=True)
class StoreResult:
    """Where a blob ended up"""
    content_address: str
    size: int


def content_address_of(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def normalize_content_address(content_address: str) -> str:
    """Validate a sha256 hex content address"""
    ca = str(content_address or "").strip().lower()
    if not SHA256_HEX_RE.match(ca):
        raise NotFoundError(f"Not a content address: {content_address!r}")
    return ca


def _as_bytes(data: Union[str, bytes]) -> bytes:
    if isinstance(data, str):
        return data.encode("utf-8")
    if isinstance(data, (bytes, bytearray)):
        return bytes(data)
    raise StorageError(f"Cannot store {type(data).__name__}; expected bytes or str")


class StoreClient(ABC):
    """Abstract base for content-addressed blob storage"""

    @abstractmethod
    def store(self, data: Union[str, bytes]) -> StoreResult:
        pass

    @abstractmethod
    def retrieve(self, content_address: str) -> bytes:
        pass

    def close(self) -> None:
        pass


class InMemoryStore(StoreClient):
    """Process-local store, used by tests and the dev server"""

    def __init__(self):
        self._blobs: Dict[str, bytes] = {}
        self._lock = threading.Lock()

    def store(self, data: Union[str, bytes]) -> StoreResult:
        raw = _as_bytes(data)
        address = content_address_of(raw)
        with self._lock:
            self._blobs.setdefault(address, raw)
        return StoreResult(content_address=address, size=len(raw))

    def retrieve(self, content_address: str) -> bytes:
        address = normalize_content_address(content_address)
        try:
            return self._blobs[address]
        except KeyError:
            raise NotFoundError(f"No blob stored under {address}") from None

    def delete(self, content_address: str) -> bool:
        """Drop a blob (used to simulate data loss)"""
        with self._lock:
            return self._blobs.pop(normalize_content_address(content_address), None) is not None

    def __len__(self) -> int:
        return len(self._blobs)


class FileSystemStore(StoreClient):
    """One file per blob, named by its digest"""

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root).resolve()
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot create store directory {self.root}: {e}") from e

    def _path(self, address: str) -> Path:
        return self.root / f"{address}{BLOB_SUFFIX}"

    def store(self, data: Union[str, bytes]) -> StoreResult:
        raw = _as_bytes(data)
        address = content_address_of(raw)
        path = self._path(address)
        if not path.exists():
            tmp = path.with_name(f".{path.name}.{os.getpid()}.{threading.get_ident()}.tmp")
            try:
                tmp.write_bytes(raw)
                os.replace(tmp, path)
            except OSError as e:
                tmp.unlink(missing_ok=True)
                raise StorageError(f"Failed to store blob {address}: {e}") from e
        return StoreResult(content_address=address, size=len(raw))

    def retrieve(self, content_address: str) -> bytes:
        address = normalize_content_address(content_address)
        path = self._path(address)
        try:
            raw = path.read_bytes()
        except FileNotFoundError:
            raise NotFoundError(f"No blob stored under {address}") from None
        except OSError as e:
            raise StorageError(f"Failed to read blob {address}: {e}") from e
        if content_address_of(raw) != address:
            raise StorageError(f"Blob {address} is corrupt on disk")
        return raw


def create_store(uri: str) -> StoreClient:
    if uri.startswith("memory://"):
        return InMemoryStore()
    elif uri.startswith("file://"):
        raw_path = uri[len("file://"):]
        if not raw_path:
            raise ValueError("file:// store URI needs a directory path")
        return FileSystemStore(Path(raw_path))
    else:
        raise ValueError(f"Unsupported store URI: {uri}")

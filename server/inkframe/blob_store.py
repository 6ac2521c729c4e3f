"""
Blob Store I/O Boundary

Durable storage of the original PNG bytes keyed by a UUID. Identifiers are
assigned by the store on insert and never reused, so a stored image never
changes after it is written.

I/O boundary classes - the rest of the server only sees the BlobStore interface.
"""

import asyncio
import logging
import random
import sqlite3
import threading
import time
import uuid
from abc import ABC, abstractmethod
from contextlib import closing
from typing import Dict, List, Optional, Tuple

from .config import StorageConfig
from .validation import NotFoundError, StorageError


logger = logging.getLogger(__name__)


class BlobStore(ABC):
    """
    Abstract base class for image blob storage.
    """

    async def open(self) -> None:
        """Prepare the store for use."""
        pass

    async def close(self) -> None:
        """Release store resources."""
        pass

    @abstractmethod
    async def add_image(self, data: bytes) -> uuid.UUID:
        """
        Store image bytes under a fresh identifier.

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def read_image(self, image_id: uuid.UUID) -> bytes:
        """
        Read the stored bytes for an identifier.

        Raises:
            NotFoundError: If no image has this identifier
            StorageError: If the read fails
        """
        pass

    @abstractmethod
    async def random_image(self) -> uuid.UUID:
        """
        Pick any stored identifier uniformly at random.

        Raises:
            NotFoundError: If the store is empty
        """
        pass

    @abstractmethod
    async def list_images(self) -> List[uuid.UUID]:
        """List stored identifiers, newest first."""
        pass

    @abstractmethod
    async def count(self) -> int:
        pass


class SqliteBlobStore(BlobStore):
    """
    SQLite-backed blob store.

    Each operation opens its own connection in a worker thread, so the event
    loop never blocks on disk and no connection is shared across threads.
    """

    SCHEMA = """CREATE TABLE IF NOT EXISTS image (
        id TEXT PRIMARY KEY,
        png BLOB NOT NULL,
        t TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )"""

    def __init__(self, path: str):
        self.path = path

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.path, timeout=5.0)

    def _execute(self, sql: str, params: Tuple = ()) -> List[tuple]:
        try:
            with closing(self._connect()) as conn:
                with conn:
                    rows = conn.execute(sql, params).fetchall()
                return rows
        except sqlite3.Error as e:
            raise StorageError(f"sqlite: {e}") from e

    async def open(self) -> None:
        await asyncio.to_thread(self._execute, self.SCHEMA)
        logger.info(f"Opened sqlite blob store at {self.path}")

    async def add_image(self, data: bytes) -> uuid.UUID:
        image_id = uuid.uuid4()
        await asyncio.to_thread(
            self._execute,
            "INSERT INTO image (id, png) VALUES (?, ?)",
            (str(image_id), sqlite3.Binary(data)),
        )
        return image_id

    async def read_image(self, image_id: uuid.UUID) -> bytes:
        rows = await asyncio.to_thread(
            self._execute, "SELECT png FROM image WHERE id = ?", (str(image_id),)
        )
        if not rows:
            raise NotFoundError(f"image {image_id} not found")
        return bytes(rows[0][0])

    async def random_image(self) -> uuid.UUID:
        rows = await asyncio.to_thread(
            self._execute, "SELECT id FROM image ORDER BY random() LIMIT 1"
        )
        if not rows:
            raise NotFoundError("no images stored")
        return uuid.UUID(rows[0][0])

    async def list_images(self) -> List[uuid.UUID]:
        rows = await asyncio.to_thread(
            self._execute, "SELECT id FROM image ORDER BY t DESC, rowid DESC"
        )
        return [uuid.UUID(r[0]) for r in rows]

    async def count(self) -> int:
        rows = await asyncio.to_thread(self._execute, "SELECT COUNT(*) FROM image")
        return int(rows[0][0])


class MemoryBlobStore(BlobStore):
    """
    In-process blob store for tests and throwaway deployments.
    """

    def __init__(self) -> None:
        self._images: Dict[uuid.UUID, Tuple[bytes, float]] = {}
        self._lock = threading.Lock()

    async def add_image(self, data: bytes) -> uuid.UUID:
        image_id = uuid.uuid4()
        with self._lock:
            self._images[image_id] = (bytes(data), time.time())
        return image_id

    async def read_image(self, image_id: uuid.UUID) -> bytes:
        with self._lock:
            record = self._images.get(image_id)
        if record is None:
            raise NotFoundError(f"image {image_id} not found")
        return record[0]

    async def random_image(self) -> uuid.UUID:
        with self._lock:
            ids = list(self._images)
        if not ids:
            raise NotFoundError("no images stored")
        return random.choice(ids)

    async def list_images(self) -> List[uuid.UUID]:
        with self._lock:
            # dicts keep insertion order, so reversing gives newest first
            return list(reversed(self._images))

    async def count(self) -> int:
        with self._lock:
            return len(self._images)


def create_blob_store(
    config: StorageConfig, backend: Optional[str] = None
) -> BlobStore:
    """
    Factory function to create the configured blob store implementation.

    Args:
        config: Storage configuration
        backend: Force "sqlite" or "memory". If None, uses config.backend

    Returns:
        BlobStore: SQLite or in-memory implementation
    """
    backend = backend or config.backend

    if backend == "sqlite":
        logger.info(f"Creating sqlite blob store ({config.path})")
        return SqliteBlobStore(config.path)
    elif backend == "memory":
        logger.info("Creating in-memory blob store")
        return MemoryBlobStore()
    else:
        raise ValueError(f"Unknown storage backend '{backend}'")

"""
Image Service - Policy/Orchestration Layer

This module contains the ImageService class, which wires the ingestion and
retrieval paths together: payload parsing, blob storage, the image codec and
quarter slicing.

Policy layer - uses pure modules (ingest, image_codec, frame_buffer) and the
I/O boundary (BlobStore).
"""

import asyncio
import logging
import threading
import uuid
from collections import OrderedDict
from typing import Any, Dict, List

from . import image_codec
from .blob_store import BlobStore
from .frame_buffer import quarter
from .ingest import parse_data_url
from .validation import CodecError, FormatError, validate_quarter_index


logger = logging.getLogger(__name__)


class ImageService:
    """
    Store images and serve their framebuffer quarters.

    Framebuffers are cached per identifier in a small LRU. Identifiers are
    write-once, so a cached framebuffer never goes stale.
    """

    def __init__(
        self,
        blob_store: BlobStore,
        cache_size: int = 8,
        verify_png: bool = False,
    ):
        """
        Initialize image service with dependencies.

        Args:
            blob_store: Storage for original PNG bytes
            cache_size: Framebuffers kept in memory (0 disables caching)
            verify_png: Decode images at ingestion and reject undecodable ones
        """
        self.blob_store = blob_store
        self.cache_size = cache_size
        self.verify_png = verify_png

        # Only touched from the event loop
        self._cache: "OrderedDict[uuid.UUID, bytes]" = OrderedDict()

        self._stats = {
            "images_stored": 0,
            "encodes": 0,
            "cache_hits": 0,
            "codec_errors": 0,
        }

        logger.info(
            f"Image service initialized (cache_size={cache_size}, verify_png={verify_png})"
        )

    async def store_image(self, payload: bytes | str) -> uuid.UUID:
        """
        Parse a data URL payload and store the decoded PNG bytes.

        Args:
            payload: Request body of the form "data:image/png;base64,<data>"

        Returns:
            uuid.UUID: Identifier assigned by the blob store

        Raises:
            FormatError: If the payload is malformed (or not a PNG when
                verify_png is on)
            StorageError: If the blob store write fails
        """
        png_bytes = parse_data_url(payload)

        if self.verify_png:
            try:
                await asyncio.to_thread(image_codec.decode_alpha, png_bytes)
            except CodecError as e:
                raise FormatError("not a decodable png", got=str(e)) from e

        image_id = await self.blob_store.add_image(png_bytes)
        self._stats["images_stored"] += 1
        logger.info(f"Stored image {image_id} ({len(png_bytes)} bytes)")
        return image_id

    async def get_framebuffer(self, image_id: uuid.UUID) -> bytes:
        """
        Return the packed framebuffer for a stored image.

        Raises:
            NotFoundError: If the identifier is unknown
            CodecError: If the stored bytes don't decode
        """
        cached = self._cache.get(image_id)
        if cached is not None:
            self._cache.move_to_end(image_id)
            self._stats["cache_hits"] += 1
            return cached

        png_bytes = await self.blob_store.read_image(image_id)
        framebuffer = await self._encode(image_id, png_bytes)

        if self.cache_size > 0:
            self._cache[image_id] = framebuffer
            while len(self._cache) > self.cache_size:
                self._cache.popitem(last=False)

        return framebuffer

    async def get_quarter(self, image_id: uuid.UUID, index: int) -> bytes:
        """
        Return one quarter of the framebuffer for a stored image.

        Args:
            image_id: Image identifier
            index: Quarter index in [0, 4)

        Returns:
            bytes: QUARTER_SIZE bytes of packed framebuffer

        Raises:
            QuarterRangeError: If index is outside [0, 4); checked before storage
            NotFoundError: If the identifier is unknown
            CodecError: If the stored bytes don't decode
        """
        validate_quarter_index(index)
        framebuffer = await self.get_framebuffer(image_id)
        return quarter(framebuffer, index)

    async def pick_random_identifier(self) -> uuid.UUID:
        """Pick any stored identifier; NotFoundError when nothing is stored."""
        return await self.blob_store.random_image()

    async def list_identifiers(self) -> List[uuid.UUID]:
        return await self.blob_store.list_images()

    async def read_original(self, image_id: uuid.UUID) -> bytes:
        return await self.blob_store.read_image(image_id)

    async def _encode(self, image_id: uuid.UUID, png_bytes: bytes) -> bytes:
        cancel = threading.Event()
        try:
            framebuffer = await asyncio.to_thread(image_codec.encode, png_bytes, cancel)
        except asyncio.CancelledError:
            # Let the worker stop at its next checkpoint
            cancel.set()
            logger.info(f"Encode of image {image_id} cancelled")
            raise
        except CodecError as e:
            self._stats["codec_errors"] += 1
            logger.error(f"Failed to encode image {image_id}: {e}")
            raise

        self._stats["encodes"] += 1
        return framebuffer

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self._stats,
            "cached_framebuffers": len(self._cache),
        }

"""Tests for the ImageService ingestion and retrieval paths."""

import asyncio
import base64
import uuid

import pytest

from inkframe.blob_store import MemoryBlobStore
from inkframe.frame_buffer import FRAMEBUFFER_SIZE, QUARTER_SIZE
from inkframe.image_service import ImageService
from inkframe.validation import (
    CodecError,
    FormatError,
    NotFoundError,
    QuarterRangeError,
)


class SpyBlobStore(MemoryBlobStore):
    """Memory store that counts reads."""

    def __init__(self):
        super().__init__()
        self.reads = 0

    async def read_image(self, image_id):
        self.reads += 1
        return await super().read_image(image_id)


@pytest.fixture
def store():
    return SpyBlobStore()


@pytest.fixture
def service(store):
    return ImageService(store, cache_size=4)


@pytest.mark.asyncio
async def test_end_to_end_black_block(service, make_png, data_url):
    """A 2x2 opaque block lands in the last two rows of quarter 3."""
    image_id = await service.store_image(data_url(make_png(2, 2, alpha=255)))
    data = await service.get_quarter(image_id, 3)

    assert len(data) == QUARTER_SIZE
    # Source i=0 -> y=539, i=1 -> y=538; x=0,1 share one byte; opaque -> intensity 1
    y538 = 538 * 480 - 3 * QUARTER_SIZE
    y539 = 539 * 480 - 3 * QUARTER_SIZE
    assert data[y538] == 0x11
    assert data[y539] == 0x11

    expected = bytearray(b"\xff" * QUARTER_SIZE)
    expected[y538] = 0x11
    expected[y539] = 0x11
    assert data == bytes(expected)

    for index in range(3):
        assert await service.get_quarter(image_id, index) == b"\xff" * QUARTER_SIZE


@pytest.mark.asyncio
async def test_quarters_concatenate(service, make_png, data_url):
    image_id = await service.store_image(data_url(make_png(300, 700, alpha=180)))
    parts = [await service.get_quarter(image_id, i) for i in range(4)]
    assert b"".join(parts) == await service.get_framebuffer(image_id)
    assert sum(len(p) for p in parts) == FRAMEBUFFER_SIZE


@pytest.mark.asyncio
@pytest.mark.parametrize("index", [4, -1])
async def test_bad_quarter_does_not_touch_store(service, store, index):
    with pytest.raises(QuarterRangeError):
        await service.get_quarter(uuid.uuid4(), index)
    assert store.reads == 0


@pytest.mark.asyncio
async def test_unknown_identifier(service):
    with pytest.raises(NotFoundError):
        await service.get_quarter(uuid.uuid4(), 0)


@pytest.mark.asyncio
async def test_undecodable_image_raises_codec_error(service, data_url):
    image_id = await service.store_image(data_url(b"not a png at all"))
    with pytest.raises(CodecError):
        await service.get_quarter(image_id, 0)
    assert service.get_stats()["codec_errors"] == 1


@pytest.mark.asyncio
async def test_bad_payload_is_not_stored(service, store):
    with pytest.raises(FormatError):
        await service.store_image(b"image/png,AAAA")
    assert await store.count() == 0


@pytest.mark.asyncio
async def test_framebuffer_cached_per_identifier(service, store, make_png, data_url):
    image_id = await service.store_image(data_url(make_png()))
    for index in range(4):
        await service.get_quarter(image_id, index)

    assert store.reads == 1
    stats = service.get_stats()
    assert stats["encodes"] == 1
    assert stats["cache_hits"] == 3


@pytest.mark.asyncio
async def test_cache_is_bounded(store, make_png, data_url):
    service = ImageService(store, cache_size=2)
    ids = [await service.store_image(data_url(make_png())) for _ in range(3)]
    for image_id in ids:
        await service.get_quarter(image_id, 0)
    assert service.get_stats()["cached_framebuffers"] == 2

    # The oldest entry was evicted and is encoded again
    await service.get_quarter(ids[0], 0)
    assert store.reads == 4


@pytest.mark.asyncio
async def test_cache_disabled(store, make_png, data_url):
    service = ImageService(store, cache_size=0)
    image_id = await service.store_image(data_url(make_png()))
    await service.get_quarter(image_id, 0)
    await service.get_quarter(image_id, 1)
    assert store.reads == 2
    assert service.get_stats()["cached_framebuffers"] == 0


@pytest.mark.asyncio
async def test_verify_png_rejects_at_ingestion(store, make_png, data_url):
    service = ImageService(store, verify_png=True)
    with pytest.raises(FormatError) as exc_info:
        await service.store_image(data_url(b"not a png at all"))
    assert exc_info.value.reason == "not a decodable png"
    assert await store.count() == 0

    image_id = await service.store_image(data_url(make_png()))
    assert await store.read_image(image_id) == make_png()


@pytest.mark.asyncio
async def test_pick_random_and_list(service, make_png, data_url):
    with pytest.raises(NotFoundError):
        await service.pick_random_identifier()

    first = await service.store_image(data_url(make_png(1, 1)))
    second = await service.store_image(data_url(make_png(2, 2)))

    assert await service.pick_random_identifier() in {first, second}
    assert await service.list_identifiers() == [second, first]
    assert await service.read_original(first) == make_png(1, 1)


@pytest.mark.asyncio
async def test_store_returns_fresh_identifiers(service, make_png, data_url):
    payload = data_url(make_png())
    ids = {await service.store_image(payload) for _ in range(5)}
    assert len(ids) == 5


@pytest.mark.asyncio
async def test_cancelled_retrieval_propagates(service, make_png, data_url):
    # Big enough that the encode is still running when the task is cancelled
    image_id = await service.store_image(data_url(make_png(540, 960, alpha=255)))

    task = asyncio.create_task(service.get_quarter(image_id, 0))
    await asyncio.sleep(0)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert service.get_stats()["cached_framebuffers"] == 0


@pytest.mark.asyncio
async def test_base64_text_payload(service, make_png):
    png = make_png()
    payload = "data:image/png;base64," + base64.b64encode(png).decode("ascii")
    image_id = await service.store_image(payload)
    assert await service.read_original(image_id) == png

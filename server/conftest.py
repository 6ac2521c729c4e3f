"""Shared pytest fixtures for the inkframe server tests."""

import base64
import io

import numpy as np
import pytest
from PIL import Image


def _png_bytes(img: Image.Image) -> bytes:
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def make_png():
    """Build PNG bytes from a uniform alpha value or an explicit alpha plane."""

    def _make(width: int = 2, height: int = 2, alpha: int = 255, plane=None) -> bytes:
        if plane is not None:
            plane = np.asarray(plane, dtype=np.uint8)
            height, width = plane.shape
            rgba = np.zeros((height, width, 4), dtype=np.uint8)
            rgba[:, :, 3] = plane
            return _png_bytes(Image.fromarray(rgba))
        return _png_bytes(Image.new("RGBA", (width, height), (0, 0, 0, alpha)))

    return _make


@pytest.fixture
def data_url():
    """Wrap PNG bytes the way the drawing page posts them."""

    def _wrap(png: bytes) -> bytes:
        return b"data:image/png;base64," + base64.b64encode(png)

    return _wrap

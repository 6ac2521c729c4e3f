"""
Pure Image Codec

Turns stored PNG bytes into the packed 4-bit framebuffer the e-paper client
draws. Ink is carried entirely in the alpha channel: the browser canvas the
images come from paints black strokes on a transparent background.

The source is portrait (540 wide, 960 tall) and the panel is landscape, so
source pixel (i, j) lands at x = j, y = HEIGHT - 1 - i. Transposing plus the
vertical mirror keeps left/right and top/bottom asymmetries intact.

Pure module with no shared state - safe to run concurrently in worker threads.
"""

import io
import logging
import struct
import threading
from typing import Optional

import numpy as np
from PIL import Image

from .frame_buffer import HEIGHT, WIDTH, WHITE
from .validation import CodecError, EncodeCancelledError

logger = logging.getLogger(__name__)

# Intensity value meaning "no ink"; such pixels are left white
NO_INK = 16


def intensity_from_alpha(alpha16: int) -> int:
    """
    Map a 16-bit alpha value to a pixel intensity.

    Downsize to a nibble and invert black to white. Alpha below 4096
    (including fully transparent) yields NO_INK; fully opaque yields 1.
    """
    return NO_INK - (alpha16 >> 12)


def decode_alpha(source: bytes) -> np.ndarray:
    """
    Decode PNG bytes into an 8-bit alpha plane.

    Images without an alpha channel or tRNS chunk are fully opaque.

    Args:
        source: Raw PNG file bytes

    Returns:
        np.ndarray: uint8 array of shape (height, width)

    Raises:
        CodecError: If the bytes are not a decodable PNG
    """
    try:
        with Image.open(io.BytesIO(source)) as img:
            if img.format != "PNG":
                raise CodecError("decode", f"expected PNG, got {img.format}")
            img.load()

            if "A" in img.getbands() or "transparency" in img.info:
                return np.asarray(img.convert("RGBA"))[:, :, 3]
            return np.full((img.height, img.width), 0xFF, dtype=np.uint8)

    except CodecError:
        raise
    except (
        OSError,
        ValueError,
        SyntaxError,
        EOFError,
        struct.error,
        Image.DecompressionBombError,
    ) as e:
        raise CodecError("decode", str(e)) from e


def render_canvas(alpha: np.ndarray) -> np.ndarray:
    """
    Map a portrait alpha plane onto the landscape panel.

    Only source columns [0, HEIGHT) and rows [0, WIDTH) are consulted.

    Args:
        alpha: uint8 alpha plane of shape (src_height, src_width)

    Returns:
        np.ndarray: uint8 intensities of shape (HEIGHT, WIDTH), WHITE where no ink
    """
    src_h, src_w = alpha.shape
    cols = min(HEIGHT, src_w)  # source i, target short axis
    rows = min(WIDTH, src_h)  # source j, target long axis

    # Widen 8-bit alpha to 16 bits (0xFF -> 0xFFFF) before downsizing
    region = alpha[:rows, :cols].astype(np.uint32) * 257
    intensity = NO_INK - (region >> 12)
    ink = np.where(intensity < NO_INK, intensity, WHITE).astype(np.uint8)

    canvas = np.full((HEIGHT, WIDTH), WHITE, dtype=np.uint8)
    # ink[j, i] -> canvas[HEIGHT - 1 - i, j]
    canvas[HEIGHT - cols :, :rows] = ink.T[::-1, :]
    return canvas


def pack_canvas(canvas: np.ndarray) -> bytes:
    """
    Pack a (HEIGHT, WIDTH) intensity array two pixels per byte.

    Even x goes to the low nibble, odd x to the high nibble, rows in order.
    """
    low = canvas[:, 0::2] & 0x0F
    high = canvas[:, 1::2] & 0x0F
    return ((high << 4) | low).astype(np.uint8).tobytes()


def _check_cancelled(cancel: Optional[threading.Event]) -> None:
    if cancel is not None and cancel.is_set():
        raise EncodeCancelledError()


def encode(source: bytes, cancel: Optional[threading.Event] = None) -> bytes:
    """
    Encode PNG bytes into a complete packed framebuffer.

    Args:
        source: Raw PNG file bytes
        cancel: Optional event; when set, the encode stops at the next stage

    Returns:
        bytes: Framebuffer of exactly FRAMEBUFFER_SIZE bytes

    Raises:
        CodecError: If decoding fails
        EncodeCancelledError: If cancel was set before the encode finished
    """
    _check_cancelled(cancel)
    alpha = decode_alpha(source)

    _check_cancelled(cancel)
    canvas = render_canvas(alpha)

    _check_cancelled(cancel)
    framebuffer = pack_canvas(canvas)

    logger.debug(
        f"Encoded {alpha.shape[1]}x{alpha.shape[0]} source into {len(framebuffer)} bytes"
    )
    return framebuffer

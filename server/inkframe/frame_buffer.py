"""
Packed 4-bit framebuffer for the 960x540 e-paper panel.

Two horizontally adjacent pixels share one byte: even x in the low nibble,
odd x in the high nibble. Byte index for (x, y) is y * WIDTH / 2 + x / 2.
Intensity 0 is full ink, 15 is no ink; a fresh buffer is all 0xFF.

The buffer is exposed to the constrained client as four equal contiguous
byte ranges ("quarters").
"""

from typing import Iterator

from .validation import QUARTER_COUNT, validate_quarter_index

WIDTH = 960  # X on the display (landscape)
HEIGHT = 540  # X in the browser (portrait)

FRAMEBUFFER_SIZE = WIDTH * HEIGHT // 2
QUARTER_SIZE = FRAMEBUFFER_SIZE // QUARTER_COUNT

WHITE = 0xF


class Framebuffer:
    """
    Mutable framebuffer used while drawing.

    Call freeze() to get the immutable bytes handed to callers.
    """

    def __init__(self, data: bytes | bytearray | None = None):
        if data is None:
            self._data = bytearray(b"\xff" * FRAMEBUFFER_SIZE)
        else:
            if len(data) != FRAMEBUFFER_SIZE:
                raise ValueError(
                    f"Framebuffer data size {len(data)} doesn't match expected "
                    f"{FRAMEBUFFER_SIZE} for {WIDTH}x{HEIGHT} display"
                )
            self._data = bytearray(data)

    def __len__(self) -> int:
        return len(self._data)

    def set_pixel(self, x: int, y: int, intensity: int) -> None:
        """
        Write one pixel intensity, keeping the neighbouring nibble.

        Coordinates outside the display are ignored silently; callers rely
        on this to draw geometry larger than the panel.
        """
        if x < 0 or x >= WIDTH:
            return
        if y < 0 or y >= HEIGHT:
            return

        idx = y * WIDTH // 2 + x // 2
        v = self._data[idx]
        if x % 2:
            self._data[idx] = (v & 0x0F) | ((intensity & 0x0F) << 4)
        else:
            self._data[idx] = (v & 0xF0) | (intensity & 0x0F)

    def get_pixel(self, x: int, y: int) -> int:
        if not (0 <= x < WIDTH and 0 <= y < HEIGHT):
            raise IndexError(f"Pixel ({x},{y}) outside {WIDTH}x{HEIGHT} display")
        v = self._data[y * WIDTH // 2 + x // 2]
        return (v >> 4) if x % 2 else (v & 0x0F)

    def freeze(self) -> bytes:
        return bytes(self._data)


def quarter(framebuffer: bytes, index: int) -> bytes:
    """
    Slice one quarter out of a packed framebuffer.

    Args:
        framebuffer: Packed framebuffer of FRAMEBUFFER_SIZE bytes
        index: Quarter index in [0, 4)

    Returns:
        bytes: QUARTER_SIZE bytes starting at index * QUARTER_SIZE

    Raises:
        QuarterRangeError: If index is outside [0, 4)
    """
    validate_quarter_index(index)
    if len(framebuffer) != FRAMEBUFFER_SIZE:
        raise ValueError(
            f"Framebuffer size {len(framebuffer)} doesn't match {FRAMEBUFFER_SIZE}"
        )
    start = index * QUARTER_SIZE
    return bytes(framebuffer[start : start + QUARTER_SIZE])


def iter_quarters(framebuffer: bytes) -> Iterator[bytes]:
    for index in range(QUARTER_COUNT):
        yield quarter(framebuffer, index)

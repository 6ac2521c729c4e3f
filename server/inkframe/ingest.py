"""
Ingestion payload parsing.

The drawing page posts its canvas as a data URL:

    data:image/png;base64,<base64 data>

Only that exact header is accepted. Decoding the PNG itself is left to
retrieval time unless the server is configured to verify on ingest.
"""

import base64
import binascii

from .validation import FormatError

PNG_DATA_URL_HEADER = b"data:image/png;base64"


def parse_data_url(payload: bytes | str) -> bytes:
    """
    Extract PNG bytes from a base64 data URL payload.

    Args:
        payload: Raw request body

    Returns:
        bytes: Decoded image bytes

    Raises:
        FormatError: If the separator is missing, the header is not the PNG
            base64 header, or the data is not valid standard base64
    """
    if isinstance(payload, str):
        payload = payload.encode("latin-1", errors="replace")

    head, sep, tail = payload.partition(b",")
    if not sep:
        raise FormatError("not an image")
    if head != PNG_DATA_URL_HEADER:
        raise FormatError("unsupported header", got=head.decode("latin-1"))

    # Line breaks are tolerated the way MIME base64 decoders do
    tail = tail.replace(b"\r", b"").replace(b"\n", b"")
    try:
        return base64.b64decode(tail, validate=True)
    except (binascii.Error, ValueError) as e:
        raise FormatError("base64 decode failed", got=str(e)) from e

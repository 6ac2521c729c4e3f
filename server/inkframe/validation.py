"""
Error types and cross-cutting validation for the inkframe server.

Type-local invariants stay in the dataclass __post_init__ methods of
config.py. Rules validated here span more than one object or are shared
by the ingestion and retrieval paths:
- Image identifier parsing
- Quarter index bounds
- Server configuration consistency
"""

import uuid
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .config import ServerConfig


QUARTER_COUNT = 4


class InkFrameError(Exception):
    """Base exception for all request-local errors."""

    pass


class ValidationError(InkFrameError, ValueError):
    """Base exception for validation errors."""

    pass


class FormatError(ValidationError):
    """Raised when a payload or path parameter is malformed."""

    def __init__(self, reason: str, got: object = None):
        self.reason = reason
        self.got = got
        if got is None:
            super().__init__(reason)
        else:
            super().__init__(f"{reason}: {got!r}")


class QuarterRangeError(ValidationError):
    """Raised when a quarter index is outside [0, 4)."""

    def __init__(self, index: int):
        self.index = index
        super().__init__(f"idx {index} out of bounds [0,{QUARTER_COUNT})")


class ConfigValidationError(ValidationError):
    """Raised when server configuration is invalid."""

    pass


class NotFoundError(InkFrameError):
    """Raised when an identifier is not present in the blob store."""

    pass


class RateLimitedError(InkFrameError):
    """Raised when a limiter denies admission."""

    pass


class CodecError(InkFrameError):
    """Raised when stored image bytes cannot be turned into a framebuffer."""

    def __init__(self, stage: str, message: str):
        self.stage = stage
        super().__init__(f"png {stage}: {message}")


class EncodeCancelledError(CodecError):
    """Raised when an in-flight encode is abandoned."""

    def __init__(self):
        super().__init__("cancel", "encode cancelled")


class StorageError(InkFrameError):
    """Raised when the blob store fails for reasons other than a missing row."""

    pass


def parse_identifier(raw: str) -> uuid.UUID:
    """
    Parse the textual form of an image identifier.

    Args:
        raw: Identifier as received on the wire

    Returns:
        uuid.UUID: Parsed identifier

    Raises:
        FormatError: If the text is not a valid UUID
    """
    try:
        return uuid.UUID(raw)
    except (ValueError, TypeError, AttributeError):
        raise FormatError("invalid image id", got=raw) from None


def parse_quarter_index(raw: str) -> int:
    """Parse a quarter index path segment and check it against [0, 4)."""
    try:
        index = int(raw)
    except (ValueError, TypeError):
        raise FormatError("invalid quarter index", got=raw) from None
    validate_quarter_index(index)
    return index


def validate_quarter_index(index: int) -> None:
    """
    Validate that a quarter index selects one of the four framebuffer slices.

    Raises:
        QuarterRangeError: If index is outside [0, 4)
    """
    if index < 0 or index >= QUARTER_COUNT:
        raise QuarterRangeError(index)


def validate_server_config(config: "ServerConfig") -> None:
    """
    Validate cross-field rules for a complete server configuration.

    Args:
        config: Server configuration to validate

    Raises:
        ConfigValidationError: If any cross-field rule fails
    """
    if config.cache_size < 0:
        raise ConfigValidationError("cache_size must be >= 0")

    # Ingestion runs a full codec pass and must never be looser than retrieval
    if config.ingest_limit.burst > config.retrieval_limit.burst:
        raise ConfigValidationError(
            f"ingest burst {config.ingest_limit.burst} exceeds retrieval burst "
            f"{config.retrieval_limit.burst}"
        )
    if config.ingest_limit.rate > config.retrieval_limit.rate:
        raise ConfigValidationError(
            f"ingest rate {config.ingest_limit.rate} exceeds retrieval rate "
            f"{config.retrieval_limit.rate}"
        )

    if config.storage.backend == "sqlite" and not config.storage.path:
        raise ConfigValidationError("sqlite storage requires a path")

    if not config.allowed_origins:
        raise ConfigValidationError("allowed_origins must not be empty")

# server/inkframe/config.py
from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import List, Literal

logger = logging.getLogger(__name__)


StorageBackend = Literal["sqlite", "memory"]


@dataclass(frozen=True)
class LimiterConfig:
    rate: float
    burst: int

    def __post_init__(self) -> None:
        if self.rate < 0:
            raise ValueError(f"Limiter rate must be >= 0, got {self.rate}")
        if self.burst < 1:
            raise ValueError(f"Limiter burst must be >= 1, got {self.burst}")


@dataclass(frozen=True)
class StorageConfig:
    backend: StorageBackend = "sqlite"
    path: str = "inkframe.sqlite"

    def __post_init__(self) -> None:
        if self.backend not in {"sqlite", "memory"}:
            raise ValueError(f"Unknown storage backend '{self.backend}'")


@dataclass(frozen=True)
class ServerConfig:
    storage: StorageConfig = field(default_factory=StorageConfig)
    retrieval_limit: LimiterConfig = field(
        default_factory=lambda: LimiterConfig(rate=3.0, burst=10)
    )
    ingest_limit: LimiterConfig = field(
        default_factory=lambda: LimiterConfig(rate=1.0, burst=1)
    )
    cache_size: int = 8
    verify_png: bool = False
    allowed_origins: List[str] = field(default_factory=lambda: ["*"])

    def validate(self) -> None:
        from .validation import validate_server_config

        validate_server_config(self)


def _load_limiter(entry: dict, default: LimiterConfig) -> LimiterConfig:
    return LimiterConfig(
        rate=float(entry.get("rate", default.rate)),
        burst=int(entry.get("burst", default.burst)),
    )


def _parse_origins(raw: str) -> List[str]:
    raw = raw.strip()
    if raw == "*" or raw == "":
        return ["*"]
    return [o.strip() for o in raw.split(",") if o.strip()]


def apply_env_overrides(cfg: ServerConfig) -> ServerConfig:
    """Apply INKFRAME_DB and ALLOWED_ORIGINS environment overrides."""
    db_path = os.getenv("INKFRAME_DB")
    if db_path:
        cfg = replace(cfg, storage=replace(cfg.storage, path=db_path))

    origins = os.getenv("ALLOWED_ORIGINS")
    if origins is not None:
        cfg = replace(cfg, allowed_origins=_parse_origins(origins))

    return cfg


def load_from_toml(config_path: str | Path) -> ServerConfig:
    """
    Load a ServerConfig from a TOML file.

    Expected TOML structure (every key optional):

    [storage]
    backend = "sqlite"   # sqlite|memory
    path = "inkframe.sqlite"

    [limits.retrieval]
    rate = 3.0
    burst = 10

    [limits.ingest]
    rate = 1.0
    burst = 1

    [codec]
    cache_size = 8
    verify_png = false

    [http]
    allowed_origins = ["*"]
    """
    p = Path(config_path)
    if not p.exists():
        raise FileNotFoundError(f"Configuration file not found: {p}")

    with p.open("rb") as f:
        data = tomllib.load(f)

    defaults = ServerConfig()
    storage = data.get("storage") or {}
    limits = data.get("limits") or {}
    codec = data.get("codec") or {}
    http = data.get("http") or {}

    cfg = ServerConfig(
        storage=StorageConfig(
            backend=str(storage.get("backend", defaults.storage.backend)),  # type: ignore[arg-type]
            path=str(storage.get("path", defaults.storage.path)),
        ),
        retrieval_limit=_load_limiter(
            limits.get("retrieval") or {}, defaults.retrieval_limit
        ),
        ingest_limit=_load_limiter(limits.get("ingest") or {}, defaults.ingest_limit),
        cache_size=int(codec.get("cache_size", defaults.cache_size)),
        verify_png=bool(codec.get("verify_png", defaults.verify_png)),
        allowed_origins=[str(o) for o in http.get("allowed_origins", ["*"])],
    )
    cfg = apply_env_overrides(cfg)

    # Early validation
    cfg.validate()

    logger.info(
        "Loaded ServerConfig: storage=%s:%s, retrieval=%.1f/s burst %d, "
        "ingest=%.1f/s burst %d, cache=%d",
        cfg.storage.backend,
        cfg.storage.path,
        cfg.retrieval_limit.rate,
        cfg.retrieval_limit.burst,
        cfg.ingest_limit.rate,
        cfg.ingest_limit.burst,
        cfg.cache_size,
    )
    return cfg


def default_config() -> ServerConfig:
    """Local default: sqlite file in the working directory, stock limits."""
    cfg = apply_env_overrides(ServerConfig())
    cfg.validate()
    return cfg

"""
ServerApp - Composition Root

This module contains the ServerApp class, which is responsible for:
- FastAPI application setup and configuration
- Dependency injection and component wiring
- Application lifecycle management (startup/shutdown)
- Health statistics

Limiters are owned here, one instance per purpose, and reach the request
handlers through `app.state.server`.
"""

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api import (
    inkframe_error_handler,
    limit_middleware,
    logging_middleware,
    router,
)
from .blob_store import BlobStore, create_blob_store
from .config import ServerConfig, default_config, load_from_toml
from .image_service import ImageService
from .rate_limiter import TokenBucket
from .validation import InkFrameError


logger = logging.getLogger(__name__)


class ServerApp:
    """
    Application composition root for the inkframe server.

    Handles FastAPI setup, dependency injection, and lifecycle management.
    """

    def __init__(
        self,
        config_path: Optional[Path] = None,
        config: Optional[ServerConfig] = None,
        blob_store: Optional[BlobStore] = None,
    ):
        self.config_path = config_path or Path("config.toml")

        # Explicit config / store win over the file; used by tests
        self.config: Optional[ServerConfig] = config
        self.blob_store: Optional[BlobStore] = blob_store

        # Core components - initialized during startup
        self.image_service: Optional[ImageService] = None
        self.retrieval_limiter: Optional[TokenBucket] = None
        self.ingest_limiter: Optional[TokenBucket] = None

        self.app: Optional[FastAPI] = None
        self._started: bool = False

        logger.info(f"ServerApp initialized with config: {self.config_path}")

    async def startup(self) -> None:
        """Initialize all application components."""
        if self._started:
            return
        logger.info("Starting up server application...")

        try:
            self._load_configuration()
            self._create_limiters()
            await self._open_blob_store()
            self._create_image_service()

            logger.info("Server application startup completed successfully")
            self._started = True

        except Exception as e:
            logger.error(f"Server application startup failed: {e}")
            await self.shutdown()
            raise

    async def shutdown(self) -> None:
        """Cleanup all application components."""
        logger.info("Shutting down server application...")

        if self.blob_store:
            await self.blob_store.close()

        self._started = False
        logger.info("Server application shutdown completed")

    def get_fastapi_app(self) -> FastAPI:
        """Get the FastAPI application, creating it on first use."""
        if self.app is None:
            self.app = self._create_fastapi_app()
        return self.app

    # Private initialization methods

    def _load_configuration(self) -> None:
        """Load server configuration from file or use defaults."""
        if self.config is not None:
            self.config.validate()
            return

        if self.config_path.exists():
            logger.info(f"Loading configuration from {self.config_path}")
            self.config = load_from_toml(self.config_path)
        else:
            logger.warning(
                f"Config file {self.config_path} not found, using default configuration"
            )
            self.config = default_config()

    def _create_limiters(self) -> None:
        if not self.config:
            raise RuntimeError("Server config not loaded")

        self.retrieval_limiter = TokenBucket.from_config(
            self.config.retrieval_limit, name="retrieval"
        )
        self.ingest_limiter = TokenBucket.from_config(
            self.config.ingest_limit, name="ingest"
        )
        logger.debug("Created rate limiters")

    async def _open_blob_store(self) -> None:
        if not self.config:
            raise RuntimeError("Server config not loaded")

        if self.blob_store is None:
            self.blob_store = create_blob_store(self.config.storage)
        await self.blob_store.open()

    def _create_image_service(self) -> None:
        if not self.config or not self.blob_store:
            raise RuntimeError("Blob store not created")

        self.image_service = ImageService(
            self.blob_store,
            cache_size=self.config.cache_size,
            verify_png=self.config.verify_png,
        )
        logger.debug("Created image service with dependency injection")

    def _create_fastapi_app(self) -> FastAPI:
        """Create FastAPI application wired to this server instance."""

        @asynccontextmanager
        async def lifespan(app: FastAPI):
            started_here = False
            if not self._started:
                await self.startup()
                started_here = True
            try:
                yield
            finally:
                if started_here and self._started:
                    await self.shutdown()

        app = FastAPI(
            title="inkframe",
            description="PNG to e-paper framebuffer server",
            version="0.1.0",
            lifespan=lifespan,
        )

        # Starlette runs the last added middleware first
        app.middleware("http")(limit_middleware)
        app.middleware("http")(logging_middleware)

        origins = self.config.allowed_origins if self.config else ["*"]
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_methods=["*"],
            allow_headers=["*"],
        )

        app.add_exception_handler(InkFrameError, inkframe_error_handler)

        # Attach server instance for request handlers and include routes
        app.state.server = self
        app.include_router(router)

        logger.debug("Created FastAPI application")
        return app

    async def get_stats(self) -> Dict[str, Any]:
        if not self.image_service or not self.blob_store:
            return {"running": False, "message": "server not initialized"}

        return {
            "running": self._started,
            "images": await self.blob_store.count(),
            "service": self.image_service.get_stats(),
            "limits": {
                "retrieval": self.retrieval_limiter.get_stats()
                if self.retrieval_limiter
                else {},
                "ingest": self.ingest_limiter.get_stats()
                if self.ingest_limiter
                else {},
            },
        }

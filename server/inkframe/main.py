#!/usr/bin/env python3
"""
inkframe Server - Main Application Entry Point

Builds the ServerApp and serves it with uvicorn.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

import uvicorn
from fastapi import FastAPI

from .server_app import ServerApp

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def create_app(config_path: Optional[Path] = None) -> FastAPI:
    """Create FastAPI application; components start in the app lifespan."""
    return ServerApp(config_path).get_fastapi_app()


def run_server(
    host: str = "0.0.0.0",
    port: int = 8080,
    config_path: Optional[str] = None,
    log_level: str = "info",
) -> None:
    """Run the server with the given configuration."""
    app = create_app(Path(config_path) if config_path else None)

    logger.info(f"Starting server on {host}:{port}")
    # uvicorn handles SIGINT/SIGTERM and runs the lifespan shutdown
    uvicorn.run(app, host=host, port=port, log_level=log_level)


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="inkframe e-paper image server")
    parser.add_argument("--host", default="0.0.0.0", help="Host to bind to")
    parser.add_argument("--port", type=int, default=8080, help="Port to bind to")
    parser.add_argument("--config", help="Path to configuration file")
    parser.add_argument("--log-level", default="info", help="Logging level")

    args = parser.parse_args(argv)
    configure_logging(args.log_level)

    try:
        run_server(
            host=args.host,
            port=args.port,
            config_path=args.config,
            log_level=args.log_level.lower(),
        )
    except KeyboardInterrupt:
        logger.info("Server stopped by user")
    except Exception as e:
        logger.error(f"Server error: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())

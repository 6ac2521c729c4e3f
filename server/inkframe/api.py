"""
inkframe Server API - REST endpoints

Device endpoints (used by the e-paper client):
- GET  /image                  random image identifier
- GET  /image/{id}/{index}     one framebuffer quarter

Web endpoints (used by the drawing page):
- POST /image                  store a data URL PNG
- GET  /images                 list identifiers
- GET  /images/{id}            original PNG
"""

import html
import logging
import time
from http import HTTPStatus

from fastapi import APIRouter, HTTPException, Request, Response
from fastapi.responses import HTMLResponse, PlainTextResponse
from pydantic import BaseModel

from .validation import (
    CodecError,
    InkFrameError,
    NotFoundError,
    RateLimitedError,
    StorageError,
    ValidationError,
    parse_identifier,
    parse_quarter_index,
)

logger = logging.getLogger(__name__)

# API Router for REST endpoints
router = APIRouter()

TOO_MANY_REQUESTS = HTTPStatus.TOO_MANY_REQUESTS


# Dependency provider
def get_server(request: Request):
    # The composition root attaches itself to `app.state.server` before
    # serving. Requests arriving without it get a 503.
    server = getattr(request.app.state, "server", None)
    if server is None or server.image_service is None:
        raise HTTPException(status_code=503, detail="Server not ready")
    return server


# Pydantic models for API responses
class HealthStatus(BaseModel):
    status: str
    timestamp: float
    running: bool
    images: int
    service: dict
    limits: dict


# Error mapping

ERROR_STATUS = (
    (RateLimitedError, TOO_MANY_REQUESTS),
    (NotFoundError, HTTPStatus.NOT_FOUND),
    (ValidationError, HTTPStatus.BAD_REQUEST),
    (CodecError, HTTPStatus.INTERNAL_SERVER_ERROR),
    (StorageError, HTTPStatus.INTERNAL_SERVER_ERROR),
)


def status_for_error(exc: InkFrameError) -> int:
    for error_type, status in ERROR_STATUS:
        if isinstance(exc, error_type):
            return int(status)
    return int(HTTPStatus.INTERNAL_SERVER_ERROR)


async def inkframe_error_handler(request: Request, exc: InkFrameError) -> Response:
    status = status_for_error(exc)
    if status == TOO_MANY_REQUESTS:
        return PlainTextResponse(TOO_MANY_REQUESTS.phrase, status_code=status)
    return PlainTextResponse(str(exc), status_code=status)


# Middleware


def client_ip(request: Request) -> str:
    ip = request.headers.get("x-real-ip")
    if not ip:
        ip = request.headers.get("x-forwarded-for")
    if not ip and request.client is not None:
        ip = request.client.host
    return ip or ""


async def limit_middleware(request: Request, call_next):
    """Admit every request through the retrieval limiter."""
    server = getattr(request.app.state, "server", None)
    if server is not None and server.retrieval_limiter is not None:
        if not server.retrieval_limiter.allow():
            return PlainTextResponse(
                TOO_MANY_REQUESTS.phrase, status_code=int(TOO_MANY_REQUESTS)
            )
    return await call_next(request)


async def logging_middleware(request: Request, call_next):
    """Log every request except successful GETs."""
    start = time.monotonic()
    response = await call_next(request)
    duration_ms = int((time.monotonic() - start) * 1000)

    if request.method == "GET" and response.status_code == 200:
        return response

    extra = {
        "user_agent": request.headers.get("user-agent", ""),
        "content_length": request.headers.get("content-length", "-1"),
        "method": request.method,
        "path": request.url.path,
        "client_ip": client_ip(request),
        "status": response.status_code,
        "duration_ms": duration_ms,
        "bytes_written": response.headers.get("content-length", "0"),
    }
    msg = f"[{response.status_code}] {request.method} {request.url.path}"

    if response.status_code >= 500:
        # Buffer the body so it can be logged and still sent
        body = b"".join([chunk async for chunk in response.body_iterator])
        extra["response"] = body.decode("utf-8", errors="replace")
        logger.error(f"{msg} {extra}")
        return Response(
            content=body,
            status_code=response.status_code,
            headers=dict(response.headers),
            media_type=response.media_type,
        )

    logger.info(f"{msg} {extra}")
    return response


# REST API Endpoints


@router.get("/health", response_model=HealthStatus)
async def health_check(request: Request):
    """Liveness plus store and limiter state."""
    server = get_server(request)
    return HealthStatus(
        status="healthy",
        timestamp=time.time(),
        **(await server.get_stats()),
    )


@router.get("/image", response_class=PlainTextResponse)
async def pick_image(request: Request):
    """Identifier of a random stored image."""
    server = get_server(request)
    image_id = await server.image_service.pick_random_identifier()
    return PlainTextResponse(str(image_id))


@router.get("/image/{image_id}/{index}")
async def get_image_quarter(image_id: str, index: str, request: Request):
    """One quarter of the packed framebuffer; the client fetches them in order."""
    server = get_server(request)
    parsed_id = parse_identifier(image_id)
    idx = parse_quarter_index(index)

    data = await server.image_service.get_quarter(parsed_id, idx)
    return Response(content=data, media_type="application/octet-stream")


@router.post("/image")
async def store_image(request: Request):
    """Store a data URL PNG posted by the drawing page."""
    server = get_server(request)
    server.ingest_limiter.require()

    body = await request.body()
    image_id = await server.image_service.store_image(body)
    return Response(status_code=200, headers={"Location": f"/images/{image_id}"})


@router.get("/images")
async def list_images(request: Request):
    server = get_server(request)
    ids = await server.image_service.list_identifiers()

    if "text/html" in request.headers.get("accept", ""):
        items = "\n".join(
            f'    <li><a href="/images/{html.escape(str(v))}">{html.escape(str(v))}</a></li>'
            for v in ids
        )
        page = (
            "<!DOCTYPE html>\n<html>\n<head>\n  <meta charset=\"UTF-8\">\n</head>\n"
            f"<body>\n<ul>\n{items}\n</ul>\n</body>\n</html>\n"
        )
        return HTMLResponse(page)

    # TODO: content-negotiate JSON for Accept: application/json
    return PlainTextResponse("".join(f"{v}\n" for v in ids))


@router.get("/images/{image_id}")
async def get_original_image(image_id: str, request: Request):
    server = get_server(request)
    png = await server.image_service.read_original(parse_identifier(image_id))
    return Response(content=png, media_type="image/png")

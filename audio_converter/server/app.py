"""FastAPI application exposing the conversion, download and health routes.

WHY: Clients (browser front-ends, curl, automation tools) need an HTTP
API to turn a remote audio URL into a downloadable mp3/wav/aac file,
either as a two-step convert + download or in a single request.

HOW: create_app() builds a FastAPI app around one ArtifactStore, one
JobCoordinator and one RetentionSweeper, all configured from a
ServiceConfig. Routes live on a module-level router and reach those
collaborators through app.state. Exception handlers turn every error
into the {"success": false, "error": ...} shape.

RULES:
- Validation errors are 400, missing artifacts 404, rate limits 429,
  fetch/encode failures 500; anything unexpected is a generic 500
- Error responses never contain filesystem paths; encoder diagnostics
  are sanitized and truncated before they are returned
- Downloads stream from disk and delete the file when the response ends,
  including when the client disconnects before the body is sent
- Only POST /api/convert and POST /api/convert-download are rate limited
- The sweeper starts with the app lifespan and is cancelled on shutdown
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.datastructures import MutableHeaders
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from audio_converter import __version__
from audio_converter.config import FORMAT_MIME_TYPES, HOST, PORT, AudioFormat, ServiceConfig
from audio_converter.errors import (
    ConverterError,
    EncoderUnavailableError,
    RateLimitedError,
    TranscodeError,
    VerificationError,
)
from audio_converter.fetcher import Fetcher
from audio_converter.server.artifacts import ArtifactStore, ArtifactStream, RetentionSweeper
from audio_converter.server.jobs import JobCoordinator
from audio_converter.server.models import (
    ConvertBody,
    ConvertResponse,
    ErrorResponse,
    HealthResponse,
)
from audio_converter.server.ratelimit import RateLimiter
from audio_converter.transcoder import Transcoder

logger = logging.getLogger(__name__)

_DIAGNOSTICS_MAX_CHARS = 1000
_STORAGE_PLACEHOLDER = "<storage>"

_SECURITY_HEADERS = {
    "Cross-Origin-Opener-Policy": "same-origin",
    "Cross-Origin-Resource-Policy": "same-origin",
    "Referrer-Policy": "no-referrer",
    "Strict-Transport-Security": "max-age=15552000; includeSubDomains",
    "X-Content-Type-Options": "nosniff",
    "X-DNS-Prefetch-Control": "off",
    "X-Frame-Options": "SAMEORIGIN",
}

router = APIRouter()


# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------


class SecurityHeadersMiddleware:
    """Adds conservative security headers to every response."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        async def send_with_headers(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = MutableHeaders(scope=message)
                for name, value in _SECURITY_HEADERS.items():
                    headers.setdefault(name, value)
            await send(message)

        await self.app(scope, receive, send_with_headers)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def sanitize_diagnostics(text: str, upload_dir: Path) -> str:
    """Strip the storage path from encoder output and keep only its tail."""
    cleaned = text.replace(str(upload_dir), _STORAGE_PLACEHOLDER).strip()
    if len(cleaned) > _DIAGNOSTICS_MAX_CHARS:
        cleaned = "..." + cleaned[-_DIAGNOSTICS_MAX_CHARS:]
    return cleaned


def public_message(exc: ConverterError, upload_dir: Path) -> str:
    """Client-facing message for an expected error."""
    if (
        isinstance(exc, TranscodeError)
        and not isinstance(exc, (EncoderUnavailableError, VerificationError))
        and exc.diagnostics
    ):
        return "{}: {}".format(exc.message, sanitize_diagnostics(exc.diagnostics, upload_dir))
    return exc.message


def _error(status_code: int, message: str, headers: Optional[dict] = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=message).model_dump(),
        headers=headers,
    )


class ArtifactResponse(StreamingResponse):
    """Streams an ArtifactStream and releases it however the response ends.

    The stream is opened before the response starts, so a client that
    disconnects before the first body chunk never iterates it. Closing
    here covers that path as well as normal completion and send errors.
    """

    def __init__(self, stream: ArtifactStream) -> None:
        fmt = AudioFormat(stream.artifact.format)
        super().__init__(
            stream,
            media_type=FORMAT_MIME_TYPES[fmt],
            headers={
                "Content-Length": str(stream.size),
                "Content-Disposition": 'attachment; filename="converted_audio.{}"'.format(fmt.value),
            },
        )
        self.artifact_stream = stream

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            self.artifact_stream.close()


def _client_key(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def enforce_rate_limit(request: Request) -> None:
    """Dependency: count this request against the caller's budget."""
    limiter: RateLimiter = request.app.state.rate_limiter
    limiter.hit(_client_key(request))


# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------


async def _handle_converter_error(request: Request, exc: ConverterError) -> JSONResponse:
    headers = None
    if isinstance(exc, RateLimitedError) and exc.retry_after is not None:
        headers = {"Retry-After": str(int(exc.retry_after) + 1)}
    if exc.status_code >= 500:
        logger.error("Request %s %s failed: %s", request.method, request.url.path, exc)
    return _error(
        exc.status_code,
        public_message(exc, request.app.state.config.upload_dir),
        headers,
    )


async def _handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return _error(400, "Invalid request body")


async def _handle_http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code in (404, 405):
        return _error(404, "Endpoint not found")
    return _error(exc.status_code, str(exc.detail))


async def _handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _error(500, "Internal server error")


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.post(
    "/api/convert",
    response_model=ConvertResponse,
    tags=["conversion"],
    summary="Convert a remote audio file",
    description=(
        "Download the audio at `url`, convert it with ffmpeg, and return a "
        "one-time download URL. The file is deleted after the first download "
        "or when it exceeds the retention age."
    ),
    responses={
        400: {"model": ErrorResponse, "description": "Missing/invalid URL or unsupported format"},
        429: {"model": ErrorResponse, "description": "Too many conversion requests"},
        500: {"model": ErrorResponse, "description": "Download or conversion failed"},
    },
    dependencies=[Depends(enforce_rate_limit)],
)
async def convert(body: ConvertBody, request: Request) -> ConvertResponse:
    conversion = body.to_request()
    coordinator: JobCoordinator = request.app.state.coordinator
    result = await coordinator.convert(conversion)
    return ConvertResponse(downloadUrl=result.download_url, fileId=result.job_id)


@router.get(
    "/api/download/{file_id}",
    tags=["conversion"],
    summary="Download a converted file once",
    description=(
        "Stream the converted file for `file_id` and delete it afterwards. "
        "A second request for the same ID returns 404."
    ),
    responses={
        200: {"content": {m: {} for m in FORMAT_MIME_TYPES.values()}},
        400: {"model": ErrorResponse, "description": "Malformed file ID"},
        404: {"model": ErrorResponse, "description": "File not found or expired"},
    },
)
async def download(file_id: str, request: Request) -> ArtifactResponse:
    store: ArtifactStore = request.app.state.store
    artifact = store.resolve(file_id)
    try:
        stream = store.open_stream(artifact)
    except OSError as exc:
        logger.error("Could not open artifact for %s: %s", file_id, exc)
        raise ConverterError("Error streaming file") from exc
    return ArtifactResponse(stream)


@router.post(
    "/api/convert-download",
    tags=["conversion"],
    summary="Convert and stream the result in one request",
    description=(
        "Same body as POST /api/convert, but the converted file is streamed "
        "back directly. No file is kept on the server afterwards."
    ),
    responses={
        200: {"content": {m: {} for m in FORMAT_MIME_TYPES.values()}},
        400: {"model": ErrorResponse, "description": "Missing/invalid URL or unsupported format"},
        429: {"model": ErrorResponse, "description": "Too many conversion requests"},
        500: {"model": ErrorResponse, "description": "Download or conversion failed"},
    },
    dependencies=[Depends(enforce_rate_limit)],
)
async def convert_download(body: ConvertBody, request: Request) -> ArtifactResponse:
    conversion = body.to_request()
    coordinator: JobCoordinator = request.app.state.coordinator
    try:
        _, stream = await coordinator.convert_and_open(conversion)
    except OSError as exc:
        logger.error("Could not open converted file: %s", exc)
        raise ConverterError("Error streaming file") from exc
    return ArtifactResponse(stream)


@router.get(
    "/health",
    response_model=HealthResponse,
    tags=["health"],
    summary="Health check",
    description="Liveness check for load balancers and container orchestrators.",
)
async def health_check(request: Request) -> HealthResponse:
    now = datetime.now(timezone.utc)
    return HealthResponse(
        status="healthy",
        timestamp=now.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
        uptime=time.monotonic() - request.app.state.started_at,
    )


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------


def create_app(
    config: Optional[ServiceConfig] = None,
    fetcher: Optional[Fetcher] = None,
    transcoder: Optional[Transcoder] = None,
) -> FastAPI:
    """Build the FastAPI app and its collaborators from ``config``.

    RULES:
    - config defaults to ServiceConfig.from_env()
    - fetcher/transcoder default to real implementations built from config
    - The upload directory is created if missing
    """
    config = config or ServiceConfig.from_env()
    config.upload_dir = Path(config.upload_dir)
    config.upload_dir.mkdir(parents=True, exist_ok=True)

    store = ArtifactStore(config.upload_dir)
    coordinator = JobCoordinator(
        store=store,
        fetcher=fetcher or Fetcher(timeout=config.fetch_timeout_seconds),
        transcoder=transcoder or Transcoder(config.ffmpeg_binary),
    )
    sweeper = RetentionSweeper(
        store,
        max_age=config.retention_seconds,
        interval=config.sweep_interval_seconds,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Start the retention sweeper on startup, cancel it on shutdown."""
        logger.info("Audio conversion API storing artifacts in %s", config.upload_dir)
        sweeper.start()
        yield
        await sweeper.stop()

    app = FastAPI(
        lifespan=lifespan,
        title="Audio Converter API",
        description=(
            "Convert remote audio files to mp3, wav or aac with ffmpeg. "
            "Submit a URL, then download the result once, or do both in a "
            "single request."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    app.state.config = config
    app.state.store = store
    app.state.coordinator = coordinator
    app.state.sweeper = sweeper
    app.state.rate_limiter = RateLimiter(
        config.rate_limit_max_requests, config.rate_limit_window_seconds
    )
    app.state.started_at = time.monotonic()

    app.add_middleware(
        CORSMiddleware,
        allow_origin_regex=".*",
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(SecurityHeadersMiddleware)

    app.add_exception_handler(ConverterError, _handle_converter_error)
    app.add_exception_handler(RequestValidationError, _handle_validation_error)
    app.add_exception_handler(StarletteHTTPException, _handle_http_error)
    app.add_exception_handler(Exception, _handle_unexpected)

    app.include_router(router)
    return app


def run_api(host: str = HOST, port: int = PORT, config: Optional[ServiceConfig] = None) -> None:
    """Serve the app with uvicorn."""
    import uvicorn
    uvicorn.run(create_app(config), host=host, port=port)

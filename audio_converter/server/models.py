"""Pydantic request/response models for the HTTP API.

WHY: The FastAPI endpoints need typed schemas for response serialization
and OpenAPI documentation. The request body is parsed leniently and
then validated by hand, because the API promises specific error
messages (and a 400 rather than FastAPI's default 422).

HOW: ConvertBody accepts any JSON values; to_request() checks them and
returns a ConversionRequest or raises ValidationError. Response models
mirror the JSON shapes clients already depend on (camelCase fields).

RULES:
- All models use Field(description=...) for OpenAPI documentation
- Error bodies are always {"success": false, "error": "<message>"}
- Only absolute http/https URLs with a host are accepted
- Python 3.9+ compatible (no PEP 604 unions, use Optional from typing)
"""

from __future__ import annotations

from typing import Any, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, Field

from audio_converter.config import (
    DEFAULT_BITRATE,
    DEFAULT_OUTPUT_FORMAT,
    SUPPORTED_FORMATS,
    AudioFormat,
)
from audio_converter.errors import ValidationError
from audio_converter.server.jobs import ConversionRequest

_ALLOWED_SCHEMES = ("http", "https")


def is_valid_url(url: str) -> bool:
    """True for absolute http(s) URLs that name a host."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme in _ALLOWED_SCHEMES and bool(parsed.hostname)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class ConvertBody(BaseModel):
    """JSON body of POST /api/convert and POST /api/convert-download."""

    url: Any = Field(
        default=None,
        description="Absolute http(s) URL of the source audio.",
    )
    outputFormat: Any = Field(
        default=None,
        description="Target format: mp3, wav or aac. Defaults to mp3.",
    )
    bitrate: Optional[str] = Field(
        default=None,
        description="Encoder bitrate passed to ffmpeg as-is (e.g. '192k'). Defaults to 128k.",
    )

    def to_request(self) -> ConversionRequest:
        """Validate the body and build a ConversionRequest.

        Raises:
            ValidationError: missing or malformed URL, unsupported format.
        """
        if not self.url:
            raise ValidationError("URL is required")
        if not isinstance(self.url, str) or not is_valid_url(self.url):
            raise ValidationError("Invalid URL format")

        # Defaults apply only to absent keys; an explicit "" or null is rejected
        if "outputFormat" in self.model_fields_set:
            fmt = self.outputFormat
        else:
            fmt = DEFAULT_OUTPUT_FORMAT.value
        if fmt not in SUPPORTED_FORMATS:
            raise ValidationError(
                "Invalid output format. Supported formats: {}".format(
                    ", ".join(SUPPORTED_FORMATS)
                )
            )

        return ConversionRequest(
            url=self.url,
            output_format=AudioFormat(fmt),
            bitrate=DEFAULT_BITRATE if self.bitrate is None else self.bitrate,
        )


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class ConvertResponse(BaseModel):
    """Returned by POST /api/convert when the output is ready."""

    success: bool = Field(default=True, description="Always true on this response.")
    downloadUrl: str = Field(description="Relative URL that serves the converted file once.")
    fileId: str = Field(description="Job identifier (36-character UUID).")

    model_config = {"json_schema_extra": {
        "examples": [
            {
                "success": True,
                "downloadUrl": "/api/download/0b5e4a52-6f61-4d1e-9c3b-2f7a8d1c9e10",
                "fileId": "0b5e4a52-6f61-4d1e-9c3b-2f7a8d1c9e10",
            }
        ]
    }}


class ErrorResponse(BaseModel):
    """Standard error response body."""

    success: bool = Field(default=False, description="Always false on errors.")
    error: str = Field(description="Human-readable error description.")


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(description="Service health status.", json_schema_extra={"example": "healthy"})
    timestamp: str = Field(description="Current server time, ISO 8601 UTC.")
    uptime: float = Field(description="Seconds since the service started.")

"""Configuration constants, format tables, and .env loading.

WHY: Centralizes every configurable value (listening address, storage
directory, retention, rate limits, encoder binary) plus the static
format tables, so they are easy to find and override without touching
logic.

HOW: python-dotenv loads the .env file on import. Defaults are read from
the environment as module-level constants. ServiceConfig gathers them
into one object that is passed explicitly to create_app(), so tests and
alternative entry points never depend on ambient globals.

RULES:
- AudioFormat order (mp3, wav, aac) is the artifact lookup order
- FORMAT_CODECS and FORMAT_MIME_TYPES have an entry for every AudioFormat
- All defaults can be overridden via environment variables
- Durations are in seconds
"""

from __future__ import annotations

import enum
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

# Load .env from the working directory
load_dotenv()


# ---------------------------------------------------------------------------
# Output formats
# ---------------------------------------------------------------------------


class AudioFormat(str, enum.Enum):
    """Output formats the encoder is asked to produce.

    Inherits from str so values serialize cleanly to JSON and compare
    equal to the raw request strings.
    """

    MP3 = "mp3"
    WAV = "wav"
    AAC = "aac"


FORMAT_CODECS: dict[AudioFormat, str] = {
    AudioFormat.MP3: "libmp3lame",
    AudioFormat.AAC: "aac",
    AudioFormat.WAV: "pcm_s16le",
}
"""ffmpeg audio codec selected for each output format."""

FORMAT_MIME_TYPES: dict[AudioFormat, str] = {
    AudioFormat.MP3: "audio/mpeg",
    AudioFormat.WAV: "audio/wav",
    AudioFormat.AAC: "audio/aac",
}

SUPPORTED_FORMATS = tuple(f.value for f in AudioFormat)

DEFAULT_OUTPUT_FORMAT = AudioFormat.MP3
DEFAULT_BITRATE = "128k"

SAMPLE_RATE_HZ = 44100
CHANNELS = 2

# ---------------------------------------------------------------------------
# Environment defaults
# ---------------------------------------------------------------------------

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "3000"))
UPLOAD_DIR = os.getenv("UPLOAD_DIR", tempfile.gettempdir())
FFMPEG_BINARY = os.getenv("FFMPEG_BINARY", "ffmpeg")

RETENTION_SECONDS = float(os.getenv("RETENTION_SECONDS", str(60 * 60)))
SWEEP_INTERVAL_SECONDS = float(os.getenv("SWEEP_INTERVAL_SECONDS", str(30 * 60)))

RATE_LIMIT_WINDOW_SECONDS = float(os.getenv("RATE_LIMIT_WINDOW_SECONDS", str(15 * 60)))
RATE_LIMIT_MAX_REQUESTS = int(os.getenv("RATE_LIMIT_MAX_REQUESTS", "10"))

FETCH_TIMEOUT_SECONDS = float(os.getenv("FETCH_TIMEOUT_SECONDS", "300"))


@dataclass
class ServiceConfig:
    """Everything the service needs at startup.

    WHY: The sweeper interval, retention age and storage root used to be
    read from globals wherever they were needed. Passing one object to
    create_app() keeps the wiring explicit and lets tests point the
    service at a temporary directory.

    RULES:
    - upload_dir is created by create_app() if it does not exist
    - rate_limit_max_requests <= 0 disables rate limiting
    """

    upload_dir: Path
    ffmpeg_binary: str = FFMPEG_BINARY
    retention_seconds: float = RETENTION_SECONDS
    sweep_interval_seconds: float = SWEEP_INTERVAL_SECONDS
    rate_limit_window_seconds: float = RATE_LIMIT_WINDOW_SECONDS
    rate_limit_max_requests: int = RATE_LIMIT_MAX_REQUESTS
    fetch_timeout_seconds: float = FETCH_TIMEOUT_SECONDS

    @classmethod
    def from_env(cls) -> ServiceConfig:
        """Build a config from the module-level environment defaults."""
        return cls(upload_dir=Path(UPLOAD_DIR))

"""Shared fixtures for the audio_converter test suite.

WHY: Most tests need the same collaborators: a scratch upload
directory, a fetcher that never touches the network, and an encoder
that behaves in a controlled way without ffmpeg installed.

HOW: The fetcher is the real Fetcher over httpx.MockTransport. Encoders
are tiny POSIX shell scripts written into tmp_path, so the real
Transcoder spawns a real child process. In-process fakes cover the
coordinator tests that only care about call order and failures.

RULES:
- Nothing here opens a network connection or needs ffmpeg
- Every fixture works inside tmp_path; nothing leaks between tests
"""

from __future__ import annotations

import stat
from pathlib import Path
from typing import Callable, List, Optional

import httpx
import pytest

from audio_converter.config import AudioFormat, ServiceConfig
from audio_converter.errors import FetchError, TranscodeError
from audio_converter.fetcher import Fetcher
from audio_converter.server.artifacts import ArtifactStore
from audio_converter.server.jobs import JobCoordinator
from audio_converter.transcoder import Transcoder

SOURCE_AUDIO = b"\x1aE\xdf\xa3fake-webm-audio-payload" * 64
SOURCE_URL = "https://example.com/a.webm"


# ---------------------------------------------------------------------------
# Encoder scripts
# ---------------------------------------------------------------------------

# Argument layout: -i IN -acodec C -ab B -ar R -ac N -y OUT
COPY_ENCODER = """#!/bin/sh
for last; do :; done
echo "encoding $2" >&2
cp "$2" "$last"
"""

FAILING_ENCODER = """#!/bin/sh
echo "$2: Invalid data found when processing input" >&2
exit 1
"""

SILENT_ENCODER = """#!/bin/sh
exit 0
"""


def write_script(directory: Path, name: str, body: str) -> str:
    path = directory / name
    path.write_text(body)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return str(path)


@pytest.fixture
def bin_dir(tmp_path):
    d = tmp_path / "bin"
    d.mkdir()
    return d


@pytest.fixture
def copy_encoder(bin_dir):
    return write_script(bin_dir, "copy-encoder", COPY_ENCODER)


@pytest.fixture
def failing_encoder(bin_dir):
    return write_script(bin_dir, "failing-encoder", FAILING_ENCODER)


@pytest.fixture
def silent_encoder(bin_dir):
    return write_script(bin_dir, "silent-encoder", SILENT_ENCODER)


@pytest.fixture
def missing_encoder(bin_dir):
    return str(bin_dir / "no-such-encoder")


# ---------------------------------------------------------------------------
# Fetcher over a mock transport
# ---------------------------------------------------------------------------


def _source_handler(request: httpx.Request) -> httpx.Response:
    path = request.url.path
    if path == "/missing.webm":
        return httpx.Response(404)
    if path == "/empty.webm":
        return httpx.Response(200, content=b"")
    if path == "/unreachable.webm":
        raise httpx.ConnectError("connection refused", request=request)
    return httpx.Response(200, content=SOURCE_AUDIO, headers={"Content-Type": "audio/webm"})


@pytest.fixture
def mock_fetcher():
    """Real Fetcher whose transport serves canned responses by path."""
    return Fetcher(transport=httpx.MockTransport(_source_handler))


# ---------------------------------------------------------------------------
# Storage and coordinator
# ---------------------------------------------------------------------------


@pytest.fixture
def upload_dir(tmp_path):
    d = tmp_path / "uploads"
    d.mkdir()
    return d


@pytest.fixture
def store(upload_dir):
    return ArtifactStore(upload_dir)


@pytest.fixture
def service_config(upload_dir, copy_encoder):
    return ServiceConfig(
        upload_dir=upload_dir,
        ffmpeg_binary=copy_encoder,
        retention_seconds=3600,
        sweep_interval_seconds=3600,
        rate_limit_window_seconds=900,
        rate_limit_max_requests=100,
    )


def list_artifacts(directory: Path, marker: str) -> List[Path]:
    return sorted(p for p in directory.iterdir() if marker in p.name)


# ---------------------------------------------------------------------------
# In-process fakes
# ---------------------------------------------------------------------------


class FakeFetcher:
    """Writes fixed bytes, or raises, and records each call."""

    def __init__(self, content: bytes = SOURCE_AUDIO, error: Optional[Exception] = None) -> None:
        self.content = content
        self.error = error
        self.calls: List[tuple] = []

    async def fetch(self, url: str, destination: Path) -> None:
        self.calls.append((url, destination))
        if self.error is not None:
            # Leave a partial file behind, as a real interrupted download would
            destination.write_bytes(self.content[:10])
            raise self.error
        destination.write_bytes(self.content)


class FakeTranscoder:
    """Runs a callable in place of the encoder and records each call."""

    def __init__(self, action: Optional[Callable[[Path, Path], None]] = None) -> None:
        self.action = action or _copy
        self.calls: List[tuple] = []

    async def transcode(self, input_path: Path, output_path: Path, output_format: AudioFormat, bitrate: str) -> None:
        self.calls.append((input_path, output_path, output_format, bitrate))
        self.action(input_path, output_path)


def _copy(src: Path, dst: Path) -> None:
    dst.write_bytes(src.read_bytes())


def partial_then_fail(src: Path, dst: Path) -> None:
    dst.write_bytes(b"half-written")
    raise TranscodeError("FFmpeg conversion failed with code 1", exit_code=1, diagnostics="boom")


def do_nothing(src: Path, dst: Path) -> None:
    return None


@pytest.fixture
def coordinator_factory(store):
    def _make(fetcher=None, transcoder=None) -> JobCoordinator:
        return JobCoordinator(
            store=store,
            fetcher=fetcher or FakeFetcher(),
            transcoder=transcoder or FakeTranscoder(),
        )
    return _make


@pytest.fixture
def fetch_error():
    return FetchError("Failed to download file: Not Found", status=404)


@pytest.fixture
def real_transcoder(copy_encoder):
    return Transcoder(copy_encoder)

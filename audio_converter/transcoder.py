"""ffmpeg child-process wrapper producing one output file per call.

WHY: All audio processing is delegated to ffmpeg. The service only has
to pick the codec for the requested format, run the process, and tell
"the encoder rejected this input" apart from "there is no encoder".

HOW: Runs the encoder with asyncio.create_subprocess_exec so only the
calling task waits. stderr is captured into memory for error reporting;
stdout is discarded. run() returns a tagged outcome (TranscodeSuccess,
ProcessFailure or SpawnFailure); transcode() raises the matching error.

RULES:
- Codec comes from FORMAT_CODECS; sample rate 44100 Hz, stereo, -y
- The bitrate string is passed to ffmpeg untouched
- No timeout is enforced here; callers impose their own deadline
- Exit code 0 is necessary but not sufficient for success; the caller
  still checks that the output file exists
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Union

from audio_converter.config import (
    CHANNELS,
    FFMPEG_BINARY,
    FORMAT_CODECS,
    SAMPLE_RATE_HZ,
    AudioFormat,
)
from audio_converter.errors import EncoderUnavailableError, TranscodeError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TranscodeSuccess:
    """The encoder exited with status 0."""


@dataclass(frozen=True)
class ProcessFailure:
    """The encoder ran and exited with a non-zero status."""

    exit_code: int
    diagnostics: str


@dataclass(frozen=True)
class SpawnFailure:
    """The encoder could not be started (missing binary, permissions)."""

    reason: str


TranscodeOutcome = Union[TranscodeSuccess, ProcessFailure, SpawnFailure]


def build_command(
    binary: str,
    input_path: Path,
    output_path: Path,
    output_format: AudioFormat,
    bitrate: str,
) -> List[str]:
    """Build the ffmpeg argument vector for one conversion."""
    return [
        binary,
        "-i", str(input_path),
        "-acodec", FORMAT_CODECS[AudioFormat(output_format)],
        "-ab", bitrate,
        "-ar", str(SAMPLE_RATE_HZ),
        "-ac", str(CHANNELS),
        "-y",
        str(output_path),
    ]


class Transcoder:
    """Runs the external encoder for a single input/output pair."""

    def __init__(self, binary: str = FFMPEG_BINARY) -> None:
        self.binary = binary

    async def run(
        self,
        input_path: Path,
        output_path: Path,
        output_format: AudioFormat,
        bitrate: str,
    ) -> TranscodeOutcome:
        """Run the encoder and describe how it ended, without raising."""
        cmd = build_command(self.binary, input_path, output_path, output_format, bitrate)
        logger.debug("Running encoder: %s", " ".join(cmd))

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            return SpawnFailure(reason=exc.strerror or exc.__class__.__name__)

        _, stderr = await proc.communicate()
        diagnostics = stderr.decode("utf-8", errors="replace") if stderr else ""

        if proc.returncode != 0:
            return ProcessFailure(exit_code=proc.returncode, diagnostics=diagnostics)
        return TranscodeSuccess()

    async def transcode(
        self,
        input_path: Path,
        output_path: Path,
        output_format: AudioFormat,
        bitrate: str,
    ) -> None:
        """Convert ``input_path`` into ``output_path``.

        Raises:
            EncoderUnavailableError: the encoder could not be started.
            TranscodeError: the encoder exited with a non-zero status.
        """
        outcome = await self.run(input_path, output_path, output_format, bitrate)

        if isinstance(outcome, SpawnFailure):
            logger.error("Encoder %s could not be started: %s", self.binary, outcome.reason)
            raise EncoderUnavailableError(outcome.reason)

        if isinstance(outcome, ProcessFailure):
            logger.error(
                "Encoder exited with code %d for %s", outcome.exit_code, input_path.name
            )
            raise TranscodeError(
                "FFmpeg conversion failed with code {}".format(outcome.exit_code),
                exit_code=outcome.exit_code,
                diagnostics=outcome.diagnostics,
            )

"""Per-request conversion job: fetch, transcode, verify, expose.

WHY: Each conversion request owns two temporary files (input and
output) that must be cleaned up correctly no matter where the pipeline
fails. The coordinator is the single place that knows which files exist
at each step and what to unwind.

HOW: Three components work together:
  JobState:        enum of lifecycle states
  Job:             dataclass holding the request, the file paths, and
                   the state history
  JobCoordinator:  drives a Job through Fetcher → Transcoder →
                   verification and returns a ConversionResult

RULES:
- Job IDs are canonical UUID4 strings (36 chars), minted once per request
- Success path: created → downloading → converting → verified → exposed
- Any failure moves the job to failed; failed and exposed are terminal
- The input file is deleted exactly once, on every path, in one finally
- Transcode or verification failure also deletes the output file
- Deletion is best-effort (logged, never raised)
- No deduplication: identical URLs are fetched and converted independently
- The pipeline runs shielded from request cancellation: a client that
  disconnects does not abort the download or the encoder process
"""

from __future__ import annotations

import asyncio
import enum
import logging
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

from audio_converter.config import DEFAULT_BITRATE, DEFAULT_OUTPUT_FORMAT, AudioFormat
from audio_converter.errors import VerificationError
from audio_converter.fetcher import Fetcher
from audio_converter.server.artifacts import (
    Artifact,
    ArtifactStore,
    ArtifactStream,
    remove_file,
)
from audio_converter.transcoder import Transcoder

logger = logging.getLogger(__name__)


class JobState(str, enum.Enum):
    """Lifecycle states of a conversion job."""

    CREATED = "created"
    DOWNLOADING = "downloading"
    CONVERTING = "converting"
    VERIFIED = "verified"
    EXPOSED = "exposed"
    FAILED = "failed"


TERMINAL_STATES = (JobState.EXPOSED, JobState.FAILED)


@dataclass(frozen=True)
class ConversionRequest:
    """A validated conversion request."""

    url: str
    output_format: AudioFormat = DEFAULT_OUTPUT_FORMAT
    bitrate: str = DEFAULT_BITRATE


@dataclass(frozen=True)
class ConversionResult:
    """Reference to a converted artifact that is ready for download."""

    job_id: str
    output_path: Path
    output_format: AudioFormat
    size: int

    @property
    def download_url(self) -> str:
        return "/api/download/{}".format(self.job_id)


@dataclass
class Job:
    """State of one conversion request.

    RULES:
    - id: canonical UUID4 string, unique per request
    - input_path / output_path follow the ArtifactStore naming convention
    - history: every state the job has entered, in order
    - error: message of the failure that moved the job to FAILED
    """

    id: str
    request: ConversionRequest
    input_path: Path
    output_path: Path
    created_at: float
    state: JobState = JobState.CREATED
    error: Optional[str] = None
    history: List[JobState] = field(default_factory=lambda: [JobState.CREATED])


class JobCoordinator:
    """Runs conversion jobs against a shared artifact directory."""

    def __init__(
        self,
        store: ArtifactStore,
        fetcher: Fetcher,
        transcoder: Transcoder,
    ) -> None:
        self.store = store
        self.fetcher = fetcher
        self.transcoder = transcoder

    def create_job(self, request: ConversionRequest) -> Job:
        job_id = str(uuid.uuid4())
        job = Job(
            id=job_id,
            request=request,
            input_path=self.store.input_path(job_id),
            output_path=self.store.output_path(job_id, request.output_format),
            created_at=time.time(),
        )
        logger.info(
            "Created job %s (%s, %s)", job_id, request.output_format.value, request.bitrate
        )
        return job

    async def convert(self, request: ConversionRequest) -> ConversionResult:
        """Create a job and run it to a terminal state.

        The pipeline runs in its own task shielded from cancellation of
        the caller, so it always finishes and cleans up after itself.

        Raises:
            FetchError, TranscodeError, EncoderUnavailableError,
            VerificationError: the job failed; its files are cleaned up.
        """
        job = self.create_job(request)
        task = asyncio.ensure_future(self.run(job))
        task.add_done_callback(_consume_result)
        return await asyncio.shield(task)

    async def convert_and_open(self, request: ConversionRequest) -> Tuple[ConversionResult, ArtifactStream]:
        """Convert, then open the output as a stream that deletes it when done.

        No artifact outlives the stream: the input is already gone, and
        the output (plus the input path, defensively) is removed when the
        stream is exhausted, aborted, or fails.
        """
        result = await self.convert(request)
        artifact = Artifact(
            job_id=result.job_id,
            path=result.output_path,
            format=result.output_format,
            size=result.size,
        )
        stream = self.store.open_stream(
            artifact, extra_paths=[self.store.input_path(result.job_id)]
        )
        return result, stream

    async def run(self, job: Job) -> ConversionResult:
        """Drive ``job`` through the pipeline."""
        request = job.request
        try:
            self._advance(job, JobState.DOWNLOADING)
            logger.info("Downloading file for job %s from: %s", job.id, request.url)
            try:
                await self.fetcher.fetch(request.url, job.input_path)
            except Exception as exc:
                self._fail(job, exc)
                raise

            self._advance(job, JobState.CONVERTING)
            logger.info("Converting audio for job %s to %s", job.id, request.output_format.value)
            try:
                await self.transcoder.transcode(
                    job.input_path, job.output_path, request.output_format, request.bitrate
                )
                size = self._verify_output(job)
            except Exception as exc:
                self._fail(job, exc)
                remove_file(job.output_path)
                raise

            self._advance(job, JobState.VERIFIED)
            logger.info("Conversion successful for job %s (%d bytes)", job.id, size)

            result = ConversionResult(
                job_id=job.id,
                output_path=job.output_path,
                output_format=request.output_format,
                size=size,
            )
            self._advance(job, JobState.EXPOSED)
            return result
        finally:
            remove_file(job.input_path)

    @staticmethod
    def _verify_output(job: Job) -> int:
        """Return the output size, or raise if the encoder left no regular file."""
        if not job.output_path.is_file():
            raise VerificationError()
        return job.output_path.stat().st_size

    @staticmethod
    def _advance(job: Job, state: JobState) -> None:
        if job.state in TERMINAL_STATES:
            raise RuntimeError(
                "Job {} is already {} and cannot become {}".format(
                    job.id, job.state.value, state.value
                )
            )
        job.state = state
        job.history.append(state)

    @staticmethod
    def _fail(job: Job, exc: BaseException) -> None:
        job.error = str(exc)
        job.state = JobState.FAILED
        job.history.append(JobState.FAILED)
        logger.warning("Job %s failed: %s", job.id, exc)


def _consume_result(task: asyncio.Future) -> None:
    """Retrieve a detached job's outcome so a failure after a client
    disconnect is not reported as an unretrieved task exception."""
    if not task.cancelled():
        task.exception()

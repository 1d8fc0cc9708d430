"""On-disk artifact store, one-shot download streams, and retention sweep.

WHY: Converted files live in a shared upload directory between the
conversion request and the download request. Something has to map a
file ID back to its file, hand it out exactly once, and make sure that
abandoned inputs and outputs do not fill the disk.

HOW: Four pieces work together:
  Artifact:         an output file found for a job ID (path, format, size)
  ArtifactStore:    naming convention, resolve(), open_stream(), sweep()
  ArtifactStream:   scoped read handle; deletes its files when iteration
                    ends for any reason
  RetentionSweeper: asyncio task running sweep() at start and on an interval

RULES:
- File names: {job_id}_input.webm and {job_id}_output.{format}
- resolve() validates the ID shape before touching the filesystem
- resolve() checks formats in AudioFormat order and returns the first hit
- Deletion is best-effort: failures are logged, never raised
- The sweeper shares no memory with request handling; the filesystem
  (existence and mtime) is the only coordination. Several instances
  sharing one directory can race; this is a known limitation.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, BinaryIO, Iterable, List, Optional

from starlette.concurrency import run_in_threadpool

from audio_converter.config import AudioFormat
from audio_converter.errors import InvalidIdentifierError, NotFoundError

logger = logging.getLogger(__name__)

JOB_ID_PATTERN = re.compile(r"^[a-f0-9-]{36}$")

INPUT_SUFFIX = "_input.webm"
_ARTIFACT_MARKERS = ("_input.", "_output.")

STREAM_CHUNK_SIZE = 64 * 1024


def remove_file(path: Path) -> bool:
    """Delete a file, logging instead of raising on failure.

    Returns True if a file was removed, False if it was already gone or
    could not be deleted.
    """
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    except OSError:
        logger.warning("Failed to clean up file %s", path, exc_info=True)
        return False
    return True


def is_valid_job_id(job_id: str) -> bool:
    return bool(job_id) and JOB_ID_PATTERN.match(job_id) is not None


@dataclass(frozen=True)
class Artifact:
    """An output file that exists on disk for a job."""

    job_id: str
    path: Path
    format: AudioFormat
    size: int


class ArtifactStream:
    """Read handle over one artifact that deletes its files when done.

    WHY: A download must remove the file after it has been sent, whether
    the client read everything, disconnected halfway, or the read failed.
    Putting the delete in one place means no exit path can skip it.

    HOW: open() acquires the file handle and size before any response
    header is sent, so a failure there can still become a JSON error.
    Iterating the stream yields chunks read in a worker thread. close()
    is idempotent; it runs from the iterator's finally block and from
    the HTTP response that serves the stream, which may never iterate it.

    RULES:
    - close() deletes every path in self.paths (the artifact plus any
      extra paths the caller asked to remove with it)
    - Call close() directly if the stream is never iterated
    """

    def __init__(self, artifact: Artifact, extra_paths: Iterable[Path] = ()) -> None:
        self.artifact = artifact
        self.paths: List[Path] = [artifact.path, *extra_paths]
        self._handle: Optional[BinaryIO] = None
        self._closed = False

    @property
    def size(self) -> int:
        return self.artifact.size

    def open(self) -> ArtifactStream:
        try:
            self._handle = open(self.artifact.path, "rb")
        except OSError:
            self.close()
            raise
        return self

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self._iter_chunks()

    async def _iter_chunks(self) -> AsyncIterator[bytes]:
        if self._handle is None:
            raise RuntimeError("ArtifactStream.open() must be called before iterating")
        try:
            while True:
                chunk = await run_in_threadpool(self._handle.read, STREAM_CHUNK_SIZE)
                if not chunk:
                    break
                yield chunk
        except Exception:
            logger.exception("File stream error for job %s", self.artifact.job_id)
            raise
        finally:
            self.close()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._handle is not None:
            try:
                self._handle.close()
            except OSError:
                logger.warning("Failed to close stream for job %s", self.artifact.job_id)
        for path in self.paths:
            remove_file(path)
        logger.info("Released artifact for job %s", self.artifact.job_id)


class ArtifactStore:
    """Naming, lookup, one-shot serving and sweeping of artifact files."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def input_path(self, job_id: str) -> Path:
        return self.root / "{}{}".format(job_id, INPUT_SUFFIX)

    def output_path(self, job_id: str, output_format: AudioFormat) -> Path:
        return self.root / "{}_output.{}".format(job_id, AudioFormat(output_format).value)

    def resolve(self, job_id: str) -> Artifact:
        """Find the output artifact for a job ID.

        Raises:
            InvalidIdentifierError: the ID does not look like a job ID.
                No filesystem lookup is attempted.
            NotFoundError: no output file exists for any known format.
        """
        if not is_valid_job_id(job_id):
            raise InvalidIdentifierError()

        for fmt in AudioFormat:
            path = self.output_path(job_id, fmt)
            try:
                stat = path.stat()
            except FileNotFoundError:
                continue
            if not path.is_file():
                continue
            return Artifact(job_id=job_id, path=path, format=fmt, size=stat.st_size)

        raise NotFoundError()

    def open_stream(self, artifact: Artifact, extra_paths: Iterable[Path] = ()) -> ArtifactStream:
        """Acquire a self-deleting read stream over ``artifact``.

        Raises OSError if the file cannot be opened; the artifact and the
        extra paths are deleted in that case too.
        """
        return ArtifactStream(artifact, extra_paths).open()

    def iter_artifact_files(self) -> List[Path]:
        """All files in the root that follow the artifact naming convention."""
        try:
            entries = list(self.root.iterdir())
        except FileNotFoundError:
            return []
        return [
            p for p in entries
            if any(marker in p.name for marker in _ARTIFACT_MARKERS)
        ]

    def sweep(self, max_age: float) -> int:
        """Delete artifacts whose last modification is at least ``max_age`` seconds ago.

        RULES:
        - Input and output artifacts are both candidates
        - max_age=0 removes everything, max_age=inf removes nothing
        - Per-file errors are logged and the sweep continues
        - Returns the number of files removed
        """
        now = time.time()
        removed = 0

        for path in self.iter_artifact_files():
            try:
                age = now - path.stat().st_mtime
            except FileNotFoundError:
                continue
            except OSError:
                logger.warning("Could not stat %s during sweep", path, exc_info=True)
                continue
            # mtime can run slightly ahead of time.time() on some filesystems
            if (max_age <= 0 or age >= max_age) and remove_file(path):
                removed += 1
                logger.info("Cleaned up old file: %s", path.name)

        return removed


class RetentionSweeper:
    """Periodic asyncio task that purges stale artifacts.

    WHY: Outputs that nobody downloads, and inputs orphaned by a crash or
    restart, would otherwise stay on disk forever.

    HOW: start() creates a task that sweeps immediately, then sleeps for
    ``interval`` seconds between sweeps. stop() cancels and awaits it.

    RULES:
    - Configuration (store, max_age, interval) is passed in explicitly
    - A failing sweep is logged; the loop keeps running
    """

    def __init__(self, store: ArtifactStore, max_age: float, interval: float) -> None:
        self.store = store
        self.max_age = max_age
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    def run_once(self) -> int:
        try:
            removed = self.store.sweep(self.max_age)
        except Exception:
            logger.exception("Cleanup error")
            return 0
        if removed:
            logger.info("Sweep removed %d stale artifact(s)", removed)
        return removed

    async def _loop(self) -> None:
        while True:
            self.run_once()
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

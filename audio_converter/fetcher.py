"""Streaming HTTP download of the source media into a local file.

WHY: Source recordings can be arbitrarily large, so the body must go
straight to disk instead of being buffered in memory. Callers also need
a single typed error for every way the download can fail, so they know
to clean up the (possibly partial) input file.

HOW: Uses httpx.AsyncClient.stream() and writes each chunk as it
arrives. A transport can be injected so tests run against
httpx.MockTransport instead of the network.

RULES:
- Exactly one attempt per call; no retries
- Non-2xx status, transport errors and empty bodies raise FetchError
- On failure a partial file may be left behind; the caller deletes it
- On success exactly one file exists at the destination
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import httpx

from audio_converter.config import FETCH_TIMEOUT_SECONDS
from audio_converter.errors import FetchError

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 64 * 1024


class Fetcher:
    """Downloads a URL to a file without holding the body in memory.

    RULES:
    - The URL must already be validated by the caller
    - The destination must not hold another job's artifact
    - Redirects are followed
    """

    def __init__(
        self,
        timeout: float = FETCH_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._timeout = httpx.Timeout(timeout, connect=30.0)
        self._transport = transport

    async def fetch(self, url: str, destination: Path) -> None:
        """Stream the resource at ``url`` into ``destination``.

        Raises:
            FetchError: on a non-success status, a connection failure, or
                a response without a body.
        """
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout,
                follow_redirects=True,
                transport=self._transport,
            ) as client:
                async with client.stream("GET", url) as resp:
                    if not resp.is_success:
                        raise FetchError(
                            "Failed to download file: {}".format(
                                resp.reason_phrase or resp.status_code
                            ),
                            status=resp.status_code,
                        )
                    written = await self._write_body(resp, destination)
        except httpx.HTTPError as exc:
            raise FetchError("Failed to download file: {}".format(_describe(exc))) from exc

        if written == 0:
            raise FetchError("No response body received")

        logger.info("Downloaded %d bytes from %s", written, url)

    @staticmethod
    async def _write_body(resp: httpx.Response, destination: Path) -> int:
        written = 0
        with open(destination, "wb") as f:
            async for chunk in resp.aiter_bytes(_CHUNK_SIZE):
                f.write(chunk)
                written += len(chunk)
        return written


def _describe(exc: httpx.HTTPError) -> str:
    """Short, path-free description of a transport failure."""
    if isinstance(exc, httpx.TimeoutException):
        return "request timed out"
    if isinstance(exc, httpx.ConnectError):
        return "could not connect to host"
    return exc.__class__.__name__

"""Error taxonomy for the conversion service.

WHY: Each failure class maps to a distinct HTTP status and a distinct
cleanup obligation. Typed exceptions let the coordinator decide what to
unwind and let the app turn any of them into the JSON error shape at
the request boundary.

HOW: Every error subclasses ConverterError, which carries the HTTP
status_code and a public message that is safe to return to clients.

RULES:
- message never contains filesystem paths
- TranscodeError keeps the raw encoder diagnostics separately; the app
  sanitizes them before they reach a response
- Anything that is not a ConverterError is an internal error (500)
"""

from __future__ import annotations

from typing import Optional


class ConverterError(Exception):
    """Base class for all expected conversion-service failures."""

    status_code = 500

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ValidationError(ConverterError):
    """Raised when a request is rejected before any work starts."""

    status_code = 400


class InvalidIdentifierError(ValidationError):
    """Raised when a file ID does not have the job-identifier shape."""

    def __init__(self, message: str = "Invalid file ID") -> None:
        super().__init__(message)


class FetchError(ConverterError):
    """Raised when the source media cannot be downloaded.

    RULES:
    - Covers non-2xx responses, connection failures and empty bodies
    - status is the remote HTTP status when there was one
    """

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        self.status = status
        super().__init__(message)


class TranscodeError(ConverterError):
    """Raised when the encoder exits with a non-zero status.

    RULES:
    - exit_code is None when the process never ran
    - diagnostics is the encoder's captured stderr, unmodified
    """

    def __init__(
        self,
        message: str,
        exit_code: Optional[int] = None,
        diagnostics: str = "",
    ) -> None:
        self.exit_code = exit_code
        self.diagnostics = diagnostics
        super().__init__(message)


class EncoderUnavailableError(TranscodeError):
    """Raised when the encoder binary cannot be started at all."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__("Audio encoder is unavailable: {}".format(reason))


class VerificationError(TranscodeError):
    """Raised when the encoder reported success but left no output file."""

    def __init__(self, message: str = "Conversion failed - output file not created") -> None:
        super().__init__(message)


class NotFoundError(ConverterError):
    """Raised when no output artifact exists for a file ID."""

    status_code = 404

    def __init__(self, message: str = "File not found or expired") -> None:
        super().__init__(message)


class RateLimitedError(ConverterError):
    """Raised when a client exceeds its conversion request budget."""

    status_code = 429

    def __init__(
        self,
        message: str = "Too many conversion requests, please try again later",
        retry_after: Optional[float] = None,
    ) -> None:
        self.retry_after = retry_after
        super().__init__(message)

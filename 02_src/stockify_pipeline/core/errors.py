"""Exception types raised by inference clients and the pipeline API."""

from typing import Optional

from ..schemas.job import ErrorKind


class PipelineError(RuntimeError):
    """Base class for errors raised to pipeline callers."""


class UnknownModelError(PipelineError):
    """Raised when a batch is submitted for a model not in the catalog."""


class JobNotFoundError(PipelineError):
    """Raised when status()/cancel() is called with an unknown job id."""


class ImageRejectedError(PipelineError):
    """Raised when an image fails format or size gating."""


class InferenceError(RuntimeError):
    """Base class for failures of a single inference call."""

    kind: ErrorKind = ErrorKind.UNAVAILABLE

    def __init__(self, message: str = ""):
        super().__init__(message or self.kind.value)


class RateLimited(InferenceError):
    """Upstream throttled the call (HTTP 429).

    Attributes:
        retry_after_s: Server-suggested delay before retrying, if sent
    """

    kind = ErrorKind.RATE_LIMITED

    def __init__(self, message: str = "", retry_after_s: Optional[float] = None):
        super().__init__(message)
        self.retry_after_s = retry_after_s


class Unavailable(InferenceError):
    """Transient upstream or network fault."""

    kind = ErrorKind.UNAVAILABLE


class Invalid(InferenceError):
    """Malformed input, blocked content or unprocessable response."""

    kind = ErrorKind.INVALID


class Unauthorized(InferenceError):
    """Missing or rejected credential. Affects every call in the batch."""

    kind = ErrorKind.UNAUTHORIZED

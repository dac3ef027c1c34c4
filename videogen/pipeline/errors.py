"""
Error taxonomy for the video generation pipeline.

Every stage raises one of these instead of a bare Exception so the HTTP
layer can render a uniform `{"error": ...}` envelope with the right status:

  ValidationError            400  bad / missing input (checked before vendor calls)
  InvalidTransitionError     409  illegal project status write
  UnauthorizedError          401  no valid session
  ForbiddenError             403  caller does not own the project
  NotFoundError              404  project / voice / profile video absent
  PreconditionError          412  composition input asset missing
  UpstreamFormatError        502  vendor response could not be parsed
  UpstreamError              502  vendor call itself failed
  AllGenerationsFailedError  502  fan-out batch produced zero results
"""

from typing import Optional

MAX_RAW_PREVIEW = 500


class PipelineError(Exception):
    """Base class for all errors surfaced to API callers."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(PipelineError):
    status_code = 400


class InvalidTransitionError(ValidationError):
    status_code = 409


class UnauthorizedError(PipelineError):
    status_code = 401

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message)


class ForbiddenError(PipelineError):
    """Ownership failure. The message never says whether the project exists."""

    status_code = 403

    def __init__(self, message: str = "Forbidden"):
        super().__init__(message)


class NotFoundError(PipelineError):
    status_code = 404


class PreconditionError(PipelineError):
    status_code = 412


class UpstreamError(PipelineError):
    """A vendor call failed (network, quota, 5xx). Never retried."""

    status_code = 502

    def __init__(self, message: str, vendor: str = ""):
        super().__init__(message)
        self.vendor = vendor


class UpstreamFormatError(PipelineError):
    """A vendor answered, but not in the shape we asked for."""

    status_code = 502

    def __init__(self, message: str, raw: Optional[str] = None):
        super().__init__(message)
        self.raw = (raw or "")[:MAX_RAW_PREVIEW]


class AllGenerationsFailedError(PipelineError):
    status_code = 502

    def __init__(self, message: str, errors: Optional[list[str]] = None):
        super().__init__(message)
        self.errors = errors or []

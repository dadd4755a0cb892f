"""
OLX sync exception classes.

Structured errors shared by the API client, the catalog/listing services and
the scraper runner.
"""
from typing import Optional, Dict, Any


class OlxSyncError(Exception):
    """
    Base exception for all olxsync errors.

    Attributes:
        message: human readable message (upstream text is kept verbatim)
        error_code: machine readable code, defaults to the class name
        context: extra context for logs and operator surfaces
    """

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.context = context or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_code": self.error_code,
            "message": self.message,
            "context": self.context,
        }


class ApiError(OlxSyncError):
    """
    Marketplace API failure: transport, timeout, non-JSON body or an
    unclassified status code.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        url: Optional[str] = None,
        response_body: Optional[str] = None,
        **kwargs,
    ):
        self.status_code = status_code
        self.url = url
        self.response_body = response_body
        context = kwargs.pop("context", None) or {}
        context.update({"status_code": status_code, "url": url})
        super().__init__(message, context=context, **kwargs)


class AuthenticationError(ApiError):
    """Bad credentials or an expired/revoked token (401/403)."""


class NotFoundError(ApiError):
    """Remote resource is absent (404)."""


class ValidationError(ApiError):
    """Remote schema or business rule rejection (422). Message is shown verbatim."""


class SyncError(OlxSyncError):
    """Operation-level failure of a sync batch."""

    def __init__(self, message: str, cause: Optional[Exception] = None, **kwargs):
        self.cause = cause
        context = kwargs.pop("context", None) or {}
        if cause is not None:
            context["cause"] = cause.__class__.__name__
        super().__init__(message, context=context, **kwargs)


class ArgumentError(OlxSyncError, ValueError):
    """Local precondition violated before any network call."""


class ScraperError(OlxSyncError):
    """External scraper process failed."""


class ScraperTimeoutError(ScraperError):
    """
    Scraper was force-terminated by the watchdog.

    Attributes:
        reason: "timeout" (overall deadline) or "stall" (no progress)
        seconds: the limit that was exceeded
        last_progress: last progress event reported by the process
    """

    def __init__(self, reason: str, seconds: float, last_progress: Optional[Dict[str, Any]] = None):
        self.reason = reason
        self.seconds = seconds
        self.last_progress = last_progress or {}
        if reason == "stall":
            message = f"No progress for {int(seconds)} seconds"
        else:
            message = f"Timed out after {int(seconds)} seconds"
        super().__init__(
            message,
            context={"reason": reason, "seconds": seconds, "last_progress": self.last_progress},
        )

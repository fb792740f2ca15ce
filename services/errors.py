from typing import Optional


class WarehouseSyncError(RuntimeError):
    """Base class for failures surfaced by the PO/late-order jobs."""


class UpstreamError(WarehouseSyncError):
    """Network failure or non-2xx response from GoFlow or the Magento export."""

    def __init__(self, message: str, *, status_code: Optional[int] = None, url: Optional[str] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.url = url


class UpstreamRateLimitError(UpstreamError):
    """Raised when an upstream keeps answering 429 after retries."""


class ParseError(WarehouseSyncError):
    """Malformed CSV export or report payload."""


class PreconditionError(WarehouseSyncError):
    """A job cannot start right now: already running or still cooling down."""

    def __init__(self, message: str, *, reason: str, retry_after_seconds: int = 0) -> None:
        super().__init__(message)
        self.reason = reason
        self.retry_after_seconds = max(0, int(retry_after_seconds))


class NotFoundError(WarehouseSyncError):
    """Referenced purchase order or delivery does not exist."""

"""Error taxonomy for timeline reads."""
from __future__ import annotations

from typing import Any, Dict, Optional


class TimelineError(Exception):
    http_status = 500
    code = "timeline_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_detail(self) -> Dict[str, Any]:
        return {"error": self.code, "message": self.message}


class AuthenticationRequired(TimelineError):
    http_status = 401
    code = "authentication_required"

    def __init__(self, message: str = "Authentication required.") -> None:
        super().__init__(message)


class AuthorizationDenied(TimelineError):
    """Raised when a child is missing or owned by another family.

    Both cases share one message so callers cannot probe for existence.
    """

    http_status = 403
    code = "authorization_denied"

    def __init__(self, message: str = "Child not found or does not belong to your family.") -> None:
        super().__init__(message)


class ValidationError(TimelineError):
    http_status = 400
    code = "validation_error"

    def __init__(self, message: str, *, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.field = field

    def to_detail(self) -> Dict[str, Any]:
        detail = super().to_detail()
        if self.field:
            detail["field"] = self.field
        return detail


class SourceFetchError(TimelineError):
    http_status = 502
    code = "source_fetch_failed"

    def __init__(self, kind: str, message: Optional[str] = None) -> None:
        super().__init__(message or f"Failed to load {kind} records.")
        self.kind = kind

    def to_detail(self) -> Dict[str, Any]:
        detail = super().to_detail()
        detail["source"] = self.kind
        return detail


class MalformedRecord(ValueError):
    """A store record whose anchor timestamp cannot be used; never leaves the aggregator."""

    def __init__(self, kind: str, record_id: Optional[str], raw_value: Any) -> None:
        super().__init__(f"{kind} record {record_id} has unusable timestamp {raw_value!r}")
        self.kind = kind
        self.record_id = record_id
        self.raw_value = raw_value

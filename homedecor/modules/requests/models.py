"""
Generation Request Models

A ``GenerationRequest`` is one user's ask to redecorate one room photo in
one style. It moves Pending -> Processing -> Completed | Failed and never
leaves a terminal state. ``RequestLog`` rows are the append-only, per-request
event stream clients can read back.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy import DateTime
from sqlalchemy.types import TypeDecorator
from sqlmodel import SQLModel, Field

from homedecor.core.exceptions import InvalidStatusTransition


class RequestStatus(str, Enum):
    """Request lifecycle states."""
    PENDING = "Pending"         # Persisted, waiting for a worker
    PROCESSING = "Processing"   # Pipeline is running
    COMPLETED = "Completed"     # result_url is set
    FAILED = "Failed"           # error_message is set


TERMINAL_STATUSES = (RequestStatus.COMPLETED.value, RequestStatus.FAILED.value)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware UTC timestamp column.

    SQLite keeps no offset, so values are normalised to UTC on the way in
    and tagged as UTC on the way out.
    """
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None or value.tzinfo is not None:
            return value
        return value.replace(tzinfo=timezone.utc)


class LogSeverity(str, Enum):
    INFO = "Information"
    WARNING = "Warning"
    ERROR = "Error"


class GenerationRequest(SQLModel, table=True):
    """
    Persisted redecoration request.

    Invariants:
    - ``result_url`` is non-empty iff status is Completed
    - ``error_message`` is non-empty iff status is Failed
    - ``credits_charged`` is fixed at creation
    """
    __tablename__ = "generation_requests"

    id: str = Field(
        default_factory=lambda: str(uuid.uuid4()),
        primary_key=True
    )
    user_id: str = Field(index=True)

    # Input Data
    source_image_url: str
    style_label: str
    custom_prompt: Optional[str] = None
    use_mask: bool = Field(default=False)

    # Pipeline Status
    status: str = Field(default=RequestStatus.PENDING.value, index=True)
    result_url: Optional[str] = None
    error_message: Optional[str] = None
    mask_applied: bool = Field(default=False)

    # Billing
    credits_charged: int = Field(default=1)
    credits_refunded: bool = Field(default=False)

    # Timestamps
    created_at: datetime = Field(default_factory=utc_now, sa_type=UTCDateTime, index=True)
    updated_at: datetime = Field(default_factory=utc_now, sa_type=UTCDateTime)
    completed_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def _transition(self, expected: RequestStatus, target: RequestStatus):
        if self.status != expected.value:
            raise InvalidStatusTransition(self.status, target.value, request_id=self.id)
        self.status = target.value
        self.updated_at = utc_now()

    def mark_processing(self):
        """Pending -> Processing."""
        self._transition(RequestStatus.PENDING, RequestStatus.PROCESSING)

    def mark_completed(self, result_url: str):
        """Processing -> Completed with the stored result URL."""
        if not result_url:
            raise ValueError("result_url is required to complete a request")
        self._transition(RequestStatus.PROCESSING, RequestStatus.COMPLETED)
        self.result_url = result_url
        self.error_message = None
        self.completed_at = self.updated_at

    def mark_failed(self, error_message: str):
        """Pending | Processing -> Failed."""
        if self.status == RequestStatus.PENDING.value:
            self._transition(RequestStatus.PENDING, RequestStatus.FAILED)
        else:
            self._transition(RequestStatus.PROCESSING, RequestStatus.FAILED)
        self.error_message = error_message or "Unknown error"
        self.result_url = None
        self.completed_at = self.updated_at

    def to_response_dict(self) -> Dict[str, Any]:
        """Convert to API response format."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "status": self.status,
            "style_label": self.style_label,
            "source_image_url": self.source_image_url,
            "custom_prompt": self.custom_prompt,
            "use_mask": self.use_mask,
            "mask_applied": self.mask_applied,
            "result_url": self.result_url,
            "error_message": self.error_message,
            "credits_charged": self.credits_charged,
            "credits_refunded": self.credits_refunded,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None
        }


class RequestLog(SQLModel, table=True):
    """Append-only log event attached to a request."""
    __tablename__ = "request_logs"

    id: Optional[int] = Field(default=None, primary_key=True)
    request_id: str = Field(index=True)
    severity: str = Field(default=LogSeverity.INFO.value)
    message: str
    timestamp: datetime = Field(default_factory=utc_now, sa_type=UTCDateTime, index=True)

    def to_response_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "request_id": self.request_id,
            "severity": self.severity,
            "message": self.message,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }


@dataclass(frozen=True)
class ConformanceResult:
    """PNG bytes guaranteed to satisfy the generation API input limits."""
    data: bytes
    width: int
    height: int
    size_bytes: int
    passes: int

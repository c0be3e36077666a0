"""
Domain models for service requests, device tokens and notifications.
"""

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

from helparo.errors import ErrorKind


def utcnow() -> datetime:
    return datetime.now(UTC)


class RequestStatus(StrEnum):
    OPEN = "open"
    ASSIGNED = "assigned"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (RequestStatus.COMPLETED, RequestStatus.CANCELLED)


class BroadcastStatus(StrEnum):
    IDLE = "idle"  # Not offered to any helper yet
    BROADCASTING = "broadcasting"  # Offered to nearby helpers, waiting
    ACCEPTED = "accepted"  # A helper took the job
    EXPIRED = "expired"  # Nobody took it, or the request went away


class Platform(StrEnum):
    ANDROID = "android"
    IOS = "ios"
    WEB = "web"


class ServiceRequest(BaseModel):
    id: str
    customer_id: str
    title: str = ""
    description: str | None = None
    status: RequestStatus = RequestStatus.OPEN
    broadcast_status: BroadcastStatus = BroadcastStatus.IDLE
    assigned_helper_id: str | None = None
    assigned_at: datetime | None = None
    job_completed_at: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    version: int = 0  # Bumped on every write, used for conditional updates


class RequestStatusView(BaseModel):
    """The only fields a status poll returns."""

    status: RequestStatus
    broadcast_status: BroadcastStatus
    assigned_helper_id: str | None = None


class DeviceToken(BaseModel):
    user_id: str
    token: str
    platform: Platform = Platform.ANDROID
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class NotificationPreference(BaseModel):
    user_id: str
    channel: str  # e.g. "push", "email", "sms"
    enabled: bool
    updated_at: datetime = Field(default_factory=utcnow)


class Notification(BaseModel):
    id: str
    user_id: str
    request_id: str | None = None
    channel: str = "push"
    title: str
    body: str = ""
    created_at: datetime = Field(default_factory=utcnow)
    read_at: datetime | None = None


class CallerContext(BaseModel):
    """Identity of whoever invoked an action. ``user_id`` is None when anonymous."""

    user_id: str | None = None
    is_admin: bool = False

    @property
    def is_authenticated(self) -> bool:
        return bool(self.user_id)


class ActionResult(BaseModel):
    """
    Structured outcome of an action: ``{success, data}`` or ``{error}``.

    ``kind`` classifies a failure for the HTTP layer and is never serialized.
    """

    success: bool | None = None
    data: Any = None
    error: str | None = None
    kind: ErrorKind | None = Field(default=None, exclude=True)

    @classmethod
    def ok(cls, data: Any = None) -> "ActionResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str, kind: ErrorKind) -> "ActionResult":
        return cls(error=error, kind=kind)

    @property
    def failed(self) -> bool:
        return self.error is not None


class PushRegisterBody(BaseModel):
    """Body of the unauthenticated token-registration endpoint."""

    userId: str | None = None
    token: str | None = None
    platform: str | None = None


class AssignBody(BaseModel):
    helper_id: str | None = None


class StatusBody(BaseModel):
    status: str
    helper_id: str | None = None


class DeviceBody(BaseModel):
    token: str | None = None
    platform: str | None = None


class PreferenceBody(BaseModel):
    channel: str | None = None
    enabled: bool

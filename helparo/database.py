from __future__ import annotations

import json
import logging
from collections.abc import Iterator, MutableMapping
from pathlib import Path
from typing import Any, Generic, TypeVar

from helparo.errors import ConcurrentModification, NotFound
from helparo.models import (
    DeviceToken,
    Notification,
    NotificationPreference,
    Platform,
    RequestStatus,
    RequestStatusView,
    ServiceRequest,
    utcnow,
)

logger = logging.getLogger(__name__)

K = TypeVar("K")
V = TypeVar("V")

DEFAULT_SAMPLE_DATA_PATH = Path(__file__).parent.parent / "sample_data.json"


class InMemoryKeyValueDatabase(Generic[K, V]):
    """
    Simple in-memory key/value table.
    """

    def __init__(self) -> None:
        self._store: MutableMapping[K, V] = {}

    def put(self, key: K, value: V) -> None:
        self._store[key] = value

    def get(self, key: K) -> V | None:
        return self._store.get(key)

    def delete(self, key: K) -> None:
        self._store.pop(key, None)

    def all(self) -> list[V]:
        return list(self._store.values())

    def clear(self) -> None:
        self._store.clear()

    def __contains__(self, key: object) -> bool:
        return key in self._store

    def __iter__(self) -> Iterator[V]:
        return iter(self._store.values())

    def __len__(self) -> int:
        return len(self._store)


class Database:
    """Container for all tables."""

    def __init__(self) -> None:
        self.service_requests: InMemoryKeyValueDatabase[str, ServiceRequest] = (
            InMemoryKeyValueDatabase()
        )
        # Keyed by (user_id, token)
        self.device_tokens: InMemoryKeyValueDatabase[
            tuple[str, str], DeviceToken
        ] = InMemoryKeyValueDatabase()
        # Keyed by (user_id, channel)
        self.notification_prefs: InMemoryKeyValueDatabase[
            tuple[str, str], NotificationPreference
        ] = InMemoryKeyValueDatabase()
        self.notifications: InMemoryKeyValueDatabase[str, Notification] = (
            InMemoryKeyValueDatabase()
        )

    def clear(self) -> None:
        self.service_requests.clear()
        self.device_tokens.clear()
        self.notification_prefs.clear()
        self.notifications.clear()

    def get_request_status(self, request_id: str) -> RequestStatusView | None:
        """Read only the three status fields of a request."""
        request = self.service_requests.get(request_id)
        if request is None:
            return None
        return RequestStatusView(
            status=request.status,
            broadcast_status=request.broadcast_status,
            assigned_helper_id=request.assigned_helper_id,
        )

    def update_request(
        self, request_id: str, expected_version: int, changes: dict[str, Any]
    ) -> ServiceRequest:
        """
        Apply ``changes`` to a request only if it is still at ``expected_version``.

        This is the single write primitive for requests: the check and the put
        happen without an intervening await, so it is atomic on the event loop.
        """
        current = self.service_requests.get(request_id)
        if current is None:
            raise NotFound(f"Service request {request_id} not found")
        if current.version != expected_version:
            raise ConcurrentModification(
                f"Service request {request_id} was modified concurrently"
            )

        updated = current.model_copy(
            update={
                **changes,
                "updated_at": utcnow(),
                "version": current.version + 1,
            }
        )
        self.service_requests.put(request_id, updated)
        return updated

    def upsert_device_token(
        self, user_id: str, token: str, platform: Platform
    ) -> DeviceToken:
        """Insert a token, or refresh ``updated_at`` if the pair is known."""
        key = (user_id, token)
        existing = self.device_tokens.get(key)
        now = utcnow()
        if existing is None:
            device = DeviceToken(
                user_id=user_id,
                token=token,
                platform=platform,
                created_at=now,
                updated_at=now,
            )
        else:
            device = existing.model_copy(
                update={"platform": platform, "is_active": True, "updated_at": now}
            )
        self.device_tokens.put(key, device)
        return device

    def get_active_job(self, helper_id: str) -> ServiceRequest | None:
        """The assigned request a helper is currently working on, if any."""
        for request in self.service_requests.all():
            if (
                request.status == RequestStatus.ASSIGNED
                and request.assigned_helper_id == helper_id
            ):
                return request
        return None

    def get_device_tokens(self, user_id: str) -> list[DeviceToken]:
        return [
            device
            for device in self.device_tokens.all()
            if device.user_id == user_id and device.is_active
        ]

    def set_notification_pref(
        self, user_id: str, channel: str, enabled: bool
    ) -> NotificationPreference:
        pref = NotificationPreference(user_id=user_id, channel=channel, enabled=enabled)
        self.notification_prefs.put((user_id, channel), pref)
        return pref


_db: Database | None = None


def get_db() -> Database:
    """Get the global database instance."""
    global _db
    if _db is None:
        _db = Database()
    return _db


def load_sample_data(db: Database | None = None, path: Path | None = None) -> None:
    """Load sample requests and notifications from sample_data.json into the database."""
    if db is None:
        db = get_db()
    if path is None:
        path = DEFAULT_SAMPLE_DATA_PATH

    with open(path) as f:
        data = json.load(f)

    for request_data in data["service_requests"]:
        request = ServiceRequest(**request_data)
        db.service_requests.put(request.id, request)

    for notification_data in data.get("notifications", []):
        notification = Notification(**notification_data)
        db.notifications.put(notification.id, notification)

    logger.info(
        f"Loaded {len(db.service_requests)} service requests from {path.name}"
    )

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from helparo.database import Database, get_db
from helparo.errors import HelparoError, StoreFailure
from helparo.models import Platform, utcnow

logger = logging.getLogger(__name__)

Procedure = Callable[..., Any]


class RemoteProcedures:
    """
    Named procedures callable with keyword parameters.

    Any failure inside a procedure surfaces as ``StoreFailure`` carrying the
    procedure's own message, so callers can relay it unchanged.
    """

    def __init__(self, db: Database | None = None) -> None:
        self._db = db
        self._procedures: dict[str, Procedure] = {}

    @property
    def db(self) -> Database:
        return self._db if self._db is not None else get_db()

    def register(self, name: str) -> Callable[[Procedure], Procedure]:
        def decorator(func: Procedure) -> Procedure:
            self._procedures[name] = func
            return func

        return decorator

    def names(self) -> list[str]:
        return sorted(self._procedures)

    def call(self, name: str, **params: Any) -> Any:
        procedure = self._procedures.get(name)
        if procedure is None:
            raise StoreFailure(f"Could not find the function public.{name}")

        logger.debug(f"Calling remote procedure {name}")
        try:
            return procedure(self.db, **params)
        except HelparoError:
            raise
        except Exception as e:
            raise StoreFailure(str(e)) from e


def register_builtin_procedures(procedures: RemoteProcedures) -> RemoteProcedures:
    @procedures.register("register_device_token")
    def register_device_token(
        db: Database, p_user_id: str, p_device_token: str, p_platform: str
    ) -> dict[str, Any]:
        device = db.upsert_device_token(p_user_id, p_device_token, Platform(p_platform))
        return device.model_dump(mode="json")

    @procedures.register("set_notification_pref")
    def set_notification_pref(
        db: Database, p_user_id: str, p_channel: str, p_enabled: bool
    ) -> dict[str, Any]:
        pref = db.set_notification_pref(p_user_id, p_channel, p_enabled)
        return pref.model_dump(mode="json")

    @procedures.register("mark_notification_read")
    def mark_notification_read(
        db: Database, p_user_id: str, p_notification_id: str
    ) -> dict[str, Any]:
        notification = db.notifications.get(p_notification_id)
        if notification is None or notification.user_id != p_user_id:
            raise StoreFailure("Notification not found")
        if notification.read_at is None:
            notification = notification.model_copy(update={"read_at": utcnow()})
            db.notifications.put(notification.id, notification)
        return notification.model_dump(mode="json")

    return procedures


_procedures: RemoteProcedures | None = None


def get_procedures() -> RemoteProcedures:
    """Get the global procedure registry, with the built-in procedures installed."""
    global _procedures
    if _procedures is None:
        _procedures = register_builtin_procedures(RemoteProcedures())
    return _procedures

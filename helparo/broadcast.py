"""
Broadcast substate hooks driven by the matcher and by helpers.

Choosing which helpers to offer a job to happens elsewhere; this module only
moves ``broadcast_status`` and records the helper that accepts.
"""

import asyncio
import logging
import uuid
import weakref

from helparo.database import Database, get_db
from helparo.errors import ConcurrentModification, ErrorKind, HelparoError, NotFound
from helparo.lifecycle import NOT_AUTHENTICATED, NOT_FOUND_OR_UNAUTHORIZED
from helparo.models import (
    ActionResult,
    BroadcastStatus,
    CallerContext,
    Notification,
    RequestStatus,
    utcnow,
)

logger = logging.getLogger(__name__)

ALREADY_ACCEPTED = "This job has already been accepted by another helper"
NO_LONGER_AVAILABLE = "This job is no longer available"
ON_ANOTHER_JOB = "You are currently on a job and cannot accept a new one."

BROADCAST_TRANSITIONS: dict[BroadcastStatus, frozenset[BroadcastStatus]] = {
    BroadcastStatus.IDLE: frozenset({BroadcastStatus.BROADCASTING}),
    BroadcastStatus.BROADCASTING: frozenset(
        {BroadcastStatus.ACCEPTED, BroadcastStatus.EXPIRED}
    ),
    BroadcastStatus.ACCEPTED: frozenset(),
    BroadcastStatus.EXPIRED: frozenset({BroadcastStatus.BROADCASTING}),
}

# Weak values: a lock lives only while some acceptance is holding or waiting on it
_accept_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()
_locks_lock = asyncio.Lock()


async def _get_accept_lock(request_id: str) -> asyncio.Lock:
    """Get or create the lock serializing acceptances of one request."""
    async with _locks_lock:
        lock = _accept_locks.get(request_id)
        if lock is None:
            lock = asyncio.Lock()
            _accept_locks[request_id] = lock
        return lock


def clear_accept_locks() -> None:
    _accept_locks.clear()


def _move_broadcast(
    ctx: CallerContext,
    request_id: str,
    target: BroadcastStatus,
    db: Database | None,
) -> ActionResult:
    if not ctx.is_authenticated:
        return ActionResult.fail(NOT_AUTHENTICATED, ErrorKind.UNAUTHENTICATED)

    if db is None:
        db = get_db()

    try:
        request = db.service_requests.get(request_id)
        if request is None or not (
            ctx.is_admin or ctx.user_id == request.customer_id
        ):
            raise NotFound(NOT_FOUND_OR_UNAUTHORIZED)
        if (
            request.status != RequestStatus.OPEN
            or target not in BROADCAST_TRANSITIONS[request.broadcast_status]
        ):
            return ActionResult.fail(
                f"Cannot move broadcast from '{request.broadcast_status}' "
                f"to '{target}' while request is '{request.status}'",
                ErrorKind.ILLEGAL_TRANSITION,
            )
        updated = db.update_request(
            request_id, request.version, {"broadcast_status": target}
        )
    except HelparoError as e:
        logger.warning(f"Broadcast update for {request_id} rejected: {e.message}")
        return ActionResult.fail(e.message, e.kind)
    except Exception as e:
        logger.error(f"Store failure updating broadcast for {request_id}: {e}", exc_info=True)
        return ActionResult.fail(str(e), ErrorKind.STORE_FAILURE)

    logger.info(f"Broadcast for request {request_id} is now '{target}'")
    return ActionResult.ok(updated.model_dump(mode="json"))


def start_broadcast(
    ctx: CallerContext, request_id: str, db: Database | None = None
) -> ActionResult:
    """Mark an open request as being offered to helpers (also re-broadcasts an expired one)."""
    return _move_broadcast(ctx, request_id, BroadcastStatus.BROADCASTING, db)


def expire_broadcast(
    ctx: CallerContext, request_id: str, db: Database | None = None
) -> ActionResult:
    return _move_broadcast(ctx, request_id, BroadcastStatus.EXPIRED, db)


async def accept_request(
    ctx: CallerContext, request_id: str, db: Database | None = None
) -> ActionResult:
    """
    A helper accepts a broadcast request.

    Only one helper can win: acceptances of the same request are serialized by a
    lock, and the write is conditional on the version read under that lock.
    A helper already assigned to another job cannot accept. The customer gets
    an in-app notification when a helper is found.
    """
    if not ctx.is_authenticated:
        return ActionResult.fail(NOT_AUTHENTICATED, ErrorKind.UNAUTHENTICATED)

    if db is None:
        db = get_db()

    helper_id = ctx.user_id
    lock = await _get_accept_lock(request_id)
    async with lock:
        if db.get_active_job(helper_id) is not None:
            return ActionResult.fail(ON_ANOTHER_JOB, ErrorKind.CONFLICT)

        request = db.service_requests.get(request_id)
        if request is None:
            return ActionResult.fail("Request not found", ErrorKind.NOT_FOUND)
        if request.assigned_helper_id:
            return ActionResult.fail(ALREADY_ACCEPTED, ErrorKind.CONFLICT)
        if (
            request.status != RequestStatus.OPEN
            or request.broadcast_status != BroadcastStatus.BROADCASTING
        ):
            return ActionResult.fail(NO_LONGER_AVAILABLE, ErrorKind.CONFLICT)

        try:
            updated = db.update_request(
                request_id,
                request.version,
                {
                    "status": RequestStatus.ASSIGNED,
                    "broadcast_status": BroadcastStatus.ACCEPTED,
                    "assigned_helper_id": helper_id,
                    "assigned_at": utcnow(),
                },
            )
        except ConcurrentModification:
            return ActionResult.fail(ALREADY_ACCEPTED, ErrorKind.CONFLICT)
        except HelparoError as e:
            return ActionResult.fail(e.message, e.kind)
        except Exception as e:
            logger.error(f"Store failure accepting {request_id}: {e}", exc_info=True)
            return ActionResult.fail(str(e), ErrorKind.STORE_FAILURE)

    notification = Notification(
        id=str(uuid.uuid4()),
        user_id=request.customer_id,
        request_id=request_id,
        title="Helper Found!",
        body="A helper has accepted your request and is on the way!",
    )
    db.notifications.put(notification.id, notification)

    logger.info(f"Request {request_id} accepted by helper {helper_id}")
    return ActionResult.ok(updated.model_dump(mode="json"))

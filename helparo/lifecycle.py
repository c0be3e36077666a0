"""
Service request lifecycle: the transition table and the actions that apply it.

Every action takes an explicit ``CallerContext``, checks the requested edge
against ``TRANSITIONS``, and writes through ``Database.update_request`` with the
version it read, so two racing actions cannot both succeed. Failures come back
as ``ActionResult`` values, never as exceptions.
"""

import logging
from typing import Any

from helparo.database import Database, get_db
from helparo.errors import (
    ErrorKind,
    HelparoError,
    IllegalTransition,
    NotFound,
    ValidationFailure,
)
from helparo.models import (
    ActionResult,
    BroadcastStatus,
    CallerContext,
    RequestStatus,
    ServiceRequest,
    utcnow,
)

logger = logging.getLogger(__name__)

NOT_AUTHENTICATED = "Not authenticated"
NOT_FOUND_OR_UNAUTHORIZED = "Request not found or unauthorized"

TRANSITIONS: dict[RequestStatus, frozenset[RequestStatus]] = {
    RequestStatus.OPEN: frozenset({RequestStatus.ASSIGNED, RequestStatus.CANCELLED}),
    RequestStatus.ASSIGNED: frozenset(
        {RequestStatus.COMPLETED, RequestStatus.CANCELLED, RequestStatus.OPEN}
    ),
    RequestStatus.COMPLETED: frozenset(),
    RequestStatus.CANCELLED: frozenset(),
}


def can_transition(current: RequestStatus, target: RequestStatus) -> bool:
    return target in TRANSITIONS[current]


def check_transition(current: RequestStatus, target: RequestStatus) -> None:
    if not can_transition(current, target):
        raise IllegalTransition(current.value, target.value)


def transition_changes(
    request: ServiceRequest, target: RequestStatus, helper_id: str | None = None
) -> dict[str, Any]:
    """Fields to write when ``request`` moves to ``target``."""
    now = utcnow()

    if target == RequestStatus.ASSIGNED:
        if not helper_id:
            raise ValidationFailure("helper_id is required")
        return {
            "status": target,
            "assigned_helper_id": helper_id,
            "assigned_at": now,
        }

    if target == RequestStatus.COMPLETED:
        return {"status": target, "job_completed_at": now}

    if target == RequestStatus.CANCELLED:
        changes: dict[str, Any] = {"status": target, "assigned_helper_id": None}
        if request.broadcast_status in (
            BroadcastStatus.BROADCASTING,
            BroadcastStatus.ACCEPTED,
        ):
            changes["broadcast_status"] = BroadcastStatus.EXPIRED
        return changes

    # assigned -> open: the helper dropped out, offer the job again
    return {
        "status": target,
        "assigned_helper_id": None,
        "assigned_at": None,
        "broadcast_status": BroadcastStatus.BROADCASTING,
    }


def _is_permitted(
    ctx: CallerContext, request: ServiceRequest, target: RequestStatus
) -> bool:
    if ctx.is_admin or ctx.user_id == request.customer_id:
        return True
    # The assigned helper may finish the job or hand it back
    return ctx.user_id == request.assigned_helper_id and target in (
        RequestStatus.COMPLETED,
        RequestStatus.OPEN,
    )


def apply_transition(
    ctx: CallerContext,
    request_id: str,
    target: RequestStatus,
    helper_id: str | None = None,
    db: Database | None = None,
) -> ActionResult:
    if not ctx.is_authenticated:
        return ActionResult.fail(NOT_AUTHENTICATED, ErrorKind.UNAUTHENTICATED)

    if db is None:
        db = get_db()

    try:
        request = db.service_requests.get(request_id)
        if request is None or not _is_permitted(ctx, request, target):
            raise NotFound(NOT_FOUND_OR_UNAUTHORIZED)
        check_transition(request.status, target)
        changes = transition_changes(request, target, helper_id)
        updated = db.update_request(request_id, request.version, changes)
    except HelparoError as e:
        logger.warning(
            f"Transition of request {request_id} to '{target}' rejected "
            f"({e.kind}): {e.message}"
        )
        return ActionResult.fail(e.message, e.kind)
    except Exception as e:
        logger.error(
            f"Store failure moving request {request_id} to '{target}': {e}",
            exc_info=True,
        )
        return ActionResult.fail(str(e), ErrorKind.STORE_FAILURE)

    logger.info(
        f"Service request {request_id} moved {request.status} -> {updated.status} "
        f"by {ctx.user_id}"
    )
    return ActionResult.ok(updated.model_dump(mode="json"))


def assign_helper(
    ctx: CallerContext,
    request_id: str,
    helper_id: str | None,
    db: Database | None = None,
) -> ActionResult:
    """open -> assigned with ``helper_id``; the broadcast substate is left alone."""
    return apply_transition(ctx, request_id, RequestStatus.ASSIGNED, helper_id, db=db)


def complete_request(
    ctx: CallerContext, request_id: str, db: Database | None = None
) -> ActionResult:
    return apply_transition(ctx, request_id, RequestStatus.COMPLETED, db=db)


def cancel_request(
    ctx: CallerContext, request_id: str, db: Database | None = None
) -> ActionResult:
    return apply_transition(ctx, request_id, RequestStatus.CANCELLED, db=db)


def release_helper(
    ctx: CallerContext, request_id: str, db: Database | None = None
) -> ActionResult:
    """assigned -> open; the request goes back to broadcasting."""
    return apply_transition(ctx, request_id, RequestStatus.OPEN, db=db)


def update_status(
    ctx: CallerContext,
    request_id: str,
    status: str,
    helper_id: str | None = None,
    db: Database | None = None,
) -> ActionResult:
    """Generic entry point taking the target status as a string."""
    try:
        target = RequestStatus(status)
    except ValueError:
        return ActionResult.fail(f"Invalid status '{status}'", ErrorKind.VALIDATION)
    return apply_transition(ctx, request_id, target, helper_id, db=db)

"""
Device registration and notification preferences.

Thin actions in front of the remote procedures: check the caller and its rate
limit, check that the required inputs are present, forward, and relay whatever
comes back.
"""

import logging

from helparo.config import settings
from helparo.database import Database, get_db
from helparo.errors import ErrorKind, HelparoError
from helparo.lifecycle import NOT_AUTHENTICATED
from helparo.models import ActionResult, CallerContext, Platform
from helparo.rate_limit import RateLimiter, get_rate_limiter
from helparo.rpc import RemoteProcedures, get_procedures

logger = logging.getLogger(__name__)

MISSING_USER_OR_TOKEN = "Missing userId or token"
FAILED_TO_SAVE_TOKEN = "Failed to save token"


def _parse_platform(platform: str | None) -> Platform | None:
    try:
        return Platform((platform or settings.default_platform).lower())
    except ValueError:
        return None


def _rate_limited(
    rate_limiter: RateLimiter | None, action: str, ctx: CallerContext, limit: str
) -> ActionResult | None:
    if rate_limiter is None:
        rate_limiter = get_rate_limiter()
    try:
        rate_limiter.check(action, ctx.user_id, limit)
    except HelparoError as e:
        return ActionResult.fail(e.message, e.kind)
    return None


def _call(
    procedures: RemoteProcedures | None, name: str, **params
) -> ActionResult:
    if procedures is None:
        procedures = get_procedures()
    try:
        data = procedures.call(name, **params)
    except HelparoError as e:
        logger.error(f"Remote procedure {name} failed: {e.message}")
        return ActionResult.fail(e.message, e.kind)
    return ActionResult.ok(data)


def register_device(
    ctx: CallerContext,
    token: str | None,
    platform: str | None = None,
    procedures: RemoteProcedures | None = None,
    rate_limiter: RateLimiter | None = None,
) -> ActionResult:
    if not ctx.is_authenticated:
        return ActionResult.fail(NOT_AUTHENTICATED, ErrorKind.UNAUTHENTICATED)
    limited = _rate_limited(
        rate_limiter, "register-device", ctx, settings.rate_limit_moderate
    )
    if limited is not None:
        return limited
    if not token:
        return ActionResult.fail("Missing token", ErrorKind.VALIDATION)
    parsed = _parse_platform(platform)
    if parsed is None:
        return ActionResult.fail(f"Invalid platform '{platform}'", ErrorKind.VALIDATION)

    result = _call(
        procedures,
        "register_device_token",
        p_user_id=ctx.user_id,
        p_device_token=token,
        p_platform=parsed.value,
    )
    if not result.failed:
        logger.info(f"Device registered for notifications: user={ctx.user_id} platform={parsed}")
    return result


def set_notification_pref(
    ctx: CallerContext,
    channel: str | None,
    enabled: bool,
    procedures: RemoteProcedures | None = None,
    rate_limiter: RateLimiter | None = None,
) -> ActionResult:
    if not ctx.is_authenticated:
        return ActionResult.fail(NOT_AUTHENTICATED, ErrorKind.UNAUTHENTICATED)
    limited = _rate_limited(
        rate_limiter, "set-notification-pref", ctx, settings.rate_limit_moderate
    )
    if limited is not None:
        return limited
    if not channel:
        return ActionResult.fail("Missing channel", ErrorKind.VALIDATION)

    result = _call(
        procedures,
        "set_notification_pref",
        p_user_id=ctx.user_id,
        p_channel=channel,
        p_enabled=enabled,
    )
    if not result.failed:
        logger.info(
            f"Notification preference updated: user={ctx.user_id} "
            f"channel={channel} enabled={enabled}"
        )
    return result


def mark_notification_read(
    ctx: CallerContext,
    notification_id: str | None,
    procedures: RemoteProcedures | None = None,
    rate_limiter: RateLimiter | None = None,
) -> ActionResult:
    if not ctx.is_authenticated:
        return ActionResult.fail(NOT_AUTHENTICATED, ErrorKind.UNAUTHENTICATED)
    limited = _rate_limited(
        rate_limiter, "mark-notification-read", ctx, settings.rate_limit_relaxed
    )
    if limited is not None:
        return limited
    if not notification_id:
        return ActionResult.fail("Missing notification id", ErrorKind.VALIDATION)

    return _call(
        procedures,
        "mark_notification_read",
        p_user_id=ctx.user_id,
        p_notification_id=notification_id,
    )


def register_push_token(
    user_id: str | None,
    token: str | None,
    platform: str | None = None,
    db: Database | None = None,
) -> ActionResult:
    """
    Token registration for callers without a session (the native app shell).

    Writes the token straight to the store, keyed by (user_id, token).
    """
    if not user_id or not token:
        return ActionResult.fail(MISSING_USER_OR_TOKEN, ErrorKind.VALIDATION)
    parsed = _parse_platform(platform)
    if parsed is None:
        return ActionResult.fail(f"Invalid platform '{platform}'", ErrorKind.VALIDATION)

    if db is None:
        db = get_db()
    try:
        db.upsert_device_token(user_id, token, parsed)
    except Exception as e:
        logger.error(f"Failed to save device token for {user_id}: {e}", exc_info=True)
        return ActionResult.fail(FAILED_TO_SAVE_TOKEN, ErrorKind.STORE_FAILURE)

    return ActionResult(success=True)

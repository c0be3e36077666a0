import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, FastAPI, Header, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from helparo import broadcast, lifecycle, notifications
from helparo.database import get_db
from helparo.errors import ErrorKind
from helparo.models import (
    ActionResult,
    AssignBody,
    CallerContext,
    DeviceBody,
    PreferenceBody,
    PushRegisterBody,
    StatusBody,
)

logger = logging.getLogger(__name__)

router = APIRouter()

ERROR_STATUS_CODES: dict[ErrorKind, int] = {
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.UNAUTHENTICATED: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.VALIDATION: status.HTTP_400_BAD_REQUEST,
    ErrorKind.ILLEGAL_TRANSITION: status.HTTP_409_CONFLICT,
    ErrorKind.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.RATE_LIMITED: status.HTTP_429_TOO_MANY_REQUESTS,
    ErrorKind.STORE_FAILURE: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def get_caller(
    x_user_id: Annotated[str | None, Header()] = None,
    x_user_role: Annotated[str | None, Header()] = None,
) -> CallerContext:
    """Build the caller identity from the headers set by the auth proxy."""
    return CallerContext(
        user_id=x_user_id or None,
        is_admin=(x_user_role or "").lower() == "admin",
    )


Caller = Annotated[CallerContext, Depends(get_caller)]


def _respond(result: ActionResult) -> JSONResponse:
    code = status.HTTP_200_OK
    if result.failed:
        code = ERROR_STATUS_CODES.get(
            result.kind, status.HTTP_500_INTERNAL_SERVER_ERROR
        )
    content = {
        key: value
        for key, value in result.model_dump(mode="json").items()
        if value is not None
    }
    return JSONResponse(content, status_code=code)


@router.get("/health")
async def health_check() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/requests/{request_id}/status", response_model=None)
async def get_request_status(request_id: str) -> JSONResponse | dict[str, Any]:
    """
    Lightweight status check used while a customer waits for a helper.

    Returns only ``status``, ``broadcast_status`` and ``assigned_helper_id``.
    A missing request is a 404; a store failure is a 500 so clients keep retrying.
    """
    try:
        view = get_db().get_request_status(request_id)
    except Exception as e:
        logger.error(f"Status lookup for {request_id} failed: {e}", exc_info=True)
        return JSONResponse(
            {"error": "Failed"}, status_code=status.HTTP_500_INTERNAL_SERVER_ERROR
        )

    if view is None:
        return JSONResponse(
            {"error": "Not found"}, status_code=status.HTTP_404_NOT_FOUND
        )
    return view.model_dump(mode="json")


@router.post("/requests/{request_id}/assign")
async def assign_helper(
    request_id: str, body: AssignBody, caller: Caller
) -> JSONResponse:
    return _respond(lifecycle.assign_helper(caller, request_id, body.helper_id))


@router.post("/requests/{request_id}/complete")
async def complete_request(request_id: str, caller: Caller) -> JSONResponse:
    return _respond(lifecycle.complete_request(caller, request_id))


@router.post("/requests/{request_id}/cancel")
async def cancel_request(request_id: str, caller: Caller) -> JSONResponse:
    return _respond(lifecycle.cancel_request(caller, request_id))


@router.post("/requests/{request_id}/release")
async def release_helper(request_id: str, caller: Caller) -> JSONResponse:
    return _respond(lifecycle.release_helper(caller, request_id))


@router.patch("/requests/{request_id}/status")
async def update_request_status(
    request_id: str, body: StatusBody, caller: Caller
) -> JSONResponse:
    return _respond(
        lifecycle.update_status(caller, request_id, body.status, body.helper_id)
    )


@router.post("/requests/{request_id}/broadcast")
async def start_broadcast(request_id: str, caller: Caller) -> JSONResponse:
    return _respond(broadcast.start_broadcast(caller, request_id))


@router.post("/requests/{request_id}/expire")
async def expire_broadcast(request_id: str, caller: Caller) -> JSONResponse:
    return _respond(broadcast.expire_broadcast(caller, request_id))


@router.post("/requests/{request_id}/accept")
async def accept_request(request_id: str, caller: Caller) -> JSONResponse:
    """A helper accepts a broadcast job. Only the first acceptance wins."""
    return _respond(await broadcast.accept_request(caller, request_id))


@router.post("/push/register")
async def register_push_token(body: PushRegisterBody) -> JSONResponse:
    result = notifications.register_push_token(body.userId, body.token, body.platform)
    return _respond(result)


@router.post("/notifications/devices")
async def register_device(body: DeviceBody, caller: Caller) -> JSONResponse:
    return _respond(notifications.register_device(caller, body.token, body.platform))


@router.put("/notifications/preferences")
async def set_notification_pref(body: PreferenceBody, caller: Caller) -> JSONResponse:
    return _respond(
        notifications.set_notification_pref(caller, body.channel, body.enabled)
    )


@router.post("/notifications/{notification_id}/read")
async def mark_notification_read(
    notification_id: str, caller: Caller
) -> JSONResponse:
    return _respond(notifications.mark_notification_read(caller, notification_id))


async def validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Malformed bodies get the same 400 {error} shape as any other validation failure."""
    if request.url.path == "/push/register":
        message = notifications.MISSING_USER_OR_TOKEN
    else:
        message = "Invalid request body"
        errors = exc.errors()
        if errors:
            field = ".".join(str(part) for part in errors[0]["loc"] if part != "body")
            message = f"Invalid {field or 'request body'}: {errors[0]['msg']}"
    logger.warning(f"Rejected malformed request to {request.url.path}: {message}")
    return JSONResponse({"error": message}, status_code=status.HTTP_400_BAD_REQUEST)


def create_app() -> FastAPI:
    app = FastAPI(title="Helparo")
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.include_router(router)
    return app

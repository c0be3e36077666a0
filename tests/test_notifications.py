"""
Tests for the device registration and notification preference actions.
"""

from unittest.mock import MagicMock

import pytest

from helparo import notifications
from helparo.database import Database, get_db
from helparo.config import settings
from helparo.errors import ErrorKind, RateLimited, StoreFailure
from helparo.models import CallerContext, Platform
from helparo.rate_limit import RateLimiter
from helparo.rpc import RemoteProcedures, get_procedures, register_builtin_procedures
from samples import CUSTOMER_ID, SAMPLE_NOTIFICATION_ID


@pytest.fixture
def mock_procedures(mocker) -> MagicMock:
    """Procedure gateway double that records calls."""
    mock = mocker.Mock(spec=RemoteProcedures)
    mock.call.return_value = {"ok": True}
    return mock


def test_register_device_forwards_to_procedure(customer, mock_procedures):
    result = notifications.register_device(
        customer, "fcm-1", "ios", procedures=mock_procedures
    )

    assert result.success is True
    assert result.data == {"ok": True}
    mock_procedures.call.assert_called_once_with(
        "register_device_token",
        p_user_id=CUSTOMER_ID,
        p_device_token="fcm-1",
        p_platform="ios",
    )


def test_register_device_defaults_to_android(customer, mock_procedures):
    notifications.register_device(customer, "fcm-1", procedures=mock_procedures)
    assert mock_procedures.call.call_args.kwargs["p_platform"] == "android"


def test_register_device_unauthenticated(anonymous, mock_procedures):
    result = notifications.register_device(anonymous, "fcm-1", "ios", procedures=mock_procedures)

    assert result.error == "Not authenticated"
    mock_procedures.call.assert_not_called()


def test_register_device_missing_token(customer, mock_procedures):
    result = notifications.register_device(customer, "", "ios", procedures=mock_procedures)

    assert result.kind == ErrorKind.VALIDATION
    mock_procedures.call.assert_not_called()


def test_register_device_invalid_platform(customer, mock_procedures):
    result = notifications.register_device(
        customer, "fcm-1", "symbian", procedures=mock_procedures
    )

    assert result.kind == ErrorKind.VALIDATION
    mock_procedures.call.assert_not_called()


def test_procedure_error_is_relayed_unchanged(customer, mock_procedures):
    mock_procedures.call.side_effect = StoreFailure("permission denied for function set_notification_pref")

    result = notifications.set_notification_pref(
        customer, "email", True, procedures=mock_procedures
    )

    assert result.error == "permission denied for function set_notification_pref"
    assert result.kind == ErrorKind.STORE_FAILURE


def test_set_notification_pref_stores_flag(customer):
    result = notifications.set_notification_pref(customer, "push", False)

    assert result.success is True
    pref = get_db().notification_prefs.get((CUSTOMER_ID, "push"))
    assert pref.enabled is False


def test_mark_notification_read(customer):
    result = notifications.mark_notification_read(customer, SAMPLE_NOTIFICATION_ID)

    assert result.success is True
    assert get_db().notifications.get(SAMPLE_NOTIFICATION_ID).read_at is not None


def test_mark_someone_elses_notification():
    stranger = CallerContext(user_id="stranger")

    result = notifications.mark_notification_read(stranger, SAMPLE_NOTIFICATION_ID)

    assert result.error == "Notification not found"
    assert get_db().notifications.get(SAMPLE_NOTIFICATION_ID).read_at is None


def test_mark_notification_read_unauthenticated(anonymous, mock_procedures):
    result = notifications.mark_notification_read(
        anonymous, SAMPLE_NOTIFICATION_ID, procedures=mock_procedures
    )
    assert result.kind == ErrorKind.UNAUTHENTICATED
    mock_procedures.call.assert_not_called()


def test_register_device_upserts_through_builtin_procedure(customer):
    notifications.register_device(customer, "fcm-1", "android")
    notifications.register_device(customer, "fcm-1", "web")

    devices = get_db().get_device_tokens(CUSTOMER_ID)
    assert len(devices) == 1
    assert devices[0].platform == Platform.WEB


def test_unknown_procedure_is_store_failure():
    with pytest.raises(StoreFailure, match="Could not find the function public.send_sms"):
        get_procedures().call("send_sms", p_to="+15550001")


def test_procedure_exception_wrapped(mocker):
    procedures = register_builtin_procedures(RemoteProcedures(db=Database()))
    mocker.patch.object(
        procedures.db, "set_notification_pref", side_effect=RuntimeError("deadlock detected")
    )

    with pytest.raises(StoreFailure, match="deadlock detected"):
        procedures.call(
            "set_notification_pref", p_user_id="u1", p_channel="push", p_enabled=True
        )


def test_builtin_procedure_names():
    assert get_procedures().names() == [
        "mark_notification_read",
        "register_device_token",
        "set_notification_pref",
    ]


def test_register_device_is_rate_limited(customer, mock_procedures, monkeypatch):
    monkeypatch.setattr(settings, "rate_limit_moderate", "2/minute")

    results = [
        notifications.register_device(customer, f"fcm-{i}", procedures=mock_procedures)
        for i in range(3)
    ]

    assert [r.success for r in results] == [True, True, None]
    assert results[2].error == "Too many requests. Please try again in a few minutes."
    assert results[2].kind == ErrorKind.RATE_LIMITED
    assert mock_procedures.call.call_count == 2


def test_rate_limits_are_per_user_and_action(customer, mock_procedures, monkeypatch):
    monkeypatch.setattr(settings, "rate_limit_moderate", "1/minute")
    limiter = RateLimiter()

    first = notifications.set_notification_pref(
        customer, "push", True, procedures=mock_procedures, rate_limiter=limiter
    )
    again = notifications.set_notification_pref(
        customer, "push", False, procedures=mock_procedures, rate_limiter=limiter
    )
    other_user = notifications.set_notification_pref(
        CallerContext(user_id="someone-else"),
        "push",
        False,
        procedures=mock_procedures,
        rate_limiter=limiter,
    )
    other_action = notifications.register_device(
        customer, "fcm-1", procedures=mock_procedures, rate_limiter=limiter
    )

    assert first.success is True
    assert again.kind == ErrorKind.RATE_LIMITED
    assert other_user.success is True
    assert other_action.success is True


def test_mark_notification_read_uses_relaxed_limit(customer, mock_procedures, monkeypatch):
    monkeypatch.setattr(settings, "rate_limit_moderate", "1/minute")
    monkeypatch.setattr(settings, "rate_limit_relaxed", "3/minute")

    results = [
        notifications.mark_notification_read(
            customer, SAMPLE_NOTIFICATION_ID, procedures=mock_procedures
        )
        for _ in range(4)
    ]

    assert [r.kind for r in results] == [None, None, None, ErrorKind.RATE_LIMITED]


def test_unauthenticated_calls_do_not_count(anonymous, customer, mock_procedures, monkeypatch):
    monkeypatch.setattr(settings, "rate_limit_moderate", "1/minute")

    notifications.register_device(anonymous, "fcm-1", procedures=mock_procedures)
    result = notifications.register_device(customer, "fcm-1", procedures=mock_procedures)

    assert result.success is True


def test_rate_limiter_reset():
    limiter = RateLimiter()
    limiter.check("register-device", "u1", "1/minute")
    with pytest.raises(RateLimited):
        limiter.check("register-device", "u1", "1/minute")

    limiter.reset()

    limiter.check("register-device", "u1", "1/minute")

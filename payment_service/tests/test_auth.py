"""Tests for session resolution."""

import pytest
import requests

from payment_service.auth import RemoteSessionResolver, SessionAuthGuard
from payment_service.exceptions import AuthenticationError, AuthServiceUnavailableError


@pytest.fixture
def remote_settings(settings):
    return settings.model_copy(update={"auth_service_url": "http://storefront:5000/"})


def _response(mocker, status_code=200, body=None):
    response = mocker.MagicMock()
    response.status_code = status_code
    response.json.return_value = body
    return response


def test_resolver_forwards_session_to_auth_service(remote_settings, mocker):
    get = mocker.patch(
        "payment_service.auth.requests.get",
        return_value=_response(
            mocker,
            body={
                "success": True,
                "authenticated": True,
                "user": {"_id": "65f0c0ffee", "email": "asha@example.com", "name": "Asha"},
            },
        ),
    )

    user = RemoteSessionResolver(remote_settings)("s%3Atoken")

    get.assert_called_once_with(
        "http://storefront:5000/api/auth/status",
        cookies={"session": "s%3Atoken"},
        headers={"Authorization": "Bearer s%3Atoken"},
        timeout=5.0,
    )
    assert user.id == "65f0c0ffee"
    assert user.email == "asha@example.com"


def test_resolver_unauthenticated_session(remote_settings, mocker):
    mocker.patch(
        "payment_service.auth.requests.get",
        return_value=_response(mocker, body={"success": True, "authenticated": False, "user": None}),
    )
    assert RemoteSessionResolver(remote_settings)("stale") is None


def test_resolver_auth_service_down(remote_settings, mocker):
    mocker.patch("payment_service.auth.requests.get", side_effect=requests.ConnectionError("refused"))
    with pytest.raises(AuthServiceUnavailableError):
        RemoteSessionResolver(remote_settings)("token")


def test_guard_from_settings_uses_remote_lookup(remote_settings, mocker):
    mocker.patch(
        "payment_service.auth.requests.get",
        return_value=_response(
            mocker, body={"authenticated": True, "user": {"_id": "u-9", "email": "ravi@example.com"}}
        ),
    )
    guard = SessionAuthGuard.from_settings(remote_settings)

    assert guard.resolve("cookie-from-login").id == "u-9"


def test_guard_without_auth_service_only_knows_local_sessions(settings, user):
    guard = SessionAuthGuard.from_settings(settings)
    token = guard.open_session(user)

    assert guard.resolver is None
    assert guard.resolve(token) == user
    with pytest.raises(AuthenticationError):
        guard.resolve("unknown")
    with pytest.raises(AuthenticationError):
        guard.resolve(None)


def test_guard_local_session_skips_lookup(user):
    calls = []
    guard = SessionAuthGuard(resolver=lambda token: calls.append(token))
    token = guard.open_session(user)

    assert guard.resolve(token) == user
    assert calls == []
    with pytest.raises(AuthenticationError):
        guard.resolve("elsewhere")
    assert calls == ["elsewhere"]

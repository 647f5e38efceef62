"""
Unit tests for network/auth.py strategies.
"""

from __future__ import annotations

from unittest.mock import MagicMock, Mock

import pytest
import requests

from pms_sync.network.auth import (
    ApiKeyAuth,
    BearerRefreshAuth,
    ClientCredentialsAuth,
    WorkspaceTokenAuth,
)
from pms_sync.network.errors import ErrorCode
from tests.conftest import make_response


@pytest.mark.unit
def test_client_credentials_posts_form_and_stores_token() -> None:
    """Test that the client-credentials flow posts a form and caches the access token."""
    session = MagicMock()
    session.request.return_value = make_response(200, {"access_token": "tok-1", "expires_in": 3600})
    on_token = Mock()
    auth = ClientCredentialsAuth(
        session=session,
        token_url="https://api.hostaway.com/v1/accessTokens",
        client_id="12345",
        client_secret="s3cret",
        on_token=on_token,
    )

    result = auth.authenticate()

    assert result.success
    assert result.data.access_token == "tok-1"
    assert result.data.expires_at is not None
    args, kwargs = session.request.call_args
    assert args == ("POST", "https://api.hostaway.com/v1/accessTokens")
    assert kwargs["data"]["grant_type"] == "client_credentials"
    assert kwargs["data"]["client_id"] == "12345"
    headers: dict[str, str] = {}
    auth.apply(headers, None)
    assert headers["Authorization"] == "Bearer tok-1"
    on_token.assert_called_once()


@pytest.mark.unit
def test_client_credentials_missing_token_fails_auth() -> None:
    """Test that a token response without access_token is AUTH_FAILED."""
    session = MagicMock()
    session.request.return_value = make_response(200, {"error": "weird"})
    auth = ClientCredentialsAuth(session=session, token_url="https://x/token", client_id="1", client_secret="s")

    result = auth.authenticate()

    assert result.code == ErrorCode.AUTH_FAILED


@pytest.mark.unit
@pytest.mark.parametrize(
    "response",
    [
        make_response(200, text="<html>gateway</html>"),
        make_response(200, [{"access_token": "tok-1"}]),
    ],
)
def test_token_endpoints_reject_non_object_bodies(response: Mock) -> None:
    """Test that both token flows fail AUTH_FAILED on a body that is not a JSON object."""
    session = MagicMock()
    session.request.return_value = response
    client_credentials = ClientCredentialsAuth(
        session=session, token_url="https://x/token", client_id="1", client_secret="s"
    )
    bearer = BearerRefreshAuth(session=session, base_url="https://x", refresh_token="r1", refresh_path="/token")

    for result in (client_credentials.authenticate(), bearer.authenticate()):
        assert not result.success
        assert result.code == ErrorCode.AUTH_FAILED
    assert client_credentials.access_token is None
    assert bearer.token is None


@pytest.mark.unit
def test_client_credentials_unauthorized_clears_token() -> None:
    """Test that a 401 clears the cached token and does not replay."""
    auth = ClientCredentialsAuth(
        session=MagicMock(), token_url="https://x/token", client_id="1", client_secret="s", access_token="old"
    )

    assert auth.handle_unauthorized() is False
    assert auth.access_token is None


@pytest.mark.unit
def test_client_credentials_network_error_classified() -> None:
    """Test that a transport failure while fetching a token is NETWORK."""
    session = MagicMock()
    session.request.side_effect = requests.ConnectionError("down")
    auth = ClientCredentialsAuth(session=session, token_url="https://x/token", client_id="1", client_secret="s")

    assert auth.authenticate().code == ErrorCode.NETWORK


@pytest.mark.unit
def test_bearer_invite_code_is_single_use() -> None:
    """Test that an invite code is exchanged once for a token pair."""
    session = MagicMock()
    session.request.return_value = make_response(200, {"token": "t1", "refreshToken": "r1", "expiresIn": 86400})
    auth = BearerRefreshAuth(
        session=session,
        base_url="https://beds24.com/api/v2",
        header_name="token",
        scheme="",
        refresh_path="/authentication/token",
        setup_path="/authentication/setup",
        invite_code="invite-abc",
    )

    result = auth.authenticate()

    assert result.success
    assert auth.token == "t1"
    assert auth.refresh_token == "r1"
    assert auth.invite_code is None
    args, kwargs = session.request.call_args
    assert args == ("GET", "https://beds24.com/api/v2/authentication/setup")
    assert kwargs["headers"] == {"code": "invite-abc"}


@pytest.mark.unit
def test_bearer_refresh_keeps_refresh_token_when_not_returned() -> None:
    """Test that a refresh response without a new refresh token keeps the old one."""
    session = MagicMock()
    session.request.return_value = make_response(200, {"token": "t2"})
    auth = BearerRefreshAuth(
        session=session,
        base_url="https://beds24.com/api/v2",
        token="t1",
        refresh_token="r1",
        refresh_path="/authentication/token",
    )

    result = auth.refresh()

    assert result.success
    assert auth.token == "t2"
    assert auth.refresh_token == "r1"


@pytest.mark.unit
def test_bearer_without_credentials_fails() -> None:
    """Test that a bearer strategy with nothing configured cannot authenticate."""
    auth = BearerRefreshAuth(session=MagicMock(), base_url="https://x")

    assert auth.authenticate().code == ErrorCode.AUTH_FAILED
    assert auth.handle_unauthorized() is False


@pytest.mark.unit
def test_api_key_header() -> None:
    """Test that a header API key is attached and the body is untouched."""
    auth = ApiKeyAuth("key-1", header_name="Api-Key")
    headers: dict[str, str] = {}

    body = auth.apply(headers, {"a": 1})

    assert headers == {"Api-Key": "key-1"}
    assert body == {"a": 1}
    assert auth.handle_unauthorized() is False


@pytest.mark.unit
def test_api_key_body_credentials_prefer_per_call_keys() -> None:
    """Test that body-carried credentials merge with a per-call property key."""
    auth = ApiKeyAuth("account-key", header_name=None, secondary_key="default-prop", body_field="authentication")

    body = auth.apply({}, {"authentication": {"propKey": "prop-7"}, "roomId": "5"})

    assert body["authentication"] == {"apiKey": "account-key", "propKey": "prop-7"}
    assert body["roomId"] == "5"


@pytest.mark.unit
def test_api_key_missing_is_auth_failed() -> None:
    """Test that an empty API key cannot authenticate."""
    assert ApiKeyAuth("").authenticate().code == ErrorCode.AUTH_FAILED


@pytest.mark.unit
def test_workspace_headers() -> None:
    """Test that the broker strategy adds workspace and integration account headers."""
    bearer = BearerRefreshAuth(session=MagicMock(), base_url="https://prod.calry.app/api/v2", token="tok")
    auth = WorkspaceTokenAuth(bearer, workspace_id="ws-1", integration_account_id="ia-9")
    headers: dict[str, str] = {}

    auth.apply(headers, None)

    assert headers == {"Authorization": "Bearer tok", "workspaceId": "ws-1", "integrationAccountId": "ia-9"}


@pytest.mark.unit
def test_workspace_requires_workspace_id() -> None:
    """Test that a missing workspace id fails authentication."""
    bearer = BearerRefreshAuth(session=MagicMock(), base_url="https://x", token="tok")

    assert WorkspaceTokenAuth(bearer, workspace_id="").authenticate().code == ErrorCode.AUTH_FAILED

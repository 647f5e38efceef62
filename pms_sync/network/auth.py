"""
Authentication strategies composed into adapters.

Each strategy decorates outgoing requests (headers and, for some legacy APIs,
the JSON body) and decides what happens when the PMS answers 401:

- ``BearerRefreshAuth``: long-lived token plus refresh token; refresh once.
- ``ClientCredentialsAuth``: OAuth2 client credentials; clear and re-auth lazily.
- ``ApiKeyAuth``: static key(s) in a header or body field; no refresh.
- ``WorkspaceTokenAuth``: broker bearer token plus workspace routing headers.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Any, Callable, Protocol

import requests
import structlog

from pms_sync.config import REQUEST_TIMEOUT_SECONDS
from pms_sync.metrics import token_refreshes
from pms_sync.network.errors import ErrorCode, Result, classify_exception, classify_response
from pms_sync.schemas.entities import TokenInfo
from pms_sync.utils.datetime import utc_now

logger = structlog.get_logger(__name__)

TokenCallback = Callable[[TokenInfo], None]


class AuthStrategy(Protocol):
    """Interface every auth strategy implements."""

    def authenticate(self) -> Result[TokenInfo]: ...

    def ensure(self) -> Result[TokenInfo]: ...

    def apply(self, headers: dict[str, str], body: Any) -> Any: ...

    def handle_unauthorized(self) -> bool: ...


def _expires_at(seconds: Any) -> Any:
    try:
        return utc_now() + timedelta(seconds=int(seconds))
    except (TypeError, ValueError):
        return None


def _token_body(res: requests.Response) -> dict[str, Any] | None:
    """Decode a token endpoint response; None unless it is a JSON object."""
    try:
        body = res.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


class BearerRefreshAuth:
    """
    Access token paired with a refresh token.

    On 401 the client asks ``handle_unauthorized`` once; a successful refresh
    lets the request be replayed, otherwise the call fails AUTH_FAILED.

    Args:
        session: HTTP session shared with the owning adapter's client
        base_url: API root used for refresh and setup calls
        token: Current access token, if any
        refresh_token: Refresh token used to mint new access tokens
        header_name: Header carrying the access token
        scheme: Optional prefix (e.g. "Bearer"); empty for raw-token headers
        refresh_path: Endpoint exchanging the refresh token for an access token
        refresh_header: Header carrying the refresh token on that call
        setup_path: Endpoint exchanging a one-time invite code for tokens
        invite_code: One-time invite code, used when no refresh token exists yet
        on_token: Callback receiving every newly obtained token
    """

    def __init__(
        self,
        session: requests.Session,
        base_url: str,
        token: str | None = None,
        refresh_token: str | None = None,
        header_name: str = "Authorization",
        scheme: str = "Bearer",
        refresh_path: str | None = None,
        refresh_header: str = "refreshToken",
        setup_path: str | None = None,
        invite_code: str | None = None,
        on_token: TokenCallback | None = None,
        adapter: str = "bearer",
        timeout: float = REQUEST_TIMEOUT_SECONDS,
    ):
        self.session = session
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.refresh_token = refresh_token
        self.header_name = header_name
        self.scheme = scheme
        self.refresh_path = refresh_path
        self.refresh_header = refresh_header
        self.setup_path = setup_path
        self.invite_code = invite_code
        self.on_token = on_token
        self.adapter = adapter
        self.timeout = timeout

    def _exchange(self, path: str, headers: dict[str, str]) -> Result[TokenInfo]:
        try:
            res = self.session.request(
                "GET", f"{self.base_url}{path}", headers=headers, timeout=self.timeout
            )
        except requests.RequestException as err:
            return classify_exception(self.adapter, path, err)

        if not res.ok:
            return classify_response(self.adapter, path, res)

        body = _token_body(res)
        if body is None:
            logger.error("token_response_not_json", adapter=self.adapter, path=path, status=res.status_code)
            return Result.fail(ErrorCode.AUTH_FAILED, f"Token endpoint {path} did not return a JSON object")
        token = body.get("token") or body.get("accessToken") or body.get("access_token")
        if not token:
            return Result.fail(ErrorCode.AUTH_FAILED, "No token in refresh response", details=body)

        self.token = token
        self.refresh_token = body.get("refreshToken") or self.refresh_token
        info = TokenInfo(
            access_token=token,
            refresh_token=self.refresh_token,
            expires_at=_expires_at(body.get("expiresIn") or body.get("expires_in")),
        )
        token_refreshes.labels(adapter=self.adapter).inc()
        if self.on_token:
            self.on_token(info)
        return Result.ok(info)

    def refresh(self) -> Result[TokenInfo]:
        if not self.refresh_path or not self.refresh_token:
            return Result.fail(ErrorCode.AUTH_FAILED, "No refresh token available")
        logger.info("token_refresh_started", adapter=self.adapter)
        return self._exchange(self.refresh_path, {self.refresh_header: self.refresh_token})

    def authenticate(self) -> Result[TokenInfo]:
        if self.invite_code and not self.refresh_token and self.setup_path:
            result = self._exchange(self.setup_path, {"code": self.invite_code})
            if result.success:
                # Invite codes are single use
                self.invite_code = None
            return result
        if self.refresh_token and self.refresh_path:
            return self.refresh()
        if self.token:
            return Result.ok(TokenInfo(access_token=self.token, refresh_token=self.refresh_token))
        return Result.fail(ErrorCode.AUTH_FAILED, "No token, refresh token or invite code configured")

    def ensure(self) -> Result[TokenInfo]:
        if self.token:
            return Result.ok(TokenInfo(access_token=self.token, refresh_token=self.refresh_token))
        return self.authenticate()

    def apply(self, headers: dict[str, str], body: Any) -> Any:
        if self.token:
            headers[self.header_name] = f"{self.scheme} {self.token}" if self.scheme else self.token
        return body

    def handle_unauthorized(self) -> bool:
        return self.refresh().success


class ClientCredentialsAuth:
    """
    OAuth2 client-credentials flow (account id + secret for a short-lived token).

    A 401 clears the cached token without retrying; the next request
    re-authenticates lazily through ``ensure``.
    """

    def __init__(
        self,
        session: requests.Session,
        token_url: str,
        client_id: str,
        client_secret: str,
        access_token: str | None = None,
        scope: str = "general",
        on_token: TokenCallback | None = None,
        adapter: str = "oauth2",
        timeout: float = REQUEST_TIMEOUT_SECONDS,
    ):
        self.session = session
        self.token_url = token_url
        self.client_id = client_id
        self.client_secret = client_secret
        self.access_token = access_token
        self.scope = scope
        self.on_token = on_token
        self.adapter = adapter
        self.timeout = timeout

    def authenticate(self) -> Result[TokenInfo]:
        try:
            res = self.session.request(
                "POST",
                self.token_url,
                data={
                    "grant_type": "client_credentials",
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "scope": self.scope,
                },
                headers={
                    "Content-Type": "application/x-www-form-urlencoded",
                    "Cache-control": "no-cache",
                },
                timeout=self.timeout,
            )
        except requests.RequestException as err:
            return classify_exception(self.adapter, self.token_url, err)

        if not res.ok:
            return classify_response(self.adapter, self.token_url, res)

        body = _token_body(res)
        if body is None:
            logger.error(
                "token_response_not_json", adapter=self.adapter, path=self.token_url, status=res.status_code
            )
            return Result.fail(ErrorCode.AUTH_FAILED, "Token endpoint did not return a JSON object")
        token = body.get("access_token")
        if not token:
            logger.error("token_missing_in_response", adapter=self.adapter, body=body)
            return Result.fail(ErrorCode.AUTH_FAILED, "No access_token in token response")

        self.access_token = token
        info = TokenInfo(access_token=token, expires_at=_expires_at(body.get("expires_in")))
        token_refreshes.labels(adapter=self.adapter).inc()
        logger.info("access_token_created", adapter=self.adapter, client_id=self.client_id)
        if self.on_token:
            self.on_token(info)
        return Result.ok(info)

    def ensure(self) -> Result[TokenInfo]:
        if self.access_token:
            return Result.ok(TokenInfo(access_token=self.access_token))
        return self.authenticate()

    def apply(self, headers: dict[str, str], body: Any) -> Any:
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        return body

    def handle_unauthorized(self) -> bool:
        logger.warning("access_token_cleared", adapter=self.adapter, client_id=self.client_id)
        self.access_token = None
        return False


class ApiKeyAuth:
    """
    Static API key, optionally paired with a secondary key.

    The key travels either as a header (``header_name``) or inside the JSON
    body under ``body_field`` for APIs that authenticate per request payload.
    AUTH_FAILED is terminal until the credentials are rotated.
    """

    def __init__(
        self,
        api_key: str,
        header_name: str | None = "Api-Key",
        secondary_key: str | None = None,
        body_field: str | None = None,
        key_name: str = "apiKey",
        secondary_key_name: str = "propKey",
    ):
        self.api_key = api_key
        self.header_name = header_name
        self.secondary_key = secondary_key
        self.body_field = body_field
        self.key_name = key_name
        self.secondary_key_name = secondary_key_name

    def authenticate(self) -> Result[TokenInfo]:
        if not self.api_key:
            return Result.fail(ErrorCode.AUTH_FAILED, "No API key configured")
        return Result.ok(TokenInfo(access_token=None, token_type="ApiKey"))

    def ensure(self) -> Result[TokenInfo]:
        return self.authenticate()

    def apply(self, headers: dict[str, str], body: Any) -> Any:
        if self.header_name:
            headers[self.header_name] = self.api_key
        if self.body_field is None:
            return body

        credentials = {self.key_name: self.api_key}
        if self.secondary_key:
            credentials[self.secondary_key_name] = self.secondary_key
        payload = dict(body) if isinstance(body, dict) else {}
        # Per-call credentials (e.g. a property-scoped key) take precedence
        payload[self.body_field] = {**credentials, **(payload.get(self.body_field) or {})}
        return payload

    def handle_unauthorized(self) -> bool:
        return False


class WorkspaceTokenAuth:
    """
    Broker bearer token scoped to a workspace and an integration account.

    The integration-account header selects which downstream PMS the broker
    talks to. Refresh behaviour is delegated to a ``BearerRefreshAuth``.
    """

    def __init__(
        self,
        bearer: BearerRefreshAuth,
        workspace_id: str,
        integration_account_id: str | None = None,
    ):
        self.bearer = bearer
        self.workspace_id = workspace_id
        self.integration_account_id = integration_account_id

    def authenticate(self) -> Result[TokenInfo]:
        if not self.workspace_id:
            return Result.fail(ErrorCode.AUTH_FAILED, "No workspace id configured")
        return self.bearer.authenticate()

    def ensure(self) -> Result[TokenInfo]:
        return self.bearer.ensure()

    def apply(self, headers: dict[str, str], body: Any) -> Any:
        body = self.bearer.apply(headers, body)
        headers["workspaceId"] = self.workspace_id
        if self.integration_account_id:
            headers["integrationAccountId"] = self.integration_account_id
        return body

    def handle_unauthorized(self) -> bool:
        return self.bearer.handle_unauthorized()

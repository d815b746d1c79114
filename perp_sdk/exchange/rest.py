"""
REST transport.

Async JSON client over aiohttp shared by the auth and exchange gateways.
Authenticated requests carry either an API key (``x-api-key`` header) or a
bearer access token. A bearer session with a refresh token is renewed once
when the exchange answers 401.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol, Union

import aiohttp

from perp_sdk.core import get_logger
from perp_sdk.core.exceptions import (
    AuthenticationError,
    ConnectionError,
    RateLimitError,
    RefreshTokenExpiredError,
    RequestError,
    UnauthorizedRequestError,
)

logger = get_logger(__name__)


# =============================================================================
# Session Credentials
# =============================================================================


@dataclass(frozen=True)
class ApiKeySession:
    """API key credentials."""
    api_key: str

    def headers(self) -> Dict[str, str]:
        return {"x-api-key": self.api_key}


@dataclass(frozen=True)
class JwtSession:
    """Bearer token credentials, optionally refreshable."""
    access_token: str
    refresh_token: Optional[str] = None

    @property
    def refreshable(self) -> bool:
        return bool(self.refresh_token)

    def headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.access_token}"}


SessionCredentials = Union[ApiKeySession, JwtSession]


class TokenRefresher(Protocol):
    """Renews a bearer session."""

    async def refresh(self, session: JwtSession) -> JwtSession:
        ...


# =============================================================================
# Client
# =============================================================================


class RestClient:
    """
    JSON REST client with retries and session handling.

    Network errors and 429 answers are retried with exponential backoff.
    Error answers raise ``RequestError`` (``AuthenticationError`` for 401).

    Example:
        >>> async with RestClient(session=ApiKeySession("key")) as client:
        ...     me = await client.auth_request("GET", "https://exchange/api/user/me")
    """

    def __init__(
        self,
        session: Optional[SessionCredentials] = None,
        refresher: Optional[TokenRefresher] = None,
        timeout: float = 30.0,
        max_retries: int = 3,
        retry_delay: float = 1.0,
    ):
        """
        Initialize RestClient.

        Args:
            session: Initial session credentials
            refresher: Renews refreshable bearer sessions on 401
            timeout: Request timeout in seconds
            max_retries: Maximum number of retries for transient errors
            retry_delay: Initial delay between retries (exponential backoff)
        """
        self._credentials = session
        self._refresher = refresher
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._max_retries = max_retries
        self._retry_delay = retry_delay
        self._http: Optional[aiohttp.ClientSession] = None
        self._refresh_lock = asyncio.Lock()

        # Owner of the HTTP session for clients created with bind()
        self._parent: Optional["RestClient"] = None

    def bind(self, session: SessionCredentials) -> "RestClient":
        """
        Client with its own credentials over this client's HTTP session.

        The bound client refreshes and stores its own tokens, so accounts
        sharing one connection pool never see each other's credentials.
        Closing it leaves the shared HTTP session open.
        """
        client = RestClient(
            session=session,
            refresher=self._refresher,
            max_retries=self._max_retries,
            retry_delay=self._retry_delay,
        )
        client._timeout = self._timeout
        client._parent = self._parent or self
        return client

    # =========================================================================
    # Lifecycle Management
    # =========================================================================

    async def connect(self) -> None:
        """Create HTTP session."""
        if self._parent is not None:
            await self._parent.connect()
            return
        if self._http is None or self._http.closed:
            self._http = aiohttp.ClientSession(timeout=self._timeout)

    async def _client_session(self) -> aiohttp.ClientSession:
        if self._parent is not None:
            return await self._parent._client_session()
        if self._http is None or self._http.closed:
            await self.connect()
        return self._http

    async def close(self) -> None:
        """Close HTTP session; bound clients leave the shared one open."""
        if self._parent is not None:
            return
        if self._http and not self._http.closed:
            await self._http.close()
            self._http = None
            logger.debug("REST session closed")

    async def __aenter__(self) -> "RestClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    # =========================================================================
    # Session
    # =========================================================================

    @property
    def session(self) -> Optional[SessionCredentials]:
        return self._credentials

    def access_token(self) -> Optional[str]:
        """Current bearer token; None for API key sessions."""
        session = self._credentials
        return session.access_token if isinstance(session, JwtSession) else None

    def set_session(self, session: SessionCredentials) -> None:
        self._credentials = session

    def set_refresher(self, refresher: TokenRefresher) -> None:
        self._refresher = refresher

    # =========================================================================
    # Requests
    # =========================================================================

    async def request(
        self,
        method: str,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        """
        Send an unauthenticated request.

        Raises:
            ConnectionError: Connection failed after retries
            RateLimitError: Still rate limited after retries
            RequestError: Exchange answered with an error status
        """
        http = await self._client_session()

        params = _clean_params(params)
        last_exception: Optional[Exception] = None
        for attempt in range(self._max_retries + 1):
            logger.debug(f"Request: {method} {url} (attempt {attempt + 1}/{self._max_retries + 1})")
            try:
                async with http.request(
                    method, url, params=params, json=json, headers=headers
                ) as resp:
                    return await self._handle_response(resp)

            except RateLimitError as e:
                last_exception = e
                if attempt < self._max_retries:
                    delay = max(self._retry_delay * (2 ** attempt), float(e.retry_after))
                    logger.warning(
                        f"Rate limited on {url}. Retrying in {delay:.1f}s "
                        f"(attempt {attempt + 1}/{self._max_retries})"
                    )
                    await asyncio.sleep(delay)
                    continue
                raise

            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_exception = e
                if attempt < self._max_retries:
                    delay = self._retry_delay * (2 ** attempt)
                    logger.warning(
                        f"Network error on {url}: {e}. Retrying in {delay:.1f}s "
                        f"(attempt {attempt + 1}/{self._max_retries})"
                    )
                    await asyncio.sleep(delay)
                    continue
                logger.error(f"Connection error after {self._max_retries + 1} attempts: {e}")
                raise ConnectionError(f"Failed to reach {url}: {e}") from e

        raise ConnectionError(f"Request failed after {self._max_retries + 1} attempts: {last_exception}")

    async def auth_request(
        self,
        method: str,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        """
        Send a request with the current session credentials.

        Raises:
            UnauthorizedRequestError: No session is set
            RefreshTokenExpiredError: The session could not be renewed
            RequestError: Exchange answered with an error status
        """
        session = self._credentials
        if session is None:
            raise UnauthorizedRequestError()

        try:
            return await self.request(
                method, url, params=params, json=json,
                headers={**(headers or {}), **session.headers()},
            )
        except AuthenticationError:
            if not (
                isinstance(session, JwtSession)
                and session.refreshable
                and self._refresher is not None
            ):
                raise

        renewed = await self._refresh(session)
        return await self.request(
            method, url, params=params, json=json,
            headers={**(headers or {}), **renewed.headers()},
        )

    async def _refresh(self, expired: JwtSession) -> JwtSession:
        """Renew the session once, even when several requests hit 401 together."""
        async with self._refresh_lock:
            current = self._credentials
            if isinstance(current, JwtSession) and current != expired:
                return current

            try:
                renewed = await self._refresher.refresh(expired)
            except AuthenticationError as e:
                raise RefreshTokenExpiredError(status=e.status, data=e.data) from e

            self._credentials = renewed
            logger.info("Session token refreshed")
            return renewed

    async def _handle_response(self, response: aiohttp.ClientResponse) -> Any:
        """
        Parse response and raise on error status.

        Raises:
            RateLimitError: HTTP 429
            AuthenticationError: HTTP 401
            RequestError: Any other status >= 400
        """
        status = response.status

        if status == 429:
            retry_after = response.headers.get("Retry-After", "1")
            raise RateLimitError(
                f"Rate limited (HTTP 429). Retry after: {retry_after}s",
                retry_after=int(retry_after) if retry_after.isdigit() else 1,
                code="429",
            )

        try:
            data = await response.json(content_type=None)
        except ValueError:
            data = await response.text()

        if status >= 400:
            message = (
                data.get("error") or data.get("message")
                if isinstance(data, dict) else None
            ) or response.reason or f"HTTP {status}"
            error_cls = AuthenticationError if status == 401 else RequestError
            logger.debug(f"Request error: HTTP {status} {message}")
            raise error_cls(str(message), status=status, data=data)

        return data


def _clean_params(params: Optional[Dict[str, Any]]) -> Optional[Dict[str, str]]:
    """Drop None values and stringify the rest for the query string."""
    if not params:
        return None
    cleaned = {}
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, bool):
            cleaned[key] = "true" if value else "false"
        elif hasattr(value, "value"):
            cleaned[key] = str(value.value)
        else:
            cleaned[key] = str(value)
    return cleaned

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from config import config
from models.errors import Forbidden, Permanent, Transient, Unauthorized
from models.retry_state import RetryPhase, RetryState
from models.schemas import Session, TokenPair
from utils.logging_utils import logger

SessionListener = Callable[[str], None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ApiRequest:
    """Outbound call description; replayable because it holds no transport state."""

    def __init__(self, method: str, path: str, json: Optional[Any] = None,
                 params: Optional[Dict[str, Any]] = None, authenticated: bool = True):
        self.method = method
        self.path = path
        self.json = json
        self.params = params
        self.authenticated = authenticated

    def __repr__(self) -> str:
        return f"ApiRequest({self.method} {self.path})"


class AuthenticatedRequestPipeline:
    """
    Wraps every call to the remote store.
    Attaches the bearer token, refreshes it once on 401 (one refresh at a time,
    shared by all waiting callers), replays the request, and retries transient
    failures with exponential backoff before giving up.
    """

    def __init__(self, base_url: Optional[str] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
                 now: Callable[[], datetime] = _utcnow,
                 max_attempts: Optional[int] = None,
                 base_delay: Optional[float] = None,
                 max_delay: Optional[float] = None):
        self._client = httpx.AsyncClient(
            base_url=base_url or config.api_base_url,
            timeout=config.request_timeout,
            transport=transport,
        )
        self._sleep = sleep
        self._now = now
        self.max_attempts = max_attempts or config.request_max_attempts
        self.base_delay = config.backoff_base_delay if base_delay is None else base_delay
        self.max_delay = config.backoff_max_delay if max_delay is None else max_delay
        self.refresh_skew = timedelta(seconds=config.token_refresh_skew)

        self._session: Optional[Session] = None
        self._refresh_lock = asyncio.Lock()
        self._listeners: List[SessionListener] = []

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------
    @property
    def is_authenticated(self) -> bool:
        return self._session is not None

    def add_session_listener(self, listener: SessionListener):
        """Called with a reason whenever the session is invalidated and re-login is required"""
        self._listeners.append(listener)

    def open_session(self, tokens: TokenPair):
        self._session = Session(**tokens.model_dump())
        logger.info("Session opened")

    async def login(self, email: str, password: str):
        response = await self.send(ApiRequest(
            "POST", config.login_path,
            json={"email": email, "password": password},
            authenticated=False,
        ))
        try:
            tokens = TokenPair.model_validate(response.json())
        except ValueError as e:
            raise Permanent(f"Malformed login response: {e}", response.status_code) from e
        self.open_session(tokens)

    def logout(self):
        self._session = None
        logger.info("Session closed by logout")

    async def aclose(self):
        await self._client.aclose()

    def _invalidate(self, reason: str):
        self._session = None
        logger.warning(f"Session invalidated: {reason}")
        for listener in self._listeners:
            listener(reason)

    # ------------------------------------------------------------------
    # Request handling
    # ------------------------------------------------------------------
    async def send(self, request: ApiRequest) -> httpx.Response:
        """
        Send a request through the auth and retry layers.
        Raises Unauthorized, Forbidden, Transient or Permanent.

        A request is refreshed-and-replayed at most once, even when the
        replay itself fails transiently and is retried.
        """
        retry = RetryState(self.max_attempts, self.base_delay, self.max_delay)
        replayed = False

        while True:
            try:
                token = await self._current_token() if request.authenticated else None
                response = await self._dispatch(request, token)

                if response.status_code == 401 and request.authenticated:
                    if replayed:
                        self._invalidate("credentials rejected again after refresh")
                        raise Unauthorized("Credentials rejected after refresh", session_invalidated=True)

                    await self._refresh(token)
                    replayed = True
                    response = await self._dispatch(request, self._session.accessToken)
                    if response.status_code == 401:
                        self._invalidate("refreshed credentials rejected")
                        raise Unauthorized("Credentials rejected after refresh", session_invalidated=True)

                response = self._check(response)
            except Transient as e:
                if retry.record_failure() is RetryPhase.EXHAUSTED:
                    logger.warning(f"{request} failed after {retry.attempt} attempts: {e.message}")
                    raise
                logger.info(f"{request} attempt {retry.attempt}/{retry.max_attempts} failed, "
                            f"retrying in {retry.next_delay:.1f}s: {e.message}")
                await self._sleep(retry.next_delay)
                continue

            retry.record_success()
            return response

    async def _current_token(self) -> str:
        session = self._session
        if session is None:
            raise Unauthorized("Not logged in", session_invalidated=True)

        # Refresh proactively when the token is about to expire
        if session.expiresAt is not None and self._now() >= session.expiresAt - self.refresh_skew:
            await self._refresh(session.accessToken)

        return self._session.accessToken

    async def _dispatch(self, request: ApiRequest, token: Optional[str]) -> httpx.Response:
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        try:
            return await self._client.request(
                request.method, request.path,
                json=request.json, params=request.params, headers=headers,
            )
        except httpx.TimeoutException as e:
            raise Transient(f"Timed out: {e}") from e
        except httpx.TransportError as e:
            raise Transient(f"Network error: {e}") from e

    async def _refresh(self, stale_token: Optional[str]):
        """
        Exchange the refresh token for a new pair.
        Callers that queued on the lock while another refresh replaced
        stale_token return without issuing a second refresh call.
        """
        async with self._refresh_lock:
            session = self._session
            if session is None:
                raise Unauthorized("Session ended during refresh", session_invalidated=True)
            if session.accessToken != stale_token:
                return

            logger.info("Refreshing access token")
            try:
                response = await self._client.post(
                    config.refresh_path, json={"refreshToken": session.refreshToken}
                )
            except httpx.TransportError as e:
                raise Transient(f"Token refresh failed: {e}") from e

            if response.status_code >= 500 or response.status_code in (408, 429):
                raise Transient(f"Token refresh failed: {_error_message(response)}", response.status_code)
            if response.status_code >= 400:
                self._invalidate(f"refresh rejected ({response.status_code})")
                raise Unauthorized(_error_message(response), session_invalidated=True)

            try:
                tokens = TokenPair.model_validate(response.json())
            except ValueError as e:
                self._invalidate("malformed refresh response")
                raise Unauthorized("Malformed refresh response", session_invalidated=True) from e

            # Refreshed in place; the session object itself is never shared
            session.accessToken = tokens.accessToken
            session.refreshToken = tokens.refreshToken
            session.expiresAt = tokens.expiresAt
            logger.info("Access token refreshed")

    @staticmethod
    def _check(response: httpx.Response) -> httpx.Response:
        code = response.status_code
        if code < 400:
            return response

        message = _error_message(response)
        if code == 401:
            raise Unauthorized(message, code)
        if code == 403:
            raise Forbidden(message, code)
        if code in (408, 429) or code >= 500:
            raise Transient(message, code)
        raise Permanent(message, code)


def _error_message(response: httpx.Response) -> str:
    """Server-provided message from a FastAPI/Express style error body"""
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        for key in ("detail", "message", "error"):
            if body.get(key):
                return str(body[key])
    return response.text or f"HTTP {response.status_code}"

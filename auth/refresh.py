from __future__ import annotations

import asyncio
import enum
import logging
from collections import deque
from typing import Callable

from auth.models import Credential, PendingWaiter
from auth.token_store import CredentialVault
from mobile_api.constants import LOGGER, REFRESH_ENDPOINT
from mobile_api.errors import ApiError, AuthenticationFailedError
from mobile_api.http import RequestExecutor
from mobile_api.models import RequestAttempt


class RefreshState(enum.Enum):
    IDLE = "idle"
    REFRESHING = "refreshing"


async def exchange_refresh_token(
    executor: RequestExecutor,
    refresh_token: str,
    *,
    endpoint: str = REFRESH_ENDPOINT,
    headers: dict[str, str] | None = None,
    timeout: float,
) -> Credential:
    attempt = RequestAttempt(
        method="POST",
        url=endpoint,
        headers=dict(headers or {}),
        body={"refreshToken": refresh_token},
        timeout=timeout,
    )
    try:
        response = await executor.execute(attempt)
    except ApiError as error:
        raise AuthenticationFailedError(
            f"Token refresh failed: {error.message}"
        ) from error

    try:
        return Credential.from_auth_payload(response.body)
    except RuntimeError as error:
        raise AuthenticationFailedError(f"Token refresh failed: {error}") from error


class RefreshCoordinator:
    """Single-flight access token refresh.

    The first caller to ask for a fresh token moves the coordinator from
    IDLE to REFRESHING and starts one exchange task. Every caller, the first
    included, waits on a ``PendingWaiter``; the queue is released in arrival
    order, all at once, when the exchange settles. Failure clears the stored
    credentials and rejects every waiter with ``AuthenticationFailedError``.
    """

    def __init__(
        self,
        executor: RequestExecutor,
        vault: CredentialVault,
        *,
        timeout: float,
        endpoint: str = REFRESH_ENDPOINT,
        headers: Callable[[], dict[str, str]] | None = None,
        on_token_change: Callable[[str | None], None] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.endpoint = endpoint
        self._executor = executor
        self._vault = vault
        self._timeout = timeout
        self._headers = headers or dict
        self._on_token_change = on_token_change or (lambda token: None)
        self._logger = logger or LOGGER

        self._state = RefreshState.IDLE
        self._waiters: deque[PendingWaiter] = deque()
        self._task: asyncio.Task | None = None

    @property
    def state(self) -> RefreshState:
        return self._state

    @property
    def pending_count(self) -> int:
        return len(self._waiters)

    def enqueue(self, waiter: PendingWaiter) -> None:
        self._waiters.append(waiter)

    async def obtain_fresh_token(self) -> str:
        waiter = PendingWaiter.create()
        self.enqueue(waiter)
        if self._state is RefreshState.IDLE:
            self._state = RefreshState.REFRESHING
            self._task = asyncio.ensure_future(self._refresh())
        return await waiter.future

    async def aclose(self) -> None:
        task = self._task
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        if self._state is RefreshState.REFRESHING:
            self._release(
                None,
                AuthenticationFailedError("Token refresh was cancelled."),
                update_header=False,
            )

    async def _refresh(self) -> None:
        self._logger.info("Refreshing access token via %s", self.endpoint)
        try:
            credential = await self._exchange()
        except Exception as error:
            failure = (
                error
                if isinstance(error, AuthenticationFailedError)
                else AuthenticationFailedError(f"Token refresh failed: {error}")
            )
            self._logger.warning("Access token refresh failed: %s", failure.message)
            await self._vault.clear()
            self._release(None, failure)
            return
        except asyncio.CancelledError:
            self._release(
                None,
                AuthenticationFailedError("Token refresh was cancelled."),
                update_header=False,
            )
            raise

        await self._vault.save(credential)
        self._logger.info("Access token refreshed; releasing %s waiter(s)", len(self._waiters))
        self._release(credential.access_token, None)

    async def _exchange(self) -> Credential:
        refresh_token = await self._vault.refresh_token()
        if not refresh_token:
            raise AuthenticationFailedError("No refresh token available.")
        return await exchange_refresh_token(
            self._executor,
            refresh_token,
            endpoint=self.endpoint,
            headers=self._headers(),
            timeout=self._timeout,
        )

    def _release(
        self,
        token: str | None,
        error: AuthenticationFailedError | None,
        *,
        update_header: bool = True,
    ) -> None:
        # No await between the header update, the state reset and the drain.
        if update_header:
            self._on_token_change(token)
        waiters = list(self._waiters)
        self._waiters.clear()
        self._state = RefreshState.IDLE
        self._task = None

        for waiter in waiters:
            if token is not None:
                waiter.on_success(token)
            else:
                waiter.on_failure(error or AuthenticationFailedError())

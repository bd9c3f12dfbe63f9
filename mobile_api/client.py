from __future__ import annotations

import itertools
import logging
from typing import Any
from urllib.parse import urlparse

import httpx

from auth.models import Credential
from auth.refresh import RefreshCoordinator
from auth.retry_tracker import RetryTracker
from auth.token_store import CredentialStore, CredentialVault
from mobile_api.constants import (
    DEFAULT_HEADERS,
    DEFAULT_TIMEOUT_SECONDS,
    HTTP_METHODS,
    LOGGER,
    REFRESH_ENDPOINT,
)
from mobile_api.errors import AuthenticationFailedError, HttpStatusError
from mobile_api.http import RequestExecutor
from mobile_api.models import ApiResponse, RawResponse, RequestAttempt, RequestIdentity

Params = dict[str, str | int | float | bool | None]


def _endpoint_path(endpoint: str) -> str:
    return urlparse(endpoint).path.rstrip("/")


class AuthenticatedClient:
    def __init__(
        self,
        store: CredentialStore,
        *,
        base_url: str = "",
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        headers: dict[str, str] | None = None,
        refresh_endpoint: str = REFRESH_ENDPOINT,
        transport: httpx.AsyncBaseTransport | None = None,
        debug: bool = False,
        logger: logging.Logger | None = None,
    ) -> None:
        self.timeout = timeout
        self.refresh_endpoint = refresh_endpoint
        self._logger = logger or LOGGER
        self._default_headers = {**DEFAULT_HEADERS, **(headers or {})}
        self._sequence = itertools.count(1)

        self.vault = CredentialVault(store, logger=self._logger)
        self.retry_tracker = RetryTracker()
        self._executor = RequestExecutor(
            base_url=base_url,
            transport=transport,
            debug=debug,
            logger=self._logger,
        )
        self.coordinator = RefreshCoordinator(
            self._executor,
            self.vault,
            timeout=timeout,
            endpoint=refresh_endpoint,
            headers=lambda: self._build_headers(None, include_auth=False),
            on_token_change=self._apply_access_token,
            logger=self._logger,
        )

    async def __aenter__(self) -> "AuthenticatedClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.coordinator.aclose()
        await self._executor.aclose()

    # -- headers ---------------------------------------------------------------

    @property
    def headers(self) -> dict[str, str]:
        return dict(self._default_headers)

    @property
    def access_token(self) -> str | None:
        value = self._default_headers.get("Authorization")
        if not value:
            return None
        return value.partition(" ")[2] or None

    def set_header(self, key: str, value: str) -> None:
        self._default_headers[key] = value

    def remove_header(self, key: str) -> None:
        self._default_headers.pop(key, None)

    def _apply_access_token(self, token: str | None) -> None:
        if token:
            self.set_header("Authorization", f"Bearer {token}")
        else:
            self.remove_header("Authorization")

    def _build_headers(
        self, headers: dict[str, str] | None, *, include_auth: bool
    ) -> dict[str, str]:
        merged = {**self._default_headers, **(headers or {})}
        if not include_auth:
            merged = {
                key: value for key, value in merged.items() if key.lower() != "authorization"
            }
        return merged

    def _is_refresh_endpoint(self, endpoint: str) -> bool:
        return _endpoint_path(endpoint).endswith(_endpoint_path(self.refresh_endpoint))

    # -- session ---------------------------------------------------------------

    async def restore_session(self) -> Credential | None:
        credential = await self.vault.load()
        self._apply_access_token(credential.access_token if credential else None)
        return credential

    async def establish_session(self, credential: Credential) -> None:
        await self.vault.save(credential)
        self._apply_access_token(credential.access_token)

    async def clear_session(self) -> None:
        await self.vault.clear()
        self._apply_access_token(None)

    # -- requests --------------------------------------------------------------

    async def request(
        self,
        method: str,
        endpoint: str,
        *,
        body: Any = None,
        headers: dict[str, str] | None = None,
        params: Params | None = None,
        timeout: float | None = None,
    ) -> ApiResponse:
        if method.lower() not in HTTP_METHODS:
            raise ValueError(f"Unsupported HTTP method: {method}")
        method = method.upper()
        identity = RequestIdentity(method, endpoint, next(self._sequence))
        refresh_call = self._is_refresh_endpoint(endpoint)
        attempt = RequestAttempt(
            method=method,
            url=endpoint,
            headers=self._build_headers(headers, include_auth=not refresh_call),
            body=body,
            params=dict(params) if params else None,
            timeout=self.timeout if timeout is None else timeout,
        )

        try:
            try:
                raw = await self._executor.execute(attempt)
            except HttpStatusError as error:
                if (
                    error.status != 401
                    or refresh_call
                    or not self.retry_tracker.should_retry(identity)
                ):
                    raise
                raw = await self._replay_with_fresh_token(identity, attempt)
            return ApiResponse.from_raw(raw)
        finally:
            self.retry_tracker.clear(identity)

    async def _replay_with_fresh_token(
        self, identity: RequestIdentity, attempt: RequestAttempt
    ) -> RawResponse:
        self.retry_tracker.mark_retried(identity)
        self._logger.warning(
            "Retrying after 401 with a refreshed token (%s %s)",
            identity.method,
            identity.url,
        )
        token = await self.coordinator.obtain_fresh_token()
        if not token:
            raise AuthenticationFailedError()
        return await self._executor.execute(attempt.with_authorization(token))

    async def get(
        self,
        endpoint: str,
        *,
        headers: dict[str, str] | None = None,
        params: Params | None = None,
        timeout: float | None = None,
    ) -> ApiResponse:
        return await self.request(
            "GET", endpoint, headers=headers, params=params, timeout=timeout
        )

    async def post(
        self,
        endpoint: str,
        body: Any = None,
        *,
        headers: dict[str, str] | None = None,
        params: Params | None = None,
        timeout: float | None = None,
    ) -> ApiResponse:
        return await self.request(
            "POST", endpoint, body=body, headers=headers, params=params, timeout=timeout
        )

    async def put(
        self,
        endpoint: str,
        body: Any = None,
        *,
        headers: dict[str, str] | None = None,
        params: Params | None = None,
        timeout: float | None = None,
    ) -> ApiResponse:
        return await self.request(
            "PUT", endpoint, body=body, headers=headers, params=params, timeout=timeout
        )

    async def patch(
        self,
        endpoint: str,
        body: Any = None,
        *,
        headers: dict[str, str] | None = None,
        params: Params | None = None,
        timeout: float | None = None,
    ) -> ApiResponse:
        return await self.request(
            "PATCH", endpoint, body=body, headers=headers, params=params, timeout=timeout
        )

    async def delete(
        self,
        endpoint: str,
        body: Any = None,
        *,
        headers: dict[str, str] | None = None,
        params: Params | None = None,
        timeout: float | None = None,
    ) -> ApiResponse:
        return await self.request(
            "DELETE", endpoint, body=body, headers=headers, params=params, timeout=timeout
        )

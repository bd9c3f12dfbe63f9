from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from .constants import LOGGER
from .errors import HttpStatusError, NetworkError, RequestTimeoutError
from .models import RawResponse, RequestAttempt


def _parse_body(response: httpx.Response) -> Any:
    if not response.content:
        return {}
    try:
        return response.json()
    except ValueError:
        return {}


def _clean_params(params: dict | None) -> dict | None:
    if not params:
        return None
    cleaned = {key: value for key, value in params.items() if value is not None}
    return cleaned or None


async def log_request(request: httpx.Request) -> None:
    LOGGER.info("API request %s %s", request.method, request.url)


async def log_response(response: httpx.Response) -> None:
    LOGGER.info(
        "API response %s %s -> %s",
        response.request.method,
        response.request.url,
        response.status_code,
    )
    if response.status_code >= 400:
        body = await response.aread()
        text = body.decode("utf-8", errors="replace")
        if len(text) > 1000:
            text = text[:1000] + "...<truncated>"
        LOGGER.warning("API error body: %s", text)


class RequestExecutor:
    """Issues single HTTP attempts with a hard deadline.

    The deadline wraps the whole exchange, so exceeding it cancels the
    in-flight send and the transport drops the connection. Non-2xx responses
    come back as ``HttpStatusError`` carrying the parsed body; transport
    failures as ``NetworkError``. Credentials are never touched here.
    """

    def __init__(
        self,
        *,
        base_url: str = "",
        transport: httpx.AsyncBaseTransport | None = None,
        debug: bool = False,
        logger: logging.Logger | None = None,
    ) -> None:
        event_hooks: dict[str, list] = {}
        if debug:
            event_hooks = {"request": [log_request], "response": [log_response]}
        self._client = httpx.AsyncClient(
            base_url=base_url,
            transport=transport,
            timeout=None,
            event_hooks=event_hooks,
        )
        self._logger = logger or LOGGER

    def build_request(self, attempt: RequestAttempt) -> httpx.Request:
        content: Any = None
        json_body: Any = None
        if attempt.body is not None and attempt.method.upper() != "GET":
            if isinstance(attempt.body, (str, bytes)):
                content = attempt.body
            else:
                json_body = attempt.body

        return self._client.build_request(
            attempt.method.upper(),
            attempt.url,
            headers=attempt.headers,
            params=_clean_params(attempt.params),
            content=content,
            json=json_body,
            timeout=httpx.Timeout(attempt.timeout),
        )

    async def execute(self, attempt: RequestAttempt) -> RawResponse:
        try:
            request = self.build_request(attempt)
        except httpx.InvalidURL as error:
            raise NetworkError(str(error)) from error

        try:
            response = await asyncio.wait_for(
                self._client.send(request), timeout=attempt.timeout
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as error:
            self._logger.warning(
                "Request timed out after %ss (%s %s)",
                attempt.timeout,
                request.method,
                request.url,
            )
            raise RequestTimeoutError() from error
        except httpx.HTTPError as error:
            self._logger.warning(
                "Request failed without a response (%s %s): %s",
                request.method,
                request.url,
                error,
            )
            raise NetworkError(str(error)) from error

        raw = RawResponse(
            status_code=response.status_code,
            body=_parse_body(response),
            headers=dict(response.headers),
        )
        if not raw.ok:
            raise HttpStatusError(raw.status_code, raw.body)
        return raw

    async def aclose(self) -> None:
        await self._client.aclose()

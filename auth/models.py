from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any


@dataclass
class Credential:
    access_token: str
    refresh_token: str
    user: dict[str, Any] | None = None

    @classmethod
    def from_auth_payload(cls, payload: Any) -> "Credential":
        """Parse ``{user, tokens: {access: {token}, refresh: {token}}}``.

        The bare ``{access: {token}, refresh: {token}}`` shape is accepted too.
        """
        if not isinstance(payload, dict):
            raise RuntimeError("Auth response must be a JSON object.")

        tokens = payload.get("tokens", payload)
        if not isinstance(tokens, dict):
            raise RuntimeError("Auth response tokens must be a JSON object.")

        access_token = _token_value(tokens.get("access"))
        refresh_token = _token_value(tokens.get("refresh"))
        if not access_token:
            raise RuntimeError("Auth response missing access token.")
        if not refresh_token:
            raise RuntimeError("Auth response missing refresh token.")

        user = payload.get("user")
        return cls(
            access_token=access_token,
            refresh_token=refresh_token,
            user=user if isinstance(user, dict) else None,
        )


def _token_value(entry: Any) -> str | None:
    if not isinstance(entry, dict):
        return None
    token = entry.get("token")
    if not isinstance(token, str) or not token:
        return None
    return token


@dataclass
class PendingWaiter:
    future: asyncio.Future

    @classmethod
    def create(cls) -> "PendingWaiter":
        return cls(future=asyncio.get_running_loop().create_future())

    def on_success(self, token: str) -> None:
        if not self.future.done():
            self.future.set_result(token)

    def on_failure(self, error: BaseException) -> None:
        if not self.future.done():
            self.future.set_exception(error)

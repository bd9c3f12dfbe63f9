from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any


@dataclass(frozen=True)
class RequestIdentity:
    method: str
    url: str
    sequence: int


@dataclass
class RequestAttempt:
    method: str
    url: str
    headers: dict[str, str]
    timeout: float
    body: Any = None
    params: dict[str, str | int | float | bool] | None = None

    def with_authorization(self, access_token: str) -> "RequestAttempt":
        headers = {
            key: value
            for key, value in self.headers.items()
            if key.lower() != "authorization"
        }
        headers["Authorization"] = f"Bearer {access_token}"
        return replace(self, headers=headers)


@dataclass
class RawResponse:
    status_code: int
    body: Any
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


@dataclass
class ApiResponse:
    data: Any
    message: str | None = None
    success: bool = True

    @classmethod
    def from_raw(cls, raw: RawResponse) -> "ApiResponse":
        body = raw.body
        if not isinstance(body, dict):
            return cls(data=body)
        data = body.get("data")
        message = body.get("message")
        return cls(
            data=body if data is None else data,
            message=message if isinstance(message, str) else None,
        )

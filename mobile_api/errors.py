from __future__ import annotations

from typing import Any

TIMEOUT_MESSAGE = "Request timeout. Please try again."
NETWORK_MESSAGE = "Network error. Please check your connection."
SESSION_ENDED_MESSAGE = "Your session has expired. Please sign in again."


def _friendly_error_message(status_code: int) -> str:
    if status_code == 401:
        return "Authentication failed. Your session token may have expired."
    if status_code == 403:
        return "You don't have permission to perform this action."
    if status_code == 404:
        return "The requested resource was not found."
    if status_code == 429:
        return "Too many requests. Please wait a moment and try again."
    if status_code >= 500:
        return "The server is experiencing issues. Please try again later."
    return f"Request failed with status {status_code}."


class ApiError(RuntimeError):
    """Uniform error shape surfaced to callers of the client."""

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        code: str | None = None,
        errors: dict[str, list[str]] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status = status
        self.code = code
        self.errors = errors

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"message": self.message}
        if self.status is not None:
            payload["status"] = self.status
        if self.code is not None:
            payload["code"] = self.code
        if self.errors is not None:
            payload["errors"] = self.errors
        return payload


class RequestTimeoutError(ApiError):
    def __init__(self, message: str = TIMEOUT_MESSAGE) -> None:
        super().__init__(message, status=408)


class NetworkError(ApiError):
    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or NETWORK_MESSAGE)


class HttpStatusError(ApiError):
    def __init__(self, status_code: int, body: Any) -> None:
        details = body if isinstance(body, dict) else {}
        message = details.get("message")
        if not isinstance(message, str) or not message:
            message = _friendly_error_message(status_code)
        code = details.get("code")
        errors = details.get("errors")
        super().__init__(
            message,
            status=status_code,
            code=code if isinstance(code, str) else None,
            errors=errors if isinstance(errors, dict) else None,
        )
        self.body = body


class AuthenticationFailedError(ApiError):
    def __init__(self, message: str = SESSION_ENDED_MESSAGE) -> None:
        super().__init__(message, status=401, code="AUTHENTICATION_FAILED")

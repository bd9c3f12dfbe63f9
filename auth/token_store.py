from __future__ import annotations

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from auth.models import Credential

ACCESS_TOKEN_SLOT = "auth_token"
REFRESH_TOKEN_SLOT = "refresh_token"
USER_RECORD_SLOT = "user_data"
CREDENTIAL_SLOTS = (ACCESS_TOKEN_SLOT, REFRESH_TOKEN_SLOT, USER_RECORD_SLOT)

LOGGER = logging.getLogger("mobile_api.auth")


class CredentialStore(ABC):
    @abstractmethod
    async def get(self, slot: str) -> str | None:
        raise NotImplementedError

    @abstractmethod
    async def set(self, slot: str, value: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def remove(self, slot: str) -> None:
        raise NotImplementedError


class MemoryCredentialStore(CredentialStore):
    def __init__(self) -> None:
        self._values: dict[str, str] = {}

    async def get(self, slot: str) -> str | None:
        return self._values.get(slot)

    async def set(self, slot: str, value: str) -> None:
        self._values[slot] = value

    async def remove(self, slot: str) -> None:
        self._values.pop(slot, None)


class FileCredentialStore(CredentialStore):
    def __init__(self, path: str | Path = ".credentials.json") -> None:
        self._path = Path(path)

    async def get(self, slot: str) -> str | None:
        return self._read_all().get(slot)

    async def set(self, slot: str, value: str) -> None:
        values = self._read_all()
        values[slot] = value
        self._write_all(values)

    async def remove(self, slot: str) -> None:
        values = self._read_all()
        if values.pop(slot, None) is not None:
            self._write_all(values)

    def _read_all(self) -> dict[str, str]:
        if not self._path.exists():
            return {}

        raw = json.loads(self._path.read_text(encoding="utf-8"))
        if not isinstance(raw, dict):
            raise RuntimeError("Credential store file is invalid; expected top-level JSON object.")
        return raw

    def _write_all(self, payload: dict[str, str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(
            prefix=f"{self._path.name}.",
            suffix=".tmp",
            dir=self._path.parent,
        )
        tmp_path = Path(tmp_name)

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(payload, handle, indent=2, sort_keys=True)
            os.replace(tmp_path, self._path)
        finally:
            if tmp_path.exists():
                tmp_path.unlink()


class CredentialVault:
    """Typed access to the credential slots.

    Store failures are logged and read as "absent"; they never propagate.
    """

    def __init__(self, store: CredentialStore, *, logger: logging.Logger | None = None) -> None:
        self.store = store
        self._logger = logger or LOGGER

    async def access_token(self) -> str | None:
        return await self._get(ACCESS_TOKEN_SLOT)

    async def refresh_token(self) -> str | None:
        return await self._get(REFRESH_TOKEN_SLOT)

    async def user(self) -> dict[str, Any] | None:
        raw = await self._get(USER_RECORD_SLOT)
        if raw is None:
            return None
        try:
            user = json.loads(raw)
        except ValueError:
            self._logger.warning("Stored user record is not valid JSON; ignoring it.")
            return None
        return user if isinstance(user, dict) else None

    async def load(self) -> Credential | None:
        access_token = await self.access_token()
        refresh_token = await self.refresh_token()
        if not access_token or not refresh_token:
            return None
        return Credential(access_token, refresh_token, await self.user())

    async def save(self, credential: Credential) -> None:
        await self._set(ACCESS_TOKEN_SLOT, credential.access_token)
        await self._set(REFRESH_TOKEN_SLOT, credential.refresh_token)
        if credential.user is not None:
            await self._set(USER_RECORD_SLOT, json.dumps(credential.user))

    async def clear(self) -> None:
        for slot in CREDENTIAL_SLOTS:
            try:
                await self.store.remove(slot)
            except Exception as error:
                self._logger.warning("Failed to remove credential slot %s: %s", slot, error)

    async def _get(self, slot: str) -> str | None:
        try:
            value = await self.store.get(slot)
        except Exception as error:
            self._logger.warning("Failed to read credential slot %s: %s", slot, error)
            return None
        return value or None

    async def _set(self, slot: str, value: str) -> None:
        try:
            await self.store.set(slot, value)
        except Exception as error:
            self._logger.warning("Failed to write credential slot %s: %s", slot, error)

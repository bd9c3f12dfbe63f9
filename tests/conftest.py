import pytest

from auth.token_store import MemoryCredentialStore


@pytest.fixture
def memory_store() -> MemoryCredentialStore:
    return MemoryCredentialStore()


@pytest.fixture(autouse=True)
def _clear_api_env(monkeypatch) -> None:
    for key in (
        "API_BASE_URL",
        "API_TIMEOUT",
        "API_REFRESH_ENDPOINT",
        "API_CREDENTIALS_PATH",
        "API_DEBUG",
    ):
        monkeypatch.delenv(key, raising=False)

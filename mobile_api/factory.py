from __future__ import annotations

import httpx

from auth.token_store import CredentialStore, FileCredentialStore
from mobile_api.client import AuthenticatedClient
from mobile_api.env import ClientConfig, load_config, load_env, setup_logging


def create_client(
    config: ClientConfig | None = None,
    *,
    store: CredentialStore | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> AuthenticatedClient:
    if config is None:
        load_env()
        setup_logging()
        config = load_config()

    return AuthenticatedClient(
        store or FileCredentialStore(config.credentials_path),
        base_url=config.base_url,
        timeout=config.timeout,
        refresh_endpoint=config.refresh_endpoint,
        transport=transport,
        debug=config.debug,
    )

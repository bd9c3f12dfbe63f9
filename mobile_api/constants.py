from __future__ import annotations

import logging

HTTP_METHODS = {
    "get",
    "post",
    "put",
    "patch",
    "delete",
}

LOGGER = logging.getLogger("mobile_api.client")

# Mobile links can stall for a long time before failing.
DEFAULT_TIMEOUT_SECONDS = 120.0
REFRESH_ENDPOINT = "/auth/refresh-tokens"
DEFAULT_HEADERS = {"Content-Type": "application/json"}
DEFAULT_CREDENTIALS_PATH = ".credentials.json"

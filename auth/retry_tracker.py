from __future__ import annotations

from mobile_api.models import RequestIdentity


class RetryTracker:
    """Remembers which logical requests already spent their 401 retry."""

    def __init__(self) -> None:
        self._retried: set[RequestIdentity] = set()

    def should_retry(self, identity: RequestIdentity) -> bool:
        return identity not in self._retried

    def mark_retried(self, identity: RequestIdentity) -> None:
        self._retried.add(identity)

    def clear(self, identity: RequestIdentity) -> None:
        self._retried.discard(identity)

    def __len__(self) -> int:
        return len(self._retried)

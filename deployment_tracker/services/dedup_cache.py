"""In-memory cache of deployments already reported as deployed.

Best effort only: posts are idempotent server side, so losing this cache
(restart, crash) just causes redundant posts. An entry exists while the last
successful post for (deployment_name, digest) was "deployed".
"""
from __future__ import annotations

from threading import Lock
from typing import Dict


def cache_key(deployment_name: str, digest: str) -> str:
    return deployment_name + "||" + digest


class ObservedDeployments:
    """Lock-protected set of reported (deployment_name, digest) identities."""

    def __init__(self):
        self._lock = Lock()
        self._entries: Dict[str, bool] = {}

    def contains(self, key: str) -> bool:
        with self._lock:
            return key in self._entries

    def add(self, key: str) -> None:
        with self._lock:
            self._entries[key] = True

    def discard(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        """Reset the cache (primarily used in tests)."""
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.contains(key)

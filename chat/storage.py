from __future__ import annotations

import heapq
import logging
import threading
import time
from typing import Callable, Dict, List, Optional, Protocol, Tuple
from urllib.parse import quote

import httpx

from chat.core.errors import StorageError


logger = logging.getLogger("studybuddy.storage")

CLOUDFLARE_API_BASE = "https://api.cloudflare.com/client/v4"
# Workers KV rejects expiration_ttl values below this.
KV_MIN_TTL_SECONDS = 60


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def put(self, key: str, value: str, *, ttl_seconds: int) -> None: ...


class InMemoryKVStore:
    """Process-local store with per-key sliding expiry.

    Useful for development and tests; state is lost on restart.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._items: Dict[str, Tuple[str, float]] = {}
        self._expiries: List[Tuple[float, str]] = []
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            item = self._items.get(key)
            if item is None:
                return None
            value, expires_at = item
            if self._clock() >= expires_at:
                del self._items[key]
                return None
            return value

    def put(self, key: str, value: str, *, ttl_seconds: int) -> None:
        with self._lock:
            now = self._clock()
            self._evict_expired(now)
            expires_at = now + ttl_seconds
            self._items[key] = (value, expires_at)
            heapq.heappush(self._expiries, (expires_at, key))

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def _evict_expired(self, now: float) -> None:
        # Heap entries go stale when a key is rewritten; only evict if the expiry still matches.
        while self._expiries and self._expiries[0][0] <= now:
            expires_at, key = heapq.heappop(self._expiries)
            item = self._items.get(key)
            if item is not None and item[1] == expires_at:
                del self._items[key]


class CloudflareKVStore:
    """Workers KV namespace accessed through the Cloudflare REST API."""

    def __init__(
        self,
        account_id: str,
        namespace_id: str,
        api_token: str,
        *,
        timeout: float = 10.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self._base = f"{CLOUDFLARE_API_BASE}/accounts/{account_id}/storage/kv/namespaces/{namespace_id}"
        self._headers = {"Authorization": f"Bearer {api_token}"}
        self._client = client or httpx.Client(timeout=timeout)

    def _url(self, key: str) -> str:
        return f"{self._base}/values/{quote(key, safe='')}"

    def get(self, key: str) -> Optional[str]:
        try:
            response = self._client.get(self._url(key), headers=self._headers)
            if response.status_code == 404:
                return None
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise StorageError(f"KV read failed for {key!r}: {exc}") from exc
        return response.text

    def put(self, key: str, value: str, *, ttl_seconds: int) -> None:
        ttl = max(int(ttl_seconds), KV_MIN_TTL_SECONDS)
        try:
            response = self._client.put(
                self._url(key),
                params={"expiration_ttl": ttl},
                headers={**self._headers, "Content-Type": "text/plain; charset=utf-8"},
                content=value.encode("utf-8"),
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise StorageError(f"KV write failed for {key!r}: {exc}") from exc

    def close(self) -> None:
        self._client.close()


def build_store(settings) -> KeyValueStore:
    if settings.storage_backend == "cloudflare-kv":
        missing = [
            name
            for name, value in (
                ("CLOUDFLARE_ACCOUNT_ID", settings.cloudflare_account_id),
                ("CLOUDFLARE_KV_NAMESPACE_ID", settings.cloudflare_kv_namespace_id),
                ("CLOUDFLARE_API_TOKEN", settings.cloudflare_api_token),
            )
            if not value
        ]
        if missing:
            raise RuntimeError(f"{', '.join(missing)} not set. Please configure it in environment or .env")
        logger.info("Using Cloudflare KV namespace %s", settings.cloudflare_kv_namespace_id)
        return CloudflareKVStore(
            settings.cloudflare_account_id,
            settings.cloudflare_kv_namespace_id,
            settings.cloudflare_api_token,
        )

    logger.info("Using in-memory session store")
    return InMemoryKVStore()

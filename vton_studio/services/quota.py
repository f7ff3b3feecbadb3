"""Daily per-client generation quota backed by a counter store."""

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import date, datetime, time, timedelta
from urllib.parse import urlparse

import httpx
from pydantic import BaseModel

from ..config import QuotaConfig
from ..errors import QuotaExceededError

logger = logging.getLogger(__name__)


class QuotaDecision(BaseModel):
    """Outcome of one quota check."""
    allowed: bool
    count: int
    limit: int
    remaining: int
    reset_at: datetime


def next_local_midnight(now: datetime) -> datetime:
    """Start of the next calendar day in ``now``'s timezone."""
    return datetime.combine(now.date() + timedelta(days=1), time.min, tzinfo=now.tzinfo)


class CounterStore(ABC):
    """Abstract counter storage (process-local or hosted)."""

    @abstractmethod
    async def get(self, key: str) -> int:
        """Current value of ``key`` (0 when missing or expired)."""
        ...

    @abstractmethod
    async def incr(self, key: str, expire_at: datetime) -> int:
        """Atomically increment ``key``, expire it at ``expire_at``, return the new value."""
        ...

    async def close(self) -> None:
        return None


class InMemoryCounterStore(CounterStore):
    """Process-local store. Counters vanish on restart."""

    def __init__(self):
        self._counters: dict[str, tuple[int, datetime]] = {}
        self._lock = asyncio.Lock()

    def _purge(self, now: datetime) -> None:
        expired = [key for key, (_, expire_at) in self._counters.items() if expire_at <= now]
        for key in expired:
            del self._counters[key]

    async def get(self, key: str) -> int:
        async with self._lock:
            self._purge(datetime.now().astimezone())
            value = self._counters.get(key)
            return value[0] if value else 0

    async def incr(self, key: str, expire_at: datetime) -> int:
        async with self._lock:
            self._purge(datetime.now().astimezone())
            count = self._counters.get(key, (0, expire_at))[0] + 1
            self._counters[key] = (count, expire_at)
            return count


class UpstashCounterStore(CounterStore):
    """Hosted Redis over the Upstash REST API."""

    def __init__(self, url: str, token: str, timeout: float = 10.0):
        self.url = url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self._client: httpx.AsyncClient | None = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                headers={"Authorization": f"Bearer {self.token}"},
            )
        return self._client

    async def get(self, key: str) -> int:
        response = await self.client.post(self.url, json=["GET", key])
        response.raise_for_status()
        value = response.json().get("result")
        return int(value) if value is not None else 0

    async def incr(self, key: str, expire_at: datetime) -> int:
        response = await self.client.post(
            f"{self.url}/pipeline",
            json=[
                ["INCR", key],
                ["EXPIREAT", key, str(int(expire_at.timestamp()))],
            ],
        )
        response.raise_for_status()
        results = response.json()
        if "error" in results[0]:
            raise RuntimeError(f"Upstash INCR failed: {results[0]['error']}")
        return int(results[0]["result"])

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None


class RateLimiter:
    """Allows ``daily_limit`` generations per client per local calendar day."""

    def __init__(self, store: CounterStore, config: QuotaConfig | None = None):
        self.store = store
        self.config = config or QuotaConfig()

    def key_for(self, client_id: str, day: date) -> str:
        return f"{self.config.key_prefix}:{client_id}:{day.isoformat()}"

    def is_exempt(self, referer: str | None = None) -> bool:
        """Development mode, or a request coming from an exempt site."""
        if self.config.dev_mode:
            return True
        if not referer:
            return False
        host = (urlparse(referer).hostname or "").lower()
        return host in {h.lower() for h in self.config.exempt_referer_hosts}

    async def check(self, client_id: str, now: datetime | None = None) -> QuotaDecision:
        """Count one request for ``client_id`` unless the quota is already used."""
        now = (now or datetime.now()).astimezone()
        reset_at = next_local_midnight(now)
        limit = self.config.daily_limit
        key = self.key_for(client_id, now.date())

        current = await self.store.get(key)
        if current >= limit:
            logger.info("Quota exhausted for %s (%d/%d)", client_id, current, limit)
            return QuotaDecision(
                allowed=False, count=current, limit=limit, remaining=0, reset_at=reset_at
            )

        count = await self.store.incr(key, expire_at=reset_at)
        decision = QuotaDecision(
            allowed=count <= limit,
            count=count,
            limit=limit,
            remaining=max(0, limit - count),
            reset_at=reset_at,
        )
        logger.info("Quota for %s: %d/%d used", client_id, count, limit)
        return decision

    async def enforce(self, client_id: str, now: datetime | None = None) -> QuotaDecision:
        """Like ``check`` but raises ``QuotaExceededError`` when denied."""
        decision = await self.check(client_id, now)
        if not decision.allowed:
            raise QuotaExceededError(
                f"Daily limit of {decision.limit} generations reached. "
                f"Try again after {decision.reset_at.strftime('%Y-%m-%d %H:%M %Z').strip()}.",
                reset_at=decision.reset_at,
            )
        return decision


def create_counter_store(url: str | None, token: str | None) -> CounterStore:
    """Upstash when credentials are configured, otherwise in-memory."""
    if url and token:
        return UpstashCounterStore(url, token)
    logger.warning("No hosted counter store configured, quota is process-local")
    return InMemoryCounterStore()

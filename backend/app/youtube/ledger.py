"""Usage ledger: the shared Redis counter of quota units spent today.

INCRBY is the only write path for usage, so concurrent callers in any number
of processes always observe a consistent running total. The ledger never
falls back to a local counter: when Redis cannot be reached the quota is
unknown and callers receive LedgerUnavailableError.
"""

import functools

from redis.asyncio import Redis
from redis.exceptions import RedisError

from app.core.exceptions import LedgerUnavailableError

USAGE_KEY = "youtube:quota:daily"
LAST_RESET_KEY = "youtube:quota:last_reset"
EMERGENCY_KEY = "youtube:quota:emergency"
RESET_CLAIM_PREFIX = "youtube:quota:reset:"

# Reset claims outlive the quota day they guard, then expire on their own
RESET_CLAIM_TTL_SECONDS = 2 * 86_400


def _ledger_call(func):
    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except RedisError as exc:
            raise LedgerUnavailableError(f"Quota ledger unavailable: {exc}") from exc

    return wrapper


class UsageLedger:
    """Atomic daily usage counter plus the emergency flag."""

    def __init__(self, redis: Redis):
        self.redis = redis

    @_ledger_call
    async def current_usage(self) -> int:
        value = await self.redis.get(USAGE_KEY)
        return int(value) if value else 0

    @_ledger_call
    async def increment(self, cost: int) -> int:
        """Add `cost` units and return the new total as seen by this caller."""
        if cost < 0:
            raise ValueError("cost must be non-negative")
        return int(await self.redis.incrby(USAGE_KEY, cost))

    @_ledger_call
    async def reset(self, date_key: str) -> None:
        """Zero the counter and record the quota day it now belongs to."""
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.set(USAGE_KEY, 0)
            pipe.set(LAST_RESET_KEY, date_key)
            await pipe.execute()

    @_ledger_call
    async def last_reset_date_key(self) -> str | None:
        return await self.redis.get(LAST_RESET_KEY)

    @_ledger_call
    async def claim_reset(self, date_key: str) -> bool:
        """Return True for exactly one caller per quota day."""
        claimed = await self.redis.set(
            f"{RESET_CLAIM_PREFIX}{date_key}",
            "1",
            nx=True,
            ex=RESET_CLAIM_TTL_SECONDS,
        )
        return bool(claimed)

    @_ledger_call
    async def emergency_active(self) -> bool:
        return bool(await self.redis.exists(EMERGENCY_KEY))

    @_ledger_call
    async def set_emergency(self, ttl_seconds: int, reason: str = "") -> None:
        await self.redis.set(EMERGENCY_KEY, reason or "1", ex=ttl_seconds)

    @_ledger_call
    async def clear_emergency(self) -> None:
        await self.redis.delete(EMERGENCY_KEY)

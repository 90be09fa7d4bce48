"""Priority allocator: splits the remaining daily budget across priority classes.

Nothing is reserved. Each decision recomputes the share from what is left
right now, so a burst of low-priority work can never starve a later
critical sync of more than its own share.
"""

from app.youtube.schemas import SyncPriority

DEFAULT_SHARES: dict[SyncPriority, float] = {
    SyncPriority.CRITICAL: 0.3,
    SyncPriority.HIGH: 0.4,
    SyncPriority.MEDIUM: 0.2,
    SyncPriority.LOW: 0.1,
}

CRITICAL_OVERRIDE_REASON = "Critical priority override"


class PriorityAllocator:
    def __init__(self, shares: dict[str, float] | dict[SyncPriority, float] | None = None):
        if shares is None:
            self.shares = dict(DEFAULT_SHARES)
        else:
            self.shares = {SyncPriority(key): float(value) for key, value in shares.items()}

        missing = set(SyncPriority) - set(self.shares)
        if missing:
            raise ValueError(f"Missing priority shares: {sorted(p.value for p in missing)}")
        total = sum(self.shares.values())
        if abs(total - 1.0) > 1e-9:
            raise ValueError(f"Priority shares must sum to 1.0, got {total}")

    def allocated(self, remaining: int, priority: SyncPriority) -> float:
        return max(0, remaining) * self.shares[priority]

    def decide(self, remaining: int, priority: SyncPriority, estimated_cost: int) -> tuple[bool, float, str | None]:
        """Decide whether a job of `estimated_cost` may start now.

        Returns:
            Tuple of (approved, allocated_quota, reason). Reason is None for a
            plain approval.
        """
        allocated = self.allocated(remaining, priority)

        if estimated_cost <= allocated:
            return True, allocated, None

        if priority == SyncPriority.CRITICAL and estimated_cost <= remaining:
            return True, allocated, CRITICAL_OVERRIDE_REASON

        return (
            False,
            allocated,
            f"Estimated cost ({estimated_cost}) exceeds allocated quota ({allocated:.0f})",
        )

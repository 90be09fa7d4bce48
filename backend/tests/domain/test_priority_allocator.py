"""Tests for PriorityAllocator share math and the critical override."""

import pytest

from app.youtube.allocator import CRITICAL_OVERRIDE_REASON, DEFAULT_SHARES, PriorityAllocator
from app.youtube.schemas import SyncPriority

pytestmark = pytest.mark.unit


def test_default_shares_sum_to_one():
    assert sum(DEFAULT_SHARES.values()) == pytest.approx(1.0)


@pytest.mark.parametrize(
    "priority,expected",
    [
        (SyncPriority.CRITICAL, 3000),
        (SyncPriority.HIGH, 4000),
        (SyncPriority.MEDIUM, 2000),
        (SyncPriority.LOW, 1000),
    ],
)
def test_allocation_is_share_of_remaining(priority, expected):
    assert PriorityAllocator().allocated(10_000, priority) == pytest.approx(expected)


def test_negative_remaining_allocates_nothing():
    assert PriorityAllocator().allocated(-50, SyncPriority.HIGH) == 0


def test_within_share_is_approved_without_reason():
    approved, allocated, reason = PriorityAllocator().decide(10_000, SyncPriority.MEDIUM, 2000)

    assert approved is True
    assert allocated == pytest.approx(2000)
    assert reason is None


def test_over_share_is_refused_with_amounts():
    approved, allocated, reason = PriorityAllocator().decide(1000, SyncPriority.LOW, 200)

    assert approved is False
    assert allocated == pytest.approx(100)
    assert reason == "Estimated cost (200) exceeds allocated quota (100)"


def test_critical_may_exceed_share_up_to_remaining():
    allocator = PriorityAllocator()

    approved, allocated, reason = allocator.decide(1000, SyncPriority.CRITICAL, 900)
    assert approved is True
    assert allocated == pytest.approx(300)
    assert reason == CRITICAL_OVERRIDE_REASON

    approved, _, reason = allocator.decide(1000, SyncPriority.CRITICAL, 1001)
    assert approved is False
    assert reason.startswith("Estimated cost (1001)")


def test_high_priority_has_no_override():
    approved, _, _ = PriorityAllocator().decide(1000, SyncPriority.HIGH, 500)
    assert approved is False


def test_custom_shares_accept_string_keys():
    allocator = PriorityAllocator({"CRITICAL": 0.25, "HIGH": 0.25, "MEDIUM": 0.25, "LOW": 0.25})
    assert allocator.allocated(400, SyncPriority.LOW) == pytest.approx(100)


def test_shares_must_sum_to_one():
    with pytest.raises(ValueError, match="sum to 1.0"):
        PriorityAllocator({"CRITICAL": 0.5, "HIGH": 0.5, "MEDIUM": 0.5, "LOW": 0.5})


def test_every_priority_needs_a_share():
    with pytest.raises(ValueError, match="Missing priority shares"):
        PriorityAllocator({"CRITICAL": 0.5, "HIGH": 0.5})

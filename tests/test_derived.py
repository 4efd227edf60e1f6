"""
Tests for derived campaign and resource state.

These are pure functions over ledger records and a clock.
"""

from decimal import Decimal

import pytest

from givecore.core import derived
from givecore.schemas import Campaign, Claim, ClaimStatus, Resource

from .conftest import DAY, NOW, ORGANIZER, DONOR


def make_campaign(target="10", collected="0", deadline=NOW + 10 * DAY) -> Campaign:
    return Campaign(
        id=0,
        owner=ORGANIZER,
        title="Clean water",
        target=Decimal(target),
        amount_collected=Decimal(collected),
        deadline=deadline,
    )


def make_resource(original=20, available=20, active=True) -> Resource:
    return Resource(
        id=0,
        owner=ORGANIZER,
        title="Blankets",
        quantity_original=original,
        quantity_available=available,
        is_active=active,
    )


def make_claim(amount, completed=False, cancelled=False) -> Claim:
    return Claim(
        resource_id=0,
        index=0,
        claimer=DONOR,
        amount=amount,
        timestamp=NOW,
        is_completed=completed,
        is_cancelled=cancelled,
    )


class TestDaysLeft:

    def test_zero_at_deadline(self):
        """No days left at the exact deadline."""
        assert derived.days_left(NOW, NOW) == 0

    def test_whole_days(self):
        """Three full days before the deadline is 3."""
        assert derived.days_left(NOW, NOW - 3 * DAY) == 3

    def test_partial_day_rounds_up(self):
        """Any remaining fraction counts as a day."""
        assert derived.days_left(NOW + 1, NOW) == 1

    @pytest.mark.parametrize("elapsed", [1, DAY, 365 * DAY])
    def test_never_negative(self, elapsed):
        """Past deadlines report 0."""
        assert derived.days_left(NOW, NOW + elapsed) == 0


class TestProgress:

    def test_zero_target_is_zero_percent(self):
        """A zero target does not divide by zero."""
        assert derived.progress_percent(Decimal("5"), Decimal("0")) == 0

    def test_capped_at_100(self):
        """Over-funding still shows 100%."""
        assert derived.progress_percent(Decimal("15"), Decimal("10")) == 100

    def test_non_decreasing_over_donations(self):
        """Progress never goes down as donations accumulate."""
        collected = Decimal(0)
        previous = Decimal(0)
        for amount in ("0.5", "2", "0.001", "4", "3.499", "7"):
            collected += Decimal(amount)
            progress = derived.progress_percent(collected, Decimal("10"))
            assert progress >= previous
            previous = progress


class TestCampaignState:

    def test_fully_funded_is_inactive_with_days_remaining(self):
        """Target 10.0 reached by 4.0 + 6.0 ends the campaign early."""
        campaign = make_campaign(target="10.0", collected=str(Decimal("4.0") + Decimal("6.0")))
        state = derived.campaign_state(campaign, NOW)

        assert campaign.amount_collected == Decimal("10.0")
        assert state.is_fully_funded
        assert not state.is_active
        assert state.days_left == 10

    def test_expired_at_deadline(self):
        """A campaign is expired from the deadline instant onward."""
        campaign = make_campaign(deadline=NOW)
        state = derived.campaign_state(campaign, NOW)

        assert state.is_expired
        assert not state.is_active

    def test_active_before_deadline_and_target(self):
        state = derived.campaign_state(make_campaign(collected="3"), NOW)
        assert state.is_active
        assert state.progress == 30


class TestResourceState:

    def test_total_claimed(self):
        """Claimed total is original minus available."""
        resource = make_resource(original=20, available=15)
        assert derived.total_claimed(resource) == 5

    def test_not_claimable_when_empty_or_inactive(self):
        """Sold-out or deactivated resources cannot be claimed."""
        assert not derived.resource_state(make_resource(available=0)).is_claimable
        assert not derived.resource_state(make_resource(active=False)).is_claimable
        assert derived.resource_state(make_resource()).is_claimable

    def test_quantity_consistency_ignores_cancelled_claims(self):
        """Cancelled claims no longer hold quantity."""
        resource = make_resource(original=20, available=12)
        claims = [make_claim(5, completed=True), make_claim(3), make_claim(4, cancelled=True)]
        assert derived.quantity_consistent(resource, claims)

    def test_quantity_consistency_detects_drift(self):
        resource = make_resource(original=20, available=16)
        assert not derived.quantity_consistent(resource, [make_claim(5)])

    def test_claim_status(self):
        assert derived.claim_status(make_claim(1)) == ClaimStatus.PENDING
        assert derived.claim_status(make_claim(1, completed=True)) == ClaimStatus.COMPLETED
        assert derived.claim_status(make_claim(1, cancelled=True)) == ClaimStatus.CANCELLED


class TestTimeAgo:

    @pytest.mark.parametrize("elapsed, expected", [
        (0, "0 minutes ago"),
        (5 * 60, "5 minutes ago"),
        (2 * 3600, "2 hours ago"),
        (3 * DAY, "3 days ago"),
        (15 * DAY, "2 weeks ago"),
    ])
    def test_buckets(self, elapsed, expected):
        assert derived.time_ago(NOW - elapsed, NOW) == expected

    def test_future_timestamp_clamps(self):
        """Clock skew never produces negative ages."""
        assert derived.time_ago(NOW + 100, NOW) == "0 minutes ago"

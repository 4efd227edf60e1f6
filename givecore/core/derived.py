"""
Derived State

Pure functions over ledger records. Nothing here is stored; every read
recomputes it from the record and the current time.
"""

import math
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Union

from ..schemas import Campaign, Claim, ClaimStatus, Resource


SECONDS_PER_DAY = 86400

Number = Union[Decimal, int, float]


def days_left(deadline: int, now: float) -> int:
    """Whole days until the deadline, rounded up; 0 once it has passed."""
    remaining = deadline - now
    if remaining <= 0:
        return 0
    return math.ceil(remaining / SECONDS_PER_DAY)


def progress_percent(collected: Number, target: Number) -> Decimal:
    """Share of the target collected, 0..100. A zero target is 0%, not an error."""
    target = Decimal(str(target))
    if target == 0:
        return Decimal(0)
    ratio = Decimal(str(collected)) / target * 100
    return min(Decimal(100), ratio)


def is_fully_funded(collected: Number, target: Number) -> bool:
    return Decimal(str(collected)) >= Decimal(str(target))


def is_expired(deadline: int, now: float) -> bool:
    return now >= deadline


def is_active(collected: Number, target: Number, deadline: int, now: float) -> bool:
    return not is_fully_funded(collected, target) and not is_expired(deadline, now)


def total_claimed(resource: Resource) -> int:
    """Units currently reserved or handed over (cancelled claims excluded)."""
    return resource.quantity_original - resource.quantity_available


def claim_status(claim: Claim) -> ClaimStatus:
    return claim.status


def outstanding_claimed(claims: Iterable[Claim]) -> int:
    """Sum of amounts over claims that were not cancelled."""
    return sum(c.amount for c in claims if not c.is_cancelled)


def quantity_consistent(resource: Resource, claims: Iterable[Claim]) -> bool:
    """
    quantity_available + non-cancelled claim amounts == quantity_original,
    and available never exceeds original.
    """
    if resource.quantity_available > resource.quantity_original:
        return False
    return resource.quantity_available + outstanding_claimed(claims) == resource.quantity_original


def time_ago(timestamp: int, now: float) -> str:
    diff = max(0, int(now - timestamp))
    if diff < 3600:
        return f"{diff // 60} minutes ago"
    if diff < SECONDS_PER_DAY:
        return f"{diff // 3600} hours ago"
    if diff < 7 * SECONDS_PER_DAY:
        return f"{diff // SECONDS_PER_DAY} days ago"
    return f"{diff // (7 * SECONDS_PER_DAY)} weeks ago"


@dataclass(frozen=True)
class CampaignState:
    days_left: int
    progress: Decimal
    is_active: bool
    is_fully_funded: bool
    is_expired: bool


def campaign_state(campaign: Campaign, now: float) -> CampaignState:
    funded = is_fully_funded(campaign.amount_collected, campaign.target)
    expired = is_expired(campaign.deadline, now)
    return CampaignState(
        days_left=days_left(campaign.deadline, now),
        progress=progress_percent(campaign.amount_collected, campaign.target),
        is_active=not funded and not expired,
        is_fully_funded=funded,
        is_expired=expired,
    )


@dataclass(frozen=True)
class ResourceState:
    total_claimed: int
    is_claimable: bool


def resource_state(resource: Resource) -> ResourceState:
    return ResourceState(
        total_claimed=total_claimed(resource),
        is_claimable=resource.is_active and resource.quantity_available > 0,
    )

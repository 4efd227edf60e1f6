"""
Report Records

Structured records handed to the external document generator (PDF or
otherwise). Rendering is not done here; these are plain data, computed
from ledger records and off-chain metadata.

- Donation receipt
- Campaign transparency summary
- Platform transparency summary
"""

from collections import defaultdict
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, Optional

from pydantic import BaseModel, Field

from ..schemas import Campaign, Donation, DonationReceipt, UserProfile
from . import derived


NETWORK_LABEL = "Sepolia Testnet"
MAX_REPORT_DONATIONS = 15
TOP_CATEGORIES = 5


def receipt_id_for(transaction_ref: str) -> str:
    """Stable receipt number derived from the transaction reference."""
    digits = transaction_ref[2:] if transaction_ref.startswith("0x") else transaction_ref
    return f"RCP-{digits[:8].upper()}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReceiptRecord(BaseModel):
    receipt_id: str
    transaction_ref: str
    donated_at: datetime
    campaign_id: int
    campaign_title: str
    category: str = "N/A"
    amount: Decimal
    donor: str
    donor_name: str = "Anonymous Donor"
    campaign_owner: str = "N/A"
    organization_name: str = "N/A"
    network: str = NETWORK_LABEL
    generated_at: datetime = Field(default_factory=_utcnow)


class DonationLine(BaseModel):
    donor: str
    amount: Decimal


class CampaignReport(BaseModel):
    campaign_id: int
    title: str
    category: str
    owner: str
    deadline: int
    status: str
    target: Decimal
    amount_collected: Decimal
    progress: Decimal
    donor_count: int
    donations: list[DonationLine]
    generated_at: datetime = Field(default_factory=_utcnow)


class CategoryTotal(BaseModel):
    name: str
    campaign_count: int
    total_raised: Decimal


class PlatformReport(BaseModel):
    period: str = "All Time"
    total_campaigns: int
    active_campaigns: int
    total_donations: int
    unique_donors: int
    total_amount_raised: Decimal
    average_donation: Decimal
    largest_donation: Decimal
    top_categories: list[CategoryTotal]
    generated_at: datetime = Field(default_factory=_utcnow)


def receipt_record(
    receipt: DonationReceipt,
    donor_profile: Optional[UserProfile] = None,
    owner_profile: Optional[UserProfile] = None,
) -> ReceiptRecord:
    return ReceiptRecord(
        receipt_id=receipt.receipt_id,
        transaction_ref=receipt.transaction_ref,
        donated_at=receipt.created_at,
        campaign_id=receipt.campaign_id,
        campaign_title=receipt.campaign_title or "N/A",
        category=receipt.category or "N/A",
        amount=receipt.amount,
        donor=receipt.donor,
        donor_name=(donor_profile.name if donor_profile and donor_profile.name else "Anonymous Donor"),
        campaign_owner=receipt.campaign_owner or "N/A",
        organization_name=(owner_profile.name if owner_profile and owner_profile.name else "N/A"),
    )


def campaign_status(campaign: Campaign, now: float) -> str:
    state = derived.campaign_state(campaign, now)
    if state.is_fully_funded:
        return "Fully Funded"
    if state.is_expired:
        return "Ended"
    return "Active"


def campaign_report(
    campaign: Campaign,
    now: float,
    category: Optional[str] = None,
    max_donations: int = MAX_REPORT_DONATIONS,
) -> CampaignReport:
    return CampaignReport(
        campaign_id=campaign.id,
        title=campaign.title,
        category=category or campaign.category,
        owner=campaign.owner,
        deadline=campaign.deadline,
        status=campaign_status(campaign, now),
        target=campaign.target,
        amount_collected=campaign.amount_collected,
        progress=round(derived.progress_percent(campaign.amount_collected, campaign.target), 1),
        donor_count=campaign.donor_count,
        donations=[
            DonationLine(donor=d.donor, amount=d.amount)
            for d in campaign.donations[:max_donations]
        ],
    )


def platform_report(campaigns: Iterable[Campaign], now: float, top: int = TOP_CATEGORIES) -> PlatformReport:
    campaigns = list(campaigns)
    donations: list[Donation] = [d for c in campaigns for d in c.donations]
    amounts = [d.amount for d in donations]
    total_raised = sum((c.amount_collected for c in campaigns), Decimal(0))

    by_category: dict[str, list[Campaign]] = defaultdict(list)
    for campaign in campaigns:
        by_category[campaign.category].append(campaign)
    categories = sorted(
        (
            CategoryTotal(
                name=name,
                campaign_count=len(members),
                total_raised=sum((c.amount_collected for c in members), Decimal(0)),
            )
            for name, members in by_category.items()
        ),
        key=lambda c: (-c.total_raised, -c.campaign_count, c.name),
    )

    return PlatformReport(
        total_campaigns=len(campaigns),
        active_campaigns=sum(1 for c in campaigns if derived.campaign_state(c, now).is_active),
        total_donations=len(donations),
        unique_donors=len({d.donor for d in donations}),
        total_amount_raised=total_raised,
        average_donation=(sum(amounts, Decimal(0)) / len(amounts)) if amounts else Decimal(0),
        largest_donation=max(amounts, default=Decimal(0)),
        top_categories=categories[:top],
    )

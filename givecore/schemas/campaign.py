"""
Campaign Schemas

Typed records for the crowdfunding side of the ledger. Anything the ledger
binding hands back is mapped into these at the LedgerClient boundary; no
other component ever sees the binding's raw shape.

Amounts here are display decimals (ether). The conversion from the ledger's
integer unit happens once, in ``givecore.ledger.units``.
"""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from ..identity import normalize_identity


DEFAULT_CAMPAIGN_CATEGORY = "Community Development"


class Donation(BaseModel):
    """
    One donation to a campaign. Append-only; never mutated.

    Identity is (campaign_id, donor, transaction_ref). Donations read back
    from the donor list carry no transaction reference.
    """
    campaign_id: int
    donor: str
    amount: Decimal = Field(..., ge=0)
    new_total: Optional[Decimal] = None
    transaction_ref: Optional[str] = None

    @field_validator("donor")
    @classmethod
    def normalize_donor(cls, v: str) -> str:
        return normalize_identity(v)


class CampaignUpdate(BaseModel):
    """An owner-posted progress update. Append-only."""
    title: str
    content: str
    timestamp: int = Field(..., ge=0, description="Unix seconds of the block")


class Campaign(BaseModel):
    """
    A fundraising campaign as recorded on the ledger.

    Derived facts (days left, progress, active/expired/fully-funded) are
    deliberately absent: they are recomputed from these fields on every read
    by ``givecore.core.derived``.
    """
    id: int = Field(..., ge=0, description="Ledger-assigned sequential id")
    owner: str
    title: str
    description: str = ""
    target: Decimal = Field(..., ge=0)
    deadline: int = Field(..., description="Absolute deadline, unix seconds")
    amount_collected: Decimal = Field(default=Decimal(0), ge=0)
    image: str = ""
    category: str = DEFAULT_CAMPAIGN_CATEGORY
    is_verified: bool = False
    donations: list[Donation] = Field(default_factory=list)

    @field_validator("owner")
    @classmethod
    def normalize_owner(cls, v: str) -> str:
        return normalize_identity(v)

    @property
    def donor_count(self) -> int:
        return len({d.donor for d in self.donations})


class CampaignDraft(BaseModel):
    """Caller-supplied fields for a new campaign, before validation."""
    title: str = ""
    description: str = ""
    target: Decimal = Decimal(0)
    deadline: int = 0
    image: str = ""
    category: str = DEFAULT_CAMPAIGN_CATEGORY


class UserDonation(BaseModel):
    """A row of one identity's donation history."""
    campaign_id: int
    amount: Decimal


class PlatformStats(BaseModel):
    """Crowdfunding aggregates as reported by the ledger."""
    total_campaigns: int = 0
    total_donations_count: int = 0
    total_amount_raised: Decimal = Decimal(0)
    active_campaigns_count: int = 0

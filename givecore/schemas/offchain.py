"""
Off-Chain Metadata Schemas

Mutable, non-authoritative records kept in the OffchainStore. None of these
carry money or quantity; the ledger is the only source of truth for those.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from ..identity import normalize_identity


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserProfile(BaseModel):
    """
    Profile of one wallet identity.

    Upserted by the identity holder; never deleted, only overwritten.
    Last write wins.
    """
    wallet_address: str
    name: str = ""
    email: str = ""
    phone: str = ""
    location: str = ""
    bio: str = ""
    profile_image: str = ""
    total_campaigns: int = Field(default=0, ge=0)
    total_claims: int = Field(default=0, ge=0)
    updated_at: datetime = Field(default_factory=_utcnow)

    @field_validator("wallet_address")
    @classmethod
    def normalize_wallet(cls, v: str) -> str:
        return normalize_identity(v)

    @property
    def display_name(self) -> str:
        return self.name or self.wallet_address


class ChatMessage(BaseModel):
    """One message in the thread between a claimer and a resource owner."""
    resource_id: int
    claim_id: str
    sender: str
    message: str = Field(..., min_length=1)
    created_at: datetime = Field(default_factory=_utcnow)

    @field_validator("sender")
    @classmethod
    def normalize_sender(cls, v: str) -> str:
        return normalize_identity(v)


class CategoryRecord(BaseModel):
    campaign_id: int
    category: str
    updated_at: datetime = Field(default_factory=_utcnow)


class DonationReceipt(BaseModel):
    """
    Local record of a confirmed donation, kept for receipt generation.

    Keyed by (campaign_id, donor); a later donation by the same donor to the
    same campaign replaces it.
    """
    receipt_id: str
    campaign_id: int
    campaign_title: str = ""
    donor: str
    amount: Decimal
    transaction_ref: str
    created_at: datetime = Field(default_factory=_utcnow)
    category: Optional[str] = None
    campaign_owner: Optional[str] = None

    @field_validator("donor")
    @classmethod
    def normalize_donor(cls, v: str) -> str:
        return normalize_identity(v)

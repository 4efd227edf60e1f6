"""
Resource and Claim Schemas

A Resource is a quantity of something an owner offers to the community.
A Claim reserves part of that quantity for one claimer.

Claims move through exactly one path:

    Pending → Completed   (owner only)
    Pending → Cancelled   (claimer or owner; quantity is restored)

Completed and Cancelled are terminal. No reversals.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from ..identity import normalize_identity


DEFAULT_RESOURCE_IMAGE = "📦"


class ClaimStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not ClaimStatus.PENDING


class ClaimerShare(BaseModel):
    """(claimer, amount) pair as kept on the resource record itself."""
    claimer: str
    amount: int = Field(..., ge=0)

    @field_validator("claimer")
    @classmethod
    def normalize_claimer(cls, v: str) -> str:
        return normalize_identity(v)


class Claim(BaseModel):
    """
    A claim against a resource.

    ``index`` is the claim's position in the resource's claim list on the
    ledger; transactions address claims by (resource_id, index). The stable
    identity is (resource_id, claimer, timestamp).
    """
    resource_id: int = Field(..., ge=0)
    index: int = Field(..., ge=0)
    claimer: str
    amount: int = Field(..., ge=0)
    timestamp: int = Field(..., ge=0)
    is_completed: bool = False
    is_cancelled: bool = False

    @field_validator("claimer")
    @classmethod
    def normalize_claimer(cls, v: str) -> str:
        return normalize_identity(v)

    @property
    def status(self) -> ClaimStatus:
        if self.is_completed:
            return ClaimStatus.COMPLETED
        if self.is_cancelled:
            return ClaimStatus.CANCELLED
        return ClaimStatus.PENDING

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


class ClaimRef(BaseModel):
    """
    Handle given to a claimer right after a successful claim.

    ``thread_key`` addresses the chat thread with the resource owner.
    """
    resource_id: int
    index: int
    claimer: str
    timestamp: int

    @property
    def thread_key(self) -> str:
        return f"{self.resource_id}_{self.timestamp}"


class Resource(BaseModel):
    """A shared resource as recorded on the ledger."""
    id: int = Field(..., ge=0)
    owner: str
    title: str
    description: str = ""
    category: str = ""
    quantity_original: int = Field(..., ge=0)
    quantity_available: int = Field(..., ge=0)
    unit: str = ""
    location: str = ""
    image: str = DEFAULT_RESOURCE_IMAGE
    posted_at: int = 0
    is_active: bool = True
    is_verified: bool = False
    claimers: list[ClaimerShare] = Field(default_factory=list)

    @field_validator("owner")
    @classmethod
    def normalize_owner(cls, v: str) -> str:
        return normalize_identity(v)


class ResourceDraft(BaseModel):
    """Caller-supplied fields for a new resource, before validation."""
    title: str = ""
    description: str = ""
    category: str = ""
    quantity: int = 0
    unit: str = ""
    location: str = ""
    image: str = DEFAULT_RESOURCE_IMAGE


class UserClaim(BaseModel):
    """A row of one identity's claim history."""
    resource_id: int
    amount: int
    timestamp: int
    is_completed: bool = False
    is_cancelled: Optional[bool] = None


class ResourceStats(BaseModel):
    """Resource-sharing aggregates as reported by the ledger."""
    total_resources: int = 0
    active_resources: int = 0
    total_claims: int = 0
    completed_claims: int = 0

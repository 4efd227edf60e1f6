# Typed records shared by every layer. Ledger records are mapped into these
# at the LedgerClient boundary; off-chain records at the OffchainStore.

from .campaign import (
    Campaign,
    CampaignDraft,
    CampaignUpdate,
    Donation,
    PlatformStats,
    UserDonation,
    DEFAULT_CAMPAIGN_CATEGORY,
)
from .resource import (
    Claim,
    ClaimerShare,
    ClaimRef,
    ClaimStatus,
    Resource,
    ResourceDraft,
    ResourceStats,
    UserClaim,
    DEFAULT_RESOURCE_IMAGE,
)
from .offchain import CategoryRecord, ChatMessage, DonationReceipt, UserProfile
from .notification import Notification, NotificationType
from .results import (
    FailureKind,
    ReadResult,
    StoreResult,
    StoreSource,
    TxResult,
    WorkflowResult,
)

__all__ = [
    # Campaigns
    "Campaign",
    "CampaignDraft",
    "CampaignUpdate",
    "Donation",
    "PlatformStats",
    "UserDonation",
    "DEFAULT_CAMPAIGN_CATEGORY",
    # Resources
    "Claim",
    "ClaimerShare",
    "ClaimRef",
    "ClaimStatus",
    "Resource",
    "ResourceDraft",
    "ResourceStats",
    "UserClaim",
    "DEFAULT_RESOURCE_IMAGE",
    # Off-chain
    "CategoryRecord",
    "ChatMessage",
    "DonationReceipt",
    "UserProfile",
    # Notifications
    "Notification",
    "NotificationType",
    # Results
    "FailureKind",
    "ReadResult",
    "StoreResult",
    "StoreSource",
    "TxResult",
    "WorkflowResult",
]

"""
Catalog Reader - read-side composition

A view is a ledger record plus:
- derived state, recomputed on every read
- best-effort off-chain enrichment (owner display names, category labels)
- figures from the pending overlay for transactions the read does not show

Enrichment never fails a view: if the off-chain store has nothing, the view
simply goes without. A ledger failure fails the view.
"""

import time
from decimal import Decimal
from typing import Callable, Iterable, Optional

from pydantic import BaseModel

from ..config import DEFAULT_CONTENT_GATEWAY, content_url
from ..identity import normalize_identity, same_identity
from ..ledger import LedgerClient
from ..schemas import (
    DEFAULT_CAMPAIGN_CATEGORY,
    Campaign,
    CampaignUpdate,
    Claim,
    ClaimStatus,
    ReadResult,
    Resource,
    UserClaim,
    UserDonation,
    UserProfile,
)
from ..store import OffchainStore
from . import derived, reports
from .pending import PendingKind, PendingOverlay


class CampaignView(BaseModel):
    campaign: Campaign
    category: str
    owner_name: Optional[str] = None
    image_url: str = ""
    days_left: int
    progress: Decimal
    is_active: bool
    is_fully_funded: bool
    is_expired: bool
    pending_donations: Decimal = Decimal(0)


class CampaignDetail(CampaignView):
    updates: list[CampaignUpdate] = []


class ClaimView(BaseModel):
    claim: Claim
    status: ClaimStatus
    time_ago: str
    thread_key: str


class ResourceView(BaseModel):
    resource: Resource
    owner_name: Optional[str] = None
    image_url: str = ""
    total_claimed: int
    is_claimable: bool
    posted_ago: str
    pending_claimed: int = 0


class ResourceDetail(ResourceView):
    claims: list[ClaimView] = []


class Dashboard(BaseModel):
    identity: str
    profile: Optional[UserProfile] = None
    campaigns: list[CampaignView]
    donations: list[UserDonation]
    resources: list[ResourceView]
    claims: list[UserClaim]
    incoming_claims: list[ClaimView]
    unread_notifications: int = 0
    organizer_verified: bool = False
    donor_verified: bool = False


class CatalogReader:
    """Builds views for the HTTP surface, the CLI and reports."""

    def __init__(
        self,
        ledger: LedgerClient,
        store: OffchainStore,
        overlay: Optional[PendingOverlay] = None,
        journal=None,
        clock: Callable[[], float] = time.time,
        content_gateway: str = DEFAULT_CONTENT_GATEWAY,
    ):
        self._ledger = ledger
        self._store = store
        self._overlay = overlay if overlay is not None else PendingOverlay()
        self._journal = journal
        self._clock = clock
        self._content_gateway = content_gateway

    # ============================================================
    # ENRICHMENT
    # ============================================================

    async def _read_mark(self) -> int:
        """Settle abandoned transactions, then take the overlay mark for a read."""
        outcomes = await self._ledger.resolve_in_flight()
        if outcomes:
            self._overlay.resolve(outcomes)
        return self._overlay.mark()

    async def _owner_names(self, owners: Iterable[str]) -> dict[str, str]:
        owners = list({normalize_identity(o) for o in owners})
        if not owners:
            return {}
        result = await self._store.get_profiles(owners)
        if not result.found:
            return {}
        return {k: p.name for k, p in result.value.items() if p.name}

    async def _category_overrides(self, campaigns: list[Campaign]) -> dict[int, str]:
        ids = [c.id for c in campaigns if c.category == DEFAULT_CAMPAIGN_CATEGORY]
        if not ids:
            return {}
        result = await self._store.get_categories(ids)
        if not result.found:
            return {}
        return {cid: record.category for cid, record in result.value.items() if record.category}

    def _campaign_view(self, campaign: Campaign, now: float, names: dict, categories: dict, cls=CampaignView, **extra) -> CampaignView:
        state = derived.campaign_state(campaign, now)
        return cls(
            campaign=campaign,
            category=categories.get(campaign.id, campaign.category),
            owner_name=names.get(campaign.owner),
            image_url=content_url(campaign.image, self._content_gateway),
            days_left=state.days_left,
            progress=state.progress,
            is_active=state.is_active,
            is_fully_funded=state.is_fully_funded,
            is_expired=state.is_expired,
            pending_donations=self._overlay.pending_amount(PendingKind.DONATION, campaign.id),
            **extra,
        )

    def _claim_view(self, claim: Claim, now: float) -> ClaimView:
        return ClaimView(
            claim=claim,
            status=claim.status,
            time_ago=derived.time_ago(claim.timestamp, now),
            thread_key=f"{claim.resource_id}_{claim.timestamp}",
        )

    def _resource_view(self, resource: Resource, now: float, names: dict, cls=ResourceView, **extra) -> ResourceView:
        state = derived.resource_state(resource)
        return cls(
            resource=resource,
            owner_name=names.get(resource.owner),
            image_url=content_url(resource.image, self._content_gateway),
            total_claimed=state.total_claimed,
            is_claimable=state.is_claimable,
            posted_ago=derived.time_ago(resource.posted_at, now),
            pending_claimed=self._overlay.pending_amount(PendingKind.CLAIM, resource.id),
            **extra,
        )

    # ============================================================
    # CAMPAIGNS
    # ============================================================

    async def campaigns(self, active_only: bool = False) -> ReadResult:
        """
        All campaigns, or only active ones. Filtering happens here so ids
        always match the ledger's.
        """
        mark = await self._read_mark()
        read = await self._ledger.read_campaigns()
        if not read.ok:
            return read
        self._overlay.reconcile(PendingKind.CAMPAIGN, None, mark)
        self._overlay.reconcile(PendingKind.DONATION, None, mark)

        now = self._clock()
        campaigns = read.value
        if active_only:
            campaigns = [c for c in campaigns if derived.campaign_state(c, now).is_active]
        names = await self._owner_names(c.owner for c in campaigns)
        categories = await self._category_overrides(campaigns)
        return ReadResult.success([self._campaign_view(c, now, names, categories) for c in campaigns])

    async def campaign(self, campaign_id: int) -> ReadResult:
        mark = await self._read_mark()
        read = await self._ledger.read_campaign(campaign_id)
        if not read.ok or read.value is None:
            return read
        self._overlay.reconcile(PendingKind.DONATION, campaign_id, mark)

        updates_read = await self._ledger.read_campaign_updates(campaign_id)
        if not updates_read.ok:
            return updates_read

        campaign = read.value
        names = await self._owner_names([campaign.owner])
        categories = await self._category_overrides([campaign])
        return ReadResult.success(self._campaign_view(
            campaign, self._clock(), names, categories, cls=CampaignDetail, updates=updates_read.value
        ))

    # ============================================================
    # RESOURCES
    # ============================================================

    async def resources(self, active_only: bool = False, category: Optional[str] = None) -> ReadResult:
        mark = await self._read_mark()
        read = await self._ledger.read_resources()
        if not read.ok:
            return read
        self._overlay.reconcile(PendingKind.RESOURCE, None, mark)
        self._overlay.reconcile(PendingKind.CLAIM, None, mark)

        resources = read.value
        if active_only:
            resources = [r for r in resources if r.is_active]
        if category:
            resources = [r for r in resources if r.category == category]
        now = self._clock()
        names = await self._owner_names(r.owner for r in resources)
        return ReadResult.success([self._resource_view(r, now, names) for r in resources])

    async def resource(self, resource_id: int) -> ReadResult:
        mark = await self._read_mark()
        read = await self._ledger.read_resource(resource_id)
        if not read.ok or read.value is None:
            return read
        claims_read = await self._ledger.read_resource_claims(resource_id)
        if not claims_read.ok:
            return claims_read
        for kind in (PendingKind.CLAIM, PendingKind.CLAIM_COMPLETION, PendingKind.CLAIM_CANCELLATION):
            self._overlay.reconcile(kind, resource_id, mark)

        now = self._clock()
        resource = read.value
        names = await self._owner_names([resource.owner])
        return ReadResult.success(self._resource_view(
            resource, now, names, cls=ResourceDetail,
            claims=[self._claim_view(c, now) for c in claims_read.value],
        ))

    # ============================================================
    # DASHBOARD
    # ============================================================

    async def dashboard(self, identity: str) -> ReadResult:
        """Everything one identity has started or received."""
        identity = normalize_identity(identity)
        now = self._clock()

        own_campaigns = await self._ledger.read_campaigns_by_owner(identity)
        if not own_campaigns.ok:
            return own_campaigns
        donations = await self._ledger.read_user_donations(identity)
        if not donations.ok:
            return donations
        own_resources = await self._ledger.read_resources_by_owner(identity)
        if not own_resources.ok:
            return own_resources
        claims = await self._ledger.read_user_claims(identity)
        if not claims.ok:
            return claims
        organizer_verified = await self._ledger.is_organizer_verified(identity)
        if not organizer_verified.ok:
            return organizer_verified
        donor_verified = await self._ledger.is_donor_verified(identity)
        if not donor_verified.ok:
            return donor_verified

        incoming: list[ClaimView] = []
        for resource in own_resources.value:
            resource_claims = await self._ledger.read_resource_claims(resource.id)
            if not resource_claims.ok:
                return resource_claims
            incoming.extend(
                self._claim_view(c, now) for c in resource_claims.value
                if not same_identity(c.claimer, identity)
            )

        profile_result = await self._store.get_profile(identity)
        profile = profile_result.value if profile_result.found else None
        names = {identity: profile.name} if profile and profile.name else {}
        categories = await self._category_overrides(own_campaigns.value)
        unread = await self._journal.unread_count(identity) if self._journal is not None else 0

        return ReadResult.success(Dashboard(
            identity=identity,
            profile=profile,
            campaigns=[self._campaign_view(c, now, names, categories) for c in own_campaigns.value],
            donations=donations.value,
            resources=[self._resource_view(r, now, names) for r in own_resources.value],
            claims=claims.value,
            incoming_claims=incoming,
            unread_notifications=unread,
            organizer_verified=organizer_verified.value,
            donor_verified=donor_verified.value,
        ))

    # ============================================================
    # REPORTS
    # ============================================================

    async def campaign_report(self, campaign_id: int) -> ReadResult:
        read = await self._ledger.read_campaign(campaign_id)
        if not read.ok or read.value is None:
            return read
        categories = await self._category_overrides([read.value])
        return ReadResult.success(reports.campaign_report(
            read.value, self._clock(), category=categories.get(campaign_id)
        ))

    async def platform_report(self) -> ReadResult:
        read = await self._ledger.read_campaigns()
        if not read.ok:
            return read
        categories = await self._category_overrides(read.value)
        campaigns = [
            c.model_copy(update={"category": categories[c.id]}) if c.id in categories else c
            for c in read.value
        ]
        return ReadResult.success(reports.platform_report(campaigns, self._clock()))

    async def receipt(self, campaign_id: int, donor: str) -> ReadResult:
        """Receipt record from the off-chain store; value=None if none was saved."""
        stored = await self._store.get_receipt(campaign_id, donor)
        if not stored.found:
            return ReadResult.success(None)
        receipt = stored.value
        owners = [receipt.donor] + ([receipt.campaign_owner] if receipt.campaign_owner else [])
        profiles = await self._store.get_profiles(owners)
        by_id = profiles.value if profiles.found else {}
        return ReadResult.success(reports.receipt_record(
            receipt,
            donor_profile=by_id.get(receipt.donor),
            owner_profile=by_id.get(receipt.campaign_owner) if receipt.campaign_owner else None,
        ))

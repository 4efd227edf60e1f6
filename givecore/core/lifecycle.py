"""
Lifecycle Coordinator - the workflows that span ledger and off-chain store

Each workflow:
1. Validates caller input locally (FailureKind.VALIDATION, nothing sent)
2. Re-reads the ledger where a decision depends on current state
3. Submits exactly one transaction and awaits its confirmation
4. Performs best-effort off-chain follow-ups (category, profile counters,
   notifications, receipts). These never turn a confirmed transaction into
   a failure.

Claim state machine:

    Pending --complete_claim (owner)----------> Completed
    Pending --cancel_claim (claimer or owner)-> Cancelled  (quantity restored)

A claim already in a terminal state is rejected with
FailureKind.ALREADY_TERMINAL before any transaction is built.

Optimistic state goes through the PendingOverlay: registered before the
transaction, confirmed or dropped afterwards, reconciled by the read side.
If the caller is cancelled mid-wait the entry is left abandoned with its
transaction reference, and the read side resolves it.
"""

import asyncio
import time
from decimal import Decimal, InvalidOperation
from typing import Any, Awaitable, Callable, Optional

from ..identity import same_identity
from ..ledger import LedgerClient, from_native
from ..observability import get_logger
from ..schemas import (
    DEFAULT_CAMPAIGN_CATEGORY,
    CampaignDraft,
    ChatMessage,
    ClaimRef,
    DonationReceipt,
    FailureKind,
    NotificationType,
    ResourceDraft,
    TxResult,
    UserProfile,
    WorkflowResult,
)
from ..store import OffchainStore
from . import derived
from .notifications import NotificationJournal
from .pending import PendingEntry, PendingKind, PendingOverlay
from .reports import receipt_id_for


logger = get_logger(__name__)

Clock = Callable[[], float]

_PROFILE_EDITABLE = ("name", "email", "phone", "location", "bio", "profile_image")


def _parse_positive_decimal(value: Any) -> Optional[Decimal]:
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    if not amount.is_finite() or amount <= 0:
        return None
    return amount


def _parse_positive_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    amount = _parse_positive_decimal(value)
    if amount is None or amount != amount.to_integral_value():
        return None
    return int(amount)


class LifecycleCoordinator:
    """
    Runs user workflows against an injected LedgerClient, OffchainStore,
    NotificationJournal and PendingOverlay. The acting identity is the
    ledger client's connected account.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        store: OffchainStore,
        journal: NotificationJournal,
        overlay: Optional[PendingOverlay] = None,
        clock: Clock = time.time,
    ):
        self._ledger = ledger
        self._store = store
        self._journal = journal
        self._overlay = overlay if overlay is not None else PendingOverlay()
        self._clock = clock

    @property
    def overlay(self) -> PendingOverlay:
        return self._overlay

    # ============================================================
    # HELPERS
    # ============================================================

    def _not_ready(self) -> Optional[WorkflowResult]:
        if not self._ledger.is_ready:
            return WorkflowResult.failure(FailureKind.READINESS, self._ledger.not_ready_reason)
        if not self._ledger.account:
            return WorkflowResult.failure(FailureKind.READINESS, "No connected account")
        return None

    def _rejected(self, workflow: str, result: WorkflowResult) -> WorkflowResult:
        logger.info(
            "Workflow rejected",
            workflow=workflow,
            kind=result.kind.value if result.kind else None,
            reason=result.reason,
        )
        return result

    def _settle(self, entry: PendingEntry, tx: TxResult) -> None:
        if tx.ok:
            self._overlay.confirm(entry.key, tx.transaction_ref, tx.entity_id)
        else:
            self._overlay.drop(entry.key)

    def _abandoned_ref(self, before: set, function: str) -> Optional[str]:
        for ref, name in self._ledger.in_flight.items():
            if name == function and ref not in before and not self._overlay.tracks(ref):
                return ref
        return None

    async def _submit(self, entry: PendingEntry, function: str, call: Awaitable[TxResult]) -> TxResult:
        """Await one ledger write and settle its overlay entry, even on cancellation."""
        before = set(self._ledger.in_flight)
        try:
            tx = await call
        except asyncio.CancelledError:
            self._overlay.abandon(entry.key, self._abandoned_ref(before, function))
            raise
        self._settle(entry, tx)
        return tx

    async def _notify(self, owner: str, type: NotificationType, title: str, message: str, link: Optional[str] = None) -> None:
        await self._journal.append(owner, type, title, message, link)

    # ============================================================
    # CAMPAIGNS
    # ============================================================

    async def create_campaign(self, draft: CampaignDraft) -> WorkflowResult:
        title = draft.title.strip()
        description = draft.description.strip()
        category = (draft.category or "").strip() or DEFAULT_CAMPAIGN_CATEGORY

        if not title:
            return self._rejected("create_campaign", WorkflowResult.invalid("Title is required"))
        if not description:
            return self._rejected("create_campaign", WorkflowResult.invalid("Description is required"))
        if _parse_positive_decimal(draft.target) is None:
            return self._rejected("create_campaign", WorkflowResult.invalid("Target must be greater than 0"))
        if draft.deadline <= self._clock():
            return self._rejected("create_campaign", WorkflowResult.invalid("Deadline must be in the future"))

        not_ready = self._not_ready()
        if not_ready:
            return self._rejected("create_campaign", not_ready)

        owner = self._ledger.account
        entry = self._overlay.register(PendingKind.CAMPAIGN, None, owner)
        tx = await self._submit(entry, "createCampaign", self._ledger.create_campaign(
            draft.model_copy(update={"title": title, "description": description, "category": category})
        ))
        if not tx.ok:
            return self._rejected("create_campaign", WorkflowResult.from_tx(tx))

        campaign_id = tx.entity_id
        if campaign_id is not None:
            await self._store.save_category(campaign_id, category)
        await self._store.increment_profile_counter(owner, "total_campaigns")
        await self._notify(
            owner,
            NotificationType.SUCCESS,
            "Campaign Created!",
            f'Your campaign "{title}" is now live.',
            f"/campaigns/{campaign_id}" if campaign_id is not None else None,
        )

        logger.info("Campaign created", campaign_id=campaign_id, owner=owner, transaction_ref=tx.transaction_ref)
        return WorkflowResult.from_tx(tx, campaign_id=campaign_id, category=category)

    async def donate(self, campaign_id: int, amount: Any) -> WorkflowResult:
        value = _parse_positive_decimal(amount)
        if value is None:
            return self._rejected("donate", WorkflowResult.invalid("Please enter a valid donation amount"))

        not_ready = self._not_ready()
        if not_ready:
            return self._rejected("donate", not_ready)

        read = await self._ledger.read_campaign(campaign_id)
        if not read.ok:
            return self._rejected("donate", WorkflowResult.failure(read.kind, read.reason))
        campaign = read.value
        if campaign is None:
            return self._rejected("donate", WorkflowResult.invalid(f"Campaign {campaign_id} not found"))

        now = self._clock()
        if derived.is_expired(campaign.deadline, now):
            return self._rejected("donate", WorkflowResult.invalid(
                "This campaign has ended. Donations are no longer accepted."
            ))
        if derived.is_fully_funded(campaign.amount_collected, campaign.target):
            return self._rejected("donate", WorkflowResult.invalid(
                "This campaign has reached its funding goal. Donations are no longer accepted."
            ))

        donor = self._ledger.account
        entry = self._overlay.register(PendingKind.DONATION, campaign_id, donor, amount=value)
        tx = await self._submit(entry, "donateToCampaign", self._ledger.donate(campaign_id, value))
        if not tx.ok:
            return self._rejected("donate", WorkflowResult.from_tx(tx))

        new_total = None
        for event in tx.events:
            if event.name == "DonationReceived" and "newTotal" in event.args:
                new_total = from_native(event.args["newTotal"])

        await self._notify(
            donor,
            NotificationType.SUCCESS,
            "Donation Successful!",
            f"You donated {value} ETH to {campaign.title}",
            f"/campaigns/{campaign_id}",
        )

        receipt = DonationReceipt(
            receipt_id=receipt_id_for(tx.transaction_ref),
            campaign_id=campaign_id,
            campaign_title=campaign.title,
            donor=donor,
            amount=value,
            transaction_ref=tx.transaction_ref,
            category=campaign.category,
            campaign_owner=campaign.owner,
        )
        await self._store.save_receipt(receipt)

        logger.info(
            "Donation confirmed",
            campaign_id=campaign_id,
            donor=donor,
            amount=str(value),
            transaction_ref=tx.transaction_ref,
        )
        return WorkflowResult.from_tx(tx, receipt=receipt, new_total=new_total)

    async def post_campaign_update(self, campaign_id: int, title: str, content: str) -> WorkflowResult:
        title, content = (title or "").strip(), (content or "").strip()
        if not title or not content:
            return self._rejected("post_campaign_update", WorkflowResult.invalid("Update title and content are required"))

        not_ready = self._not_ready()
        if not_ready:
            return self._rejected("post_campaign_update", not_ready)

        read = await self._ledger.read_campaign(campaign_id)
        if not read.ok:
            return self._rejected("post_campaign_update", WorkflowResult.failure(read.kind, read.reason))
        if read.value is None:
            return self._rejected("post_campaign_update", WorkflowResult.invalid(f"Campaign {campaign_id} not found"))
        if not same_identity(read.value.owner, self._ledger.account):
            return self._rejected("post_campaign_update", WorkflowResult.invalid(
                "Only the campaign owner can post updates"
            ))

        tx = await self._ledger.post_campaign_update(campaign_id, title, content)
        return WorkflowResult.from_tx(tx, campaign_id=campaign_id)

    # ============================================================
    # RESOURCES AND CLAIMS
    # ============================================================

    async def post_resource(self, draft: ResourceDraft) -> WorkflowResult:
        fields = {
            "title": draft.title.strip(),
            "description": draft.description.strip(),
            "category": draft.category.strip(),
            "unit": draft.unit.strip(),
            "location": draft.location.strip(),
        }
        for name in ("title", "description", "category", "unit", "location"):
            if not fields[name]:
                return self._rejected("post_resource", WorkflowResult.invalid(f"{name.capitalize()} is required"))
        quantity = _parse_positive_int(draft.quantity)
        if quantity is None:
            return self._rejected("post_resource", WorkflowResult.invalid("Quantity must be a whole number greater than 0"))

        not_ready = self._not_ready()
        if not_ready:
            return self._rejected("post_resource", not_ready)

        owner = self._ledger.account
        entry = self._overlay.register(PendingKind.RESOURCE, None, owner, amount=quantity)
        tx = await self._submit(
            entry, "postResource", self._ledger.post_resource(draft.model_copy(update={**fields, "quantity": quantity}))
        )
        if not tx.ok:
            return self._rejected("post_resource", WorkflowResult.from_tx(tx))

        resource_id = tx.entity_id
        await self._notify(
            owner,
            NotificationType.SUCCESS,
            "Resource Posted!",
            f'"{fields["title"]}" is now available to the community.',
            f"/resources/{resource_id}" if resource_id is not None else None,
        )
        logger.info("Resource posted", resource_id=resource_id, owner=owner, transaction_ref=tx.transaction_ref)
        return WorkflowResult.from_tx(tx, resource_id=resource_id)

    async def claim_resource(self, resource_id: int, amount: Any) -> WorkflowResult:
        quantity = _parse_positive_int(amount)
        if quantity is None:
            return self._rejected("claim_resource", WorkflowResult.invalid("Please enter a valid amount"))

        not_ready = self._not_ready()
        if not_ready:
            return self._rejected("claim_resource", not_ready)

        read = await self._ledger.read_resource(resource_id)
        if not read.ok:
            return self._rejected("claim_resource", WorkflowResult.failure(read.kind, read.reason))
        resource = read.value
        if resource is None:
            return self._rejected("claim_resource", WorkflowResult.invalid(f"Resource {resource_id} not found"))
        if not resource.is_active:
            return self._rejected("claim_resource", WorkflowResult.invalid("This resource is no longer active"))

        claimer = self._ledger.account
        if same_identity(resource.owner, claimer):
            return self._rejected("claim_resource", WorkflowResult.invalid("You cannot claim your own resource"))
        if quantity > resource.quantity_available:
            return self._rejected("claim_resource", WorkflowResult.invalid(
                f"Amount exceeds available quantity ({resource.quantity_available} {resource.unit})"
            ))

        entry = self._overlay.register(PendingKind.CLAIM, resource_id, claimer, amount=quantity)
        tx = await self._submit(entry, "claimResource", self._ledger.claim_resource(resource_id, quantity))
        if not tx.ok:
            return self._rejected("claim_resource", WorkflowResult.from_tx(tx))

        index = tx.entity_id
        timestamp = int(self._clock())
        claim = None
        if index is not None:
            claim_read = await self._ledger.read_claim(resource_id, index)
            if claim_read.found:
                timestamp = claim_read.value.timestamp
            claim = ClaimRef(resource_id=resource_id, index=index, claimer=claimer, timestamp=timestamp)
        thread = f"{resource_id}_{timestamp}"

        await self._store.increment_profile_counter(claimer, "total_claims")
        chat_link = f"/chat/{resource_id}?claimId={timestamp}"
        await self._notify(
            claimer,
            NotificationType.SUCCESS,
            "Resource Claimed!",
            f"You claimed {quantity} {resource.unit} of {resource.title}. "
            f"Chat with the donor to arrange pickup or delivery.",
            chat_link,
        )
        await self._notify(
            resource.owner,
            NotificationType.INFO,
            "New Claim",
            f"{quantity} {resource.unit} of {resource.title} was claimed.",
            chat_link,
        )

        logger.info(
            "Resource claimed",
            resource_id=resource_id,
            claim_index=index,
            claimer=claimer,
            amount=quantity,
            transaction_ref=tx.transaction_ref,
        )
        return WorkflowResult.from_tx(tx, claim=claim, thread_key=thread)

    async def _load_claim_context(self, workflow: str, resource_id: int, index: int):
        """Fresh resource and claim, or a failure result."""
        known = self._overlay.confirmed_terminal(resource_id, index)
        if known is not None:
            return None, None, self._rejected(workflow, WorkflowResult.failure(
                FailureKind.ALREADY_TERMINAL, f"Claim is already {known.value}"
            ))

        resource_read = await self._ledger.read_resource(resource_id)
        if not resource_read.ok:
            return None, None, self._rejected(workflow, WorkflowResult.failure(resource_read.kind, resource_read.reason))
        if resource_read.value is None:
            return None, None, self._rejected(workflow, WorkflowResult.invalid(f"Resource {resource_id} not found"))

        claim_read = await self._ledger.read_claim(resource_id, index)
        if not claim_read.ok:
            return None, None, self._rejected(workflow, WorkflowResult.failure(claim_read.kind, claim_read.reason))
        claim = claim_read.value
        if claim is None:
            return None, None, self._rejected(workflow, WorkflowResult.invalid(f"Claim {index} on resource {resource_id} not found"))
        if claim.is_terminal:
            return None, None, self._rejected(workflow, WorkflowResult.failure(
                FailureKind.ALREADY_TERMINAL, f"Claim is already {claim.status.value}"
            ))
        return resource_read.value, claim, None

    async def complete_claim(self, resource_id: int, index: int) -> WorkflowResult:
        not_ready = self._not_ready()
        if not_ready:
            return self._rejected("complete_claim", not_ready)

        resource, claim, failure = await self._load_claim_context("complete_claim", resource_id, index)
        if failure:
            return failure

        actor = self._ledger.account
        if not same_identity(actor, resource.owner):
            return self._rejected("complete_claim", WorkflowResult.invalid(
                "Only the resource owner can complete a claim"
            ))

        entry = self._overlay.register(PendingKind.CLAIM_COMPLETION, resource_id, actor, claim_index=index)
        tx = await self._submit(entry, "completeClaim", self._ledger.complete_claim(resource_id, index))
        if not tx.ok:
            return self._rejected("complete_claim", WorkflowResult.from_tx(tx))

        await self._notify(
            claim.claimer,
            NotificationType.SUCCESS,
            "Claim Completed",
            f"Your claim of {claim.amount} {resource.unit} of {resource.title} was marked completed.",
            f"/resources/{resource_id}",
        )
        logger.info("Claim completed", resource_id=resource_id, claim_index=index, transaction_ref=tx.transaction_ref)
        return WorkflowResult.from_tx(tx, status="completed")

    async def cancel_claim(self, resource_id: int, index: int) -> WorkflowResult:
        not_ready = self._not_ready()
        if not_ready:
            return self._rejected("cancel_claim", not_ready)

        resource, claim, failure = await self._load_claim_context("cancel_claim", resource_id, index)
        if failure:
            return failure

        actor = self._ledger.account
        if not (same_identity(actor, claim.claimer) or same_identity(actor, resource.owner)):
            return self._rejected("cancel_claim", WorkflowResult.invalid(
                "Only the claimer or the resource owner can cancel a claim"
            ))

        entry = self._overlay.register(
            PendingKind.CLAIM_CANCELLATION, resource_id, actor, amount=claim.amount, claim_index=index
        )
        tx = await self._submit(entry, "cancelClaim", self._ledger.cancel_claim(resource_id, index))
        if not tx.ok:
            return self._rejected("cancel_claim", WorkflowResult.from_tx(tx))

        other = resource.owner if same_identity(actor, claim.claimer) else claim.claimer
        await self._notify(
            other,
            NotificationType.WARNING,
            "Claim Cancelled",
            f"The claim of {claim.amount} {resource.unit} of {resource.title} was cancelled.",
            f"/resources/{resource_id}",
        )
        logger.info("Claim cancelled", resource_id=resource_id, claim_index=index, transaction_ref=tx.transaction_ref)
        return WorkflowResult.from_tx(tx, status="cancelled", restored=claim.amount)

    async def _set_resource_active(self, workflow: str, resource_id: int, active: bool) -> WorkflowResult:
        not_ready = self._not_ready()
        if not_ready:
            return self._rejected(workflow, not_ready)

        read = await self._ledger.read_resource(resource_id)
        if not read.ok:
            return self._rejected(workflow, WorkflowResult.failure(read.kind, read.reason))
        resource = read.value
        if resource is None:
            return self._rejected(workflow, WorkflowResult.invalid(f"Resource {resource_id} not found"))
        if not same_identity(resource.owner, self._ledger.account):
            return self._rejected(workflow, WorkflowResult.invalid("Only the resource owner can do this"))
        if resource.is_active == active:
            state = "active" if active else "inactive"
            return self._rejected(workflow, WorkflowResult.invalid(f"Resource is already {state}"))

        if active:
            tx = await self._ledger.reactivate_resource(resource_id)
        else:
            tx = await self._ledger.deactivate_resource(resource_id)
        return WorkflowResult.from_tx(tx, is_active=active)

    async def deactivate_resource(self, resource_id: int) -> WorkflowResult:
        return await self._set_resource_active("deactivate_resource", resource_id, False)

    async def reactivate_resource(self, resource_id: int) -> WorkflowResult:
        return await self._set_resource_active("reactivate_resource", resource_id, True)

    # ============================================================
    # OFF-CHAIN ONLY
    # ============================================================

    async def save_profile(self, **fields: Any) -> WorkflowResult:
        """
        Upsert the connected identity's profile. Only the editable fields
        are taken from the caller; counters are kept from the stored copy.
        """
        identity = self._ledger.account
        if not identity:
            return self._rejected("save_profile", WorkflowResult.failure(FailureKind.READINESS, "No connected account"))

        current = await self._store.get_profile(identity)
        profile = current.value if current.found else UserProfile(wallet_address=identity)
        updates = {k: (v or "").strip() for k, v in fields.items() if k in _PROFILE_EDITABLE and v is not None}
        result = await self._store.save_profile(profile.model_copy(update=updates))
        if not result.ok:
            return WorkflowResult.failure(FailureKind.VALIDATION, result.reason)
        return WorkflowResult.success(profile=result.value, remote_synced=result.remote_synced)

    async def send_chat_message(self, resource_id: int, claim_id: str, message: str) -> WorkflowResult:
        sender = self._ledger.account
        if not sender:
            return self._rejected("send_chat_message", WorkflowResult.failure(FailureKind.READINESS, "No connected account"))
        text = (message or "").strip()
        if not text:
            return self._rejected("send_chat_message", WorkflowResult.invalid("Message cannot be empty"))

        chat = ChatMessage(resource_id=resource_id, claim_id=str(claim_id), sender=sender, message=text)
        result = await self._store.post_chat_message(chat)
        if not result.ok:
            return WorkflowResult.failure(FailureKind.VALIDATION, result.reason)
        return WorkflowResult.success(message=chat, remote_synced=result.remote_synced)

"""
Ledger Client - typed access to the two ledger programs

The LedgerClient is the only component that talks to a LedgerTransport.
Everything above it sees normalized records and tagged results:

- Reads return ReadResult: a record, an explicit empty list, or value=None
  for not-found. Never a partial record.
- Writes return TxResult after confirmation. Exactly one transaction per
  call, never retried.

Readiness:
- ``initialize()`` checks the node's network against the expected chain id.
  Until it succeeds every call fails with FailureKind.READINESS.
- Writes additionally need a connected account (``connect()``).

Cancellation:
- If the task awaiting confirmation is cancelled, the transaction keeps
  going on the ledger. Its reference stays in ``in_flight`` until
  ``resolve_in_flight()`` finds it mined or reverted.
"""

import asyncio
import time
from contextlib import contextmanager
from decimal import Decimal
from typing import Any, Awaitable, Callable, Mapping, Optional, Sequence

from pydantic import ValidationError

from ..identity import IdentityError, is_zero_identity, normalize_identity
from ..observability import get_logger, get_metrics
from ..schemas import (
    DEFAULT_CAMPAIGN_CATEGORY,
    DEFAULT_RESOURCE_IMAGE,
    Campaign,
    CampaignDraft,
    CampaignUpdate,
    Claim,
    ClaimerShare,
    Donation,
    FailureKind,
    PlatformStats,
    ReadResult,
    Resource,
    ResourceDraft,
    ResourceStats,
    TxResult,
    UserClaim,
    UserDonation,
)
from . import units
from .transport import (
    ContractName,
    LedgerError,
    LedgerTransport,
    TransactionRejected,
)


logger = get_logger(__name__)

SEPOLIA_CHAIN_ID = 11155111

CF = ContractName.CROWDFUNDING
RS = ContractName.RESOURCE_SHARING


class MalformedRecordError(LedgerError):
    """A ledger record could not be mapped into its typed form."""
    pass


# ============================================================
# RECORD MAPPING
# ============================================================

_MAPPING_ERRORS = (KeyError, IndexError, TypeError, ValueError, ValidationError, IdentityError)


@contextmanager
def _mapping(what: str):
    try:
        yield
    except _MAPPING_ERRORS as e:
        raise MalformedRecordError(f"{what}: {e!r}") from e


def _donations(campaign_id: int, donors: Sequence[str], amounts: Sequence[int]) -> list[Donation]:
    return [
        Donation(campaign_id=campaign_id, donor=donor, amount=units.from_native(amount))
        for donor, amount in zip(donors, amounts)
    ]


def campaign_from_raw(campaign_id: int, raw: Mapping[str, Any], donations: Optional[list[Donation]] = None) -> Campaign:
    with _mapping(f"Campaign {campaign_id}"):
        if donations is None and "donators" in raw:
            donations = _donations(campaign_id, raw["donators"], raw["donations"])
        return Campaign(
            id=campaign_id,
            owner=raw["owner"],
            title=raw["title"],
            description=raw.get("description", ""),
            target=units.from_native(raw["target"]),
            deadline=int(raw["deadline"]),
            amount_collected=units.from_native(raw["amountCollected"]),
            image=raw.get("image", ""),
            category=raw.get("category") or DEFAULT_CAMPAIGN_CATEGORY,
            is_verified=bool(raw.get("isVerified", False)),
            donations=donations or [],
        )


def resource_from_raw(resource_id: int, raw: Mapping[str, Any], claimers: Optional[list[ClaimerShare]] = None) -> Resource:
    with _mapping(f"Resource {resource_id}"):
        if claimers is None and "claimers" in raw:
            claimers = [
                ClaimerShare(claimer=c, amount=int(a))
                for c, a in zip(raw["claimers"], raw["claimedAmounts"])
            ]
        return Resource(
            id=resource_id,
            owner=raw["owner"],
            title=raw["title"],
            description=raw.get("description", ""),
            category=raw.get("category", ""),
            quantity_original=int(raw["quantityOriginal"]),
            quantity_available=int(raw["quantityAvailable"]),
            unit=raw.get("unit", ""),
            location=raw.get("location", ""),
            image=raw.get("image") or DEFAULT_RESOURCE_IMAGE,
            posted_at=int(raw.get("postedTimestamp", 0)),
            is_active=bool(raw.get("isActive", False)),
            is_verified=bool(raw.get("isVerified", False)),
            claimers=claimers or [],
        )


def claim_from_raw(resource_id: int, index: int, raw: Mapping[str, Any]) -> Claim:
    with _mapping(f"Claim {resource_id}/{index}"):
        return Claim(
            resource_id=resource_id,
            index=index,
            claimer=raw["claimer"],
            amount=int(raw["amount"]),
            timestamp=int(raw["timestamp"]),
            is_completed=bool(raw["isCompleted"]),
            is_cancelled=bool(raw["isCancelled"]),
        )


# ============================================================
# CLIENT
# ============================================================

class LedgerClient:
    """
    Typed façade over a LedgerTransport.

    Usage:
        client = LedgerClient(InMemoryLedger())
        await client.initialize()
        client.connect("0xAbc...")
        result = await client.donate(0, Decimal("1.5"))
    """

    def __init__(
        self,
        transport: LedgerTransport,
        expected_chain_id: int = SEPOLIA_CHAIN_ID,
    ):
        self._transport = transport
        self._expected_chain_id = expected_chain_id
        self._chain_id: Optional[int] = None
        self._ready = False
        self._not_ready_reason = "Ledger not initialized"
        self._account: Optional[str] = None
        self._in_flight: dict[str, str] = {}

    # --------------------------------------------------------
    # Readiness and identity
    # --------------------------------------------------------

    @property
    def transport(self) -> LedgerTransport:
        return self._transport

    @property
    def is_ready(self) -> bool:
        return self._ready

    @property
    def not_ready_reason(self) -> Optional[str]:
        return None if self._ready else self._not_ready_reason

    @property
    def chain_id(self) -> Optional[int]:
        return self._chain_id

    @property
    def account(self) -> Optional[str]:
        return self._account

    @property
    def in_flight(self) -> dict[str, str]:
        """Submitted transactions whose confirmation nobody is awaiting: ref -> function."""
        return dict(self._in_flight)

    async def resolve_in_flight(self) -> dict[str, bool]:
        """
        Look up every abandoned transaction once. Never raises.

        Returns:
            ref -> True (mined) or False (reverted) for each one that left
            ``in_flight``. Still-pending and unreachable ones are omitted.
        """
        if not self._ready or not self._in_flight:
            return {}

        resolved: dict[str, bool] = {}
        for ref, function in list(self._in_flight.items()):
            try:
                receipt = await self._transport.find_receipt(ref)
            except TransactionRejected as e:
                resolved[ref] = False
                logger.info("Abandoned transaction reverted", function=function, transaction_ref=ref, reason=e.reason)
            except LedgerError as e:
                logger.warning("Abandoned transaction lookup failed", function=function, transaction_ref=ref, error=str(e))
                continue
            else:
                if receipt is None:
                    continue
                resolved[ref] = True
                logger.info(
                    "Abandoned transaction confirmed",
                    function=function,
                    transaction_ref=ref,
                    block_number=receipt.block_number,
                )
            self._in_flight.pop(ref, None)
        return resolved

    async def initialize(self) -> bool:
        """
        Check connectivity and network. Never raises.

        Returns:
            True if the client is ready for reads.
        """
        try:
            chain_id = await self._transport.chain_id()
        except LedgerError as e:
            self._ready = False
            self._not_ready_reason = f"Ledger unreachable: {e}"
            logger.warning("Ledger initialization failed", error=str(e))
            return False

        self._chain_id = chain_id
        if chain_id != self._expected_chain_id:
            self._ready = False
            self._not_ready_reason = (
                f"Wrong network: connected to chain {chain_id}, "
                f"expected {self._expected_chain_id}"
            )
            logger.warning(
                "Ledger on wrong network",
                chain_id=chain_id,
                expected_chain_id=self._expected_chain_id,
            )
            return False

        self._ready = True
        logger.info("Ledger ready", chain_id=chain_id)
        return True

    def connect(self, account: str) -> str:
        """Set the acting identity. Returns it normalized."""
        self._account = normalize_identity(account)
        logger.info("Account connected", account=self._account)
        return self._account

    def disconnect(self) -> None:
        self._account = None

    async def close(self) -> None:
        await self._transport.close()

    # --------------------------------------------------------
    # Read plumbing
    # --------------------------------------------------------

    async def _read(self, operation: str, loader: Callable[..., Awaitable[Any]], *args: Any) -> ReadResult:
        if not self._ready:
            return ReadResult.failure(FailureKind.READINESS, self._not_ready_reason)
        try:
            return ReadResult.success(await loader(*args))
        except (LedgerError, IdentityError) as e:
            logger.warning("Ledger read failed", operation=operation, error=str(e))
            return ReadResult.failure(FailureKind.READINESS, f"{operation} failed: {e}")

    async def _call(self, contract: ContractName, function: str, *args: Any) -> Any:
        return await self._transport.call(contract, function, *args)

    # --------------------------------------------------------
    # Crowdfunding reads
    # --------------------------------------------------------

    async def _load_campaigns(self) -> list[Campaign]:
        raw = await self._call(CF, "getCampaigns")
        return [campaign_from_raw(i, c) for i, c in enumerate(raw)]

    async def _load_campaign(self, campaign_id: int) -> Optional[Campaign]:
        if campaign_id < 0:
            return None
        raw = await self._call(CF, "campaigns", campaign_id)
        if is_zero_identity(raw.get("owner")):
            return None
        donors, amounts = await self._call(CF, "getDonators", campaign_id)
        return campaign_from_raw(campaign_id, raw, _donations(campaign_id, donors, amounts))

    async def _load_donations(self, campaign_id: int) -> list[Donation]:
        if campaign_id < 0:
            return []
        donors, amounts = await self._call(CF, "getDonators", campaign_id)
        return _donations(campaign_id, donors, amounts)

    async def _load_updates(self, campaign_id: int) -> list[CampaignUpdate]:
        raw = await self._call(CF, "getCampaignUpdates", campaign_id)
        with _mapping(f"Updates of campaign {campaign_id}"):
            return [
                CampaignUpdate(title=u["title"], content=u["content"], timestamp=int(u["timestamp"]))
                for u in raw
            ]

    async def _load_campaigns_by_owner(self, owner: str) -> list[Campaign]:
        ids = await self._call(CF, "getCampaignsByOwner", normalize_identity(owner))
        if not ids:
            return []
        raw = await self._call(CF, "getCampaigns")
        with _mapping("Campaigns by owner"):
            return [campaign_from_raw(int(i), raw[int(i)]) for i in ids if int(i) < len(raw)]

    async def _load_user_donations(self, identity: str) -> list[UserDonation]:
        raw = await self._call(CF, "getUserDonations", normalize_identity(identity))
        with _mapping("User donations"):
            ids, amounts = raw
            return [
                UserDonation(campaign_id=int(i), amount=units.from_native(a))
                for i, a in zip(ids, amounts)
            ]

    async def _load_platform_stats(self) -> PlatformStats:
        raw = await self._call(CF, "getPlatformStats")
        with _mapping("Platform stats"):
            return PlatformStats(
                total_campaigns=int(raw["totalCampaigns"]),
                total_donations_count=int(raw["totalDonationsCount"]),
                total_amount_raised=units.from_native(raw["totalAmountRaised"]),
                active_campaigns_count=int(raw["activeCampaignsCount"]),
            )

    async def read_campaigns(self) -> ReadResult:
        return await self._read("read_campaigns", self._load_campaigns)

    async def read_campaign(self, campaign_id: int) -> ReadResult:
        """One campaign with its donations; value=None if it does not exist."""
        return await self._read("read_campaign", self._load_campaign, campaign_id)

    async def read_donations(self, campaign_id: int) -> ReadResult:
        return await self._read("read_donations", self._load_donations, campaign_id)

    async def read_campaign_updates(self, campaign_id: int) -> ReadResult:
        return await self._read("read_campaign_updates", self._load_updates, campaign_id)

    async def read_campaigns_by_owner(self, owner: str) -> ReadResult:
        return await self._read("read_campaigns_by_owner", self._load_campaigns_by_owner, owner)

    async def read_user_donations(self, identity: str) -> ReadResult:
        return await self._read("read_user_donations", self._load_user_donations, identity)

    async def read_platform_stats(self) -> ReadResult:
        return await self._read("read_platform_stats", self._load_platform_stats)

    async def is_organizer_verified(self, identity: str) -> ReadResult:
        async def load():
            return bool(await self._call(CF, "isOrganizerVerified", normalize_identity(identity)))
        return await self._read("is_organizer_verified", load)

    # --------------------------------------------------------
    # Resource reads
    # --------------------------------------------------------

    async def _load_resources(self) -> list[Resource]:
        raw = await self._call(RS, "getResources")
        return [resource_from_raw(i, r) for i, r in enumerate(raw)]

    async def _load_claims(self, resource_id: int) -> list[Claim]:
        if resource_id < 0:
            return []
        raw = await self._call(RS, "getResourceClaims", resource_id)
        return [claim_from_raw(resource_id, i, c) for i, c in enumerate(raw)]

    async def _load_resource(self, resource_id: int) -> Optional[Resource]:
        if resource_id < 0:
            return None
        raw = await self._call(RS, "resources", resource_id)
        if is_zero_identity(raw.get("owner")):
            return None
        claims = await self._load_claims(resource_id)
        shares = [ClaimerShare(claimer=c.claimer, amount=c.amount) for c in claims]
        return resource_from_raw(resource_id, raw, shares)

    async def _load_claim(self, resource_id: int, index: int) -> Optional[Claim]:
        claims = await self._load_claims(resource_id)
        if 0 <= index < len(claims):
            return claims[index]
        return None

    async def _load_resources_by_owner(self, owner: str) -> list[Resource]:
        ids = await self._call(RS, "getResourcesByOwner", normalize_identity(owner))
        if not ids:
            return []
        resources = await self._load_resources()
        with _mapping("Resources by owner"):
            return [resources[int(i)] for i in ids if int(i) < len(resources)]

    async def _load_resources_by_category(self, category: str) -> list[Resource]:
        # Filtered here: the contract's by-category view drops the ids
        return [r for r in await self._load_resources() if r.category == category]

    async def _load_user_claims(self, identity: str) -> list[UserClaim]:
        raw = await self._call(RS, "getUserClaims", normalize_identity(identity))
        with _mapping("User claims"):
            ids, amounts, timestamps, completed = raw
            return [
                UserClaim(resource_id=int(i), amount=int(a), timestamp=int(t), is_completed=bool(c))
                for i, a, t, c in zip(ids, amounts, timestamps, completed)
            ]

    async def _load_resource_stats(self) -> ResourceStats:
        raw = await self._call(RS, "getResourceStats")
        with _mapping("Resource stats"):
            return ResourceStats(
                total_resources=int(raw["totalResources"]),
                active_resources=int(raw["activeResources"]),
                total_claims=int(raw["totalClaims"]),
                completed_claims=int(raw["completedClaims"]),
            )

    async def read_resources(self) -> ReadResult:
        return await self._read("read_resources", self._load_resources)

    async def read_resource(self, resource_id: int) -> ReadResult:
        """One resource with its claimer shares; value=None if it does not exist."""
        return await self._read("read_resource", self._load_resource, resource_id)

    async def read_resource_claims(self, resource_id: int) -> ReadResult:
        return await self._read("read_resource_claims", self._load_claims, resource_id)

    async def read_claim(self, resource_id: int, index: int) -> ReadResult:
        return await self._read("read_claim", self._load_claim, resource_id, index)

    async def read_resources_by_owner(self, owner: str) -> ReadResult:
        return await self._read("read_resources_by_owner", self._load_resources_by_owner, owner)

    async def read_resources_by_category(self, category: str) -> ReadResult:
        return await self._read("read_resources_by_category", self._load_resources_by_category, category)

    async def read_user_claims(self, identity: str) -> ReadResult:
        return await self._read("read_user_claims", self._load_user_claims, identity)

    async def read_resource_stats(self) -> ReadResult:
        return await self._read("read_resource_stats", self._load_resource_stats)

    async def is_donor_verified(self, identity: str) -> ReadResult:
        async def load():
            return bool(await self._call(RS, "isDonorVerified", normalize_identity(identity)))
        return await self._read("is_donor_verified", load)

    # --------------------------------------------------------
    # Write plumbing
    # --------------------------------------------------------

    def _write_readiness(self) -> Optional[str]:
        if not self._ready:
            return self._not_ready_reason
        if not self._account:
            return "No connected account"
        return None

    async def _transact(
        self,
        contract: ContractName,
        function: str,
        args: Sequence[Any],
        value: int = 0,
        id_event: Optional[tuple[str, str]] = None,
        entity_id: Optional[int] = None,
        fallback_id: Optional[Callable[[], Awaitable[int]]] = None,
    ) -> TxResult:
        not_ready = self._write_readiness()
        if not_ready:
            return TxResult.failure(FailureKind.READINESS, not_ready)

        metrics = get_metrics()
        started = time.perf_counter()

        try:
            ref = await self._transport.transact(
                contract, function, args, sender=self._account, value=value
            )
        except TransactionRejected as e:
            logger.info("Transaction refused", function=function, reason=e.reason)
            metrics.record_transaction((time.perf_counter() - started) * 1000, success=False)
            return TxResult.failure(FailureKind.TRANSACTION, e.reason)
        except LedgerError as e:
            logger.warning("Transaction not submitted", function=function, error=str(e))
            metrics.record_transaction((time.perf_counter() - started) * 1000, success=False)
            return TxResult.failure(FailureKind.TRANSACTION, str(e))

        metrics.record_submission()
        self._in_flight[ref] = function
        logger.info("Transaction submitted", function=function, transaction_ref=ref)

        try:
            receipt = await self._transport.wait_for_confirmation(ref)
        except asyncio.CancelledError:
            logger.warning(
                "Stopped waiting for confirmation; transaction continues on the ledger",
                function=function,
                transaction_ref=ref,
            )
            raise
        except TransactionRejected as e:
            self._in_flight.pop(ref, None)
            metrics.record_transaction((time.perf_counter() - started) * 1000, success=False)
            logger.info("Transaction reverted", function=function, transaction_ref=ref, reason=e.reason)
            return TxResult.failure(FailureKind.TRANSACTION, e.reason)
        except LedgerError as e:
            # Still unresolved; stays in flight
            metrics.record_transaction((time.perf_counter() - started) * 1000, success=False)
            logger.warning("Confirmation wait failed", function=function, transaction_ref=ref, error=str(e))
            return TxResult.failure(FailureKind.TRANSACTION, str(e))

        self._in_flight.pop(ref, None)
        latency_ms = (time.perf_counter() - started) * 1000
        metrics.record_transaction(latency_ms, success=True)

        if id_event is not None:
            event = receipt.find_event(id_event[0])
            if event is not None and id_event[1] in event.args:
                entity_id = int(event.args[id_event[1]])
            elif fallback_id is not None:
                try:
                    entity_id = await fallback_id()
                except LedgerError as e:
                    logger.warning("Could not recover new id", function=function, error=str(e))

        logger.info(
            "Transaction confirmed",
            function=function,
            transaction_ref=ref,
            block_number=receipt.block_number,
            entity_id=entity_id,
            latency_ms=round(latency_ms, 2),
        )
        return TxResult.success(ref, entity_id, receipt.block_number, receipt.events)

    # --------------------------------------------------------
    # Writes
    # --------------------------------------------------------

    async def _last_campaign_id(self) -> int:
        return int(await self._call(CF, "numberOfCampaigns")) - 1

    async def _last_resource_id(self) -> int:
        return int(await self._call(RS, "numberOfResources")) - 1

    async def create_campaign(self, draft: CampaignDraft) -> TxResult:
        try:
            target = units.to_native(draft.target)
        except units.UnitError as e:
            return TxResult.failure(FailureKind.VALIDATION, str(e))
        return await self._transact(
            CF,
            "createCampaign",
            (
                self._account,
                draft.title,
                draft.description,
                target,
                int(draft.deadline),
                draft.image or "",
                draft.category or DEFAULT_CAMPAIGN_CATEGORY,
            ),
            id_event=("CampaignCreated", "campaignId"),
            fallback_id=self._last_campaign_id,
        )

    async def donate(self, campaign_id: int, amount: Decimal) -> TxResult:
        try:
            value = units.to_native(amount)
        except units.UnitError as e:
            return TxResult.failure(FailureKind.VALIDATION, str(e))
        return await self._transact(
            CF, "donateToCampaign", (campaign_id,), value=value, entity_id=campaign_id
        )

    async def post_campaign_update(self, campaign_id: int, title: str, content: str) -> TxResult:
        return await self._transact(
            CF, "postCampaignUpdate", (campaign_id, title, content), entity_id=campaign_id
        )

    async def post_resource(self, draft: ResourceDraft) -> TxResult:
        return await self._transact(
            RS,
            "postResource",
            (
                draft.title,
                draft.description,
                draft.category,
                int(draft.quantity),
                draft.unit,
                draft.location,
                draft.image or DEFAULT_RESOURCE_IMAGE,
            ),
            id_event=("ResourcePosted", "resourceId"),
            fallback_id=self._last_resource_id,
        )

    async def claim_resource(self, resource_id: int, amount: int) -> TxResult:
        """Claim ``amount`` units. ``entity_id`` of the result is the new claim's index."""
        async def last_claim_index() -> int:
            return len(await self._call(RS, "getResourceClaims", resource_id)) - 1

        return await self._transact(
            RS,
            "claimResource",
            (resource_id, int(amount)),
            id_event=("ResourceClaimed", "claimIndex"),
            fallback_id=last_claim_index,
        )

    async def complete_claim(self, resource_id: int, index: int) -> TxResult:
        return await self._transact(RS, "completeClaim", (resource_id, index), entity_id=index)

    async def cancel_claim(self, resource_id: int, index: int) -> TxResult:
        return await self._transact(RS, "cancelClaim", (resource_id, index), entity_id=index)

    async def deactivate_resource(self, resource_id: int) -> TxResult:
        return await self._transact(RS, "deactivateResource", (resource_id,), entity_id=resource_id)

    async def reactivate_resource(self, resource_id: int) -> TxResult:
        return await self._transact(RS, "reactivateResource", (resource_id,), entity_id=resource_id)


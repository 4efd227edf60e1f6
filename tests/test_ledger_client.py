"""
Tests for the LedgerClient over the in-memory ledger.

Covers readiness, unit conversion, typed mapping at the boundary,
transaction failure classification, new-id recovery and abandoned
confirmation waits.
"""

import asyncio
from decimal import Decimal

import pytest

from givecore.core import PendingKind, PendingOverlay, PendingStatus
from givecore.ledger import InMemoryLedger, LedgerClient, from_native, to_native, UnitError
from givecore.schemas import CampaignDraft, FailureKind, ResourceDraft

from .conftest import DAY, DONOR, NOW, ORGANIZER


async def abandon(coro) -> None:
    """Start a workflow, let it submit, then cancel the confirmation wait."""
    task = asyncio.create_task(coro)
    await asyncio.sleep(0.05)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task


@pytest.fixture
async def client(memory_ledger):
    client = LedgerClient(memory_ledger)
    await client.initialize()
    client.connect(ORGANIZER)
    return client


async def new_campaign(client, target="10", deadline=NOW + 30 * DAY) -> int:
    tx = await client.create_campaign(CampaignDraft(
        title="Clinic", description="Rural clinic", target=Decimal(target), deadline=deadline
    ))
    assert tx.ok, tx.reason
    return tx.entity_id


class TestUnits:

    def test_round_trip_exact(self):
        """Decimal amounts survive conversion to the smallest unit."""
        assert to_native(Decimal("1.5")) == 1_500_000_000_000_000_000
        assert from_native(1_500_000_000_000_000_000) == Decimal("1.5")

    def test_smallest_unit(self):
        assert to_native("0.000000000000000001") == 1

    @pytest.mark.parametrize("bad", ["-1", "NaN", "0.0000000000000000001", "abc"])
    def test_rejects_invalid(self, bad):
        with pytest.raises(UnitError):
            to_native(bad)


class TestReadiness:

    async def test_reads_fail_before_initialize(self, memory_ledger):
        client = LedgerClient(memory_ledger)
        result = await client.read_campaigns()

        assert not result.ok
        assert result.kind == FailureKind.READINESS

    async def test_wrong_network(self):
        """A ledger on another chain is never ready."""
        client = LedgerClient(InMemoryLedger(chain_id=1))

        assert not await client.initialize()
        assert client.chain_id == 1
        assert "Wrong network" in client.not_ready_reason

    async def test_unreachable_node_does_not_raise(self, memory_ledger):
        memory_ledger.set_offline()
        client = LedgerClient(memory_ledger)

        assert not await client.initialize()
        assert "unreachable" in client.not_ready_reason

    async def test_write_without_account(self, memory_ledger):
        client = LedgerClient(memory_ledger)
        await client.initialize()

        tx = await client.donate(0, Decimal("1"))
        assert tx.kind == FailureKind.READINESS
        assert tx.reason == "No connected account"

    async def test_read_failure_after_ready_is_readiness(self, client, memory_ledger):
        memory_ledger.set_offline()
        result = await client.read_resources()
        assert result.kind == FailureKind.READINESS


class TestCampaigns:

    async def test_create_returns_sequential_ids(self, client):
        assert await new_campaign(client) == 0
        assert await new_campaign(client) == 1

    async def test_typed_campaign(self, client):
        campaign_id = await new_campaign(client, target="2.5")

        campaign = (await client.read_campaign(campaign_id)).value
        assert campaign.owner == ORGANIZER
        assert campaign.target == Decimal("2.5")
        assert campaign.amount_collected == 0
        assert campaign.category == "Community Development"

    async def test_missing_campaign_is_not_found(self, client):
        result = await client.read_campaign(12)
        assert result.ok
        assert result.value is None

    async def test_donations_accumulate(self, client):
        campaign_id = await new_campaign(client)
        client.connect(DONOR)
        await client.donate(campaign_id, Decimal("4.0"))
        await client.donate(campaign_id, Decimal("6.0"))

        campaign = (await client.read_campaign(campaign_id)).value
        assert campaign.amount_collected == Decimal("10.0")
        assert [d.amount for d in campaign.donations] == [Decimal("4.0"), Decimal("6.0")]
        assert campaign.donor_count == 1

        history = (await client.read_user_donations(DONOR)).value
        assert sum(d.amount for d in history) == Decimal("10.0")

    async def test_reverted_donation_is_transaction_failure(self, client, clock):
        """The ledger's own checks surface verbatim."""
        campaign_id = await new_campaign(client, deadline=NOW + DAY)
        clock.advance(2 * DAY)

        tx = await client.donate(campaign_id, Decimal("1"))
        assert tx.kind == FailureKind.TRANSACTION
        assert "Campaign has ended" in tx.reason

    async def test_user_rejection(self, client, memory_ledger):
        memory_ledger.reject_next("User denied transaction signature")
        tx = await client.create_campaign(CampaignDraft(title="x", description="y", target=Decimal(1), deadline=NOW + DAY))

        assert tx.kind == FailureKind.TRANSACTION
        assert tx.reason == "User denied transaction signature"
        assert client.in_flight == {}

    async def test_insufficient_balance(self, client, memory_ledger):
        campaign_id = await new_campaign(client)
        memory_ledger.set_balance(DONOR, to_native("0.5"))
        client.connect(DONOR)

        tx = await client.donate(campaign_id, Decimal("1"))
        assert tx.kind == FailureKind.TRANSACTION
        assert "insufficient funds" in tx.reason

    async def test_invalid_amount_is_validation(self, client):
        tx = await client.donate(0, Decimal("-1"))
        assert tx.kind == FailureKind.VALIDATION

    async def test_platform_stats(self, client):
        campaign_id = await new_campaign(client)
        client.connect(DONOR)
        await client.donate(campaign_id, Decimal("3"))

        stats = (await client.read_platform_stats()).value
        assert stats.total_campaigns == 1
        assert stats.total_donations_count == 1
        assert stats.total_amount_raised == Decimal("3")


class TestResources:

    async def post(self, client, quantity=20) -> int:
        tx = await client.post_resource(ResourceDraft(
            title="Rice", category="Food", quantity=quantity, unit="kg", location="Depot"
        ))
        assert tx.ok, tx.reason
        return tx.entity_id

    async def test_claim_index_and_quantity(self, client):
        resource_id = await self.post(client)
        client.connect(DONOR)

        first = await client.claim_resource(resource_id, 5)
        second = await client.claim_resource(resource_id, 3)

        assert (first.entity_id, second.entity_id) == (0, 1)
        resource = (await client.read_resource(resource_id)).value
        assert resource.quantity_available == 12

    async def test_cancel_restores_and_complete_does_not(self, client):
        resource_id = await self.post(client)
        client.connect(DONOR)
        await client.claim_resource(resource_id, 5)
        await client.claim_resource(resource_id, 4)

        assert (await client.cancel_claim(resource_id, 0)).ok
        client.connect(ORGANIZER)
        assert (await client.complete_claim(resource_id, 1)).ok

        resource = (await client.read_resource(resource_id)).value
        claims = (await client.read_resource_claims(resource_id)).value
        assert resource.quantity_available == 16
        assert claims[0].is_cancelled and claims[1].is_completed

    async def test_owner_cannot_claim(self, client):
        resource_id = await self.post(client)
        tx = await client.claim_resource(resource_id, 1)
        assert tx.kind == FailureKind.TRANSACTION
        assert "Cannot claim your own resource" in tx.reason

    async def test_category_filter(self, client):
        await self.post(client)
        await client.post_resource(ResourceDraft(title="Coats", category="Clothing", quantity=3, unit="pcs"))

        food = (await client.read_resources_by_category("Food")).value
        assert [r.title for r in food] == ["Rice"]

    async def test_user_claims(self, client):
        resource_id = await self.post(client)
        client.connect(DONOR)
        await client.claim_resource(resource_id, 2)

        claims = (await client.read_user_claims(DONOR)).value
        assert len(claims) == 1
        assert claims[0].amount == 2


class ShapeShiftingLedger(InMemoryLedger):
    """Returns canned values for selected views."""

    def __init__(self, overrides, **kwargs):
        super().__init__(**kwargs)
        self.overrides = overrides

    async def call(self, contract, function, *args):
        if function in self.overrides:
            return self.overrides[function]
        return await super().call(contract, function, *args)


class TestMalformedRecords:

    @pytest.mark.parametrize("function, raw, operation, args", [
        ("getCampaignUpdates", [{"title": "no content"}], "read_campaign_updates", (0,)),
        ("getPlatformStats", {"totalCampaigns": 1}, "read_platform_stats", ()),
        ("getUserDonations", [[0]], "read_user_donations", (DONOR,)),
        ("getResourceStats", None, "read_resource_stats", ()),
        ("getUserClaims", ([1], [2]), "read_user_claims", (DONOR,)),
        ("getCampaigns", [{"owner": ORGANIZER}], "read_campaigns", ()),
    ])
    async def test_unexpected_shape_is_a_failed_read(self, clock, function, raw, operation, args):
        """Reads report a failure instead of raising."""
        client = LedgerClient(ShapeShiftingLedger({function: raw}, clock=clock))
        await client.initialize()

        result = await getattr(client, operation)(*args)

        assert not result.ok
        assert result.kind == FailureKind.READINESS


class TestVerification:

    async def test_flags_read_from_ledger(self, client, memory_ledger):
        memory_ledger.verify_organizer(ORGANIZER)
        memory_ledger.verify_donor(DONOR.upper())

        assert (await client.is_organizer_verified(ORGANIZER)).value is True
        assert (await client.is_organizer_verified(DONOR)).value is False
        assert (await client.is_donor_verified(DONOR)).value is True
        assert (await client.is_donor_verified(ORGANIZER)).value is False

    async def test_unreachable_is_readiness(self, client, memory_ledger):
        memory_ledger.set_offline()
        result = await client.is_donor_verified(DONOR)
        assert result.kind == FailureKind.READINESS

    async def test_dashboard_carries_flags(self, services, memory_ledger):
        memory_ledger.verify_organizer(ORGANIZER)

        organizer = (await services.catalog.dashboard(ORGANIZER)).value
        donor = (await services.catalog.dashboard(DONOR)).value

        assert organizer.organizer_verified and not organizer.donor_verified
        assert not donor.organizer_verified


class TestInFlight:

    async def test_cancelled_wait_keeps_transaction_in_flight(self, clock):
        """Abandoning the wait does not forget the submitted transaction."""
        ledger = InMemoryLedger(clock=clock, confirmation_delay=10)
        client = LedgerClient(ledger)
        await client.initialize()
        client.connect(ORGANIZER)

        task = asyncio.create_task(client.create_campaign(
            CampaignDraft(title="t", description="d", target=Decimal(1), deadline=NOW + DAY)
        ))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert list(client.in_flight.values()) == ["createCampaign"]

    async def test_resolve_in_flight_reports_mined_transaction(self, clock):
        ledger = InMemoryLedger(clock=clock, confirmation_delay=10)
        client = LedgerClient(ledger)
        await client.initialize()
        client.connect(ORGANIZER)

        await abandon(client.create_campaign(
            CampaignDraft(title="t", description="d", target=Decimal(1), deadline=NOW + DAY)
        ))
        [ref] = list(client.in_flight)

        assert await client.resolve_in_flight() == {ref: True}
        assert client.in_flight == {}
        assert await client.resolve_in_flight() == {}

    async def test_resolve_in_flight_keeps_refs_while_unreachable(self, clock):
        ledger = InMemoryLedger(clock=clock, confirmation_delay=10)
        client = LedgerClient(ledger)
        await client.initialize()
        client.connect(ORGANIZER)
        await abandon(client.create_campaign(
            CampaignDraft(title="t", description="d", target=Decimal(1), deadline=NOW + DAY)
        ))

        ledger.set_offline()
        assert await client.resolve_in_flight() == {}
        assert list(client.in_flight.values()) == ["createCampaign"]

    async def test_cancelled_donation_is_counted_once(self, services, memory_ledger):
        """A donation whose wait was cancelled is reconciled by the next campaign read."""
        services.ledger.connect(ORGANIZER)
        created = await services.coordinator.create_campaign(CampaignDraft(
            title="Clinic", description="Rural clinic", target=Decimal(10), deadline=NOW + 30 * DAY
        ))
        campaign_id = created.entity_id

        memory_ledger.set_confirmation_delay(10)
        services.ledger.connect(DONOR)
        await abandon(services.coordinator.donate(campaign_id, 3))

        [entry] = services.overlay.entries(PendingKind.DONATION)
        assert entry.status == PendingStatus.ABANDONED
        assert entry.transaction_ref in services.ledger.in_flight

        view = (await services.catalog.campaign(campaign_id)).value
        assert view.campaign.amount_collected == Decimal(3)
        assert view.pending_donations == 0

        view = (await services.catalog.campaign(campaign_id)).value
        assert view.pending_donations == 0
        assert services.overlay.entries(PendingKind.DONATION) == []
        assert services.ledger.in_flight == {}

    async def test_cancelled_claim_is_counted_once(self, services, memory_ledger):
        services.ledger.connect(ORGANIZER)
        posted = await services.coordinator.post_resource(ResourceDraft(
            title="Rice", description="Bags", category="Food", quantity=10, unit="kg", location="Depot"
        ))
        resource_id = posted.entity_id

        memory_ledger.set_confirmation_delay(10)
        services.ledger.connect(DONOR)
        await abandon(services.coordinator.claim_resource(resource_id, 4))

        view = (await services.catalog.resource(resource_id)).value
        assert view.resource.quantity_available == 6
        assert view.pending_claimed == 0
        assert services.overlay.entries(PendingKind.CLAIM) == []

    def test_reverted_abandoned_transaction_is_dropped(self):
        overlay = PendingOverlay()
        entry = overlay.register(PendingKind.DONATION, 0, DONOR, amount=Decimal(2))
        overlay.abandon(entry.key, "0xfeed")
        assert overlay.pending_amount(PendingKind.DONATION, 0) == Decimal(2)

        overlay.resolve({"0xfeed": False})
        assert overlay.entries() == []

    def test_abandon_without_ref_drops_entry(self):
        """Cancelled before anything reached the ledger."""
        overlay = PendingOverlay()
        entry = overlay.register(PendingKind.CLAIM, 1, DONOR, amount=4)
        overlay.abandon(entry.key, None)
        assert len(overlay) == 0

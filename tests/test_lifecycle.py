"""
Tests for the lifecycle workflows.

Each workflow validates locally, submits one ledger transaction, then
records the off-chain side effects (categories, receipts, notifications).
"""

from decimal import Decimal

import pytest

from givecore.core import PendingKind, derived
from givecore.core.reports import receipt_id_for
from givecore.schemas import CampaignDraft, FailureKind, ResourceDraft

from .conftest import DAY, DONOR, NOW, ORGANIZER, OTHER


async def create_campaign(services, target="10.0", deadline=NOW + 30 * DAY, category="Health"):
    services.ledger.connect(ORGANIZER)
    result = await services.coordinator.create_campaign(CampaignDraft(
        title="Clinic roof", description="Repair before the rains", target=target,
        deadline=deadline, category=category,
    ))
    assert result.ok, result.reason
    return result.entity_id


async def post_resource(services, quantity=20):
    services.ledger.connect(ORGANIZER)
    result = await services.coordinator.post_resource(ResourceDraft(
        title="Blankets", description="Wool", category="Shelter", quantity=quantity, unit="pcs",
        location="Community hall",
    ))
    assert result.ok, result.reason
    return result.entity_id


class TestCreateCampaign:

    @pytest.mark.parametrize("field, value, reason", [
        ("title", "  ", "Title is required"),
        ("description", "", "Description is required"),
        ("target", "0", "Target must be greater than 0"),
        ("deadline", NOW, "Deadline must be in the future"),
    ])
    async def test_validation_before_ledger(self, services, memory_ledger, field, value, reason):
        """Invalid drafts never reach the ledger."""
        services.ledger.connect(ORGANIZER)
        draft = CampaignDraft(title="t", description="d", target="1", deadline=NOW + DAY)
        before = memory_ledger.block_number

        result = await services.coordinator.create_campaign(draft.model_copy(update={field: value}))

        assert result.kind == FailureKind.VALIDATION
        assert result.reason == reason
        assert memory_ledger.block_number == before

    async def test_side_effects(self, services):
        """Category, profile counter and notification are recorded."""
        campaign_id = await create_campaign(services, category="Health")

        category = (await services.store.get_category(campaign_id)).value
        profile = (await services.store.get_profile(ORGANIZER)).value
        notes = await services.journal.list(ORGANIZER)

        assert category.category == "Health"
        assert profile.total_campaigns == 1
        assert notes[0].title == "Campaign Created!"

    async def test_not_connected(self, services):
        services.ledger.disconnect()
        result = await services.coordinator.create_campaign(
            CampaignDraft(title="t", description="d", target="1", deadline=NOW + DAY)
        )
        assert result.kind == FailureKind.READINESS


class TestDonate:

    async def test_full_funding_scenario(self, services):
        """Target 10.0 with donations of 4.0 and 6.0 is fully funded and inactive."""
        campaign_id = await create_campaign(services, target="10.0")
        services.ledger.connect(DONOR)
        assert (await services.coordinator.donate(campaign_id, "4.0")).ok
        services.ledger.connect(OTHER)
        assert (await services.coordinator.donate(campaign_id, "6.0")).ok

        view = (await services.catalog.campaign(campaign_id)).value
        assert view.campaign.amount_collected == Decimal("10.0")
        assert view.is_fully_funded
        assert not view.is_active
        assert view.days_left == 30

    async def test_fully_funded_rejects_further_donations(self, services, memory_ledger):
        campaign_id = await create_campaign(services, target="1")
        services.ledger.connect(DONOR)
        await services.coordinator.donate(campaign_id, "1")
        before = memory_ledger.block_number

        result = await services.coordinator.donate(campaign_id, "0.5")

        assert result.kind == FailureKind.VALIDATION
        assert "funding goal" in result.reason
        assert memory_ledger.block_number == before

    async def test_expired_campaign(self, services, clock):
        campaign_id = await create_campaign(services, deadline=NOW + DAY)
        clock.advance(DAY)
        services.ledger.connect(DONOR)

        result = await services.coordinator.donate(campaign_id, "1")
        assert result.kind == FailureKind.VALIDATION
        assert "ended" in result.reason

    @pytest.mark.parametrize("amount", ["0", "-2", "abc", "NaN"])
    async def test_invalid_amount(self, services, amount):
        campaign_id = await create_campaign(services)
        services.ledger.connect(DONOR)
        result = await services.coordinator.donate(campaign_id, amount)
        assert result.kind == FailureKind.VALIDATION

    async def test_receipt_and_notification(self, services):
        """A confirmed donation leaves a receipt keyed by campaign and donor."""
        campaign_id = await create_campaign(services)
        services.ledger.connect(DONOR)
        result = await services.coordinator.donate(campaign_id, "2.5")

        receipt = result.data["receipt"]
        assert receipt.receipt_id == receipt_id_for(result.transaction_ref)
        assert receipt.receipt_id.startswith("RCP-")
        assert len(receipt.receipt_id) == 12
        assert result.data["new_total"] == Decimal("2.5")

        record = (await services.catalog.receipt(campaign_id, DONOR)).value
        assert record.amount == Decimal("2.5")
        assert record.campaign_title == "Clinic roof"

        notes = await services.journal.list(DONOR)
        assert notes[0].title == "Donation Successful!"

    async def test_rejected_transaction_leaves_no_receipt(self, services, memory_ledger):
        campaign_id = await create_campaign(services)
        services.ledger.connect(DONOR)
        memory_ledger.reject_next("User denied transaction signature")

        result = await services.coordinator.donate(campaign_id, "1")

        assert result.kind == FailureKind.TRANSACTION
        assert not (await services.store.get_receipt(campaign_id, DONOR)).found
        assert services.overlay.entries(PendingKind.DONATION) == []

    async def test_progress_non_decreasing(self, services):
        campaign_id = await create_campaign(services, target="5")
        services.ledger.connect(DONOR)
        previous = Decimal(0)
        for amount in ("0.5", "1", "0.25", "2"):
            await services.coordinator.donate(campaign_id, amount)
            progress = (await services.catalog.campaign(campaign_id)).value.progress
            assert progress >= previous
            previous = progress


class TestCampaignUpdates:

    async def test_owner_posts_update(self, services):
        campaign_id = await create_campaign(services)
        result = await services.coordinator.post_campaign_update(campaign_id, "Week 1", "Roof tiles bought")
        assert result.ok

        detail = (await services.catalog.campaign(campaign_id)).value
        assert [u.title for u in detail.updates] == ["Week 1"]

    async def test_non_owner_rejected(self, services):
        campaign_id = await create_campaign(services)
        services.ledger.connect(DONOR)
        result = await services.coordinator.post_campaign_update(campaign_id, "Hi", "there")
        assert not result.ok


class TestClaims:

    async def test_claim_then_cancel_restores_quantity(self, services, memory_ledger):
        """Quantity 20, claim 5, cancel: back to 20; a second cancel is already terminal."""
        resource_id = await post_resource(services, quantity=20)
        services.ledger.connect(DONOR)
        claimed = await services.coordinator.claim_resource(resource_id, 5)
        assert claimed.ok

        resource = (await services.catalog.resource(resource_id)).value
        assert resource.resource.quantity_available == 15

        cancelled = await services.coordinator.cancel_claim(resource_id, claimed.entity_id)
        assert cancelled.ok
        resource = (await services.catalog.resource(resource_id)).value
        assert resource.resource.quantity_available == 20
        assert resource.claims[0].claim.is_cancelled

        before = memory_ledger.block_number
        again = await services.coordinator.cancel_claim(resource_id, claimed.entity_id)
        assert again.kind == FailureKind.ALREADY_TERMINAL
        assert memory_ledger.block_number == before

    async def test_complete_leaves_quantity(self, services):
        resource_id = await post_resource(services, quantity=10)
        services.ledger.connect(DONOR)
        claimed = await services.coordinator.claim_resource(resource_id, 4)

        services.ledger.connect(ORGANIZER)
        assert (await services.coordinator.complete_claim(resource_id, claimed.entity_id)).ok

        resource = (await services.catalog.resource(resource_id)).value
        assert resource.resource.quantity_available == 6
        assert resource.claims[0].status.value == "completed"

        for attempt in (services.coordinator.complete_claim, services.coordinator.cancel_claim):
            result = await attempt(resource_id, claimed.entity_id)
            assert result.kind == FailureKind.ALREADY_TERMINAL

    async def test_terminal_detected_from_fresh_read(self, services):
        """A claim finished by another session is still refused locally."""
        resource_id = await post_resource(services)
        services.ledger.connect(DONOR)
        claimed = await services.coordinator.claim_resource(resource_id, 2)
        await services.ledger.cancel_claim(resource_id, claimed.entity_id)

        result = await services.coordinator.cancel_claim(resource_id, claimed.entity_id)
        assert result.kind == FailureKind.ALREADY_TERMINAL

    async def test_quantity_invariant_over_sequence(self, services):
        resource_id = await post_resource(services, quantity=20)
        services.ledger.connect(DONOR)
        a = await services.coordinator.claim_resource(resource_id, 5)
        services.ledger.connect(OTHER)
        b = await services.coordinator.claim_resource(resource_id, 7)
        await services.coordinator.cancel_claim(resource_id, b.entity_id)
        services.ledger.connect(ORGANIZER)
        await services.coordinator.complete_claim(resource_id, a.entity_id)

        resource = (await services.ledger.read_resource(resource_id)).value
        claims = (await services.ledger.read_resource_claims(resource_id)).value
        assert derived.quantity_consistent(resource, claims)

    async def test_claim_exceeding_available(self, services, memory_ledger):
        resource_id = await post_resource(services, quantity=3)
        services.ledger.connect(DONOR)
        before = memory_ledger.block_number

        result = await services.coordinator.claim_resource(resource_id, 4)

        assert result.kind == FailureKind.VALIDATION
        assert memory_ledger.block_number == before

    async def test_owner_cannot_claim_own(self, services):
        resource_id = await post_resource(services)
        result = await services.coordinator.claim_resource(resource_id, 1)
        assert result.kind == FailureKind.VALIDATION

    async def test_only_owner_completes(self, services):
        resource_id = await post_resource(services)
        services.ledger.connect(DONOR)
        claimed = await services.coordinator.claim_resource(resource_id, 1)

        result = await services.coordinator.complete_claim(resource_id, claimed.entity_id)
        assert result.kind == FailureKind.VALIDATION

    async def test_claim_handle_and_notifications(self, services):
        """The claimer gets a claim handle with its chat thread; both sides are notified."""
        resource_id = await post_resource(services)
        services.ledger.connect(DONOR)
        result = await services.coordinator.claim_resource(resource_id, 2)

        claim = result.data["claim"]
        assert claim.index == 0
        assert claim.claimer == DONOR
        assert result.data["thread_key"] == claim.thread_key == f"{resource_id}_{NOW}"

        assert (await services.journal.list(DONOR))[0].title == "Resource Claimed!"
        assert (await services.journal.list(ORGANIZER))[0].title == "New Claim"
        assert (await services.store.get_profile(DONOR)).value.total_claims == 1


class TestResourceActivation:

    async def test_deactivate_blocks_claims(self, services):
        resource_id = await post_resource(services)
        assert (await services.coordinator.deactivate_resource(resource_id)).ok

        services.ledger.connect(DONOR)
        result = await services.coordinator.claim_resource(resource_id, 1)
        assert result.kind == FailureKind.VALIDATION

        services.ledger.connect(ORGANIZER)
        assert (await services.coordinator.reactivate_resource(resource_id)).ok
        assert (await services.catalog.resource(resource_id)).value.resource.is_active

    async def test_deactivate_twice(self, services):
        resource_id = await post_resource(services)
        await services.coordinator.deactivate_resource(resource_id)
        result = await services.coordinator.deactivate_resource(resource_id)
        assert result.kind == FailureKind.VALIDATION


class TestOffchainWorkflows:

    async def test_profile_save_with_remote_down(self, services, remote):
        """Profile edits survive a remote outage."""
        services.ledger.connect(DONOR)
        remote.failing = True

        result = await services.coordinator.save_profile(name="  Grace ", bio="Volunteer", total_claims=99)

        assert result.ok
        assert not result.data["remote_synced"]
        profile = (await services.store.get_profile(DONOR)).value
        assert profile.name == "Grace"
        assert profile.total_claims == 0

    async def test_chat_thread(self, services):
        resource_id = await post_resource(services)
        services.ledger.connect(DONOR)
        claim = (await services.coordinator.claim_resource(resource_id, 1)).data["claim"]

        await services.coordinator.send_chat_message(resource_id, claim.timestamp, "Friday?")
        services.ledger.connect(ORGANIZER)
        await services.coordinator.send_chat_message(resource_id, claim.timestamp, "Works")

        thread = (await services.store.get_chat(resource_id, claim.timestamp)).value
        assert [(m.sender, m.message) for m in thread] == [(DONOR, "Friday?"), (ORGANIZER, "Works")]

    async def test_empty_chat_message(self, services):
        services.ledger.connect(DONOR)
        result = await services.coordinator.send_chat_message(0, "1", "   ")
        assert result.kind == FailureKind.VALIDATION

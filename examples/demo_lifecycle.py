"""
Demonstration: Campaign and Resource Lifecycles

Runs a complete session against the in-memory ledger:
an organizer raises funds, two donors fully fund the campaign, a resource is
posted, claimed, cancelled, re-claimed and collected.

Run with: python -m examples.demo_lifecycle
"""

import asyncio
import time

from givecore.config import Settings
from givecore.ledger import InMemoryLedger
from givecore.observability import setup_logging
from givecore.schemas import CampaignDraft, ResourceDraft
from givecore.services import build_services


ORGANIZER = "0x" + "a1" * 20
DONOR_ONE = "0x" + "b2" * 20
DONOR_TWO = "0x" + "c3" * 20
DAY = 86_400


def banner(title: str) -> None:
    print()
    print("=" * 60)
    print(title)
    print("=" * 60)


def show(result) -> None:
    if result.ok:
        print(f"  [OK] tx={result.transaction_ref} entity={result.entity_id}")
    else:
        print(f"  [REJECTED] {result.kind.value}: {result.reason}")


async def main():
    print("=" * 60)
    print("GiveCore - Lifecycle Demonstration")
    print("=" * 60)

    ledger = InMemoryLedger()
    services = await build_services(Settings(), transport=ledger)
    coordinator, catalog, journal = services.coordinator, services.catalog, services.journal

    # ================================================================
    # STEP 1: ORGANIZER CREATES A CAMPAIGN
    # ================================================================
    banner("STEP 1: CREATE CAMPAIGN")
    services.ledger.connect(ORGANIZER)
    await coordinator.save_profile(name="Riverside Food Bank", location="Riverside")

    created = await coordinator.create_campaign(CampaignDraft(
        title="Winter Meals 2026",
        description="Hot meals for families through the winter months.",
        target="10.0",
        deadline=int(time.time()) + 30 * DAY,
        category="Food Security",
    ))
    show(created)
    campaign_id = created.entity_id

    # ================================================================
    # STEP 2: TWO DONATIONS FUND IT
    # ================================================================
    banner("STEP 2: DONATIONS")
    for donor, amount in ((DONOR_ONE, "4.0"), (DONOR_TWO, "6.0")):
        services.ledger.connect(donor)
        donated = await coordinator.donate(campaign_id, amount)
        show(donated)
        if donated.ok:
            print(f"  Receipt: {donated.data['receipt'].receipt_id}")

    view = (await catalog.campaign(campaign_id)).value
    print(f"\n  Collected: {view.campaign.amount_collected} / {view.campaign.target} ETH")
    print(f"  Progress: {view.progress}%  fully funded: {view.is_fully_funded}  active: {view.is_active}")

    banner("STEP 2b: DONATION AFTER FUNDING IS REFUSED")
    show(await coordinator.donate(campaign_id, "1.0"))

    # ================================================================
    # STEP 3: RESOURCE POSTED AND CLAIMED
    # ================================================================
    banner("STEP 3: POST AND CLAIM A RESOURCE")
    services.ledger.connect(ORGANIZER)
    posted = await coordinator.post_resource(ResourceDraft(
        title="Canned soup",
        description="Surplus from the winter drive",
        category="Food",
        quantity=20,
        unit="cans",
        location="Riverside depot",
        image="🥫",
    ))
    show(posted)
    resource_id = posted.entity_id

    services.ledger.connect(DONOR_ONE)
    claimed = await coordinator.claim_resource(resource_id, 5)
    show(claimed)
    claim_index = claimed.entity_id
    await coordinator.send_chat_message(resource_id, claimed.data["claim"].timestamp, "I can pick up on Friday.")

    resource = (await catalog.resource(resource_id)).value
    print(f"  Available: {resource.resource.quantity_available}/{resource.resource.quantity_original}")

    # ================================================================
    # STEP 4: CANCEL RESTORES QUANTITY, SECOND CANCEL IS TERMINAL
    # ================================================================
    banner("STEP 4: CANCEL CLAIM")
    show(await coordinator.cancel_claim(resource_id, claim_index))
    resource = (await catalog.resource(resource_id)).value
    print(f"  Available: {resource.resource.quantity_available}/{resource.resource.quantity_original}")
    show(await coordinator.cancel_claim(resource_id, claim_index))

    # ================================================================
    # STEP 5: NEW CLAIM, OWNER COMPLETES IT
    # ================================================================
    banner("STEP 5: CLAIM AND COLLECT")
    services.ledger.connect(DONOR_TWO)
    claimed = await coordinator.claim_resource(resource_id, 8)
    show(claimed)

    services.ledger.connect(ORGANIZER)
    show(await coordinator.complete_claim(resource_id, claimed.entity_id))

    resource = (await catalog.resource(resource_id)).value
    for claim in resource.claims:
        print(f"  claim by {claim.claim.claimer[:10]}... x{claim.claim.amount}: {claim.status.value} ({claim.time_ago})")

    # ================================================================
    # STEP 6: REPORTS AND NOTIFICATIONS
    # ================================================================
    banner("STEP 6: REPORTS")
    report = (await catalog.platform_report()).value
    print(f"  Campaigns: {report.total_campaigns}  donations: {report.total_donations}")
    print(f"  Raised: {report.total_amount_raised} ETH  unique donors: {report.unique_donors}")
    for category in report.top_categories:
        print(f"  - {category.name}: {category.total_raised} ETH")

    banner("NOTIFICATIONS")
    for identity in (ORGANIZER, DONOR_ONE, DONOR_TWO):
        entries = await journal.list(identity)
        print(f"  {identity[:10]}...: {len(entries)} notifications")
        for n in entries:
            print(f"    [{n.type.value}] {n.title}")

    await services.close()


if __name__ == "__main__":
    setup_logging()
    asyncio.run(main())

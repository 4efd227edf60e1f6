"""
In-Memory Ledger

A development and test stand-in for the two deployed programs. Behaves like
a local dev chain with automine: every accepted transaction is mined into
its own block at submission, so a contract condition that fails raises
TransactionRejected from ``transact`` (as gas estimation would on a real
node) and state is already updated by the time a receipt is awaited.

Knobs for tests:
- ``clock``: injectable time source (block timestamps)
- ``confirmation_delay`` / ``set_confirmation_delay()``: seconds
  ``wait_for_confirmation`` sleeps
- ``set_offline()``: every call raises LedgerUnavailableError
- ``reject_next()``: the next submission is refused, as a wallet would
- ``set_balance()``: enforce a balance for one account
- ``verify_organizer()`` / ``verify_donor()``: set the verification flags

NOT FOR PRODUCTION USE.
"""

import asyncio
import hashlib
import time
from typing import Any, Callable, Optional, Sequence

from ..identity import ZERO_ADDRESS, normalize_identity
from .transport import (
    ContractName,
    LedgerError,
    LedgerEvent,
    LedgerReceipt,
    LedgerTransport,
    LedgerUnavailableError,
    TransactionRejected,
)


SEPOLIA_CHAIN_ID = 11155111


class _Revert(Exception):
    pass


def _require(condition: bool, reason: str) -> None:
    if not condition:
        raise _Revert(reason)


class InMemoryLedger(LedgerTransport):
    """
    Emulates the CrowdFunding and ResourceSharing contracts.

    Amounts are integer wei; quantities are integers.
    """

    def __init__(
        self,
        chain_id: int = SEPOLIA_CHAIN_ID,
        clock: Callable[[], float] = time.time,
        confirmation_delay: float = 0.0,
    ):
        self._chain_id = chain_id
        self._clock = clock
        self._confirmation_delay = confirmation_delay

        self._campaigns: list[dict] = []
        self._updates: dict[int, list[dict]] = {}
        self._resources: list[dict] = []
        self._claims: dict[int, list[dict]] = {}
        self._verified_organizers: set[str] = set()
        self._verified_donors: set[str] = set()
        self._balances: dict[str, int] = {}

        self._receipts: dict[str, LedgerReceipt] = {}
        self._tx_count = 0
        self._block_number = 0

        self._offline = False
        self._reject_reason: Optional[str] = None

        self._views = {
            (ContractName.CROWDFUNDING, "numberOfCampaigns"): lambda: len(self._campaigns),
            (ContractName.CROWDFUNDING, "campaigns"): self._view_campaign,
            (ContractName.CROWDFUNDING, "getCampaigns"): self._view_campaigns,
            (ContractName.CROWDFUNDING, "getDonators"): self._view_donators,
            (ContractName.CROWDFUNDING, "getCampaignUpdates"): self._view_updates,
            (ContractName.CROWDFUNDING, "isOrganizerVerified"):
                lambda who: normalize_identity(who) in self._verified_organizers,
            (ContractName.CROWDFUNDING, "getCampaignsByOwner"): self._view_campaigns_by_owner,
            (ContractName.CROWDFUNDING, "getUserDonations"): self._view_user_donations,
            (ContractName.CROWDFUNDING, "getPlatformStats"): self._view_platform_stats,
            (ContractName.RESOURCE_SHARING, "numberOfResources"): lambda: len(self._resources),
            (ContractName.RESOURCE_SHARING, "resources"): self._view_resource,
            (ContractName.RESOURCE_SHARING, "getResources"): self._view_resources,
            (ContractName.RESOURCE_SHARING, "getResourcesByOwner"): self._view_resources_by_owner,
            (ContractName.RESOURCE_SHARING, "getResourceClaims"): self._view_claims,
            (ContractName.RESOURCE_SHARING, "getUserClaims"): self._view_user_claims,
            (ContractName.RESOURCE_SHARING, "getResourceStats"): self._view_resource_stats,
            (ContractName.RESOURCE_SHARING, "isDonorVerified"):
                lambda who: normalize_identity(who) in self._verified_donors,
        }

        self._mutations = {
            (ContractName.CROWDFUNDING, "createCampaign"): self._create_campaign,
            (ContractName.CROWDFUNDING, "donateToCampaign"): self._donate,
            (ContractName.CROWDFUNDING, "postCampaignUpdate"): self._post_update,
            (ContractName.RESOURCE_SHARING, "postResource"): self._post_resource,
            (ContractName.RESOURCE_SHARING, "claimResource"): self._claim_resource,
            (ContractName.RESOURCE_SHARING, "completeClaim"): self._complete_claim,
            (ContractName.RESOURCE_SHARING, "cancelClaim"): self._cancel_claim,
            (ContractName.RESOURCE_SHARING, "deactivateResource"): self._deactivate,
            (ContractName.RESOURCE_SHARING, "reactivateResource"): self._reactivate,
        }

    # ============================================================
    # TEST AND ADMIN HOOKS
    # ============================================================

    def set_offline(self, offline: bool = True) -> None:
        self._offline = offline

    def set_confirmation_delay(self, seconds: float) -> None:
        self._confirmation_delay = seconds

    def reject_next(self, reason: str = "user rejected transaction") -> None:
        self._reject_reason = reason

    def set_balance(self, account: str, wei: int) -> None:
        self._balances[normalize_identity(account)] = wei

    def verify_organizer(self, account: str) -> None:
        self._verified_organizers.add(normalize_identity(account))

    def verify_donor(self, account: str) -> None:
        self._verified_donors.add(normalize_identity(account))

    @property
    def block_number(self) -> int:
        return self._block_number

    # ============================================================
    # TRANSPORT INTERFACE
    # ============================================================

    def _check_online(self) -> None:
        if self._offline:
            raise LedgerUnavailableError("ledger node unreachable")

    async def chain_id(self) -> int:
        self._check_online()
        return self._chain_id

    async def call(self, contract: ContractName, function: str, *args: Any) -> Any:
        self._check_online()
        view = self._views.get((contract, function))
        if view is None:
            raise LedgerError(f"{contract.value} has no view {function}")
        try:
            return view(*args)
        except _Revert as e:
            raise LedgerError(f"{function} reverted: {e}") from e

    async def transact(
        self,
        contract: ContractName,
        function: str,
        args: Sequence[Any],
        sender: str,
        value: int = 0,
    ) -> str:
        self._check_online()
        handler = self._mutations.get((contract, function))
        if handler is None:
            raise LedgerError(f"{contract.value} has no function {function}")

        if self._reject_reason is not None:
            reason, self._reject_reason = self._reject_reason, None
            raise TransactionRejected(reason)

        sender = normalize_identity(sender)
        balance = self._balances.get(sender)
        if balance is not None and balance < value:
            raise TransactionRejected("insufficient funds for gas * price + value")

        try:
            events = handler(sender, value, *args)
        except _Revert as e:
            raise TransactionRejected(f"execution reverted: {e}") from e

        if balance is not None:
            self._balances[sender] = balance - value

        self._tx_count += 1
        self._block_number += 1
        digest = hashlib.sha256(
            f"{self._tx_count}:{contract.value}:{function}:{sender}".encode()
        ).hexdigest()
        transaction_ref = f"0x{digest}"
        self._receipts[transaction_ref] = LedgerReceipt(
            transaction_ref=transaction_ref,
            block_number=self._block_number,
            events=tuple(events),
        )
        return transaction_ref

    async def wait_for_confirmation(self, transaction_ref: str) -> LedgerReceipt:
        receipt = self._receipts.get(transaction_ref)
        if receipt is None:
            raise LedgerError(f"Unknown transaction {transaction_ref}")
        if self._confirmation_delay > 0:
            await asyncio.sleep(self._confirmation_delay)
        return receipt

    async def find_receipt(self, transaction_ref: str) -> Optional[LedgerReceipt]:
        # State changes apply at submission; the delay only holds back waiters
        self._check_online()
        return self._receipts.get(transaction_ref)

    # ============================================================
    # CROWDFUNDING
    # ============================================================

    def _now(self) -> int:
        return int(self._clock())

    def _campaign_fields(self, campaign: dict) -> dict:
        fields = {k: v for k, v in campaign.items() if k not in ("donators", "donations")}
        fields["isVerified"] = campaign["owner"] in self._verified_organizers
        return fields

    def _view_campaign(self, campaign_id: int) -> dict:
        if 0 <= campaign_id < len(self._campaigns):
            return self._campaign_fields(self._campaigns[campaign_id])
        # Mapping getter on an unset key returns a zeroed struct
        return {
            "owner": ZERO_ADDRESS, "title": "", "description": "", "target": 0,
            "deadline": 0, "amountCollected": 0, "image": "", "category": "",
            "isVerified": False,
        }

    def _view_campaigns(self) -> list[dict]:
        return [
            {
                **self._campaign_fields(c),
                "donators": list(c["donators"]),
                "donations": list(c["donations"]),
            }
            for c in self._campaigns
        ]

    def _view_donators(self, campaign_id: int) -> tuple:
        if not 0 <= campaign_id < len(self._campaigns):
            return ([], [])
        campaign = self._campaigns[campaign_id]
        return (list(campaign["donators"]), list(campaign["donations"]))

    def _view_updates(self, campaign_id: int) -> list[dict]:
        return [dict(u) for u in self._updates.get(campaign_id, [])]

    def _view_campaigns_by_owner(self, owner: str) -> list[int]:
        owner = normalize_identity(owner)
        return [i for i, c in enumerate(self._campaigns) if c["owner"] == owner]

    def _view_user_donations(self, user: str) -> tuple:
        user = normalize_identity(user)
        ids, amounts = [], []
        for i, campaign in enumerate(self._campaigns):
            for donor, amount in zip(campaign["donators"], campaign["donations"]):
                if donor == user:
                    ids.append(i)
                    amounts.append(amount)
        return (ids, amounts)

    def _view_platform_stats(self) -> dict:
        now = self._now()
        return {
            "totalCampaigns": len(self._campaigns),
            "totalDonationsCount": sum(len(c["donations"]) for c in self._campaigns),
            "totalAmountRaised": sum(c["amountCollected"] for c in self._campaigns),
            "activeCampaignsCount": sum(
                1 for c in self._campaigns
                if c["deadline"] > now and c["amountCollected"] < c["target"]
            ),
        }

    def _create_campaign(self, sender, value, owner, title, description, target, deadline, image, category):
        _require(target > 0, "Target must be greater than 0")
        _require(deadline > self._now(), "The deadline should be a date in the future.")
        campaign_id = len(self._campaigns)
        self._campaigns.append({
            "owner": normalize_identity(owner),
            "title": title,
            "description": description,
            "target": target,
            "deadline": deadline,
            "amountCollected": 0,
            "image": image,
            "category": category,
            "donators": [],
            "donations": [],
        })
        return [LedgerEvent("CampaignCreated", {
            "campaignId": campaign_id,
            "owner": normalize_identity(owner),
            "title": title,
            "target": target,
            "deadline": deadline,
            "category": category,
        })]

    def _donate(self, sender, value, campaign_id):
        _require(0 <= campaign_id < len(self._campaigns), "Campaign does not exist")
        _require(value > 0, "Donation must be greater than 0")
        campaign = self._campaigns[campaign_id]
        _require(campaign["deadline"] > self._now(), "Campaign has ended")
        _require(campaign["amountCollected"] < campaign["target"], "Campaign is fully funded")

        campaign["donators"].append(sender)
        campaign["donations"].append(value)
        campaign["amountCollected"] += value

        owner_balance = self._balances.get(campaign["owner"])
        if owner_balance is not None:
            self._balances[campaign["owner"]] = owner_balance + value

        return [LedgerEvent("DonationReceived", {
            "campaignId": campaign_id,
            "donor": sender,
            "amount": value,
            "newTotal": campaign["amountCollected"],
        })]

    def _post_update(self, sender, value, campaign_id, title, content):
        _require(0 <= campaign_id < len(self._campaigns), "Campaign does not exist")
        _require(
            self._campaigns[campaign_id]["owner"] == sender,
            "Only campaign owner can post updates",
        )
        timestamp = self._now()
        self._updates.setdefault(campaign_id, []).append(
            {"title": title, "content": content, "timestamp": timestamp}
        )
        return [LedgerEvent("CampaignUpdatePosted", {
            "campaignId": campaign_id, "title": title, "timestamp": timestamp,
        })]

    # ============================================================
    # RESOURCE SHARING
    # ============================================================

    def _resource_fields(self, resource: dict) -> dict:
        fields = {k: v for k, v in resource.items() if k not in ("claimers", "claimedAmounts")}
        fields["isVerified"] = resource["owner"] in self._verified_donors
        return fields

    def _view_resource(self, resource_id: int) -> dict:
        if 0 <= resource_id < len(self._resources):
            return self._resource_fields(self._resources[resource_id])
        return {
            "owner": ZERO_ADDRESS, "title": "", "description": "", "category": "",
            "quantityAvailable": 0, "quantityOriginal": 0, "unit": "", "location": "",
            "postedTimestamp": 0, "isActive": False, "isVerified": False, "image": "",
        }

    def _view_resources(self) -> list[dict]:
        return [
            {
                **self._resource_fields(r),
                "claimers": list(r["claimers"]),
                "claimedAmounts": list(r["claimedAmounts"]),
            }
            for r in self._resources
        ]

    def _view_resources_by_owner(self, owner: str) -> list[int]:
        owner = normalize_identity(owner)
        return [i for i, r in enumerate(self._resources) if r["owner"] == owner]

    def _view_claims(self, resource_id: int) -> list[dict]:
        return [dict(c) for c in self._claims.get(resource_id, [])]

    def _view_user_claims(self, user: str) -> tuple:
        user = normalize_identity(user)
        ids, amounts, timestamps, completed = [], [], [], []
        for resource_id in range(len(self._resources)):
            for claim in self._claims.get(resource_id, []):
                if claim["claimer"] == user:
                    ids.append(resource_id)
                    amounts.append(claim["amount"])
                    timestamps.append(claim["timestamp"])
                    completed.append(claim["isCompleted"])
        return (ids, amounts, timestamps, completed)

    def _view_resource_stats(self) -> dict:
        all_claims = [c for claims in self._claims.values() for c in claims]
        return {
            "totalResources": len(self._resources),
            "activeResources": sum(1 for r in self._resources if r["isActive"]),
            "totalClaims": len(all_claims),
            "completedClaims": sum(1 for c in all_claims if c["isCompleted"]),
        }

    def _existing_resource(self, resource_id: int) -> dict:
        _require(0 <= resource_id < len(self._resources), "Resource does not exist")
        return self._resources[resource_id]

    def _existing_claim(self, resource_id: int, claim_index: int) -> dict:
        self._existing_resource(resource_id)
        claims = self._claims.get(resource_id, [])
        _require(0 <= claim_index < len(claims), "Claim does not exist")
        return claims[claim_index]

    def _post_resource(self, sender, value, title, description, category, quantity, unit, location, image):
        _require(bool(title), "Title is required")
        _require(quantity > 0, "Quantity must be greater than 0")
        resource_id = len(self._resources)
        self._resources.append({
            "owner": sender,
            "title": title,
            "description": description,
            "category": category,
            "quantityAvailable": quantity,
            "quantityOriginal": quantity,
            "unit": unit,
            "location": location,
            "postedTimestamp": self._now(),
            "isActive": True,
            "image": image,
            "claimers": [],
            "claimedAmounts": [],
        })
        return [LedgerEvent("ResourcePosted", {
            "resourceId": resource_id,
            "owner": sender,
            "title": title,
            "category": category,
            "quantity": quantity,
        })]

    def _claim_resource(self, sender, value, resource_id, amount):
        resource = self._existing_resource(resource_id)
        _require(resource["isActive"], "Resource is not active")
        _require(resource["owner"] != sender, "Cannot claim your own resource")
        _require(amount > 0, "Amount must be greater than 0")
        _require(amount <= resource["quantityAvailable"], "Insufficient quantity available")

        resource["quantityAvailable"] -= amount
        resource["claimers"].append(sender)
        resource["claimedAmounts"].append(amount)

        claims = self._claims.setdefault(resource_id, [])
        claims.append({
            "resourceId": resource_id,
            "claimer": sender,
            "amount": amount,
            "timestamp": self._now(),
            "isCompleted": False,
            "isCancelled": False,
        })
        return [LedgerEvent("ResourceClaimed", {
            "resourceId": resource_id,
            "claimer": sender,
            "amount": amount,
            "claimIndex": len(claims) - 1,
        })]

    def _complete_claim(self, sender, value, resource_id, claim_index):
        claim = self._existing_claim(resource_id, claim_index)
        _require(
            self._resources[resource_id]["owner"] == sender,
            "Only resource owner can complete claims",
        )
        _require(not claim["isCompleted"], "Claim already completed")
        _require(not claim["isCancelled"], "Claim was cancelled")
        claim["isCompleted"] = True
        return [LedgerEvent("ClaimCompleted", {"resourceId": resource_id, "claimIndex": claim_index})]

    def _cancel_claim(self, sender, value, resource_id, claim_index):
        claim = self._existing_claim(resource_id, claim_index)
        resource = self._resources[resource_id]
        _require(
            sender in (claim["claimer"], resource["owner"]),
            "Not authorized to cancel this claim",
        )
        _require(not claim["isCompleted"], "Claim already completed")
        _require(not claim["isCancelled"], "Claim already cancelled")
        claim["isCancelled"] = True
        resource["quantityAvailable"] += claim["amount"]
        return [LedgerEvent("ClaimCancelled", {
            "resourceId": resource_id,
            "claimIndex": claim_index,
            "amountRestored": claim["amount"],
        })]

    def _deactivate(self, sender, value, resource_id):
        resource = self._existing_resource(resource_id)
        _require(resource["owner"] == sender, "Only resource owner can deactivate")
        _require(resource["isActive"], "Resource already inactive")
        resource["isActive"] = False
        return [LedgerEvent("ResourceDeactivated", {"resourceId": resource_id})]

    def _reactivate(self, sender, value, resource_id):
        resource = self._existing_resource(resource_id)
        _require(resource["owner"] == sender, "Only resource owner can reactivate")
        _require(not resource["isActive"], "Resource already active")
        resource["isActive"] = True
        return [LedgerEvent("ResourceReactivated", {"resourceId": resource_id})]

"""
Tests for the transport layer: ABI coverage of the in-memory ledger and the
web3 transport's offline helpers.
"""

from collections import namedtuple

import pytest

from givecore.ledger import ContractName, InMemoryLedger, LedgerUnavailableError, TransactionRejected
from givecore.ledger.abi import event_names, function_entry
from givecore.ledger.web3_transport import Web3LedgerTransport, _plain

from .conftest import DAY, DONOR, NOW, ORGANIZER


# Key and address from the eth-account documentation
EXAMPLE_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
EXAMPLE_ADDRESS = "0x2c7536e3605d9c16a7a3d7b1898e529396a65c23"
CONTRACT = "0x" + "d4" * 20


class TestAbiCoverage:

    def test_every_memory_function_is_in_the_abi(self):
        """The in-memory ledger never answers a call the real contracts lack."""
        ledger = InMemoryLedger()
        for contract, function in list(ledger._views) + list(ledger._mutations):
            assert function_entry(contract, function)["name"] == function

    def test_unknown_function(self):
        with pytest.raises(KeyError):
            function_entry(ContractName.CROWDFUNDING, "withdrawAll")

    async def test_emitted_events_are_declared(self):
        ledger = InMemoryLedger(clock=lambda: NOW)
        ref = await ledger.transact(
            ContractName.CROWDFUNDING, "createCampaign",
            (ORGANIZER, "t", "d", 10, NOW + DAY, "", "Health"), sender=ORGANIZER,
        )
        receipt = await ledger.wait_for_confirmation(ref)

        assert receipt.find_event("CampaignCreated").args["campaignId"] == 0
        assert {e.name for e in receipt.events} <= set(event_names(ContractName.CROWDFUNDING))


class TestMemoryLedger:

    async def test_offline(self):
        ledger = InMemoryLedger()
        ledger.set_offline()
        with pytest.raises(LedgerUnavailableError):
            await ledger.chain_id()

    async def test_revert_message(self):
        ledger = InMemoryLedger(clock=lambda: NOW)
        with pytest.raises(TransactionRejected, match="execution reverted: Campaign does not exist"):
            await ledger.transact(ContractName.CROWDFUNDING, "donateToCampaign", (5,), sender=DONOR, value=1)

    async def test_unset_campaign_reads_as_zero_struct(self):
        ledger = InMemoryLedger()
        raw = await ledger.call(ContractName.CROWDFUNDING, "campaigns", 3)
        assert int(raw["owner"], 16) == 0


class TestWeb3Helpers:

    def test_plain_converts_structs_and_bytes(self):
        Pair = namedtuple("Pair", "owner data")
        value = [Pair(owner="0xabc", data=b"\x01\x02")]
        assert _plain(value) == [{"owner": "0xabc", "data": "0x0102"}]

    def test_signer_address(self):
        transport = Web3LedgerTransport(
            "http://localhost:8545",
            {ContractName.CROWDFUNDING: CONTRACT},
            private_key=EXAMPLE_KEY,
        )
        assert transport.signer_address == EXAMPLE_ADDRESS

    def test_address_arguments_checksummed(self):
        transport = Web3LedgerTransport("http://localhost:8545", {ContractName.CROWDFUNDING: CONTRACT})
        args = transport._prepare_args(ContractName.CROWDFUNDING, "getUserDonations", [EXAMPLE_ADDRESS])
        assert args == ["0x2c7536E3605D9C16a7a3D7b1898e529396a65c23"]
        assert transport.signer_address is None

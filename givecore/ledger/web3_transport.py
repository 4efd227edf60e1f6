"""
Web3 Ledger Transport

Talks to a JSON-RPC node through web3.py's async API.

Two signing modes:
- LEDGER_PRIVATE_KEY set: transactions are built, signed locally and sent
  raw. The connected identity must be the key's address.
- otherwise: ``eth_sendTransaction`` from a node-managed account (dev nodes).

Receipts are polled every ``poll_interval`` seconds. With no
``receipt_timeout`` the wait is unbounded; a pending transaction is not an
error.
"""

import asyncio
from typing import Any, Optional, Sequence

from web3 import AsyncWeb3
from web3.exceptions import ContractLogicError, TransactionNotFound, Web3Exception
from web3.logs import DISCARD

from ..observability import get_logger
from .abi import ABIS, event_names, function_entry
from .transport import (
    ConfirmationTimeout,
    ContractName,
    LedgerError,
    LedgerEvent,
    LedgerReceipt,
    LedgerTransport,
    LedgerUnavailableError,
    TransactionRejected,
)


logger = get_logger(__name__)

_CONNECTIVITY_ERRORS = (OSError, asyncio.TimeoutError)


def _plain(value: Any) -> Any:
    """Decoded ABI value -> plain Python (dicts, lists, hex strings)."""
    if hasattr(value, "_asdict"):
        return {k: _plain(v) for k, v in value._asdict().items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    return value


def _rpc_message(error: Exception) -> str:
    message = getattr(error, "message", None)
    if message:
        return str(message)
    if error.args and isinstance(error.args[0], dict):
        return str(error.args[0].get("message", error))
    return str(error)


class Web3LedgerTransport(LedgerTransport):
    """LedgerTransport over an HTTP JSON-RPC node."""

    def __init__(
        self,
        rpc_url: str,
        contract_addresses: dict[ContractName, str],
        private_key: Optional[str] = None,
        poll_interval: float = 2.0,
        receipt_timeout: Optional[float] = None,
        request_timeout: float = 30.0,
    ):
        self._w3 = AsyncWeb3(
            AsyncWeb3.AsyncHTTPProvider(rpc_url, request_kwargs={"timeout": request_timeout})
        )
        self._contracts = {
            name: self._w3.eth.contract(
                address=AsyncWeb3.to_checksum_address(address),
                abi=ABIS[name],
                decode_tuples=True,
            )
            for name, address in contract_addresses.items()
        }
        self._account = self._w3.eth.account.from_key(private_key) if private_key else None
        self._poll_interval = poll_interval
        self._receipt_timeout = receipt_timeout

    @property
    def signer_address(self) -> Optional[str]:
        """Address of the local signing key, if one is configured."""
        return self._account.address.lower() if self._account else None

    def _contract(self, name: ContractName):
        contract = self._contracts.get(name)
        if contract is None:
            raise LedgerError(f"No address configured for {name.value}")
        return contract

    def _prepare_args(self, contract: ContractName, function: str, args: Sequence[Any]) -> list:
        """Checksum address arguments; web3 refuses lower-case addresses."""
        inputs = function_entry(contract, function)["inputs"]
        prepared = []
        for param, arg in zip(inputs, args):
            if param["type"] == "address":
                arg = AsyncWeb3.to_checksum_address(arg)
            prepared.append(arg)
        return prepared

    async def chain_id(self) -> int:
        try:
            return await self._w3.eth.chain_id
        except (Web3Exception, *_CONNECTIVITY_ERRORS) as e:
            raise LedgerUnavailableError(f"Cannot reach ledger node: {e}") from e

    async def call(self, contract: ContractName, function: str, *args: Any) -> Any:
        fn = getattr(self._contract(contract).functions, function)(
            *self._prepare_args(contract, function, args)
        )
        try:
            result = await fn.call()
        except ContractLogicError as e:
            raise LedgerError(f"{function} reverted: {_rpc_message(e)}") from e
        except (Web3Exception, *_CONNECTIVITY_ERRORS) as e:
            raise LedgerUnavailableError(f"{function} failed: {e}") from e

        outputs = function_entry(contract, function)["outputs"]
        if len(outputs) > 1:
            if all(o["name"] for o in outputs):
                return {o["name"]: _plain(v) for o, v in zip(outputs, result)}
            return tuple(_plain(v) for v in result)
        return _plain(result)

    async def transact(
        self,
        contract: ContractName,
        function: str,
        args: Sequence[Any],
        sender: str,
        value: int = 0,
    ) -> str:
        fn = getattr(self._contract(contract).functions, function)(
            *self._prepare_args(contract, function, args)
        )
        try:
            if self._account is not None:
                if sender.lower() != self.signer_address:
                    raise TransactionRejected(
                        "connected account does not match the configured signing key"
                    )
                tx = await fn.build_transaction({
                    "from": self._account.address,
                    "value": value,
                    "nonce": await self._w3.eth.get_transaction_count(
                        self._account.address, "pending"
                    ),
                    "chainId": await self._w3.eth.chain_id,
                })
                signed = self._account.sign_transaction(tx)
                tx_hash = await self._w3.eth.send_raw_transaction(signed.raw_transaction)
            else:
                tx_hash = await fn.transact({
                    "from": AsyncWeb3.to_checksum_address(sender),
                    "value": value,
                })
        except ContractLogicError as e:
            raise TransactionRejected(_rpc_message(e)) from e
        except Web3Exception as e:
            raise TransactionRejected(_rpc_message(e)) from e
        except _CONNECTIVITY_ERRORS as e:
            raise LedgerUnavailableError(f"{function} not submitted: {e}") from e

        return tx_hash.to_0x_hex()

    async def wait_for_confirmation(self, transaction_ref: str) -> LedgerReceipt:
        loop = asyncio.get_running_loop()
        started = loop.time()

        while True:
            try:
                receipt = await self._w3.eth.get_transaction_receipt(transaction_ref)
                break
            except TransactionNotFound:
                pass
            except _CONNECTIVITY_ERRORS as e:
                logger.warning(
                    "Receipt poll failed; still waiting",
                    transaction_ref=transaction_ref,
                    error=str(e),
                )

            waited = loop.time() - started
            if self._receipt_timeout is not None and waited >= self._receipt_timeout:
                raise ConfirmationTimeout(transaction_ref, waited)
            await asyncio.sleep(self._poll_interval)

        return self._to_receipt(transaction_ref, receipt)

    async def find_receipt(self, transaction_ref: str) -> Optional[LedgerReceipt]:
        try:
            receipt = await self._w3.eth.get_transaction_receipt(transaction_ref)
        except TransactionNotFound:
            return None
        except _CONNECTIVITY_ERRORS as e:
            raise LedgerUnavailableError(f"receipt lookup failed: {e}") from e
        return self._to_receipt(transaction_ref, receipt)

    def _to_receipt(self, transaction_ref: str, receipt) -> LedgerReceipt:
        if receipt["status"] == 0:
            raise TransactionRejected("transaction reverted")

        return LedgerReceipt(
            transaction_ref=transaction_ref,
            block_number=receipt["blockNumber"],
            events=tuple(self._decode_events(receipt)),
        )

    def _decode_events(self, receipt) -> list[LedgerEvent]:
        events = []
        for name, contract in self._contracts.items():
            for event_name in event_names(name):
                event = getattr(contract.events, event_name)()
                for decoded in event.process_receipt(receipt, errors=DISCARD):
                    if decoded["address"].lower() != contract.address.lower():
                        continue
                    events.append(LedgerEvent(
                        name=decoded["event"],
                        args={k: _plain(v) for k, v in decoded["args"].items()},
                    ))
        return events

    async def close(self) -> None:
        provider = self._w3.provider
        disconnect = getattr(provider, "disconnect", None)
        if disconnect is not None:
            await disconnect()

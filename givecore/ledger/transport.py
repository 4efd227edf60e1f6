"""
Ledger Transport

The narrow interface the LedgerClient drives. A transport knows how to read
a contract function, submit a transaction, and wait for it to be mined;
it knows nothing about campaigns or claims.

Return shapes from ``call`` (identical across transports):
- a struct                     -> dict keyed by the ABI field names
- an array of structs          -> list of such dicts
- several named outputs        -> dict keyed by output name
- several unnamed outputs      -> tuple
- anything else                -> the plain value (int, str, bool, list)

Addresses in results come back in whatever case the node uses; the client
normalizes them.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Sequence


class ContractName(str, Enum):
    CROWDFUNDING = "crowdfunding"
    RESOURCE_SHARING = "resource_sharing"


# ============================================================
# EXCEPTIONS
# ============================================================

class LedgerError(Exception):
    """Base exception for ledger transport errors."""
    pass


class LedgerUnavailableError(LedgerError):
    """The node could not be reached or did not answer."""
    pass


class TransactionRejected(LedgerError):
    """
    The transaction was refused: user rejection, insufficient balance, or a
    contract condition that reverted.
    """

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class ConfirmationTimeout(LedgerError):
    """
    Gave up waiting for a receipt. The transaction may still be mined
    later.
    """

    def __init__(self, transaction_ref: str, waited: float):
        self.transaction_ref = transaction_ref
        self.waited = waited
        super().__init__(
            f"No receipt for {transaction_ref} after {waited:.0f}s; "
            f"it may still be mined"
        )


# ============================================================
# RECEIPTS
# ============================================================

@dataclass(frozen=True)
class LedgerEvent:
    """A decoded contract event."""
    name: str
    args: dict = field(default_factory=dict)


@dataclass(frozen=True)
class LedgerReceipt:
    """A mined, successful transaction."""
    transaction_ref: str
    block_number: int
    events: tuple = ()

    def find_event(self, name: str) -> Optional[LedgerEvent]:
        for event in self.events:
            if event.name == name:
                return event
        return None


# ============================================================
# TRANSPORT INTERFACE
# ============================================================

class LedgerTransport(ABC):
    """Abstract async ledger transport."""

    @abstractmethod
    async def chain_id(self) -> int:
        """Network identifier of the node. Raises LedgerUnavailableError."""
        pass

    @abstractmethod
    async def call(self, contract: ContractName, function: str, *args: Any) -> Any:
        """Invoke a read-only contract function."""
        pass

    @abstractmethod
    async def transact(
        self,
        contract: ContractName,
        function: str,
        args: Sequence[Any],
        sender: str,
        value: int = 0,
    ) -> str:
        """
        Submit a state-changing call and return its transaction reference
        without waiting for it to be mined.

        Raises TransactionRejected if the node refuses it outright.
        """
        pass

    @abstractmethod
    async def wait_for_confirmation(self, transaction_ref: str) -> LedgerReceipt:
        """
        Wait until the transaction is mined.

        Raises TransactionRejected if it was mined but reverted, and
        ConfirmationTimeout if the transport has a wait limit and hit it.
        """
        pass

    @abstractmethod
    async def find_receipt(self, transaction_ref: str) -> Optional[LedgerReceipt]:
        """
        Look up a transaction once, without waiting.

        Returns None while it is still pending. Raises TransactionRejected
        if it was mined but reverted.
        """
        pass

    async def close(self) -> None:
        """Release network resources. Default: nothing to release."""
        pass

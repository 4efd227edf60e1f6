# Ledger access: the transport interface, its two implementations, and the
# typed client everything else goes through.

from .client import LedgerClient, MalformedRecordError
from .memory import InMemoryLedger
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
from .units import UnitError, from_native, to_native

__all__ = [
    "ConfirmationTimeout",
    "ContractName",
    "InMemoryLedger",
    "LedgerClient",
    "LedgerError",
    "LedgerEvent",
    "LedgerReceipt",
    "LedgerTransport",
    "LedgerUnavailableError",
    "MalformedRecordError",
    "TransactionRejected",
    "UnitError",
    "from_native",
    "to_native",
]

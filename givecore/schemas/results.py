"""
Tagged Result Types

Every call that crosses the ledger or off-chain store boundary returns one of
these instead of raising. Callers branch on ``ok`` and, on failure, on
``kind``:

- READINESS: ledger not initialized, wrong network, no connected account
- TRANSACTION: user rejection, insufficient balance, reverted condition
- VALIDATION: caller input rejected before any network call
- ALREADY_TERMINAL: claim is already Completed or Cancelled

Remote-store trouble never shows up here; the store falls back to its local
backend and reports where the value came from instead.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, Optional, TypeVar


T = TypeVar("T")


class FailureKind(str, Enum):
    """Why a read, transaction or workflow did not succeed."""
    READINESS = "readiness"
    TRANSACTION = "transaction"
    VALIDATION = "validation"
    ALREADY_TERMINAL = "already_terminal"


class StoreSource(str, Enum):
    """Which backend produced a value returned by the off-chain store."""
    REMOTE = "remote"
    LOCAL = "local"
    NONE = "none"


@dataclass(frozen=True)
class ReadResult(Generic[T]):
    """
    Outcome of a ledger read.

    ``ok`` with ``value=None`` is an explicit not-found; ``ok`` with an empty
    list is an explicit empty result. Partial records are never returned.
    """
    ok: bool
    value: Optional[T] = None
    kind: Optional[FailureKind] = None
    reason: str = ""

    @property
    def found(self) -> bool:
        return self.ok and self.value is not None

    @classmethod
    def success(cls, value: Optional[T]) -> "ReadResult[T]":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, kind: FailureKind, reason: str) -> "ReadResult[T]":
        return cls(ok=False, kind=kind, reason=reason)


@dataclass(frozen=True)
class TxResult:
    """Outcome of one ledger transaction, after confirmation."""
    ok: bool
    transaction_ref: Optional[str] = None
    entity_id: Optional[int] = None
    block_number: Optional[int] = None
    events: tuple = ()
    kind: Optional[FailureKind] = None
    reason: str = ""

    @classmethod
    def success(
        cls,
        transaction_ref: str,
        entity_id: Optional[int] = None,
        block_number: Optional[int] = None,
        events: tuple = (),
    ) -> "TxResult":
        return cls(
            ok=True,
            transaction_ref=transaction_ref,
            entity_id=entity_id,
            block_number=block_number,
            events=events,
        )

    @classmethod
    def failure(cls, kind: FailureKind, reason: str) -> "TxResult":
        return cls(ok=False, kind=kind, reason=reason)


@dataclass(frozen=True)
class WorkflowResult:
    """
    Outcome of a LifecycleCoordinator workflow.

    Wraps the ledger transaction (if one was submitted) and carries any
    workflow-specific payload in ``data`` (new ids, claim identity, receipt).
    """
    ok: bool
    transaction_ref: Optional[str] = None
    entity_id: Optional[int] = None
    kind: Optional[FailureKind] = None
    reason: str = ""
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_tx(cls, tx: TxResult, **data: Any) -> "WorkflowResult":
        if not tx.ok:
            return cls(ok=False, kind=tx.kind, reason=tx.reason)
        return cls(
            ok=True,
            transaction_ref=tx.transaction_ref,
            entity_id=tx.entity_id,
            data=data,
        )

    @classmethod
    def success(cls, **data: Any) -> "WorkflowResult":
        return cls(ok=True, data=data)

    @classmethod
    def failure(cls, kind: FailureKind, reason: str) -> "WorkflowResult":
        return cls(ok=False, kind=kind, reason=reason)

    @classmethod
    def invalid(cls, reason: str) -> "WorkflowResult":
        return cls.failure(FailureKind.VALIDATION, reason)


@dataclass(frozen=True)
class StoreResult:
    """
    Outcome of an off-chain store call.

    ``ok`` is False only when even the local backend could not serve the
    call. A missing value is ``ok`` with ``value=None`` and
    ``source=StoreSource.NONE``.
    """
    ok: bool
    value: Any = None
    source: StoreSource = StoreSource.NONE
    remote_synced: bool = False
    reason: str = ""

    @property
    def found(self) -> bool:
        return self.ok and self.value is not None

    @classmethod
    def empty(cls) -> "StoreResult":
        return cls(ok=True, value=None, source=StoreSource.NONE)

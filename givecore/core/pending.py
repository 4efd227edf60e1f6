"""
Pending Overlay

Optimistic state for transactions the caller has started but the ledger
reads do not show yet.

Lifecycle of an entry:

    register()  -> SUBMITTING   (before the transaction is sent)
    confirm()   -> CONFIRMED    (receipt received)
    drop()      -> gone         (transaction failed)
    abandon()   -> ABANDONED    (caller stopped waiting; ref still in flight)
    resolve()   -> CONFIRMED or gone, for abandoned refs the ledger decided
    reconcile() -> gone         (a ledger read started after confirmation)

Reconciliation removes entries; it never merges them into ledger records.
A read only reconciles entries confirmed before the read began, tracked
with ``mark()``:

    mark = overlay.mark()
    campaign = await ledger.read_campaign(7)
    overlay.reconcile(PendingKind.DONATION, 7, mark)
"""

import itertools
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Mapping, Optional, Union

from ..identity import normalize_identity
from ..schemas import ClaimStatus


class PendingKind(str, Enum):
    CAMPAIGN = "campaign"
    DONATION = "donation"
    RESOURCE = "resource"
    CLAIM = "claim"
    CLAIM_COMPLETION = "claim_completion"
    CLAIM_CANCELLATION = "claim_cancellation"


class PendingStatus(str, Enum):
    SUBMITTING = "submitting"
    ABANDONED = "abandoned"
    CONFIRMED = "confirmed"


_TERMINAL_KINDS = {
    PendingKind.CLAIM_COMPLETION: ClaimStatus.COMPLETED,
    PendingKind.CLAIM_CANCELLATION: ClaimStatus.CANCELLED,
}


@dataclass
class PendingEntry:
    kind: PendingKind
    entity_id: Optional[int]
    actor: str
    amount: Union[Decimal, int] = 0
    claim_index: Optional[int] = None
    key: str = field(default_factory=lambda: uuid.uuid4().hex)
    status: PendingStatus = PendingStatus.SUBMITTING
    transaction_ref: Optional[str] = None
    confirmed_seq: Optional[int] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class PendingOverlay:
    """In-process registry of not-yet-observed transactions."""

    def __init__(self):
        self._entries: dict[str, PendingEntry] = {}
        self._terminal: dict[tuple[int, int], ClaimStatus] = {}
        self._seq = itertools.count(1)
        self._last_seq = 0

    def _next(self) -> int:
        self._last_seq = next(self._seq)
        return self._last_seq

    def mark(self) -> int:
        """Sequence point to pass to ``reconcile`` after a read."""
        return self._next()

    def register(
        self,
        kind: PendingKind,
        entity_id: Optional[int],
        actor: str,
        amount: Union[Decimal, int] = 0,
        claim_index: Optional[int] = None,
    ) -> PendingEntry:
        entry = PendingEntry(
            kind=kind,
            entity_id=entity_id,
            actor=normalize_identity(actor),
            amount=amount,
            claim_index=claim_index,
        )
        self._entries[entry.key] = entry
        return entry

    def confirm(self, key: str, transaction_ref: Optional[str], entity_id: Optional[int] = None) -> None:
        entry = self._entries.get(key)
        if entry is None:
            return
        entry.status = PendingStatus.CONFIRMED
        entry.transaction_ref = transaction_ref
        entry.confirmed_seq = self._next()
        if entity_id is not None and entry.entity_id is None:
            entry.entity_id = entity_id
        terminal = _TERMINAL_KINDS.get(entry.kind)
        if terminal is not None and entry.claim_index is not None:
            self._terminal[(entry.entity_id, entry.claim_index)] = terminal

    def drop(self, key: str) -> None:
        self._entries.pop(key, None)

    def abandon(self, key: str, transaction_ref: Optional[str]) -> None:
        """
        The submitting caller was cancelled. With a ref the entry waits for
        ``resolve``; without one nothing reached the ledger and it is dropped.
        """
        entry = self._entries.get(key)
        if entry is None:
            return
        if transaction_ref is None:
            self.drop(key)
            return
        entry.status = PendingStatus.ABANDONED
        entry.transaction_ref = transaction_ref

    def resolve(self, outcomes: Mapping[str, bool]) -> None:
        """Settle abandoned entries from ``LedgerClient.resolve_in_flight``."""
        for entry in list(self._entries.values()):
            if entry.status != PendingStatus.ABANDONED or entry.transaction_ref not in outcomes:
                continue
            if outcomes[entry.transaction_ref]:
                self.confirm(entry.key, entry.transaction_ref)
            else:
                self.drop(entry.key)

    def tracks(self, transaction_ref: str) -> bool:
        return any(e.transaction_ref == transaction_ref for e in self._entries.values())

    def reconcile(self, kind: PendingKind, entity_id: Optional[int], read_mark: int) -> int:
        """
        Remove entries of ``kind`` for ``entity_id`` (all ids if None) that
        were confirmed before ``read_mark``. Returns how many were removed.
        """
        stale = [
            key for key, e in self._entries.items()
            if e.kind == kind
            and (entity_id is None or e.entity_id == entity_id)
            and e.status == PendingStatus.CONFIRMED
            and e.confirmed_seq < read_mark
        ]
        for key in stale:
            del self._entries[key]
        return len(stale)

    def entries(self, kind: Optional[PendingKind] = None, entity_id: Optional[int] = None) -> list[PendingEntry]:
        return [
            e for e in self._entries.values()
            if (kind is None or e.kind == kind)
            and (entity_id is None or e.entity_id == entity_id)
        ]

    def pending_amount(self, kind: PendingKind, entity_id: int) -> Union[Decimal, int]:
        """Sum of amounts not yet seen in a ledger read."""
        start = Decimal(0) if kind == PendingKind.DONATION else 0
        return sum((e.amount for e in self.entries(kind, entity_id)), start)

    def confirmed_terminal(self, resource_id: int, index: int) -> Optional[ClaimStatus]:
        """Terminal status this process has seen confirmed for a claim."""
        return self._terminal.get((resource_id, index))

    def __len__(self) -> int:
        return len(self._entries)

"""
Notification Journal

Per-identity, bounded, newest-first list of notifications, persisted in the
OffchainStore under the owner's identity.

Stored document:
    {"next_seq": 7, "entries": [{...newest...}, ..., {...oldest...}]}

``next_seq`` lives in the document so ids are never reused, even after
eviction or ``clear``. The unread count is never stored; it is recomputed
from ``entries`` on every read.
"""

import asyncio
from collections import defaultdict
from typing import Optional

from ..identity import normalize_identity
from ..observability import get_logger
from ..schemas import Notification, NotificationType
from ..store import NOTIFICATIONS, OffchainStore


logger = get_logger(__name__)

MAX_NOTIFICATIONS = 50


# Pure transformations over the entry list

def prepend_bounded(entries: list[Notification], item: Notification, limit: int = MAX_NOTIFICATIONS) -> list[Notification]:
    return ([item] + list(entries))[:limit]


def with_read(entries: list[Notification], notification_id: int) -> list[Notification]:
    return [
        n.model_copy(update={"read": True}) if n.id == notification_id else n
        for n in entries
    ]


def all_read(entries: list[Notification]) -> list[Notification]:
    return [n.model_copy(update={"read": True}) for n in entries]


def without(entries: list[Notification], notification_id: int) -> list[Notification]:
    return [n for n in entries if n.id != notification_id]


def count_unread(entries: list[Notification]) -> int:
    return sum(1 for n in entries if not n.read)


class NotificationJournal:
    """
    Read-modify-write journal. Writes for one owner are serialized within
    the process; concurrent writers in other processes are last-write-wins.
    """

    def __init__(self, store: OffchainStore, limit: int = MAX_NOTIFICATIONS):
        self._store = store
        self._limit = limit
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def _load(self, owner: str) -> tuple[int, list[Notification]]:
        result = await self._store.get(NOTIFICATIONS, owner)
        if not result.found or not isinstance(result.value, dict):
            return 1, []
        doc = result.value
        entries = [Notification.model_validate(e) for e in doc.get("entries", [])]
        highest = max((n.id for n in entries), default=0)
        next_seq = max(int(doc.get("next_seq", 1)), highest + 1)
        return next_seq, entries

    async def _save(self, owner: str, next_seq: int, entries: list[Notification]) -> None:
        await self._store.put(NOTIFICATIONS, owner, {
            "next_seq": next_seq,
            "entries": [n.model_dump(mode="json") for n in entries],
        })

    async def list(self, owner: str) -> list[Notification]:
        _, entries = await self._load(normalize_identity(owner))
        return entries

    async def unread_count(self, owner: str) -> int:
        return count_unread(await self.list(owner))

    async def append(
        self,
        owner: str,
        type: NotificationType,
        title: str,
        message: str = "",
        link: Optional[str] = None,
    ) -> Notification:
        owner = normalize_identity(owner)
        async with self._locks[owner]:
            next_seq, entries = await self._load(owner)
            notification = Notification(
                id=next_seq, type=type, title=title, message=message, link=link
            )
            await self._save(owner, next_seq + 1, prepend_bounded(entries, notification, self._limit))
        logger.debug("Notification added", owner=owner, notification_id=notification.id, title=title)
        return notification

    async def mark_read(self, owner: str, notification_id: int) -> bool:
        """Returns False if no such notification."""
        owner = normalize_identity(owner)
        async with self._locks[owner]:
            next_seq, entries = await self._load(owner)
            if not any(n.id == notification_id for n in entries):
                return False
            await self._save(owner, next_seq, with_read(entries, notification_id))
        return True

    async def mark_all_read(self, owner: str) -> int:
        """Returns how many were unread."""
        owner = normalize_identity(owner)
        async with self._locks[owner]:
            next_seq, entries = await self._load(owner)
            unread = count_unread(entries)
            if unread:
                await self._save(owner, next_seq, all_read(entries))
        return unread

    async def remove(self, owner: str, notification_id: int) -> bool:
        owner = normalize_identity(owner)
        async with self._locks[owner]:
            next_seq, entries = await self._load(owner)
            remaining = without(entries, notification_id)
            if len(remaining) == len(entries):
                return False
            await self._save(owner, next_seq, remaining)
        return True

    async def clear(self, owner: str) -> None:
        owner = normalize_identity(owner)
        async with self._locks[owner]:
            next_seq, _ = await self._load(owner)
            await self._save(owner, next_seq, [])

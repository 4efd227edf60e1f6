"""
Tests for the notification journal: bounded, newest first, ids never reused.
"""

import asyncio

import pytest

from givecore.core import MAX_NOTIFICATIONS, NotificationJournal
from givecore.core.notifications import count_unread, prepend_bounded
from givecore.schemas import Notification, NotificationType

from .conftest import DONOR, ORGANIZER


@pytest.fixture
def journal(store):
    return NotificationJournal(store)


class TestBound:

    async def test_never_exceeds_fifty(self, journal):
        """The 51st append evicts the oldest entry."""
        for i in range(MAX_NOTIFICATIONS + 1):
            await journal.append(DONOR, NotificationType.INFO, f"n{i}")

        entries = await journal.list(DONOR)
        assert len(entries) == MAX_NOTIFICATIONS
        assert entries[0].title == f"n{MAX_NOTIFICATIONS}"
        assert entries[-1].title == "n1"

    def test_prepend_bounded_is_pure(self):
        original = [Notification(id=1, title="a")]
        result = prepend_bounded(original, Notification(id=2, title="b"), limit=1)

        assert [n.id for n in result] == [2]
        assert [n.id for n in original] == [1]

    async def test_concurrent_appends_keep_every_entry(self, journal):
        """Appends for one owner are serialized."""
        await asyncio.gather(*(journal.append(DONOR, NotificationType.INFO, f"n{i}") for i in range(10)))

        entries = await journal.list(DONOR)
        assert len(entries) == 10
        assert sorted(n.id for n in entries) == list(range(1, 11))


class TestReadState:

    async def test_unread_count_recomputed(self, journal):
        first = await journal.append(DONOR, NotificationType.SUCCESS, "one")
        await journal.append(DONOR, NotificationType.SUCCESS, "two")

        assert await journal.unread_count(DONOR) == 2
        assert await journal.mark_read(DONOR, first.id)
        assert await journal.unread_count(DONOR) == 1

    async def test_mark_all_read_returns_previous_unread(self, journal):
        for title in ("a", "b", "c"):
            await journal.append(DONOR, NotificationType.INFO, title)

        assert await journal.mark_all_read(DONOR) == 3
        assert count_unread(await journal.list(DONOR)) == 0
        assert await journal.mark_all_read(DONOR) == 0

    async def test_mark_unknown_id(self, journal):
        assert not await journal.mark_read(DONOR, 42)


class TestRemoveAndClear:

    async def test_remove_one(self, journal):
        keep = await journal.append(DONOR, NotificationType.INFO, "keep")
        drop = await journal.append(DONOR, NotificationType.INFO, "drop")

        assert await journal.remove(DONOR, drop.id)
        assert [n.id for n in await journal.list(DONOR)] == [keep.id]
        assert not await journal.remove(DONOR, drop.id)

    async def test_ids_not_reused_after_clear(self, journal):
        """Sequence numbers continue after the list is cleared."""
        await journal.append(DONOR, NotificationType.INFO, "a")
        await journal.append(DONOR, NotificationType.INFO, "b")
        await journal.clear(DONOR)

        assert await journal.list(DONOR) == []
        again = await journal.append(DONOR, NotificationType.INFO, "c")
        assert again.id == 3

    async def test_owners_are_isolated(self, journal):
        await journal.append(DONOR, NotificationType.INFO, "for donor")
        assert await journal.list(ORGANIZER) == []

    async def test_owner_identity_case_insensitive(self, journal):
        await journal.append(DONOR.upper().replace("0X", "0x"), NotificationType.INFO, "hi")
        assert len(await journal.list(DONOR)) == 1

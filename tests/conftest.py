"""
Shared fixtures: a fake remote backend with a failure switch, a manual
clock, and fully wired services over the in-memory ledger.
"""

import copy
from typing import Any, Optional, Sequence

import pytest

from givecore.config import Settings
from givecore.ledger import InMemoryLedger
from givecore.services import build_services
from givecore.store import LocalBackend, OffchainStore, RemoteBackend, RemoteStoreError


ORGANIZER = "0x" + "a1" * 20
DONOR = "0x" + "b2" * 20
OTHER = "0x" + "c3" * 20

NOW = 1_750_000_000
DAY = 86_400


class FakeClock:
    """Manually advanced clock shared by the ledger and the core."""

    def __init__(self, now: float = NOW):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRemoteBackend(RemoteBackend):
    """Dict-backed remote store. Set ``failing = True`` to simulate an outage."""

    def __init__(self):
        self.data: dict[str, dict[str, Any]] = {}
        self.failing = False
        self.calls = 0

    def _check(self) -> None:
        self.calls += 1
        if self.failing:
            raise RemoteStoreError("connection refused")

    async def fetch(self, collection: str, key: str) -> Optional[Any]:
        self._check()
        return copy.deepcopy(self.data.get(collection, {}).get(key))

    async def fetch_many(self, collection: str, keys: Sequence[str]) -> dict[str, Any]:
        self._check()
        docs = self.data.get(collection, {})
        return {k: copy.deepcopy(docs[k]) for k in keys if k in docs}

    async def upsert(self, collection: str, key: str, value: Any) -> None:
        self._check()
        self.data.setdefault(collection, {})[key] = copy.deepcopy(value)

    async def append(self, collection: str, key: str, item: Any) -> None:
        self._check()
        self.data.setdefault(collection, {}).setdefault(key, []).append(copy.deepcopy(item))

    async def ping(self) -> None:
        self._check()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def remote():
    return FakeRemoteBackend()


@pytest.fixture
def store(remote):
    return OffchainStore(LocalBackend(), remote)


@pytest.fixture
def memory_ledger(clock):
    return InMemoryLedger(clock=clock)


@pytest.fixture
async def services(memory_ledger, remote, clock):
    services = await build_services(Settings(), transport=memory_ledger, remote=remote, clock=clock)
    yield services
    await services.close()

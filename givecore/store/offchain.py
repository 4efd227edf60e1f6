"""
Off-Chain Store

Best-effort storage for profiles, chat, category labels, receipts and
notification journals. Two backends, one policy:

WRITE (put / append):
    Local first, then Remote. A Remote failure is logged and recorded in
    metrics; the write still succeeds. ``remote_synced`` tells the caller
    whether the Remote copy was updated.

READ (get / list):
    Remote first when configured. A value found there replaces the Local
    copy (Remote wins, no merge). Remote unconfigured, unreachable or
    missing the key -> the Local value. Neither has it -> an explicit empty
    result. Reads never raise.

Keys are normalized by ``store_key`` so one identity never maps to two
entries.
"""

import dataclasses
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Optional, Union

from pydantic import ValidationError

from ..identity import normalize_identity
from ..observability import get_logger, get_metrics
from ..schemas import (
    CategoryRecord,
    ChatMessage,
    DonationReceipt,
    StoreResult,
    StoreSource,
    UserProfile,
)
from .backends import LocalBackend, LocalStoreError, RemoteBackend, RemoteStoreError


logger = get_logger(__name__)


PROFILES = "profiles"
CATEGORIES = "categories"
CHAT = "chat"
RECEIPTS = "receipts"
NOTIFICATIONS = "notifications"

PROFILE_COUNTERS = ("total_campaigns", "total_claims")


def store_key(key: Union[str, int]) -> str:
    """Canonical form of a store key: stripped and lower-cased."""
    return str(key).strip().lower()


def receipt_key(campaign_id: int, donor: str) -> str:
    return f"{campaign_id}_{normalize_identity(donor)}"


def thread_key(resource_id: int, claim_id: Union[str, int]) -> str:
    return f"{resource_id}_{claim_id}"


class OffchainStore:
    """
    Local-first, remote-preferred key/value store.

    Usage:
        store = OffchainStore(LocalBackend(), PostgresRemoteBackend(config))
        result = await store.get_profile("0xAbC...")
        if result.found:
            print(result.value.display_name, result.source)
    """

    def __init__(self, local: Optional[LocalBackend] = None, remote: Optional[RemoteBackend] = None):
        self._local = local or LocalBackend()
        self._remote = remote

    @property
    def local(self) -> LocalBackend:
        return self._local

    @property
    def remote(self) -> Optional[RemoteBackend]:
        return self._remote

    @property
    def remote_configured(self) -> bool:
        return self._remote is not None

    async def remote_status(self) -> str:
        if self._remote is None:
            return "unconfigured"
        try:
            await self._remote.ping()
        except RemoteStoreError as e:
            return f"unreachable: {e}"
        return "reachable"

    async def close(self) -> None:
        if self._remote is not None:
            await self._remote.close()

    def _remote_failed(self, operation: str, collection: str, key: Any, error: Exception) -> None:
        get_metrics().record_remote_fallback()
        logger.warning(
            "Remote store unavailable; using local backend",
            operation=operation,
            collection=collection,
            key=str(key),
            error=str(error),
        )

    # ============================================================
    # GENERIC OPERATIONS
    # ============================================================

    async def get(self, collection: str, key: Union[str, int]) -> StoreResult:
        key = store_key(key)

        if self._remote is not None:
            try:
                value = await self._remote.fetch(collection, key)
            except RemoteStoreError as e:
                self._remote_failed("get", collection, key, e)
            else:
                if value is not None:
                    self._refresh_local(collection, key, value)
                    return StoreResult(ok=True, value=value, source=StoreSource.REMOTE, remote_synced=True)

        value = self._local.get(collection, key)
        if value is None:
            return StoreResult.empty()
        return StoreResult(ok=True, value=value, source=StoreSource.LOCAL)

    async def list(self, collection: str, keys: Iterable[Union[str, int]]) -> StoreResult:
        """
        Batch ``get``. ``value`` maps each found key to its value; keys found
        nowhere are left out. ``source`` is REMOTE only if every value came
        from Remote.
        """
        keys = list(dict.fromkeys(store_key(k) for k in keys))
        found: dict[str, Any] = {}
        remote_ok = False

        if self._remote is not None and keys:
            try:
                found = await self._remote.fetch_many(collection, keys)
                remote_ok = True
            except RemoteStoreError as e:
                self._remote_failed("list", collection, ",".join(keys), e)
                found = {}
            for key, value in found.items():
                self._refresh_local(collection, key, value)

        from_local = 0
        for key in keys:
            if key not in found:
                value = self._local.get(collection, key)
                if value is not None:
                    found[key] = value
                    from_local += 1

        if not found:
            source = StoreSource.NONE
        elif from_local:
            source = StoreSource.LOCAL
        else:
            source = StoreSource.REMOTE
        return StoreResult(ok=True, value=found, source=source, remote_synced=remote_ok)

    async def put(self, collection: str, key: Union[str, int], value: Any) -> StoreResult:
        key = store_key(key)
        try:
            self._local.put(collection, key, value)
        except LocalStoreError as e:
            logger.error("Local store rejected value", collection=collection, key=key, error=str(e))
            return StoreResult(ok=False, reason=str(e))

        synced = False
        if self._remote is not None:
            try:
                await self._remote.upsert(collection, key, value)
                synced = True
            except RemoteStoreError as e:
                self._remote_failed("put", collection, key, e)

        return StoreResult(ok=True, value=value, source=StoreSource.LOCAL, remote_synced=synced)

    async def append(self, collection: str, key: Union[str, int], item: Any) -> StoreResult:
        """Append to the list under key. ``value`` is the Local list afterwards."""
        key = store_key(key)
        current = self._local.get(collection, key)
        items = current if isinstance(current, list) else []
        items.append(item)
        try:
            self._local.put(collection, key, items)
        except LocalStoreError as e:
            logger.error("Local store rejected value", collection=collection, key=key, error=str(e))
            return StoreResult(ok=False, reason=str(e))

        synced = False
        if self._remote is not None:
            try:
                await self._remote.append(collection, key, item)
                synced = True
            except RemoteStoreError as e:
                self._remote_failed("append", collection, key, e)

        return StoreResult(ok=True, value=items, source=StoreSource.LOCAL, remote_synced=synced)

    def _refresh_local(self, collection: str, key: str, value: Any) -> None:
        try:
            self._local.put(collection, key, value)
        except LocalStoreError as e:
            logger.warning("Could not refresh local copy", collection=collection, key=key, error=str(e))

    # ============================================================
    # TYPED ACCESSORS
    # ============================================================

    @staticmethod
    def _typed(result: StoreResult, parse: Callable[[Any], Any]) -> StoreResult:
        if not result.found:
            return result
        try:
            return dataclasses.replace(result, value=parse(result.value))
        except (ValidationError, TypeError, ValueError) as e:
            logger.warning("Stored document does not parse", error=str(e))
            return dataclasses.replace(result, ok=False, value=None, reason=f"Malformed document: {e}")

    # --- profiles ---

    async def get_profile(self, identity: str) -> StoreResult:
        result = await self.get(PROFILES, normalize_identity(identity))
        return self._typed(result, UserProfile.model_validate)

    async def get_profiles(self, identities: Iterable[str]) -> StoreResult:
        result = await self.list(PROFILES, [normalize_identity(i) for i in identities])
        return self._typed(
            result, lambda docs: {k: UserProfile.model_validate(v) for k, v in docs.items()}
        )

    async def save_profile(self, profile: UserProfile) -> StoreResult:
        profile = profile.model_copy(update={"updated_at": datetime.now(timezone.utc)})
        result = await self.put(PROFILES, profile.wallet_address, profile.model_dump(mode="json"))
        if result.ok:
            return dataclasses.replace(result, value=profile)
        return result

    async def increment_profile_counter(self, identity: str, counter: str) -> StoreResult:
        """Add one to ``total_campaigns`` or ``total_claims``, creating the profile if needed."""
        if counter not in PROFILE_COUNTERS:
            raise ValueError(f"Unknown profile counter: {counter}")
        identity = normalize_identity(identity)
        current = await self.get_profile(identity)
        profile = current.value if current.found else UserProfile(wallet_address=identity)
        profile = profile.model_copy(update={counter: getattr(profile, counter) + 1})
        return await self.save_profile(profile)

    # --- categories ---

    async def get_category(self, campaign_id: int) -> StoreResult:
        result = await self.get(CATEGORIES, campaign_id)
        return self._typed(result, CategoryRecord.model_validate)

    async def get_categories(self, campaign_ids: Iterable[int]) -> StoreResult:
        result = await self.list(CATEGORIES, campaign_ids)
        return self._typed(
            result,
            lambda docs: {int(k): CategoryRecord.model_validate(v) for k, v in docs.items()},
        )

    async def save_category(self, campaign_id: int, category: str) -> StoreResult:
        record = CategoryRecord(campaign_id=campaign_id, category=category)
        result = await self.put(CATEGORIES, campaign_id, record.model_dump(mode="json"))
        if result.ok:
            return dataclasses.replace(result, value=record)
        return result

    # --- chat ---

    async def get_chat(self, resource_id: int, claim_id: Union[str, int]) -> StoreResult:
        """Messages of one thread, oldest first."""
        result = await self.get(CHAT, thread_key(resource_id, claim_id))
        return self._typed(
            result,
            lambda docs: sorted(
                (ChatMessage.model_validate(d) for d in docs), key=lambda m: m.created_at
            ),
        )

    async def post_chat_message(self, message: ChatMessage) -> StoreResult:
        key = thread_key(message.resource_id, message.claim_id)
        result = await self.append(CHAT, key, message.model_dump(mode="json"))
        if result.ok:
            return dataclasses.replace(result, value=message)
        return result

    # --- receipts ---

    async def save_receipt(self, receipt: DonationReceipt) -> StoreResult:
        key = receipt_key(receipt.campaign_id, receipt.donor)
        result = await self.put(RECEIPTS, key, receipt.model_dump(mode="json"))
        if result.ok:
            return dataclasses.replace(result, value=receipt)
        return result

    async def get_receipt(self, campaign_id: int, donor: str) -> StoreResult:
        result = await self.get(RECEIPTS, receipt_key(campaign_id, donor))
        return self._typed(result, DonationReceipt.model_validate)

"""
Service Wiring

Builds the ledger client, off-chain store, journal, overlay, coordinator and
catalog reader from Settings. Used by the HTTP app, the CLI and the demo.

Mode is determined by configuration:
- LEDGER_DRIVER / LEDGER_RPC_URL: in-memory ledger or a web3 node
- REMOTE_STORE_URL / REMOTE_STORE_HOST: PostgreSQL remote backend, or none
- LOCAL_CACHE_PATH: persist the local backend to a JSON file

Misconfiguration degrades to the in-memory ledger with a warning instead of
refusing to start.
"""

import time
from dataclasses import dataclass
from typing import Callable, Optional

from .config import LedgerConfig, LedgerDriver, Settings
from .core import CatalogReader, LifecycleCoordinator, NotificationJournal, PendingOverlay
from .ledger import ContractName, InMemoryLedger, LedgerClient, LedgerTransport
from .observability import get_logger
from .store import LocalBackend, OffchainStore, RemoteBackend


logger = get_logger(__name__)


@dataclass
class Services:
    settings: Settings
    ledger: LedgerClient
    store: OffchainStore
    journal: NotificationJournal
    overlay: PendingOverlay
    coordinator: LifecycleCoordinator
    catalog: CatalogReader

    async def close(self) -> None:
        await self.ledger.close()
        await self.store.close()


def create_transport(config: LedgerConfig) -> LedgerTransport:
    """
    Create the ledger transport for the configured driver.

    Returns:
        InMemoryLedger for development/testing
        Web3LedgerTransport when a node and contract addresses are configured
    """
    if config.driver == LedgerDriver.MEMORY:
        logger.info("Using in-memory ledger (no persistence)")
        return InMemoryLedger(chain_id=config.chain_id)

    missing = config.missing_for_web3()
    if missing:
        logger.warning(
            "web3 ledger driver selected but not fully configured; falling back to in-memory ledger",
            missing=missing,
        )
        return InMemoryLedger(chain_id=config.chain_id)

    from .ledger.web3_transport import Web3LedgerTransport

    logger.info("Using web3 ledger", rpc_url=config.rpc_url, chain_id=config.chain_id)
    return Web3LedgerTransport(
        rpc_url=config.rpc_url,
        contract_addresses={
            ContractName.CROWDFUNDING: config.crowdfunding_address,
            ContractName.RESOURCE_SHARING: config.resource_sharing_address,
        },
        private_key=config.private_key,
        poll_interval=config.poll_interval,
        receipt_timeout=config.receipt_timeout,
    )


def create_store(settings: Settings, remote: Optional[RemoteBackend] = None) -> OffchainStore:
    local = LocalBackend(settings.local_cache_path)
    if remote is None and settings.remote_store is not None:
        from .store.postgres import PostgresRemoteBackend

        remote = PostgresRemoteBackend(settings.remote_store)
        logger.info(
            "Remote off-chain store configured",
            url=settings.remote_store.to_url(include_password=False),
        )
    elif remote is None:
        logger.info("No remote off-chain store configured; local backend only")
    return OffchainStore(local, remote)


async def build_services(
    settings: Optional[Settings] = None,
    transport: Optional[LedgerTransport] = None,
    remote: Optional[RemoteBackend] = None,
    clock: Callable[[], float] = time.time,
) -> Services:
    """
    Wire everything together and initialize the ledger client.

    An unready ledger is not an error here: the client reports READINESS
    failures until a later ``initialize()`` succeeds.
    """
    settings = settings or Settings.from_env()
    transport = transport or create_transport(settings.ledger)

    ledger = LedgerClient(transport, expected_chain_id=settings.ledger.chain_id)
    await ledger.initialize()
    if settings.ledger.account:
        ledger.connect(settings.ledger.account)

    store = create_store(settings, remote)
    journal = NotificationJournal(store)
    overlay = PendingOverlay()
    return Services(
        settings=settings,
        ledger=ledger,
        store=store,
        journal=journal,
        overlay=overlay,
        coordinator=LifecycleCoordinator(ledger, store, journal, overlay, clock=clock),
        catalog=CatalogReader(
            ledger, store, overlay, journal=journal, clock=clock,
            content_gateway=settings.content_gateway_url,
        ),
    )

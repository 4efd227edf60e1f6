"""
Dependency injection for API routes.

Services live on ``app.state.services`` (built in the lifespan handler).
Tagged failures are turned into HTTP errors here so routes stay flat.
"""

from typing import Any, Union

from fastapi import HTTPException, Request, status
from fastapi.encoders import jsonable_encoder

from ..core import CatalogReader, LifecycleCoordinator, NotificationJournal
from ..ledger import LedgerClient
from ..schemas import FailureKind, ReadResult, WorkflowResult
from ..services import Services


FAILURE_STATUS = {
    FailureKind.READINESS: status.HTTP_503_SERVICE_UNAVAILABLE,
    FailureKind.TRANSACTION: status.HTTP_502_BAD_GATEWAY,
    FailureKind.VALIDATION: status.HTTP_422_UNPROCESSABLE_ENTITY,
    FailureKind.ALREADY_TERMINAL: status.HTTP_409_CONFLICT,
}


def get_services(request: Request) -> Services:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Service is starting up")
    return services


def get_ledger(request: Request) -> LedgerClient:
    return get_services(request).ledger


def get_coordinator(request: Request) -> LifecycleCoordinator:
    return get_services(request).coordinator


def get_catalog(request: Request) -> CatalogReader:
    return get_services(request).catalog


def get_journal(request: Request) -> NotificationJournal:
    return get_services(request).journal


def require_account(request: Request) -> str:
    """The connected identity, or 503 when none is connected."""
    account = get_ledger(request).account
    if not account:
        raise HTTPException(status_code=503, detail={"kind": FailureKind.READINESS.value, "reason": "No connected account"})
    return account


def raise_for_failure(result: Union[ReadResult, WorkflowResult]) -> None:
    if result.ok:
        return
    raise HTTPException(
        status_code=FAILURE_STATUS.get(result.kind, status.HTTP_500_INTERNAL_SERVER_ERROR),
        detail={"kind": result.kind.value if result.kind else None, "reason": result.reason},
    )


def unwrap_read(result: ReadResult, not_found: str = "Not found") -> Any:
    """Value of a successful read; 404 when the read succeeded but found nothing."""
    raise_for_failure(result)
    if result.value is None:
        raise HTTPException(status_code=404, detail=not_found)
    return result.value


def workflow_body(result: WorkflowResult) -> dict:
    raise_for_failure(result)
    return {
        "ok": True,
        "transaction_ref": result.transaction_ref,
        "entity_id": result.entity_id,
        "data": jsonable_encoder(result.data),
    }

"""
API Routes for the GiveCore platform

Command endpoints (each submits at most one ledger transaction):
- POST /campaigns                          - Create a campaign
- POST /campaigns/{id}/donations           - Donate to a campaign
- POST /campaigns/{id}/updates             - Post a campaign update
- POST /resources                          - Post a resource
- POST /resources/{id}/claims              - Claim part of a resource
- POST /resources/{id}/claims/{i}/complete - Mark a claim collected
- POST /resources/{id}/claims/{i}/cancel   - Cancel a claim
- POST /resources/{id}/deactivate|reactivate

Off-chain endpoints:
- POST /profile, GET /profiles/{identity}
- GET|POST /chat/{resource_id}/{claim_id}
- GET /notifications, POST /notifications/{id}/read, ...

Query endpoints (read model):
- GET /campaigns, /campaigns/{id}, /resources, /resources/{id}
- GET /dashboard/{identity}, /reports/..., /receipts/{campaign_id}/{donor}

Failure kinds map to status codes: readiness 503, transaction 502,
validation 422, already-terminal 409.
"""

from decimal import Decimal
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from ..core import CatalogReader, LifecycleCoordinator, NotificationJournal
from ..core.reports import CampaignReport, PlatformReport, ReceiptRecord
from ..core.views import CampaignDetail, CampaignView, Dashboard, ResourceDetail, ResourceView
from ..identity import IdentityError, normalize_identity
from ..ledger import LedgerClient
from ..schemas import (
    DEFAULT_CAMPAIGN_CATEGORY,
    DEFAULT_RESOURCE_IMAGE,
    CampaignDraft,
    ChatMessage,
    Notification,
    PlatformStats,
    ResourceDraft,
    ResourceStats,
    UserProfile,
)
from ..services import Services
from .deps import (
    get_catalog,
    get_coordinator,
    get_journal,
    get_ledger,
    get_services,
    raise_for_failure,
    require_account,
    unwrap_read,
    workflow_body,
)


router = APIRouter()


def _identity(value: str) -> str:
    try:
        return normalize_identity(value)
    except IdentityError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))


# ============================================================
# Request/Response Models
# ============================================================

class ConnectRequest(BaseModel):
    account: str = Field(..., description="Wallet identity to act as")


class SessionResponse(BaseModel):
    ready: bool
    chain_id: Optional[int] = None
    account: Optional[str] = None
    reason: Optional[str] = None


class CreateCampaignRequest(BaseModel):
    """Request to create a new campaign."""
    title: str
    description: str = ""
    target: Decimal = Field(..., description="Target in whole currency units")
    deadline: int = Field(..., description="Unix seconds")
    image: str = ""
    category: str = DEFAULT_CAMPAIGN_CATEGORY


class DonateRequest(BaseModel):
    amount: Decimal


class CampaignUpdateRequest(BaseModel):
    title: str
    content: str


class PostResourceRequest(BaseModel):
    """Request to post a resource for claiming."""
    title: str
    description: str = ""
    category: str
    quantity: int
    unit: str
    location: str = ""
    image: str = DEFAULT_RESOURCE_IMAGE


class ClaimRequest(BaseModel):
    amount: int


class ProfileRequest(BaseModel):
    """Editable profile fields. Omitted fields keep their stored value."""
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    location: Optional[str] = None
    bio: Optional[str] = None
    profile_image: Optional[str] = None


class ChatRequest(BaseModel):
    message: str


class WorkflowResponse(BaseModel):
    ok: bool
    transaction_ref: Optional[str] = None
    entity_id: Optional[int] = None
    data: dict[str, Any] = {}


class NotificationsResponse(BaseModel):
    unread: int
    notifications: list[Notification]


# ============================================================
# Session
# ============================================================

def _session(ledger: LedgerClient) -> SessionResponse:
    return SessionResponse(
        ready=ledger.is_ready,
        chain_id=ledger.chain_id,
        account=ledger.account,
        reason=ledger.not_ready_reason,
    )


@router.get("/session", response_model=SessionResponse, tags=["Session"])
async def get_session(ledger: LedgerClient = Depends(get_ledger)):
    return _session(ledger)


@router.post("/session/connect", response_model=SessionResponse, tags=["Session"])
async def connect(request: ConnectRequest, services: Services = Depends(get_services)):
    """Set the acting identity. Re-checks the network if the ledger was not ready."""
    services.ledger.connect(_identity(request.account))
    if not services.ledger.is_ready:
        await services.ledger.initialize()
    return _session(services.ledger)


@router.post("/session/disconnect", response_model=SessionResponse, tags=["Session"])
async def disconnect(ledger: LedgerClient = Depends(get_ledger)):
    ledger.disconnect()
    return _session(ledger)


# ============================================================
# Campaigns
# ============================================================

@router.get("/campaigns", response_model=list[CampaignView], tags=["Campaigns"])
async def list_campaigns(active_only: bool = False, catalog: CatalogReader = Depends(get_catalog)):
    result = await catalog.campaigns(active_only=active_only)
    raise_for_failure(result)
    return result.value


@router.get("/campaigns/{campaign_id}", response_model=CampaignDetail, tags=["Campaigns"])
async def get_campaign(campaign_id: int, catalog: CatalogReader = Depends(get_catalog)):
    return unwrap_read(await catalog.campaign(campaign_id), "Campaign not found")


@router.post(
    "/campaigns",
    response_model=WorkflowResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Campaigns"],
    summary="Create a new campaign",
)
async def create_campaign(request: CreateCampaignRequest, coordinator: LifecycleCoordinator = Depends(get_coordinator)):
    result = await coordinator.create_campaign(CampaignDraft(**request.model_dump()))
    return workflow_body(result)


@router.post(
    "/campaigns/{campaign_id}/donations",
    response_model=WorkflowResponse,
    tags=["Campaigns"],
    summary="Donate to a campaign",
)
async def donate(campaign_id: int, request: DonateRequest, coordinator: LifecycleCoordinator = Depends(get_coordinator)):
    return workflow_body(await coordinator.donate(campaign_id, request.amount))


@router.post("/campaigns/{campaign_id}/updates", response_model=WorkflowResponse, tags=["Campaigns"])
async def post_update(
    campaign_id: int,
    request: CampaignUpdateRequest,
    coordinator: LifecycleCoordinator = Depends(get_coordinator),
):
    return workflow_body(await coordinator.post_campaign_update(campaign_id, request.title, request.content))


@router.get("/stats/campaigns", response_model=PlatformStats, tags=["Campaigns"])
async def campaign_stats(ledger: LedgerClient = Depends(get_ledger)):
    return unwrap_read(await ledger.read_platform_stats())


# ============================================================
# Resources
# ============================================================

@router.get("/resources", response_model=list[ResourceView], tags=["Resources"])
async def list_resources(
    active_only: bool = False,
    category: Optional[str] = None,
    catalog: CatalogReader = Depends(get_catalog),
):
    result = await catalog.resources(active_only=active_only, category=category)
    raise_for_failure(result)
    return result.value


@router.get("/resources/{resource_id}", response_model=ResourceDetail, tags=["Resources"])
async def get_resource(resource_id: int, catalog: CatalogReader = Depends(get_catalog)):
    return unwrap_read(await catalog.resource(resource_id), "Resource not found")


@router.post(
    "/resources",
    response_model=WorkflowResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Resources"],
    summary="Post a resource",
)
async def post_resource(request: PostResourceRequest, coordinator: LifecycleCoordinator = Depends(get_coordinator)):
    return workflow_body(await coordinator.post_resource(ResourceDraft(**request.model_dump())))


@router.post(
    "/resources/{resource_id}/claims",
    response_model=WorkflowResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Resources"],
)
async def claim_resource(
    resource_id: int,
    request: ClaimRequest,
    coordinator: LifecycleCoordinator = Depends(get_coordinator),
):
    return workflow_body(await coordinator.claim_resource(resource_id, request.amount))


@router.post("/resources/{resource_id}/claims/{index}/complete", response_model=WorkflowResponse, tags=["Resources"])
async def complete_claim(resource_id: int, index: int, coordinator: LifecycleCoordinator = Depends(get_coordinator)):
    return workflow_body(await coordinator.complete_claim(resource_id, index))


@router.post("/resources/{resource_id}/claims/{index}/cancel", response_model=WorkflowResponse, tags=["Resources"])
async def cancel_claim(resource_id: int, index: int, coordinator: LifecycleCoordinator = Depends(get_coordinator)):
    return workflow_body(await coordinator.cancel_claim(resource_id, index))


@router.post("/resources/{resource_id}/deactivate", response_model=WorkflowResponse, tags=["Resources"])
async def deactivate_resource(resource_id: int, coordinator: LifecycleCoordinator = Depends(get_coordinator)):
    return workflow_body(await coordinator.deactivate_resource(resource_id))


@router.post("/resources/{resource_id}/reactivate", response_model=WorkflowResponse, tags=["Resources"])
async def reactivate_resource(resource_id: int, coordinator: LifecycleCoordinator = Depends(get_coordinator)):
    return workflow_body(await coordinator.reactivate_resource(resource_id))


@router.get("/stats/resources", response_model=ResourceStats, tags=["Resources"])
async def resource_stats(ledger: LedgerClient = Depends(get_ledger)):
    return unwrap_read(await ledger.read_resource_stats())


# ============================================================
# Profiles and Dashboard
# ============================================================

@router.get("/profiles/{identity}", response_model=UserProfile, tags=["Profiles"])
async def get_profile(identity: str, services: Services = Depends(get_services)):
    result = await services.store.get_profile(_identity(identity))
    if not result.found:
        raise HTTPException(status_code=404, detail="Profile not found")
    return result.value


@router.post("/profile", response_model=WorkflowResponse, tags=["Profiles"])
async def save_profile(request: ProfileRequest, coordinator: LifecycleCoordinator = Depends(get_coordinator)):
    return workflow_body(await coordinator.save_profile(**request.model_dump(exclude_none=True)))


@router.get("/dashboard/{identity}", response_model=Dashboard, tags=["Profiles"])
async def dashboard(identity: str, catalog: CatalogReader = Depends(get_catalog)):
    return unwrap_read(await catalog.dashboard(_identity(identity)))


# ============================================================
# Chat
# ============================================================

@router.get("/chat/{resource_id}/{claim_id}", response_model=list[ChatMessage], tags=["Chat"])
async def get_chat(resource_id: int, claim_id: str, services: Services = Depends(get_services)):
    result = await services.store.get_chat(resource_id, claim_id)
    return result.value or []


@router.post(
    "/chat/{resource_id}/{claim_id}",
    response_model=WorkflowResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Chat"],
)
async def send_chat(
    resource_id: int,
    claim_id: str,
    request: ChatRequest,
    coordinator: LifecycleCoordinator = Depends(get_coordinator),
):
    return workflow_body(await coordinator.send_chat_message(resource_id, claim_id, request.message))


# ============================================================
# Notifications
# ============================================================

@router.get("/notifications", response_model=NotificationsResponse, tags=["Notifications"])
async def list_notifications(
    account: str = Depends(require_account),
    journal: NotificationJournal = Depends(get_journal),
):
    entries = await journal.list(account)
    return NotificationsResponse(unread=sum(1 for n in entries if not n.read), notifications=entries)


@router.post("/notifications/read-all", tags=["Notifications"])
async def mark_all_read(
    account: str = Depends(require_account),
    journal: NotificationJournal = Depends(get_journal),
):
    return {"marked": await journal.mark_all_read(account)}


@router.post("/notifications/{notification_id}/read", tags=["Notifications"])
async def mark_read(
    notification_id: int,
    account: str = Depends(require_account),
    journal: NotificationJournal = Depends(get_journal),
):
    if not await journal.mark_read(account, notification_id):
        raise HTTPException(status_code=404, detail="Notification not found")
    return {"ok": True}


@router.delete("/notifications/{notification_id}", tags=["Notifications"])
async def remove_notification(
    notification_id: int,
    account: str = Depends(require_account),
    journal: NotificationJournal = Depends(get_journal),
):
    if not await journal.remove(account, notification_id):
        raise HTTPException(status_code=404, detail="Notification not found")
    return {"ok": True}


@router.delete("/notifications", tags=["Notifications"])
async def clear_notifications(
    account: str = Depends(require_account),
    journal: NotificationJournal = Depends(get_journal),
):
    await journal.clear(account)
    return {"ok": True}


# ============================================================
# Receipts and Reports
# ============================================================

@router.get("/receipts/{campaign_id}/{donor}", response_model=ReceiptRecord, tags=["Reports"])
async def get_receipt(campaign_id: int, donor: str, catalog: CatalogReader = Depends(get_catalog)):
    return unwrap_read(await catalog.receipt(campaign_id, _identity(donor)), "Receipt not found")


@router.get("/reports/campaigns/{campaign_id}", response_model=CampaignReport, tags=["Reports"])
async def campaign_report(campaign_id: int, catalog: CatalogReader = Depends(get_catalog)):
    return unwrap_read(await catalog.campaign_report(campaign_id), "Campaign not found")


@router.get("/reports/platform", response_model=PlatformReport, tags=["Reports"])
async def platform_report(catalog: CatalogReader = Depends(get_catalog)):
    return unwrap_read(await catalog.platform_report())

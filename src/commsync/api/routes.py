"""
API routes for the CommSync service.

Thin HTTP surface over the sync engine: passes, account lifecycle,
unified inbox reads, search, usage and AI actions.
"""

import uuid
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from loguru import logger
from pydantic import BaseModel, Field

from commsync.application.ports.provider_adapter import OutgoingMessage
from commsync.application.search import search as fuzzy_search
from commsync.application.sync import SyncMode, SyncSummary
from commsync.application.usage import AiActionKind, BillingEvent
from commsync.domain import Contact, Message, ProviderType
from commsync.domain.entities.account import Account
from commsync.domain.errors import (
    AccountNotFound,
    AuthError,
    CommSyncError,
    MembershipRejected,
    OrganizationNotFound,
    PermissionDenied,
    ProviderConnectionError,
    QuotaExceeded,
    SubscriptionNotFound,
    UnsupportedProvider,
)
from commsync.infrastructure.container import SyncEngine, get_engine

router = APIRouter()


# ============================================================================
# Request/Response Models
# ============================================================================


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    timestamp: str
    version: str


class AccountResult(BaseModel):
    account_id: str
    provider_type: str
    status: str
    fetched: int = 0
    error: str | None = None
    error_kind: str | None = None


class SyncResponse(BaseModel):
    """Outcome of one sync pass."""

    mode: str
    bulk: bool
    started_at: datetime
    finished_at: datetime | None
    merged_total: int
    ok: list[str]
    failed: list[str]
    skipped: list[str]
    results: list[AccountResult]

    @classmethod
    def from_summary(cls, summary: SyncSummary) -> "SyncResponse":
        return cls(
            mode=summary.mode.value,
            bulk=summary.bulk,
            started_at=summary.started_at,
            finished_at=summary.finished_at,
            merged_total=summary.merged_total,
            ok=summary.ok,
            failed=summary.failed,
            skipped=summary.skipped,
            results=[AccountResult(**vars(r)) for r in summary.results.values()],
        )


class LinkAccountRequest(BaseModel):
    """Credentials arrive in plaintext and are sealed before they are stored."""

    provider_type: ProviderType
    label: str = ""
    credentials: dict[str, Any]
    own_addresses: list[str] = Field(default_factory=list)


class LinkAccountResponse(BaseModel):
    account_id: str
    sync: SyncResponse


class SendRequest(BaseModel):
    account_id: str
    to: list[str] = Field(..., min_length=1)
    body: str
    subject: str = ""
    html: str | None = None
    thread_id: str | None = None


class MessageIdsRequest(BaseModel):
    account_id: str
    ids: list[str] = Field(..., min_length=1)


class SearchResponse(BaseModel):
    query: str
    contacts: list[Contact]
    messages: list[Message]
    matches: list[str]


class AiRequest(BaseModel):
    prompt: str = Field(..., min_length=1)
    user_id: str | None = None


class AiResponse(BaseModel):
    kind: str
    text: str
    credits_charged: int
    remaining_credits: int | None = None
    billing_warning: str | None = None


class OrganizationMember(BaseModel):
    user_id: str
    is_admin: bool


class OrganizationResponse(BaseModel):
    id: str
    name: str
    access_key: str
    members: list[OrganizationMember]
    plan_type: str | None = None
    max_users: int | None = None


class JoinRequest(BaseModel):
    user_id: str | None = None


# ============================================================================
# Error Mapping
# ============================================================================


def to_http_error(e: CommSyncError) -> HTTPException:
    """Map the domain error taxonomy onto HTTP status codes."""
    if isinstance(e, (AccountNotFound, SubscriptionNotFound, OrganizationNotFound)):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, (UnsupportedProvider, MembershipRejected)):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, AuthError):
        return HTTPException(status_code=401, detail=str(e))
    if isinstance(e, PermissionDenied):
        return HTTPException(status_code=403, detail=str(e))
    if isinstance(e, QuotaExceeded):
        return HTTPException(
            status_code=402,
            detail={"resource": e.resource, "used": e.used, "total": e.total},
        )
    if isinstance(e, ProviderConnectionError):
        return HTTPException(status_code=502, detail=str(e))
    return HTTPException(status_code=500, detail=str(e))


# ============================================================================
# Health Endpoints
# ============================================================================


@router.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check(engine: SyncEngine = Depends(get_engine)) -> HealthResponse:
    """Basic health check endpoint."""
    return HealthResponse(
        status="loading" if engine.orchestrator.is_loading else "healthy",
        timestamp=datetime.now(timezone.utc).isoformat(),
        version=engine.settings.app_version,
    )


@router.get("/health/live", tags=["health"])
async def liveness_check() -> dict[str, str]:
    """Kubernetes liveness check endpoint."""
    return {"status": "alive"}


# ============================================================================
# Sync Endpoints
# ============================================================================


@router.post("/sync", response_model=SyncResponse, tags=["sync"])
async def sync_all(engine: SyncEngine = Depends(get_engine)) -> SyncResponse:
    """Foreground pass over every linked account."""
    summary = await engine.orchestrator.sync_pass(SyncMode.FOREGROUND)
    return SyncResponse.from_summary(summary)


@router.post("/sync/{account_id}", response_model=SyncResponse, tags=["sync"])
async def sync_one(account_id: str, engine: SyncEngine = Depends(get_engine)) -> SyncResponse:
    """Manual 'sync now' for one account."""
    summary = await engine.orchestrator.sync_account(account_id)
    return SyncResponse.from_summary(summary)


@router.post("/accounts/{account_id}/bulk-sync", response_model=SyncResponse, tags=["sync"])
async def bulk_sync(account_id: str, engine: SyncEngine = Depends(get_engine)) -> SyncResponse:
    summary = await engine.orchestrator.bulk_sync(account_id)
    return SyncResponse.from_summary(summary)


# ============================================================================
# Account Lifecycle
# ============================================================================


@router.post("/accounts", response_model=LinkAccountResponse, tags=["accounts"])
async def link_account(
    request: LinkAccountRequest, engine: SyncEngine = Depends(get_engine)
) -> LinkAccountResponse:
    """Verify credentials, store the account and run its bulk import."""
    account = Account(
        id=str(uuid.uuid4()),
        user_id=engine.settings.user_id,
        provider_type=request.provider_type,
        label=request.label,
        credentials=engine.vault.encrypt(request.credentials),
        own_addresses=tuple(request.own_addresses),
    )
    try:
        summary = await engine.orchestrator.link_account(account)
    except CommSyncError as e:
        logger.warning(f"Linking {request.provider_type.value} account failed: {e}")
        raise to_http_error(e)

    engine.scheduler.add_account(account)
    return LinkAccountResponse(account_id=account.id, sync=SyncResponse.from_summary(summary))


@router.delete("/accounts/{account_id}", tags=["accounts"])
async def unlink_account(account_id: str, engine: SyncEngine = Depends(get_engine)) -> dict[str, str]:
    try:
        await engine.orchestrator.unlink_account(account_id)
    except CommSyncError as e:
        raise to_http_error(e)
    engine.scheduler.remove_account(account_id)
    return {"status": "unlinked", "account_id": account_id}


# ============================================================================
# Unified Inbox
# ============================================================================


@router.get("/messages", response_model=list[Message], tags=["inbox"])
async def list_messages(
    account_id: str | None = None,
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    engine: SyncEngine = Depends(get_engine),
) -> list[Message]:
    """Canonical list, newest first."""
    return engine.store.messages(account_id)[offset : offset + limit]


@router.get("/contacts", response_model=list[Contact], tags=["inbox"])
async def list_contacts(engine: SyncEngine = Depends(get_engine)) -> list[Contact]:
    return engine.store.contacts()


@router.get("/search", response_model=SearchResponse, tags=["inbox"])
async def search_inbox(q: str = "", engine: SyncEngine = Depends(get_engine)) -> SearchResponse:
    """Fuzzy search over derived contacts and canonical messages."""
    result = fuzzy_search(
        q,
        engine.store.contacts(),
        engine.store.snapshot(),
        contact_threshold=engine.settings.contact_match_threshold,
        message_threshold=engine.settings.message_match_threshold,
    )
    return SearchResponse(
        query=q,
        contacts=result.contacts,
        messages=result.messages,
        matches=result.matches,
    )


@router.post("/messages/send", response_model=Message, tags=["inbox"])
async def send_message(request: SendRequest, engine: SyncEngine = Depends(get_engine)) -> Message:
    outgoing = OutgoingMessage(
        to=request.to,
        body=request.body,
        subject=request.subject,
        html=request.html,
        thread_id=request.thread_id,
    )
    try:
        return await engine.orchestrator.send(request.account_id, outgoing)
    except CommSyncError as e:
        logger.error(f"Send via {request.account_id} failed: {e}")
        raise to_http_error(e)


@router.post("/messages/mark-read", tags=["inbox"])
async def mark_read(request: MessageIdsRequest, engine: SyncEngine = Depends(get_engine)) -> dict[str, int]:
    try:
        changed = await engine.orchestrator.mark_read(request.account_id, request.ids)
    except CommSyncError as e:
        raise to_http_error(e)
    return {"updated": changed}


@router.post("/messages/delete", tags=["inbox"])
async def delete_messages(
    request: MessageIdsRequest, engine: SyncEngine = Depends(get_engine)
) -> dict[str, int]:
    try:
        removed = await engine.orchestrator.delete(request.account_id, request.ids)
    except CommSyncError as e:
        raise to_http_error(e)
    return {"removed": removed}


# ============================================================================
# Usage, Billing and AI
# ============================================================================


@router.get("/usage/{subscription_id}", tags=["usage"])
async def get_usage(subscription_id: str, engine: SyncEngine = Depends(get_engine)) -> dict[str, Any]:
    try:
        view = await engine.accountant.usage_view(subscription_id)
    except CommSyncError as e:
        raise to_http_error(e)
    return vars(view)


@router.post("/billing/events", tags=["usage"])
async def billing_event(event: BillingEvent, engine: SyncEngine = Depends(get_engine)) -> dict[str, Any]:
    """Apply a billing provider notification to the local subscription."""
    try:
        sub = await engine.billing.apply(event)
    except ValueError as e:
        logger.error(f"Rejected billing event {event.billing_subscription_id}: {e}")
        raise HTTPException(status_code=400, detail=str(e))

    if sub is None:
        return {"status": "deleted", "billing_subscription_id": event.billing_subscription_id}
    return {"status": "applied", "subscription_id": sub.id, "plan_type": sub.plan_type}


@router.post("/ai/{kind}", response_model=AiResponse, tags=["ai"])
async def run_ai_action(
    kind: AiActionKind, request: AiRequest, engine: SyncEngine = Depends(get_engine)
) -> AiResponse:
    """Gate on credits, generate, then debit."""
    user_id = request.user_id or engine.settings.user_id
    try:
        result = await engine.ai.run(kind, user_id, request.prompt)
    except CommSyncError as e:
        raise to_http_error(e)
    except Exception as e:
        logger.exception(f"AI action {kind.value} failed: {e}")
        raise HTTPException(status_code=502, detail="AI generation failed")

    return AiResponse(
        kind=result.kind.value,
        text=result.text,
        credits_charged=result.credits_charged,
        remaining_credits=result.remaining_credits,
        billing_warning=result.billing_warning,
    )


# ============================================================================
# Organizations
# ============================================================================


@router.get("/organizations/{organization_id}", response_model=OrganizationResponse, tags=["organizations"])
async def get_organization(
    organization_id: str, engine: SyncEngine = Depends(get_engine)
) -> OrganizationResponse:
    try:
        view = await engine.organizations.get(organization_id)
    except CommSyncError as e:
        raise to_http_error(e)

    sub = view.subscription
    return OrganizationResponse(
        id=view.organization.id,
        name=view.organization.name,
        access_key=view.organization.id,
        members=[OrganizationMember(user_id=m, is_admin=view.is_admin(m)) for m in view.members],
        plan_type=sub.plan_type if sub else None,
        max_users=sub.max_users if sub else None,
    )


@router.post("/organizations/{organization_id}/join", tags=["organizations"])
async def join_organization(
    organization_id: str,
    request: JoinRequest | None = None,
    engine: SyncEngine = Depends(get_engine),
) -> dict[str, Any]:
    """Join with the organization id as access key, within the plan's seat limit."""
    user_id = (request.user_id if request else None) or engine.settings.user_id
    try:
        result = await engine.organizations.join(organization_id, user_id)
    except CommSyncError as e:
        raise to_http_error(e)
    return {
        "status": "joined" if result.joined else "already_member",
        "organization_id": result.organization_id,
        "members": result.members,
    }


@router.delete("/organizations/{organization_id}/members/{member_id}", tags=["organizations"])
async def remove_organization_member(
    organization_id: str,
    member_id: str,
    requested_by: str | None = Query(default=None),
    engine: SyncEngine = Depends(get_engine),
) -> dict[str, Any]:
    """Admin-only removal; the admin cannot remove themselves."""
    try:
        removed = await engine.organizations.remove_member(
            organization_id, member_id, requested_by or engine.settings.user_id
        )
    except CommSyncError as e:
        raise to_http_error(e)
    return {"status": "removed" if removed else "not_member", "member_id": member_id}

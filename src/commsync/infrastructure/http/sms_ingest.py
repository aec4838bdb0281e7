"""SMS carrier webhooks - BulkVS inbound texts and JustCall change notifications."""

from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException
from loguru import logger
from pydantic import BaseModel, Field

from commsync.application.sync import SyncMode
from commsync.domain.models import ProviderType
from commsync.infrastructure.container import SyncEngine, get_engine
from commsync.infrastructure.providers.sms.bulkvs import outbound_record_id
from commsync.infrastructure.providers.sms.numbers import same_number, to_e164

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


# ============================================================================
# Request Models
# ============================================================================


class BulkVSMessageData(BaseModel):
    """Message body of a BulkVS webhook."""

    id: str
    from_: str = Field(..., alias="from")
    to: str
    message: str | None = None
    body: str | None = None
    created_at: str | None = None
    media_urls: list[str] = Field(default_factory=list)
    status: str | None = None
    ref_id: str | None = Field(default=None, alias="refId")

    @property
    def text(self) -> str:
        return self.message or self.body or ""


class BulkVSWebhook(BaseModel):
    data: BulkVSMessageData


class JustCallWebhook(BaseModel):
    """JustCall notifies on new texts; we pull them on the next pass."""

    type: str | None = None
    justcall_number: str | None = None
    data: dict = Field(default_factory=dict)

    def number(self) -> str:
        return self.justcall_number or str(self.data.get("justcall_number") or "")


# ============================================================================
# Helpers
# ============================================================================


def _check_secret(engine: SyncEngine, provided: str) -> None:
    secret = engine.settings.webhook_secret
    expected = secret.get_secret_value() if secret else ""
    if not expected or provided != expected:
        logger.warning("Webhook unauthorized attempt")
        raise HTTPException(status_code=401, detail="Unauthorized")


async def _sync_in_background(engine: SyncEngine, account_id: str) -> None:
    summary = await engine.orchestrator.sync_pass(SyncMode.BACKGROUND, account_ids=[account_id])
    logger.info(f"Webhook-triggered sync for {account_id}: ok={summary.ok}, failed={summary.failed}")


# ============================================================================
# Endpoints
# ============================================================================


@router.post("/bulkvs")
async def ingest_bulkvs(
    payload: BulkVSWebhook,
    background_tasks: BackgroundTasks,
    x_webhook_secret: str = Header(default="", alias="x-webhook-secret"),
    engine: SyncEngine = Depends(get_engine),
) -> dict:
    """Store a BulkVS text for every linked account owning either number."""
    _check_secret(engine, x_webhook_secret)
    data = payload.data

    accounts = [
        a
        for a in engine.accounts.list_linked()
        if a.provider_type == ProviderType.SMS_B
        and any(same_number(n, data.from_) or same_number(n, data.to) for n in a.own_addresses)
    ]
    if not accounts:
        logger.warning(f"No BulkVS account found for numbers {data.from_}, {data.to}")
        raise HTTPException(status_code=404, detail="No matching account found")

    for account in accounts:
        inbound = any(same_number(n, data.to) for n in account.own_addresses)
        engine.inbox.add(
            account.id,
            "bulkvs",
            "inbound" if inbound else "outbound",
            to_e164(data.from_),
            to_e164(data.to),
            data.text,
            message_id=data.id if inbound else outbound_record_id(data.ref_id or data.id, data.to),
            ts=data.created_at,
            media_urls=data.media_urls,
            provider_ref=data.ref_id or data.id,
            status=(data.status or "delivered").lower(),
        )
        background_tasks.add_task(_sync_in_background, engine, account.id)

    logger.info(f"BulkVS webhook stored {data.id} for {len(accounts)} account(s)")
    return {"status": "accepted", "accounts": [a.id for a in accounts]}


@router.post("/justcall")
async def ingest_justcall(
    payload: JustCallWebhook,
    background_tasks: BackgroundTasks,
    x_webhook_secret: str = Header(default="", alias="x-webhook-secret"),
    engine: SyncEngine = Depends(get_engine),
) -> dict:
    """Trigger a sync for the JustCall account owning the notified number."""
    _check_secret(engine, x_webhook_secret)
    number = payload.number()

    accounts = [
        a
        for a in engine.accounts.list_linked()
        if a.provider_type == ProviderType.SMS_A
        and (not number or any(same_number(n, number) for n in a.own_addresses))
    ]
    for account in accounts:
        background_tasks.add_task(_sync_in_background, engine, account.id)

    logger.info(f"JustCall webhook ({payload.type}) queued {len(accounts)} sync(s)")
    return {"status": "accepted", "accounts": [a.id for a in accounts]}

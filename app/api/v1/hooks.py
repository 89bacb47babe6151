"""Inbound catalog hooks — new items and subscription changes, addressed by tenant slug.

Every request must carry an ``X-Hook-Signature`` header: the hex HMAC-SHA256
of the raw body under ``hook_signing_secret``. Without a configured secret the
hooks refuse all requests.
"""

import hashlib
import hmac
import logging
import uuid

from fastapi import APIRouter, Header, HTTPException, Request, status
from pydantic import BaseModel, Field, ValidationError
from sqlmodel import select

from app.api.deps import Queue, Session
from app.core.config import get_settings
from app.models.item import ItemIn
from app.models.tenant import Tenant
from app.services.jobs import schedule_new_item
from app.services.ledger import apply_subscription_status

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/hooks", tags=["hooks"])


class ItemCreatedHook(BaseModel):
    external_id: str = Field(max_length=255)
    title: str = ""
    image_ref: str | None = None
    category: str | None = None
    labels: list[str] = Field(default_factory=list)


class PlanChangedHook(BaseModel):
    status: str | None = None


class ItemScheduledResponse(BaseModel):
    scheduled: bool
    job_id: uuid.UUID | None = None
    reason: str | None = None


class PlanChangedResponse(BaseModel):
    plan: str
    changed: bool


def sign_payload(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


async def _verified_body(request: Request, signature: str | None) -> bytes:
    body = await request.body()
    secret = get_settings().hook_signing_secret
    if not secret:
        logger.error("Rejected hook request: hook_signing_secret is not configured")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Hooks are not configured",
        )
    if not (signature and hmac.compare_digest(sign_payload(secret, body), signature)):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature")
    return body


def _parse(model: type[BaseModel], body: bytes) -> BaseModel:
    try:
        return model.model_validate_json(body)
    except ValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_CONTENT,
            detail=exc.errors(include_url=False),
        ) from exc


async def _tenant_by_slug(session, slug: str) -> Tenant:
    result = await session.execute(
        select(Tenant).where(Tenant.slug == slug, Tenant.is_active.is_(True))  # type: ignore[union-attr]
    )
    tenant = result.scalar_one_or_none()
    if tenant is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Tenant not found")
    return tenant


@router.post("/{tenant_slug}/items-create", response_model=ItemScheduledResponse)
async def item_created(
    tenant_slug: str,
    request: Request,
    session: Session,
    queue: Queue,
    x_hook_signature: str | None = Header(default=None),
) -> ItemScheduledResponse:
    """Auto-schedule analysis of a new catalog item when the tenant's plan allows it."""
    body = await _verified_body(request, x_hook_signature)
    hook = _parse(ItemCreatedHook, body)
    tenant = await _tenant_by_slug(session, tenant_slug)

    outcome = await schedule_new_item(
        session,
        queue,
        tenant,
        ItemIn(
            external_id=hook.external_id,
            title=hook.title,
            image_ref=hook.image_ref or "",
            category=hook.category,
            labels=hook.labels,
        ),
    )
    if outcome is None:
        return ItemScheduledResponse(scheduled=False, reason="Auto-scheduling skipped")
    if outcome.job is None:
        return ItemScheduledResponse(scheduled=False, reason=outcome.error)
    return ItemScheduledResponse(scheduled=True, job_id=outcome.job.id)


@router.post("/{tenant_slug}/plan-changed", response_model=PlanChangedResponse)
async def plan_changed(
    tenant_slug: str,
    request: Request,
    session: Session,
    x_hook_signature: str | None = Header(default=None),
) -> PlanChangedResponse:
    """Apply a subscription status update from the billing platform."""
    body = await _verified_body(request, x_hook_signature)
    hook = _parse(PlanChangedHook, body)
    tenant = await _tenant_by_slug(session, tenant_slug)

    change = await apply_subscription_status(session, tenant.id, hook.status)
    logger.info("Plan hook for tenant %s: status=%s plan=%s changed=%s",
                tenant.slug, hook.status, change.plan, change.changed)
    return PlanChangedResponse(plan=change.plan, changed=change.changed)

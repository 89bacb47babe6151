"""Tenant registration (bootstrap) endpoint."""

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, Field
from sqlmodel import select

from app.api.deps import Auth, Session
from app.core.security import encrypt_value, generate_api_token, hash_api_token
from app.models.api_token import ApiToken
from app.models.tenant import Tenant, TenantRead
from app.services.ledger import get_or_create_ledger

router = APIRouter(prefix="/tenants", tags=["tenants"])


# ── Bootstrap request / response schemas ──────────────────────

class TenantBootstrapRequest(BaseModel):
    """A new tenant plus the catalog credentials suggestions are written back with."""
    name: str = Field(max_length=255)
    slug: str = Field(max_length=100, pattern=r"^[a-z0-9\-]+$")
    shop_domain: str = Field(default="", max_length=255)
    catalog_access_token: str | None = Field(default=None, max_length=512)


class TenantBootstrapResponse(BaseModel):
    tenant: TenantRead
    plan: str
    api_token: str = Field(description="Shown once; store it securely")
    token_prefix: str


# ── Routes ────────────────────────────────────────────────────

@router.post(
    "",
    response_model=TenantBootstrapResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a new tenant (bootstrap)",
)
async def bootstrap_tenant(
    body: TenantBootstrapRequest,
    session: Session,
) -> TenantBootstrapResponse:
    """Create a tenant, its credit ledger on the default plan, and an initial API token.

    The raw API token is returned once — the caller must store it.
    """
    existing = await session.execute(select(Tenant).where(Tenant.slug == body.slug))
    if existing.scalar_one_or_none():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Slug '{body.slug}' is already taken",
        )

    tenant = Tenant(
        name=body.name,
        slug=body.slug,
        shop_domain=body.shop_domain,
        catalog_token_encrypted=(
            encrypt_value(body.catalog_access_token) if body.catalog_access_token else None
        ),
    )
    session.add(tenant)
    await session.flush()  # populate tenant.id

    raw_token = generate_api_token()
    prefix = raw_token[:12]
    session.add(ApiToken(
        tenant_id=tenant.id,
        name="default",
        token_hash=hash_api_token(raw_token),
        token_prefix=prefix,
    ))
    await session.commit()
    await session.refresh(tenant)

    ledger = await get_or_create_ledger(session, tenant.id)

    return TenantBootstrapResponse(
        tenant=TenantRead.model_validate(tenant),
        plan=ledger.plan,
        api_token=raw_token,
        token_prefix=prefix,
    )


@router.get(
    "/me",
    response_model=TenantRead,
    summary="Get current tenant info",
)
async def get_current_tenant(
    auth: Auth,
    session: Session,
) -> TenantRead:
    """Returns the tenant associated with the authenticated token."""
    tenant = await session.get(Tenant, auth.tenant_id)
    if tenant is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Tenant not found")
    return TenantRead.model_validate(tenant)

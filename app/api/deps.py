"""FastAPI dependencies for authentication, tenant resolution and injected services."""

import uuid
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.config import get_settings
from app.core.database import get_session
from app.core.security import decrypt_value, hash_api_token
from app.models.api_token import ApiToken
from app.models.base import utcnow
from app.models.tenant import Tenant
from app.services.analysis_queue import AnalysisQueue
from app.services.catalog import CatalogClient

bearer_scheme = HTTPBearer()


class AuthContext:
    """Resolved identity carried through a request."""

    __slots__ = ("tenant_id", "token_id")

    def __init__(self, tenant_id: uuid.UUID, token_id: uuid.UUID) -> None:
        self.tenant_id = tenant_id
        self.token_id = token_id


async def get_auth_context(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(bearer_scheme)],
    session: Annotated[AsyncSession, Depends(get_session)],
) -> AuthContext:
    """Resolve a bearer API token to its tenant."""
    token_hash = hash_api_token(credentials.credentials)
    stmt = select(ApiToken).where(
        ApiToken.token_hash == token_hash,
        ApiToken.is_active.is_(True),  # type: ignore[union-attr]
    )
    result = await session.execute(stmt)
    api_token = result.scalar_one_or_none()

    if api_token is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or revoked API token",
        )

    tenant = await session.get(Tenant, api_token.tenant_id)
    if tenant is None or not tenant.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Tenant is disabled",
        )

    api_token.last_used_at = utcnow()
    session.add(api_token)
    await session.commit()

    return AuthContext(tenant_id=api_token.tenant_id, token_id=api_token.id)


def get_queue(request: Request) -> AnalysisQueue:
    """The analysis queue owned by the application lifespan."""
    queue = getattr(request.app.state, "analysis_queue", None)
    if queue is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Analysis queue is not available",
        )
    return queue


async def get_catalog(
    auth: Annotated[AuthContext, Depends(get_auth_context)],
    session: Annotated[AsyncSession, Depends(get_session)],
) -> CatalogClient | None:
    """Catalog client built from the tenant's stored credentials, or None if unset."""
    tenant = await session.get(Tenant, auth.tenant_id)
    if tenant is None or not tenant.shop_domain or not tenant.catalog_token_encrypted:
        return None
    settings = get_settings()
    return CatalogClient(
        tenant.shop_domain,
        decrypt_value(tenant.catalog_token_encrypted),
        api_version=settings.catalog_api_version,
        timeout=settings.catalog_timeout_seconds,
    )


# Typed shorthand for use in route signatures
Auth = Annotated[AuthContext, Depends(get_auth_context)]
Session = Annotated[AsyncSession, Depends(get_session)]
Queue = Annotated[AnalysisQueue, Depends(get_queue)]
Catalog = Annotated[CatalogClient | None, Depends(get_catalog)]

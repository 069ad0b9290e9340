from __future__ import annotations

import hmac
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from infrastructure.context import ContextScope, RequestContextBundle
from infrastructure.database.database import get_db
from services.associations import AssociationService


async def get_request_context_bundle(
    db: AsyncSession = Depends(get_db),
    tenant_id_header: Optional[str] = Header(None, alias="tenant_id"),
    user_id_header: Optional[str] = Header(None, alias="user_id"),
) -> RequestContextBundle:
    tenant_id = tenant_id_header.strip() if tenant_id_header else ""
    user_id = user_id_header.strip() if user_id_header else ""

    if settings.IS_DEV_MODE:
        tenant_id = tenant_id or settings.DEFAULT_TENANT_ID
        user_id = user_id or settings.DEFAULT_USER_ID

    if not tenant_id:
        raise HTTPException(status_code=400, detail="tenant_id header is required")
    if not user_id:
        raise HTTPException(status_code=400, detail="user_id header is required")

    scope = ContextScope(tenant_id=tenant_id, user_id=user_id)
    return RequestContextBundle(db=db, scope=scope)


async def get_association_service(
    context: RequestContextBundle = Depends(get_request_context_bundle),
) -> AssociationService:
    return AssociationService(context.db, context.scope)


async def require_api_key(x_api_key: Optional[str] = Header(None, alias="X-API-Key")) -> None:
    expected_raw = settings.API_AUTH_TOKEN
    expected = expected_raw.strip().strip('"') if expected_raw else ""
    if not expected:
        # No API key configured; allow all requests.
        return
    provided = x_api_key.strip().strip('"') if x_api_key else ""
    if not provided or not hmac.compare_digest(provided, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
        )

"""
FastAPI Dependencies - Service authentication and collaborators.

NO DICTIONARIES - All dependencies return typed objects.
"""

import secrets

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from vault_access.config import settings
from vault_access.db.session import get_read_db
from vault_access.exceptions import AuthenticationError
from vault_access.services.access_control import AccessControlService
from vault_access.services.entitlement_store import SQLAlchemyEntitlementStore
from vault_access.services.purchases import PurchaseLedgerService

logger = get_logger(__name__)


def validate_service_key(provided: str | None, expected: str | None) -> None:
    """
    Compare a presented service key with the configured one.

    Raises:
        AuthenticationError: Key missing or wrong
    """
    if not provided:
        raise AuthenticationError("X-API-Key header required")
    if not expected or not secrets.compare_digest(provided.encode(), expected.encode()):
        raise AuthenticationError("Invalid service key")


async def require_service_key(
    x_api_key: str | None = Header(None, description="Service API key"),
) -> None:
    """
    FastAPI dependency guarding internal endpoints.

    Usage:
        @router.get("/v1/access/{user_id}", dependencies=[Depends(require_service_key)])

    Raises:
        HTTPException 503 if no service key is configured
        HTTPException 401 if the key is missing or invalid
    """
    if not settings.api_key:
        logger.error("service_key_not_configured")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service key not configured",
        )

    try:
        validate_service_key(x_api_key, settings.api_key)
    except AuthenticationError as exc:
        logger.warning("service_key_rejected", reason=exc.message)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
            headers={"WWW-Authenticate": "ApiKey"},
        ) from exc


async def get_access_control(
    db: AsyncSession = Depends(get_read_db),
) -> AccessControlService:
    """Read-side access checks bound to a replica session."""
    return AccessControlService(SQLAlchemyEntitlementStore(db))


async def get_purchase_ledger(
    db: AsyncSession = Depends(get_read_db),
) -> PurchaseLedgerService:
    """Purchase lookups bound to a replica session."""
    return PurchaseLedgerService(db)

"""
API Routes - FastAPI endpoints for entitlement operations.

NO DICTIONARIES - All requests/responses use Pydantic models.
"""

from datetime import UTC, datetime

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from vault_access.api.dependencies import (
    get_access_control,
    get_purchase_ledger,
    require_service_key,
)
from vault_access.config import settings
from vault_access.db.session import get_read_db, get_write_db
from vault_access.exceptions import (
    DataSourceError,
    PaymentProviderError,
    ProfileNotFoundError,
    UnrecognizedOfferCategoryError,
    VaultError,
    WebhookVerificationError,
)
from vault_access.models.api import (
    AccessGrantItem,
    AccessGrantListResponse,
    AccessSummaryResponse,
    FulfillmentStatus,
    GrantTargetType,
    HealthResponse,
    ManualGrantRequest,
    ManualGrantResponse,
    ObjectAccessResponse,
    PurchaseCheckResponse,
    PurchaseListResponse,
    WebhookAckResponse,
)
from vault_access.observability.logging import StructlogGrantLog
from vault_access.observability.metrics import metrics
from vault_access.services.access_control import AccessControlService
from vault_access.services.entitlement_store import SQLAlchemyEntitlementStore
from vault_access.services.fulfillment import CheckoutFulfillmentService
from vault_access.services.grants import grant_access_for_product
from vault_access.services.payment_provider import LineItem
from vault_access.services.purchases import PurchaseLedgerService
from vault_access.services.stripe_provider import StripeProvider

logger = get_logger(__name__)

router = APIRouter()


# =============================================================================
# Payment Webhooks
# =============================================================================


@router.post("/v1/webhooks/stripe", response_model=WebhookAckResponse)
async def stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_write_db),
) -> WebhookAckResponse:
    """
    Handle Stripe webhook events.

    Grants entitlements for completed checkouts. Once the signature is
    verified the event is always acknowledged with 200, even when some grants
    failed; failures are logged and listed in the response body.
    """
    if not settings.stripe_webhook_secret:
        logger.error("stripe_webhook_secret_missing")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook secret not configured",
        )

    stripe_provider = StripeProvider(
        api_key=settings.stripe_api_key,
        webhook_secret=settings.stripe_webhook_secret,
    )

    payload = await request.body()
    signature = request.headers.get("stripe-signature", "")

    try:
        event = await stripe_provider.verify_webhook(payload, signature)
    except WebhookVerificationError as exc:
        metrics.record_webhook_event("unknown", "rejected")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Webhook Error: {exc.message}",
        ) from exc

    logger.info(
        "stripe_webhook_received",
        event_id=event.event_id,
        event_type=event.event_type,
        session_id=event.session_id,
    )

    line_items: list[LineItem] = []
    if event.is_checkout_completed and event.user_id and event.session_id:
        try:
            line_items = await stripe_provider.list_line_items(event.session_id)
        except PaymentProviderError as exc:
            logger.error(
                "stripe_webhook_line_items_failed",
                event_id=event.event_id,
                error=str(exc),
            )
            metrics.record_webhook_event(event.event_type, FulfillmentStatus.ACKNOWLEDGED.value)
            return WebhookAckResponse(
                status=FulfillmentStatus.ACKNOWLEDGED, event_id=event.event_id
            )

    service = CheckoutFulfillmentService(db, settings.grant_config())
    try:
        result = await service.handle_event(event, line_items)
    except VaultError as exc:
        logger.error(
            "stripe_webhook_processing_failed",
            event_id=event.event_id,
            error=str(exc),
            error_type=type(exc).__name__,
        )
        metrics.record_error(type(exc).__name__, "stripe_webhook")
        return WebhookAckResponse(status=FulfillmentStatus.ACKNOWLEDGED, event_id=event.event_id)

    return WebhookAckResponse(
        status=result.status,
        event_id=result.event_id,
        granted=list(result.granted),
        unmatched=list(result.unmatched),
        failed=list(result.failed),
    )


# =============================================================================
# Access Checks (service key)
# =============================================================================


@router.get(
    "/v1/access/{user_id}",
    response_model=AccessSummaryResponse,
    dependencies=[Depends(require_service_key)],
)
async def get_access_summary(
    user_id: str,
    access: AccessControlService = Depends(get_access_control),
) -> AccessSummaryResponse:
    """
    Resolve a user's access tier and capability flags.

    A user without a profile resolves to restricted; profile_found tells the
    caller which case applied.
    """
    try:
        summary, profile_found = await access.summarize(user_id)
    except DataSourceError as exc:
        logger.error("access_summary_failed", user_id=user_id, error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Entitlement store unavailable",
        ) from exc

    return AccessSummaryResponse(
        user_id=user_id,
        access_level=summary.access_level,
        can_access_masterclass=summary.can_access_masterclass,
        can_access_course=summary.can_access_course,
        has_studio_access=summary.has_studio_access,
        profile_found=profile_found,
    )


@router.get(
    "/v1/access/{user_id}/objects/{object_id}",
    response_model=ObjectAccessResponse,
    dependencies=[Depends(require_service_key)],
)
async def check_object_access(
    user_id: str,
    object_id: str,
    access: AccessControlService = Depends(get_access_control),
    kind: GrantTargetType | None = None,
) -> ObjectAccessResponse:
    """
    Check access to one masterclass or chapter.

    Without kind, only an individual purchase grant counts. With kind, the
    user's tier is honored too (full access for masterclasses, course pass or
    above for chapters).
    """
    try:
        if kind == GrantTargetType.MASTERCLASS:
            has_access = await access.can_view_masterclass(user_id, object_id)
        elif kind == GrantTargetType.CHAPTER:
            has_access = await access.can_view_chapter(user_id, object_id)
        else:
            has_access = await access.check_access(user_id, object_id)
    except DataSourceError as exc:
        logger.error(
            "object_access_check_failed",
            user_id=user_id,
            object_id=object_id,
            error=str(exc),
        )
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Entitlement store unavailable",
        ) from exc

    return ObjectAccessResponse(
        user_id=user_id, object_id=object_id, kind=kind, has_access=has_access
    )


@router.get(
    "/v1/access/{user_id}/grants",
    response_model=AccessGrantListResponse,
    dependencies=[Depends(require_service_key)],
)
async def list_access_grants(
    user_id: str,
    access: AccessControlService = Depends(get_access_control),
) -> AccessGrantListResponse:
    """List the masterclasses and chapters the user bought individually."""
    try:
        records = await access.list_grants(user_id)
    except DataSourceError as exc:
        logger.error("access_grants_list_failed", user_id=user_id, error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Entitlement store unavailable",
        ) from exc

    return AccessGrantListResponse(
        user_id=user_id,
        grants=[
            AccessGrantItem(
                target_type=record.target_type,
                target_id=record.target_id,
                product_id=record.product_id,
                created_at=record.created_at,
            )
            for record in records
        ],
    )


# =============================================================================
# Purchases (service key)
# =============================================================================


@router.get(
    "/v1/purchases/{user_id}",
    response_model=PurchaseListResponse,
    dependencies=[Depends(require_service_key)],
)
async def list_user_purchases(
    user_id: str,
    ledger: PurchaseLedgerService = Depends(get_purchase_ledger),
) -> PurchaseListResponse:
    """Product ids the user has completed purchases for."""
    try:
        product_ids = await ledger.list_purchased_products(user_id)
    except DataSourceError as exc:
        logger.error("purchase_list_failed", user_id=user_id, error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Purchase ledger unavailable",
        ) from exc

    return PurchaseListResponse(user_id=user_id, product_ids=product_ids)


@router.get(
    "/v1/purchases/{user_id}/products/{product_id}",
    response_model=PurchaseCheckResponse,
    dependencies=[Depends(require_service_key)],
)
async def check_purchase(
    user_id: str,
    product_id: str,
    ledger: PurchaseLedgerService = Depends(get_purchase_ledger),
) -> PurchaseCheckResponse:
    """Check whether the user completed a purchase of one product."""
    try:
        purchased = await ledger.has_purchase(user_id, product_id)
    except DataSourceError as exc:
        logger.error(
            "purchase_check_failed", user_id=user_id, product_id=product_id, error=str(exc)
        )
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Purchase ledger unavailable",
        ) from exc

    return PurchaseCheckResponse(user_id=user_id, product_id=product_id, purchased=purchased)


# =============================================================================
# Admin (service key)
# =============================================================================


@router.post(
    "/v1/admin/grants",
    response_model=ManualGrantResponse,
    dependencies=[Depends(require_service_key)],
)
async def create_manual_grant(
    request: ManualGrantRequest,
    db: AsyncSession = Depends(get_write_db),
) -> ManualGrantResponse:
    """
    Run the grant procedure for a product outside a checkout.

    Used to repair purchases whose webhook failed. Same rules and idempotence
    as the webhook path.
    """
    grant_log = StructlogGrantLog(source="admin", user_id=request.user_id)

    try:
        granted = await grant_access_for_product(
            SQLAlchemyEntitlementStore(db),
            request.user_id,
            request.product_id,
            grant_log,
            settings.grant_config(),
        )
    except ProfileNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Profile not found",
        ) from exc
    except UnrecognizedOfferCategoryError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(exc),
        ) from exc
    except DataSourceError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Entitlement store unavailable",
        ) from exc

    logger.info(
        "manual_grant_completed",
        user_id=request.user_id,
        product_id=request.product_id,
        granted=granted,
    )

    return ManualGrantResponse(
        user_id=request.user_id,
        product_id=request.product_id,
        granted=granted,
        messages=grant_log.messages,
    )


# =============================================================================
# Health Check
# =============================================================================


@router.get("/health", response_model=HealthResponse)
async def health_check(db: AsyncSession = Depends(get_read_db)) -> HealthResponse:
    """
    Health check for load balancer.

    Verifies database connectivity.
    """
    try:
        await db.execute(text("SELECT 1"))

        return HealthResponse(
            status="healthy",
            database="connected",
            timestamp=datetime.now(UTC).isoformat(),
        )

    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "status": "unhealthy",
                "database": "disconnected",
                "error": str(exc),
                "timestamp": datetime.now(UTC).isoformat(),
            },
        ) from exc

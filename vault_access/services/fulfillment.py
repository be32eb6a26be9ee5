"""
Checkout Fulfillment Service - Turns completed checkouts into entitlements.

Records each webhook event once, writes a purchase row per line item and runs
the grant procedure for it. Per-item failures are logged and reported in the
result; the webhook itself is always acknowledged.
"""

from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import TypeVar

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from vault_access.db.models import Purchase, WebhookEvent
from vault_access.exceptions import DataSourceError, VaultError
from vault_access.models.api import FulfillmentStatus
from vault_access.models.domain import GrantConfig
from vault_access.observability.logging import StructlogGrantLog
from vault_access.observability.metrics import metrics
from vault_access.services.entitlement_store import (
    EntitlementDataSource,
    SQLAlchemyEntitlementStore,
)
from vault_access.services.grants import EntitlementGrantService
from vault_access.services.payment_provider import CheckoutEvent, LineItem
from vault_access.services.purchases import PURCHASE_COMPLETED

logger = get_logger(__name__)

T = TypeVar("T")

# Stored webhook_events.status values
EVENT_RECEIVED = "received"
EVENT_PROCESSED = "processed"
EVENT_PARTIAL = "failed"


@dataclass(frozen=True)
class FulfillmentResult:
    """Outcome of one webhook event, returned to the provider as the ack body."""

    status: FulfillmentStatus
    event_id: str
    granted: tuple[str, ...] = ()
    unmatched: tuple[str, ...] = ()
    failed: tuple[str, ...] = ()


class CheckoutFulfillmentService:
    """Applies checkout.session.completed events to the entitlement store."""

    def __init__(
        self,
        session: AsyncSession,
        config: GrantConfig,
        data_source: EntitlementDataSource | None = None,
    ) -> None:
        """Initialize with database session and grant configuration."""
        self.session = session
        self.config = config
        self.data_source = data_source or SQLAlchemyEntitlementStore(session)

    async def _run(self, operation: str, call: Callable[[], Awaitable[T]]) -> T:
        try:
            return await call()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            logger.error("fulfillment_store_error", operation=operation, error=str(exc))
            raise DataSourceError(operation, str(exc)) from exc

    async def _claim_event(self, event: CheckoutEvent) -> str | None:
        """Insert the event row if new; return the status stored for its id."""

        async def _claim() -> str | None:
            stmt = (
                insert(WebhookEvent)
                .values(
                    event_id=event.event_id,
                    event_type=event.event_type,
                    status=EVENT_RECEIVED,
                )
                .on_conflict_do_nothing(index_elements=["event_id"])
            )
            await self.session.execute(stmt)
            result = await self.session.execute(
                select(WebhookEvent.status).where(WebhookEvent.event_id == event.event_id)
            )
            stored: str | None = result.scalar_one_or_none()
            await self.session.commit()
            return stored

        return await self._run("claim_webhook_event", _claim)

    async def _finish_event(self, event_id: str, status: str, detail: str | None = None) -> None:
        async def _finish() -> None:
            await self.session.execute(
                update(WebhookEvent)
                .where(WebhookEvent.event_id == event_id)
                .values(status=status, detail=detail)
            )
            await self.session.commit()

        await self._run("finish_webhook_event", _finish)

    async def _record_purchase(self, event: CheckoutEvent, user_id: str, item: LineItem) -> None:
        """Idempotent on (session id, product id)."""
        if not event.session_id:
            logger.warning("purchase_without_session", event_id=event.event_id)
            return

        async def _insert() -> None:
            stmt = (
                insert(Purchase)
                .values(
                    user_id=user_id,
                    product_id=item.product_id,
                    stripe_session_id=event.session_id,
                    amount_minor=item.amount_minor,
                    currency=item.currency,
                    customer_email=event.customer_email,
                    status=PURCHASE_COMPLETED,
                )
                .on_conflict_do_nothing(index_elements=["stripe_session_id", "product_id"])
            )
            await self.session.execute(stmt)
            await self.session.commit()

        await self._run("record_purchase", _insert)

    async def handle_event(
        self, event: CheckoutEvent, line_items: Sequence[LineItem]
    ) -> FulfillmentResult:
        """
        Process one verified webhook event.

        Returns:
            FulfillmentResult - DUPLICATE for an already processed event id,
            IGNORED for other event types, ACKNOWLEDGED when the session has
            no user, PROCESSED otherwise (even if some items failed)

        Raises:
            DataSourceError: The event row itself could not be recorded
        """
        stored_status = await self._claim_event(event)
        if stored_status == EVENT_PROCESSED:
            logger.info("stripe_webhook_duplicate", event_id=event.event_id)
            metrics.record_webhook_event(event.event_type, FulfillmentStatus.DUPLICATE.value)
            return FulfillmentResult(status=FulfillmentStatus.DUPLICATE, event_id=event.event_id)

        if not event.is_checkout_completed:
            logger.info(
                "stripe_webhook_ignored",
                event_type=event.event_type,
                event_id=event.event_id,
            )
            await self._finish_event(event.event_id, FulfillmentStatus.IGNORED.value)
            metrics.record_webhook_event(event.event_type, FulfillmentStatus.IGNORED.value)
            return FulfillmentResult(status=FulfillmentStatus.IGNORED, event_id=event.event_id)

        if not event.user_id:
            logger.error(
                "stripe_webhook_missing_user",
                event_id=event.event_id,
                session_id=event.session_id,
            )
            await self._finish_event(
                event.event_id, FulfillmentStatus.ACKNOWLEDGED.value, "missing user id"
            )
            metrics.record_webhook_event(event.event_type, FulfillmentStatus.ACKNOWLEDGED.value)
            return FulfillmentResult(
                status=FulfillmentStatus.ACKNOWLEDGED, event_id=event.event_id
            )

        grant_log = StructlogGrantLog(event_id=event.event_id, user_id=event.user_id)
        grants = EntitlementGrantService(self.data_source, self.config, grant_log)

        granted: list[str] = []
        unmatched: list[str] = []
        failed: list[str] = []

        for item in line_items:
            try:
                await self._record_purchase(event, event.user_id, item)
            except DataSourceError as exc:
                logger.error(
                    "purchase_record_failed",
                    event_id=event.event_id,
                    product_id=item.product_id,
                    error=str(exc),
                )

            try:
                if await grants.grant(event.user_id, item.product_id):
                    granted.append(item.product_id)
                else:
                    unmatched.append(item.product_id)
            except VaultError as exc:
                logger.error(
                    "stripe_webhook_grant_failed",
                    event_id=event.event_id,
                    user_id=event.user_id,
                    product_id=item.product_id,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                failed.append(item.product_id)

        stored = EVENT_PARTIAL if failed else EVENT_PROCESSED
        detail = f"failed: {', '.join(failed)}" if failed else None
        await self._finish_event(event.event_id, stored, detail)

        logger.info(
            "stripe_checkout_fulfilled",
            event_id=event.event_id,
            user_id=event.user_id,
            granted=granted,
            unmatched=unmatched,
            failed=failed,
        )
        metrics.record_webhook_event(event.event_type, FulfillmentStatus.PROCESSED.value)

        return FulfillmentResult(
            status=FulfillmentStatus.PROCESSED,
            event_id=event.event_id,
            granted=tuple(granted),
            unmatched=tuple(unmatched),
            failed=tuple(failed),
        )

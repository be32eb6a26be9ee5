"""
Purchase Ledger Service - Read side of the purchases table.

Answers whether a user bought a product and which products they own.
Only completed purchases count.
"""

from collections.abc import Awaitable, Callable
from typing import TypeVar

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from vault_access.db.models import Purchase
from vault_access.exceptions import DataSourceError

logger = get_logger(__name__)

T = TypeVar("T")

PURCHASE_COMPLETED = "completed"


class PurchaseLedgerService:
    """Purchase lookups over the write-once purchases ledger."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize with database session."""
        self.session = session

    async def _run(self, operation: str, call: Callable[[], Awaitable[T]]) -> T:
        try:
            return await call()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            logger.error("purchase_ledger_error", operation=operation, error=str(exc))
            raise DataSourceError(operation, str(exc)) from exc

    async def has_purchase(self, user_id: str, product_id: str) -> bool:
        """
        Check whether the user completed a purchase of product_id.

        Blank identifiers never match.

        Raises:
            DataSourceError: The lookup failed
        """
        if not user_id or not product_id:
            return False

        async def _query() -> object | None:
            stmt = (
                select(Purchase.id)
                .where(
                    Purchase.user_id == user_id,
                    Purchase.product_id == product_id,
                    Purchase.status == PURCHASE_COMPLETED,
                )
                .limit(1)
            )
            result = await self.session.execute(stmt)
            return result.scalar_one_or_none()

        return await self._run("has_purchase", _query) is not None

    async def list_purchased_products(self, user_id: str) -> list[str]:
        """
        Product ids the user has completed purchases for, oldest first.

        A product bought in several checkouts is listed once.

        Raises:
            DataSourceError: The lookup failed
        """
        if not user_id:
            return []

        async def _query() -> list[str]:
            stmt = (
                select(Purchase.product_id)
                .where(Purchase.user_id == user_id, Purchase.status == PURCHASE_COMPLETED)
                .order_by(Purchase.created_at)
            )
            result = await self.session.execute(stmt)
            return list(result.scalars().all())

        product_ids = await self._run("list_purchased_products", _query)
        return list(dict.fromkeys(product_ids))

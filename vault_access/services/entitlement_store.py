"""
Entitlement Store - Profile, catalog and access-grant persistence.

EntitlementDataSource is the narrow interface the grant procedure and the
access checks depend on. SQLAlchemyEntitlementStore implements it against
PostgreSQL.
"""

from collections.abc import Awaitable, Callable
from typing import Protocol, TypeVar

from pydantic import ValidationError
from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from vault_access.db.models import AccessGrant, Chapter, Masterclass, Offer, Profile
from vault_access.exceptions import (
    CatalogValidationError,
    DataSourceError,
    GrantWriteError,
    ProfileNotFoundError,
)
from vault_access.models.api import CatalogRow, GrantTargetType, OfferRow
from vault_access.models.domain import (
    AccessGrantRecord,
    CatalogEntry,
    GrantRequest,
    OfferRecord,
    UserProfile,
)

logger = get_logger(__name__)

T = TypeVar("T")


class EntitlementDataSource(Protocol):
    """
    Data source protocol for entitlements.

    Implementations raise DataSourceError for any storage failure and return
    None for "not found".
    """

    async def get_profile(self, user_id: str) -> UserProfile | None:
        """Load the entitlement fields of a profile."""
        ...

    async def patch_profile_flags(
        self,
        user_id: str,
        *,
        has_full_unlock: bool | None = None,
        has_course_pass: bool | None = None,
    ) -> None:
        """
        Set the given profile flags, leaving the others untouched.

        Raises:
            ProfileNotFoundError: No profile row for user_id
        """
        ...

    async def find_offer_by_product(self, product_id: str) -> OfferRecord | None:
        """Several offers may share a product id: active first, then the oldest."""

        """Look up an offer by its payment product identifier."""
        ...

    async def find_masterclass_by_product(self, product_id: str) -> CatalogEntry | None:
        """Look up a masterclass by its payment product identifier."""
        ...

    async def find_chapter_by_product(self, product_id: str) -> CatalogEntry | None:
        """Look up a chapter by its payment product identifier."""
        ...

    async def upsert_access_grant(self, request: GrantRequest) -> AccessGrantRecord:
        """Insert a grant unless one exists for (user, target type, target id)."""
        ...

    async def has_access_grant(self, user_id: str, target_id: str) -> bool:
        """Check whether any grant links the user to the target."""
        ...

    async def list_access_grants(self, user_id: str) -> list[AccessGrantRecord]:
        """List every grant owned by a user."""
        ...


def _to_grant_record(grant: AccessGrant) -> AccessGrantRecord:
    return AccessGrantRecord(
        user_id=grant.user_id,
        target_type=GrantTargetType(grant.target_type),
        target_id=grant.target_id,
        product_id=grant.product_id,
        created_at=grant.created_at,
    )


class SQLAlchemyEntitlementStore:
    """PostgreSQL-backed EntitlementDataSource."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize with database session."""
        self.session = session

    async def _run(self, operation: str, call: Callable[[], Awaitable[T]]) -> T:
        """Execute a storage call, wrapping driver errors in DataSourceError."""
        try:
            return await call()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            logger.error("entitlement_store_error", operation=operation, error=str(exc))
            raise DataSourceError(operation, str(exc)) from exc

    async def get_profile(self, user_id: str) -> UserProfile | None:
        async def _query() -> Profile | None:
            result = await self.session.execute(select(Profile).where(Profile.id == user_id))
            return result.scalar_one_or_none()

        profile = await self._run("get_profile", _query)
        if profile is None:
            return None

        return UserProfile.from_row(
            {
                "has_full_unlock": profile.has_full_unlock,
                "has_course_pass": profile.has_course_pass,
                "is_guest": profile.is_guest,
                "active_studio_client": profile.active_studio_client,
            }
        )

    async def patch_profile_flags(
        self,
        user_id: str,
        *,
        has_full_unlock: bool | None = None,
        has_course_pass: bool | None = None,
    ) -> None:
        values: dict[str, bool] = {}
        if has_full_unlock is not None:
            values["has_full_unlock"] = has_full_unlock
        if has_course_pass is not None:
            values["has_course_pass"] = has_course_pass
        if not values:
            return

        async def _update() -> int:
            stmt = update(Profile).where(Profile.id == user_id).values(**values)
            result = await self.session.execute(stmt)
            await self.session.commit()
            return result.rowcount

        rowcount = await self._run("patch_profile_flags", _update)
        if rowcount == 0:
            raise ProfileNotFoundError(user_id)

        logger.info("profile_flags_patched", user_id=user_id, **values)

    async def find_offer_by_product(self, product_id: str) -> OfferRecord | None:
        """Several offers may share a product id: active first, then the oldest."""

        async def _query() -> Offer | None:
            stmt = (
                select(Offer)
                .where(Offer.stripe_product_id == product_id)
                .order_by(Offer.is_active.desc(), Offer.created_at.asc(), Offer.id.asc())
                .limit(1)
            )
            result = await self.session.execute(stmt)
            return result.scalar_one_or_none()

        offer = await self._run("find_offer", _query)
        if offer is None:
            return None

        try:
            row = OfferRow.model_validate(offer, from_attributes=True)
        except ValidationError as exc:
            raise CatalogValidationError("offer", product_id, str(exc)) from exc

        return OfferRecord(product_id=row.stripe_product_id, category_slug=row.slug)

    async def find_masterclass_by_product(self, product_id: str) -> CatalogEntry | None:
        return await self._find_catalog_entry(Masterclass, "masterclass", product_id)

    async def find_chapter_by_product(self, product_id: str) -> CatalogEntry | None:
        return await self._find_catalog_entry(Chapter, "chapter", product_id)

    async def _find_catalog_entry(
        self, model: type[Masterclass] | type[Chapter], catalog: str, product_id: str
    ) -> CatalogEntry | None:
        async def _query() -> Masterclass | Chapter | None:
            stmt = (
                select(model)
                .where(model.stripe_product_id == product_id)
                .order_by(model.created_at.asc(), model.id.asc())
                .limit(1)
            )
            result = await self.session.execute(stmt)
            return result.scalar_one_or_none()

        entry = await self._run(f"find_{catalog}", _query)
        if entry is None:
            return None

        try:
            row = CatalogRow.model_validate(entry, from_attributes=True)
        except ValidationError as exc:
            raise CatalogValidationError(catalog, product_id, str(exc)) from exc

        return CatalogEntry(id=row.id, title=row.title, product_id=row.stripe_product_id)

    async def upsert_access_grant(self, request: GrantRequest) -> AccessGrantRecord:
        """
        Idempotent grant insert.

        INSERT ... ON CONFLICT DO NOTHING on the (user, type, target) unique key,
        then read back the single stored row. Safe under concurrent redelivery.
        """

        async def _upsert() -> AccessGrant | None:
            stmt = (
                insert(AccessGrant)
                .values(
                    user_id=request.user_id,
                    target_type=request.target_type.value,
                    target_id=request.target_id,
                    product_id=request.product_id,
                )
                .on_conflict_do_nothing(index_elements=["user_id", "target_type", "target_id"])
            )
            await self.session.execute(stmt)
            await self.session.commit()

            readback = select(AccessGrant).where(
                AccessGrant.user_id == request.user_id,
                AccessGrant.target_type == request.target_type.value,
                AccessGrant.target_id == request.target_id,
            )
            result = await self.session.execute(readback)
            return result.scalar_one_or_none()

        grant = await self._run("upsert_access_grant", _upsert)
        if grant is None:
            raise GrantWriteError(request.user_id, request.target_id, "not found after upsert")

        return _to_grant_record(grant)

    async def has_access_grant(self, user_id: str, target_id: str) -> bool:
        async def _query() -> AccessGrant | None:
            stmt = (
                select(AccessGrant)
                .where(AccessGrant.user_id == user_id, AccessGrant.target_id == target_id)
                .limit(1)
            )
            result = await self.session.execute(stmt)
            return result.scalar_one_or_none()

        return await self._run("has_access_grant", _query) is not None

    async def list_access_grants(self, user_id: str) -> list[AccessGrantRecord]:
        async def _query() -> list[AccessGrant]:
            stmt = (
                select(AccessGrant)
                .where(AccessGrant.user_id == user_id)
                .order_by(AccessGrant.created_at)
            )
            result = await self.session.execute(stmt)
            return list(result.scalars().all())

        grants = await self._run("list_access_grants", _query)
        return [_to_grant_record(grant) for grant in grants]

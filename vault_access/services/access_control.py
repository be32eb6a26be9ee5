"""
Access Control Service - Per-user and per-object access checks.

Combines the tier resolver (profile flags) with individual purchase grants.
"""

from structlog import get_logger

from vault_access.models.domain import AccessGrantRecord, AccessSummary
from vault_access.observability.metrics import metrics
from vault_access.services.access_level import (
    can_access_course,
    can_access_masterclass,
    describe_access,
)
from vault_access.services.entitlement_store import EntitlementDataSource

logger = get_logger(__name__)


class AccessControlService:
    """Read-side entitlement checks over an EntitlementDataSource."""

    def __init__(self, data_source: EntitlementDataSource) -> None:
        """Initialize with data source."""
        self.data_source = data_source

    async def check_access(self, user_id: str, object_id: str) -> bool:
        """
        Check whether a grant links the user to one purchased object.

        Blank identifiers never have access.
        """
        if not user_id or not object_id:
            return False
        return await self.data_source.has_access_grant(user_id, object_id)

    async def can_view_masterclass(self, user_id: str, masterclass_id: str) -> bool:
        """Full-access tier, or an individual masterclass purchase."""
        profile = await self.data_source.get_profile(user_id)
        if can_access_masterclass(profile):
            return True
        return await self.check_access(user_id, masterclass_id)

    async def can_view_chapter(self, user_id: str, chapter_id: str) -> bool:
        """Course tier or above, or an individual chapter purchase."""
        profile = await self.data_source.get_profile(user_id)
        if can_access_course(profile):
            return True
        return await self.check_access(user_id, chapter_id)

    async def list_grants(self, user_id: str) -> list[AccessGrantRecord]:
        """Every individual purchase grant the user owns."""
        if not user_id:
            return []
        return await self.data_source.list_access_grants(user_id)

    async def summarize(self, user_id: str) -> tuple[AccessSummary, bool]:
        """
        Resolve the tier for a stored profile.

        Returns:
            (summary, profile_found) - a missing profile resolves to restricted
        """
        profile = await self.data_source.get_profile(user_id)
        summary = describe_access(profile)
        metrics.record_access_resolution(summary.access_level.value)

        logger.debug(
            "access_resolved",
            user_id=user_id,
            access_level=summary.access_level.value,
            profile_found=profile is not None,
        )
        return summary, profile is not None

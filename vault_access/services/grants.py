"""
Entitlement Grant Service - Applies a completed purchase to a user.

The product identifier is classified by an ordered list of rules; the first
rule that matches applies its grant and the rest are skipped:

1. FullAccessProductRule - the configured full-access product id
2. OfferRule - an offer whose category is full access or course pass
3. MasterclassRule - a masterclass sold under the product id
4. ChapterRule - a chapter sold under the product id

Every rule is idempotent, so webhook redelivery is safe. Data-source errors
propagate; an unmatched product returns False.
"""

import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Protocol

from structlog import get_logger

from vault_access.exceptions import UnrecognizedOfferCategoryError, VaultError
from vault_access.models.api import GrantLogLevel, GrantTargetType, UnrecognizedOfferPolicy
from vault_access.models.domain import (
    CatalogEntry,
    GrantConfig,
    GrantOutcome,
    GrantRequest,
    OfferRecord,
)
from vault_access.observability.metrics import metrics
from vault_access.observability.tracing import trace_operation
from vault_access.services.entitlement_store import EntitlementDataSource

logger = get_logger(__name__)

GrantLog = Callable[[GrantLogLevel, str], Awaitable[None]]


@dataclass(frozen=True)
class RuleMatch:
    """What a rule found for a product id; carried into apply()."""

    product_id: str
    profile_flag: str | None = None
    label: str | None = None
    entry: CatalogEntry | None = None


class GrantRule(Protocol):
    """One classifier in the grant chain."""

    name: str

    async def match(self, product_id: str) -> RuleMatch | None:
        """Return a match if this rule handles the product, else None."""
        ...

    async def apply(self, user_id: str, match: RuleMatch) -> GrantOutcome:
        """Persist the grant for a matched product."""
        ...


class FullAccessProductRule:
    """The single configured product that always grants full unlock."""

    name = "full_access_product"

    def __init__(self, data_source: EntitlementDataSource, config: GrantConfig) -> None:
        self.data_source = data_source
        self.config = config

    async def match(self, product_id: str) -> RuleMatch | None:
        if not self.config.full_access_product_id:
            return None
        if product_id != self.config.full_access_product_id:
            return None
        return RuleMatch(product_id=product_id, profile_flag="has_full_unlock")

    async def apply(self, user_id: str, match: RuleMatch) -> GrantOutcome:
        await self.data_source.patch_profile_flags(user_id, has_full_unlock=True)
        return GrantOutcome(
            rule=self.name,
            description="Granted Full Access (Env Match)",
            profile_flags=("has_full_unlock",),
        )


class OfferRule:
    """Offers map a product to a tier category (full access or course pass)."""

    name = "offer"

    def __init__(self, data_source: EntitlementDataSource, config: GrantConfig) -> None:
        self.data_source = data_source
        self.config = config

    def _classify(self, offer: OfferRecord) -> tuple[str, str] | None:
        if offer.category_slug == self.config.full_access_category:
            return "has_full_unlock", "Full Access"
        if offer.category_slug == self.config.course_pass_category:
            return "has_course_pass", "Course Pass"
        return None

    async def match(self, product_id: str) -> RuleMatch | None:
        offer = await self.data_source.find_offer_by_product(product_id)
        if offer is None:
            return None

        classified = self._classify(offer)
        if classified is None:
            if self.config.unrecognized_offer_policy == UnrecognizedOfferPolicy.ERROR:
                raise UnrecognizedOfferCategoryError(product_id, offer.category_slug)
            logger.warning(
                "offer_category_unrecognized",
                product_id=product_id,
                category_slug=offer.category_slug,
            )
            return None

        profile_flag, label = classified
        return RuleMatch(product_id=product_id, profile_flag=profile_flag, label=label)

    async def apply(self, user_id: str, match: RuleMatch) -> GrantOutcome:
        if match.profile_flag == "has_full_unlock":
            await self.data_source.patch_profile_flags(user_id, has_full_unlock=True)
        else:
            await self.data_source.patch_profile_flags(user_id, has_course_pass=True)
        return GrantOutcome(
            rule=self.name,
            description=f"Granted {match.label} (Offer)",
            profile_flags=(match.profile_flag or "",),
        )


class CatalogGrantRule(ABC):
    """Per-entity purchases recorded as an access grant."""

    name = "catalog"
    target_type: GrantTargetType
    label: str

    def __init__(self, data_source: EntitlementDataSource) -> None:
        self.data_source = data_source

    @abstractmethod
    async def find(self, product_id: str) -> CatalogEntry | None:
        """Look up the catalog entry sold under product_id."""

    async def match(self, product_id: str) -> RuleMatch | None:
        entry = await self.find(product_id)
        if entry is None:
            return None
        return RuleMatch(product_id=product_id, entry=entry)

    async def apply(self, user_id: str, match: RuleMatch) -> GrantOutcome:
        assert match.entry is not None
        await self.data_source.upsert_access_grant(
            GrantRequest(
                user_id=user_id,
                target_type=self.target_type,
                target_id=match.entry.id,
                product_id=match.product_id,
            )
        )
        return GrantOutcome(
            rule=self.name,
            description=f"Granted {self.label}: {match.entry.title}",
            target_type=self.target_type,
            target_id=match.entry.id,
        )


class MasterclassRule(CatalogGrantRule):
    name = "masterclass"
    target_type = GrantTargetType.MASTERCLASS
    label = "Masterclass"

    async def find(self, product_id: str) -> CatalogEntry | None:
        return await self.data_source.find_masterclass_by_product(product_id)


class ChapterRule(CatalogGrantRule):
    name = "chapter"
    target_type = GrantTargetType.CHAPTER
    label = "Chapter"

    async def find(self, product_id: str) -> CatalogEntry | None:
        return await self.data_source.find_chapter_by_product(product_id)


def build_default_rules(
    data_source: EntitlementDataSource, config: GrantConfig
) -> list[GrantRule]:
    """The grant chain in priority order."""
    return [
        FullAccessProductRule(data_source, config),
        OfferRule(data_source, config),
        MasterclassRule(data_source),
        ChapterRule(data_source),
    ]


class EntitlementGrantService:
    """
    Grant procedure invoked once per completed purchase.

    Single attempt, fail fast: the first lookup or write error aborts the
    chain and is raised to the caller, which owns retry policy.
    """

    def __init__(
        self,
        data_source: EntitlementDataSource,
        config: GrantConfig,
        log: GrantLog,
        rules: Sequence[GrantRule] | None = None,
    ) -> None:
        """Initialize with data source, injected config and grant logger."""
        self.data_source = data_source
        self.config = config
        self.log = log
        self.rules = list(rules) if rules is not None else build_default_rules(data_source, config)

    async def _emit(self, level: GrantLogLevel, message: str) -> None:
        """Fire-and-forget call into the injected logger."""
        try:
            await self.log(level, message)
        except Exception as exc:
            logger.warning("grant_log_failed", level=level.value, error=str(exc))

    async def grant(self, user_id: str, product_id: str) -> bool:
        """
        Apply the entitlement for product_id to user_id.

        Returns:
            True if a rule matched and its grant was applied, False if the
            product matched no rule (no state is changed)

        Raises:
            ValueError: user_id is blank
            DataSourceError: A lookup or write failed
            UnrecognizedOfferCategoryError: Offer category unknown under the error policy
        """
        if not user_id:
            raise ValueError("user_id cannot be empty")

        start_time = time.perf_counter()
        current_rule = "none"

        with trace_operation("grant_access_for_product", product_id=product_id) as span:
            try:
                if product_id:
                    for rule in self.rules:
                        current_rule = rule.name
                        match = await rule.match(product_id)
                        if match is None:
                            continue

                        outcome = await rule.apply(user_id, match)
                        span.set_attribute("rule", rule.name)
                        await self._emit(GrantLogLevel.SUCCESS, outcome.description)

                        logger.info(
                            "entitlement_granted",
                            user_id=user_id,
                            product_id=product_id,
                            rule=outcome.rule,
                            target_type=outcome.target_type.value if outcome.target_type else None,
                            target_id=outcome.target_id,
                            profile_flags=list(outcome.profile_flags),
                        )
                        metrics.record_grant(
                            rule.name, "granted", time.perf_counter() - start_time
                        )
                        return True

            except VaultError as exc:
                logger.error(
                    "entitlement_grant_failed",
                    user_id=user_id,
                    product_id=product_id,
                    rule=current_rule,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                metrics.record_grant(current_rule, "error", time.perf_counter() - start_time)
                metrics.record_error(type(exc).__name__, "grant_access_for_product")
                await self._emit(GrantLogLevel.ERROR, f"Grant failed for {product_id}: {exc}")
                raise

        logger.warning("entitlement_grant_no_match", user_id=user_id, product_id=product_id)
        metrics.record_grant("none", "no_match", time.perf_counter() - start_time)
        return False


async def grant_access_for_product(
    data_source: EntitlementDataSource,
    user_id: str,
    product_id: str,
    log: GrantLog,
    config: GrantConfig,
) -> bool:
    """Functional entry point: build the default rule chain and run it once."""
    service = EntitlementGrantService(data_source, config, log)
    return await service.grant(user_id, product_id)

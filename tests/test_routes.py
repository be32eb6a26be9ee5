"""
Tests for API Routes.

Tests route handler functions directly with mocked dependencies.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import HTTPException

from vault_access.api.dependencies import require_service_key, validate_service_key
from vault_access.api.routes import (
    check_object_access,
    check_purchase,
    create_manual_grant,
    get_access_summary,
    health_check,
    list_access_grants,
    list_user_purchases,
    stripe_webhook,
)
from vault_access.exceptions import (
    AuthenticationError,
    DataSourceError,
    PaymentProviderError,
    WebhookVerificationError,
)
from vault_access.models.api import (
    AccessLevel,
    FulfillmentStatus,
    GrantTargetType,
    ManualGrantRequest,
)
from vault_access.models.domain import GrantRequest
from vault_access.services.access_control import AccessControlService
from vault_access.services.fulfillment import FulfillmentResult
from vault_access.services.payment_provider import CheckoutEvent, LineItem
from vault_access.services.purchases import PurchaseLedgerService


def make_request(body: bytes = b"{}", signature: str = "valid_signature") -> MagicMock:
    request = MagicMock()
    request.body = AsyncMock(return_value=body)
    request.headers = {"stripe-signature": signature}
    return request


def completed_event(user_id: str | None = "user-123") -> CheckoutEvent:
    return CheckoutEvent(
        event_id="evt_123",
        event_type="checkout.session.completed",
        session_id="cs_test_123",
        user_id=user_id,
    )


# ============================================================================
# Stripe Webhook Route Tests
# ============================================================================


class TestStripeWebhook:
    """Tests for POST /v1/webhooks/stripe."""

    @pytest.mark.asyncio
    async def test_missing_secret_returns_500(self, db_session):
        with patch("vault_access.api.routes.settings") as mock_settings:
            mock_settings.stripe_webhook_secret = ""

            with pytest.raises(HTTPException) as exc_info:
                await stripe_webhook(make_request(), db_session)

        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_invalid_signature_returns_400(self, db_session):
        with patch("vault_access.api.routes.StripeProvider") as MockProvider:
            MockProvider.return_value.verify_webhook = AsyncMock(
                side_effect=WebhookVerificationError("Invalid Stripe webhook signature")
            )

            with pytest.raises(HTTPException) as exc_info:
                await stripe_webhook(make_request(signature="bad"), db_session)

        assert exc_info.value.status_code == 400
        assert "Webhook Error" in exc_info.value.detail

    @pytest.mark.asyncio
    async def test_completed_checkout_processed(self, db_session):
        with (
            patch("vault_access.api.routes.StripeProvider") as MockProvider,
            patch("vault_access.api.routes.CheckoutFulfillmentService") as MockService,
        ):
            provider = MockProvider.return_value
            provider.verify_webhook = AsyncMock(return_value=completed_event())
            provider.list_line_items = AsyncMock(
                return_value=[LineItem(product_id="prod_masterclass_123")]
            )
            MockService.return_value.handle_event = AsyncMock(
                return_value=FulfillmentResult(
                    status=FulfillmentStatus.PROCESSED,
                    event_id="evt_123",
                    granted=("prod_masterclass_123",),
                )
            )

            response = await stripe_webhook(make_request(), db_session)

        assert response.status == FulfillmentStatus.PROCESSED
        assert response.granted == ["prod_masterclass_123"]
        provider.list_line_items.assert_awaited_once_with("cs_test_123")
        MockService.return_value.handle_event.assert_awaited_once_with(
            completed_event(), [LineItem(product_id="prod_masterclass_123")]
        )

    @pytest.mark.asyncio
    async def test_missing_user_skips_line_items(self, db_session):
        with (
            patch("vault_access.api.routes.StripeProvider") as MockProvider,
            patch("vault_access.api.routes.CheckoutFulfillmentService") as MockService,
        ):
            provider = MockProvider.return_value
            provider.verify_webhook = AsyncMock(return_value=completed_event(user_id=None))
            provider.list_line_items = AsyncMock()
            MockService.return_value.handle_event = AsyncMock(
                return_value=FulfillmentResult(
                    status=FulfillmentStatus.ACKNOWLEDGED, event_id="evt_123"
                )
            )

            response = await stripe_webhook(make_request(), db_session)

        assert response.status == FulfillmentStatus.ACKNOWLEDGED
        provider.list_line_items.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_grant_failures_still_acknowledged(self, db_session):
        with (
            patch("vault_access.api.routes.StripeProvider") as MockProvider,
            patch("vault_access.api.routes.CheckoutFulfillmentService") as MockService,
        ):
            provider = MockProvider.return_value
            provider.verify_webhook = AsyncMock(return_value=completed_event())
            provider.list_line_items = AsyncMock(return_value=[LineItem(product_id="prod_x")])
            MockService.return_value.handle_event = AsyncMock(
                return_value=FulfillmentResult(
                    status=FulfillmentStatus.PROCESSED, event_id="evt_123", failed=("prod_x",)
                )
            )

            response = await stripe_webhook(make_request(), db_session)

        assert response.failed == ["prod_x"]

    @pytest.mark.asyncio
    async def test_store_failure_still_acknowledged(self, db_session):
        with (
            patch("vault_access.api.routes.StripeProvider") as MockProvider,
            patch("vault_access.api.routes.CheckoutFulfillmentService") as MockService,
        ):
            provider = MockProvider.return_value
            provider.verify_webhook = AsyncMock(return_value=completed_event())
            provider.list_line_items = AsyncMock(return_value=[])
            MockService.return_value.handle_event = AsyncMock(
                side_effect=DataSourceError("claim_webhook_event", "down")
            )

            response = await stripe_webhook(make_request(), db_session)

        assert response.status == FulfillmentStatus.ACKNOWLEDGED

    @pytest.mark.asyncio
    async def test_line_item_failure_acknowledged(self, db_session):
        with (
            patch("vault_access.api.routes.StripeProvider") as MockProvider,
            patch("vault_access.api.routes.CheckoutFulfillmentService") as MockService,
        ):
            provider = MockProvider.return_value
            provider.verify_webhook = AsyncMock(return_value=completed_event())
            provider.list_line_items = AsyncMock(side_effect=PaymentProviderError("timeout"))

            response = await stripe_webhook(make_request(), db_session)

        assert response.status == FulfillmentStatus.ACKNOWLEDGED
        MockService.assert_not_called()


# ============================================================================
# Access Route Tests
# ============================================================================


class TestAccessRoutes:
    """Tests for GET /v1/access endpoints."""

    @pytest.mark.asyncio
    async def test_summary(self, store):
        store.add_profile("user-123", has_full_unlock=True)

        response = await get_access_summary("user-123", AccessControlService(store))

        assert response.access_level == AccessLevel.ALL_ACCESS
        assert response.can_access_masterclass is True
        assert response.profile_found is True

    @pytest.mark.asyncio
    async def test_summary_unknown_user(self, store):
        response = await get_access_summary("nobody", AccessControlService(store))

        assert response.access_level == AccessLevel.RESTRICTED
        assert response.profile_found is False

    @pytest.mark.asyncio
    async def test_summary_store_down_returns_503(self, store):
        store.fail_on["get_profile"] = DataSourceError("get_profile", "down")

        with pytest.raises(HTTPException) as exc_info:
            await get_access_summary("user-123", AccessControlService(store))

        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_object_access(self, store):
        response = await check_object_access("user-123", "mc-1", AccessControlService(store))

        assert response.has_access is False
        assert response.object_id == "mc-1"

    @pytest.mark.asyncio
    async def test_object_access_masterclass_kind_uses_tier(self, store):
        store.add_profile("user-123", has_full_unlock=True)

        response = await check_object_access(
            "user-123", "mc-1", AccessControlService(store), kind=GrantTargetType.MASTERCLASS
        )

        assert response.has_access is True
        assert response.kind == GrantTargetType.MASTERCLASS

    @pytest.mark.asyncio
    async def test_object_access_chapter_kind_uses_tier(self, store):
        store.add_profile("user-123", has_course_pass=True)
        service = AccessControlService(store)

        chapter = await check_object_access(
            "user-123", "ch-1", service, kind=GrantTargetType.CHAPTER
        )
        plain = await check_object_access("user-123", "ch-1", service)

        assert chapter.has_access is True
        assert plain.has_access is False

    @pytest.mark.asyncio
    async def test_list_access_grants(self, store):
        await store.upsert_access_grant(
            GrantRequest(
                user_id="user-123",
                target_type=GrantTargetType.CHAPTER,
                target_id="ch-1",
                product_id="prod_ch",
            )
        )

        response = await list_access_grants("user-123", AccessControlService(store))

        assert [g.target_id for g in response.grants] == ["ch-1"]
        assert response.grants[0].product_id == "prod_ch"

    @pytest.mark.asyncio
    async def test_list_access_grants_store_down_returns_503(self, store):
        store.fail_on["list_access_grants"] = DataSourceError("list_access_grants", "down")

        with pytest.raises(HTTPException) as exc_info:
            await list_access_grants("user-123", AccessControlService(store))

        assert exc_info.value.status_code == 503


# ============================================================================
# Purchase Route Tests
# ============================================================================


class TestPurchaseRoutes:
    """Tests for GET /v1/purchases endpoints."""

    @pytest.mark.asyncio
    async def test_list_purchases(self):
        ledger = MagicMock(spec=PurchaseLedgerService)
        ledger.list_purchased_products = AsyncMock(return_value=["prod-1", "prod-2"])

        response = await list_user_purchases("user-123", ledger)

        assert response.product_ids == ["prod-1", "prod-2"]

    @pytest.mark.asyncio
    async def test_check_purchase(self):
        ledger = MagicMock(spec=PurchaseLedgerService)
        ledger.has_purchase = AsyncMock(return_value=True)

        response = await check_purchase("user-123", "product-123", ledger)

        assert response.purchased is True
        ledger.has_purchase.assert_awaited_once_with("user-123", "product-123")

    @pytest.mark.asyncio
    async def test_ledger_down_returns_503(self):
        ledger = MagicMock(spec=PurchaseLedgerService)
        ledger.has_purchase = AsyncMock(side_effect=DataSourceError("has_purchase", "down"))

        with pytest.raises(HTTPException) as exc_info:
            await check_purchase("user-123", "product-123", ledger)

        assert exc_info.value.status_code == 503


# ============================================================================
# Admin Grant Route Tests
# ============================================================================


class TestManualGrant:
    """Tests for POST /v1/admin/grants."""

    @pytest.mark.asyncio
    async def test_grants_and_returns_messages(self, db_session, store):
        store.add_masterclass("prod_style", "Style Foundations")

        with patch("vault_access.api.routes.SQLAlchemyEntitlementStore", return_value=store):
            response = await create_manual_grant(
                ManualGrantRequest(user_id="user-123", product_id="prod_style"), db_session
            )

        assert response.granted is True
        assert response.messages == ["Granted Masterclass: Style Foundations"]

    @pytest.mark.asyncio
    async def test_no_match(self, db_session, store):
        with patch("vault_access.api.routes.SQLAlchemyEntitlementStore", return_value=store):
            response = await create_manual_grant(
                ManualGrantRequest(user_id="user-123", product_id="prod_unknown"), db_session
            )

        assert response.granted is False
        assert response.messages == []

    @pytest.mark.asyncio
    async def test_missing_profile_returns_404(self, db_session, store, grant_config):
        with (
            patch("vault_access.api.routes.SQLAlchemyEntitlementStore", return_value=store),
            patch("vault_access.api.routes.settings") as mock_settings,
        ):
            mock_settings.grant_config.return_value = grant_config

            with pytest.raises(HTTPException) as exc_info:
                await create_manual_grant(
                    ManualGrantRequest(
                        user_id="ghost", product_id=grant_config.full_access_product_id
                    ),
                    db_session,
                )

        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_store_down_returns_503(self, db_session, store):
        store.fail_on["find_offer_by_product"] = DataSourceError("find_offer", "down")

        with patch("vault_access.api.routes.SQLAlchemyEntitlementStore", return_value=store):
            with pytest.raises(HTTPException) as exc_info:
                await create_manual_grant(
                    ManualGrantRequest(user_id="user-123", product_id="prod_x"), db_session
                )

        assert exc_info.value.status_code == 503


# ============================================================================
# Service Key Tests
# ============================================================================


class TestServiceKey:
    """Tests for the X-API-Key dependency."""

    def test_validate_accepts_matching_key(self):
        validate_service_key("secret", "secret")

    @pytest.mark.parametrize("provided", [None, "", "wrong"])
    def test_validate_rejects(self, provided):
        with pytest.raises(AuthenticationError):
            validate_service_key(provided, "secret")

    @pytest.mark.asyncio
    async def test_dependency_accepts_configured_key(self):
        with patch("vault_access.api.dependencies.settings") as mock_settings:
            mock_settings.api_key = "test-service-key"
            await require_service_key("test-service-key")

    @pytest.mark.asyncio
    async def test_dependency_rejects_wrong_key(self):
        with patch("vault_access.api.dependencies.settings") as mock_settings:
            mock_settings.api_key = "test-service-key"

            with pytest.raises(HTTPException) as exc_info:
                await require_service_key("nope")

        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_dependency_unconfigured_returns_503(self):
        with patch("vault_access.api.dependencies.settings") as mock_settings:
            mock_settings.api_key = None

            with pytest.raises(HTTPException) as exc_info:
                await require_service_key("anything")

        assert exc_info.value.status_code == 503


# ============================================================================
# Health Check Tests
# ============================================================================


class TestHealthCheck:
    """Tests for GET /health."""

    @pytest.mark.asyncio
    async def test_healthy(self, db_session):
        response = await health_check(db_session)

        assert response.status == "healthy"
        assert response.database == "connected"

    @pytest.mark.asyncio
    async def test_unhealthy(self, db_session):
        db_session.execute = AsyncMock(side_effect=Exception("Connection refused"))

        with pytest.raises(HTTPException) as exc_info:
            await health_check(db_session)

        assert exc_info.value.status_code == 503

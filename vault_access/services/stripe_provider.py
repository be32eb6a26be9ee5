"""
Stripe Payment Provider Implementation.

NO DICTIONARIES - All data uses strongly typed models.
"""

from typing import Any

import stripe
from structlog import get_logger

from vault_access.exceptions import PaymentProviderError, WebhookVerificationError
from vault_access.services.payment_provider import CheckoutEvent, LineItem

logger = get_logger(__name__)


def _field(obj: Any, name: str) -> Any:
    """Read a field from a Stripe object or a plain mapping; None if absent."""
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


def _product_id(price: Any) -> str | None:
    """price.product is either the product id or an expanded Product object."""
    product = _field(price, "product")
    if product is None or isinstance(product, str):
        return product or None
    product_id = _field(product, "id")
    return str(product_id) if product_id else None


class StripeProvider:
    """
    Stripe payment provider implementation.

    Implements the PaymentProvider protocol for Stripe Checkout.
    """

    def __init__(self, api_key: str, webhook_secret: str) -> None:
        """
        Initialize Stripe provider.

        Args:
            api_key: Stripe secret API key
            webhook_secret: Stripe webhook signing secret
        """
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        stripe.api_key = api_key

    async def verify_webhook(self, payload: bytes, signature: str) -> CheckoutEvent:
        """
        Verify and parse Stripe webhook event.

        Args:
            payload: Raw webhook payload
            signature: Stripe-Signature header value

        Returns:
            Parsed checkout event

        Raises:
            WebhookVerificationError: If signature verification fails
        """
        try:
            logger.info("verifying_stripe_webhook", signature_present=bool(signature))

            event = stripe.Webhook.construct_event(  # type: ignore[no-untyped-call]
                payload, signature, self.webhook_secret
            )

            logger.info(
                "stripe_webhook_verified",
                event_id=event.id,
                event_type=event.type,
            )

            session = event.data.object
            metadata = _field(session, "metadata")
            customer_details = _field(session, "customer_details")

            user_id = _field(session, "client_reference_id") or _field(metadata, "userId")
            customer_email = _field(customer_details, "email") or _field(
                session, "customer_email"
            )

            return CheckoutEvent(
                event_id=event.id,
                event_type=event.type,
                session_id=_field(session, "id"),
                user_id=user_id or None,
                customer_email=customer_email or None,
            )

        except stripe.SignatureVerificationError as exc:
            logger.error("stripe_webhook_verification_failed", error=str(exc))
            raise WebhookVerificationError("Invalid Stripe webhook signature") from exc
        except Exception as exc:
            logger.error("stripe_webhook_parsing_failed", error=str(exc))
            raise WebhookVerificationError(f"Failed to parse Stripe webhook: {exc}") from exc

    async def list_line_items(self, session_id: str) -> list[LineItem]:
        """
        List the products bought in a Checkout Session.

        Items whose price has no product are skipped.

        Raises:
            PaymentProviderError: If Stripe API call fails
        """
        try:
            logger.info("listing_stripe_line_items", session_id=session_id)

            line_items = stripe.checkout.Session.list_line_items(session_id, limit=100)

        except stripe.StripeError as exc:
            logger.error(
                "stripe_line_items_failed",
                session_id=session_id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise PaymentProviderError(f"Failed to list line items: {exc}") from exc

        items: list[LineItem] = []
        for item in _field(line_items, "data") or []:
            product_id = _product_id(_field(item, "price"))
            if product_id is None:
                logger.warning("stripe_line_item_without_product", session_id=session_id)
                continue

            currency = _field(item, "currency")
            items.append(
                LineItem(
                    product_id=product_id,
                    amount_minor=_field(item, "amount_total"),
                    currency=currency.upper() if currency else None,
                )
            )

        logger.info("stripe_line_items_listed", session_id=session_id, count=len(items))
        return items

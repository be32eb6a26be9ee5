"""
Payment Provider Protocol - Provider-agnostic checkout interface.

NO DICTIONARIES - All data uses strongly typed models.
"""

from dataclasses import dataclass
from typing import Protocol

CHECKOUT_COMPLETED = "checkout.session.completed"


@dataclass(frozen=True)
class CheckoutEvent:
    """
    Provider-agnostic checkout webhook event.

    user_id is the purchasing identity attached to the checkout session, or
    None when the session carried none.
    """

    event_id: str
    event_type: str
    session_id: str | None
    user_id: str | None
    customer_email: str | None = None

    @property
    def is_checkout_completed(self) -> bool:
        return self.event_type == CHECKOUT_COMPLETED


@dataclass(frozen=True)
class LineItem:
    """One purchased product in a completed checkout."""

    product_id: str
    amount_minor: int | None = None
    currency: str | None = None


class PaymentProvider(Protocol):
    """
    Payment provider protocol.

    The webhook route depends only on this interface.
    """

    async def verify_webhook(self, payload: bytes, signature: str) -> CheckoutEvent:
        """
        Verify and parse webhook event from provider.

        Args:
            payload: Raw webhook payload
            signature: Webhook signature for verification

        Returns:
            Parsed checkout event

        Raises:
            WebhookVerificationError: If signature verification fails
        """
        ...

    async def list_line_items(self, session_id: str) -> list[LineItem]:
        """
        List the products bought in a checkout session.

        Raises:
            PaymentProviderError: If the provider call fails
        """
        ...

"""
Exception Classes - Strongly typed exception hierarchy.

NO DICTIONARIES - All exceptions have typed attributes.
"""


class VaultError(Exception):
    """Base exception for all vault access errors."""

    pass


class DataSourceError(VaultError):
    """Raised when the profile, catalog or grant store fails."""

    def __init__(self, operation: str, message: str) -> None:
        self.operation = operation
        self.message = message
        super().__init__(f"Data source error during {operation}: {message}")


class ProfileNotFoundError(DataSourceError):
    """Raised when a profile row to patch does not exist."""

    def __init__(self, user_id: str) -> None:
        self.user_id = user_id
        super().__init__("patch_profile_flags", f"Profile not found: {user_id}")


class GrantWriteError(DataSourceError):
    """Raised when an access grant could not be persisted or read back."""

    def __init__(self, user_id: str, target_id: str, message: str) -> None:
        self.user_id = user_id
        self.target_id = target_id
        super().__init__("upsert_access_grant", f"{user_id} -> {target_id}: {message}")


class CatalogValidationError(DataSourceError):
    """Raised when a catalog row fails boundary validation."""

    def __init__(self, catalog: str, product_id: str, message: str) -> None:
        self.catalog = catalog
        self.product_id = product_id
        super().__init__(f"find_{catalog}", f"Invalid {catalog} row for {product_id}: {message}")


class UnrecognizedOfferCategoryError(VaultError):
    """Raised when an offer's category maps to no tier and the policy is strict."""

    def __init__(self, product_id: str, category_slug: str) -> None:
        self.product_id = product_id
        self.category_slug = category_slug
        super().__init__(
            f"Offer for product {product_id} has unrecognized category: {category_slug}"
        )


class PaymentProviderError(VaultError):
    """Raised when payment provider operation fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Payment provider error: {message}")


class WebhookVerificationError(VaultError):
    """Raised when webhook verification fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Webhook verification error: {message}")


class AuthenticationError(VaultError):
    """Raised when authentication fails (missing or invalid service key)."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Authentication failed: {message}")

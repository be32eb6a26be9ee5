"""
Domain Models - Internal business logic models using dataclasses.

NO DICTIONARIES - All data structures are strongly typed immutable dataclasses.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from vault_access.models.api import (
    AccessLevel,
    GrantLogLevel,
    GrantTargetType,
    UnrecognizedOfferPolicy,
)


def _flag(value: Any) -> bool:
    """Only a real boolean True counts; anything else is falsy."""
    return value is True


@dataclass(frozen=True)
class UserProfile:
    """Immutable snapshot of the entitlement fields of a profile row."""

    has_full_unlock: bool = False
    has_course_pass: bool = False
    is_guest: bool = False
    active_studio_client: bool = False

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "UserProfile":
        """Normalize a loosely typed profile row. Never raises."""
        return cls(
            has_full_unlock=_flag(row.get("has_full_unlock")),
            has_course_pass=_flag(row.get("has_course_pass")),
            is_guest=_flag(row.get("is_guest")),
            active_studio_client=_flag(row.get("active_studio_client")),
        )


@dataclass(frozen=True)
class AccessSummary:
    """Resolved tier plus the derived capability checks."""

    access_level: AccessLevel
    can_access_masterclass: bool
    can_access_course: bool
    has_studio_access: bool


@dataclass(frozen=True)
class OfferRecord:
    """Offer catalog entry as consumed by the grant procedure."""

    product_id: str
    category_slug: str


@dataclass(frozen=True)
class CatalogEntry:
    """Masterclass or chapter catalog entry."""

    id: str
    title: str
    product_id: str


@dataclass(frozen=True)
class GrantRequest:
    """Intent to link a user to a purchased entity."""

    user_id: str
    target_type: GrantTargetType
    target_id: str
    product_id: str | None = None

    def __post_init__(self) -> None:
        """Validate grant keys."""
        if not self.user_id:
            raise ValueError("user_id cannot be empty")
        if not self.target_id:
            raise ValueError("target_id cannot be empty")


@dataclass(frozen=True)
class AccessGrantRecord:
    """Persisted grant record."""

    user_id: str
    target_type: GrantTargetType
    target_id: str
    product_id: str | None
    created_at: datetime | None = None


@dataclass(frozen=True)
class GrantConfig:
    """Configuration injected into the grant procedure at construction."""

    full_access_product_id: str | None = None
    full_access_category: str = "full_access"
    course_pass_category: str = "course_pass"
    unrecognized_offer_policy: UnrecognizedOfferPolicy = UnrecognizedOfferPolicy.FALLTHROUGH


@dataclass(frozen=True)
class GrantLogEntry:
    """One message emitted through the grant logger."""

    level: GrantLogLevel
    message: str


@dataclass(frozen=True)
class GrantOutcome:
    """Result of applying one grant rule."""

    rule: str
    description: str
    target_type: GrantTargetType | None = None
    target_id: str | None = None
    profile_flags: tuple[str, ...] = field(default_factory=tuple)

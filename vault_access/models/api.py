"""
API Models - Pydantic models for request/response and boundary validation.

NO DICTIONARIES - All data structures are strongly typed.
"""

from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class AccessLevel(str, Enum):
    """Coarse content-access tier derived from a profile."""

    ALL_ACCESS = "all_access"
    COURSE_PASS = "course_pass"
    RESTRICTED = "restricted"
    BASIC = "basic"


class GrantTargetType(str, Enum):
    """Entity class an access grant record points at."""

    MASTERCLASS = "masterclass"
    CHAPTER = "chapter"


class GrantLogLevel(str, Enum):
    """Levels accepted by the grant procedure's injected logger."""

    SUCCESS = "success"
    ERROR = "error"


class UnrecognizedOfferPolicy(str, Enum):
    """What to do with an offer whose category matches no known tier."""

    FALLTHROUGH = "fallthrough"
    ERROR = "error"


class FulfillmentStatus(str, Enum):
    """Outcome of handling one payment webhook event."""

    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"
    ACKNOWLEDGED = "acknowledged"


# ============================================================================
# Boundary Models - validate loosely typed rows entering the core
# ============================================================================


class OfferRow(BaseModel):
    """Offer catalog row as stored; only the consumed fields are kept."""

    model_config = ConfigDict(extra="ignore")

    stripe_product_id: str = Field(..., min_length=1)
    slug: str = Field(..., min_length=1)

    @field_validator("slug")
    @classmethod
    def normalize_slug(cls, v: str) -> str:
        """Category slugs are compared case-insensitively."""
        return v.strip().lower()


class CatalogRow(BaseModel):
    """Masterclass or chapter catalog row."""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    stripe_product_id: str = Field(..., min_length=1)

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: object) -> object:
        """UUID primary keys are carried as strings."""
        return str(v) if v is not None else v


# ============================================================================
# Access Models
# ============================================================================


class AccessSummaryResponse(BaseModel):
    """GET /v1/access/{user_id} response."""

    user_id: str
    access_level: AccessLevel
    can_access_masterclass: bool
    can_access_course: bool
    has_studio_access: bool
    profile_found: bool


class ObjectAccessResponse(BaseModel):
    """GET /v1/access/{user_id}/objects/{object_id} response."""

    user_id: str
    object_id: str
    kind: GrantTargetType | None = None
    has_access: bool


class AccessGrantItem(BaseModel):
    """One stored access grant."""

    target_type: GrantTargetType
    target_id: str
    product_id: str | None = None
    created_at: datetime | None = None


class AccessGrantListResponse(BaseModel):
    """GET /v1/access/{user_id}/grants response."""

    user_id: str
    grants: list[AccessGrantItem] = Field(default_factory=list)


# ============================================================================
# Purchase Models
# ============================================================================


class PurchaseCheckResponse(BaseModel):
    """GET /v1/purchases/{user_id}/products/{product_id} response."""

    user_id: str
    product_id: str
    purchased: bool


class PurchaseListResponse(BaseModel):
    """GET /v1/purchases/{user_id} response."""

    user_id: str
    product_ids: list[str] = Field(default_factory=list)


# ============================================================================
# Grant Models
# ============================================================================


class ManualGrantRequest(BaseModel):
    """POST /v1/admin/grants request body."""

    user_id: str = Field(..., min_length=1, max_length=255)
    product_id: str = Field(..., min_length=1, max_length=255)

    @field_validator("user_id", "product_id")
    @classmethod
    def strip_whitespace(cls, v: str) -> str:
        """Reject identifiers that are only whitespace."""
        stripped = v.strip()
        if not stripped:
            raise ValueError("identifier cannot be blank")
        return stripped


class ManualGrantResponse(BaseModel):
    """POST /v1/admin/grants response."""

    user_id: str
    product_id: str
    granted: bool
    messages: list[str] = Field(default_factory=list)


# ============================================================================
# Webhook Models
# ============================================================================


class WebhookAckResponse(BaseModel):
    """POST /v1/webhooks/stripe response - always returned with 200."""

    status: FulfillmentStatus
    event_id: str
    granted: list[str] = Field(default_factory=list)
    unmatched: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)


# ============================================================================
# Health Check Models
# ============================================================================


class HealthResponse(BaseModel):
    """GET /health response."""

    status: Literal["healthy", "unhealthy"]
    database: Literal["connected", "disconnected"]
    timestamp: str

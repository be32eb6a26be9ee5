"""
Tests for domain dataclasses and boundary Pydantic models.
"""

from dataclasses import FrozenInstanceError
from types import SimpleNamespace
from uuid import uuid4

import pytest
from hypothesis import given
from hypothesis import strategies as st
from pydantic import ValidationError

from vault_access.models.api import (
    CatalogRow,
    GrantTargetType,
    ManualGrantRequest,
    OfferRow,
    UnrecognizedOfferPolicy,
)
from vault_access.models.domain import GrantConfig, GrantRequest, UserProfile

identifiers = st.text(min_size=1, max_size=50).filter(lambda x: x.strip())


class TestGrantRequest:
    """Tests for GrantRequest validation."""

    def test_valid(self):
        request = GrantRequest(
            user_id="user-123", target_type=GrantTargetType.CHAPTER, target_id="ch-1"
        )
        assert request.product_id is None

    def test_empty_user_rejected(self):
        with pytest.raises(ValueError, match="user_id"):
            GrantRequest(user_id="", target_type=GrantTargetType.CHAPTER, target_id="ch-1")

    def test_empty_target_rejected(self):
        with pytest.raises(ValueError, match="target_id"):
            GrantRequest(user_id="user-123", target_type=GrantTargetType.CHAPTER, target_id="")

    def test_frozen(self):
        request = GrantRequest(
            user_id="user-123", target_type=GrantTargetType.MASTERCLASS, target_id="mc-1"
        )
        with pytest.raises(FrozenInstanceError):
            request.user_id = "other"  # type: ignore[misc]


class TestGrantConfig:
    """Tests for GrantConfig defaults."""

    def test_defaults(self):
        config = GrantConfig()
        assert config.full_access_product_id is None
        assert config.full_access_category == "full_access"
        assert config.course_pass_category == "course_pass"
        assert config.unrecognized_offer_policy == UnrecognizedOfferPolicy.FALLTHROUGH

    def test_user_profile_defaults(self):
        assert UserProfile() == UserProfile.from_row({})


class TestBoundaryRows:
    """Catalog rows are validated where they enter the core."""

    def test_offer_row_normalizes_slug(self):
        row = OfferRow.model_validate({"stripe_product_id": "prod_1", "slug": " FULL_ACCESS "})
        assert row.slug == "full_access"

    def test_offer_row_ignores_extra_fields(self):
        row = OfferRow.model_validate(
            {"stripe_product_id": "prod_1", "slug": "course_pass", "title": "Pass", "price": 199}
        )
        assert row.model_dump() == {"stripe_product_id": "prod_1", "slug": "course_pass"}

    def test_offer_row_requires_product(self):
        with pytest.raises(ValidationError):
            OfferRow.model_validate({"slug": "course_pass"})

    def test_catalog_row_from_attributes(self):
        entry_id = uuid4()
        obj = SimpleNamespace(id=entry_id, title="Style Foundations", stripe_product_id="prod_mc")

        row = CatalogRow.model_validate(obj, from_attributes=True)

        assert row.id == str(entry_id)

    def test_catalog_row_requires_id(self):
        with pytest.raises(ValidationError):
            CatalogRow.model_validate({"id": None, "title": "T", "stripe_product_id": "p"})

    @given(user_id=identifiers, product_id=identifiers)
    def test_manual_grant_request_strips(self, user_id: str, product_id: str):
        request = ManualGrantRequest(user_id=f" {user_id} ", product_id=product_id)
        assert request.user_id == user_id.strip()

    def test_manual_grant_request_blank_rejected(self):
        with pytest.raises(ValidationError):
            ManualGrantRequest(user_id="   ", product_id="prod_x")

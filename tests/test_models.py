"""Tests for wire payload models."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from pydantic import ValidationError

from goiam.models import (
    DashboardProfile,
    Envelope,
    PolicyRef,
    Resource,
    ResourceGrant,
    UserProfile,
    VerifyResult,
)
from tests.constants import DASHBOARD_PAYLOAD, USER_PAYLOAD


class TestEnvelope:
    """Tests for the response envelope."""

    def test_defaults(self) -> None:
        """Missing fields default to a failed, empty envelope."""
        envelope = Envelope.model_validate({})
        assert envelope.success is False
        assert envelope.message == ""
        assert envelope.data is None


class TestResourceGrant:
    """Tests for role/policy id normalization."""

    def test_map_form_keeps_true_entries(self) -> None:
        """Only ids mapped to true are members."""
        grant = ResourceGrant.model_validate(
            {"key": "billing", "role_ids": {"r1": True, "r2": False}}
        )
        assert grant.role_ids == frozenset({"r1"})
        assert grant.policy_ids == frozenset()

    def test_list_form_and_camel_case(self) -> None:
        """Lists and camelCase keys are accepted."""
        grant = ResourceGrant.model_validate({"key": "k", "policyIds": ["p1", "p2"]})
        assert grant.policy_ids == frozenset({"p1", "p2"})

    def test_rejects_scalar(self) -> None:
        """A scalar id set is invalid."""
        with pytest.raises(ValidationError):
            ResourceGrant.model_validate({"key": "k", "role_ids": 5})


class TestUserProfile:
    """Tests for the user profile snapshot."""

    def test_full_payload(self) -> None:
        """The sample payload parses into nested models."""
        user = UserProfile.model_validate(USER_PAYLOAD)
        assert user.roles["role-1"].name == "admin"
        assert user.resources["billing"].role_ids == frozenset({"role-1"})
        assert user.policies["pol-1"].name == "owner"

    def test_null_maps(self) -> None:
        """null roles/resources/policies become empty maps."""
        user = UserProfile.model_validate(
            {"id": "u", "roles": None, "resources": None, "policies": None}
        )
        assert user.roles == {}
        assert user.resources == {}
        assert user.has_resources([]) is True

    def test_camel_case_and_dates(self) -> None:
        """camelCase keys and ISO dates are accepted."""
        user = UserProfile.model_validate(
            {"id": "u", "projectId": "p", "createdAt": "2026-01-01T00:00:00Z"}
        )
        assert user.project_id == "p"
        assert user.created_at == datetime(2026, 1, 1, tzinfo=timezone.utc)

    def test_frozen(self) -> None:
        """Snapshots cannot be patched."""
        user = UserProfile.model_validate(USER_PAYLOAD)
        with pytest.raises(ValidationError):
            user.name = "changed"

    def test_json_round_trip(self) -> None:
        """The cached JSON form parses back to an equal profile."""
        user = UserProfile.model_validate(USER_PAYLOAD)
        assert UserProfile.model_validate_json(user.model_dump_json()) == user

    def test_has_resources(self) -> None:
        """Membership is checked against resource keys."""
        user = UserProfile.model_validate(USER_PAYLOAD)
        assert user.has_resources(["billing", "reports"])
        assert not user.has_resources(["billing", "admin"])


class TestOtherModels:
    """Tests for the remaining payload models."""

    def test_policy_bare_name(self) -> None:
        """A bare string is a policy name."""
        assert PolicyRef.model_validate("owner").name == "owner"

    def test_dashboard_profile(self) -> None:
        """The dashboard payload carries setup and user."""
        dashboard = DashboardProfile.model_validate(DASHBOARD_PAYLOAD)
        assert dashboard.setup.client_id == "dash-client"
        assert dashboard.user.id == "user-1"

    def test_verify_result_requires_token(self) -> None:
        """A verify payload without a token is invalid."""
        assert VerifyResult.model_validate({"accessToken": "t"}).access_token == "t"
        with pytest.raises(ValidationError):
            VerifyResult.model_validate(None)

    def test_resource_payload_omits_none(self) -> None:
        """Unset optional dates are not sent."""
        payload = Resource(name="Billing", key="billing").to_payload()
        assert payload["name"] == "Billing"
        assert "deleted_at" not in payload

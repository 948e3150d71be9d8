"""Pydantic models for GoIAM wire payloads.

Every endpoint answers with the ``{success, message, data}`` envelope.
User profiles are immutable snapshots: a refresh replaces the whole
object and never patches it.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator


class Envelope(BaseModel):
    """Uniform response wrapper used by every GoIAM endpoint."""

    model_config = ConfigDict(extra="ignore")

    success: bool = False
    message: str = ""
    data: Any = None


class RoleRef(BaseModel):
    """A role attached to a user."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str = ""
    name: str = ""


class PolicyArgument(BaseModel):
    """A single policy argument value."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    static: str = ""


class PolicyMapping(BaseModel):
    """Argument bindings of a policy."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    arguments: dict[str, PolicyArgument] = Field(default_factory=dict)


class PolicyRef(BaseModel):
    """A policy attached to a user.

    Older servers send a bare policy name instead of an object.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    name: str = ""
    mapping: PolicyMapping = Field(default_factory=PolicyMapping)

    @model_validator(mode="before")
    @classmethod
    def accept_bare_name(cls, v: Any) -> Any:
        """Wrap a bare string into ``{"name": ...}``."""
        if isinstance(v, str):
            return {"name": v}
        return v


def _id_set(v: Any) -> frozenset[str]:
    """Normalize ``{"id": true}`` maps and id lists into a frozenset."""
    if v is None:
        return frozenset()
    if isinstance(v, dict):
        return frozenset(str(k) for k, granted in v.items() if granted)
    if isinstance(v, (list, tuple, set, frozenset)):
        return frozenset(str(item) for item in v)
    msg = f"Expected a map of id to bool or a list of ids, got {type(v).__name__}"
    raise ValueError(msg)


class ResourceGrant(BaseModel):
    """Per-resource bundle of role and policy ids granted to a user.

    Only used for membership checks; see
    ``SessionManager.has_required_resources``.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    key: str = ""
    name: str = ""
    role_ids: frozenset[str] = Field(
        default_factory=frozenset,
        validation_alias=AliasChoices("role_ids", "roleIds", "RoleIds"),
    )
    policy_ids: frozenset[str] = Field(
        default_factory=frozenset,
        validation_alias=AliasChoices("policy_ids", "policyIds", "PolicyIds"),
    )

    @field_validator("role_ids", "policy_ids", mode="before")
    @classmethod
    def normalize_ids(cls, v: Any) -> frozenset[str]:
        """Accept both the map and list wire forms."""
        return _id_set(v)


class UserProfile(BaseModel):
    """Snapshot of the authenticated user as returned by ``/me/v1``."""

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    id: str = ""
    project_id: str = Field(default="", validation_alias=AliasChoices("project_id", "projectId"))
    name: str = ""
    email: str = ""
    phone: str = ""
    enabled: bool = False
    profile_pic: str = Field(default="", validation_alias=AliasChoices("profile_pic", "profilePic"))
    expiry: datetime | None = None
    roles: dict[str, RoleRef] = Field(default_factory=dict)
    resources: dict[str, ResourceGrant] = Field(default_factory=dict)
    policies: dict[str, PolicyRef] = Field(default_factory=dict)
    created_at: datetime | None = Field(
        default=None, validation_alias=AliasChoices("created_at", "createdAt")
    )
    created_by: str = Field(default="", validation_alias=AliasChoices("created_by", "createdBy"))
    updated_at: datetime | None = Field(
        default=None, validation_alias=AliasChoices("updated_at", "updatedAt")
    )
    updated_by: str = Field(default="", validation_alias=AliasChoices("updated_by", "updatedBy"))

    @field_validator("roles", "resources", "policies", mode="before")
    @classmethod
    def null_to_empty(cls, v: Any) -> Any:
        """The server sends ``null`` for users without grants."""
        return v or {}

    def has_resources(self, keys: list[str] | tuple[str, ...] | set[str]) -> bool:
        """Check that every key is granted to this user."""
        return all(key in self.resources for key in keys)


class ClientSetup(BaseModel):
    """Client bootstrap info returned by the dashboard profile endpoint."""

    model_config = ConfigDict(extra="allow")

    client_id: str = ""


class DashboardProfile(BaseModel):
    """Payload of ``/me/v1/dashboard``: setup info plus the user."""

    model_config = ConfigDict(extra="ignore")

    setup: ClientSetup | None = None
    user: UserProfile | None = None


class VerifyResult(BaseModel):
    """Payload of ``/auth/v1/verify``."""

    model_config = ConfigDict(extra="ignore")

    access_token: str = Field(validation_alias=AliasChoices("access_token", "accessToken"))


class Resource(BaseModel):
    """Admin resource entity managed through ``/resource/v1``.

    Unrelated to ``ResourceGrant``; never cached locally.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str = ""
    name: str = ""
    description: str = ""
    key: str = ""
    enabled: bool = True
    project_id: str = Field(default="", validation_alias=AliasChoices("project_id", "projectId"))
    created_at: datetime | None = Field(
        default=None, validation_alias=AliasChoices("created_at", "createdAt")
    )
    created_by: str = Field(default="", validation_alias=AliasChoices("created_by", "createdBy"))
    updated_at: datetime | None = Field(
        default=None, validation_alias=AliasChoices("updated_at", "updatedAt")
    )
    updated_by: str = Field(default="", validation_alias=AliasChoices("updated_by", "updatedBy"))
    deleted_at: datetime | None = Field(
        default=None, validation_alias=AliasChoices("deleted_at", "deletedAt")
    )

    def to_payload(self) -> dict[str, Any]:
        """JSON body for ``POST /resource/v1/``."""
        return self.model_dump(mode="json", exclude_none=True)

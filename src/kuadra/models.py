"""Pydantic models for the AwsAccount and User records.

These models provide:
1. Type-safe parsing of records read from the object store
2. Validation at the boundary (fail fast, fail loudly)
3. Serialization back to the Kubernetes wire shape (camelCase, spec/status sections)
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Annotated, Any

from pydantic import BaseModel, Field, field_validator

# =============================================================================
# API coordinates
# =============================================================================

API_GROUP = "kuadra.kuadrant.io"
API_VERSION = "v1"
API_GROUP_VERSION = f"{API_GROUP}/{API_VERSION}"

KIND_AWS_ACCOUNT = "AwsAccount"
KIND_USER = "User"
PLURAL_AWS_ACCOUNT = "awsaccounts"
PLURAL_USER = "users"

# IAM user names: alphanumerics plus +=,.@_- and at most 64 characters
VALID_IAM_USER_NAME_PATTERN = r"^[\w+=,.@-]{1,64}$"

# Kubernetes namespace and secret names (RFC 1123 label)
MAX_NAMESPACE_LENGTH = 63
_INVALID_NAME_CHARS = re.compile(r"[^a-z0-9-]+")

LOGIN_PROFILE_SECRET_SUFFIX = "login-profile"
ACCESS_KEY_SECRET_SUFFIX = "access-key"

_RECORD_CONFIG = {"extra": "ignore", "populate_by_name": True}


@dataclass(frozen=True)
class ObjectKey:
    """Namespaced name identifying one record in the object store."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


def namespace_for_user(user_name: str) -> str:
    """Map an IAM user name onto the name of its cluster-local namespace.

    IAM allows upper case and ``+=,.@_`` which namespaces do not; those are
    lowered or replaced by ``-``. Names that are already valid are unchanged.
    """
    name = _INVALID_NAME_CHARS.sub("-", user_name.lower()).strip("-")
    return name[:MAX_NAMESPACE_LENGTH].rstrip("-") or "user"


def login_profile_secret_name(user_name: str) -> str:
    return f"{namespace_for_user(user_name)}-{LOGIN_PROFILE_SECRET_SUFFIX}"


def access_key_secret_name(user_name: str) -> str:
    return f"{namespace_for_user(user_name)}-{ACCESS_KEY_SECRET_SUFFIX}"


# =============================================================================
# Metadata
# =============================================================================


class OwnerReference(BaseModel):
    """Ownership link from a child record to its parent."""

    model_config = _RECORD_CONFIG

    api_version: str = Field(alias="apiVersion")
    kind: str
    name: str
    uid: str
    controller: bool = True
    block_owner_deletion: bool = Field(True, alias="blockOwnerDeletion")


class ObjectMeta(BaseModel):
    """Subset of Kubernetes object metadata used by the reconcilers."""

    model_config = _RECORD_CONFIG

    name: Annotated[str, Field(min_length=1)]
    namespace: str = "default"
    # Optimistic concurrency token; None for records not yet persisted
    resource_version: str | None = Field(None, alias="resourceVersion")
    uid: str | None = None
    labels: dict[str, str] = Field(default_factory=dict)
    owner_references: list[OwnerReference] = Field(default_factory=list, alias="ownerReferences")

    @field_validator("labels", mode="before")
    @classmethod
    def null_labels(cls, v: Any) -> Any:
        return {} if v is None else v

    @field_validator("owner_references", mode="before")
    @classmethod
    def null_owner_references(cls, v: Any) -> Any:
        return [] if v is None else v


# =============================================================================
# AwsAccount
# =============================================================================


class AwsAccountSpec(BaseModel):
    """Desired state of an IAM principal."""

    model_config = _RECORD_CONFIG

    user_name: Annotated[str, Field(min_length=1, alias="userName")]
    groups: list[str] = Field(default_factory=list)
    # Reserved for the DNS zone subsystem; carried but not acted on
    zones: list[str] = Field(default_factory=list)

    @field_validator("user_name")
    @classmethod
    def validate_user_name(cls, v: str) -> str:
        if not re.match(VALID_IAM_USER_NAME_PATTERN, v):
            raise ValueError(f"userName must match {VALID_IAM_USER_NAME_PATTERN}: {v!r}")
        return v

    @field_validator("groups", "zones", mode="before")
    @classmethod
    def null_list(cls, v: Any) -> Any:
        return [] if v is None else v


class AwsAccountStatus(BaseModel):
    """Observed state of an IAM principal, as last refreshed or updated."""

    model_config = _RECORD_CONFIG

    namespace_created: bool = Field(False, alias="namespaceCreated")
    user_created: bool = Field(False, alias="userCreated")
    login_profile_created: bool = Field(False, alias="loginProfileCreated")
    access_key_created: bool = Field(False, alias="accessKeyCreated")
    user_groups: list[str] = Field(default_factory=list, alias="userGroups")

    @field_validator("user_groups", mode="before")
    @classmethod
    def null_list(cls, v: Any) -> Any:
        return [] if v is None else v

    def differs_from(self, other: AwsAccountStatus) -> bool:
        """Field-by-field change detection used to gate status write-back.

        Group order is significant: the list is persisted verbatim.
        """
        return (
            self.namespace_created != other.namespace_created
            or self.user_created != other.user_created
            or self.login_profile_created != other.login_profile_created
            or self.access_key_created != other.access_key_created
            or list(self.user_groups) != list(other.user_groups)
        )


class AwsAccount(BaseModel):
    """AwsAccount record: desired spec plus observed status."""

    model_config = _RECORD_CONFIG

    api_version: str = Field(API_GROUP_VERSION, alias="apiVersion")
    kind: str = KIND_AWS_ACCOUNT
    metadata: ObjectMeta
    spec: AwsAccountSpec
    status: AwsAccountStatus = Field(default_factory=AwsAccountStatus)

    @field_validator("status", mode="before")
    @classmethod
    def null_status(cls, v: Any) -> Any:
        return {} if v is None else v

    @property
    def key(self) -> ObjectKey:
        return ObjectKey(namespace=self.metadata.namespace, name=self.metadata.name)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the wire shape used by the object store."""
        return self.model_dump(by_alias=True, exclude_none=True)


# =============================================================================
# User (parent record)
# =============================================================================


class AwsAccountTemplateSpec(BaseModel):
    """Embedded desired-account section of a User."""

    model_config = _RECORD_CONFIG

    user: AwsAccountSpec


class AwsAccountTemplate(BaseModel):
    model_config = _RECORD_CONFIG

    spec: AwsAccountTemplateSpec


class UserSpec(BaseModel):
    model_config = _RECORD_CONFIG

    aws_account: AwsAccountTemplate = Field(alias="awsAccount")


class User(BaseModel):
    """User record, projected onto exactly one AwsAccount child."""

    model_config = _RECORD_CONFIG

    api_version: str = Field(API_GROUP_VERSION, alias="apiVersion")
    kind: str = KIND_USER
    metadata: ObjectMeta
    spec: UserSpec

    @property
    def key(self) -> ObjectKey:
        return ObjectKey(namespace=self.metadata.namespace, name=self.metadata.name)

    @property
    def account_spec(self) -> AwsAccountSpec:
        return self.spec.aws_account.spec.user

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)

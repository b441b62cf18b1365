"""Capability contracts consumed by the reconcilers.

The reconcilers depend only on these protocols. Concrete implementations
live in iam.py (boto3) and kube.py (kubernetes client); tests use the
in-memory doubles under tests/aws_mock.

Contract conventions:
- Existence queries return False for absent resources and raise only on
  transport or authorization errors.
- ``*_if_not_exists`` operations treat "already exists" as success.
- Object store operations raise NotFoundError, AlreadyExistsError and
  ConflictError from errors.py.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

from .models import AwsAccount, ObjectKey, User


@dataclass(frozen=True)
class AccessKey:
    """Programmatic credential pair returned by the identity provider."""

    access_key_id: str
    secret_access_key: str = field(repr=False)


class IdentityProvider(Protocol):
    """Identity provider operations on a single principal."""

    def is_existing_user(self, user_name: str) -> bool: ...

    def has_login_profile(self, user_name: str) -> bool: ...

    def has_access_key(self, user_name: str) -> bool: ...

    def list_groups_for_user(self, user_name: str) -> list[str]: ...

    def create_user_if_not_exists(self, user_name: str) -> None: ...

    def create_login_profile_if_not_exists(
        self, password: str, user_name: str, password_reset_required: bool
    ) -> None: ...

    def create_access_key_pair(self, user_name: str) -> AccessKey: ...

    def add_user_to_group(self, group_name: str, user_name: str) -> None: ...

    def remove_user_from_group(self, group_name: str, user_name: str) -> None: ...


class NamespaceStore(Protocol):
    """Cluster-local namespaces and the secrets stored in them."""

    def namespace_exists(self, name: str) -> bool: ...

    def create_namespace_if_not_exists(self, name: str) -> None: ...

    def get_secret(self, namespace: str, name: str) -> dict[str, str] | None: ...

    def create_secret_if_not_exists(
        self, namespace: str, name: str, data: dict[str, str]
    ) -> None: ...

    def put_secret(self, namespace: str, name: str, data: dict[str, str]) -> None:
        """Create the secret, or replace its data if it already exists."""
        ...


class ObjectStore(Protocol):
    """Versioned record storage for AwsAccount and User records."""

    def get_aws_account(self, key: ObjectKey) -> AwsAccount: ...

    def create_aws_account(self, account: AwsAccount) -> AwsAccount: ...

    def update_aws_account(self, account: AwsAccount) -> AwsAccount: ...

    def update_aws_account_status(self, account: AwsAccount) -> AwsAccount: ...

    def list_aws_accounts(self, namespace: str | None = None) -> list[AwsAccount]: ...

    def get_user(self, key: ObjectKey) -> User: ...

    def create_user(self, user: User) -> User: ...

    def update_user(self, user: User) -> User: ...

    def list_users(self, namespace: str | None = None) -> list[User]: ...

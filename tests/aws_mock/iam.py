"""Mock IAM identity provider."""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field

from kuadra.interfaces import AccessKey

from .failures import FailureInjector, client_error


@dataclass
class MockIamUser:
    """State of one IAM user."""

    name: str
    password: str | None = None
    password_reset_required: bool | None = None
    access_keys: list[AccessKey] = field(default_factory=list)
    groups: list[str] = field(default_factory=list)

    @property
    def has_login_profile(self) -> bool:
        return self.password is not None


class MockIamClient(FailureInjector):
    """In-memory IdentityProvider.

    Group membership is kept in join order. When ``known_groups`` is given,
    joining any other group fails with NoSuchEntity like the real API.
    """

    def __init__(self, known_groups: list[str] | None = None) -> None:
        super().__init__()
        self.users: dict[str, MockIamUser] = {}
        self.known_groups = set(known_groups) if known_groups is not None else None
        self._key_ids = itertools.count(1)

    def add_user(
        self,
        name: str,
        *,
        password: str | None = None,
        access_key: bool = False,
        groups: list[str] | None = None,
    ) -> MockIamUser:
        """Seed a pre-existing user."""
        user = MockIamUser(name=name, password=password, groups=list(groups or []))
        if access_key:
            user.access_keys.append(self._new_key())
        self.users[name] = user
        return user

    def _new_key(self) -> AccessKey:
        n = next(self._key_ids)
        return AccessKey(access_key_id=f"AKIAMOCK{n:012d}", secret_access_key=f"mock-secret-{n}")

    def _user(self, user_name: str, operation: str) -> MockIamUser:
        user = self.users.get(user_name)
        if user is None:
            raise client_error("NoSuchEntity", operation, f"The user {user_name} cannot be found.")
        return user

    # Queries

    def is_existing_user(self, user_name: str) -> bool:
        self._record("is_existing_user", user_name)
        return user_name in self.users

    def has_login_profile(self, user_name: str) -> bool:
        self._record("has_login_profile", user_name)
        user = self.users.get(user_name)
        return user is not None and user.has_login_profile

    def has_access_key(self, user_name: str) -> bool:
        self._record("has_access_key", user_name)
        return bool(self._user(user_name, "ListAccessKeys").access_keys)

    def list_groups_for_user(self, user_name: str) -> list[str]:
        self._record("list_groups_for_user", user_name)
        return list(self._user(user_name, "ListGroupsForUser").groups)

    # Mutations

    def create_user_if_not_exists(self, user_name: str) -> None:
        self._record("create_user_if_not_exists", user_name)
        self.users.setdefault(user_name, MockIamUser(name=user_name))

    def create_login_profile_if_not_exists(
        self, password: str, user_name: str, password_reset_required: bool
    ) -> None:
        self._record("create_login_profile_if_not_exists", password, user_name)
        user = self._user(user_name, "CreateLoginProfile")
        if user.password is None:
            user.password = password
            user.password_reset_required = password_reset_required

    def create_access_key_pair(self, user_name: str) -> AccessKey:
        self._record("create_access_key_pair", user_name)
        user = self._user(user_name, "CreateAccessKey")
        key = self._new_key()
        user.access_keys.append(key)
        return key

    def add_user_to_group(self, group_name: str, user_name: str) -> None:
        self._record("add_user_to_group", group_name, user_name)
        user = self._user(user_name, "AddUserToGroup")
        if self.known_groups is not None and group_name not in self.known_groups:
            raise client_error(
                "NoSuchEntity", "AddUserToGroup", f"The group {group_name} cannot be found."
            )
        if group_name not in user.groups:
            user.groups.append(group_name)

    def remove_user_from_group(self, group_name: str, user_name: str) -> None:
        self._record("remove_user_from_group", group_name, user_name)
        user = self._user(user_name, "RemoveUserFromGroup")
        if group_name not in user.groups:
            raise client_error(
                "NoSuchEntity",
                "RemoveUserFromGroup",
                f"The user {user_name} is not in group {group_name}.",
            )
        user.groups.remove(group_name)

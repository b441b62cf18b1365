"""IAM identity provider backed by boto3.

Error translation happens here, once:
- ``NoSuchEntity`` on a query is a negative answer, not a failure
- ``EntityAlreadyExists`` on a create-if-absent call is success
- every other ClientError propagates unchanged

Credentials come from the boto3 default provider chain (IRSA web identity,
instance profile, environment). This module never reads or stores them.
"""

from __future__ import annotations

import logging
from typing import Any

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import ClientError

from .interfaces import AccessKey

logger = logging.getLogger(__name__)

ERROR_NO_SUCH_ENTITY = "NoSuchEntity"
ERROR_ENTITY_ALREADY_EXISTS = "EntityAlreadyExists"

# botocore retries throttling and 5xx responses inside a single call
BOTO_RETRY_CONFIG = BotoConfig(retries={"max_attempts": 5, "mode": "standard"})


def error_code(error: ClientError) -> str | None:
    """Extract the AWS error code from a ClientError."""
    return error.response.get("Error", {}).get("Code")


def is_no_such_entity(error: ClientError) -> bool:
    return error_code(error) == ERROR_NO_SUCH_ENTITY


def is_entity_already_exists(error: ClientError) -> bool:
    return error_code(error) == ERROR_ENTITY_ALREADY_EXISTS


class IamClient:
    """IdentityProvider implementation over the boto3 IAM client."""

    def __init__(self, client: Any) -> None:
        """Initialize with an existing boto3 IAM client.

        Args:
            client: A ``boto3.client("iam")`` instance (or a stubbed one in tests).
        """
        self._client = client

    @classmethod
    def from_region(cls, region_name: str) -> IamClient:
        """Create a client using the default credential chain."""
        client = boto3.client("iam", region_name=region_name, config=BOTO_RETRY_CONFIG)
        logger.info("Created IAM client", extra={"region": region_name})
        return cls(client)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def is_existing_user(self, user_name: str) -> bool:
        try:
            self._client.get_user(UserName=user_name)
        except ClientError as e:
            if is_no_such_entity(e):
                return False
            raise
        return True

    def has_login_profile(self, user_name: str) -> bool:
        try:
            self._client.get_login_profile(UserName=user_name)
        except ClientError as e:
            if is_no_such_entity(e):
                return False
            raise
        return True

    def has_access_key(self, user_name: str) -> bool:
        response = self._client.list_access_keys(UserName=user_name)
        return len(response.get("AccessKeyMetadata", [])) > 0

    def list_groups_for_user(self, user_name: str) -> list[str]:
        paginator = self._client.get_paginator("list_groups_for_user")
        groups: list[str] = []
        for page in paginator.paginate(UserName=user_name):
            groups.extend(group["GroupName"] for group in page.get("Groups", []))
        return groups

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def create_user_if_not_exists(self, user_name: str) -> None:
        try:
            self._client.create_user(UserName=user_name)
        except ClientError as e:
            if not is_entity_already_exists(e):
                raise
            logger.debug("IAM user already exists", extra={"user_name": user_name})

    def create_login_profile_if_not_exists(
        self, password: str, user_name: str, password_reset_required: bool
    ) -> None:
        try:
            self._client.create_login_profile(
                UserName=user_name,
                Password=password,
                PasswordResetRequired=password_reset_required,
            )
        except ClientError as e:
            if not is_entity_already_exists(e):
                raise
            logger.debug("Login profile already exists", extra={"user_name": user_name})

    def create_access_key_pair(self, user_name: str) -> AccessKey:
        response = self._client.create_access_key(UserName=user_name)
        key = response["AccessKey"]
        return AccessKey(
            access_key_id=key["AccessKeyId"],
            secret_access_key=key["SecretAccessKey"],
        )

    def add_user_to_group(self, group_name: str, user_name: str) -> None:
        self._client.add_user_to_group(GroupName=group_name, UserName=user_name)

    def remove_user_from_group(self, group_name: str, user_name: str) -> None:
        self._client.remove_user_from_group(GroupName=group_name, UserName=user_name)

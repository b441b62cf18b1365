"""Tests for the boto3-backed IAM client."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
from aws_mock import client_error
from botocore.exceptions import ClientError

from kuadra.iam import BOTO_RETRY_CONFIG, IamClient, error_code


@pytest.fixture
def boto_client() -> MagicMock:
    """Create a mock boto3 IAM client."""
    return MagicMock()


@pytest.fixture
def iam(boto_client: MagicMock) -> IamClient:
    return IamClient(boto_client)


class TestErrorCode:
    def test_extracts_code(self) -> None:
        assert error_code(client_error("NoSuchEntity")) == "NoSuchEntity"

    def test_missing_code(self) -> None:
        assert error_code(ClientError({}, "GetUser")) is None


class TestQueries:
    """Tests for existence and listing queries."""

    def test_existing_user(self, iam: IamClient, boto_client: MagicMock) -> None:
        boto_client.get_user.return_value = {"User": {"UserName": "alice"}}

        assert iam.is_existing_user("alice")
        boto_client.get_user.assert_called_once_with(UserName="alice")

    def test_missing_user(self, iam: IamClient, boto_client: MagicMock) -> None:
        boto_client.get_user.side_effect = client_error("NoSuchEntity", "GetUser")

        assert not iam.is_existing_user("alice")

    def test_user_query_error_propagates(self, iam: IamClient, boto_client: MagicMock) -> None:
        boto_client.get_user.side_effect = client_error("AccessDenied", "GetUser")

        with pytest.raises(ClientError):
            iam.is_existing_user("alice")

    def test_login_profile(self, iam: IamClient, boto_client: MagicMock) -> None:
        boto_client.get_login_profile.return_value = {"LoginProfile": {"UserName": "alice"}}

        assert iam.has_login_profile("alice")

    def test_missing_login_profile(self, iam: IamClient, boto_client: MagicMock) -> None:
        boto_client.get_login_profile.side_effect = client_error(
            "NoSuchEntity", "GetLoginProfile"
        )

        assert not iam.has_login_profile("alice")

    def test_has_access_key(self, iam: IamClient, boto_client: MagicMock) -> None:
        boto_client.list_access_keys.return_value = {
            "AccessKeyMetadata": [{"AccessKeyId": "AKIA1", "Status": "Active"}]
        }

        assert iam.has_access_key("alice")

    def test_no_access_key(self, iam: IamClient, boto_client: MagicMock) -> None:
        boto_client.list_access_keys.return_value = {"AccessKeyMetadata": []}

        assert not iam.has_access_key("alice")

    def test_list_groups_across_pages(self, iam: IamClient, boto_client: MagicMock) -> None:
        paginator = MagicMock()
        paginator.paginate.return_value = [
            {"Groups": [{"GroupName": "a"}, {"GroupName": "b"}]},
            {"Groups": [{"GroupName": "c"}]},
        ]
        boto_client.get_paginator.return_value = paginator

        assert iam.list_groups_for_user("alice") == ["a", "b", "c"]
        boto_client.get_paginator.assert_called_once_with("list_groups_for_user")
        paginator.paginate.assert_called_once_with(UserName="alice")


class TestMutations:
    """Tests for create and membership calls."""

    def test_create_user(self, iam: IamClient, boto_client: MagicMock) -> None:
        iam.create_user_if_not_exists("alice")

        boto_client.create_user.assert_called_once_with(UserName="alice")

    def test_create_user_already_exists(self, iam: IamClient, boto_client: MagicMock) -> None:
        boto_client.create_user.side_effect = client_error("EntityAlreadyExists", "CreateUser")

        iam.create_user_if_not_exists("alice")

    def test_create_user_other_error(self, iam: IamClient, boto_client: MagicMock) -> None:
        boto_client.create_user.side_effect = client_error("LimitExceeded", "CreateUser")

        with pytest.raises(ClientError):
            iam.create_user_if_not_exists("alice")

    def test_create_login_profile(self, iam: IamClient, boto_client: MagicMock) -> None:
        iam.create_login_profile_if_not_exists("s3cret-Passw0rd!", "alice", True)

        boto_client.create_login_profile.assert_called_once_with(
            UserName="alice", Password="s3cret-Passw0rd!", PasswordResetRequired=True
        )

    def test_create_login_profile_already_exists(
        self, iam: IamClient, boto_client: MagicMock
    ) -> None:
        boto_client.create_login_profile.side_effect = client_error(
            "EntityAlreadyExists", "CreateLoginProfile"
        )

        iam.create_login_profile_if_not_exists("pw", "alice", True)

    def test_create_login_profile_policy_violation(
        self, iam: IamClient, boto_client: MagicMock
    ) -> None:
        boto_client.create_login_profile.side_effect = client_error(
            "PasswordPolicyViolation", "CreateLoginProfile"
        )

        with pytest.raises(ClientError):
            iam.create_login_profile_if_not_exists("pw", "alice", True)

    def test_create_access_key_pair(self, iam: IamClient, boto_client: MagicMock) -> None:
        boto_client.create_access_key.return_value = {
            "AccessKey": {
                "UserName": "alice",
                "AccessKeyId": "AKIAEXAMPLE",
                "SecretAccessKey": "wJalrXUtnFEMI",
                "Status": "Active",
            }
        }

        key = iam.create_access_key_pair("alice")

        assert key.access_key_id == "AKIAEXAMPLE"
        assert key.secret_access_key == "wJalrXUtnFEMI"
        assert "wJalrXUtnFEMI" not in repr(key)

    def test_group_membership(self, iam: IamClient, boto_client: MagicMock) -> None:
        iam.add_user_to_group("dev", "alice")
        iam.remove_user_from_group("ops", "alice")

        boto_client.add_user_to_group.assert_called_once_with(GroupName="dev", UserName="alice")
        boto_client.remove_user_from_group.assert_called_once_with(
            GroupName="ops", UserName="alice"
        )


class TestFromRegion:
    def test_builds_boto_client(self) -> None:
        with patch("kuadra.iam.boto3.client") as client_factory:
            iam = IamClient.from_region("eu-west-1")

        client_factory.assert_called_once_with(
            "iam", region_name="eu-west-1", config=BOTO_RETRY_CONFIG
        )
        assert isinstance(iam, IamClient)

"""Tests for structured logging setup."""

import json
import logging

import pytest

from kuadra.logging_setup import (
    REDACTED,
    JsonFormatter,
    SecretRedactionFilter,
    is_sensitive_key,
    setup_logging,
)


def make_record(**extra: object) -> logging.LogRecord:
    record = logging.LogRecord("kuadra.test", logging.INFO, __file__, 1, "Created user", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestSecretRedaction:
    """Tests for SecretRedactionFilter."""

    @pytest.mark.parametrize(
        "key", ["password", "secret_access_key", "secretAccessKey", "session_token"]
    )
    def test_sensitive_keys(self, key: str) -> None:
        assert is_sensitive_key(key)

    @pytest.mark.parametrize("key", ["user_name", "access_key_id", "secret", "namespace"])
    def test_ordinary_keys(self, key: str) -> None:
        assert not is_sensitive_key(key)

    def test_redacts_extra_fields(self) -> None:
        record = make_record(password="hunter2", user_name="alice")

        assert SecretRedactionFilter().filter(record)
        assert record.password == REDACTED
        assert record.user_name == "alice"


class TestJsonFormatter:
    """Tests for JsonFormatter."""

    def test_includes_extra_fields(self) -> None:
        record = make_record(user_name="alice", actions=["create_user"])

        data = json.loads(JsonFormatter().format(record))

        assert data["message"] == "Created user"
        assert data["level"] == "INFO"
        assert data["logger"] == "kuadra.test"
        assert data["user_name"] == "alice"
        assert data["actions"] == ["create_user"]
        assert data["timestamp"].endswith("Z")

    def test_non_serializable_values(self) -> None:
        record = make_record(error=ValueError("bad"))

        data = json.loads(JsonFormatter().format(record))

        assert data["error"] == "bad"


class TestSetupLogging:
    """Tests for setup_logging."""

    def test_configures_root_and_quiets_sdks(self) -> None:
        root = logging.getLogger()
        saved_handlers, saved_level = list(root.handlers), root.level
        try:
            setup_logging(logging.DEBUG, json_output=True)

            assert root.level == logging.DEBUG
            assert len(root.handlers) == 1
            assert isinstance(root.handlers[0].formatter, JsonFormatter)
            assert logging.getLogger("botocore").level == logging.WARNING
            assert logging.getLogger("kubernetes").level == logging.WARNING
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)

"""Configuration management with validation.

All settings are read from the environment once at startup and validated
at construction time; invalid values raise ConfigurationError before any
AWS or Kubernetes call is made.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field

from .passwords import MAX_PASSWORD_LENGTH, MIN_PASSWORD_LENGTH, PasswordPolicy


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Configuration constants with documented bounds
DEFAULT_AWS_REGION = "us-west-2"

DEFAULT_REQUEUE_AFTER_SECONDS = 3
MIN_REQUEUE_AFTER_SECONDS = 1
MAX_REQUEUE_AFTER_SECONDS = 3600

DEFAULT_RESYNC_INTERVAL_SECONDS = 300
MIN_RESYNC_INTERVAL_SECONDS = 30
MAX_RESYNC_INTERVAL_SECONDS = 86400

DEFAULT_WORKERS = 2
MAX_WORKERS = 32

DEFAULT_PASSWORD_DIGITS = 3
DEFAULT_PASSWORD_SYMBOLS = 3

MAX_MANIFEST_FILE_SIZE_BYTES = 256 * 1024  # 256KB max manifest file

# Input validation patterns
VALID_AWS_REGION_PATTERN = r"^[a-z]{2}(-gov)?-[a-z]+-\d$"
VALID_NAMESPACE_PATTERN = r"^[a-z0-9]([-a-z0-9]{0,61}[a-z0-9])?$"
VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class Config:
    """Operator configuration loaded from environment variables.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing at runtime.
    """

    aws_region: str = DEFAULT_AWS_REGION

    # Empty string watches all namespaces
    watch_namespace: str = ""

    # Timing
    requeue_after_seconds: int = DEFAULT_REQUEUE_AFTER_SECONDS
    resync_interval_seconds: int = DEFAULT_RESYNC_INTERVAL_SECONDS
    workers: int = DEFAULT_WORKERS

    # Login profile credential policy
    password_length: int = MIN_PASSWORD_LENGTH
    password_digits: int = DEFAULT_PASSWORD_DIGITS
    password_symbols: int = DEFAULT_PASSWORD_SYMBOLS
    password_reset_required: bool = True

    # Logging
    log_level: str = "INFO"
    enable_json_logging: bool = True

    # Load in-cluster service account config instead of ~/.kube/config
    in_cluster: bool = True

    password_policy: PasswordPolicy = field(init=False, repr=False)

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        errors: list[str] = []

        if not re.match(VALID_AWS_REGION_PATTERN, self.aws_region):
            errors.append(f"AWS_REGION must be a valid AWS region: {self.aws_region}")

        if self.watch_namespace and not re.match(VALID_NAMESPACE_PATTERN, self.watch_namespace):
            errors.append(f"WATCH_NAMESPACE must be a valid namespace name: {self.watch_namespace}")

        if not (
            MIN_REQUEUE_AFTER_SECONDS <= self.requeue_after_seconds <= MAX_REQUEUE_AFTER_SECONDS
        ):
            errors.append(
                f"REQUEUE_AFTER_SECONDS must be between {MIN_REQUEUE_AFTER_SECONDS} "
                f"and {MAX_REQUEUE_AFTER_SECONDS}"
            )

        if not (
            MIN_RESYNC_INTERVAL_SECONDS
            <= self.resync_interval_seconds
            <= MAX_RESYNC_INTERVAL_SECONDS
        ):
            errors.append(
                f"RESYNC_INTERVAL_SECONDS must be between {MIN_RESYNC_INTERVAL_SECONDS} "
                f"and {MAX_RESYNC_INTERVAL_SECONDS}"
            )

        if not 1 <= self.workers <= MAX_WORKERS:
            errors.append(f"WORKERS must be between 1 and {MAX_WORKERS}")

        if not MIN_PASSWORD_LENGTH <= self.password_length <= MAX_PASSWORD_LENGTH:
            errors.append(
                f"PASSWORD_LENGTH must be between {MIN_PASSWORD_LENGTH} and {MAX_PASSWORD_LENGTH}"
            )

        if self.log_level.upper() not in VALID_LOG_LEVELS:
            errors.append(f"LOG_LEVEL must be one of {list(VALID_LOG_LEVELS)}: {self.log_level}")

        policy: PasswordPolicy | None = None
        if not errors:
            try:
                policy = PasswordPolicy(
                    length=self.password_length,
                    digits=self.password_digits,
                    symbols=self.password_symbols,
                )
            except ValueError as e:
                errors.append(f"Invalid password policy: {e}")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

        # frozen dataclass: derived fields are set through object.__setattr__
        object.__setattr__(self, "password_policy", policy)

    @property
    def log_level_value(self) -> int:
        return logging.getLevelName(self.log_level.upper())

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        Environment Variables:
            AWS_REGION: Region for the IAM client (default: us-west-2)
            WATCH_NAMESPACE: Namespace to watch; empty for all (default: "")
            REQUEUE_AFTER_SECONDS: Delay before retrying a failed reconcile (default: 3)
            RESYNC_INTERVAL_SECONDS: Interval for full re-list of records (default: 300)
            WORKERS: Concurrent reconcile workers (default: 2)
            PASSWORD_LENGTH: Generated login password length (default: 20)
            PASSWORD_DIGITS: Digits in generated passwords (default: 3)
            PASSWORD_SYMBOLS: Symbols in generated passwords (default: 3)
            PASSWORD_RESET_REQUIRED: Force password reset on first login (default: true)
            LOG_LEVEL: Root log level (default: INFO)
            ENABLE_JSON_LOGGING: Emit JSON logs to stdout (default: true)
            IN_CLUSTER: Use in-cluster Kubernetes config (default: true)

        AWS credentials are resolved by the boto3 default provider chain.
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_bool(key: str, default: bool) -> bool:
            value = os.environ.get(key, "").lower()
            if not value:
                return default
            return value in ("true", "1", "yes")

        return cls(
            aws_region=os.environ.get("AWS_REGION", DEFAULT_AWS_REGION),
            watch_namespace=os.environ.get("WATCH_NAMESPACE", ""),
            requeue_after_seconds=get_int("REQUEUE_AFTER_SECONDS", DEFAULT_REQUEUE_AFTER_SECONDS),
            resync_interval_seconds=get_int(
                "RESYNC_INTERVAL_SECONDS", DEFAULT_RESYNC_INTERVAL_SECONDS
            ),
            workers=get_int("WORKERS", DEFAULT_WORKERS),
            password_length=get_int("PASSWORD_LENGTH", MIN_PASSWORD_LENGTH),
            password_digits=get_int("PASSWORD_DIGITS", DEFAULT_PASSWORD_DIGITS),
            password_symbols=get_int("PASSWORD_SYMBOLS", DEFAULT_PASSWORD_SYMBOLS),
            password_reset_required=get_bool("PASSWORD_RESET_REQUIRED", True),
            log_level=os.environ.get("LOG_LEVEL", "INFO"),
            enable_json_logging=get_bool("ENABLE_JSON_LOGGING", True),
            in_cluster=get_bool("IN_CLUSTER", True),
        )

"""Projection of User records onto their AwsAccount child.

Each User owns exactly one AwsAccount, named after the IAM user name and
placed in the User's namespace. The child spec is always overwritten with
the one derived from the parent; there is no field-level merge.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime

from .calls import CallRunner
from .config import DEFAULT_REQUEUE_AFTER_SECONDS
from .errors import AlreadyExistsError, NotFoundError
from .interfaces import ObjectStore
from .models import AwsAccount, ObjectKey, ObjectMeta, OwnerReference, User

logger = logging.getLogger(__name__)


@dataclass
class ProjectionResult:
    """Result of projecting one User."""

    key: ObjectKey
    child_key: ObjectKey | None = None
    created: bool = False
    updated: bool = False
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None
    error: Exception | None = None
    requeue_after_seconds: int | None = None

    @property
    def success(self) -> bool:
        return self.error is None


def owner_reference_for(user: User) -> OwnerReference:
    """Controller reference from an AwsAccount back to its User.

    Raises:
        ValueError: If the User has not been persisted yet (no uid).
    """
    if not user.metadata.uid:
        raise ValueError(f"User '{user.key}' has no uid; cannot own child records")
    return OwnerReference(
        api_version=user.api_version,
        kind=user.kind,
        name=user.metadata.name,
        uid=user.metadata.uid,
        controller=True,
        block_owner_deletion=True,
    )


def build_aws_account(user: User) -> AwsAccount:
    """Derive the desired AwsAccount child of ``user``."""
    account_spec = user.account_spec.model_copy(deep=True)
    return AwsAccount(
        metadata=ObjectMeta(
            name=account_spec.user_name,
            namespace=user.metadata.namespace,
            owner_references=[owner_reference_for(user)],
        ),
        spec=account_spec,
    )


class UserReconciler:
    """Ensures the AwsAccount child of a User exists with the derived spec."""

    def __init__(
        self,
        store: ObjectStore,
        *,
        requeue_after_seconds: int = DEFAULT_REQUEUE_AFTER_SECONDS,
    ) -> None:
        self._store = store
        self._requeue_after_seconds = requeue_after_seconds

    async def reconcile(
        self, key: ObjectKey, cancel_event: asyncio.Event | None = None
    ) -> ProjectionResult:
        result = ProjectionResult(key=key)
        run = CallRunner(cancel_event)

        try:
            try:
                user = await run(self._store.get_user, key)
            except NotFoundError:
                logger.info("User not found, ignoring", extra={"key": str(key)})
                return self._finish(result)

            desired = build_aws_account(user)
            result.child_key = desired.key

            try:
                existing = await run(self._store.get_aws_account, desired.key)
            except NotFoundError:
                existing = None

            if existing is None:
                try:
                    await run(self._store.create_aws_account, desired)
                    result.created = True
                    logger.info(
                        "Created AwsAccount",
                        extra={"key": str(key), "child": str(desired.key)},
                    )
                except AlreadyExistsError:
                    # Created between our get and create; next event converges it
                    logger.info(
                        "AwsAccount already exists",
                        extra={"key": str(key), "child": str(desired.key)},
                    )
            else:
                desired.metadata.resource_version = existing.metadata.resource_version
                desired.metadata.uid = existing.metadata.uid
                desired.metadata.labels = existing.metadata.labels
                # Status belongs to the account reconciler
                desired.status = existing.status
                await run(self._store.update_aws_account, desired)
                result.updated = True
                logger.debug(
                    "Updated AwsAccount", extra={"key": str(key), "child": str(desired.key)}
                )

        except Exception as e:
            logger.error(
                "Failed to project User",
                extra={"key": str(key), "error": str(e), "error_type": type(e).__name__},
            )
            result.error = e
            result.requeue_after_seconds = self._requeue_after_seconds

        return self._finish(result)

    def _finish(self, result: ProjectionResult) -> ProjectionResult:
        result.end_time = datetime.now(UTC)
        return result

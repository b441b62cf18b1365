"""Core reconciliation for AwsAccount records.

One cycle:
1. Fetch the AwsAccount record (a missing record is a no-op)
2. Refresh the observed status from IAM and the namespace store
3. Walk the provisioning checklist, running only the steps not yet done:
   namespace, IAM user, login profile, access key
4. Converge group membership against the desired groups
5. Write the status back if, and only if, it changed

A failing step ends the cycle immediately. Steps completed before the
failure stay recorded in the status, which is still written back, so the
next cycle resumes at the failed step instead of starting over.

SECURITY: Generated credentials are written to Secrets only and never
appear in log records.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError
from kubernetes.client.exceptions import ApiException

from .calls import CallRunner
from .config import DEFAULT_REQUEUE_AFTER_SECONDS
from .errors import (
    ConflictError,
    CredentialStoreError,
    NotFoundError,
    ReconcileCancelledError,
)
from .groups import diff_groups
from .interfaces import IdentityProvider, NamespaceStore, ObjectStore
from .models import (
    AwsAccountSpec,
    AwsAccountStatus,
    ObjectKey,
    access_key_secret_name,
    login_profile_secret_name,
    namespace_for_user,
)
from .passwords import PasswordPolicy, generate_password
from .refresh import StatusRefresher

logger = logging.getLogger(__name__)

# Secret data keys
SECRET_KEY_USERNAME = "username"
SECRET_KEY_PASSWORD = "password"
SECRET_KEY_ACCESS_KEY_ID = "accessKeyId"
SECRET_KEY_SECRET_ACCESS_KEY = "secretAccessKey"

# Action names recorded on ReconcileResult.actions
ACTION_CREATE_NAMESPACE = "create_namespace"
ACTION_CREATE_USER = "create_user"
ACTION_CREATE_LOGIN_PROFILE = "create_login_profile"
ACTION_CREATE_ACCESS_KEY = "create_access_key"
ACTION_ADD_TO_GROUP = "add_to_group"
ACTION_REMOVE_FROM_GROUP = "remove_from_group"


@dataclass
class ReconcileResult:
    """Result of a single reconciliation cycle."""

    key: ObjectKey
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None
    found: bool = True
    status_updated: bool = False
    actions: list[str] = field(default_factory=list)
    error: Exception | None = None
    requeue_after_seconds: int | None = None

    @property
    def duration_seconds(self) -> float:
        """Calculate duration in seconds."""
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    @property
    def success(self) -> bool:
        """Check if reconciliation succeeded."""
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": str(self.key),
            "found": self.found,
            "success": self.success,
            "status_updated": self.status_updated,
            "actions": list(self.actions),
            "error": str(self.error) if self.error is not None else None,
            "requeue_after_seconds": self.requeue_after_seconds,
            "duration_seconds": self.duration_seconds,
        }


class AccountReconciler:
    """Converges one AwsAccount record toward its spec.

    Collaborators are injected at construction time. The reconciler keeps no
    state between cycles; every cycle re-derives the truth via StatusRefresher.

    Not safe for concurrent invocation on the same key; the dispatcher
    guarantees at most one in-flight cycle per key.
    """

    def __init__(
        self,
        store: ObjectStore,
        identity_provider: IdentityProvider,
        namespaces: NamespaceStore,
        *,
        password_policy: PasswordPolicy | None = None,
        password_reset_required: bool = True,
        requeue_after_seconds: int = DEFAULT_REQUEUE_AFTER_SECONDS,
    ) -> None:
        self._store = store
        self._iam = identity_provider
        self._namespaces = namespaces
        self._refresher = StatusRefresher(identity_provider, namespaces)
        self._password_policy = password_policy or PasswordPolicy()
        self._password_reset_required = password_reset_required
        self._requeue_after_seconds = requeue_after_seconds

    async def reconcile(
        self, key: ObjectKey, cancel_event: asyncio.Event | None = None
    ) -> ReconcileResult:
        """Run one reconciliation cycle for ``key``.

        Errors are captured on the result rather than raised. A failed result
        carries ``requeue_after_seconds`` so the caller can schedule a retry.
        """
        result = ReconcileResult(key=key)
        run = CallRunner(cancel_event)

        try:
            await self._reconcile_once(key, run, result)
        except NotFoundError:
            # Record deleted; owned resources are cleaned up by cascade
            logger.info("AwsAccount not found, ignoring", extra={"key": str(key)})
            result.found = False
        except ReconcileCancelledError as e:
            logger.warning("Reconcile cancelled", extra={"key": str(key)})
            result.error = e
        except ConflictError as e:
            logger.warning(
                "AwsAccount modified concurrently, will retry",
                extra={"key": str(key), "resource_version": e.resource_version},
            )
            result.error = e
        except ClientError as e:
            logger.error(
                "IAM API error",
                extra={
                    "key": str(key),
                    "error": str(e),
                    "error_code": e.response.get("Error", {}).get("Code"),
                },
            )
            result.error = e
        except BotoCoreError as e:
            logger.error("AWS client error", extra={"key": str(key), "error": str(e)})
            result.error = e
        except ApiException as e:
            logger.error(
                "Kubernetes API error",
                extra={"key": str(key), "status_code": e.status, "reason": e.reason},
            )
            result.error = e
        except CredentialStoreError as e:
            logger.error(
                "Credential secret not persisted",
                extra={"key": str(key), "secret": f"{e.namespace}/{e.name}", "field": e.field},
            )
            result.error = e
        except Exception as e:
            logger.exception("Unexpected error during reconciliation", extra={"key": str(key)})
            result.error = e

        if result.error is not None:
            result.requeue_after_seconds = self._requeue_after_seconds
        result.end_time = datetime.now(UTC)
        self._log_result(result)
        return result

    async def _reconcile_once(
        self, key: ObjectKey, run: CallRunner, result: ReconcileResult
    ) -> None:
        account = await run(self._store.get_aws_account, key)
        previous = account.status.model_copy(deep=True)

        status = await self._refresher.refresh(account.spec.user_name, run)

        step_error: Exception | None = None
        try:
            await self.converge(account.spec, status, run, result.actions)
        except ReconcileCancelledError:
            raise
        except Exception as e:
            step_error = e

        if status.differs_from(previous):
            account.status = status
            try:
                await run(self._store.update_aws_account_status, account)
                result.status_updated = True
            except Exception as e:
                if step_error is None:
                    raise
                # The step error is the one worth surfacing; status is re-derived next cycle
                logger.warning(
                    "Failed to persist partial status",
                    extra={"key": str(key), "error": str(e)},
                )

        if step_error is not None:
            raise step_error

    async def converge(
        self,
        spec: AwsAccountSpec,
        status: AwsAccountStatus,
        run: CallRunner,
        actions: list[str] | None = None,
    ) -> AwsAccountStatus:
        """Apply the missing provisioning steps, mutating ``status`` as each succeeds.

        Raises the first step failure; ``status`` then reflects every step
        completed before it.
        """
        actions = actions if actions is not None else []
        user_name = spec.user_name
        namespace = namespace_for_user(user_name)

        if not status.namespace_created:
            await run(self._namespaces.create_namespace_if_not_exists, namespace)
            status.namespace_created = True
            actions.append(ACTION_CREATE_NAMESPACE)
            logger.info("Created namespace", extra={"user_name": user_name, "namespace": namespace})

        if not status.user_created:
            await run(self._iam.create_user_if_not_exists, user_name)
            status.user_created = True
            actions.append(ACTION_CREATE_USER)
            logger.info("Created IAM user", extra={"user_name": user_name})

        if not status.login_profile_created:
            password = await self._stored_password(namespace, user_name, run)
            await run(
                self._iam.create_login_profile_if_not_exists,
                password,
                user_name,
                self._password_reset_required,
            )
            status.login_profile_created = True
            actions.append(ACTION_CREATE_LOGIN_PROFILE)
            logger.info(
                "Created login profile",
                extra={
                    "user_name": user_name,
                    "secret": login_profile_secret_name(user_name),
                    "password_reset_required": self._password_reset_required,
                },
            )

        secret_name = access_key_secret_name(user_name)
        if status.access_key_created and not await self._access_key_stored(
            namespace, secret_name, run
        ):
            # IAM only returns the secret half at creation, so a replacement key is needed
            logger.warning(
                "Access key has no stored credentials",
                extra={"user_name": user_name, "secret": secret_name},
            )
            status.access_key_created = False

        if not status.access_key_created:
            access_key = await run(self._iam.create_access_key_pair, user_name)
            await run(
                self._namespaces.put_secret,
                namespace,
                secret_name,
                {
                    SECRET_KEY_ACCESS_KEY_ID: access_key.access_key_id,
                    SECRET_KEY_SECRET_ACCESS_KEY: access_key.secret_access_key,
                },
            )
            status.access_key_created = True
            actions.append(ACTION_CREATE_ACCESS_KEY)
            logger.info(
                "Created access key",
                extra={
                    "user_name": user_name,
                    "access_key_id": access_key.access_key_id,
                    "secret": secret_name,
                },
            )

        await self._converge_groups(spec, status, run, actions)
        return status

    async def _stored_password(self, namespace: str, user_name: str, run: CallRunner) -> str:
        """Return the login password as persisted in the login-profile Secret.

        A password left behind by an earlier, interrupted attempt is reused.
        Otherwise a fresh one is generated and stored first. Either way the
        value returned is the one read back from the store.
        """
        secret_name = login_profile_secret_name(user_name)
        stored = await run(self._namespaces.get_secret, namespace, secret_name)

        if not stored or not stored.get(SECRET_KEY_PASSWORD):
            data = {
                SECRET_KEY_USERNAME: user_name,
                SECRET_KEY_PASSWORD: generate_password(self._password_policy),
            }
            if stored is None:
                await run(
                    self._namespaces.create_secret_if_not_exists, namespace, secret_name, data
                )
            else:
                # The Secret exists without a password, so create-if-absent would be a no-op
                await run(self._namespaces.put_secret, namespace, secret_name, data)
            stored = await run(self._namespaces.get_secret, namespace, secret_name)

        if not stored or not stored.get(SECRET_KEY_PASSWORD):
            raise CredentialStoreError(namespace, secret_name, SECRET_KEY_PASSWORD)
        return stored[SECRET_KEY_PASSWORD]

    async def _access_key_stored(self, namespace: str, secret_name: str, run: CallRunner) -> bool:
        stored = await run(self._namespaces.get_secret, namespace, secret_name)
        return bool(
            stored
            and stored.get(SECRET_KEY_ACCESS_KEY_ID)
            and stored.get(SECRET_KEY_SECRET_ACCESS_KEY)
        )

    async def _converge_groups(
        self,
        spec: AwsAccountSpec,
        status: AwsAccountStatus,
        run: CallRunner,
        actions: list[str],
    ) -> None:
        diff = diff_groups(spec.groups, status.user_groups)
        if diff.empty:
            return

        user_name = spec.user_name
        for group in diff.to_add:
            await run(self._iam.add_user_to_group, group, user_name)
            status.user_groups.append(group)
            actions.append(ACTION_ADD_TO_GROUP)
            logger.info("Added user to group", extra={"user_name": user_name, "group": group})

        for group in diff.to_remove:
            await run(self._iam.remove_user_from_group, group, user_name)
            status.user_groups.remove(group)
            actions.append(ACTION_REMOVE_FROM_GROUP)
            logger.info("Removed user from group", extra={"user_name": user_name, "group": group})

    def _log_result(self, result: ReconcileResult) -> None:
        """Log reconciliation result with structured data."""
        extra: dict[str, Any] = {
            "key": str(result.key),
            "duration_seconds": result.duration_seconds,
            "status_updated": result.status_updated,
            "actions": result.actions,
        }

        if result.error is not None:
            extra["error"] = str(result.error)
            extra["error_type"] = type(result.error).__name__
            extra["requeue_after_seconds"] = result.requeue_after_seconds
            logger.error("Reconciliation failed", extra=extra)
        else:
            logger.info("Reconciliation result", extra=extra)

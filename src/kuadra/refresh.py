"""Status refresh: derive the observed status of one principal from live state."""

from __future__ import annotations

import logging

from .calls import CallRunner
from .interfaces import IdentityProvider, NamespaceStore
from .models import AwsAccountStatus, namespace_for_user

logger = logging.getLogger(__name__)


class StatusRefresher:
    """Queries the namespace store and identity provider for one principal.

    Refresh short-circuits when the IAM user is absent: a login profile,
    access key or group membership cannot exist without the user, so those
    queries are skipped and their fields keep zero values.

    Any failing query aborts the refresh; no partial status is returned.
    """

    def __init__(self, identity_provider: IdentityProvider, namespaces: NamespaceStore) -> None:
        self._iam = identity_provider
        self._namespaces = namespaces

    async def refresh(self, user_name: str, run: CallRunner | None = None) -> AwsAccountStatus:
        run = run or CallRunner()
        status = AwsAccountStatus()
        status.namespace_created = await run(
            self._namespaces.namespace_exists, namespace_for_user(user_name)
        )

        if not await run(self._iam.is_existing_user, user_name):
            logger.debug("IAM user absent", extra={"user_name": user_name})
            return status
        status.user_created = True

        status.login_profile_created = await run(self._iam.has_login_profile, user_name)
        status.access_key_created = await run(self._iam.has_access_key, user_name)
        status.user_groups = list(await run(self._iam.list_groups_for_user, user_name))

        logger.debug(
            "Refreshed status",
            extra={
                "user_name": user_name,
                "namespace_created": status.namespace_created,
                "login_profile_created": status.login_profile_created,
                "access_key_created": status.access_key_created,
                "group_count": len(status.user_groups),
            },
        )
        return status

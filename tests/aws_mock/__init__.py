"""In-memory doubles for integration-style reconciler tests.

Each double implements one of the capability protocols the reconcilers
consume, keeps its state in plain dicts, records every call and supports
error injection.

Usage:
    from aws_mock import MockIamClient, MockNamespaceStore, MockObjectStore

    iam = MockIamClient()
    iam.fail_on("create_login_profile_if_not_exists", error)

    reconciler = AccountReconciler(store, iam, namespaces)
    result = await reconciler.reconcile(key)

    assert iam.calls_to("create_user_if_not_exists") == 1
"""

from .failures import FailureInjector, client_error
from .iam import MockIamClient
from .stores import MockNamespaceStore, MockObjectStore

__all__ = [
    "FailureInjector",
    "MockIamClient",
    "MockNamespaceStore",
    "MockObjectStore",
    "client_error",
]

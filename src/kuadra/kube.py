"""Kubernetes-backed object store, namespace store and watcher.

HTTP status translation:
- 404 on reads → NotFoundError (object store) or a negative answer (namespace store)
- 409 on creates → AlreadyExistsError, swallowed by create-if-absent calls
- 409 on updates → ConflictError (stale resourceVersion)
Everything else propagates as ApiException.
"""

from __future__ import annotations

import base64
import logging
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any

from kubernetes import client, config, watch
from kubernetes.client.exceptions import ApiException
from pydantic import ValidationError

from .errors import AlreadyExistsError, ConflictError, NotFoundError
from .models import (
    API_GROUP,
    API_VERSION,
    KIND_AWS_ACCOUNT,
    KIND_USER,
    PLURAL_AWS_ACCOUNT,
    PLURAL_USER,
    AwsAccount,
    ObjectKey,
    User,
)

logger = logging.getLogger(__name__)

HTTP_NOT_FOUND = 404
HTTP_CONFLICT = 409

MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"
MANAGED_BY_VALUE = "kuadra"

# Server-side watch timeout; the watcher reconnects after it expires
WATCH_TIMEOUT_SECONDS = 300


def load_kube_config(in_cluster: bool = True) -> None:
    """Load Kubernetes client configuration.

    Falls back to the local kubeconfig when in-cluster config is unavailable.
    """
    if in_cluster:
        try:
            config.load_incluster_config()
            return
        except config.ConfigException:
            logger.warning("Failed to load in-cluster config, trying local kubeconfig")
    config.load_kube_config()


# =============================================================================
# Object store
# =============================================================================


class KubernetesObjectStore:
    """ObjectStore over the CustomObjectsApi for kuadra.kuadrant.io/v1 records."""

    def __init__(self, api: client.CustomObjectsApi | None = None) -> None:
        self._api = api or client.CustomObjectsApi()

    def _get(self, plural: str, kind: str, key: ObjectKey) -> dict[str, Any]:
        try:
            return self._api.get_namespaced_custom_object(
                API_GROUP, API_VERSION, key.namespace, plural, key.name
            )
        except ApiException as e:
            if e.status == HTTP_NOT_FOUND:
                raise NotFoundError(kind, key.name, key.namespace) from e
            raise

    def _create(
        self, plural: str, kind: str, key: ObjectKey, body: dict[str, Any]
    ) -> dict[str, Any]:
        try:
            return self._api.create_namespaced_custom_object(
                API_GROUP, API_VERSION, key.namespace, plural, body
            )
        except ApiException as e:
            if e.status == HTTP_CONFLICT:
                raise AlreadyExistsError(kind, key.name, key.namespace) from e
            raise

    def _replace(
        self,
        plural: str,
        kind: str,
        key: ObjectKey,
        body: dict[str, Any],
        *,
        status: bool = False,
    ) -> dict[str, Any]:
        replace = (
            self._api.replace_namespaced_custom_object_status
            if status
            else self._api.replace_namespaced_custom_object
        )
        try:
            return replace(API_GROUP, API_VERSION, key.namespace, plural, key.name, body)
        except ApiException as e:
            if e.status == HTTP_CONFLICT:
                resource_version = body.get("metadata", {}).get("resourceVersion")
                raise ConflictError(kind, str(key), resource_version) from e
            if e.status == HTTP_NOT_FOUND:
                raise NotFoundError(kind, key.name, key.namespace) from e
            raise

    def _list(self, plural: str, namespace: str | None) -> list[dict[str, Any]]:
        if namespace:
            response = self._api.list_namespaced_custom_object(
                API_GROUP, API_VERSION, namespace, plural
            )
        else:
            response = self._api.list_cluster_custom_object(API_GROUP, API_VERSION, plural)
        return response.get("items", [])

    def get_aws_account(self, key: ObjectKey) -> AwsAccount:
        return AwsAccount.model_validate(self._get(PLURAL_AWS_ACCOUNT, KIND_AWS_ACCOUNT, key))

    def create_aws_account(self, account: AwsAccount) -> AwsAccount:
        created = self._create(
            PLURAL_AWS_ACCOUNT, KIND_AWS_ACCOUNT, account.key, account.to_dict()
        )
        return AwsAccount.model_validate(created)

    def update_aws_account(self, account: AwsAccount) -> AwsAccount:
        updated = self._replace(
            PLURAL_AWS_ACCOUNT, KIND_AWS_ACCOUNT, account.key, account.to_dict()
        )
        return AwsAccount.model_validate(updated)

    def update_aws_account_status(self, account: AwsAccount) -> AwsAccount:
        updated = self._replace(
            PLURAL_AWS_ACCOUNT, KIND_AWS_ACCOUNT, account.key, account.to_dict(), status=True
        )
        return AwsAccount.model_validate(updated)

    def list_aws_accounts(self, namespace: str | None = None) -> list[AwsAccount]:
        return _parse_items(AwsAccount, self._list(PLURAL_AWS_ACCOUNT, namespace))

    def get_user(self, key: ObjectKey) -> User:
        return User.model_validate(self._get(PLURAL_USER, KIND_USER, key))

    def create_user(self, user: User) -> User:
        return User.model_validate(self._create(PLURAL_USER, KIND_USER, user.key, user.to_dict()))

    def update_user(self, user: User) -> User:
        return User.model_validate(self._replace(PLURAL_USER, KIND_USER, user.key, user.to_dict()))

    def list_users(self, namespace: str | None = None) -> list[User]:
        return _parse_items(User, self._list(PLURAL_USER, namespace))


def _parse_items(model: type[Any], items: list[dict[str, Any]]) -> list[Any]:
    """Validate listed records, skipping (and logging) malformed ones."""
    records = []
    for item in items:
        try:
            records.append(model.model_validate(item))
        except ValidationError as e:
            metadata = item.get("metadata", {})
            logger.warning(
                "Skipping invalid record",
                extra={
                    "kind": item.get("kind"),
                    "record_name": metadata.get("name"),
                    "namespace": metadata.get("namespace"),
                    "error": str(e),
                },
            )
    return records


# =============================================================================
# Namespace and secret store
# =============================================================================


class KubernetesNamespaceStore:
    """NamespaceStore over the CoreV1Api."""

    def __init__(self, api: client.CoreV1Api | None = None) -> None:
        self._api = api or client.CoreV1Api()

    @staticmethod
    def _labels() -> dict[str, str]:
        return {MANAGED_BY_LABEL: MANAGED_BY_VALUE}

    def namespace_exists(self, name: str) -> bool:
        try:
            self._api.read_namespace(name)
        except ApiException as e:
            if e.status == HTTP_NOT_FOUND:
                return False
            raise
        return True

    def create_namespace_if_not_exists(self, name: str) -> None:
        body = client.V1Namespace(metadata=client.V1ObjectMeta(name=name, labels=self._labels()))
        try:
            self._api.create_namespace(body)
        except ApiException as e:
            if e.status != HTTP_CONFLICT:
                raise
            logger.debug("Namespace already exists", extra={"namespace": name})

    def get_secret(self, namespace: str, name: str) -> dict[str, str] | None:
        try:
            secret = self._api.read_namespaced_secret(name, namespace)
        except ApiException as e:
            if e.status == HTTP_NOT_FOUND:
                return None
            raise
        return {
            key: base64.b64decode(value).decode("utf-8")
            for key, value in (secret.data or {}).items()
        }

    def _secret_body(self, namespace: str, name: str, data: dict[str, str]) -> client.V1Secret:
        return client.V1Secret(
            metadata=client.V1ObjectMeta(name=name, namespace=namespace, labels=self._labels()),
            type="Opaque",
            string_data=data,
        )

    def create_secret_if_not_exists(self, namespace: str, name: str, data: dict[str, str]) -> None:
        try:
            self._api.create_namespaced_secret(namespace, self._secret_body(namespace, name, data))
        except ApiException as e:
            if e.status != HTTP_CONFLICT:
                raise
            logger.debug("Secret already exists", extra={"namespace": namespace, "secret": name})

    def put_secret(self, namespace: str, name: str, data: dict[str, str]) -> None:
        body = self._secret_body(namespace, name, data)
        try:
            self._api.create_namespaced_secret(namespace, body)
        except ApiException as e:
            if e.status != HTTP_CONFLICT:
                raise
            self._api.replace_namespaced_secret(name, namespace, body)


# =============================================================================
# Watch
# =============================================================================


@dataclass(frozen=True)
class WatchEvent:
    """One change notification, reduced to what the dispatcher needs."""

    type: str
    key: ObjectKey
    # Controlling User of an AwsAccount, if any
    owner: ObjectKey | None = None


def _controller_owner(metadata: dict[str, Any]) -> ObjectKey | None:
    for ref in metadata.get("ownerReferences") or []:
        if ref.get("controller") and ref.get("kind") == KIND_USER and ref.get("name"):
            return ObjectKey(namespace=metadata.get("namespace", "default"), name=ref["name"])
    return None


class KubernetesWatcher:
    """Streams change notifications for AwsAccount or User records."""

    def __init__(
        self,
        api: client.CustomObjectsApi | None = None,
        timeout_seconds: int = WATCH_TIMEOUT_SECONDS,
    ) -> None:
        self._api = api or client.CustomObjectsApi()
        self._timeout_seconds = timeout_seconds
        self._watch: watch.Watch | None = None

    def stream(self, plural: str, namespace: str | None = None) -> Iterator[WatchEvent]:
        """Yield events until the server closes the watch or ``stop`` is called."""
        self._watch = watch.Watch()
        if namespace:
            events = self._watch.stream(
                self._api.list_namespaced_custom_object,
                API_GROUP,
                API_VERSION,
                namespace,
                plural,
                timeout_seconds=self._timeout_seconds,
            )
        else:
            events = self._watch.stream(
                self._api.list_cluster_custom_object,
                API_GROUP,
                API_VERSION,
                plural,
                timeout_seconds=self._timeout_seconds,
            )
        for event in events:
            obj = event.get("object")
            if not isinstance(obj, dict):
                continue
            metadata = obj.get("metadata") or {}
            name = metadata.get("name")
            if not name:
                # ERROR events carry a Status object instead of a record
                continue
            yield WatchEvent(
                type=event.get("type", ""),
                key=ObjectKey(namespace=metadata.get("namespace", "default"), name=name),
                owner=_controller_owner(metadata),
            )

    def stop(self) -> None:
        if self._watch is not None:
            self._watch.stop()

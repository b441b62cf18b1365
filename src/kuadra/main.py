"""Main entry point for the kuadra operator.

Credentials:
- AWS credentials come from the boto3 default provider chain (IRSA,
  instance profile or environment); they are never read here
- Kubernetes access uses the pod service account, or the local kubeconfig
  when IN_CLUSTER is false
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys

from .config import Config, ConfigurationError
from .iam import IamClient
from .kube import (
    KubernetesNamespaceStore,
    KubernetesObjectStore,
    KubernetesWatcher,
    load_kube_config,
)
from .logging_setup import setup_logging
from .manager import Manager
from .projector import UserReconciler
from .reconciler import AccountReconciler


def build_account_reconciler(
    config: Config, store: KubernetesObjectStore | None = None
) -> AccountReconciler:
    """Wire an AccountReconciler to the live IAM and Kubernetes APIs."""
    return AccountReconciler(
        store or KubernetesObjectStore(),
        IamClient.from_region(config.aws_region),
        KubernetesNamespaceStore(),
        password_policy=config.password_policy,
        password_reset_required=config.password_reset_required,
        requeue_after_seconds=config.requeue_after_seconds,
    )


def build_manager(config: Config) -> Manager:
    store = KubernetesObjectStore()
    return Manager(
        store,
        build_account_reconciler(config, store),
        UserReconciler(store, requeue_after_seconds=config.requeue_after_seconds),
        KubernetesWatcher,
        namespace=config.watch_namespace,
        workers=config.workers,
        resync_interval_seconds=config.resync_interval_seconds,
    )


async def main() -> int:
    """Run the operator.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    try:
        config = Config.from_env()
    except ConfigurationError as e:
        setup_logging()
        logging.getLogger(__name__).error("Configuration error", extra={"error": str(e)})
        return 1

    setup_logging(config.log_level_value, config.enable_json_logging)
    logger = logging.getLogger(__name__)

    logger.info(
        "Starting kuadra operator",
        extra={
            "aws_region": config.aws_region,
            "watch_namespace": config.watch_namespace or "*",
            "workers": config.workers,
        },
    )

    try:
        load_kube_config(config.in_cluster)
        manager = build_manager(config)
    except Exception as e:
        logger.error(
            "Failed to initialize operator",
            extra={"error": str(e), "error_type": type(e).__name__},
        )
        return 1

    # Set up signal handlers for graceful shutdown
    loop = asyncio.get_running_loop()

    def signal_handler(sig: signal.Signals) -> None:
        logger.info("Received signal", extra={"signal": sig.name})
        manager.shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, lambda s=sig: signal_handler(s))

    try:
        await manager.run()
    except Exception as e:
        logger.exception("Unhandled exception", extra={"error": str(e)})
        return 1

    logger.info("Operator stopped")
    return 0


def run() -> None:
    """Entry point for the operator process."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()

"""
deployment-tracker entrypoint.

Watches pods, and reports deployments (and decommissions) of container
images to the artifact metadata deployment-record API.
"""
import argparse
import logging
import os
import signal
import sys
import threading
from typing import List, Optional

from kubernetes import client as k8s_client
from kubernetes import config as k8s_config
from kubernetes.config.config_exception import ConfigException

from deployment_tracker.core.config import ConfigError, Settings, validate_workers
from deployment_tracker.core.logging_config import setup_logging
from deployment_tracker.monitoring.server import MetricsServer, create_app
from deployment_tracker.services.controller import Controller, build_client, create_informer

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="deployment-tracker", description=__doc__)
    parser.add_argument(
        "--kubeconfig",
        default="",
        help="path to kubeconfig file (uses in-cluster config if not set)",
    )
    parser.add_argument(
        "--namespace",
        default="",
        help="namespace to monitor (empty for all namespaces)",
    )
    parser.add_argument(
        "--exclude-namespaces",
        default="",
        help="comma separated namespaces to ignore (ignored when --namespace is set)",
    )
    parser.add_argument("--workers", type=int, default=2, help="number of worker threads")
    parser.add_argument("--metrics-port", type=int, default=9090, help="port to listen to for metrics")
    return parser.parse_args(argv)


def load_kube_config(kubeconfig: str = "") -> None:
    """
    Explicit path, then $KUBECONFIG, then in-cluster config, then ~/.kube/config.

    Raises:
        ConfigError: no usable configuration was found
    """
    try:
        if kubeconfig:
            k8s_config.load_kube_config(config_file=kubeconfig)
            return
        env_path = os.getenv("KUBECONFIG", "")
        if env_path:
            k8s_config.load_kube_config(config_file=env_path)
            return
        try:
            k8s_config.load_incluster_config()
            return
        except ConfigException:
            logger.debug("Not running in cluster, falling back to ~/.kube/config")
        k8s_config.load_kube_config(config_file=os.path.expanduser("~/.kube/config"))
    except (ConfigException, OSError, TypeError, ValueError) as exc:
        raise ConfigError(f"Failed to create Kubernetes config: {exc}") from exc


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)

    try:
        settings = Settings()
    except ValueError as exc:
        setup_logging()
        logger.error("Invalid settings: %s", exc)
        return 1
    setup_logging(settings.LOG_LEVEL)

    try:
        validate_workers(args.workers)
        settings.validate_required()
        # KUBECONFIG may also come from .env
        load_kube_config(args.kubeconfig or settings.KUBECONFIG)
        api_client = build_client(settings)
    except ConfigError as exc:
        logger.error("%s", exc)
        return 1

    core_api = k8s_client.CoreV1Api()
    apps_api = k8s_client.AppsV1Api()

    informer = create_informer(core_api, args.namespace, args.exclude_namespaces)
    controller = Controller(informer, apps_api, api_client, settings.controller_config())

    metrics_server = MetricsServer(create_app(is_ready=informer.has_synced), args.metrics_port)
    metrics_server.start()

    stop_event = threading.Event()

    def _handle_signal(signum, frame):
        logger.info("Shutting down... signal=%s", signum)
        stop_event.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    logger.info("Starting deployment-tracker controller")
    try:
        controller.run(stop_event, args.workers)
    except RuntimeError as exc:
        if not stop_event.is_set():
            logger.error("Error running controller: %s", exc)
            return 1
    finally:
        metrics_server.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())

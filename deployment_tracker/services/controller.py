"""
Deployment tracker controller: informer -> classifier -> work queue -> workers -> reconciler.
"""
from __future__ import annotations

import logging
import threading
import time
from typing import List, Optional

from kubernetes.client import AppsV1Api, CoreV1Api

from deployment_tracker.core.config import ControllerConfig, Settings, parse_exclude_namespaces
from deployment_tracker.monitoring import metrics
from deployment_tracker.services.dedup_cache import ObservedDeployments
from deployment_tracker.services.deployment_record_client import DeploymentRecordClient
from deployment_tracker.services.github_app_auth import InstallationTokenProvider
from deployment_tracker.services.pod_events import PodEventClassifier
from deployment_tracker.services.pod_informer import PodInformer
from deployment_tracker.services.rate_limiter import TokenBucket
from deployment_tracker.services.reconciler import Reconciler
from deployment_tracker.services.work_queue import RateLimitingQueue

logger = logging.getLogger(__name__)

# Delay before a crashed worker loop is restarted
WORKER_RESTART_SECONDS = 1.0
WORKER_JOIN_TIMEOUT_SECONDS = 10.0


def exclude_namespaces_selector(exclude_namespaces: Optional[str]) -> str:
    """"a, b,a" -> "metadata.namespace!=a,metadata.namespace!=b"."""
    return ",".join(
        f"metadata.namespace!={ns}" for ns in parse_exclude_namespaces(exclude_namespaces)
    )


def create_informer(
    core_api: CoreV1Api,
    namespace: str = "",
    exclude_namespaces: str = "",
) -> PodInformer:
    """
    Pod informer for a single namespace, for all namespaces minus an exclusion
    list, or for all namespaces. A namespace wins over the exclusion list.
    """
    if namespace:
        logger.info("Namespace to watch namespace=%s", namespace)
        return PodInformer(core_api, namespace=namespace)

    field_selector = exclude_namespaces_selector(exclude_namespaces)
    if field_selector:
        logger.info("Excluding namespaces from watch field_selector=%s", field_selector)
        return PodInformer(core_api, field_selector=field_selector)

    return PodInformer(core_api)


def build_client(settings: Settings) -> DeploymentRecordClient:
    """Delivery client from settings; GitHub App credentials win over API_TOKEN."""
    token_provider = None
    if settings.has_github_app:
        token_provider = InstallationTokenProvider(
            settings.GH_APP_ID,
            settings.GH_INSTALL_ID,
            settings.GH_APP_PRIV_KEY,
        )
    return DeploymentRecordClient(
        settings.BASE_URL,
        settings.GITHUB_ORG,
        api_token=settings.API_TOKEN,
        token_provider=token_provider,
        retries=settings.POST_RETRIES,
        timeout=settings.POST_TIMEOUT_SECONDS,
        rate_limiter=TokenBucket(settings.POST_RATE_LIMIT, settings.POST_RATE_BURST),
    )


class Controller:
    """Tracks deployment lifecycle events and reports them as deployment records."""

    def __init__(
        self,
        informer: PodInformer,
        apps_api: AppsV1Api,
        client: DeploymentRecordClient,
        config: ControllerConfig,
        queue: Optional[RateLimitingQueue] = None,
    ):
        self.informer = informer
        self.queue = queue or RateLimitingQueue(name="pod-events")
        # Best effort cache to avoid redundant posts; the API is idempotent
        self.observed = ObservedDeployments()
        # Set on shutdown; interrupts rate limiter waits and retry backoffs
        self.cancel = threading.Event()
        self.reconciler = Reconciler(
            informer,
            apps_api,
            client,
            self.observed,
            config,
            cancel=self.cancel,
        )
        self.classifier = PodEventClassifier(self.queue)
        self.classifier.register(informer)
        self._workers: List[threading.Thread] = []

    def process_next_item(self) -> bool:
        """Process one item. Returns False once the queue is shut down."""
        item, shutdown = self.queue.get()
        if shutdown:
            return False

        try:
            start = time.perf_counter()
            try:
                self.reconciler.process(item)
            except Exception as exc:
                duration = time.perf_counter() - start
                metrics.EVENTS_PROCESSED_TIMER.labels(status="failed").observe(duration)
                metrics.EVENTS_PROCESSED_FAILED.labels(event_type=item.event_type).inc()
                logger.error(
                    "Failed to process event, requeuing event_key=%s requeues=%s error=%s",
                    item.key,
                    self.queue.num_requeues(item),
                    exc,
                )
                self.queue.add_rate_limited(item)
                return True

            duration = time.perf_counter() - start
            metrics.EVENTS_PROCESSED_OK.labels(event_type=item.event_type).inc()
            metrics.EVENTS_PROCESSED_TIMER.labels(status="ok").observe(duration)
            self.queue.forget(item)
            return True
        finally:
            self.queue.done(item)

    def _run_worker(self, stop_event: threading.Event) -> None:
        while not stop_event.is_set():
            try:
                while self.process_next_item():
                    pass
                return
            except Exception:
                logger.exception("Worker crashed, restarting in %ss", WORKER_RESTART_SECONDS)
                stop_event.wait(WORKER_RESTART_SECONDS)

    def run(self, stop_event: threading.Event, workers: int) -> None:
        """
        Start the informer and `workers` worker threads; block until stop_event is set.

        Raises:
            RuntimeError: the informer cache never synced
        """
        logger.info("Starting pod informer")
        informer_thread = threading.Thread(
            target=self.informer.run,
            args=(stop_event,),
            name="pod-informer",
            daemon=True,
        )
        informer_thread.start()

        try:
            logger.info("Waiting for informer cache to sync")
            if not self.informer.wait_for_sync(stop_event):
                raise RuntimeError("timed out waiting for caches to sync")

            logger.info("Starting workers count=%s", workers)
            for i in range(workers):
                worker = threading.Thread(
                    target=self._run_worker,
                    args=(stop_event,),
                    name=f"worker-{i}",
                    daemon=True,
                )
                worker.start()
                self._workers.append(worker)

            logger.info("Controller started")
            stop_event.wait()
            logger.info("Shutting down workers")
        finally:
            self.shutdown()
            informer_thread.join(timeout=WORKER_JOIN_TIMEOUT_SECONDS)

    def shutdown(self) -> None:
        self.cancel.set()
        self.informer.request_stop()
        self.queue.shut_down()
        for worker in self._workers:
            worker.join(timeout=WORKER_JOIN_TIMEOUT_SECONDS)
        self._workers = []

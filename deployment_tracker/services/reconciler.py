"""
Per-item business logic: turn a pod work item into deployment record posts.

One record is posted per container (then per init container) that has both
a reported deployment name and a resolved image digest. The dedup cache
suppresses posts that would not change the server side state:
- deployed is skipped when (deployment name, digest) was already reported
- decommissioned is skipped when it was never reported as deployed
"""
from __future__ import annotations

import logging
import threading
from typing import Any, Optional

from kubernetes.client import AppsV1Api, ApiException

from deployment_tracker.core.config import TMPL_CN, TMPL_DN, TMPL_NS, ControllerConfig
from deployment_tracker.schemas.deployment_record import RecordStatus, new_deployment_record
from deployment_tracker.services.dedup_cache import ObservedDeployments, cache_key
from deployment_tracker.services.deployment_record_client import ClientError, DeploymentRecordClient
from deployment_tracker.services.events import EventKind, WorkItem
from deployment_tracker.services.pod_events import get_deployment_name
from deployment_tracker.utils.image import extract_digest, extract_name

logger = logging.getLogger(__name__)


class ReconcileError(Exception):
    """At least one container of the item failed and the item should be retried."""

    def __init__(self, key: str, message: str):
        self.key = key
        super().__init__(f"{key}: {message}")


def get_ar_deployment_name(pod: Any, container: Any, template: str) -> str:
    """
    Render the reported deployment name for a container.

    This is not the Kubernetes Deployment name: it must be unique within the
    logical environment, the physical environment and the cluster.
    """
    res = template
    res = res.replace(TMPL_NS, pod.metadata.namespace or "")
    res = res.replace(TMPL_DN, get_deployment_name(pod))
    res = res.replace(TMPL_CN, container.name or "")
    return res


def get_container_digest(pod: Any, container_name: str) -> str:
    """Resolved digest from the pod status (the pod spec only has the requested image)."""
    status = pod.status
    if status is None:
        return ""
    for cs in status.container_statuses or []:
        if cs.name == container_name:
            return extract_digest(cs.image_id or "")
    for cs in status.init_container_statuses or []:
        if cs.name == container_name:
            return extract_digest(cs.image_id or "")
    return ""


def deployment_exists(apps_api: AppsV1Api, namespace: str, name: str) -> bool:
    try:
        apps_api.read_namespaced_deployment(name=name, namespace=namespace)
    except ApiException as exc:
        if exc.status == 404:
            return False
        _log_existence_check_failure(namespace, name, exc)
    except Exception as exc:
        # Unreachable API server (connection refused, timeouts) lands here
        _log_existence_check_failure(namespace, name, exc)
    return True


def _log_existence_check_failure(namespace: str, name: str, exc: Exception) -> None:
    # Any error other than 404: assume it exists and skip the decommission
    logger.warning(
        "Failed to check if deployment exists, assuming it does namespace=%s deployment=%s error=%s",
        namespace,
        name,
        exc,
    )


class Reconciler:
    def __init__(
        self,
        store,
        apps_api: AppsV1Api,
        client: DeploymentRecordClient,
        observed: ObservedDeployments,
        config: ControllerConfig,
        cancel: Optional[threading.Event] = None,
    ):
        # store: anything with get_by_key(key) -> (obj, exists), i.e. the PodInformer
        self.store = store
        self.apps_api = apps_api
        self.client = client
        self.observed = observed
        self.config = config
        self.cancel = cancel

    def _resolve_pod(self, item: WorkItem) -> Optional[Any]:
        if item.kind is EventKind.DELETED:
            pod = item.terminal_snapshot
            if pod is None:
                logger.error("Delete event missing pod data key=%s", item.key)
                return None

            # Pod removed while its deployment still exists: scale down or
            # rollout. Rollouts are reported by the create of the new pods.
            deployment_name = get_deployment_name(pod)
            if deployment_name and deployment_exists(
                self.apps_api, pod.metadata.namespace, deployment_name
            ):
                logger.debug(
                    "Deployment still exists, skipping pod delete (scale down) "
                    "namespace=%s deployment=%s pod=%s",
                    pod.metadata.namespace,
                    deployment_name,
                    pod.metadata.name,
                )
                return None
            return pod

        pod, exists = self.store.get_by_key(item.key)
        if not exists:
            # Pod churned away before we got to it
            return None
        return pod

    def process(self, item: WorkItem) -> None:
        """
        Reconcile one work item.

        Raises:
            ReconcileError: a record could not be delivered; requeue the item
        """
        pod = self._resolve_pod(item)
        if pod is None:
            return

        status = RecordStatus.DEPLOYED
        if item.kind is EventKind.DELETED:
            status = RecordStatus.DECOMMISSIONED

        spec = pod.spec
        containers = list(spec.containers or []) if spec is not None else []
        init_containers = list(spec.init_containers or []) if spec is not None else []

        last_exc: Optional[Exception] = None
        for container in containers + init_containers:
            try:
                self.record_container(pod, container, status, item.event_type)
            except Exception as exc:
                last_exc = exc

        if last_exc is not None:
            raise ReconcileError(item.key, str(last_exc)) from last_exc

    def record_container(self, pod: Any, container: Any, status: RecordStatus, event_type: str) -> None:
        dn = get_ar_deployment_name(pod, container, self.config.template)
        digest = get_container_digest(pod, container.name)

        if not dn or not digest:
            logger.debug(
                "Skipping container: missing deployment name or digest "
                "namespace=%s pod=%s container=%s deployment_name=%s has_digest=%s",
                pod.metadata.namespace,
                pod.metadata.name,
                container.name,
                dn,
                bool(digest),
            )
            return

        key = cache_key(dn, digest)
        if status is RecordStatus.DEPLOYED:
            if self.observed.contains(key):
                logger.debug(
                    "Deployment already observed, skipping post deployment_name=%s digest=%s",
                    dn,
                    digest,
                )
                return
        elif not self.observed.contains(key):
            # Never reported as deployed, nothing to decommission
            logger.debug(
                "Deployment not in cache, skipping decommission deployment_name=%s digest=%s",
                dn,
                digest,
            )
            return

        image_name, version = extract_name(container.image or "")
        record = new_deployment_record(
            name=image_name,
            digest=digest,
            version=version,
            logical_environment=self.config.logical_environment,
            physical_environment=self.config.physical_environment,
            cluster=self.config.cluster,
            status=status.value,
            deployment_name=dn,
        )

        try:
            self.client.post_one(record, cancel=self.cancel)
        except ClientError as exc:
            # Permanent rejection; the item is handled
            logger.warning(
                "Failed to post record event_type=%s name=%s deployment_name=%s status=%s digest=%s error=%s",
                event_type,
                record.name,
                record.deployment_name,
                record.status,
                record.digest,
                exc,
            )
            return
        except Exception as exc:
            logger.error(
                "Failed to post record event_type=%s name=%s deployment_name=%s status=%s digest=%s error=%s",
                event_type,
                record.name,
                record.deployment_name,
                record.status,
                record.digest,
                exc,
            )
            raise

        logger.info(
            "Posted record event_type=%s name=%s deployment_name=%s status=%s digest=%s",
            event_type,
            record.name,
            record.deployment_name,
            record.status,
            record.digest,
        )

        if status is RecordStatus.DEPLOYED:
            self.observed.add(key)
        else:
            self.observed.discard(key)

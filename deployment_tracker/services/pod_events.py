"""
Pod event classifier.

Turns informer notifications into work items:
- a pod that is added while Running, or transitions into Running, is CREATED
- a deleted pod is DELETED, carrying its final snapshot
- pods not owned by a ReplicaSet (and therefore by no Deployment) are ignored
"""
from __future__ import annotations

import logging
from typing import Any, Optional

from kubernetes.client import V1Pod

from deployment_tracker.services.events import EventKind, WorkItem
from deployment_tracker.services.pod_informer import DeletedFinalStateUnknown, meta_namespace_key

logger = logging.getLogger(__name__)

POD_RUNNING = "Running"


def get_deployment_name(pod: Any) -> str:
    """Name of the Deployment owning the pod, derived from its ReplicaSet owner.

    "web-7f9c9b6d8" -> "web". Returns "" when there is no ReplicaSet owner.
    """
    owners = getattr(getattr(pod, "metadata", None), "owner_references", None) or []
    for owner in owners:
        if owner.kind != "ReplicaSet":
            continue
        rs_name = owner.name or ""
        idx = rs_name.rfind("-")
        if idx > 0:
            return rs_name[:idx]
        return rs_name
    return ""


def _phase(pod: Any) -> Optional[str]:
    return getattr(getattr(pod, "status", None), "phase", None)


class PodEventClassifier:
    """Informer event handlers that feed the work queue."""

    def __init__(self, queue):
        self.queue = queue

    def register(self, informer) -> None:
        informer.add_event_handler(self.on_add, self.on_update, self.on_delete)

    def on_add(self, obj: Any) -> None:
        if not isinstance(obj, V1Pod):
            logger.error("Invalid object returned: %s", type(obj).__name__)
            return

        if _phase(obj) == POD_RUNNING and get_deployment_name(obj):
            self._enqueue(obj, EventKind.CREATED)

    def on_update(self, old_obj: Any, new_obj: Any) -> None:
        if not isinstance(old_obj, V1Pod):
            logger.error("Invalid old object returned: %s", type(old_obj).__name__)
            return
        if not isinstance(new_obj, V1Pod):
            logger.error("Invalid new object returned: %s", type(new_obj).__name__)
            return

        # Skip if pod is being deleted
        if new_obj.metadata.deletion_timestamp is not None:
            return
        if not get_deployment_name(new_obj):
            return

        # Only the transition into Running counts
        if _phase(old_obj) != POD_RUNNING and _phase(new_obj) == POD_RUNNING:
            self._enqueue(new_obj, EventKind.CREATED)

    def on_delete(self, obj: Any) -> None:
        pod = obj
        if isinstance(obj, DeletedFinalStateUnknown):
            pod = obj.obj
        if not isinstance(pod, V1Pod):
            logger.error("Invalid deleted object returned: %s", type(pod).__name__)
            return

        if not get_deployment_name(pod):
            return

        self._enqueue(obj, EventKind.DELETED, terminal_snapshot=pod)

    def _enqueue(self, obj: Any, kind: EventKind, terminal_snapshot: Any = None) -> None:
        try:
            key = meta_namespace_key(obj)
        except ValueError as exc:
            logger.error("Failed to get key for object: %s", exc)
            return
        logger.debug("Enqueue event_type=%s key=%s", kind.value, key)
        self.queue.add(WorkItem(key=key, kind=kind, terminal_snapshot=terminal_snapshot))

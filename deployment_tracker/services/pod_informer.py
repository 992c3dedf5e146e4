"""
Pod informer: list-then-watch pods and keep a local store keyed by namespace/name.

Handlers registered with add_event_handler() are called from the informer
thread for every change:

- on_add(pod)
- on_update(old_pod, new_pod)
- on_delete(pod_or_tombstone)

When a re-list finds that a pod disappeared while the watch was down, the
final state of the pod is unknown and on_delete receives a
DeletedFinalStateUnknown wrapping the last pod seen.
"""
from __future__ import annotations

import logging
import random
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from kubernetes import watch
from kubernetes.client import ApiException, CoreV1Api

logger = logging.getLogger(__name__)

# Server side watch timeout; the watch is re-opened afterwards (resync)
WATCH_TIMEOUT_SECONDS = 30
MAX_BACKOFF_SECONDS = 30


@dataclass(frozen=True)
class DeletedFinalStateUnknown:
    """Tombstone for an object whose deletion was missed by the watch."""
    key: str
    obj: Any


def meta_namespace_key(obj: Any) -> str:
    """Return "namespace/name", or "name" for cluster scoped objects."""
    if isinstance(obj, DeletedFinalStateUnknown):
        return obj.key
    metadata = getattr(obj, "metadata", None)
    name = getattr(metadata, "name", None)
    if not name:
        raise ValueError("object has no metadata.name")
    namespace = getattr(metadata, "namespace", None)
    if namespace:
        return f"{namespace}/{name}"
    return name


@dataclass
class _Handlers:
    on_add: Callable[[Any], None]
    on_update: Callable[[Any, Any], None]
    on_delete: Callable[[Any], None]


class PodInformer:
    """Keeps a local, thread-safe snapshot of pods and dispatches change notifications."""

    def __init__(
        self,
        core_api: CoreV1Api,
        namespace: Optional[str] = None,
        field_selector: Optional[str] = None,
        watch_timeout_seconds: int = WATCH_TIMEOUT_SECONDS,
    ):
        self.core_api = core_api
        self.namespace = namespace or None
        self.field_selector = field_selector or None
        self.watch_timeout_seconds = watch_timeout_seconds

        self._store: Dict[str, Any] = {}
        self._store_lock = threading.Lock()
        self._handlers: List[_Handlers] = []
        self._synced = threading.Event()
        self._external_stop = threading.Event()
        self._active_watcher: Optional[watch.Watch] = None
        self._watcher_lock = threading.Lock()

    # -- public API ----------------------------------------------------------

    def add_event_handler(
        self,
        on_add: Callable[[Any], None],
        on_update: Callable[[Any, Any], None],
        on_delete: Callable[[Any], None],
    ) -> None:
        self._handlers.append(_Handlers(on_add, on_update, on_delete))

    def get_by_key(self, key: str) -> Tuple[Optional[Any], bool]:
        with self._store_lock:
            obj = self._store.get(key)
        return obj, obj is not None

    def list_keys(self) -> List[str]:
        with self._store_lock:
            return list(self._store.keys())

    def has_synced(self) -> bool:
        return self._synced.is_set()

    def wait_for_sync(self, stop_event: threading.Event, poll_seconds: float = 0.1) -> bool:
        """Block until the initial list completed. False if stop_event fired first."""
        while not stop_event.is_set():
            if self._synced.wait(timeout=poll_seconds):
                return True
        return self._synced.is_set()

    def request_stop(self) -> None:
        """Request a cooperative stop and immediately interrupt any open watch stream."""
        self._external_stop.set()
        with self._watcher_lock:
            active_watcher = self._active_watcher
        if active_watcher is not None:
            active_watcher.stop()

    # -- list / watch --------------------------------------------------------

    def _should_stop(self, stop_event: threading.Event) -> bool:
        return stop_event.is_set() or self._external_stop.is_set()

    def _list_kwargs(self) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {}
        if self.field_selector:
            kwargs["field_selector"] = self.field_selector
        return kwargs

    def _list_func(self):
        if self.namespace:
            return self.core_api.list_namespaced_pod
        return self.core_api.list_pod_for_all_namespaces

    def _list(self):
        kwargs = self._list_kwargs()
        if self.namespace:
            kwargs["namespace"] = self.namespace
        return self._list_func()(**kwargs)

    def _dispatch(self, kind: str, *args: Any) -> None:
        for handler in self._handlers:
            try:
                if kind == "add":
                    handler.on_add(*args)
                elif kind == "update":
                    handler.on_update(*args)
                else:
                    handler.on_delete(*args)
            except Exception:
                # A broken handler must not kill the watch loop
                logger.exception("Pod event handler failed kind=%s", kind)

    def replace(self, pods: List[Any]) -> None:
        """Replace the store with a fresh listing and emit the differences."""
        fresh: Dict[str, Any] = {}
        for pod in pods:
            try:
                fresh[meta_namespace_key(pod)] = pod
            except ValueError:
                continue

        with self._store_lock:
            previous = self._store
            self._store = fresh

        for key, pod in fresh.items():
            old = previous.get(key)
            if old is None:
                self._dispatch("add", pod)
            else:
                self._dispatch("update", old, pod)
        for key, old in previous.items():
            if key not in fresh:
                self._dispatch("delete", DeletedFinalStateUnknown(key=key, obj=old))

    def handle_watch_event(self, event_type: str, pod: Any) -> None:
        """Apply a single watch event to the store and notify handlers."""
        try:
            key = meta_namespace_key(pod)
        except ValueError:
            return

        if event_type in ("ADDED", "MODIFIED"):
            with self._store_lock:
                old = self._store.get(key)
                self._store[key] = pod
            if old is None:
                self._dispatch("add", pod)
            else:
                self._dispatch("update", old, pod)
        elif event_type == "DELETED":
            with self._store_lock:
                self._store.pop(key, None)
            self._dispatch("delete", pod)

    def _relist(self) -> Optional[str]:
        pod_list = self._list()
        self.replace(list(getattr(pod_list, "items", None) or []))
        self._synced.set()
        return getattr(getattr(pod_list, "metadata", None), "resource_version", None)

    def run(self, stop_event: threading.Event) -> None:
        """
        Main loop: list, then watch from the list's resourceVersion until stopped.

        410 Gone re-lists. 401/403 are configuration errors (RBAC) and end the
        loop. Other errors back off exponentially with jitter, capped at 30s.
        """
        self._external_stop.clear()
        resource_version: Optional[str] = None
        needs_list = True
        backoff_seconds = 1

        while not self._should_stop(stop_event):
            try:
                if needs_list:
                    resource_version = self._relist()
                    needs_list = False
                    logger.info(
                        "Pod informer synced pods=%s resource_version=%s",
                        len(self.list_keys()),
                        resource_version,
                    )

                watcher = watch.Watch()
                with self._watcher_lock:
                    self._active_watcher = watcher
                stream_kwargs = self._list_kwargs()
                if self.namespace:
                    stream_kwargs["namespace"] = self.namespace
                stream = watcher.stream(
                    self._list_func(),
                    resource_version=resource_version,
                    timeout_seconds=self.watch_timeout_seconds,
                    **stream_kwargs,
                )
                for event in stream:
                    if self._should_stop(stop_event):
                        break
                    event_type = str(event.get("type", ""))
                    obj = event.get("object")
                    if event_type == "ERROR":
                        status = getattr(obj, "code", None)
                        if status is None and isinstance(obj, dict):
                            status = obj.get("code")
                        raise ApiException(status=status or 500, reason="watch error event")
                    if obj is None:
                        continue
                    metadata = getattr(obj, "metadata", None)
                    if metadata is not None and metadata.resource_version:
                        resource_version = metadata.resource_version
                    self.handle_watch_event(event_type, obj)
                backoff_seconds = 1
            except ApiException as exc:
                if exc.status == 410:
                    logger.warning("Watch resource version expired, re-listing")
                    needs_list = True
                    continue
                if exc.status in {401, 403}:
                    logger.error(
                        "Kubernetes API access denied (status=%s). "
                        "Check controller RBAC and service account permissions.",
                        exc.status,
                    )
                    return
                logger.exception("Pod watch failed status=%s", exc.status)
                needs_list = needs_list or resource_version is None
            except Exception:
                logger.exception("Unexpected error in pod watch")
                needs_list = needs_list or resource_version is None
            else:
                continue
            finally:
                with self._watcher_lock:
                    self._active_watcher = None

            jittered = backoff_seconds * (0.5 + random.random())  # noqa: S311
            stop_event.wait(timeout=jittered)
            backoff_seconds = min(backoff_seconds * 2, MAX_BACKOFF_SECONDS)

        logger.info("Pod informer stopped")

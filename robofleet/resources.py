"""
RoboFleet Resource Tracker.

Keeps a table of the external processes this coordinator has asked the
launcher to start, keyed by resource id::

    tracker = ResourceTracker(launcher, max_reloads=3)
    rid = tracker.allocate(LaunchRequest("arm_driver", "bringup.launch", namespace="/ns/arm1"))
    ...
    tracker.release(rid)

The launcher reports health changes through :meth:`ResourceTracker.on_status`.
A FAILED status wakes every waiter blocked on that resource (see
:meth:`wait_failed`) and is passed to the registered failure listeners,
which decide whether the resource is reloaded.

Reloading is bounded: :meth:`reload` refuses once an entry has been
reloaded ``max_reloads`` times (``None`` disables the bound).

With a *catalog_path* the table is backed up as YAML on every change.  A
coordinator that crashed leaves the file behind; on the next start
:meth:`ResourceTracker.recover_catalog` stops the processes it lists.  A
clean shutdown erases the file.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

import yaml

from robofleet.errors import NotFound, ResourceRequestFailed
from robofleet.launcher import LaunchRequest, ProcessLauncher, ResourceStatus

logger = logging.getLogger("RoboFleet.Resources")

FailureListener = Callable[[int], None]


@dataclass
class ResourceEntry:
    """One outstanding request to the launcher."""

    resource_id: int
    request: LaunchRequest
    status: ResourceStatus = ResourceStatus.PENDING
    created_at: float = field(default_factory=time.time)
    reload_count: int = 0
    failed_event: threading.Event = field(default_factory=threading.Event, repr=False)

    def to_dict(self) -> dict:
        return {
            "resource_id": self.resource_id,
            "request": self.request.to_dict(),
            "status": self.status.value,
            "created_at": self.created_at,
            "reload_count": self.reload_count,
        }


class ResourceTracker:
    """Allocate, release and watch external process resources.

    Args:
        launcher:     The process launcher collaborator.
        max_reloads:  How many times one resource may be reloaded after a
                      failure.  ``None`` means no bound.
        catalog_path: YAML file the resource table is backed up to.
                      ``None`` disables the backup.
    """

    def __init__(
        self,
        launcher: ProcessLauncher,
        max_reloads: Optional[int] = 3,
        catalog_path: Optional[str] = None,
    ):
        self._launcher = launcher
        self.max_reloads = max_reloads
        self.catalog_path = os.path.expanduser(catalog_path) if catalog_path else None
        self._entries: Dict[int, ResourceEntry] = {}
        # Failures reported before ``allocate`` registered the id
        self._early_failures: set[int] = set()
        self._listeners: List[FailureListener] = []
        self._lock = threading.RLock()
        launcher.set_status_callback(self.on_status)

    # ------------------------------------------------------------------
    # Allocation
    # ------------------------------------------------------------------

    def allocate(self, request: LaunchRequest, reload_count: int = 0) -> int:
        """Ask the launcher to start *request*. Returns the new resource id."""
        try:
            resource_id = self._launcher.launch(request)
        except Exception as exc:
            raise ResourceRequestFailed(f"Failed to launch {request.describe()}") from exc

        entry = ResourceEntry(resource_id=resource_id, request=request, reload_count=reload_count)
        with self._lock:
            if resource_id in self._entries:
                logger.warning("Launcher reused resource id %d", resource_id)
            self._entries[resource_id] = entry
            if resource_id in self._early_failures:
                self._early_failures.discard(resource_id)
                entry.status = ResourceStatus.FAILED
                entry.failed_event.set()
            else:
                entry.status = ResourceStatus.ACTIVE
        self._save_catalog()
        logger.debug("Allocated resource %d: %s", resource_id, request.describe())
        return resource_id

    def release(self, resource_id: int) -> None:
        """Stop and forget *resource_id*."""
        with self._lock:
            entry = self._entries.pop(resource_id, None)
        if entry is None:
            raise NotFound(f"Resource {resource_id} is not tracked")
        # Unblock anyone still waiting on this resource
        entry.failed_event.set()
        self._save_catalog()
        try:
            self._launcher.stop(resource_id)
        except Exception as exc:
            raise ResourceRequestFailed(
                f"Failed to release resource {resource_id} ({entry.request.describe()})"
            ) from exc
        logger.debug("Released resource %d", resource_id)

    def reload(self, resource_id: int) -> int:
        """Release *resource_id* and launch the same request again.

        Returns the id of the new resource.  Raises ResourceRequestFailed
        when the reload bound is reached or the relaunch fails.
        """
        entry = self.get(resource_id)
        if entry is None:
            raise NotFound(f"Resource {resource_id} is not tracked")
        if self.max_reloads is not None and entry.reload_count >= self.max_reloads:
            raise ResourceRequestFailed(
                f"Resource {resource_id} ({entry.request.describe()}) reached the reload "
                f"limit of {self.max_reloads}"
            )
        try:
            self.release(resource_id)
        except ResourceRequestFailed as exc:
            # The process is already gone in most failure cases
            logger.debug("Release before reload of %d: %s", resource_id, exc)
        new_id = self.allocate(entry.request, reload_count=entry.reload_count + 1)
        logger.info(
            "Reloaded resource %d as %d (%s, attempt %d)",
            resource_id,
            new_id,
            entry.request.describe(),
            entry.reload_count + 1,
        )
        return new_id

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def on_status(self, resource_id: int, status: ResourceStatus) -> None:
        """Status callback from the launcher. May run on any thread."""
        status = ResourceStatus(status)
        with self._lock:
            entry = self._entries.get(resource_id)
            if entry is None:
                if status == ResourceStatus.FAILED:
                    self._early_failures.add(resource_id)
                logger.debug("Status %s for untracked resource %d", status.value, resource_id)
                return
            previous = entry.status
            entry.status = status
            listeners = list(self._listeners)
        if previous != status:
            self._save_catalog()

        if status != ResourceStatus.FAILED:
            return
        entry.failed_event.set()
        if previous == ResourceStatus.FAILED:
            return
        logger.warning("Resource %d (%s) FAILED", resource_id, entry.request.describe())
        for listener in listeners:
            try:
                listener(resource_id)
            except Exception as exc:
                logger.error("Failure listener error for resource %d: %s", resource_id, exc)

    def add_failure_listener(self, listener: FailureListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def has_failed(self, resource_id: int) -> bool:
        with self._lock:
            entry = self._entries.get(resource_id)
            if entry is None:
                return resource_id in self._early_failures
            return entry.status == ResourceStatus.FAILED

    def wait_failed(self, resource_id: int, timeout: float) -> bool:
        """Block up to *timeout* seconds; True if the resource failed meanwhile."""
        with self._lock:
            entry = self._entries.get(resource_id)
            if entry is None:
                return resource_id in self._early_failures
        entry.failed_event.wait(timeout)
        return self.has_failed(resource_id)

    # ------------------------------------------------------------------
    # Catalog backup
    # ------------------------------------------------------------------

    def _save_catalog(self) -> None:
        if not self.catalog_path:
            return
        with self._lock:
            records = [
                dict(entry.to_dict(), info=self._launcher.resource_info(rid))
                for rid, entry in self._entries.items()
            ]
        tmp = self.catalog_path + ".tmp"
        try:
            os.makedirs(os.path.dirname(self.catalog_path) or ".", exist_ok=True)
            with open(tmp, "w") as f:
                yaml.safe_dump({"resources": records}, f, sort_keys=False)
            os.replace(tmp, self.catalog_path)
        except OSError as exc:
            logger.error("Could not back up the resource catalog to %s: %s", self.catalog_path, exc)

    def recover_catalog(self) -> int:
        """Stop the resources listed in a catalog left by a crashed run.

        Returns how many of them were still running and got stopped.
        """
        if not self.catalog_path or not os.path.exists(self.catalog_path):
            return 0
        try:
            with open(self.catalog_path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            logger.error("Unreadable resource catalog %s: %s", self.catalog_path, exc)
            return 0
        if not isinstance(data, dict):
            logger.error("Unreadable resource catalog %s: not a mapping", self.catalog_path)
            return 0

        stopped = 0
        for record in data.get("resources") or []:
            try:
                resource_id = int(record["resource_id"])
                request = LaunchRequest(**record["request"])
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping unreadable catalog entry %r: %s", record, exc)
                continue
            logger.warning("Recovering orphaned resource %d: %s", resource_id, request.describe())
            if self._launcher.stop_recovered(resource_id, record.get("info") or {}):
                stopped += 1
        logger.info("Recovered %d orphaned resource(s) from %s", stopped, self.catalog_path)
        self._save_catalog()
        return stopped

    def erase_catalog(self) -> None:
        if self.catalog_path and os.path.exists(self.catalog_path):
            os.remove(self.catalog_path)
            logger.debug("Erased resource catalog %s", self.catalog_path)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get(self, resource_id: int) -> Optional[ResourceEntry]:
        with self._lock:
            return self._entries.get(resource_id)

    def is_tracked(self, resource_id: int) -> bool:
        with self._lock:
            return resource_id in self._entries

    def entries(self) -> List[ResourceEntry]:
        with self._lock:
            return list(self._entries.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

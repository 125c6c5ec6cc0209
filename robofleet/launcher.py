"""
RoboFleet process launcher.

The launcher is the external collaborator that actually starts driver and
controller executables.  The coordinator only depends on the
:class:`ProcessLauncher` interface; :class:`SubprocessLauncher` is a thin
local implementation that runs ``<package>/<executable>`` as a child
process and reports a FAILED status when the process exits with an error.

Status reports are delivered through the callback given to
:meth:`ProcessLauncher.set_status_callback` (normally
:meth:`robofleet.resources.ResourceTracker.on_status`).
"""

from __future__ import annotations

import itertools
import logging
import os
import shlex
import signal
import subprocess
import sys
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional

logger = logging.getLogger("RoboFleet.Launcher")

# Executables shipped with this package, run as ``python -m <module>``
BUILTIN_EXECUTABLES = {
    ("robofleet", "urdf_loader"): "robofleet.urdf_loader",
}


class ResourceStatus(str, Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    FAILED = "FAILED"


@dataclass(frozen=True)
class LaunchRequest:
    """What to start, and in which robot namespace."""

    package: str
    executable: str
    args: str = ""
    namespace: str = ""

    def to_dict(self) -> dict:
        return {
            "package": self.package,
            "executable": self.executable,
            "args": self.args,
            "namespace": self.namespace,
        }

    def describe(self) -> str:
        cmd = f"{self.package}/{self.executable}"
        if self.args:
            cmd += f" {self.args}"
        return f"{cmd} @ {self.namespace or '/'}"


StatusCallback = Callable[[int, ResourceStatus], None]


class ProcessLauncher(ABC):
    """Interface of the external process launcher."""

    def __init__(self) -> None:
        self._status_cb: Optional[StatusCallback] = None

    def set_status_callback(self, callback: Optional[StatusCallback]) -> None:
        self._status_cb = callback

    def report_status(self, resource_id: int, status: ResourceStatus) -> None:
        """Forward a health change of *resource_id* to the registered callback."""
        if self._status_cb is not None:
            self._status_cb(resource_id, status)

    @abstractmethod
    def launch(self, request: LaunchRequest) -> int:
        """Start the process described by *request* and return its resource id.

        Raises any exception when the process cannot be started.
        """

    @abstractmethod
    def stop(self, resource_id: int) -> None:
        """Stop the process behind *resource_id*."""

    def resource_info(self, resource_id: int) -> dict:
        """Details needed to find *resource_id* again after a coordinator restart."""
        return {}

    def stop_recovered(self, resource_id: int, info: dict) -> bool:
        """Stop a resource started by a previous run of the coordinator.

        *info* is what :meth:`resource_info` returned back then.  Returns
        True when a process was stopped.
        """
        logger.warning("Cannot stop recovered resource %d: not supported by this launcher", resource_id)
        return False


class SubprocessLauncher(ProcessLauncher):
    """Launch executables as local child processes.

    ``<package>`` is resolved against *search_path* (a directory holding one
    sub-directory per package); executables shipped with robofleet itself
    run from the installed package.  The robot namespace is exported as
    ``ROBOFLEET_NAMESPACE`` and the search path as ``ROBOFLEET_SEARCH_PATH``
    so launched processes can scope their topics and find their files.
    *env* adds further variables (``ROBOFLEET_CONFIG`` for instance).
    """

    def __init__(self, search_path: str = ".", env: Optional[Dict[str, str]] = None) -> None:
        super().__init__()
        self._search_path = search_path
        self._env = dict(env or {})
        self._ids = itertools.count(1)
        self._procs: Dict[int, subprocess.Popen] = {}
        self._stopping: set[int] = set()
        self._lock = threading.Lock()

    def _resolve(self, request: LaunchRequest) -> list[str]:
        module = BUILTIN_EXECUTABLES.get((request.package, request.executable))
        if module is not None:
            return [sys.executable, "-m", module] + shlex.split(request.args)
        exe = os.path.join(self._search_path, request.package, request.executable)
        if not os.path.exists(exe):
            raise FileNotFoundError(f"Executable not found: {exe}")
        return [exe] + shlex.split(request.args)

    def launch(self, request: LaunchRequest) -> int:
        cmd = self._resolve(request)
        env = dict(os.environ, **self._env)
        env["ROBOFLEET_NAMESPACE"] = request.namespace
        env["ROBOFLEET_SEARCH_PATH"] = os.path.abspath(self._search_path)
        proc = subprocess.Popen(cmd, env=env)
        with self._lock:
            resource_id = next(self._ids)
            self._procs[resource_id] = proc
        logger.info("Launched %s (resource %d, pid %d)", request.describe(), resource_id, proc.pid)

        threading.Thread(
            target=self._watch, args=(resource_id, proc), daemon=True, name=f"launch-{resource_id}"
        ).start()
        return resource_id

    def _watch(self, resource_id: int, proc: subprocess.Popen) -> None:
        rc = proc.wait()
        with self._lock:
            expected = resource_id in self._stopping
            self._stopping.discard(resource_id)
            self._procs.pop(resource_id, None)
        if not expected and rc != 0:
            logger.warning("Resource %d exited with code %d", resource_id, rc)
            self.report_status(resource_id, ResourceStatus.FAILED)

    def stop(self, resource_id: int) -> None:
        with self._lock:
            proc = self._procs.get(resource_id)
            if proc is None:
                raise KeyError(f"Unknown resource {resource_id}")
            self._stopping.add(resource_id)
        proc.terminate()
        try:
            proc.wait(timeout=5)
        except subprocess.TimeoutExpired:
            proc.kill()
        logger.info("Stopped resource %d", resource_id)

    def resource_info(self, resource_id: int) -> dict:
        with self._lock:
            proc = self._procs.get(resource_id)
        if proc is None:
            return {}
        return {"pid": proc.pid, "cmd": [str(a) for a in proc.args]}

    def stop_recovered(self, resource_id: int, info: dict) -> bool:
        pid = info.get("pid")
        if not pid or not _same_process(pid, info.get("cmd") or []):
            logger.info("Recovered resource %d is no longer running", resource_id)
            return False
        try:
            os.kill(pid, signal.SIGTERM)
        except ProcessLookupError:
            return False
        logger.info("Stopped recovered resource %d (pid %d)", resource_id, pid)
        return True


def _same_process(pid: int, cmd: list) -> bool:
    """Whether *pid* still runs *cmd* (guards against pid reuse)."""
    try:
        with open(f"/proc/{pid}/cmdline", "rb") as f:
            running = f.read().split(b"\0")
    except OSError:
        return False
    return [a.decode(errors="replace") for a in running if a] == [a for a in cmd if a]

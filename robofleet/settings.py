"""
Coordinator settings.

Settings come from an optional YAML file; every scalar key can be
overridden by a ``ROBOFLEET_<KEY>`` environment variable::

    namespace: hostA
    description_paths: [./robots]
    port: 8000
    endpoint: http://10.0.0.5:8000
    peers:
      hostB: http://10.0.0.6:8000
    catalog_path: ~/.robofleet/{namespace}.rrcat.yaml   # null disables
    sync:
      transport: mqtt
      broker_host: mqtt.local
    planner:
      class: my_moveit_bridge.MoveItPlanner

External collaborators (``launcher``, ``graph``, ``planner``,
``navigation``, ``gripper``) are plugged in through a fully-qualified
``class`` path; the class is instantiated with its config block.
"""

from __future__ import annotations

import importlib
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from robofleet.config.loader import DESCRIPTION_FILENAME
from robofleet.planning import PlanningOptions
from robofleet.robot import LifecycleOptions

logger = logging.getLogger("RoboFleet.Settings")

ENV_PREFIX = "ROBOFLEET_"
SYNC_TRANSPORTS = ("local", "mqtt")
COLLABORATORS = ("launcher", "graph", "planner", "navigation", "gripper")
DEFAULT_CATALOG_PATH = "~/.robofleet/{namespace}.rrcat.yaml"


@dataclass
class ManagerSettings:
    namespace: str = ""
    description_paths: List[str] = field(default_factory=list)
    description_filename: str = DESCRIPTION_FILENAME
    poll_interval_s: float = 1.0
    ready_timeout_s: Optional[float] = 30.0
    settle_time_s: float = 0.0
    nav_server_timeout_s: float = 5.0
    max_reloads: Optional[int] = 3
    host: str = "0.0.0.0"
    port: int = 8000
    endpoint: str = ""
    peers: Dict[str, str] = field(default_factory=dict)
    sync: Dict[str, Any] = field(default_factory=lambda: {"transport": "local"})
    forward_timeout_s: float = 10.0
    catalog_path: Optional[str] = DEFAULT_CATALOG_PATH
    config_path: str = ""
    launcher: Dict[str, Any] = field(default_factory=dict)
    graph: Dict[str, Any] = field(default_factory=dict)
    planner: Dict[str, Any] = field(default_factory=dict)
    navigation: Dict[str, Any] = field(default_factory=dict)
    gripper: Dict[str, Any] = field(default_factory=dict)

    def lifecycle_options(self) -> LifecycleOptions:
        return LifecycleOptions(
            poll_interval_s=self.poll_interval_s,
            ready_timeout_s=self.ready_timeout_s,
            settle_time_s=self.settle_time_s,
            nav_server_timeout_s=self.nav_server_timeout_s,
            planning=PlanningOptions(),
        )

    def advertised_endpoint(self) -> str:
        """Base URL other coordinators should forward to."""
        if self.endpoint:
            return self.endpoint
        host = "127.0.0.1" if self.host in ("0.0.0.0", "") else self.host
        return f"http://{host}:{self.port}"

    def resolved_catalog_path(self) -> Optional[str]:
        """Resource catalog backup file, or None when the backup is disabled."""
        if not self.catalog_path:
            return None
        return os.path.expanduser(self.catalog_path.format(namespace=self.namespace or "root"))


def _optional(value, cast):
    if value is None or (isinstance(value, str) and value.strip().lower() in ("", "none", "null")):
        return None
    return cast(value)


def load_settings(path: Optional[str] = None) -> ManagerSettings:
    """Load settings from *path* (optional) and ``ROBOFLEET_*`` env vars."""
    config: Dict[str, Any] = {}
    if path:
        with open(path) as f:
            config = yaml.safe_load(f) or {}
        if not isinstance(config, dict):
            raise ValueError(f"Settings file {path} must contain a mapping")

    def env(key: str, default=None):
        return os.getenv(ENV_PREFIX + key.upper(), default)

    paths = config.get("description_paths", env("description_paths", ""))
    if isinstance(paths, str):
        paths = [p for p in paths.split(os.pathsep) if p]

    sync = dict(config.get("sync") or {})
    sync.setdefault("transport", env("sync_transport", "local"))
    if env("broker_host"):
        sync.setdefault("broker_host", env("broker_host"))

    settings = ManagerSettings(
        namespace=str(config.get("namespace", env("namespace", ""))).strip("/"),
        description_paths=list(paths),
        description_filename=config.get(
            "description_filename", env("description_filename", DESCRIPTION_FILENAME)
        ),
        poll_interval_s=float(config.get("poll_interval_s", env("poll_interval_s", 1.0))),
        ready_timeout_s=_optional(config.get("ready_timeout_s", env("ready_timeout_s", 30.0)), float),
        settle_time_s=float(config.get("settle_time_s", env("settle_time_s", 0.0))),
        nav_server_timeout_s=float(
            config.get("nav_server_timeout_s", env("nav_server_timeout_s", 5.0))
        ),
        max_reloads=_optional(config.get("max_reloads", env("max_reloads", 3)), int),
        host=config.get("host", env("host", "0.0.0.0")),
        port=int(config.get("port", env("port", 8000))),
        endpoint=config.get("endpoint", env("endpoint", "")),
        peers={str(k).strip("/"): str(v) for k, v in (config.get("peers") or {}).items()},
        sync=sync,
        forward_timeout_s=float(config.get("forward_timeout_s", env("forward_timeout_s", 10.0))),
        catalog_path=_optional(
            config.get("catalog_path", env("catalog_path", DEFAULT_CATALOG_PATH)), str
        ),
        config_path=os.path.abspath(path) if path else "",
    )
    for name in COLLABORATORS:
        setattr(settings, name, dict(config.get(name) or {}))
    return settings


def validate_settings(settings: ManagerSettings) -> Tuple[bool, List[str]]:
    """Validate *settings*. Returns ``(is_valid, errors)``."""
    errors: List[str] = []

    if settings.poll_interval_s <= 0:
        errors.append("'poll_interval_s' must be positive")
    if settings.ready_timeout_s is not None and settings.ready_timeout_s <= 0:
        errors.append("'ready_timeout_s' must be positive (or null for no timeout)")
    if settings.settle_time_s < 0:
        errors.append("'settle_time_s' must not be negative")
    if settings.max_reloads is not None and settings.max_reloads < 0:
        errors.append("'max_reloads' must not be negative (or null for no bound)")
    if not 0 < settings.port < 65536:
        errors.append(f"'port' out of range: {settings.port}")
    if settings.forward_timeout_s <= 0:
        errors.append("'forward_timeout_s' must be positive")

    transport = str(settings.sync.get("transport", "local")).lower()
    if transport not in SYNC_TRANSPORTS:
        errors.append(
            f"'sync.transport' must be one of {', '.join(SYNC_TRANSPORTS)}, got '{transport}'"
        )

    for path in settings.description_paths:
        if not Path(path).exists():
            errors.append(f"Description path does not exist: {path}")

    for ns, url in settings.peers.items():
        if not str(url).startswith(("http://", "https://")):
            errors.append(f"Peer '{ns}' endpoint must be an http(s) URL, got '{url}'")

    for name in COLLABORATORS:
        block = getattr(settings, name)
        fq_class = block.get("class", "")
        if fq_class and "." not in fq_class:
            errors.append(f"'{name}.class' must be a fully-qualified class path")

    return len(errors) == 0, errors


def load_collaborator(block: Dict[str, Any], default=None):
    """Instantiate the ``class`` of a collaborator config block.

    Returns *default* when the block names no class.
    """
    fq_class = block.get("class", "")
    if not fq_class:
        return default
    module_path, class_name = fq_class.rsplit(".", 1)
    mod = importlib.import_module(module_path)
    cls = getattr(mod, class_name)
    logger.info("Using %s", fq_class)
    return cls(block)

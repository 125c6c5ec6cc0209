"""
RoboFleet Config Registry.

Holds this coordinator's own robot configs and a cache of the configs
advertised by remote coordinators.  The cache is soft state: an
advertisement for a ``(name, namespace)`` key overwrites the previous entry
for that key, and unknown keys are appended.  There is no sequence number;
the last advertisement received wins.

All mutation happens under one lock; readers receive list copies so a sync
callback can never change a list a request is iterating over.
"""

from __future__ import annotations

import logging
import threading
from typing import Iterable, List, Optional

from robofleet.config.robot_config import RobotConfig, find_config

logger = logging.getLogger("RoboFleet.Registry")


class ConfigRegistry:
    """Local and remote robot configs of one coordinator."""

    def __init__(self, namespace: str) -> None:
        self.namespace = namespace.strip("/")
        self._local: List[RobotConfig] = []
        self._remote: List[RobotConfig] = []
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Local configs
    # ------------------------------------------------------------------

    def add_local(self, configs: Iterable[RobotConfig]) -> List[RobotConfig]:
        """Append configs whose name is not yet known locally. Returns those added."""
        added = []
        with self._lock:
            for config in configs:
                if find_config(self._local, config.name) is not None:
                    logger.warning("Ignoring duplicate of local robot '%s'.", config.name)
                    continue
                self._local.append(config)
                added.append(config)
        return added

    def local_configs(self) -> List[RobotConfig]:
        with self._lock:
            return list(self._local)

    # ------------------------------------------------------------------
    # Remote configs
    # ------------------------------------------------------------------

    def merge_remote(self, configs: Iterable[RobotConfig]) -> int:
        """Merge advertised configs into the remote cache.

        Entries with the same identity (name, namespace) are overwritten in
        place; new identities are appended.  Returns the number merged.
        """
        merged = 0
        with self._lock:
            for config in configs:
                for i, known in enumerate(self._remote):
                    if known == config:
                        logger.debug(
                            "Updating remote robot '%s' at '%s'.",
                            config.name,
                            config.owning_namespace,
                        )
                        self._remote[i] = config
                        break
                else:
                    logger.debug(
                        "Adding remote robot '%s' at '%s'.", config.name, config.owning_namespace
                    )
                    self._remote.append(config)
                merged += 1
        return merged

    def remote_configs(self) -> List[RobotConfig]:
        with self._lock:
            return list(self._remote)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get_config(self, name: str) -> Optional[RobotConfig]:
        """Find a config by name: local configs first, then remote ones."""
        with self._lock:
            return find_config(self._local, name) or find_config(self._remote, name)

    def summary(self) -> dict:
        with self._lock:
            return {
                "namespace": self.namespace,
                "local": [c.status() for c in self._local],
                "remote": [c.status() for c in self._remote],
            }

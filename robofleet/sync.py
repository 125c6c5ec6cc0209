"""ConfigSyncer — gossip robot configs between coordinators.

Two messages travel over the shared broadcast channel, JSON encoded::

    {"action": "REQUEST_CONFIG",   "sender_namespace": "hostA"}
    {"action": "ADVERTISE_CONFIG", "sender_namespace": "hostA",
     "sender_endpoint": "http://10.0.0.5:8000", "payload": "<Robots YAML>"}

A REQUEST_CONFIG makes every receiver advertise its local configs.  An
ADVERTISE_CONFIG is parsed, every config in it is stamped with the sender's
namespace and merged into the registry's remote cache.  Messages sent by
this coordinator itself are ignored.  A malformed message or robot entry is
logged and skipped.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, Optional

from robofleet.config.loader import dump_robot_configs, parse_robot_configs
from robofleet.config.robot_config import RobotConfig
from robofleet.registry import ConfigRegistry
from robofleet.transport import BroadcastChannel

logger = logging.getLogger("RoboFleet.Sync")


class SyncAction(str, Enum):
    REQUEST_CONFIG = "REQUEST_CONFIG"
    ADVERTISE_CONFIG = "ADVERTISE_CONFIG"


@dataclass
class SyncMessage:
    """Envelope exchanged on the sync channel."""

    action: SyncAction
    sender_namespace: str
    payload: str = ""
    sender_endpoint: str = ""
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {
            "action": self.action.value,
            "sender_namespace": self.sender_namespace,
            "sender_endpoint": self.sender_endpoint,
            "payload": self.payload,
            "timestamp": self.timestamp,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, d: dict) -> SyncMessage:
        return cls(
            action=SyncAction(d["action"]),
            sender_namespace=str(d["sender_namespace"]).strip("/"),
            payload=str(d.get("payload", "") or ""),
            sender_endpoint=str(d.get("sender_endpoint", "") or ""),
            timestamp=float(d.get("timestamp", 0.0)),
        )

    @classmethod
    def from_json(cls, data: str) -> SyncMessage:
        return cls.from_dict(json.loads(data))


class ConfigSyncer:
    """Keep the registry's remote cache in step with the other coordinators.

    Args:
        registry:  Registry whose local configs are advertised and whose
                   remote cache receives advertisements.
        channel:   Broadcast channel shared by the logical system.
        endpoint:  Base URL other coordinators should forward requests to.
    """

    def __init__(
        self,
        registry: ConfigRegistry,
        channel: BroadcastChannel,
        endpoint: str = "",
    ) -> None:
        self._registry = registry
        self._channel = channel
        self.namespace = registry.namespace
        self.endpoint = endpoint
        self._endpoints: Dict[str, str] = {}
        self._lock = threading.Lock()
        channel.subscribe(self.on_message)

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    def request_remote_configs(self) -> None:
        """Ask every other coordinator to advertise its local configs."""
        logger.debug("Requesting remote robot configs")
        self._publish(SyncMessage(SyncAction.REQUEST_CONFIG, self.namespace))

    def advertise(self, configs: Iterable[RobotConfig]) -> bool:
        """Advertise *configs*. Returns False when there was nothing to send."""
        payload = dump_robot_configs(configs)
        if not payload:
            return False
        self._publish(
            SyncMessage(
                SyncAction.ADVERTISE_CONFIG,
                self.namespace,
                payload=payload,
                sender_endpoint=self.endpoint,
            )
        )
        return True

    def advertise_local(self) -> bool:
        return self.advertise(self._registry.local_configs())

    def _publish(self, msg: SyncMessage) -> None:
        self._channel.publish(msg.to_json())

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    def on_message(self, data: str) -> None:
        """Channel callback."""
        try:
            msg = SyncMessage.from_json(data)
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning("Dropping malformed sync message: %s", exc)
            return
        self.handle(msg)

    def handle(self, msg: SyncMessage) -> None:
        if msg.sender_namespace == self.namespace:
            return

        if msg.action == SyncAction.REQUEST_CONFIG:
            logger.debug("Config request from '%s'", msg.sender_namespace)
            self.advertise_local()
            return

        if msg.action == SyncAction.ADVERTISE_CONFIG:
            if msg.sender_endpoint:
                with self._lock:
                    self._endpoints[msg.sender_namespace] = msg.sender_endpoint
            configs = parse_robot_configs(msg.payload, owning_namespace=msg.sender_namespace)
            merged = self._registry.merge_remote(configs)
            logger.debug("Merged %d robot config(s) from '%s'", merged, msg.sender_namespace)

    # ------------------------------------------------------------------
    # Peer endpoints
    # ------------------------------------------------------------------

    def endpoint_for(self, namespace: str) -> Optional[str]:
        with self._lock:
            return self._endpoints.get(namespace.strip("/"))

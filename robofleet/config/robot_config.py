"""RobotConfig — identity, ownership and features of one robot."""

from __future__ import annotations

import copy
import threading
from collections import deque
from typing import Optional

import yaml

from robofleet.config.feature import (
    FEATURE_CLASSES,
    Feature,
    FeatureGripper,
    FeatureKind,
    FeatureManipulation,
    FeatureNavigation,
    FeatureURDF,
)
from robofleet.errors import ConfigurationError

DEFAULT_RELIABILITY = 0.8
RELIABILITY_WINDOW = 100


class Reliability:
    """Sliding-window average of health ratings in ``[0, 1]``."""

    def __init__(self, initial: float = DEFAULT_RELIABILITY, window: int = RELIABILITY_WINDOW):
        self._ratings: deque[float] = deque([_clamp(initial)], maxlen=window)
        self._lock = threading.Lock()

    def adjust(self, rating: float) -> float:
        with self._lock:
            self._ratings.append(_clamp(rating))
            return self._value()

    def _value(self) -> float:
        return sum(self._ratings) / len(self._ratings)

    @property
    def value(self) -> float:
        with self._lock:
            return self._value()


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


class RobotConfig:
    """Configuration of one robot as known by a coordinator.

    Two configs are equal when both the robot name and the owning namespace
    match; everything else (features, reliability) may differ between two
    advertisements of the same robot.
    """

    def __init__(self, document: dict, owning_namespace: str = ""):
        if not isinstance(document, dict):
            raise ConfigurationError("Robot config must be a mapping")
        name = document.get("name")
        if not name or not isinstance(name, str):
            raise ConfigurationError("Robot config is missing a 'name'")

        self._raw: dict = copy.deepcopy(document)
        self.name: str = name
        self.owning_namespace: str = owning_namespace.strip("/")
        self._reliability = Reliability(float(document.get("reliability", DEFAULT_RELIABILITY)))

        self.features: dict[FeatureKind, Feature] = {
            kind: cls.from_dict(document.get(kind.value))
            for kind, cls in FEATURE_CLASSES.items()
        }
        if not self.gripper.gripper_name:
            self.gripper.gripper_name = self.name

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RobotConfig):
            return NotImplemented
        return self.key == other.key

    def __hash__(self) -> int:
        return hash(self.key)

    def __repr__(self) -> str:
        return (
            f"RobotConfig(name={self.name!r}, namespace={self.owning_namespace!r}, "
            f"reliability={self.reliability:.2f})"
        )

    @property
    def key(self) -> tuple[str, str]:
        return (self.name, self.owning_namespace)

    @property
    def abs_namespace(self) -> str:
        """Namespace-qualified prefix for the robot's topics and parameters."""
        if self.owning_namespace:
            return f"/{self.owning_namespace}/{self.name}"
        return f"/{self.name}"

    # ------------------------------------------------------------------
    # Features
    # ------------------------------------------------------------------

    @property
    def urdf(self) -> FeatureURDF:
        return self.features[FeatureKind.URDF]

    @property
    def manipulation(self) -> FeatureManipulation:
        return self.features[FeatureKind.MANIPULATION]

    @property
    def navigation(self) -> FeatureNavigation:
        return self.features[FeatureKind.NAVIGATION]

    @property
    def gripper(self) -> FeatureGripper:
        return self.features[FeatureKind.GRIPPER]

    def enabled_features(self) -> list[Feature]:
        return [f for f in self.features.values() if f.enabled]

    @property
    def active_planning_group(self) -> str:
        return self.manipulation.active_planning_group

    @active_planning_group.setter
    def active_planning_group(self, group: str) -> None:
        self.manipulation.active_planning_group = group

    # ------------------------------------------------------------------
    # Reliability
    # ------------------------------------------------------------------

    @property
    def reliability(self) -> float:
        return self._reliability.value

    def adjust_reliability(self, rating: float) -> float:
        return self._reliability.adjust(rating)

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> dict:
        """Document form for advertisement. Runtime fields are never included."""
        doc = copy.deepcopy(self._raw)
        doc["reliability"] = round(self.reliability, 4)
        return doc

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.to_dict(), sort_keys=False)

    def status(self) -> dict:
        """Summary including runtime feature state, for listings."""
        return {
            "name": self.name,
            "namespace": self.owning_namespace,
            "abs_namespace": self.abs_namespace,
            "reliability": round(self.reliability, 4),
            "features": {kind.value: f.state.value for kind, f in self.features.items()},
        }

    @classmethod
    def from_yaml(cls, text: str, owning_namespace: str = "") -> RobotConfig:
        return cls(yaml.safe_load(text), owning_namespace)


def find_config(configs: list[RobotConfig], name: str) -> Optional[RobotConfig]:
    """First config in *configs* named *name*."""
    return next((c for c in configs if c.name == name), None)

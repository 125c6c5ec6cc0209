"""Robot features — one capability axis of a robot.

A feature is backed by an optional driver process and a controller process.
Each kind declares how its two stages are launched and which readiness
signal (parameter, topic or service inside the robot namespace) marks a
stage as up, so :class:`robofleet.robot.Robot` can load every feature
through the same driver-before-controller loop.

Document form (one block per feature inside a ``Robots`` entry)::

    manipulation:
      package_name: arm_moveit_config
      executable: move_group.launch
      args: ""
      planning_groups: [main, wrist]
      driver:
        package_name: arm_driver
        executable: bringup.launch
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Optional

from robofleet.errors import ConfigurationError
from robofleet.launcher import LaunchRequest

DRIVER = "driver"
CONTROLLER = "controller"


class FeatureKind(str, Enum):
    URDF = "urdf"
    MANIPULATION = "manipulation"
    NAVIGATION = "navigation"
    GRIPPER = "gripper"


class FeatureState(str, Enum):
    DISABLED = "DISABLED"
    NOT_LOADED = "NOT_LOADED"
    DRIVER_LOADING = "DRIVER_LOADING"
    DRIVER_LOADED = "DRIVER_LOADED"
    CONTROLLER_LOADING = "CONTROLLER_LOADING"
    LOADED = "LOADED"
    FAILED = "FAILED"


@dataclass(frozen=True)
class ReadySignal:
    """A graph entity that must exist before a stage counts as loaded."""

    kind: str  # "param", "topic" or "service"
    name: str  # relative to the robot's absolute namespace

    def qualified(self, abs_namespace: str) -> str:
        return f"{abs_namespace.rstrip('/')}/{self.name}"


def _as_bool(value: Any, default: bool = True) -> bool:
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() not in ("false", "no", "off", "0")
    return bool(value)


@dataclass
class Feature:
    """Base feature. Subclasses set ``kind`` and the readiness signals."""

    kind: ClassVar[FeatureKind]
    driver_ready: ClassVar[Optional[ReadySignal]] = None
    controller_ready: ClassVar[Optional[ReadySignal]] = None

    enabled: bool = False
    driver_enabled: bool = False
    package_name: str = ""
    executable: str = ""
    args: str = ""
    driver_package_name: str = ""
    driver_executable: str = ""
    driver_args: str = ""

    # Runtime state, never serialized
    resource_id: Optional[int] = field(default=None, compare=False)
    driver_resource_id: Optional[int] = field(default=None, compare=False)
    loaded: bool = field(default=False, compare=False)
    driver_loaded: bool = field(default=False, compare=False)
    loading: Optional[str] = field(default=None, compare=False)
    failed: bool = field(default=False, compare=False)
    _lock: threading.Lock = field(
        default_factory=threading.Lock, init=False, repr=False, compare=False
    )

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------

    @classmethod
    def from_dict(cls, block: Optional[dict]) -> Feature:
        """Build a feature from its document block. ``None`` means disabled."""
        if block is None:
            return cls()
        if not isinstance(block, dict):
            raise ConfigurationError(f"'{cls.kind.value}' block must be a mapping")

        driver = block.get("driver")
        if driver is not None and not isinstance(driver, dict):
            raise ConfigurationError(f"'{cls.kind.value}.driver' block must be a mapping")
        driver = driver or {}

        feature = cls(
            enabled=_as_bool(block.get("enabled"), True),
            driver_enabled=bool(driver) and _as_bool(driver.get("enabled"), True),
            package_name=str(block.get("package_name") or ""),
            executable=str(block.get("executable") or ""),
            args=str(block.get("args") or ""),
            driver_package_name=str(driver.get("package_name") or ""),
            driver_executable=str(driver.get("executable") or ""),
            driver_args=str(driver.get("args") or ""),
        )
        feature._parse_extra(block)
        return feature

    def _parse_extra(self, block: dict) -> None:
        """Hook for kind-specific keys."""

    # ------------------------------------------------------------------
    # Launch requests
    # ------------------------------------------------------------------

    def driver_request(self, abs_namespace: str) -> LaunchRequest:
        return LaunchRequest(
            package=self.driver_package_name,
            executable=self.driver_executable,
            args=self.driver_args,
            namespace=abs_namespace,
        )

    def controller_request(self, abs_namespace: str) -> LaunchRequest:
        return LaunchRequest(
            package=self.package_name,
            executable=self.executable,
            args=self.args,
            namespace=abs_namespace,
        )

    def request_for(self, stage: str, abs_namespace: str) -> LaunchRequest:
        if stage == DRIVER:
            return self.driver_request(abs_namespace)
        return self.controller_request(abs_namespace)

    def ready_signal(self, stage: str) -> Optional[ReadySignal]:
        return self.driver_ready if stage == DRIVER else self.controller_ready

    # ------------------------------------------------------------------
    # Slot bookkeeping
    # ------------------------------------------------------------------

    def stages(self) -> list[str]:
        """Stages to load, in dependency order."""
        if not self.enabled:
            return []
        if self.driver_enabled:
            return [DRIVER, CONTROLLER]
        return [CONTROLLER]

    def slot_resource(self, stage: str) -> Optional[int]:
        return self.driver_resource_id if stage == DRIVER else self.resource_id

    def is_slot_loaded(self, stage: str) -> bool:
        return self.driver_loaded if stage == DRIVER else self.loaded

    def set_slot(self, stage: str, resource_id: Optional[int], loaded: bool) -> None:
        with self._lock:
            if stage == DRIVER:
                self.driver_resource_id = resource_id
                self.driver_loaded = loaded
            else:
                self.resource_id = resource_id
                self.loaded = loaded

    def compare_and_unload(self, stage: str, resource_id: int) -> bool:
        """Clear the loaded flag of *stage* only if it is backed by *resource_id*.

        Returns True when this call performed the transition.
        """
        with self._lock:
            if stage == DRIVER:
                if self.driver_loaded and self.driver_resource_id == resource_id:
                    self.driver_loaded = False
                    return True
            elif self.loaded and self.resource_id == resource_id:
                self.loaded = False
                return True
            return False

    def stage_of(self, resource_id: int) -> Optional[str]:
        if resource_id is None:
            return None
        if self.resource_id == resource_id:
            return CONTROLLER
        if self.driver_resource_id == resource_id:
            return DRIVER
        return None

    @property
    def state(self) -> FeatureState:
        if not self.enabled:
            return FeatureState.DISABLED
        if self.loaded:
            return FeatureState.LOADED
        if self.failed:
            return FeatureState.FAILED
        if self.loading == CONTROLLER:
            return FeatureState.CONTROLLER_LOADING
        if self.driver_loaded:
            return FeatureState.DRIVER_LOADED
        if self.loading == DRIVER:
            return FeatureState.DRIVER_LOADING
        return FeatureState.NOT_LOADED


URDF_LOADER_PACKAGE = "robofleet"
URDF_LOADER_EXECUTABLE = "urdf_loader"


@dataclass
class FeatureURDF(Feature):
    kind: ClassVar[FeatureKind] = FeatureKind.URDF
    controller_ready: ClassVar[Optional[ReadySignal]] = ReadySignal("param", "robot_description")

    def controller_request(self, abs_namespace: str) -> LaunchRequest:
        # The description file is pushed to the parameter store by the loader
        path = self.executable
        if self.package_name:
            path = f"{self.package_name}/{self.executable}"
        return LaunchRequest(
            package=URDF_LOADER_PACKAGE,
            executable=URDF_LOADER_EXECUTABLE,
            args=path,
            namespace=abs_namespace,
        )

    def stages(self) -> list[str]:
        return [CONTROLLER] if self.enabled else []


@dataclass
class FeatureManipulation(Feature):
    kind: ClassVar[FeatureKind] = FeatureKind.MANIPULATION
    driver_ready: ClassVar[Optional[ReadySignal]] = ReadySignal("topic", "joint_states")
    controller_ready: ClassVar[Optional[ReadySignal]] = ReadySignal(
        "param", "robot_description_semantic"
    )

    planning_groups: list[str] = field(default_factory=list)
    active_planning_group: str = ""

    def _parse_extra(self, block: dict) -> None:
        groups = block.get("planning_groups") or []
        if isinstance(groups, str):
            groups = [groups]
        if not isinstance(groups, list):
            raise ConfigurationError("'manipulation.planning_groups' must be a list")
        self.planning_groups = [str(g) for g in groups]
        self.active_planning_group = str(block.get("active_planning_group", "") or "")
        if not self.active_planning_group and self.planning_groups:
            self.active_planning_group = self.planning_groups[0]


@dataclass
class FeatureNavigation(Feature):
    kind: ClassVar[FeatureKind] = FeatureKind.NAVIGATION
    driver_ready: ClassVar[Optional[ReadySignal]] = ReadySignal("topic", "odom")
    controller_ready: ClassVar[Optional[ReadySignal]] = ReadySignal("topic", "cmd_vel")

    global_planner: str = ""
    local_planner: str = ""

    def _parse_extra(self, block: dict) -> None:
        self.global_planner = str(block.get("global_planner", "") or "")
        self.local_planner = str(block.get("local_planner", "") or "")


@dataclass
class FeatureGripper(Feature):
    kind: ClassVar[FeatureKind] = FeatureKind.GRIPPER
    controller_ready: ClassVar[Optional[ReadySignal]] = ReadySignal("service", "gripper_control")

    gripper_name: str = ""

    def _parse_extra(self, block: dict) -> None:
        self.gripper_name = str(block.get("gripper_name", "") or "")


FEATURE_CLASSES = {
    FeatureKind.URDF: FeatureURDF,
    FeatureKind.MANIPULATION: FeatureManipulation,
    FeatureKind.NAVIGATION: FeatureNavigation,
    FeatureKind.GRIPPER: FeatureGripper,
}

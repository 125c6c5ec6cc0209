"""
RoboFleet Robot — runtime state and lifecycle of one loaded robot.

Loading walks the enabled features in a fixed order (urdf, manipulation,
navigation, gripper).  For every feature the driver stage, when configured,
is launched and observed ready before the controller stage is launched::

    NOT_LOADED -> DRIVER_LOADING -> DRIVER_LOADED -> CONTROLLER_LOADING -> LOADED

Readiness is a bounded wait on a graph entity (parameter, topic or service
inside the robot namespace) that a FAILED status on the stage's resource
interrupts.  Unloading releases controllers before drivers, one slot at a
time, and keeps going when a single release fails.

A Robot whose config is owned by another coordinator is a proxy: it holds
the config for routing but never launches anything.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import yaml

from robofleet.actuators import GripperClient, NavigationActuator, NavigationState
from robofleet.config.feature import CONTROLLER, DRIVER, Feature, FeatureKind, ReadySignal
from robofleet.config.robot_config import RobotConfig
from robofleet.errors import (
    ConfigurationError,
    NotFound,
    PlanningFailed,
    ResourceRequestFailed,
    RoboFleetError,
)
from robofleet.graph import RobotGraph
from robofleet.planning import MotionPlanner, PlanningOptions, PlanningSession, PlanningTarget, Pose
from robofleet.resources import ResourceTracker

logger = logging.getLogger("RoboFleet.Robot")


@dataclass
class LifecycleOptions:
    """Timing knobs of the load sequence."""

    poll_interval_s: float = 1.0
    ready_timeout_s: Optional[float] = 30.0
    settle_time_s: float = 0.0
    nav_server_timeout_s: float = 5.0
    planning: PlanningOptions = field(default_factory=PlanningOptions)


class Robot:
    """One loaded robot.

    Args:
        config:                 The robot's config (owned by this Robot while loaded).
        tracker:                Resource tracker used for every launch.
        graph:                  Middleware graph used for readiness checks.
        planner:                Motion planner collaborator.
        navigation:             Navigation actuator collaborator.
        gripper:                Gripper endpoint collaborator.
        coordinator_namespace:  Namespace of the coordinator creating the robot.
        options:                Lifecycle timing options.
        autoload:               Run the load sequence from the constructor when
                                this coordinator owns the robot.
    """

    def __init__(
        self,
        config: RobotConfig,
        tracker: ResourceTracker,
        graph: RobotGraph,
        planner: MotionPlanner,
        navigation: NavigationActuator,
        gripper: GripperClient,
        coordinator_namespace: str,
        options: Optional[LifecycleOptions] = None,
        autoload: bool = True,
    ):
        self.config = config
        self._tracker = tracker
        self._graph = graph
        self._planner = planner
        self._navigation = navigation
        self._gripper = gripper
        self._coordinator_namespace = coordinator_namespace.strip("/")
        self.options = options or LifecycleOptions()

        self.planning_groups: Dict[str, PlanningSession] = {}
        self.last_plan_valid = False
        self._last_plan: Any = None
        self._lock = threading.RLock()

        if autoload and self.is_local:
            self.load()

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def is_local(self) -> bool:
        return self.config.owning_namespace == self._coordinator_namespace

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def load(self) -> None:
        """Load every enabled feature, drivers before controllers.

        Raises:
            ConfigurationError: No feature is enabled.
            ResourceRequestFailed: A launch failed, a readiness wait timed
                out, or a FAILED status interrupted it.  Whatever was
                already loaded is torn down before the error propagates.
        """
        if not self.config.enabled_features():
            raise ConfigurationError(
                f"Robot '{self.name}' is missing features. Please specify urdf, manipulation, "
                "navigation or gripper sections in the configuration file."
            )

        try:
            for feature in self.config.features.values():
                for stage in feature.stages():
                    self._load_stage(feature, stage)
        except RoboFleetError:
            logger.error("Loading robot '%s' failed, tearing down", self.name)
            self.unload()
            raise
        logger.info("Robot '%s' loaded", self.name)

    def _load_stage(self, feature: Feature, stage: str) -> None:
        if feature.is_slot_loaded(stage):
            return

        label = _stage_label(feature, stage)
        feature.failed = False
        feature.loading = stage
        try:
            request = feature.request_for(stage, self.config.abs_namespace)
            resource_id = self._tracker.allocate(request)
            logger.debug("%s resource id: %d", label, resource_id)
            feature.set_slot(stage, resource_id, False)
            self._bring_up(feature, stage, resource_id)
        except RoboFleetError as exc:
            feature.failed = True
            self._discard_slot(feature, stage)
            raise ResourceRequestFailed(f"Failed to load {label} of robot '{self.name}'") from exc
        finally:
            feature.loading = None
        logger.debug("Feature '%s' loaded.", label)

    def _bring_up(self, feature: Feature, stage: str, resource_id: int) -> None:
        """Wait for readiness of a launched stage and mark it loaded."""
        signal = feature.ready_signal(stage)
        if signal is not None:
            self._wait_ready(signal, resource_id)
        if self.options.settle_time_s > 0:
            time.sleep(self.options.settle_time_s)
        if feature.kind == FeatureKind.MANIPULATION and stage == CONTROLLER:
            self._open_planning_groups()
        feature.set_slot(stage, resource_id, True)

    def _wait_ready(self, signal: ReadySignal, resource_id: int) -> None:
        name = signal.qualified(self.config.abs_namespace)
        timeout = self.options.ready_timeout_s
        deadline = None if timeout is None else time.monotonic() + timeout

        while not self._graph.exists(signal.kind, name):
            if not self._tracker.is_tracked(resource_id):
                raise ResourceRequestFailed(
                    f"Resource {resource_id} was released while waiting for {signal.kind} '{name}'"
                )
            if self._tracker.has_failed(resource_id):
                raise ResourceRequestFailed(
                    "Loading interrupted. A FAILED status was received from the launcher."
                )
            wait = self.options.poll_interval_s
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise ResourceRequestFailed(
                        f"Timed out after {timeout:.1f}s waiting for {signal.kind} '{name}'"
                    )
                wait = min(wait, remaining)
            logger.debug("Waiting for %s ...", name)
            self._tracker.wait_failed(resource_id, wait)
        logger.debug("%s '%s' was found.", signal.kind.capitalize(), name)

    def _open_planning_groups(self) -> None:
        manipulation = self.config.manipulation
        for group in manipulation.planning_groups:
            if group in self.planning_groups:
                continue
            logger.debug("Adding planning group '%s'.", group)
            try:
                session = self._planner.open_session(
                    self.config.abs_namespace, group, self.options.planning
                )
            except Exception as exc:
                logger.error(
                    "Failed to open planning group '%s' of robot '%s': %s", group, self.name, exc
                )
                continue
            self.planning_groups[group] = session

        if self.planning_groups and manipulation.active_planning_group not in self.planning_groups:
            manipulation.active_planning_group = next(iter(self.planning_groups))

    def _close_planning_groups(self) -> None:
        for group, session in list(self.planning_groups.items()):
            try:
                self._planner.close_session(session)
            except Exception as exc:
                logger.warning("Closing planning group '%s' failed: %s", group, exc)
        self.planning_groups.clear()
        self.last_plan_valid = False
        self._last_plan = None

    def _discard_slot(self, feature: Feature, stage: str) -> None:
        """Release a launched-but-not-ready stage and clear its slot."""
        resource_id = feature.slot_resource(stage)
        feature.set_slot(stage, None, False)
        if resource_id is None or not self._tracker.is_tracked(resource_id):
            return
        try:
            self._tracker.release(resource_id)
        except RoboFleetError as exc:
            logger.warning("Releasing resource %d failed: %s", resource_id, exc)

    # ------------------------------------------------------------------
    # Unloading
    # ------------------------------------------------------------------

    def unload(self) -> List[str]:
        """Release every loaded slot, controllers before drivers.

        Best effort: a failed release is logged and recorded, and the
        remaining slots are still released.  Returns the failure messages.
        """
        if not self.is_local:
            return []

        failures: List[str] = []
        for feature in self.config.features.values():
            for stage in (CONTROLLER, DRIVER):
                resource_id = feature.slot_resource(stage)
                if resource_id is None or not feature.compare_and_unload(stage, resource_id):
                    continue
                label = _stage_label(feature, stage)
                logger.warning("Unloading %s.", label)
                if feature.kind == FeatureKind.MANIPULATION and stage == CONTROLLER:
                    self._close_planning_groups()
                try:
                    self._tracker.release(resource_id)
                except RoboFleetError as exc:
                    logger.error("Failed to unload %s of '%s': %s", label, self.name, exc)
                    failures.append(f"{label}: {exc}")
                feature.set_slot(stage, None, False)

        if self._graph.delete_params(self.config.abs_namespace):
            logger.debug("Parameter(s) removed successfully.")
        else:
            logger.debug("No parameters removed under %s.", self.config.abs_namespace)
        return failures

    # ------------------------------------------------------------------
    # Resource failures
    # ------------------------------------------------------------------

    def has_resource(self, resource_id: int) -> bool:
        return self._slot_of(resource_id) is not None

    def _slot_of(self, resource_id: int) -> Optional[Tuple[Feature, str]]:
        for feature in self.config.features.values():
            stage = feature.stage_of(resource_id)
            if stage is not None:
                return feature, stage
        return None

    def handle_resource_failure(self, resource_id: int) -> bool:
        """Reload the single stage backed by a FAILED resource.

        Only acts when the stage is currently marked loaded; the loaded flag
        is cleared with a compare-and-swap so concurrent notifications for
        the same resource trigger exactly one reload.  Returns True when the
        stage was brought back up.
        """
        slot = self._slot_of(resource_id)
        if slot is None:
            return False
        feature, stage = slot
        if not feature.compare_and_unload(stage, resource_id):
            return False

        label = _stage_label(feature, stage)
        logger.warning("Reloading %s of robot '%s' after failure", label, self.name)
        # Operations wait for the planning groups to be reopened
        with self._lock:
            if feature.kind == FeatureKind.MANIPULATION and stage == CONTROLLER:
                self._close_planning_groups()

            feature.loading = stage
            try:
                new_id = self._tracker.reload(resource_id)
                feature.set_slot(stage, new_id, False)
                self._bring_up(feature, stage, new_id)
            except RoboFleetError as exc:
                logger.error("Reloading %s of robot '%s' failed: %s", label, self.name, exc)
                feature.failed = True
                self._discard_slot(feature, stage)
                return False
            finally:
                feature.loading = None
            feature.failed = False
        return True

    # ------------------------------------------------------------------
    # Manipulation
    # ------------------------------------------------------------------

    def plan_manipulation(self, planning_group: str, target: PlanningTarget) -> str:
        """Plan for *planning_group* (or the active group when empty).

        Returns the planning group that was used.
        """
        with self._lock:
            if not self.planning_groups:
                self.last_plan_valid = False
                raise PlanningFailed(f"Robot '{self.name}' has no planning groups.")

            group = planning_group or self.config.active_planning_group
            session = self.planning_groups.get(group)
            if session is None:
                raise NotFound(f"Planning group '{group}' was not found.")
            self.config.active_planning_group = group

            try:
                plan = self._planner.plan(session, target)
            except Exception as exc:
                self.last_plan_valid = False
                self._last_plan = None
                raise PlanningFailed(f"Planning with group '{group}' failed.") from exc

            self._last_plan = plan
            self.last_plan_valid = plan is not None
            logger.debug("Plan %s", "FOUND" if self.last_plan_valid else "FAILED")
            if not self.last_plan_valid:
                raise PlanningFailed(
                    f"Planning with group '{group}' to {target.describe()} failed."
                )
            return group

    def execute_plan(self) -> None:
        """Execute the last valid plan of the active planning group."""
        with self._lock:
            group = self.config.active_planning_group
            if not self.last_plan_valid:
                raise PlanningFailed(f"Unable to execute group '{group}': no valid plan.")
            session = self.planning_groups.get(group)
            if session is None:
                raise NotFound(f"Planning group '{group}' was not found.")

            try:
                success = bool(self._planner.execute(session, self._last_plan))
            except Exception as exc:
                raise PlanningFailed(f"Execution with group '{group}' failed.") from exc
            logger.debug("Execution %s", "SUCCESSFUL" if success else "FAILED")
            if not success:
                raise PlanningFailed(f"Execution with group '{group}' failed.")

    def get_manipulation_target(self) -> Pose:
        with self._lock:
            group = self.config.active_planning_group
            session = self.planning_groups.get(group)
            if session is None:
                raise NotFound(f"Planning group '{group}' was not found.")
            try:
                return self._planner.current_pose(session)
            except Exception as exc:
                raise ResourceRequestFailed(
                    f"Could not read the current pose of group '{group}'"
                ) from exc

    # ------------------------------------------------------------------
    # Navigation / gripper
    # ------------------------------------------------------------------

    def navigate(self, reference_frame: str, pose: Pose) -> None:
        if not self.config.navigation.enabled:
            raise ConfigurationError(f"Robot '{self.name}' has no navigation feature.")
        goal = Pose(**{**pose.to_dict(), "frame_id": reference_frame})
        try:
            state = self._navigation.navigate_to(
                self.config.abs_namespace,
                reference_frame,
                goal,
                server_timeout=self.options.nav_server_timeout_s,
            )
        except Exception as exc:
            raise ResourceRequestFailed(f"Navigation of '{self.name}' failed") from exc
        if NavigationState(state) != NavigationState.SUCCEEDED:
            raise ResourceRequestFailed(f"Robot '{self.name}' failed to reach the goal")
        logger.info("'%s' finished navigating.", self.name)

    def control_gripper(self, position: float) -> None:
        if not self.config.gripper.enabled:
            raise ConfigurationError(f"Robot '{self.name}' has no gripper feature.")
        gripper_name = self.config.gripper.gripper_name
        try:
            ok = self._gripper.control(self.config.abs_namespace, gripper_name, float(position))
        except Exception as exc:
            raise ResourceRequestFailed(f"Gripper control of '{self.name}' failed") from exc
        if not ok:
            raise ResourceRequestFailed(f"Gripper '{gripper_name}' rejected the command")
        logger.debug("Call to gripper control was successful.")

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_viz_info(self) -> str:
        """YAML document describing what a visualizer should subscribe to."""
        ns = self.config.abs_namespace
        rviz: Dict[str, Any] = {}
        if self.config.urdf.enabled:
            rviz["urdf"] = {"robot_description": f"{ns}/robot_description"}
        if self.config.manipulation.enabled:
            rviz["manipulation"] = {
                "move_group_ns": ns,
                "active_planning_group": self.config.active_planning_group,
            }
        if self.config.navigation.enabled:
            rviz["navigation"] = {
                "move_base_ns": ns,
                "global_planner": self.config.navigation.global_planner,
                "local_planner": self.config.navigation.local_planner,
            }
        if self.config.gripper.enabled:
            rviz["gripper"] = {"gripper_ns": ns}
        return yaml.safe_dump({"RViz": rviz}, sort_keys=False)

    def status(self) -> dict:
        info = self.config.status()
        info.update(
            {
                "local": self.is_local,
                "planning_groups": sorted(self.planning_groups),
                "last_plan_valid": self.last_plan_valid,
            }
        )
        return info


def _stage_label(feature: Feature, stage: str) -> str:
    name = feature.kind.value.capitalize()
    if feature.kind == FeatureKind.URDF:
        name = "URDF"
    return f"{name} {'driver' if stage == DRIVER else 'controller'}"

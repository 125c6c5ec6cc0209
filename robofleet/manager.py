"""
RoboFleet Robot Manager — registry owner and request router.

One manager runs per coordinator namespace.  It:

1. Discovers the local robot description files, fills the registry and
   advertises them; asks the other coordinators for their configs.
2. Loads robots: local candidates first, then remote candidates (the load
   is forwarded to the owner and a local proxy is kept).
3. Routes every operation to the loaded robot: executed here when this
   coordinator owns the robot, otherwise forwarded to the owner and the
   response relayed as-is.
4. Reacts to FAILED resources: the owning config's reliability is
   downgraded and re-advertised, and the failed stage is reloaded.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, Iterable, List, Optional

from robofleet.actuators import (
    GripperClient,
    NavigationActuator,
    UnavailableGripper,
    UnavailableNavigation,
)
from robofleet.client import RemoteManagerClient
from robofleet.config.loader import find_description_files, read_description_file
from robofleet.config.robot_config import RobotConfig
from robofleet.errors import NotFound, ResourceRequestFailed, RoboFleetError
from robofleet.graph import InMemoryGraph, RobotGraph
from robofleet.launcher import ProcessLauncher
from robofleet.planning import MotionPlanner, PlanningTarget, Pose, UnavailablePlanner
from robofleet.registry import ConfigRegistry
from robofleet.resources import ResourceTracker
from robofleet.robot import LifecycleOptions, Robot
from robofleet.sync import ConfigSyncer
from robofleet.transport import BroadcastChannel, LocalBus

logger = logging.getLogger("RoboFleet.Manager")


def find_robot(robot_name: str, configs: Iterable[RobotConfig]) -> Optional[RobotConfig]:
    """Pick the most reliable config named *robot_name* (any config if empty).

    Ties keep the order of *configs*.
    """
    if robot_name:
        candidates = [c for c in configs if c.name == robot_name]
    else:
        candidates = list(configs)
    if not candidates:
        return None
    # sorted() is stable, also with reverse=True
    candidates = sorted(candidates, key=lambda c: c.reliability, reverse=True)
    return candidates[0]


class RobotManager:
    """Coordinator for the robots of one namespace.

    Args:
        namespace:   This coordinator's namespace.
        launcher:    External process launcher.
        graph:       Middleware graph used for readiness checks.
        planner:     Motion planner (optional).
        navigation:  Navigation actuator (optional).
        gripper:     Gripper endpoint (optional).
        channel:     Sync broadcast channel.  Defaults to a private LocalBus.
        client:      Client used to forward requests to other coordinators.
        options:     Lifecycle timing options for loaded robots.
        max_reloads: Reload bound of the resource tracker (None = unbounded).
        endpoint:    Base URL advertised to other coordinators.
        peers:       Static namespace -> base URL map; overrides advertised
                     endpoints.
        forward_timeout_s: Timeout of forwarded requests.
    """

    def __init__(
        self,
        namespace: str,
        launcher: ProcessLauncher,
        graph: Optional[RobotGraph] = None,
        planner: Optional[MotionPlanner] = None,
        navigation: Optional[NavigationActuator] = None,
        gripper: Optional[GripperClient] = None,
        channel: Optional[BroadcastChannel] = None,
        client: Optional[RemoteManagerClient] = None,
        options: Optional[LifecycleOptions] = None,
        max_reloads: Optional[int] = 3,
        endpoint: str = "",
        peers: Optional[Dict[str, str]] = None,
        forward_timeout_s: float = 10.0,
        catalog_path: Optional[str] = None,
    ):
        self.namespace = namespace.strip("/")
        self.graph = graph or InMemoryGraph()
        self.planner = planner or UnavailablePlanner()
        self.navigation = navigation or UnavailableNavigation()
        self.gripper = gripper or UnavailableGripper()
        self.options = options or LifecycleOptions()

        self.registry = ConfigRegistry(self.namespace)
        self.tracker = ResourceTracker(launcher, max_reloads=max_reloads, catalog_path=catalog_path)
        self.tracker.add_failure_listener(self._on_resource_failed)

        self.channel = channel or LocalBus().channel()
        self.syncer = ConfigSyncer(self.registry, self.channel, endpoint=endpoint)
        self._peers = {k.strip("/"): v for k, v in (peers or {}).items()}
        self.client = client or RemoteManagerClient(self.endpoint_for, timeout=forward_timeout_s)

        self._robots: Dict[str, Robot] = {}
        # Robots whose load sequence is still running
        self._loading: Dict[str, Robot] = {}
        self._lock = threading.RLock()
        # Loads and unloads are serialized; routing only needs ``_lock``
        self._load_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Startup / shutdown
    # ------------------------------------------------------------------

    def start(self, description_paths: Iterable[str] = (), filename: Optional[str] = None) -> None:
        """Recover orphaned resources, connect the sync channel, ask peers for
        configs and read local descriptions."""
        self.tracker.recover_catalog()
        self.channel.start()
        self.syncer.request_remote_configs()
        for path in description_paths:
            self.discover(path, filename)
        logger.info("Robot manager '%s' is ready.", self.namespace or "/")

    def discover(self, root: str, filename: Optional[str] = None) -> List[RobotConfig]:
        """Read every description file under *root* and advertise the new robots."""
        kwargs = {"filename": filename} if filename else {}
        added: List[RobotConfig] = []
        for path in find_description_files(root, **kwargs):
            added.extend(self.read_robot_description(str(path)))
        return added

    def read_robot_description(self, path: str) -> List[RobotConfig]:
        known = self.registry.local_configs()
        configs = read_description_file(path, self.namespace, existing=known)
        added = self.registry.add_local(configs[len(known):])
        for config in added:
            logger.info("Added robot '%s'.", config.name)
        if added:
            self.syncer.advertise(self.registry.local_configs())
        return added

    def shutdown(self) -> None:
        """Unload every robot (most recent first) and disconnect."""
        with self._lock:
            names = list(reversed(list(self._robots)))
        for name in names:
            try:
                self.unload(name)
            except RoboFleetError as exc:
                logger.error("Unloading '%s' on shutdown failed: %s", name, exc)
        self.tracker.erase_catalog()
        self.channel.stop()
        self.client.close()

    def endpoint_for(self, namespace: str) -> Optional[str]:
        namespace = namespace.strip("/")
        return self._peers.get(namespace) or self.syncer.endpoint_for(namespace)

    # ------------------------------------------------------------------
    # Load / unload
    # ------------------------------------------------------------------

    def load(self, robot_name: str) -> Dict[str, Any]:
        """Load *robot_name* (or the most reliable robot when empty)."""
        logger.info("Starting to load robot '%s'...", robot_name)
        with self._load_lock:
            config = find_robot(robot_name, self.registry.local_configs())
            if config is not None:
                return self._load_local(config)

            config = find_robot(robot_name, self.registry.remote_configs())
            if config is not None:
                return self._load_remote(config)

        raise NotFound(f"Robot manager did not find a suitable robot '{robot_name}'.")

    def _load_local(self, config: RobotConfig) -> Dict[str, Any]:
        existing = self._get_loaded(config.name)
        if existing is not None:
            logger.info("Robot '%s' is already loaded.", config.name)
            return self._handle(existing)
        robot = self._make_robot(config, autoload=False)
        with self._lock:
            self._loading[config.name] = robot
        try:
            robot.load()
        except ResourceRequestFailed:
            config.adjust_reliability(0.0)
            self.syncer.advertise([config])
            raise
        else:
            with self._lock:
                self._robots[config.name] = robot
        finally:
            with self._lock:
                self._loading.pop(config.name, None)
        logger.debug("Robot '%s' loaded.", config.name)
        return self._handle(robot)

    def _load_remote(self, config: RobotConfig) -> Dict[str, Any]:
        existing = self._get_loaded(config.name)
        if existing is not None:
            return self._handle(existing)
        logger.info(
            "RobotManager is forwarding load request for '%s' to '%s'",
            config.name,
            config.owning_namespace,
        )
        response = self.client.call(
            config.owning_namespace, "load", {"robot_name": config.name}
        )
        robot = self._make_robot(config)
        with self._lock:
            self._robots[config.name] = robot
        return response

    def _make_robot(self, config: RobotConfig, autoload: bool = True) -> Robot:
        return Robot(
            config,
            self.tracker,
            self.graph,
            self.planner,
            self.navigation,
            self.gripper,
            coordinator_namespace=self.namespace,
            options=self.options,
            autoload=autoload,
        )

    def unload(self, robot_name: str) -> Dict[str, Any]:
        logger.debug("Robot '%s' unloading...", robot_name)
        with self._load_lock:
            robot = self._get_loaded(robot_name)
            if robot is None:
                raise NotFound(f"Unable to unload the robot '{robot_name}': robot is not loaded.")

            if not robot.is_local:
                response = self.client.call(
                    robot.config.owning_namespace, "unload", {"robot_name": robot_name}
                )
                self._drop(robot_name)
                return response

            self._drop(robot_name)
            failures = robot.unload()
        logger.debug("Robot '%s' unloaded.", robot_name)
        return {"robot_name": robot_name, "unloaded": True, "failures": failures}

    def _drop(self, robot_name: str) -> None:
        with self._lock:
            self._robots.pop(robot_name, None)

    def _get_loaded(self, robot_name: str) -> Optional[Robot]:
        with self._lock:
            return self._robots.get(robot_name)

    def find_loaded_robot(self, robot_name: str) -> Robot:
        robot = self._get_loaded(robot_name)
        if robot is None:
            raise NotFound(f"Robot '{robot_name}' is not loaded.")
        return robot

    def loaded_robots(self) -> List[Robot]:
        with self._lock:
            return list(self._robots.values())

    def _handle(self, robot: Robot) -> Dict[str, Any]:
        return {
            "robot_name": robot.name,
            "namespace": robot.config.owning_namespace,
            "abs_namespace": robot.config.abs_namespace,
            "local": robot.is_local,
        }

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    def _route(self, operation: str, request: Dict[str, Any], local_fn) -> Dict[str, Any]:
        robot = self.find_loaded_robot(request["robot_name"])
        if robot.is_local:
            return local_fn(robot)
        return self.client.call(robot.config.owning_namespace, operation, request)

    def plan_manipulation(
        self,
        robot_name: str,
        planning_group: str = "",
        target_pose: Optional[Dict[str, Any]] = None,
        named_target: str = "",
        use_named_target: bool = False,
    ) -> Dict[str, Any]:
        request = {
            "robot_name": robot_name,
            "planning_group": planning_group,
            "target_pose": target_pose,
            "named_target": named_target,
            "use_named_target": use_named_target,
        }

        def _local(robot: Robot) -> Dict[str, Any]:
            if use_named_target:
                target = PlanningTarget(named_target=named_target)
            else:
                target = PlanningTarget(pose=Pose.from_dict(target_pose))
            logger.debug("Creating a manipulation path for robot '%s' to %s", robot_name, target.describe())
            group = robot.plan_manipulation(planning_group, target)
            return {"robot_name": robot_name, "planning_group": group, "plan_valid": True}

        return self._route("plan", request, _local)

    def execute_plan(self, robot_name: str) -> Dict[str, Any]:
        def _local(robot: Robot) -> Dict[str, Any]:
            logger.debug("Executing a manipulation path for robot '%s' ...", robot_name)
            robot.execute_plan()
            return {"robot_name": robot_name, "executed": True}

        return self._route("execute", {"robot_name": robot_name}, _local)

    def get_manipulation_target(self, robot_name: str) -> Dict[str, Any]:
        def _local(robot: Robot) -> Dict[str, Any]:
            return {"robot_name": robot_name, "pose": robot.get_manipulation_target().to_dict()}

        return self._route("manipulation_target", {"robot_name": robot_name}, _local)

    def navigation_goal(
        self, robot_name: str, reference_frame: str, target_pose: Dict[str, Any]
    ) -> Dict[str, Any]:
        request = {
            "robot_name": robot_name,
            "reference_frame": reference_frame,
            "target_pose": target_pose,
        }

        def _local(robot: Robot) -> Dict[str, Any]:
            robot.navigate(reference_frame, Pose.from_dict(target_pose))
            return {"robot_name": robot_name, "reached": True}

        return self._route("navigation_goal", request, _local)

    def gripper_control(self, robot_name: str, position: float) -> Dict[str, Any]:
        def _local(robot: Robot) -> Dict[str, Any]:
            robot.control_gripper(position)
            return {"robot_name": robot_name, "position": position}

        return self._route(
            "gripper_control", {"robot_name": robot_name, "position": position}, _local
        )

    def get_viz_info(self, robot_name: str) -> Dict[str, Any]:
        def _local(robot: Robot) -> Dict[str, Any]:
            return {"robot_name": robot_name, "info": robot.get_viz_info()}

        return self._route("viz_info", {"robot_name": robot_name}, _local)

    def get_robot_config(self, robot_name: str) -> Dict[str, Any]:
        """Config document and absolute namespace of *robot_name* (local first)."""
        config = self.registry.get_config(robot_name)
        if config is None:
            logger.info("Could not find robot '%s'", robot_name)
            raise NotFound(f"Could not find robot '{robot_name}'")
        return {
            "robot_config": config.to_yaml(),
            "robot_absolute_namespace": config.abs_namespace,
        }

    # ------------------------------------------------------------------
    # Resource failures
    # ------------------------------------------------------------------

    def _on_resource_failed(self, resource_id: int) -> None:
        with self._lock:
            candidates = list(self._robots.values()) + list(self._loading.values())
        robot = next((r for r in candidates if r.has_resource(resource_id)), None)
        if robot is None:
            return
        config = robot.config
        config.adjust_reliability(0.0)
        logger.warning(
            "Resource %d of robot '%s' failed, reliability now %.2f",
            resource_id,
            config.name,
            config.reliability,
        )
        self.syncer.advertise([config])
        robot.handle_resource_failure(resource_id)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def status(self) -> Dict[str, Any]:
        summary = self.registry.summary()
        summary["loaded"] = [r.status() for r in self.loaded_robots()]
        summary["resources"] = [e.to_dict() for e in self.tracker.entries()]
        return summary

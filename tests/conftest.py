"""Shared fakes for the external collaborators of the coordinator."""

from __future__ import annotations

import copy
from typing import Any, Dict, List, Optional

import pytest

from robofleet.actuators import GripperClient, NavigationActuator, NavigationState
from robofleet.config.robot_config import RobotConfig
from robofleet.graph import InMemoryGraph
from robofleet.launcher import LaunchRequest, ProcessLauncher, ResourceStatus
from robofleet.planning import MotionPlanner, PlanningSession, Pose
from robofleet.resources import ResourceTracker
from robofleet.robot import LifecycleOptions, Robot


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeLauncher(ProcessLauncher):
    """Records launches/stops; executables listed in ``fail_launch`` or
    ``fail_stop`` raise."""

    def __init__(self, events: Optional[list] = None):
        super().__init__()
        self.events = events if events is not None else []
        self.launched: List[tuple] = []
        self.stopped: List[int] = []
        self.fail_launch: set = set()
        self.fail_stop: set = set()
        self.requests: Dict[int, LaunchRequest] = {}
        self.recovered: List[tuple] = []
        self._next = 0

    def launch(self, request: LaunchRequest) -> int:
        if request.executable in self.fail_launch:
            raise RuntimeError(f"cannot start {request.executable}")
        self._next += 1
        self.launched.append((self._next, request))
        self.requests[self._next] = request
        self.events.append(("launch", request.executable))
        return self._next

    def stop(self, resource_id: int) -> None:
        self.stopped.append(resource_id)
        request = self.requests.get(resource_id)
        self.events.append(("stop", request.executable if request else resource_id))
        if request is not None and request.executable in self.fail_stop:
            raise RuntimeError(f"cannot stop {request.executable}")

    def resource_info(self, resource_id: int) -> dict:
        return {"pid": 1000 + resource_id}

    def stop_recovered(self, resource_id: int, info: dict) -> bool:
        self.recovered.append((resource_id, info))
        return True

    def fail(self, resource_id: int) -> None:
        self.report_status(resource_id, ResourceStatus.FAILED)

    def executables(self) -> List[str]:
        return [r.executable for _, r in self.launched]

    def resource_for(self, executable: str) -> int:
        """Most recent resource id launched for *executable*."""
        return [rid for rid, r in self.launched if r.executable == executable][-1]


class ReadyGraph(InMemoryGraph):
    """Graph where every readiness signal is present unless blocked."""

    def __init__(self, events: Optional[list] = None):
        super().__init__()
        self.events = events if events is not None else []
        self.blocked: set = set()

    def exists(self, kind: str, name: str) -> bool:
        if any(name.endswith("/" + b) for b in self.blocked):
            return super().exists(kind, name)
        self.events.append(("ready", name))
        return True


class FakePlanner(MotionPlanner):
    def __init__(self):
        self.opened: List[str] = []
        self.closed: List[str] = []
        self.fail_groups: set = set()
        self.plan_result: Any = "plan"
        self.execute_result = True
        self.plans: List[tuple] = []
        self.executed: List[Any] = []
        self.pose = Pose(x=0.4, y=0.1, z=0.9)

    def open_session(self, namespace, group, options):
        if group in self.fail_groups:
            raise RuntimeError(f"move group '{group}' unavailable")
        self.opened.append(group)
        return PlanningSession(group=group, namespace=namespace, options=options)

    def plan(self, session, target):
        self.plans.append((session.group, target))
        return self.plan_result

    def execute(self, session, plan):
        self.executed.append(plan)
        return self.execute_result

    def current_pose(self, session):
        return self.pose

    def close_session(self, session):
        self.closed.append(session.group)


class FakeNavigation(NavigationActuator):
    def __init__(self, state=NavigationState.SUCCEEDED):
        self.state = state
        self.goals: List[tuple] = []

    def navigate_to(self, namespace, reference_frame, pose, server_timeout=5.0):
        self.goals.append((namespace, reference_frame, pose, server_timeout))
        return self.state


class FakeGripper(GripperClient):
    def __init__(self, ok: bool = True):
        self.ok = ok
        self.commands: List[tuple] = []

    def control(self, namespace, gripper_name, position):
        self.commands.append((namespace, gripper_name, position))
        return self.ok


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------

ARM_DOC = {
    "name": "arm1",
    "urdf": {"package_name": "arm_description", "executable": "arm1.urdf"},
    "manipulation": {
        "package_name": "arm_moveit_config",
        "executable": "move_group.launch",
        "planning_groups": ["main", "wrist"],
        "driver": {"package_name": "arm_driver", "executable": "bringup.launch"},
    },
    "gripper": {"package_name": "gripper_ctrl", "executable": "gripper.launch"},
}

ROVER_DOC = {
    "name": "rover1",
    "navigation": {
        "package_name": "rover_nav",
        "executable": "move_base.launch",
        "global_planner": "navfn/NavfnROS",
        "local_planner": "dwa_local_planner/DWAPlannerROS",
        "driver": {"package_name": "rover_base", "executable": "base.launch"},
    },
}


def make_doc(base: dict, **overrides) -> dict:
    doc = copy.deepcopy(base)
    doc.update(overrides)
    return doc


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def events():
    return []


@pytest.fixture
def launcher(events):
    return FakeLauncher(events)


@pytest.fixture
def graph(events):
    return ReadyGraph(events)


@pytest.fixture
def planner():
    return FakePlanner()


@pytest.fixture
def navigation():
    return FakeNavigation()


@pytest.fixture
def gripper():
    return FakeGripper()


@pytest.fixture
def tracker(launcher):
    return ResourceTracker(launcher, max_reloads=3)


@pytest.fixture
def fast_options():
    return LifecycleOptions(poll_interval_s=0.01, ready_timeout_s=0.2)


@pytest.fixture
def make_robot(tracker, graph, planner, navigation, gripper, fast_options):
    def _make(doc=None, owning_namespace="", coordinator_namespace=""):
        config = RobotConfig(doc if doc is not None else ARM_DOC, owning_namespace)
        return Robot(
            config,
            tracker,
            graph,
            planner,
            navigation,
            gripper,
            coordinator_namespace=coordinator_namespace,
            options=fast_options,
        )

    return _make

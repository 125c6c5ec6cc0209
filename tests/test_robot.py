"""Tests for robofleet.robot -- feature lifecycle of one robot."""

import threading
import time

import pytest
import yaml

from conftest import ARM_DOC, ROVER_DOC
from robofleet.actuators import NavigationState
from robofleet.config.feature import CONTROLLER, DRIVER, FeatureState
from robofleet.errors import ConfigurationError, NotFound, PlanningFailed, ResourceRequestFailed
from robofleet.planning import PlanningTarget, Pose

_SINGLE_GROUP_ARM = {
    "name": "arm1",
    "manipulation": {
        "package_name": "arm_moveit_config",
        "executable": "move_group.launch",
        "planning_groups": ["main"],
    },
}


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


class TestLoad:
    def test_load_order(self, make_robot, launcher, planner):
        robot = make_robot()
        assert launcher.executables() == [
            "urdf_loader",
            "bringup.launch",
            "move_group.launch",
            "gripper.launch",
        ]
        assert planner.opened == ["main", "wrist"]
        assert all(f.state == FeatureState.LOADED for f in robot.config.enabled_features())

    def test_controller_launched_after_driver_ready(self, make_robot, events):
        make_robot()
        driver = events.index(("launch", "bringup.launch"))
        ready = events.index(("ready", "/arm1/joint_states"))
        controller = events.index(("launch", "move_group.launch"))
        assert driver < ready < controller

    def test_requests_carry_robot_namespace(self, make_robot, launcher):
        make_robot(ROVER_DOC, owning_namespace="hostA", coordinator_namespace="hostA")
        assert {r.namespace for _, r in launcher.launched} == {"/hostA/rover1"}

    def test_no_features_rejected(self, make_robot, launcher):
        with pytest.raises(ConfigurationError):
            make_robot({"name": "empty"})
        assert launcher.launched == []

    def test_launch_failure_tears_down(self, make_robot, launcher):
        launcher.fail_launch.add("move_group.launch")
        with pytest.raises(ResourceRequestFailed) as excinfo:
            make_robot()
        assert "Manipulation controller" in str(excinfo.value)
        assert any("cannot start move_group.launch" in c for c in excinfo.value.causes())
        # urdf + manipulation driver were released again
        assert sorted(launcher.stopped) == [1, 2]

    def test_readiness_timeout(self, make_robot, launcher, graph):
        graph.blocked.add("robot_description_semantic")
        with pytest.raises(ResourceRequestFailed) as excinfo:
            make_robot()
        assert any("Timed out" in c for c in excinfo.value.causes())
        assert sorted(launcher.stopped) == [rid for rid, _ in launcher.launched]
        assert "gripper.launch" not in launcher.executables()

    def test_failed_status_interrupts_wait(self, make_robot, launcher, graph, fast_options):
        fast_options.ready_timeout_s = 10.0
        graph.blocked.add("robot_description_semantic")
        original = launcher.launch

        def launch(request):
            rid = original(request)
            if request.executable == "move_group.launch":
                threading.Timer(0.05, launcher.fail, args=(rid,)).start()
            return rid

        launcher.launch = launch
        started = time.monotonic()
        with pytest.raises(ResourceRequestFailed) as excinfo:
            make_robot()
        assert time.monotonic() - started < 5.0
        assert any("A FAILED status was received" in c for c in excinfo.value.causes())

    def test_planning_group_failure_does_not_roll_back(self, make_robot, planner):
        planner.fail_groups.add("main")
        robot = make_robot()
        assert list(robot.planning_groups) == ["wrist"]
        assert robot.config.active_planning_group == "wrist"

    def test_remote_config_is_proxy(self, make_robot, launcher):
        robot = make_robot(owning_namespace="hostB", coordinator_namespace="hostA")
        assert robot.is_local is False
        assert launcher.launched == []
        assert robot.unload() == []


# ---------------------------------------------------------------------------
# Unloading
# ---------------------------------------------------------------------------


class TestUnload:
    def test_controller_before_driver(self, make_robot, events):
        robot = make_robot()
        events.clear()
        assert robot.unload() == []
        stops = [name for kind, name in events if kind == "stop"]
        assert stops == ["urdf_loader", "move_group.launch", "bringup.launch", "gripper.launch"]

    def test_best_effort(self, make_robot, launcher, planner):
        robot = make_robot()
        launcher.fail_stop.add("move_group.launch")
        failures = robot.unload()
        assert len(failures) == 1
        assert "Manipulation controller" in failures[0]
        assert sorted(launcher.stopped) == [1, 2, 3, 4]
        assert planner.closed == ["main", "wrist"]
        assert robot.planning_groups == {}
        assert all(f.state == FeatureState.NOT_LOADED for f in robot.config.enabled_features())

    def test_parameters_removed(self, make_robot, graph):
        robot = make_robot()
        graph.set_param("/arm1/robot_description", "<robot/>")
        graph.set_param("/rover9/robot_description", "<robot/>")
        robot.unload()
        assert graph.get_param("/arm1/robot_description") is None
        assert graph.get_param("/rover9/robot_description") == "<robot/>"

    def test_has_resource(self, make_robot, launcher):
        robot = make_robot()
        assert all(robot.has_resource(rid) for rid, _ in launcher.launched)
        assert not robot.has_resource(99)
        robot.unload()
        assert not robot.has_resource(1)


# ---------------------------------------------------------------------------
# Failure handling
# ---------------------------------------------------------------------------


class TestResourceFailure:
    def test_exactly_one_reload(self, make_robot, launcher):
        robot = make_robot(ROVER_DOC)
        nav = robot.config.navigation
        driver_id = nav.driver_resource_id
        failed = nav.resource_id

        assert robot.handle_resource_failure(failed) is True
        assert robot.handle_resource_failure(failed) is False
        assert launcher.executables().count("move_base.launch") == 2
        assert nav.resource_id != failed
        assert nav.loaded is True
        # driver untouched
        assert nav.driver_resource_id == driver_id
        assert nav.driver_loaded is True

    def test_other_features_untouched(self, make_robot, launcher):
        robot = make_robot()
        gripper_id = robot.config.gripper.resource_id
        robot.handle_resource_failure(robot.config.urdf.resource_id)
        assert robot.config.gripper.resource_id == gripper_id
        assert robot.config.manipulation.state == FeatureState.LOADED

    def test_manipulation_reload_reopens_groups(self, make_robot, planner):
        robot = make_robot()
        robot.handle_resource_failure(robot.config.manipulation.resource_id)
        assert planner.closed == ["main", "wrist"]
        assert planner.opened == ["main", "wrist", "main", "wrist"]

    def test_manipulation_target_waits_for_reload(self, make_robot, planner):
        robot = make_robot(_SINGLE_GROUP_ARM)
        reopening = threading.Event()
        release = threading.Event()
        open_session = planner.open_session

        def slow_open(namespace, group, options):
            reopening.set()
            release.wait(1.0)
            return open_session(namespace, group, options)

        planner.open_session = slow_open
        reload = threading.Thread(
            target=robot.handle_resource_failure, args=(robot.config.manipulation.resource_id,)
        )
        reload.start()
        assert reopening.wait(1.0)

        result = {}
        reader = threading.Thread(target=lambda: result.update(pose=robot.get_manipulation_target()))
        reader.start()
        reader.join(0.05)
        assert reader.is_alive()

        release.set()
        reload.join(1.0)
        reader.join(1.0)
        assert result["pose"] == planner.pose

    def test_unknown_resource(self, make_robot):
        robot = make_robot()
        assert robot.handle_resource_failure(99) is False

    def test_failed_reload_marks_feature(self, make_robot, launcher):
        robot = make_robot(ROVER_DOC)
        launcher.fail_launch.add("move_base.launch")
        assert robot.handle_resource_failure(robot.config.navigation.resource_id) is False
        nav = robot.config.navigation
        assert nav.state == FeatureState.FAILED
        assert nav.slot_resource(CONTROLLER) is None
        assert nav.is_slot_loaded(DRIVER) is True


# ---------------------------------------------------------------------------
# Manipulation
# ---------------------------------------------------------------------------


class TestManipulation:
    def test_plan_then_execute(self, make_robot, launcher, planner):
        robot = make_robot(_SINGLE_GROUP_ARM)
        assert launcher.executables() == ["move_group.launch"]
        assert planner.opened == ["main"]

        with pytest.raises(PlanningFailed, match="no valid plan"):
            robot.execute_plan()

        group = robot.plan_manipulation("main", PlanningTarget(named_target="home"))
        assert group == "main"
        assert robot.last_plan_valid is True
        robot.execute_plan()
        assert planner.executed == ["plan"]

        # the plan stays valid until the next planning attempt
        robot.execute_plan()
        assert planner.executed == ["plan", "plan"]

    def test_no_viable_plan(self, make_robot, planner):
        robot = make_robot(_SINGLE_GROUP_ARM)
        planner.plan_result = None
        with pytest.raises(PlanningFailed):
            robot.plan_manipulation("", PlanningTarget(pose=Pose(x=1.0)))
        assert robot.last_plan_valid is False
        with pytest.raises(PlanningFailed, match="no valid plan"):
            robot.execute_plan()

    def test_default_group_is_active_group(self, make_robot, planner):
        robot = make_robot()
        robot.plan_manipulation("wrist", PlanningTarget(named_target="home"))
        robot.plan_manipulation("", PlanningTarget(named_target="home"))
        assert [g for g, _ in planner.plans] == ["wrist", "wrist"]

    def test_unknown_group(self, make_robot):
        robot = make_robot()
        with pytest.raises(NotFound):
            robot.plan_manipulation("legs", PlanningTarget(named_target="home"))

    def test_execution_failure(self, make_robot, planner):
        robot = make_robot(_SINGLE_GROUP_ARM)
        planner.execute_result = False
        robot.plan_manipulation("main", PlanningTarget(named_target="home"))
        with pytest.raises(PlanningFailed):
            robot.execute_plan()

    def test_manipulation_target(self, make_robot, planner):
        robot = make_robot(_SINGLE_GROUP_ARM)
        assert robot.get_manipulation_target() == planner.pose


# ---------------------------------------------------------------------------
# Navigation / gripper / viz
# ---------------------------------------------------------------------------


def test_navigate(make_robot, navigation):
    robot = make_robot(ROVER_DOC)
    robot.navigate("map", Pose(x=2.0, y=1.0))
    namespace, frame, pose, timeout = navigation.goals[0]
    assert namespace == "/rover1"
    assert frame == "map"
    assert pose.frame_id == "map"
    assert pose.x == 2.0
    assert timeout == 5.0


def test_navigate_failure(make_robot, navigation):
    robot = make_robot(ROVER_DOC)
    navigation.state = NavigationState.FAILED
    with pytest.raises(ResourceRequestFailed):
        robot.navigate("map", Pose())


def test_navigate_without_navigation_feature(make_robot):
    robot = make_robot()
    with pytest.raises(ConfigurationError):
        robot.navigate("map", Pose())


def test_gripper(make_robot, gripper):
    robot = make_robot()
    robot.control_gripper(0.5)
    assert gripper.commands == [("/arm1", "arm1", 0.5)]
    gripper.ok = False
    with pytest.raises(ResourceRequestFailed):
        robot.control_gripper(0.0)


def test_viz_info(make_robot):
    robot = make_robot()
    info = yaml.safe_load(robot.get_viz_info())["RViz"]
    assert info["urdf"]["robot_description"] == "/arm1/robot_description"
    assert info["manipulation"]["active_planning_group"] == "main"
    assert "navigation" not in info

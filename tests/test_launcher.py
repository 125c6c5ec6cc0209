"""Tests for robofleet.launcher -- command resolution and recovery of the
subprocess launcher."""

import os
import sys
from unittest.mock import MagicMock, patch

import pytest

from robofleet.config.feature import FeatureURDF
from robofleet.launcher import LaunchRequest, SubprocessLauncher


def test_urdf_loader_runs_from_installed_package(tmp_path):
    launcher = SubprocessLauncher(str(tmp_path))
    feature = FeatureURDF.from_dict({"package_name": "arm_description", "executable": "arm1.urdf"})
    cmd = launcher._resolve(feature.controller_request("/hostA/arm1"))
    assert cmd == [sys.executable, "-m", "robofleet.urdf_loader", "arm_description/arm1.urdf"]


def test_package_executable_resolved_on_search_path(tmp_path):
    (tmp_path / "arm_driver").mkdir()
    exe = tmp_path / "arm_driver" / "bringup.launch"
    exe.write_text("#!/bin/sh\n")
    launcher = SubprocessLauncher(str(tmp_path))
    cmd = launcher._resolve(LaunchRequest("arm_driver", "bringup.launch", args="--rate 50"))
    assert cmd == [str(exe), "--rate", "50"]


def test_missing_executable(tmp_path):
    launcher = SubprocessLauncher(str(tmp_path))
    with pytest.raises(FileNotFoundError):
        launcher._resolve(LaunchRequest("arm_driver", "bringup.launch"))


def test_launch_exports_environment(tmp_path):
    launcher = SubprocessLauncher(str(tmp_path), env={"ROBOFLEET_CONFIG": "/etc/fleet.yaml"})
    proc = MagicMock(pid=4242, args=["x"])
    proc.wait.return_value = 0
    with patch("robofleet.launcher.subprocess.Popen", return_value=proc) as popen:
        rid = launcher.launch(LaunchRequest("robofleet", "urdf_loader", "a.urdf", "/hostA/arm1"))
    env = popen.call_args.kwargs["env"]
    assert env["ROBOFLEET_NAMESPACE"] == "/hostA/arm1"
    assert env["ROBOFLEET_SEARCH_PATH"] == os.path.abspath(str(tmp_path))
    assert env["ROBOFLEET_CONFIG"] == "/etc/fleet.yaml"
    assert rid == 1


class TestRecovery:
    def test_resource_info(self):
        launcher = SubprocessLauncher()
        launcher._procs[3] = MagicMock(pid=77, args=["/robots/arm_driver/bringup.launch"])
        assert launcher.resource_info(3) == {"pid": 77, "cmd": ["/robots/arm_driver/bringup.launch"]}
        assert launcher.resource_info(9) == {}

    def test_stop_recovered(self):
        info = {"pid": 77, "cmd": ["bringup.launch"]}
        with patch("robofleet.launcher._same_process", return_value=True), patch(
            "robofleet.launcher.os.kill"
        ) as kill:
            assert SubprocessLauncher().stop_recovered(3, info) is True
        kill.assert_called_once()
        assert kill.call_args.args[0] == 77

    def test_reused_pid_left_alone(self):
        info = {"pid": 77, "cmd": ["bringup.launch"]}
        with patch("robofleet.launcher._same_process", return_value=False), patch(
            "robofleet.launcher.os.kill"
        ) as kill:
            assert SubprocessLauncher().stop_recovered(3, info) is False
        kill.assert_not_called()

    def test_process_gone(self):
        with patch("robofleet.launcher._same_process", return_value=True), patch(
            "robofleet.launcher.os.kill", side_effect=ProcessLookupError
        ):
            assert SubprocessLauncher().stop_recovered(3, {"pid": 77, "cmd": []}) is False

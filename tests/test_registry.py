"""Tests for robofleet.registry -- local configs and the remote config cache."""

import pytest

from conftest import ARM_DOC, ROVER_DOC, make_doc
from robofleet.config.robot_config import RobotConfig
from robofleet.registry import ConfigRegistry


@pytest.fixture
def registry():
    return ConfigRegistry("/hostA/")


def test_namespace_normalised(registry):
    assert registry.namespace == "hostA"


def test_add_local_ignores_duplicate_names(registry):
    added = registry.add_local([RobotConfig(ARM_DOC, "hostA"), RobotConfig(ROVER_DOC, "hostA")])
    assert len(added) == 2
    again = registry.add_local([RobotConfig(make_doc(ARM_DOC, reliability=0.1), "hostA")])
    assert again == []
    assert registry.local_configs()[0].reliability == pytest.approx(0.8)


def test_readers_get_copies(registry):
    registry.add_local([RobotConfig(ARM_DOC, "hostA")])
    snapshot = registry.local_configs()
    snapshot.clear()
    assert len(registry.local_configs()) == 1


# ── Merge ─────────────────────────────────────────────────────────────────────


class TestMergeRemote:
    def test_merge_is_idempotent(self, registry):
        registry.merge_remote([RobotConfig(ARM_DOC, "hostB")])
        registry.merge_remote([RobotConfig(make_doc(ARM_DOC, reliability=0.3), "hostB")])
        remote = registry.remote_configs()
        assert len(remote) == 1
        assert remote[0].reliability == pytest.approx(0.3)

    def test_same_name_other_namespace_kept_separately(self, registry):
        registry.merge_remote([RobotConfig(ARM_DOC, "hostB")])
        registry.merge_remote([RobotConfig(ARM_DOC, "hostC")])
        assert [c.owning_namespace for c in registry.remote_configs()] == ["hostB", "hostC"]

    def test_overwrite_keeps_position(self, registry):
        registry.merge_remote([RobotConfig(ARM_DOC, "hostB"), RobotConfig(ROVER_DOC, "hostB")])
        registry.merge_remote([RobotConfig(make_doc(ARM_DOC, reliability=0.1), "hostB")])
        assert [c.name for c in registry.remote_configs()] == ["arm1", "rover1"]

    def test_returns_count(self, registry):
        assert registry.merge_remote([RobotConfig(ARM_DOC, "hostB")]) == 1


# ── Lookup ────────────────────────────────────────────────────────────────────


def test_get_config_prefers_local(registry):
    registry.merge_remote([RobotConfig(ARM_DOC, "hostB")])
    registry.add_local([RobotConfig(ARM_DOC, "hostA")])
    assert registry.get_config("arm1").owning_namespace == "hostA"


def test_get_config_falls_back_to_remote(registry):
    registry.merge_remote([RobotConfig(ROVER_DOC, "hostB")])
    assert registry.get_config("rover1").owning_namespace == "hostB"
    assert registry.get_config("ghost") is None


def test_summary(registry):
    registry.add_local([RobotConfig(ARM_DOC, "hostA")])
    registry.merge_remote([RobotConfig(ROVER_DOC, "hostB")])
    summary = registry.summary()
    assert summary["namespace"] == "hostA"
    assert summary["local"][0]["name"] == "arm1"
    assert summary["remote"][0]["abs_namespace"] == "/hostB/rover1"

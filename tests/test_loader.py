"""Tests for robofleet.config.loader -- description documents and discovery."""

import yaml

from conftest import ARM_DOC, ROVER_DOC
from robofleet.config.loader import (
    dump_robot_configs,
    find_description_files,
    parse_robot_configs,
    read_description_file,
    validate_description,
)
from robofleet.config.robot_config import RobotConfig


def _write(path, robots):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump({"Robots": robots}))
    return path


# ── Parsing ───────────────────────────────────────────────────────────────────


def test_parse_dict_document():
    configs = parse_robot_configs({"Robots": [ARM_DOC, ROVER_DOC]}, "hostA")
    assert [c.name for c in configs] == ["arm1", "rover1"]
    assert all(c.owning_namespace == "hostA" for c in configs)


def test_parse_yaml_string():
    configs = parse_robot_configs(yaml.safe_dump({"Robots": [ROVER_DOC]}))
    assert configs[0].navigation.enabled


def test_malformed_entries_are_skipped():
    doc = {"Robots": [ARM_DOC, "not-a-mapping", {"urdf": {}}, ROVER_DOC]}
    configs = parse_robot_configs(doc)
    assert [c.name for c in configs] == ["arm1", "rover1"]


def test_bad_feature_block_skips_only_that_robot():
    broken = {"name": "broken", "gripper": "yes"}
    configs = parse_robot_configs({"Robots": [broken, ROVER_DOC]})
    assert [c.name for c in configs] == ["rover1"]


def test_duplicate_name_first_wins():
    second = dict(ARM_DOC, reliability=0.1)
    configs = parse_robot_configs({"Robots": [ARM_DOC, second]})
    assert len(configs) == 1
    assert configs[0].reliability == 0.8


def test_existing_configs_suppress_duplicates():
    existing = [RobotConfig(ARM_DOC, "hostA")]
    configs = parse_robot_configs({"Robots": [ARM_DOC, ROVER_DOC]}, "hostA", existing)
    assert [c.name for c in configs] == ["arm1", "rover1"]
    assert configs[0] is existing[0]


def test_missing_robots_key_returns_existing():
    assert parse_robot_configs({"robots": []}) == []
    assert parse_robot_configs("::: not yaml [") == []
    assert parse_robot_configs({"Robots": "arm1"}) == []


# ── Dumping ───────────────────────────────────────────────────────────────────


def test_dump_empty_is_empty_string():
    assert dump_robot_configs([]) == ""


def test_dump_then_parse_keeps_identity_and_reliability():
    config = RobotConfig(ARM_DOC, "hostA")
    config.adjust_reliability(0.0)
    parsed = parse_robot_configs(dump_robot_configs([config]), "hostA")
    assert parsed == [config]
    assert parsed[0].reliability == round(config.reliability, 4)


# ── Discovery ─────────────────────────────────────────────────────────────────


def test_find_description_files_recursive(tmp_path):
    _write(tmp_path / "b" / "robot_description.yaml", [ROVER_DOC])
    _write(tmp_path / "a" / "deep" / "robot_description.yaml", [ARM_DOC])
    (tmp_path / "a" / "other.yaml").write_text("Robots: []")
    found = list(find_description_files(tmp_path))
    assert [p.parent.name for p in found] == ["deep", "b"]


def test_find_description_files_single_file(tmp_path):
    path = _write(tmp_path / "robot_description.yaml", [ARM_DOC])
    assert list(find_description_files(path)) == [path]


def test_find_description_files_missing_dir(tmp_path):
    assert list(find_description_files(tmp_path / "nope")) == []


def test_read_description_file(tmp_path):
    path = _write(tmp_path / "robot_description.yaml", [ARM_DOC])
    configs = read_description_file(path, "hostA")
    assert configs[0].abs_namespace == "/hostA/arm1"


def test_read_unreadable_file_keeps_existing(tmp_path):
    existing = [RobotConfig(ROVER_DOC)]
    assert read_description_file(tmp_path / "missing.yaml", "", existing) == existing


# ── Validation ────────────────────────────────────────────────────────────────


def test_validate_ok():
    ok, errors = validate_description({"Robots": [ARM_DOC, ROVER_DOC]})
    assert ok is True
    assert errors == []


def test_validate_reports_every_problem():
    ok, errors = validate_description(
        {"Robots": [ARM_DOC, ARM_DOC, {"name": "empty"}, 5, {"urdf": {}}]}
    )
    assert ok is False
    assert any("duplicate robot name 'arm1'" in e for e in errors)
    assert any("no enabled features" in e for e in errors)
    assert any("Robots[3]" in e for e in errors)
    assert any("Robots[4]" in e for e in errors)


def test_validate_syntax_error():
    ok, errors = validate_description("Robots: [")
    assert ok is False
    assert "YAML syntax error" in errors[0]

"""Robot description documents — discovery, parsing and serialization.

A description document is YAML with a top-level ``Robots`` sequence::

    Robots:
      - name: arm1
        urdf:
          package_name: arm_description
          executable: arm1.urdf
        manipulation:
          package_name: arm_moveit_config
          executable: move_group.launch
          planning_groups: [main]

Parsing never aborts on a single bad entry: malformed entries are logged and
skipped so one broken robot description cannot keep the rest of the fleet
from loading.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Tuple

import yaml

from robofleet.config.robot_config import RobotConfig
from robofleet.errors import DuplicateConfig, RoboFleetError

logger = logging.getLogger("RoboFleet.Config")

ROBOTS_KEY = "Robots"
DESCRIPTION_FILENAME = "robot_description.yaml"


def parse_robot_configs(
    document,
    owning_namespace: str = "",
    existing: Optional[List[RobotConfig]] = None,
) -> List[RobotConfig]:
    """Parse the ``Robots`` sequence of *document* into RobotConfigs.

    Args:
        document:          Parsed YAML (a dict) or a YAML string.
        owning_namespace:  Namespace stamped on every parsed config.
        existing:          Configs already known; entries whose name is
                           already present are ignored as duplicates.

    Returns:
        ``existing`` (copied) extended with the newly parsed unique configs.
    """
    configs = list(existing or [])

    if isinstance(document, str):
        try:
            document = yaml.safe_load(document)
        except yaml.YAMLError as exc:
            logger.warning("Unable to parse robot description document: %s", exc)
            return configs

    if not isinstance(document, dict):
        logger.warning("Unable to parse '%s' key from config.", ROBOTS_KEY)
        return configs

    robots = document.get(ROBOTS_KEY)
    if not isinstance(robots, list):
        logger.warning("The given config does not contain a sequence of robots.")
        return configs

    logger.debug("Parsing %d robots.", len(robots))

    for entry in robots:
        if not isinstance(entry, dict):
            logger.error(
                "Unable to parse robot config: entries have to be key-value mappings, got %r",
                type(entry).__name__,
            )
            continue
        try:
            config = RobotConfig(entry, owning_namespace)
            _check_unique(config, configs)
        except DuplicateConfig as exc:
            logger.warning("Ignoring duplicate of robot '%s': %s", entry.get("name"), exc)
            continue
        except RoboFleetError as exc:
            logger.warning("Failed to parse robot config %r: %s", entry.get("name", "?"), exc)
            continue
        except (TypeError, ValueError) as exc:
            logger.warning("Failed to parse robot config %r: %s", entry.get("name", "?"), exc)
            continue
        configs.append(config)
        logger.debug("Added robot '%s'.", config.name)

    return configs


def _check_unique(config: RobotConfig, configs: Iterable[RobotConfig]) -> None:
    for other in configs:
        if other.name == config.name:
            raise DuplicateConfig(
                f"robot '{config.name}' already defined in namespace "
                f"'{other.owning_namespace or '/'}'"
            )


def dump_robot_configs(configs: Iterable[RobotConfig]) -> str:
    """Serialize *configs* into a description document (YAML string).

    Returns an empty string when there is nothing to serialize.
    """
    robots = [c.to_dict() for c in configs]
    if not robots:
        return ""
    return yaml.safe_dump({ROBOTS_KEY: robots}, sort_keys=False)


def find_description_files(
    root: str | os.PathLike, filename: str = DESCRIPTION_FILENAME
) -> Iterator[Path]:
    """Yield every *filename* under *root*, recursively, in sorted order."""
    root = Path(root)
    if root.is_file():
        if root.name == filename:
            yield root
        return
    if not root.is_dir():
        logger.warning("Description path does not exist: %s", root)
        return
    for path in sorted(root.rglob(filename)):
        if path.is_file():
            yield path


def read_description_file(
    path: str | os.PathLike,
    owning_namespace: str = "",
    existing: Optional[List[RobotConfig]] = None,
) -> List[RobotConfig]:
    """Parse one description file, returning ``existing`` plus its robots."""
    try:
        text = Path(path).read_text()
    except OSError as exc:
        logger.error("Cannot read robot description %s: %s", path, exc)
        return list(existing or [])
    logger.info("Reading robot description %s", path)
    return parse_robot_configs(text, owning_namespace, existing)


def validate_description(document) -> Tuple[bool, List[str]]:
    """Validate a description document without building configs.

    Returns ``(is_valid, errors)`` in the same shape as the settings
    validator so both can be reported uniformly by the CLI.
    """
    if isinstance(document, str):
        try:
            document = yaml.safe_load(document)
        except yaml.YAMLError as exc:
            return False, [f"YAML syntax error: {exc}"]

    if not isinstance(document, dict):
        return False, ["Document must be a mapping (check YAML syntax)"]

    robots = document.get(ROBOTS_KEY)
    if not isinstance(robots, list):
        return False, [f"Missing or non-sequence top-level key: '{ROBOTS_KEY}'"]

    errors: List[str] = []
    seen: set = set()
    for i, entry in enumerate(robots):
        label = f"{ROBOTS_KEY}[{i}]"
        if not isinstance(entry, dict):
            errors.append(f"{label}: entry must be a mapping")
            continue
        try:
            config = RobotConfig(entry)
        except RoboFleetError as exc:
            errors.append(f"{label}: {exc}")
            continue
        if config.name in seen:
            errors.append(f"{label}: duplicate robot name '{config.name}'")
        seen.add(config.name)
        if not config.enabled_features():
            errors.append(f"{label}: robot '{config.name}' has no enabled features")

    return len(errors) == 0, errors

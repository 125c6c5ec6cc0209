"""robofleet.config — robot features, robot configs and description documents."""

from robofleet.config.feature import (
    Feature,
    FeatureGripper,
    FeatureKind,
    FeatureManipulation,
    FeatureNavigation,
    FeatureState,
    FeatureURDF,
)
from robofleet.config.loader import (
    dump_robot_configs,
    find_description_files,
    parse_robot_configs,
    read_description_file,
)
from robofleet.config.robot_config import RobotConfig

__all__ = [
    "Feature",
    "FeatureGripper",
    "FeatureKind",
    "FeatureManipulation",
    "FeatureNavigation",
    "FeatureState",
    "FeatureURDF",
    "RobotConfig",
    "dump_robot_configs",
    "find_description_files",
    "parse_robot_configs",
    "read_description_file",
]

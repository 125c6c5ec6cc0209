"""
Navigation and gripper collaborator interfaces.

Both are thin request/response calls into the robot's own namespace:
navigation sends a goal and waits for the result, the gripper endpoint takes
a target position.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from enum import Enum

from robofleet.planning import Pose

logger = logging.getLogger("RoboFleet.Actuators")

NAV_SERVER_TIMEOUT_S = 5.0


class NavigationState(str, Enum):
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


class NavigationActuator(ABC):
    """Drive a robot to a goal pose."""

    @abstractmethod
    def navigate_to(
        self,
        namespace: str,
        reference_frame: str,
        pose: Pose,
        server_timeout: float = NAV_SERVER_TIMEOUT_S,
    ) -> NavigationState:
        """Send the goal and block until a result arrives.

        Returns FAILED when the navigation server does not come up within
        *server_timeout* seconds.
        """


class GripperClient(ABC):
    """Command a gripper to a position."""

    @abstractmethod
    def control(self, namespace: str, gripper_name: str, position: float) -> bool:
        """Returns True when the gripper endpoint accepted the command."""


class UnavailableNavigation(NavigationActuator):
    def navigate_to(self, namespace, reference_frame, pose, server_timeout=NAV_SERVER_TIMEOUT_S):
        logger.warning("No navigation actuator configured -- goal for %s dropped", namespace)
        return NavigationState.FAILED


class UnavailableGripper(GripperClient):
    def control(self, namespace, gripper_name, position):
        logger.warning("No gripper client configured -- command for %s dropped", namespace)
        return False

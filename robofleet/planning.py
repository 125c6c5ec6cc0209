"""
Motion planning collaborator interface.

The coordinator never computes trajectories itself.  It opens one planning
session per planning group of a manipulator and asks the planner to plan
towards either a pose or a named target, then to execute the last plan.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from typing import Any, Optional

logger = logging.getLogger("RoboFleet.Planning")


@dataclass
class Pose:
    """Position + orientation quaternion, optionally stamped with a frame."""

    x: float = 0.0
    y: float = 0.0
    z: float = 0.0
    qx: float = 0.0
    qy: float = 0.0
    qz: float = 0.0
    qw: float = 1.0
    frame_id: str = ""

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Optional[dict]) -> Pose:
        d = d or {}
        return cls(
            x=float(d.get("x", 0.0)),
            y=float(d.get("y", 0.0)),
            z=float(d.get("z", 0.0)),
            qx=float(d.get("qx", 0.0)),
            qy=float(d.get("qy", 0.0)),
            qz=float(d.get("qz", 0.0)),
            qw=float(d.get("qw", 1.0)),
            frame_id=str(d.get("frame_id", "")),
        )


@dataclass
class PlanningTarget:
    """Either a pose or a named target (e.g. ``"home"``)."""

    pose: Optional[Pose] = None
    named_target: str = ""

    @property
    def is_named(self) -> bool:
        return bool(self.named_target)

    def describe(self) -> str:
        if self.is_named:
            return f"named target '{self.named_target}'"
        return f"pose {self.pose}"


@dataclass(frozen=True)
class PlanningOptions:
    """Fixed settings applied to every planning session."""

    planner_id: str = "RRTConnectkConfigDefault"
    planning_attempts: int = 2
    planning_time_s: float = 5.0
    goal_position_tolerance: float = 0.001
    goal_orientation_tolerance: float = 0.001
    goal_joint_tolerance: float = 0.001


@dataclass
class PlanningSession:
    """Handle to one planning group, as returned by the planner."""

    group: str
    namespace: str
    options: PlanningOptions = field(default_factory=PlanningOptions)
    handle: Any = None


class MotionPlanner(ABC):
    """Interface of the external motion-planning engine."""

    @abstractmethod
    def open_session(
        self, namespace: str, group: str, options: PlanningOptions
    ) -> PlanningSession:
        """Open a session for *group* of the robot living in *namespace*."""

    @abstractmethod
    def plan(self, session: PlanningSession, target: PlanningTarget) -> Optional[Any]:
        """Plan from the current state to *target*. Returns None if no plan exists."""

    @abstractmethod
    def execute(self, session: PlanningSession, plan: Any) -> bool:
        """Execute *plan*. Returns True on success."""

    @abstractmethod
    def current_pose(self, session: PlanningSession) -> Pose:
        """Current end-effector pose of the group."""

    def close_session(self, session: PlanningSession) -> None:
        """Release the session. Optional for planners holding no state."""


class UnavailablePlanner(MotionPlanner):
    """Placeholder used when no planner is configured; every call fails."""

    def _fail(self):
        raise RuntimeError("No motion planner configured")

    def open_session(self, namespace, group, options):
        self._fail()

    def plan(self, session, target):
        self._fail()

    def execute(self, session, plan):
        self._fail()

    def current_pose(self, session):
        self._fail()

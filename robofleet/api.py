"""
RoboFleet coordinator HTTP service.

Every coordinator exposes the same operation endpoints; a coordinator that
does not own a robot forwards the request body unchanged to the owner's
endpoint (see :mod:`robofleet.client`).

Run with:
    robofleet serve --config fleet.yaml
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, Optional

from fastapi import FastAPI
from pydantic import BaseModel

from robofleet.api_errors import register_error_handlers
from robofleet.manager import RobotManager

logger = logging.getLogger("RoboFleet.Gateway")


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------
class RobotRequest(BaseModel):
    robot_name: str = ""


class PoseModel(BaseModel):
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0
    qx: float = 0.0
    qy: float = 0.0
    qz: float = 0.0
    qw: float = 1.0
    frame_id: str = ""


class PlanRequest(BaseModel):
    robot_name: str
    planning_group: str = ""
    target_pose: Optional[PoseModel] = None
    named_target: str = ""
    use_named_target: bool = False


class NavigationGoalRequest(BaseModel):
    robot_name: str
    reference_frame: str = "map"
    target_pose: PoseModel


class GripperRequest(BaseModel):
    robot_name: str
    position: float


def _pose(model: Optional[PoseModel]) -> Optional[Dict[str, Any]]:
    return model.model_dump() if model is not None else None


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------
def create_app(manager: RobotManager) -> FastAPI:
    """Build the coordinator API around *manager*."""
    app = FastAPI(
        title="RoboFleet Coordinator",
        description="Load robots and route manipulation, navigation and gripper requests.",
    )
    register_error_handlers(app)
    app.state.manager = manager
    boot_time = time.time()

    @app.get("/health")
    def health():
        """Health check -- returns OK if the coordinator is running."""
        return {
            "status": "ok",
            "namespace": manager.namespace,
            "uptime_s": round(time.time() - boot_time, 1),
            "loaded": [r.name for r in manager.loaded_robots()],
        }

    @app.get("/robots")
    def list_robots():
        return manager.status()

    # -- Lifecycle -----------------------------------------------------------

    @app.post("/robots/load")
    def load_robot(req: RobotRequest):
        return manager.load(req.robot_name)

    @app.post("/robots/unload")
    def unload_robot(req: RobotRequest):
        return manager.unload(req.robot_name)

    # -- Manipulation --------------------------------------------------------

    @app.post("/robots/plan")
    def plan(req: PlanRequest):
        return manager.plan_manipulation(
            req.robot_name,
            planning_group=req.planning_group,
            target_pose=_pose(req.target_pose),
            named_target=req.named_target,
            use_named_target=req.use_named_target,
        )

    @app.post("/robots/execute")
    def execute(req: RobotRequest):
        return manager.execute_plan(req.robot_name)

    @app.post("/robots/manipulation_target")
    def manipulation_target(req: RobotRequest):
        return manager.get_manipulation_target(req.robot_name)

    # -- Navigation / gripper ------------------------------------------------

    @app.post("/robots/navigation_goal")
    def navigation_goal(req: NavigationGoalRequest):
        return manager.navigation_goal(
            req.robot_name, req.reference_frame, _pose(req.target_pose)
        )

    @app.post("/robots/gripper_control")
    def gripper_control(req: GripperRequest):
        return manager.gripper_control(req.robot_name, req.position)

    # -- Introspection -------------------------------------------------------

    @app.post("/robots/viz_info")
    def viz_info(req: RobotRequest):
        return manager.get_viz_info(req.robot_name)

    @app.post("/robots/config")
    def robot_config(req: RobotRequest):
        return manager.get_robot_config(req.robot_name)

    return app

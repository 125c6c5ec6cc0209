"""Error taxonomy shared by the lifecycle, registry and routing layers.

Every error carries a stable ``code`` so that the HTTP gateway can turn it
into the standard JSON envelope (see :mod:`robofleet.api_errors`) and a
forwarding coordinator can recognise it on the way back.

Cause chains are built with ``raise ... from ...``; :meth:`RoboFleetError.causes`
flattens the chain into a list of messages for the envelope.
"""

from __future__ import annotations

from typing import Any


class RoboFleetError(Exception):
    """Base class for all coordinator errors."""

    code = "ROBOFLEET_ERROR"
    status = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def causes(self) -> list[str]:
        """Messages of the ``__cause__`` chain, outermost first (self excluded)."""
        chain = []
        exc = self.__cause__
        while exc is not None:
            chain.append(f"{type(exc).__name__}: {exc}")
            exc = exc.__cause__
        return chain

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.message,
            "code": self.code,
            "status": self.status,
            "causes": self.causes(),
        }


class ConfigurationError(RoboFleetError):
    """Missing or invalid feature configuration. Fatal to one load attempt."""

    code = "CONFIG_ERROR"
    status = 400


class ResourceRequestFailed(RoboFleetError):
    """An external process could not be launched, released or became FAILED."""

    code = "RESOURCE_REQUEST_FAILED"
    status = 502


class NotFound(RoboFleetError):
    """Unknown robot, robot not loaded, or unknown planning group."""

    code = "NOT_FOUND"
    status = 404


class PlanningFailed(RoboFleetError):
    """The planner found no viable plan, or there is no plan to execute."""

    code = "PLANNING_FAILED"
    status = 422


class TransportFailed(RoboFleetError):
    """A forwarded request to a remote coordinator could not be completed."""

    code = "TRANSPORT_FAILED"
    status = 502


class RemoteRequestFailed(RoboFleetError):
    """A remote coordinator answered with a structured error.

    The remote envelope is kept as-is in ``body`` so it can be relayed
    verbatim to the original caller.
    """

    def __init__(self, body: dict[str, Any], status: int):
        self.body = dict(body)
        self.code = str(body.get("code", "REMOTE_ERROR"))
        self.status = status
        super().__init__(str(body.get("error", "Remote request failed")))

    def to_dict(self) -> dict[str, Any]:
        return dict(self.body)


class DuplicateConfig(RoboFleetError):
    """A robot config with the same identity already exists. Benign."""

    code = "DUPLICATE_CONFIG"
    status = 409

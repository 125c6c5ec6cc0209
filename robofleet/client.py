"""
RoboFleet remote coordinator client.

Forwards an operation request, unmodified, to the coordinator that owns the
target robot and hands back its JSON response::

    client = RemoteManagerClient(resolve_endpoint=manager.endpoint_for)
    client.call("hostB", "plan", {"robot_name": "arm1", ...})

A request that cannot be completed (no known endpoint, connection error,
timeout, unreadable response) raises :class:`TransportFailed`; nothing is
retried.  A structured error returned by the remote coordinator raises
:class:`RemoteRequestFailed` carrying the remote envelope verbatim.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional

import httpx

from robofleet.errors import RemoteRequestFailed, TransportFailed

logger = logging.getLogger("RoboFleet.Client")

# Operation name -> endpoint path (identical on every coordinator)
ENDPOINTS: Dict[str, str] = {
    "load": "/robots/load",
    "unload": "/robots/unload",
    "plan": "/robots/plan",
    "execute": "/robots/execute",
    "viz_info": "/robots/viz_info",
    "manipulation_target": "/robots/manipulation_target",
    "navigation_goal": "/robots/navigation_goal",
    "gripper_control": "/robots/gripper_control",
    "config": "/robots/config",
}


class RemoteManagerClient:
    """HTTP client for the operation endpoints of other coordinators.

    Args:
        resolve_endpoint:  Maps a coordinator namespace to its base URL
                           (``None`` when unknown).
        timeout:           Per-request timeout in seconds.
        transport:         Optional httpx transport (tests use
                           ``httpx.MockTransport``).
    """

    def __init__(
        self,
        resolve_endpoint: Callable[[str], Optional[str]],
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self._resolve = resolve_endpoint
        self._http = httpx.Client(timeout=timeout, transport=transport)

    def url_for(self, namespace: str, operation: str) -> str:
        base = self._resolve(namespace)
        if not base:
            raise TransportFailed(f"No endpoint known for coordinator '{namespace}'")
        try:
            path = ENDPOINTS[operation]
        except KeyError:
            raise ValueError(f"Unknown operation: {operation!r}") from None
        return base.rstrip("/") + path

    def call(self, namespace: str, operation: str, request: Dict[str, Any]) -> Dict[str, Any]:
        """POST *request* to *operation* on coordinator *namespace*."""
        url = self.url_for(namespace, operation)
        logger.debug("Forwarding '%s' request to remote robot manager at '%s'.", operation, url)
        try:
            resp = self._http.post(url, json=request)
        except httpx.HTTPError as exc:
            raise TransportFailed(f"Call to remote RobotManager at '{url}' failed") from exc

        try:
            body = resp.json()
        except ValueError as exc:
            raise TransportFailed(
                f"Remote RobotManager at '{url}' returned an unreadable response "
                f"(HTTP {resp.status_code})"
            ) from exc

        if resp.status_code >= 400:
            if not isinstance(body, dict):
                body = {"error": str(body), "code": f"HTTP_{resp.status_code}"}
            raise RemoteRequestFailed(body, resp.status_code)

        logger.debug("Call to remote RobotManager was successful.")
        return body

    def close(self) -> None:
        self._http.close()

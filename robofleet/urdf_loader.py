"""
RoboFleet URDF loader.

Launched by the coordinator for the URDF feature of a robot.  Reads the
robot description file and publishes it as the ``robot_description``
parameter of the robot namespace, then stays up until it is stopped::

    robofleet-urdf-loader arm_description/arm1.urdf --namespace /hostA/arm1

Relative paths are resolved against ``ROBOFLEET_SEARCH_PATH``.  The graph
plugin comes from the coordinator settings file (``ROBOFLEET_CONFIG``), so
the parameter lands in the same graph the coordinator watches.
"""

import argparse
import logging
import os
import signal
import sys
import threading

from robofleet.graph import InMemoryGraph, RobotGraph
from robofleet.settings import load_collaborator, load_settings

logger = logging.getLogger("RoboFleet.URDFLoader")

PARAM_NAME = "robot_description"


def resolve_description(path: str, search_path: str = ".") -> str:
    if os.path.isabs(path):
        return path
    return os.path.join(search_path, path)


def publish_description(graph: RobotGraph, path: str, namespace: str) -> str:
    """Publish the contents of *path* under *namespace*. Returns the parameter name."""
    with open(path) as f:
        description = f.read()
    name = f"{namespace.rstrip('/')}/{PARAM_NAME}"
    graph.set_param(name, description)
    logger.info("Published %s (%d bytes) from %s", name, len(description), path)
    return name


def _wait_for_termination() -> None:
    stopped = threading.Event()
    signal.signal(signal.SIGTERM, lambda *_: stopped.set())
    try:
        stopped.wait()
    except KeyboardInterrupt:
        pass


def main(argv=None) -> None:
    parser = argparse.ArgumentParser(
        prog="robofleet-urdf-loader",
        description="Publish a robot description file as a graph parameter",
    )
    parser.add_argument("path", help="Description file, relative to the search path")
    parser.add_argument(
        "--namespace",
        default=os.getenv("ROBOFLEET_NAMESPACE", ""),
        help="Robot namespace (default: $ROBOFLEET_NAMESPACE)",
    )
    parser.add_argument(
        "--search-path",
        default=os.getenv("ROBOFLEET_SEARCH_PATH", "."),
        help="Package search path (default: $ROBOFLEET_SEARCH_PATH)",
    )
    parser.add_argument(
        "--config",
        default=os.getenv("ROBOFLEET_CONFIG") or None,
        help="Coordinator settings file naming the graph plugin",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    settings = load_settings(args.config)
    graph = load_collaborator(settings.graph, default=InMemoryGraph())
    path = resolve_description(args.path, args.search_path)
    try:
        publish_description(graph, path, args.namespace)
    except OSError as exc:
        logger.error("Cannot read robot description %s: %s", path, exc)
        sys.exit(1)

    _wait_for_termination()


if __name__ == "__main__":
    main()

"""
RoboFleet CLI entry point.

Usage:
    robofleet serve    --config fleet.yaml            # Run a coordinator
    robofleet configs  ./robots                       # List robot descriptions
    robofleet validate ./robots --config fleet.yaml   # Validate descriptions + settings
"""

import argparse
import logging
import os
import sys
import traceback

logger = logging.getLogger("RoboFleet.CLI")


def _setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose or os.getenv("LOG_LEVEL", "").upper() == "DEBUG" else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _console():
    try:
        from rich.console import Console

        return Console()
    except ImportError:
        return None


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def build_manager(settings):
    """Wire a RobotManager from *settings*."""
    from robofleet.graph import InMemoryGraph
    from robofleet.launcher import SubprocessLauncher
    from robofleet.manager import RobotManager
    from robofleet.settings import load_collaborator
    from robofleet.transport import create_channel

    launcher = load_collaborator(
        settings.launcher,
        default=SubprocessLauncher(
            settings.launcher.get("search_path", "."),
            env={"ROBOFLEET_CONFIG": settings.config_path} if settings.config_path else None,
        ),
    )
    manager = RobotManager(
        settings.namespace,
        launcher,
        graph=load_collaborator(settings.graph, default=InMemoryGraph()),
        planner=load_collaborator(settings.planner),
        navigation=load_collaborator(settings.navigation),
        gripper=load_collaborator(settings.gripper),
        channel=create_channel(settings.sync),
        options=settings.lifecycle_options(),
        max_reloads=settings.max_reloads,
        endpoint=settings.advertised_endpoint(),
        peers=settings.peers,
        forward_timeout_s=settings.forward_timeout_s,
        catalog_path=settings.resolved_catalog_path(),
    )
    return manager


def cmd_serve(args) -> None:
    """Start a coordinator: descriptions, sync and the HTTP service."""
    import uvicorn

    from robofleet.api import create_app
    from robofleet.settings import load_settings, validate_settings

    settings = load_settings(args.config)
    if args.namespace is not None:
        settings.namespace = args.namespace.strip("/")
    if args.host:
        settings.host = args.host
    if args.port:
        settings.port = args.port
    settings.description_paths.extend(args.paths)

    ok, errors = validate_settings(settings)
    if not ok:
        for msg in errors:
            logger.error("Config error: %s", msg)
        sys.exit(1)

    manager = build_manager(settings)
    manager.start(settings.description_paths, settings.description_filename)
    app = create_app(manager)
    try:
        uvicorn.run(app, host=settings.host, port=settings.port, log_level="info")
    finally:
        manager.shutdown()


def cmd_configs(args) -> None:
    """Parse description files and print the robots they define."""
    from robofleet.config.loader import find_description_files, read_description_file

    configs = []
    for root in args.paths:
        for path in find_description_files(root, args.filename):
            configs = read_description_file(path, args.namespace, existing=configs)

    console = _console()
    if console is None:
        for c in configs:
            features = ", ".join(f.kind.value for f in c.enabled_features())
            print(f"  {c.name:<20} {c.abs_namespace:<30} {c.reliability:.2f}  {features}")
        print(f"\n  {len(configs)} robot(s)")
        return

    from rich.table import Table

    table = Table(title="Robot descriptions")
    table.add_column("Robot", style="cyan")
    table.add_column("Namespace")
    table.add_column("Reliability", justify="right")
    table.add_column("Features", style="green")
    for c in configs:
        table.add_row(
            c.name,
            c.abs_namespace,
            f"{c.reliability:.2f}",
            ", ".join(f.kind.value for f in c.enabled_features()),
        )
    console.print(table)
    console.print(f"  {len(configs)} robot(s)")


def cmd_validate(args) -> None:
    """Validate description files (and the settings file, if given)."""
    from robofleet.config.loader import find_description_files, validate_description
    from robofleet.settings import load_settings, validate_settings

    failures = 0
    if args.config:
        ok, errors = validate_settings(load_settings(args.config))
        failures += _report(args.config, ok, errors)

    found = False
    for root in args.paths:
        for path in find_description_files(root, args.filename):
            found = True
            ok, errors = validate_description(path.read_text())
            failures += _report(str(path), ok, errors)

    if not found and not args.config:
        print("  No robot description files found.")
        sys.exit(1)
    if failures:
        sys.exit(1)


def _report(label: str, ok: bool, errors) -> int:
    if ok:
        print(f"  OK       {label}")
        return 0
    print(f"  INVALID  {label}")
    for msg in errors:
        print(f"    - {msg}")
    return 1


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    from robofleet.config.loader import DESCRIPTION_FILENAME

    parser = argparse.ArgumentParser(
        prog="robofleet",
        description="RoboFleet - distributed robot fleet coordinator",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command")

    # robofleet serve
    p_serve = sub.add_parser(
        "serve",
        help="Run a coordinator",
        epilog="Example: robofleet serve --config fleet.yaml --port 8001",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    p_serve.add_argument("paths", nargs="*", help="Extra robot description directories")
    p_serve.add_argument("--config", default=None, help="Settings file (YAML)")
    p_serve.add_argument("--namespace", default=None, help="Coordinator namespace")
    p_serve.add_argument("--host", default=None, help="Bind address")
    p_serve.add_argument("--port", type=int, default=None, help="Port number")

    # robofleet configs
    p_configs = sub.add_parser("configs", help="List the robots in description files")
    p_configs.add_argument("paths", nargs="+", help="Description files or directories")
    p_configs.add_argument("--namespace", default="", help="Owning namespace to assume")
    p_configs.add_argument("--filename", default=DESCRIPTION_FILENAME, help="Description filename")

    # robofleet validate
    p_validate = sub.add_parser("validate", help="Validate description and settings files")
    p_validate.add_argument("paths", nargs="*", help="Description files or directories")
    p_validate.add_argument("--config", default=None, help="Settings file (YAML)")
    p_validate.add_argument("--filename", default=DESCRIPTION_FILENAME, help="Description filename")

    return parser


def main(argv=None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    _setup_logging(args.verbose)

    commands = {
        "serve": cmd_serve,
        "configs": cmd_configs,
        "validate": cmd_validate,
    }
    handler = commands.get(args.command)
    if handler:
        handler(args)
    else:
        parser.print_help()


def _friendly_error_handler() -> None:
    """Wrap main() with user-friendly error handling."""
    try:
        main()
    except KeyboardInterrupt:
        print("\n  Interrupted.\n")
        sys.exit(130)
    except SystemExit:
        raise
    except FileNotFoundError as exc:
        print(f"\n  File not found: {exc.filename or exc}")
        print("  Check the path and try again.\n")
        sys.exit(1)
    except ImportError as exc:
        print(f"\n  Missing dependency: {exc.name or exc}")
        print("  Hint: pip install -e '.[dev]'\n")
        sys.exit(1)
    except Exception as exc:
        print(f"\n  Unexpected error: {exc}")
        print("  Set LOG_LEVEL=DEBUG and try again for details.\n")
        if os.getenv("LOG_LEVEL", "").upper() == "DEBUG":
            traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    _friendly_error_handler()

"""Main entry point for the tickettok CLI."""

import argparse
import logging
import shutil
import sys
from typing import Optional

from ..agent_manager import AgentManager
from ..backends.registry import BackendRegistry
from ..context import RuntimeContext
from ..main import load_config, resolve_config_path, run, setup_logging
from ..store import Store, StoreLoadError
from . import commands
from .client import TicketTokClient, api_url_from_config


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tickettok",
        description="TicketTok - supervise AI coding agents running in tmux",
    )
    parser.add_argument("--config", help="Path to config.yaml (default: $TICKETTOK_CONFIG or ./config.yaml)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    subparsers.add_parser("serve", help="Run the status monitor and local API server")

    add_parser = subparsers.add_parser("add", help="Spawn an agent in a new tmux session")
    add_parser.add_argument("dir", help="Working directory for the agent")
    add_parser.add_argument("--name", help="Agent name (default: repo or directory name)")
    add_parser.add_argument("--backend", help="Agent CLI: claude, codex or gemini")
    add_parser.epilog = "Arguments after -- are passed to the agent CLI."

    subparsers.add_parser("list", help="List tracked agents")

    kill_parser = subparsers.add_parser("kill", help="Kill an agent")
    kill_parser.add_argument("target", help="Agent name or ID")

    resume_parser = subparsers.add_parser("resume", help="Respawn a dead agent with its CLI's resume arguments")
    resume_parser.add_argument("target", help="Agent name or ID")
    resume_parser.add_argument("--name", help="New name for the agent")

    discover_parser = subparsers.add_parser("discover", help="Find agents running outside TicketTok")
    discover_parser.add_argument("--merge", action="store_true", help="Start tracking the tmux sessions found")

    subparsers.add_parser("clear", help="Remove agents that are DONE")
    subparsers.add_parser("install-hooks", help="Install status hooks for every agent CLI")
    subparsers.add_parser("check-deps", help="Report missing agent CLIs")

    return parser


def split_passthrough(argv: list[str]) -> tuple[list[str], list[str]]:
    """Split argv at the first ``--`` into (ours, agent CLI args)."""
    if "--" in argv:
        idx = argv.index("--")
        return argv[:idx], argv[idx + 1:]
    return argv, []


def dispatch(
    args: argparse.Namespace,
    extra_args: list[str],
    store: Optional[Store],
    manager: Optional[AgentManager],
    registry: BackendRegistry,
    client: Optional[TicketTokClient] = None,
) -> int:
    """Run a store-backed command, locally or through the server's API."""
    if args.command == "add":
        return commands.cmd_add(
            store, manager, registry, args.dir,
            name=args.name,
            backend_id=args.backend,
            extra_args=extra_args,
            client=client,
        )
    if args.command == "list":
        return commands.cmd_list(store, client=client)
    if args.command == "kill":
        return commands.cmd_kill(store, manager, args.target, client=client)
    if args.command == "resume":
        return commands.cmd_resume(store, manager, args.target, name=args.name, client=client)
    if args.command == "discover":
        return commands.cmd_discover(store, registry, merge=args.merge, client=client)
    if args.command == "clear":
        return commands.cmd_clear(store, client=client)
    build_parser().print_help()
    return 1


def main(argv: Optional[list[str]] = None):
    """Main entry point for the tickettok CLI."""
    parser = build_parser()
    own_args, extra_args = split_passthrough(list(sys.argv[1:] if argv is None else argv))
    args = parser.parse_args(own_args)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    config_path = resolve_config_path(args.config)

    if args.command == "serve":
        run(config_path)
        sys.exit(0)

    setup_logging(logging.DEBUG if args.verbose else logging.WARNING)
    config = load_config(config_path)
    context = RuntimeContext.from_config(config)
    registry = context.registry

    if args.command == "install-hooks":
        sys.exit(commands.cmd_install_hooks(registry))
    if args.command == "check-deps":
        sys.exit(commands.cmd_check_deps(registry))

    # A running server owns state.json; route through its API when it is up
    client = TicketTokClient(api_url_from_config(config))
    if client.is_available():
        sys.exit(dispatch(args, extra_args, None, None, registry, client))

    if args.command in ("add", "kill", "resume") and shutil.which("tmux") is None:
        print("TicketTok requires tmux", file=sys.stderr)
        sys.exit(1)

    try:
        store = Store(context.state_file, default_backend_id=registry.default_id)
    except StoreLoadError as e:
        print(f"Error initializing state: {e}", file=sys.stderr)
        sys.exit(1)
    manager = AgentManager(context)

    try:
        result = dispatch(args, extra_args, store, manager, registry)
    finally:
        # The CLI exits right away; agents keep running in tmux
        manager.close_all()

    sys.exit(result)


if __name__ == "__main__":
    main()

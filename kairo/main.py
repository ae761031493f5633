#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Main entry point for the kairo CLI."""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from . import config
from ._version import KAIRO_GIT_COMMIT, KAIRO_VERSION
from .debug_logger import DebugLogger
from .execution.events import OBJECTIVE_STATUS, PLAN_CREATED, RUN_COMPLETE, RUN_ERROR, SUBTASK_STATUS, TOOL_RETRY
from .execution.pipeline import ExecutionPipeline
from .execution.single_loop import SingleLoopAgent
from .llm.client import get_client
from .state.store import SessionNotFoundError, StateStore, StateStoreError
from .tools.errors import PathOutsideRootError
from .tools.registry import build_default_registry

STATUS_ICONS = {
    "pending": "○",
    "running": "→",
    "done": "✓",
    "failed": "✗",
    "skipped": "⏸",
}


def _print_event(event: Dict[str, Any]) -> None:
    kind = event.get("type")
    if kind == PLAN_CREATED:
        note = " (fallback plan)" if event.get("fallback") else ""
        print(f"\nPlan{note}:")
        for objective in event.get("objectives", []):
            print(f"  {objective['order']}. {objective['text']}")
        print()
    elif kind == OBJECTIVE_STATUS:
        icon = STATUS_ICONS.get(event["status"], "?")
        reason = f" ({event['reason']})" if event.get("reason") else ""
        print(f"{icon} [{event['order']}] {event['text']}{reason}")
    elif kind == SUBTASK_STATUS:
        icon = STATUS_ICONS.get(event["status"], "?")
        error = f": {event['error']}" if event.get("error") else ""
        print(f"    {icon} {event['name']} [{event['tool']}]{error}")
    elif kind == TOOL_RETRY:
        print(f"      retry {event['attempt']} of {event['tool']}: {event['error']}")
    elif kind == RUN_ERROR:
        print(f"\n✗ Run failed: {event['error']}")
    elif kind == RUN_COMPLETE:
        print("\n" + "=" * 60)
        print(event.get("summary", ""))
        print("=" * 60)


def _cmd_run(args: argparse.Namespace, store: StateStore) -> int:
    project = Path(args.project).resolve()
    if not project.is_dir():
        print(f"✗ Project directory not found: {project}")
        return 2

    session = store.get_or_create_session(args.session, name=args.request[:60], project=project.name)
    print(f"Session: {session.id}")

    client = get_client(args.provider)
    if args.mode == "loop":
        agent = SingleLoopAgent(client, build_default_registry(), store, max_iterations=args.max_iterations,
                                emit=_print_event)
    else:
        agent = ExecutionPipeline(client, build_default_registry(), store, emit=_print_event)
    result = agent.run(session.id, args.request, project)
    return 0 if result.success else 1


def _cmd_status(args: argparse.Namespace, store: StateStore) -> int:
    try:
        state = store.snapshot(args.session)
    except SessionNotFoundError as e:
        print(f"✗ {e}")
        return 1

    if args.json:
        print(json.dumps(state, indent=2))
        return 0

    session = state["session"]
    print(f"{session['name']} [{session['status']}] {session.get('project') or ''}")
    groups = {group["objective_id"]: group for group in state["groups"]}
    for objective in state["objectives"]:
        icon = STATUS_ICONS.get(objective["status"], "?")
        reason = f" ({objective['reason']})" if objective.get("reason") else ""
        print(f"{icon} {objective['order']}. {objective['text']}{reason}")
        group = groups.get(objective["id"])
        if group:
            for _, entry in sorted(group["entries"].items(), key=lambda item: int(item[0])):
                print(f"    {STATUS_ICONS.get(entry['status'], '?')} {entry['name']} [{entry['tool']}]")
    return 0


def _cmd_sessions(args: argparse.Namespace, store: StateStore) -> int:
    sessions = store.list_sessions()
    if not sessions:
        print("No sessions.")
        return 0
    for session in sessions:
        print(f"{session.id}  {session.status.value:<8} {session.message_count:>4} msgs  {session.name}")
    return 0


def _cmd_edits(args: argparse.Namespace, store: StateStore) -> int:
    try:
        if args.rollback:
            rollback = store.rollback_edit(args.session, args.rollback, Path(args.project).resolve())
            print(f"✓ Rolled back {args.rollback}: {rollback.path}")
            return 0
        edits = store.list_edits(args.session)
    except (StateStoreError, PathOutsideRootError) as e:
        print(f"✗ {e}")
        return 1

    if not edits:
        print("No edits.")
        return 0
    for edit in edits:
        note = " (rolled back)" if edit.rolled_back else ""
        print(f"{edit.id}  {edit.operation.value:<8} {edit.tool:<16} {edit.path}{note}")
    return 0


def _cmd_serve(
args: argparse.Namespace, store: StateStore) -> int:
    from .server.api_server import KairoAPIServer

    logging.basicConfig(level=args.log_level)
    server = KairoAPIServer(store=store, registry=build_default_registry())
    server.start(args.host, args.port)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="kairo - plan, decompose and execute coding requests against a project"
    )
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"kairo {KAIRO_VERSION} ({KAIRO_GIT_COMMIT})",
    )
    parser.add_argument(
        "--state-dir",
        default=None,
        help=f"Session state directory (default: {config.STATE_DIR})"
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable detailed debug logging to file"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run a request against a project")
    run.add_argument("request", help="What to do")
    run.add_argument("--project", default=".", help="Project directory (default: current directory)")
    run.add_argument("--mode", choices=("plan", "loop"), default="plan",
                     help="plan: objectives and subtasks; loop: single tool-call loop")
    run.add_argument("--session", default=None, help="Continue an existing session")
    run.add_argument("--provider", default=None, help=f"Completion provider (default: {config.LLM_PROVIDER})")
    run.add_argument("--max-iterations", type=int, default=config.MAX_LOOP_ITERATIONS,
                     help="Iteration cap for --mode loop")
    run.add_argument("--debug", action="store_true", default=argparse.SUPPRESS,
                     help="Enable detailed debug logging to file")

    serve = sub.add_parser("serve", help="Start the HTTP/WebSocket server")
    serve.add_argument("--host", default=config.SERVER_HOST, help="Host to bind to")
    serve.add_argument("--port", type=int, default=config.SERVER_PORT, help="Port to listen on")
    serve.add_argument("--log-level", default="INFO", help="Logging level")

    status = sub.add_parser("status", help="Show a session's objectives and subtasks")
    status.add_argument("session", help="Session id")
    status.add_argument("--json", action="store_true", help="Print the raw state snapshot")

    edits = sub.add_parser("edits", help="List a session's file edits or roll one back")
    edits.add_argument("session", help="Session id")
    edits.add_argument("--rollback", metavar="EDIT_ID", default=None, help="Restore the file this edit changed")
    edits.add_argument("--project", default=".", help="Project directory the session ran against")

    sub.add_parser("sessions", help="List sessions")
    return parser


COMMANDS = {
    "run": _cmd_run,
    "serve": _cmd_serve,
    "status": _cmd_status,
    "sessions": _cmd_sessions,
    "edits": _cmd_edits,
}


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the kairo CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    debug_logger = DebugLogger.initialize(enabled=args.debug)
    if args.debug:
        print(f"Debug logging enabled: {debug_logger.log_file_path}")

    store = StateStore(Path(args.state_dir) if args.state_dir else None)
    debug_logger.log("main", "CONFIGURATION", {
        "command": args.command,
        "state_dir": str(store.state_dir),
        "provider": getattr(args, "provider", None) or config.LLM_PROVIDER,
    })

    try:
        return COMMANDS[args.command](args, store)
    except KeyboardInterrupt:
        print("\nInterrupted.")
        return 130
    finally:
        debug_logger.close()


if __name__ == "__main__":
    sys.exit(main())

"""Command-line entry point: ``clawboard``.

Every command prints JSON on stdout.  Task-engine errors go to stderr and the
command exits with status 1.
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from typing import Any, Callable

from loguru import logger

from .config import CONFIG_ENV, DB_PATH_ENV, Settings, build_settings
from .server import BoardContext, create_app
from .task_engine.errors import TaskEngineError
from .task_engine.model import UNSET


def _configure_logging(level: str = "INFO") -> None:
    """Configure loguru logger with the specified level."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{module}</cyan>:<cyan>{line}</cyan> - "
            "{message}"
        ),
    )


def _env_overrides(args: argparse.Namespace) -> dict[str, str]:
    overrides: dict[str, str] = {}
    if args.config:
        overrides[CONFIG_ENV] = args.config
    if args.db:
        overrides[DB_PATH_ENV] = args.db
    return overrides


def _settings(args: argparse.Namespace) -> Settings:
    return build_settings({**os.environ, **_env_overrides(args)})


def _ctx(args: argparse.Namespace) -> BoardContext:
    return BoardContext.from_settings(_settings(args))


def _emit(payload: Any) -> int:
    sys.stdout.write(json.dumps(payload, indent=2) + "\n")
    return 0


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def _server(args: argparse.Namespace) -> int:
    import uvicorn

    if args.reload:
        # The reloader re-imports the app in a child process; hand it the
        # overrides through the environment.
        os.environ.update(_env_overrides(args))
        uvicorn.run("clawboard.server:create_app", factory=True, host=args.host, port=args.port, reload=True)
        return 0

    app = create_app(settings=_settings(args))
    uvicorn.run(app, host=args.host, port=args.port)
    return 0


def _task_create(args: argparse.Namespace) -> int:
    ctx = _ctx(args)
    body: dict[str, Any] = {"title": args.title}
    for key in ("description", "status", "priority", "tags", "project_id", "anchor"):
        value = getattr(args, key)
        if value is not None:
            body[key] = value
    task = ctx.tasks.create(body)
    return _emit({"task": ctx.anchors.enrich(task, ctx.settings.anchors)})


def _task_list(args: argparse.Namespace) -> int:
    ctx = _ctx(args)
    tasks = ctx.tasks.list(status=args.status, include_archived=args.include_archived)
    return _emit({"tasks": ctx.anchors.enrich_many(tasks, ctx.settings.anchors)})


def _task_move(args: argparse.Namespace) -> int:
    ctx = _ctx(args)
    patch: dict[str, Any] = {"status": args.status}
    if args.position is not None:
        patch["position"] = args.position
    task = ctx.tasks.update(args.task_id, patch)
    return _emit({"task": task.to_dict()})


def _task_archive_done(args: argparse.Namespace) -> int:
    ctx = _ctx(args)
    assignee: Any = UNSET if args.assignee is None else args.assignee
    return _emit(ctx.tasks.archive_done(assignee))


def _tags(args: argparse.Namespace) -> int:
    ctx = _ctx(args)
    return _emit({"tags": ctx.tasks.list_tags()})


def _anchor(args: argparse.Namespace) -> int:
    ctx = _ctx(args)
    task = ctx.tasks.get(args.task_id)
    resolution = ctx.anchors.resolve(task, ctx.settings.anchors)
    return _emit({"id": task.id, **resolution.as_dict()})


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="clawboard", description="Clawboard task board")
    parser.add_argument("--config", default=None, help="Config file (default: ~/.clawboard/config.yaml)")
    parser.add_argument("--db", default=None, help="SQLite database path (overrides config)")
    parser.add_argument("--log-level", default="INFO", help="Log level (default: INFO)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    server = subparsers.add_parser("server", help="Start the API server")
    server.add_argument("--host", default="127.0.0.1")
    server.add_argument("--port", default=8000, type=int)
    server.add_argument("--reload", action="store_true")
    server.set_defaults(func=_server)

    task = subparsers.add_parser("task", help="Manage tasks")
    task_sub = task.add_subparsers(dest="task_cmd", required=True)
    tcreate = task_sub.add_parser("create", help="Create a task")
    tcreate.add_argument("title")
    tcreate.add_argument("--description", default=None)
    tcreate.add_argument("--status", default=None)
    tcreate.add_argument("--priority", default=None)
    tcreate.add_argument("--tags", default=None, help="Comma-separated tags")
    tcreate.add_argument("--project-id", dest="project_id", default=None, type=int)
    tcreate.add_argument("--anchor", default=None)
    tcreate.set_defaults(func=_task_create)
    tlist = task_sub.add_parser("list", help="List tasks")
    tlist.add_argument("--status", default=None)
    tlist.add_argument("--include-archived", action="store_true")
    tlist.set_defaults(func=_task_list)
    tmove = task_sub.add_parser("move", help="Move a task to another status")
    tmove.add_argument("task_id", type=int)
    tmove.add_argument("status")
    tmove.add_argument("--position", default=None, type=int)
    tmove.set_defaults(func=_task_move)
    tarchive = task_sub.add_parser("archive-done", help="Archive every done task")
    tarchive.add_argument("--assignee", default=None, help="Only tasks assigned to this id")
    tarchive.set_defaults(func=_task_archive_done)

    tags = subparsers.add_parser("tags", help="List known tags")
    tags.set_defaults(func=_tags)

    anchor = subparsers.add_parser("anchor", help="Show the resolved anchor for a task")
    anchor.add_argument("task_id", type=int)
    anchor.set_defaults(func=_anchor)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.log_level)
    handler: Callable[[argparse.Namespace], int] | None = getattr(args, "func", None)
    if handler is None:
        parser.print_help()
        return 1
    try:
        return int(handler(args) or 0)
    except TaskEngineError as exc:
        sys.stderr.write(str(exc) + "\n")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())

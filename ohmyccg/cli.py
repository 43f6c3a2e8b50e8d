#!/usr/bin/env python3
"""Command line entry point for the oh-my-ccg tool boundary.

Commands:
    call TOOL --args JSON    Run one tool and print its JSON response
    list-tools               Print the tool schemas
    serve                    Answer line-delimited {"toolName", "arguments"} requests on stdin

Usage:
    python -m ohmyccg.cli call rpi_state_read --args '{"work_dir": "."}'
    python -m ohmyccg.cli list-tools
    python -m ohmyccg.cli serve
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Any

from ohmyccg.config import settings
from ohmyccg.jobs.registry import build_default_registry
from ohmyccg.logging_config import setup_logging
from ohmyccg.tools import build_tool_registry

logger = logging.getLogger(__name__)


def _print(payload: Any) -> None:
    sys.stdout.write(json.dumps(payload, ensure_ascii=False) + "\n")
    sys.stdout.flush()


async def cmd_call(args: argparse.Namespace) -> int:
    """Run one tool call."""
    try:
        arguments = json.loads(args.args)
    except json.JSONDecodeError as e:
        _print({"error": f"Invalid --args JSON: {e}"})
        return 2
    if not isinstance(arguments, dict):
        _print({"error": "--args must be a JSON object"})
        return 2

    jobs = build_default_registry(settings)
    tools = build_tool_registry(jobs, args.work_dir)
    try:
        result = await tools.execute(args.tool, arguments)
    finally:
        await jobs.shutdown()

    _print(result.to_response())
    return 0 if result.success else 1


async def cmd_list_tools(args: argparse.Namespace) -> int:
    """Print tool schemas."""
    jobs = build_default_registry(settings)
    tools = build_tool_registry(jobs, args.work_dir)
    _print(tools.get_schemas())
    return 0


async def cmd_serve(args: argparse.Namespace) -> int:
    """Serve requests from stdin until EOF.

    Background jobs live as long as this process.
    """
    jobs = build_default_registry(settings)
    tools = build_tool_registry(jobs, args.work_dir)
    loop = asyncio.get_running_loop()
    logger.info(f"Serving {len(tools.list_all())} tools on stdin")

    try:
        while True:
            line = await loop.run_in_executor(None, sys.stdin.readline)
            if not line:
                break
            line = line.strip()
            if not line:
                continue
            try:
                request = json.loads(line)
            except json.JSONDecodeError as e:
                _print({"error": f"Invalid request JSON: {e}"})
                continue
            if not isinstance(request, dict):
                _print({"error": "Request must be a JSON object"})
                continue
            _print(await tools.handle(request))
    finally:
        await jobs.shutdown()
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="oh-my-ccg",
        description="oh-my-ccg orchestration tools",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--work-dir", default=None, help="Default project directory for state tools")
    parser.add_argument("--debug", action="store_true", default=settings.debug, help="Enable debug logging")
    parser.add_argument("--json-logs", action="store_true", default=settings.json_logs, help="Log as JSON")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    call_parser = subparsers.add_parser("call", help="Run one tool and print its response")
    call_parser.add_argument("tool", help="Tool name (see list-tools)")
    call_parser.add_argument("--args", default="{}", help="Tool arguments as a JSON object")

    subparsers.add_parser("list-tools", help="Print tool schemas")
    subparsers.add_parser("serve", help="Answer line-delimited JSON requests on stdin")

    args = parser.parse_args(argv)
    setup_logging(debug=args.debug, json_logs=args.json_logs)

    if args.command == "call":
        return asyncio.run(cmd_call(args))
    elif args.command == "list-tools":
        return asyncio.run(cmd_list_tools(args))
    elif args.command == "serve":
        return asyncio.run(cmd_serve(args))
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())

#!/usr/bin/env python3
"""Stable entrypoint for launching the OSCQuery mirror MCP server from any working directory."""

from __future__ import annotations

import argparse
import asyncio
import os
import sys
from pathlib import Path
from typing import Sequence


def _repo_root() -> Path:
    return Path(__file__).resolve().parent.parent


def _bootstrap_repo_path(repo_root: Path) -> None:
    repo_root_str = str(repo_root)
    if repo_root_str not in sys.path:
        sys.path.insert(0, repo_root_str)


def _apply_overrides(args: argparse.Namespace) -> None:
    # Command-line values win over environment and config file.
    if args.host:
        os.environ["OSCQUERY_REMOTE_HOST"] = args.host
        os.environ.setdefault("OSCQUERY_USE_LOCAL", "false")
    if args.port:
        os.environ["OSCQUERY_REMOTE_PORT"] = str(args.port)
    if args.listen_port:
        os.environ["OSCQUERY_LISTEN_PORT"] = str(args.listen_port)
    if args.keep_values:
        os.environ["OSCQUERY_KEEP_VALUES"] = "true"


def _smoke_check() -> int:
    from OSCQuery_Mirror import server

    async def _list_tool_count() -> int:
        tools = await server.mcp.list_tools()
        return len(tools)

    try:
        tool_count = asyncio.run(_list_tool_count())
    except Exception as exc:
        print(f"SMOKE_CHECK_FAILED: {exc}", file=sys.stderr)
        return 1

    if tool_count <= 0:
        print("SMOKE_CHECK_FAILED: no MCP tools are registered", file=sys.stderr)
        return 1

    print(f"SMOKE_CHECK_OK: {tool_count} tools registered")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Run the OSCQuery mirror MCP server with stable repo-root path handling."
    )
    parser.add_argument(
        "--smoke",
        action="store_true",
        help="Validate imports and tool registration without starting the server loop.",
    )
    parser.add_argument("--host", help="Remote OSCQuery host (disables the local shortcut).")
    parser.add_argument("--port", type=int, help="Remote OSCQuery HTTP port.")
    parser.add_argument("--listen-port", type=int, help="Local UDP port for inbound OSC.")
    parser.add_argument(
        "--keep-values",
        action="store_true",
        help="Keep current values when the remote structure is re-synced.",
    )
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    repo_root = _repo_root()
    _bootstrap_repo_path(repo_root)
    _apply_overrides(args)

    if args.smoke:
        return _smoke_check()

    from OSCQuery_Mirror.server import main as server_main

    server_main()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

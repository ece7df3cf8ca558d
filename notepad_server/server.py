#!/usr/bin/env python3
"""
MCP entry points for the notepad watcher.

Local mode serves the tools over stdio and polls the notepad directly:
  notepad-mcp --file ~/cursor-notepad.txt

Hosted mode serves the tools over streamable HTTP at /mcp and accepts
bridge connections at /bridge:
  notepad-relay --port 8000
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import List, Optional

import uvicorn
from fastmcp import FastMCP
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Mount, Route, WebSocketRoute

from . import __version__
from .backends import LocalBackend, NotepadBackend, RelayBackend
from .config import Settings, configure_logging
from .relay import BRIDGE_PATH, make_bridge_endpoint
from .sessions import SessionRegistry
from .store import now_iso
from .tools.registry import register_tools

logger = logging.getLogger(__name__)

LOCAL_SERVER_NAME = "mcp-notepad-watcher"
RELAY_SERVER_NAME = "mcp-notepad-server"
MCP_PATH = "/mcp"


def build_server(backend: NotepadBackend, name: str) -> FastMCP:
    mcp = FastMCP(name)
    register_tools(mcp, backend)
    return mcp


def create_local_server(settings: Settings) -> FastMCP:
    backend = LocalBackend(settings.notepad_path, poll_interval=settings.poll_interval)
    return build_server(backend, LOCAL_SERVER_NAME)


def create_relay_app(settings: Settings, registry: Optional[SessionRegistry] = None) -> Starlette:
    registry = registry or SessionRegistry(heartbeat_interval=settings.heartbeat_interval)
    mcp = build_server(RelayBackend(registry, request_timeout=settings.request_timeout), RELAY_SERVER_NAME)
    mcp_app = mcp.http_app(path=MCP_PATH, stateless_http=True)

    async def index(_request: Request) -> JSONResponse:
        return JSONResponse(
            {
                "name": RELAY_SERVER_NAME,
                "version": __version__,
                "status": "running",
                "bridge_connected": registry.get_active_session() is not None,
                "bridge_path": BRIDGE_PATH,
                "mcp_path": MCP_PATH,
            }
        )

    # Optional health endpoint for external checks.
    async def health(_request: Request) -> JSONResponse:
        return JSONResponse({"ok": True, "status": "healthy", "timestamp": now_iso(), "sessions": len(registry)})

    @asynccontextmanager
    async def lifespan(app: Starlette):
        async with mcp_app.lifespan(app):
            heartbeat = asyncio.create_task(registry.run_heartbeat())
            try:
                yield
            finally:
                heartbeat.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await heartbeat

    app = Starlette(
        routes=[
            Route("/", index),
            Route("/health", health),
            WebSocketRoute(BRIDGE_PATH, make_bridge_endpoint(registry)),
            Mount("/", app=mcp_app),
        ],
        lifespan=lifespan,
    )
    app.state.registry = registry
    return app


def run_local(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Serve the notepad tools over stdio, polling the file directly.")
    parser.add_argument("--file", help="Notepad path (default: $NOTEPAD_PATH or ~/cursor-notepad.txt)")
    args = parser.parse_args(argv)

    settings = Settings.from_env()
    if args.file:
        settings.notepad_path = Path(args.file).expanduser()
    configure_logging(settings.log_level)

    mcp = create_local_server(settings)
    logger.info("Starting with notepad path: %s", settings.notepad_path)
    mcp.run()
    return 0


def run_relay(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Host the notepad tools and accept bridge connections.")
    parser.add_argument("--host")
    parser.add_argument("--port", type=int)
    args = parser.parse_args(argv)

    settings = Settings.from_env()
    if args.host:
        settings.host = args.host
    if args.port:
        settings.port = args.port
    configure_logging(settings.log_level)

    app = create_relay_app(settings)
    logger.info("Relay on port %d; bridge endpoint ws://%s:%d%s", settings.port, settings.host, settings.port, BRIDGE_PATH)
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())
    return 0


if __name__ == "__main__":
    raise SystemExit(run_local())

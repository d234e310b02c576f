#!/usr/bin/env python3
"""
Unified entry point for the Toolsmith runtime.
"""

from __future__ import annotations

import argparse
import asyncio
import json
from typing import Optional

from toolsmith.config import _cfg_get, load_config


async def _run_once(request: str, result_var: Optional[str], maintenance: bool) -> int:
    from toolsmith.bootstrap import build_runtime

    runtime = build_runtime()
    try:
        if maintenance:
            summary = await runtime.maintenance.run_once()
            print(json.dumps(summary, indent=2, default=str))
            return 0
        result = await runtime.orchestrator.run(request, result_var=result_var)
        print(json.dumps(result.to_dict(), indent=2, default=str))
        return 0 if result.success else 1
    finally:
        await runtime.close()


def serve(host: Optional[str], port: Optional[int]) -> None:
    from toolsmith.api import create_app, start_api_server
    from toolsmith.bootstrap import build_runtime

    cfg = load_config()
    runtime = build_runtime(cfg)
    app = create_app(runtime.orchestrator, runtime.registry, runtime.events)

    @app.on_event("startup")
    async def _start_maintenance():
        runtime.maintenance.start()

    @app.on_event("shutdown")
    async def _stop_runtime():
        await runtime.close()

    host = host or _cfg_get(cfg, "api.host", "0.0.0.0")
    port = int(port or _cfg_get(cfg, "api.port", 8000))
    start_api_server(app, host=host, port=port)


def main() -> None:
    parser = argparse.ArgumentParser(description="Toolsmith entry point")
    subparsers = parser.add_subparsers(dest="command")

    run_parser = subparsers.add_parser("run", help="Run one request through the task orchestrator")
    run_parser.add_argument("--request", required=True, help="Natural-language request")
    run_parser.add_argument("--result-var", help="Store the run's results under this key")

    subparsers.add_parser("maintain", help="Run one registry maintenance pass and exit")

    serve_parser = subparsers.add_parser("serve", help="Serve the HTTP/WebSocket API (default)")
    serve_parser.add_argument("--host")
    serve_parser.add_argument("--port", type=int)

    args = parser.parse_args()
    command = args.command or "serve"

    if command == "run":
        raise SystemExit(asyncio.run(_run_once(args.request, args.result_var, maintenance=False)))
    if command == "maintain":
        raise SystemExit(asyncio.run(_run_once("", None, maintenance=True)))
    serve(getattr(args, "host", None), getattr(args, "port", None))


if __name__ == "__main__":
    main()

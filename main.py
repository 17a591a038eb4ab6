"""Entry point for the speed-test service and its command line client."""

from __future__ import annotations

import argparse
import sys
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional

from speedcheck import bootstrap
from speedcheck.config import load_config
from speedcheck.logging_setup import configure_logging
from speedcheck.measurements.formatter import render_text
from speedcheck.measurements.models import REPORT_COMPLETE, PhaseEvent
from speedcheck.measurements.orchestrator import TestOrchestrator
from speedcheck.measurements.payload import PayloadPool
from speedcheck.measurements.transport import HttpTransport


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="HTTP speed test service")
    parser.add_argument("--config", help="Path to config.yaml", default="config.yaml")
    commands = parser.add_subparsers(dest="command")

    serve = commands.add_parser("serve", help="Run the speed test server")
    serve.add_argument("--host", default=None, help="Override web server host")
    serve.add_argument("--port", type=int, default=None, help="Override web server port")
    serve.add_argument("--debug", action="store_true", help="Enable Flask debug mode")

    run = commands.add_parser("run", help="Run one speed test against a server")
    run.add_argument("--url", default=None, help="Server base URL (defaults to client.base_url)")

    args = parser.parse_args(argv)
    if args.command is None:
        args.command = "serve"
        args.host, args.port, args.debug = None, None, False
    return args


def serve(args: argparse.Namespace) -> int:
    context = bootstrap(args.config)
    if args.host:
        context.config.web.host = args.host
    if args.port:
        context.config.web.port = args.port

    context.start()
    try:
        context.web_app.run(
            host=context.config.web.host,
            port=context.config.web.port,
            debug=args.debug,
            threaded=True,
        )
    finally:
        context.stop()
    return 0


def _print_event(event: PhaseEvent) -> None:
    print(f"[{event.progress_percent:3d}%] {event.phase}", flush=True)


def run_client(args: argparse.Namespace) -> int:
    config = load_config(args.config)
    configure_logging(config)
    base_url = args.url or config.client.base_url

    payload = PayloadPool(config.throughput.pool_bytes)
    payload.open()
    transport = HttpTransport(base_url)
    orchestrator = TestOrchestrator(
        transport,
        payload,
        config.latency,
        config.throughput,
        on_event=_print_event,
    )
    try:
        with ThreadPoolExecutor(max_workers=1) as executor:
            future = executor.submit(orchestrator.run)
            try:
                report = future.result()
            except KeyboardInterrupt:
                print("Cancelling after the current chunk...", flush=True)
                orchestrator.cancel()
                report = future.result()
    finally:
        transport.close()
        payload.close()

    print(render_text(report))
    return 0 if report.status == REPORT_COMPLETE else 1


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    if args.command == "run":
        return run_client(args)
    return serve(args)


if __name__ == "__main__":
    sys.exit(main())

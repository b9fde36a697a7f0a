"""Argparse-based CLI for browser-puppeteer.

``serve`` runs the controller and prints every event the agent pushes as a
JSON line; ``puppet`` runs an agent against a local HTML file.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Any

from browser_puppeteer.agent.page import VirtualPage
from browser_puppeteer.agent.puppet import BrowserPuppet
from browser_puppeteer.codec import encode
from browser_puppeteer.config import PuppeteerSettings, PuppetSettings, SpawnerConfig
from browser_puppeteer.controller.puppeteer import BrowserPuppeteer
from browser_puppeteer.messages import EVENT_TYPES
from browser_puppeteer.spawner import AgentHost, ChromeSpawner

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def _setup_logging(level: str) -> None:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    root = logging.getLogger()
    root.setLevel(level.upper())
    root.addHandler(handler)


def _overrides(args: argparse.Namespace, *names: str) -> dict[str, Any]:
    """Settings overrides for the options actually given on the command line."""
    return {name: getattr(args, name) for name in names if getattr(args, name) is not None}


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def _print_event(data: dict[str, Any], raw: Any) -> None:
    print(encode(data), flush=True)


async def serve(args: argparse.Namespace) -> None:
    settings = PuppeteerSettings(**_overrides(args, "host", "port", "assets_dir"))
    puppeteer = BrowserPuppeteer(settings)
    for event_type in sorted(EVENT_TYPES):
        puppeteer.on(event_type, _print_event)

    await puppeteer.start()
    host: AgentHost | None = None
    try:
        if args.browser:
            host = await ChromeSpawner(SpawnerConfig(executable_path=args.browser)).spawn(args.url)

        await puppeteer.wait_for_connection(args.connect_timeout)
        logger.info("Puppet connected")
        if args.transmit_events:
            await puppeteer.set_transmit_events(True)

        if host is not None:
            await host.wait_closed()
        else:
            await asyncio.Event().wait()
    finally:
        if host is not None:
            await host.terminate()
        await puppeteer.stop()


async def run_puppet(args: argparse.Namespace) -> None:
    page = VirtualPage(Path(args.page).read_text(encoding="utf-8"))
    puppet = BrowserPuppet(page, PuppetSettings(**_overrides(args, "server_url")))
    puppet.start()
    try:
        await puppet.wait_terminated()
    finally:
        await puppet.stop()


# ---------------------------------------------------------------------------
# Main entry point
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="browser-puppeteer",
        description="Remote-control a browser page over a WebSocket",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )
    subparsers = parser.add_subparsers(dest="command")

    p = subparsers.add_parser("serve", help="Run the controller and print pushed events")
    p.add_argument("--host", default=None, help="Interface to listen on")
    p.add_argument("--port", type=int, default=None, help="Port to listen on (default: 47225)")
    p.add_argument("--assets-dir", type=Path, default=None, help="Directory served over HTTP GET")
    p.add_argument(
        "--transmit-events",
        action="store_true",
        default=False,
        help="Ask the puppet to transmit captured events once connected",
    )
    p.add_argument("--browser", default=None, help="Path to a Chrome executable to spawn")
    p.add_argument("--url", default=None, help="URL the spawned browser opens")
    p.add_argument(
        "--connect-timeout",
        type=float,
        default=None,
        help="Give up if no puppet connects within this many seconds",
    )

    p = subparsers.add_parser("puppet", help="Run a puppet on a local HTML page")
    p.add_argument("page", help="HTML file to load")
    p.add_argument("--server-url", default=None, help="Controller URL (ws://...)")

    return parser


def main(argv: list[str] | None = None) -> None:
    """Parse CLI arguments and dispatch to the appropriate handler."""
    parser = build_parser()
    args = parser.parse_args(argv if argv is not None else sys.argv[1:])

    if args.command is None:
        parser.print_help()
        sys.exit(1)
    if args.command == "serve" and args.browser and not args.url:
        parser.error("--browser requires --url")

    _setup_logging(args.log_level)

    handler = serve if args.command == "serve" else run_puppet
    try:
        asyncio.run(handler(args))
    except KeyboardInterrupt:
        pass
    except TimeoutError:
        print("Error: no puppet connected in time", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()

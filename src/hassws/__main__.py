"""Command line entry point.

Usage:
    python -m hassws states
    python -m hassws watch --domain light --substring kitchen
"""

from __future__ import annotations

import argparse
import asyncio
import sys

import structlog

from hassws.client import WebSocketClient
from hassws.config import ClientSettings
from hassws.errors import HASSWSError
from hassws.logs import setup_logging
from hassws.models import StateChangeEvent

logger = structlog.get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="hassws", description="Home Assistant websocket client")
    parser.add_argument("--host", help="Hub host (default: HASSWS_HOST)")
    parser.add_argument("--token", help="Long-lived access token (default: HASSWS_TOKEN)")
    parser.add_argument("--secure", action="store_true", default=None, help="Use wss://")
    parser.add_argument(
        "--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"], help="Log level"
    )

    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("states", help="Print every entity state and exit")

    watch = commands.add_parser("watch", help="Print matching state changes until interrupted")
    watch.add_argument("--entity", action="append", default=[], help="Exact entity_id (repeatable)")
    watch.add_argument("--domain", action="append", default=[], help="Entity domain (repeatable)")
    watch.add_argument(
        "--pattern", action="append", default=[], help="Regex searched in entity_id (repeatable)"
    )
    watch.add_argument(
        "--substring", action="append", default=[], help="Substring of entity_id (repeatable)"
    )
    return parser


def load_settings(args: argparse.Namespace) -> ClientSettings:
    updates = {
        "host": args.host,
        "token": args.token,
        "secure": args.secure,
        "log_level": args.log_level,
    }
    return ClientSettings(**{key: value for key, value in updates.items() if value is not None})


def print_change(event: StateChangeEvent) -> None:
    old = event.old_state.state if event.old_state else "-"
    new = event.new_state.state if event.new_state else "-"
    print(f"{event.entity_id}: {old} -> {new}", flush=True)


async def show_states(client: WebSocketClient) -> None:
    for entity_id, snapshot in sorted(client.states().items()):
        print(f"{entity_id}\t{snapshot.state}")


async def watch(client: WebSocketClient, args: argparse.Namespace) -> None:
    for entity_id in args.entity:
        client.add_entity_listener(entity_id, print_change)
    for domain in args.domain:
        client.add_domain_listener(domain, print_change)
    for pattern in args.pattern:
        client.add_regex_listener(pattern, print_change)
    for substring in args.substring:
        client.add_substring_listener(substring, print_change)

    if not any((args.entity, args.domain, args.pattern, args.substring)):
        client.add_regex_listener(".*", print_change)

    await client.run_forever()


async def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = load_settings(args)
    setup_logging(settings.log_level, settings.json_logs)

    try:
        client = WebSocketClient(settings=settings)
        async with client:
            if args.command == "states":
                await show_states(client)
            else:
                await watch(client, args)
    except HASSWSError as e:
        logger.error("hassws failed", error=str(e))
        return 1
    return 0


def run() -> None:
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        sys.exit(130)


if __name__ == "__main__":
    run()

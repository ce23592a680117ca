"""Command line entry point.

Subcommands run the websocket server, wipe the fact log, seed a user
message and run a streamed recall from the terminal.
"""

import argparse
import asyncio
import json
import sys
from typing import Optional, Sequence

import structlog

from agenter.domain.exceptions import AgenterError
from agenter.domain.models.facts import FactType, create_fact
from agenter.domain.models.frames import CompleteFrame, InterruptFrame
from agenter.infrastructure.config.settings import Settings, get_settings
from agenter.infrastructure.observability.logging import setup_logging

logger = structlog.get_logger(__name__)


def cmd_serve(args: argparse.Namespace, settings: Settings) -> int:
    """Run the websocket server."""
    import uvicorn

    from agenter.application.websocket.ws_server import create_app

    settings.require_completion_credentials()
    host = args.host or settings.ws_host
    port = args.port or settings.ws_port

    print(f"Agenter WebSocket server at ws://{host}:{port}/ws (provider: {settings.provider})")
    uvicorn.run(create_app(settings), host=host, port=port, log_level=settings.log_level.lower())
    return 0


async def _reset(settings: Settings) -> None:
    from agenter.application.services import build_services

    services = await build_services(settings)
    try:
        await services.fact_store.reset()
    finally:
        await services.aclose()


def cmd_reset(args: argparse.Namespace, settings: Settings) -> int:
    """Wipe the fact log and the similarity index."""
    asyncio.run(_reset(settings))
    print(f"Reset {settings.fact_log_path}")
    return 0


async def _seed(settings: Settings, message: str) -> bool:
    from agenter.application.services import build_services

    services = await build_services(settings)
    try:
        if await services.fact_store.has_user_message(message):
            return False
        await services.fact_store.append(create_fact(FactType.USER_MSG, message, {"kind": "seed"}))
        return True
    finally:
        await services.aclose()


def cmd_seed(args: argparse.Namespace, settings: Settings) -> int:
    """Append a user message unless it is already recorded."""
    if asyncio.run(_seed(settings, args.message)):
        print("Seeded.")
    else:
        print("Already present, nothing to do.")
    return 0


async def _recall(settings: Settings, trigger: str) -> int:
    from agenter.application.services import build_services

    services = await build_services(settings)
    try:
        async for frame in services.orchestrator.recall_stream(trigger):
            if isinstance(frame, CompleteFrame):
                print(json.dumps(frame.state.model_dump(), ensure_ascii=False, indent=2))
                print(f"rounds: {frame.trace.rounds}, activated: {frame.trace.merged_count}")
                return 0
            if isinstance(frame, InterruptFrame):
                print(f"interrupted: {frame.reason}")
                state = await services.context_manager.derive()
                print(json.dumps(state.model_dump(), ensure_ascii=False, indent=2))
                return 1
            print(f"[{frame.type.value}] {frame.model_dump_json(exclude={'type', 'timestamp'})}")
        return 1
    finally:
        await services.aclose()


def cmd_recall(args: argparse.Namespace, settings: Settings) -> int:
    """Run a streamed recall and print each frame."""
    return asyncio.run(_recall(settings, args.trigger))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="agenter", description="Agenter memory and recall service")
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the websocket server")
    serve.add_argument("--host", default=None)
    serve.add_argument("--port", type=int, default=None)
    serve.set_defaults(func=cmd_serve)

    reset = subparsers.add_parser("reset", help="Wipe the fact log and similarity index")
    reset.set_defaults(func=cmd_reset)

    seed = subparsers.add_parser("seed", help="Append a user message once")
    seed.add_argument("message")
    seed.set_defaults(func=cmd_seed)

    recall = subparsers.add_parser("recall", help="Run a streamed recall")
    recall.add_argument("trigger")
    recall.set_defaults(func=cmd_recall)

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_format)

    try:
        return args.func(args, settings)
    except AgenterError as e:
        logger.error("Command failed", command=args.command, error=str(e))
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())

# ask_tennis/__main__.py
"""
Command line entry point.

    python -m ask_tennis serve [--host H] [--port P]   HTTP API (uvicorn)
    python -m ask_tennis mcp [--transport stdio|sse]   MCP tools
    python -m ask_tennis ask "Who is ranked number 1?" one-shot answer
    python -m ask_tennis load [--tour ATP] [--year 2023]  refresh the store from providers
"""

import argparse
import asyncio
import logging
import sys

from dotenv import load_dotenv

from .api.errors import InvalidQuestionError
from .config import Settings

logger = logging.getLogger("ask_tennis")


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _serve(settings: Settings, args: argparse.Namespace) -> int:
    import uvicorn

    from . import service
    from .api.server import create_app

    app = create_app(service.initialize_pipeline(settings), settings)
    uvicorn.run(app, host=args.host or settings.host, port=args.port or settings.port)
    return 0


def _mcp(settings: Settings, args: argparse.Namespace) -> int:
    from . import service
    from .mcp_server import run

    service.initialize_pipeline(settings)
    run(transport=args.transport, host=args.host or "127.0.0.1", port=args.port or 8005)
    return 0


async def _ask(settings: Settings, text: str) -> int:
    from . import service

    service.initialize_pipeline(settings)
    try:
        answer = await service.answer_tennis_question(text)
    except InvalidQuestionError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 2
    finally:
        service.shutdown()
    print(answer.to_markdown())
    return 0


async def _load(settings: Settings, args: argparse.Namespace) -> int:
    from . import service
    from .providers.github_csv import GithubCsvProvider
    from .providers.sportradar import SportradarProvider
    from .store.loader import refresh_store

    service.initialize_pipeline(settings)
    live = SportradarProvider(settings.sportradar_api_key, timeout=settings.http_timeout)
    historical = GithubCsvProvider(timeout=settings.http_timeout)
    try:
        loaded = await refresh_store(
            service.get_store(),
            live=live if live.is_configured else None,
            historical=historical,
            tours=args.tour,
            match_years=args.year,
        )
    finally:
        await live.aclose()
        await historical.aclose()
        service.shutdown()
    for table, count in sorted(loaded.items()):
        print(f"{table}: {count} rows")
    return 0


def main(argv=None) -> int:
    load_dotenv()
    settings = Settings.from_env()
    _configure_logging(settings.log_level)

    parser = argparse.ArgumentParser(prog="ask-tennis")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default=None)
    serve.add_argument("--port", type=int, default=None)

    mcp = sub.add_parser("mcp", help="Run the MCP server")
    mcp.add_argument("--transport", choices=["stdio", "sse", "http"], default="stdio")
    mcp.add_argument("--host", default=None)
    mcp.add_argument("--port", type=int, default=None)

    ask = sub.add_parser("ask", help="Answer one question and exit")
    ask.add_argument("question", nargs="+")

    load = sub.add_parser("load", help="Load provider data into the store")
    load.add_argument("--tour", action="append", choices=["ATP", "WTA"], default=None)
    load.add_argument("--year", action="append", type=int, default=None)

    args = parser.parse_args(argv)

    if args.command == "serve":
        return _serve(settings, args)
    if args.command == "mcp":
        return _mcp(settings, args)
    if args.command == "ask":
        return asyncio.run(_ask(settings, " ".join(args.question)))

    args.tour = args.tour or ["ATP"]
    args.year = args.year or [2023]
    return asyncio.run(_load(settings, args))


if __name__ == "__main__":
    sys.exit(main())

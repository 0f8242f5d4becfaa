"""
Diagnostic CLI for probing a tutoring MCP server.

Usage:
    tutor-mcp search CHILD_ID "fractions" --category lessons
    tutor-mcp material CHILD_ID "Chapter 3 Worksheet"
    tutor-mcp question CHILD_ID "Chapter 3 Worksheet" 7
    tutor-mcp tools
    tutor-mcp settings
    tutor-mcp --env-file /path/to/custom.env --server-url http://localhost:3000 tools
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv


# Parse --env-file before loading settings so the chosen file feeds AppSettings.
def _get_env_file_from_args(argv: list) -> tuple:
    """Extract --env-file from argv without full parsing.

    Returns:
        Tuple of (env_path, is_custom) where is_custom is True if the user
        explicitly provided --env-file, False for the default .env path.
    """
    for i, arg in enumerate(argv):
        if arg == "--env-file" and i + 1 < len(argv):
            return Path(argv[i + 1]), True
        if arg.startswith("--env-file="):
            return Path(arg.split("=", 1)[1]), True
    return Path.cwd() / ".env", False


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tutor-mcp",
        description="Probe a tutoring MCP server: search learner data, fetch materials, list tools.",
    )
    parser.add_argument("--server-url", default=None, help="Capability server base URL (default: MCP_SERVER_URL).")
    parser.add_argument("--json", dest="json_output", action="store_true", help="Output structured JSON.")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL for this run.")
    parser.add_argument(
        "--env-file",
        default=None,
        help="Path to custom .env file (default: ./.env). Parsed before settings are loaded.",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    search = sub.add_parser("search", help="Run search_database for a learner.")
    search.add_argument("child_id")
    search.add_argument("query", nargs="?", default="")
    search.add_argument("--category", default="all", help="search_type hint (all, grades, lessons, overdue, ...).")

    material = sub.add_parser("material", help="Fetch a material's full content.")
    material.add_argument("child_id")
    material.add_argument("identifier")

    question = sub.add_parser("question", help="Locate a numbered question in a material.")
    question.add_argument("child_id")
    question.add_argument("identifier")
    question.add_argument("number", type=int)

    sub.add_parser("tools", help="List tools advertised by the server.")
    sub.add_parser("settings", help="Print the effective client settings and exit.")
    return parser


def _json_default(value: Any) -> Any:
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    return str(value)


def _print_json(value: Any) -> None:
    print(json.dumps(value, indent=2, default=_json_default))


def _print_search(envelope: dict) -> None:
    print(envelope.get("summary", ""))
    if envelope.get("error"):
        print(f"Error: {envelope['error']}", file=sys.stderr)
    results = envelope.get("results") or {}
    for key, items in results.items():
        if not items:
            continue
        print(f"{key} ({len(items)}):")
        for item in items:
            data = _json_default(item) if not isinstance(item, (dict, str)) else item
            title = data.get("title", data) if isinstance(data, dict) else data
            print(f"  - {title}")


async def run(args: argparse.Namespace) -> int:
    from tutor_mcp.core.logging_config import instrument_httpx, setup_logging
    from tutor_mcp.modules.config import config_manager
    from tutor_mcp.modules.mcp_tools.client import TutorMCPClient

    settings = config_manager.app_settings
    setup_logging(level_name=args.log_level or settings.log_level, log_dir=settings.app_log_dir)
    instrument_httpx()

    if args.command == "settings":
        _print_json(settings.model_dump())
        return 0

    async with TutorMCPClient(base_url=args.server_url, settings=settings) as client:
        try:
            if args.command == "tools":
                await client.connect()
                tools = await client.list_tools()
                if args.json_output:
                    _print_json(tools)
                elif not tools:
                    print("No tools advertised.", file=sys.stderr)
                    return 1
                else:
                    for tool in tools:
                        print(f"{tool.get('name')}: {tool.get('description', '')}")
                return 0

            if args.command == "search":
                envelope = await client.search(args.child_id, args.query, args.category)
                if args.json_output:
                    _print_json(envelope)
                else:
                    _print_search(envelope)
                return 1 if envelope.get("error") else 0

            if args.command == "material":
                result: Optional[Any] = await client.get_material_content(args.child_id, args.identifier)
            else:
                result = await client.get_specific_question(args.child_id, args.identifier, args.number)

            if result is None:
                print("Not found.", file=sys.stderr)
                return 1
            _print_json(result)
            return 0
        except Exception as exc:
            print(f"Error: {exc}", file=sys.stderr)
            logging.getLogger(__name__).debug("CLI error details", exc_info=True)
            return 1


def main(argv: Optional[list] = None) -> None:
    argv = sys.argv[1:] if argv is None else argv
    env_path, is_custom = _get_env_file_from_args(argv)
    if is_custom and not env_path.exists():
        print(f"Error: specified env file not found: {env_path}", file=sys.stderr)
        sys.exit(2)
    load_dotenv(dotenv_path=str(env_path))

    args = build_parser().parse_args(argv)
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()

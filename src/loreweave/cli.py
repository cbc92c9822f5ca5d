from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Any

from .core.builder import EngineBuilder
from .core.engine import RetrievalEngine
from .core.models import ContentType, DocumentMetadata, SearchOptions
from .errors import LoreweaveError
from .utils.serialization import make_json_safe


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="loreweave")
    parser.add_argument("--version", action="store_true", help="Print version and exit")
    parser.add_argument("--snapshot", help="Snapshot file (defaults to LOREWEAVE_SNAPSHOT_PATH)")
    parser.add_argument(
        "--log-level",
        default=os.getenv("LOREWEAVE_LOG_LEVEL", "WARNING"),
        help="Logging level (default: WARNING)",
    )
    subparsers = parser.add_subparsers(dest="command")

    ingest = subparsers.add_parser("ingest", help="Add a text file to a project")
    ingest.add_argument("file", type=Path)
    ingest.add_argument("--project", required=True)
    ingest.add_argument("--user")

    search = subparsers.add_parser("search", help="Search indexed chunks")
    search.add_argument("query")
    search.add_argument("--project")
    search.add_argument("--limit", type=int)
    search.add_argument(
        "--content-type",
        action="append",
        choices=[content_type.value for content_type in ContentType],
        dest="content_types",
    )
    search.add_argument("--min-importance", type=float)

    for name, help_text in (
        ("stats", "Aggregate metadata for a project"),
        ("sync", "Build or refresh a project profile"),
        ("delete", "Delete every chunk of a project"),
    ):
        command = subparsers.add_parser(name, help=help_text)
        command.add_argument("project")

    return parser


def _emit(payload: Any) -> None:
    print(json.dumps(make_json_safe(payload), indent=2, ensure_ascii=False))


async def _run(engine: RetrievalEngine, args: argparse.Namespace) -> Any:
    await engine.start()
    try:
        if args.command == "ingest":
            content = args.file.read_text(encoding="utf-8")
            chunk_ids = await engine.add_document(
                content,
                DocumentMetadata(
                    project_id=args.project, user_id=args.user, title=args.file.name
                ),
            )
            return {"project_id": args.project, "chunk_ids": chunk_ids}
        if args.command == "search":
            options = SearchOptions(
                project_id=args.project,
                limit=args.limit,
                content_types=args.content_types,
                min_importance=args.min_importance,
            )
            return await engine.intelligent_search(args.query, options)
        if args.command == "stats":
            return await engine.get_project_stats(args.project)
        if args.command == "sync":
            return await engine.sync_project_context(args.project)
        if args.command == "delete":
            return {"project_id": args.project, "deleted": await engine.delete_project_documents(args.project)}
        raise ValueError(f"Unknown command: {args.command}")
    finally:
        await engine.close()


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        try:
            from importlib.metadata import version

            print(version("loreweave"))
        except Exception:
            print("loreweave")
        return 0

    if not args.command:
        parser.print_help()
        return 0

    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        builder = EngineBuilder.from_env()
        if args.snapshot:
            builder.with_snapshot_path(args.snapshot)
        engine = builder.build()
        result = asyncio.run(_run(engine, args))
    except (LoreweaveError, OSError) as e:
        print(f"error: {e}")
        return 1

    _emit(result)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

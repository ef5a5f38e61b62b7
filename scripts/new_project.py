# scripts/new_project.py
"""Register a project so the batch runner can advance it."""

from __future__ import annotations

import argparse
import asyncio
from pathlib import Path

from serialist.canon.db import dispose_engine
from serialist.canon.store import PostgresStore
from serialist.core.logging import get_logger, init_logging
from serialist.models import Project

logger = get_logger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create or replace a project record.")
    parser.add_argument("project_id")
    parser.add_argument("--title", required=True)
    parser.add_argument("--genre", default="")
    parser.add_argument("--protagonist", default="")
    parser.add_argument("--world", default="", help="short world description")
    parser.add_argument("--outline-file", type=Path, default=None, help="master outline text file")
    parser.add_argument("--chapters", type=int, default=1000, help="planned chapter count")
    parser.add_argument("--target-words", type=int, default=None)
    return parser.parse_args(argv)


async def create(args: argparse.Namespace) -> None:
    project = Project(
        id=args.project_id,
        title=args.title,
        genre=args.genre,
        protagonist_name=args.protagonist,
        world_description=args.world,
        master_outline=args.outline_file.read_text(encoding="utf-8") if args.outline_file else "",
        total_planned_chapters=args.chapters,
        target_word_count=args.target_words,
    )
    try:
        await PostgresStore().upsert("projects", [project.model_dump()], conflict=("id",))
    finally:
        await dispose_engine()
    logger.info("Project %s ready (%s planned chapters)", project.id, project.total_planned_chapters)


if __name__ == "__main__":  # pragma: no cover - CLI execution
    init_logging()
    asyncio.run(create(parse_args()))

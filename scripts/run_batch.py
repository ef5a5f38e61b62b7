# scripts/run_batch.py
"""Generate chapters for one or more projects from the command line.

Example::

    python scripts/run_batch.py novel-a novel-b --chapters 5 --workers 2
"""

from __future__ import annotations

import argparse
import asyncio
import sys

from serialist.canon.db import dispose_engine
from serialist.canon.store import PostgresStore
from serialist.core.embedding import Embedder
from serialist.core.llm import LLMClient
from serialist.core.logging import get_logger, init_logging
from serialist.core.queue import BatchRunner, BatchTask
from serialist.langgraph import Orchestrator

logger = get_logger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Advance serialized projects chapter by chapter.")
    parser.add_argument("projects", nargs="+", help="project ids to advance")
    parser.add_argument("--chapters", type=int, default=1, help="chapters per project (default 1)")
    parser.add_argument("--workers", type=int, default=None, help="concurrent projects")
    parser.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING or ERROR")
    return parser.parse_args(argv)


async def run(args: argparse.Namespace) -> int:
    orchestrator = Orchestrator(PostgresStore(), LLMClient(), embedder=Embedder())

    async def advance(project_id: str) -> int:
        result = await orchestrator.advance_one_chapter(project_id)
        return result.chapter_number

    runner = BatchRunner(advance, workers=args.workers)
    try:
        reports = await runner.run([BatchTask(p, args.chapters) for p in args.projects])
        await orchestrator.drain()
    finally:
        await dispose_engine()

    for report in reports:
        status = "ok" if report.ok else f"FAILED: {report.reason}"
        logger.info("%s ch.%s %s", report.project_id, report.chapter_number, status)
    return 0 if all(r.ok for r in reports) else 1


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    init_logging(level=args.log_level)
    return asyncio.run(run(args))


if __name__ == "__main__":  # pragma: no cover - CLI execution
    sys.exit(main())

# src/serialist/core/queue.py
"""Worker pool that advances many projects concurrently.

Workers claim task indices from one shared counter, so each task runs exactly
once no matter how many workers there are. A task advances one project by a
number of chapters and stops at its first failure; other tasks keep going.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass

from serialist.config import config
from serialist.core.logs import EventType, get_event_logger, log_message
from serialist.errors import SerialistError

AdvanceFn = Callable[[str], Awaitable[int]]


@dataclass(frozen=True)
class BatchTask:
    project_id: str
    chapters: int = 1


@dataclass(frozen=True)
class BatchReport:
    project_id: str
    chapter_number: int | None
    ok: bool
    reason: str = ""


class BatchRunner:
    """Fixed-size worker pool over a list of :class:`BatchTask`.

    ``advance`` generates the next chapter of a project and returns its number.
    """

    def __init__(self, advance: AdvanceFn, *, workers: int | None = None) -> None:
        self.advance = advance
        self.max_workers = max(1, workers or config.concurrency.batch_workers)
        self.event_logger = get_event_logger()
        self._next = 0
        self._claim_lock = asyncio.Lock()

    async def _claim(self, count: int) -> int | None:
        async with self._claim_lock:
            if self._next >= count:
                return None
            index = self._next
            self._next += 1
            return index

    async def _run_task(self, worker: int, task: BatchTask) -> list[BatchReport]:
        reports = []
        for _ in range(task.chapters):
            try:
                number = await self.advance(task.project_id)
            except SerialistError as exc:
                self.event_logger.error(
                    f"Worker {worker}: {task.project_id} stopped: {exc}",
                    event_type=EventType.BATCH,
                    component="batch",
                    project_id=task.project_id,
                    chapter_number=getattr(exc, "chapter_number", None),
                    error_type=type(exc).__name__,
                )
                reports.append(
                    BatchReport(task.project_id, getattr(exc, "chapter_number", None), False, str(exc))
                )
                break
            reports.append(BatchReport(task.project_id, number, True))
        return reports

    async def _worker(self, worker: int, tasks: Sequence[BatchTask], out: list[list[BatchReport]]) -> None:
        while (index := await self._claim(len(tasks))) is not None:
            out[index] = await self._run_task(worker, tasks[index])

    async def run(self, tasks: Sequence[BatchTask]) -> list[BatchReport]:
        """Run every task once and return the reports in task order."""
        self._next = 0
        out: list[list[BatchReport]] = [[] for _ in tasks]
        workers = min(self.max_workers, len(tasks))
        log_message(f"Batch: {len(tasks)} task(s) on {workers} worker(s)")
        await asyncio.gather(*(self._worker(i, tasks, out) for i in range(workers)))
        reports = [r for group in out for r in group]
        ok = sum(1 for r in reports if r.ok)
        self.event_logger.info(
            f"Batch complete: {ok}/{len(reports)} chapter(s) generated",
            event_type=EventType.BATCH,
            component="batch",
            generated=ok,
            failed=len(reports) - ok,
        )
        return reports


__all__ = ["BatchReport", "BatchRunner", "BatchTask"]

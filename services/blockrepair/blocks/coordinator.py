"""Fan block transitions out over a fixed pool of workers.

At most `concurrency` blocks are in flight at once because only that many
workers exist; the rest wait in the queue. Each worker owns one block from
inspection to final outcome. The run returns only after every worker has
exited.

Setting the optional stop event (SIGINT/SIGTERM in the CLI) stops workers
from taking new blocks. Blocks already in hand are finished so no block is
left half-rotated; blocks never started are reported as such.
"""

from __future__ import annotations

import asyncio
from collections import Counter
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field

from blockrepair.blocks.discovery import BlockRef
from blockrepair.blocks.transition import BlockResult, Outcome
from blockrepair.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_CONCURRENCY = 10

Transition = Callable[[BlockRef], Awaitable[BlockResult]]


@dataclass
class RunReport:
    """Outcome of every processed block plus those never started."""

    results: list[BlockResult] = field(default_factory=list)
    not_started: list[BlockRef] = field(default_factory=list)

    def counts(self) -> dict[str, int]:
        tally = Counter(r.outcome for r in self.results)
        return {str(outcome): tally.get(outcome, 0) for outcome in Outcome}

    @property
    def failed(self) -> list[BlockResult]:
        return [r for r in self.results if r.outcome == Outcome.FAILED]

    @property
    def interrupted(self) -> bool:
        return bool(self.not_started)


async def run_transitions(
    blocks: Iterable[BlockRef],
    transition: Transition,
    *,
    concurrency: int = DEFAULT_CONCURRENCY,
    stop: asyncio.Event | None = None,
) -> RunReport:
    """Run transition(block) for every block with bounded parallelism."""
    if concurrency < 1:
        raise ValueError("concurrency must be at least 1")

    queue: asyncio.Queue[BlockRef] = asyncio.Queue()
    for block in blocks:
        queue.put_nowait(block)
    total = queue.qsize()
    report = RunReport()

    async def worker(worker_id: int) -> None:
        while not (stop is not None and stop.is_set()):
            try:
                block = queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            try:
                result = await transition(block)
            except Exception as e:
                logger.exception(
                    "Unexpected error in block transition",
                    block=block.block_id,
                    worker=worker_id,
                )
                result = BlockResult(block, Outcome.FAILED, detail=f"unexpected error: {e}")
            report.results.append(result)

    logger.info("Processing blocks", blocks=total, concurrency=concurrency)
    workers = [asyncio.create_task(worker(i)) for i in range(min(concurrency, total))]
    await asyncio.gather(*workers)

    while not queue.empty():
        report.not_started.append(queue.get_nowait())
    if report.not_started:
        logger.warning(
            "Run stopped before all blocks were processed",
            processed=len(report.results),
            not_started=len(report.not_started),
        )

    return report

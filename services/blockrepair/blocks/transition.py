"""Header transition engine: move one block's header toward the run's target.

Per block, by run mode:

    any         ROTATED_OUT          -> SKIPPED (already rotated, idempotent)
    rotate      PRESENT              -> copy to .old, then delete -> ROTATED
    rotate      MISSING              -> SKIPPED (nothing to invalidate)
    synthesize  PRESENT              -> SKIPPED (header exists)
    synthesize  MISSING + chunks     -> put sparse, then canonical -> SYNTHESIZED
    synthesize  NO_CHUNKS            -> SKIPPED (block not ready)

Rotation is not atomic. The delete is only issued once the copy has
returned without error, so the header is always reachable under at least one
key. If the delete fails after a good copy the block ends FAILED with both
keys present; the compactor tolerates a stale .old object.

Synthesis writes the sparse companion first so that a canonical header is
only ever visible next to its companion.

Every mutation goes through the RetryPolicy, except that a copy whose source
has vanished is not retried. Storage errors never escape transition(); they
become a FAILED result for that block.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from blockrepair.blocks.discovery import BlockRef
from blockrepair.blocks.header import HEADER_CONTENT_TYPE, derive_header
from blockrepair.blocks.inspector import HeaderState, Inspection, inspect_block
from blockrepair.blocks.retry import RetryExhaustedError, RetryPolicy
from blockrepair.config import RunMode
from blockrepair.logging_config import get_logger
from blockrepair.storage.keys import (
    index_header_key,
    rotated_index_header_key,
    sparse_index_header_key,
)
from blockrepair.storage.protocol import ObjectNotFoundError, ObjectStore, ObjectStoreError

logger = get_logger(__name__)


class Outcome(StrEnum):
    SKIPPED = "skipped"
    SYNTHESIZED = "synthesized"
    ROTATED = "rotated"
    FAILED = "failed"


@dataclass(frozen=True)
class BlockResult:
    """Terminal outcome of one block's transition."""

    block: BlockRef
    outcome: Outcome
    state: HeaderState | None = None
    detail: str = ""
    dry_run: bool = False


class HeaderTransitionEngine:
    """Inspects a block and applies the state change the run mode calls for."""

    def __init__(
        self,
        store: ObjectStore,
        *,
        mode: RunMode = RunMode.SYNTHESIZE,
        retry: RetryPolicy | None = None,
        dry_run: bool = False,
    ) -> None:
        self._store = store
        self._mode = mode
        self._retry = retry or RetryPolicy()
        # A copy source that is gone will not come back; fail the block at once.
        self._copy_retry = self._retry.excluding(ObjectNotFoundError)
        self._dry_run = dry_run

    @property
    def mode(self) -> RunMode:
        return self._mode

    async def transition(self, block: BlockRef) -> BlockResult:
        log = logger.bind(block=block.block_id, prefix=block.prefix)

        try:
            inspection = await inspect_block(
                self._store, block, need_chunks=self._mode == RunMode.SYNTHESIZE
            )
        except ObjectStoreError as e:
            result = BlockResult(block, Outcome.FAILED, detail=f"inspection failed: {e}")
        else:
            result = await self._apply(inspection)

        if result.outcome == Outcome.FAILED:
            log.error("Block transition failed", state=result.state, detail=result.detail)
        else:
            log.info(
                "Block transition finished",
                outcome=str(result.outcome),
                state=result.state,
                detail=result.detail,
                dry_run=result.dry_run,
            )
        return result

    async def _apply(self, inspection: Inspection) -> BlockResult:
        block, state = inspection.block, inspection.state

        if state == HeaderState.ROTATED_OUT:
            return self._skip(block, state, "header already rotated out")

        if self._mode == RunMode.ROTATE:
            if state == HeaderState.PRESENT:
                return await self._rotate(block)
            return self._skip(block, state, "no header to rotate")

        if state == HeaderState.PRESENT:
            return self._skip(block, state, "header already present")
        if state == HeaderState.NO_CHUNKS:
            return self._skip(block, state, "no chunks found")
        return await self._synthesize(inspection)

    def _skip(self, block: BlockRef, state: HeaderState, detail: str) -> BlockResult:
        return BlockResult(block, Outcome.SKIPPED, state=state, detail=detail)

    async def _rotate(self, block: BlockRef) -> BlockResult:
        state = HeaderState.PRESENT
        source = index_header_key(block.prefix)
        dest = rotated_index_header_key(block.prefix)

        if self._dry_run:
            return BlockResult(
                block, Outcome.ROTATED, state=state, detail=f"would move to {dest}", dry_run=True
            )

        try:
            await self._copy_retry.run("copy index-header", lambda: self._store.copy(source, dest))
        except (RetryExhaustedError, ObjectStoreError) as e:
            return BlockResult(
                block, Outcome.FAILED, state=state, detail=f"{e}; index-header left in place"
            )

        # Only reached after the copy returned without error.
        try:
            await self._retry.run("delete index-header", lambda: self._store.delete(source))
        except (RetryExhaustedError, ObjectStoreError) as e:
            return BlockResult(
                block,
                Outcome.FAILED,
                state=state,
                detail=f"{e}; copy succeeded, index-header and {dest} both present",
            )

        return BlockResult(block, Outcome.ROTATED, state=state, detail=f"moved to {dest}")

    async def _synthesize(self, inspection: Inspection) -> BlockResult:
        block, state = inspection.block, inspection.state
        header = derive_header(block.block_id, inspection.chunks)
        summary = (
            f"{header.num_chunks} chunks, {header.size_bytes} bytes, "
            f"time {header.min_time}..{header.max_time}"
        )

        if self._dry_run:
            return BlockResult(
                block,
                Outcome.SYNTHESIZED,
                state=state,
                detail=f"would write {summary}",
                dry_run=True,
            )

        sparse_data = header.sparse().to_json_bytes()
        header_data = header.to_json_bytes()
        try:
            await self._retry.run(
                "put sparse-index-header",
                lambda: self._store.put(
                    sparse_index_header_key(block.prefix),
                    sparse_data,
                    content_type=HEADER_CONTENT_TYPE,
                ),
            )
            await self._retry.run(
                "put index-header",
                lambda: self._store.put(
                    index_header_key(block.prefix),
                    header_data,
                    content_type=HEADER_CONTENT_TYPE,
                ),
            )
        except (RetryExhaustedError, ObjectStoreError) as e:
            return BlockResult(block, Outcome.FAILED, state=state, detail=str(e))

        return BlockResult(block, Outcome.SYNTHESIZED, state=state, detail=summary)

"""Header inspection for a single block."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum

from blockrepair.blocks.discovery import BlockRef
from blockrepair.storage.keys import chunks_prefix, index_header_key, rotated_index_header_key
from blockrepair.storage.protocol import ObjectMeta, ObjectStore


class HeaderState(StrEnum):
    MISSING = "missing"
    PRESENT = "present"
    ROTATED_OUT = "rotated_out"
    NO_CHUNKS = "no_chunks"


@dataclass(frozen=True)
class Inspection:
    """What was found for one block."""

    block: BlockRef
    state: HeaderState
    chunks: list[ObjectMeta] = field(default_factory=list)


async def inspect_header(store: ObjectStore, block: BlockRef) -> HeaderState:
    """Probe the canonical header, and the rotated one when it is absent.

    Not-found is a normal answer. Any other storage error propagates as
    ObjectStoreError and fails this block only.
    """
    if await store.exists(index_header_key(block.prefix)):
        return HeaderState.PRESENT
    if await store.exists(rotated_index_header_key(block.prefix)):
        return HeaderState.ROTATED_OUT
    return HeaderState.MISSING


async def list_chunks(store: ObjectStore, block: BlockRef) -> list[ObjectMeta]:
    """Every object under the block's chunks/ sub-prefix."""
    return await store.list_prefix(chunks_prefix(block.prefix))


async def inspect_block(store: ObjectStore, block: BlockRef, *, need_chunks: bool) -> Inspection:
    """Header state plus, for header-less blocks when asked, the chunk listing.

    A block without a header and without chunks is reported as NO_CHUNKS:
    it is not ready yet and must be skipped rather than failed.
    """
    state = await inspect_header(store, block)
    if state != HeaderState.MISSING or not need_chunks:
        return Inspection(block=block, state=state)

    chunks = await list_chunks(store, block)
    if not chunks:
        return Inspection(block=block, state=HeaderState.NO_CHUNKS)
    return Inspection(block=block, state=state, chunks=chunks)

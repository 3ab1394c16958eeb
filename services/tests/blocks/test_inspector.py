"""Tests for header inspection."""

import pytest

from blockrepair.blocks.discovery import BlockRef
from blockrepair.blocks.inspector import HeaderState, inspect_block, inspect_header, list_chunks
from blockrepair.storage.protocol import ObjectStoreError

BLOCK = BlockRef.from_prefix("anonymous/01FZXYZABCDEF12/")


class TestInspectHeader:
    async def test_present(self, memory_store) -> None:
        memory_store.add(f"{BLOCK.prefix}index-header", b"{}")
        assert await inspect_header(memory_store, BLOCK) == HeaderState.PRESENT
        assert memory_store.calls_to("exists") == [f"{BLOCK.prefix}index-header"]

    async def test_present_wins_over_stale_old(self, memory_store) -> None:
        memory_store.add(f"{BLOCK.prefix}index-header", b"{}")
        memory_store.add(f"{BLOCK.prefix}index-header.old", b"{}")
        assert await inspect_header(memory_store, BLOCK) == HeaderState.PRESENT

    async def test_rotated_out(self, memory_store) -> None:
        memory_store.add(f"{BLOCK.prefix}index-header.old", b"{}")
        assert await inspect_header(memory_store, BLOCK) == HeaderState.ROTATED_OUT

    async def test_missing(self, memory_store) -> None:
        memory_store.add(f"{BLOCK.prefix}chunks/000001", b"c")
        assert await inspect_header(memory_store, BLOCK) == HeaderState.MISSING

    async def test_probe_error_propagates_and_is_not_retried(self, memory_store) -> None:
        memory_store.fail_on("exists")
        with pytest.raises(ObjectStoreError):
            await inspect_header(memory_store, BLOCK)
        assert len(memory_store.calls_to("exists")) == 1


class TestInspectBlock:
    async def test_lists_chunks_when_missing(self, memory_store) -> None:
        memory_store.add(f"{BLOCK.prefix}chunks/000001", b"c1")
        memory_store.add(f"{BLOCK.prefix}chunks/000002", b"c2")
        memory_store.add(f"{BLOCK.prefix}meta.json", b"{}")

        inspection = await inspect_block(memory_store, BLOCK, need_chunks=True)

        assert inspection.state == HeaderState.MISSING
        assert [c.key for c in inspection.chunks] == [
            f"{BLOCK.prefix}chunks/000001",
            f"{BLOCK.prefix}chunks/000002",
        ]

    async def test_no_chunks(self, memory_store) -> None:
        memory_store.add(f"{BLOCK.prefix}meta.json", b"{}")

        inspection = await inspect_block(memory_store, BLOCK, need_chunks=True)

        assert inspection.state == HeaderState.NO_CHUNKS
        assert inspection.chunks == []

    async def test_chunks_not_listed_when_not_needed(self, memory_store) -> None:
        inspection = await inspect_block(memory_store, BLOCK, need_chunks=False)

        assert inspection.state == HeaderState.MISSING
        assert memory_store.calls_to("list_prefix") == []

    async def test_chunks_not_listed_when_header_present(self, memory_store) -> None:
        memory_store.add(f"{BLOCK.prefix}index-header", b"{}")

        inspection = await inspect_block(memory_store, BLOCK, need_chunks=True)

        assert inspection.state == HeaderState.PRESENT
        assert memory_store.calls_to("list_prefix") == []

    async def test_list_chunks_scopes_to_chunks_dir(self, memory_store) -> None:
        memory_store.add(f"{BLOCK.prefix}chunks/000001", b"c1")
        memory_store.add("anonymous/01FZXYZABCDEF12-other/chunks/000001", b"c")

        chunks = await list_chunks(memory_store, BLOCK)

        assert [c.key for c in chunks] == [f"{BLOCK.prefix}chunks/000001"]

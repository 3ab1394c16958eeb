"""Index header payloads synthesized from a block's chunk listing.

The compactor owns the real binary header format; what we write is the JSON
placeholder it accepts until it regenerates the header itself.
"""

from collections.abc import Sequence
from datetime import UTC, datetime, timedelta

from pydantic import BaseModel, ConfigDict, Field, model_validator

from blockrepair.storage.protocol import ObjectMeta

HEADER_CONTENT_TYPE = "application/json"

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


class SparseIndexHeader(BaseModel):
    """Reduced header: block id and time range only."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    ulid: str
    min_time: int = Field(alias="minTime", description="Earliest chunk time, epoch ms")
    max_time: int = Field(alias="maxTime", description="Latest chunk time, epoch ms")

    @model_validator(mode="after")
    def _ordered(self) -> "SparseIndexHeader":
        if self.min_time > self.max_time:
            raise ValueError(f"minTime {self.min_time} is after maxTime {self.max_time}")
        return self

    def to_json_bytes(self) -> bytes:
        return self.model_dump_json(by_alias=True).encode()


class IndexHeader(SparseIndexHeader):
    """Full header placeholder written to <block>/index-header."""

    num_chunks: int = Field(alias="numChunks", ge=0)
    size_bytes: int = Field(alias="sizeBytes", ge=0)

    def sparse(self) -> SparseIndexHeader:
        return SparseIndexHeader(ulid=self.ulid, min_time=self.min_time, max_time=self.max_time)


def chunk_time_ms(chunk: ObjectMeta) -> int:
    """Timestamp of a chunk in epoch milliseconds, taken from its listing entry."""
    return _to_epoch_ms(chunk.last_modified)


def _to_epoch_ms(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return (value - _EPOCH) // timedelta(milliseconds=1)


def derive_header(block_id: str, chunks: Sequence[ObjectMeta]) -> IndexHeader:
    """Build a header from the chunk objects of one block.

    Raises:
        ValueError: If chunks is empty; a block without chunks gets no header.
    """
    if not chunks:
        raise ValueError(f"Block {block_id} has no chunks to derive a header from")

    times = [chunk_time_ms(c) for c in chunks]
    return IndexHeader(
        ulid=block_id,
        min_time=min(times),
        max_time=max(times),
        num_chunks=len(chunks),
        size_bytes=sum(c.size_bytes for c in chunks),
    )

"""Block discovery: find every block prefix below a namespace root.

Block directories can sit at any depth and share the key space with
unrelated directories, so a directory is a block only when its final path
segment matches the block id pattern. Nothing about the bucket layout is
trusted beyond that.

Two strategies with identical results:

walk
    Delimiter listing, one level at a time, from an explicit worklist.
    Matching children are accepted and not descended into.
flat
    One non-delimited listing of every key. For each key the shallowest
    matching ancestor directory is accepted, which is exactly where the
    walk would have stopped.

Both apply the same depth cap: a non-matching directory at max_depth that
still has sub-directories fails discovery instead of silently truncating.
"""

from __future__ import annotations

import re
from collections import deque
from dataclasses import dataclass

from blockrepair.config import DEFAULT_BLOCK_ID_PATTERN, DiscoveryStrategy
from blockrepair.logging_config import get_logger
from blockrepair.storage.protocol import ObjectStore, ObjectStoreError

logger = get_logger(__name__)

DELIMITER = "/"
DEFAULT_MAX_DEPTH = 256


class DiscoveryError(Exception):
    """Discovery could not produce a complete, trustworthy block list."""


@dataclass(frozen=True, order=True)
class BlockRef:
    """A discovered block: its id and the prefix holding its objects."""

    prefix: str
    block_id: str

    @classmethod
    def from_prefix(cls, prefix: str) -> BlockRef:
        return cls(prefix=prefix, block_id=final_segment(prefix).rstrip(DELIMITER))


@dataclass(frozen=True)
class BlockMatcher:
    """Decides whether a directory prefix names a block."""

    pattern: re.Pattern[str]

    @classmethod
    def from_pattern(cls, pattern: str = DEFAULT_BLOCK_ID_PATTERN) -> BlockMatcher:
        return cls(pattern=re.compile(pattern))

    def matches(self, dir_prefix: str) -> bool:
        """True if the final segment of dir_prefix (trailing "/" included) is a block id."""
        return self.pattern.fullmatch(final_segment(dir_prefix)) is not None


def final_segment(dir_prefix: str) -> str:
    """Last segment of a directory prefix, keeping its trailing delimiter.

    >>> final_segment("tenant/01FZXYZABCDEF12/")
    '01FZXYZABCDEF12/'
    """
    idx = dir_prefix.rstrip(DELIMITER).rfind(DELIMITER)
    return dir_prefix[idx + 1 :]


def normalize_root(root: str) -> str:
    """Strip leading slashes and make a non-empty root end with the delimiter."""
    root = root.lstrip(DELIMITER)
    if root and not root.endswith(DELIMITER):
        root += DELIMITER
    return root


def _depth_exceeded(prefix: str, max_depth: int) -> DiscoveryError:
    return DiscoveryError(
        f"Directory {prefix!r} is {max_depth} levels deep and still has "
        "sub-directories; raise discovery.max_depth to search deeper"
    )


async def walk_blocks(
    store: ObjectStore,
    root: str,
    matcher: BlockMatcher,
    max_depth: int = DEFAULT_MAX_DEPTH,
) -> set[str]:
    """Delimiter-bounded breadth-first walk. Returns block prefixes."""
    found: set[str] = set()
    pending: deque[tuple[str, int]] = deque([(root, 0)])
    listings = 0

    while pending:
        prefix, depth = pending.popleft()
        children = await store.list_common_prefixes(prefix, DELIMITER)
        listings += 1
        if children and depth >= max_depth:
            raise _depth_exceeded(prefix, max_depth)

        for child in children:
            if matcher.matches(child):
                found.add(child)
            else:
                pending.append((child, depth + 1))

    logger.debug("Walk finished", root=root, listings=listings, blocks=len(found))
    return found


async def scan_blocks(
    store: ObjectStore,
    root: str,
    matcher: BlockMatcher,
    max_depth: int = DEFAULT_MAX_DEPTH,
) -> set[str]:
    """Single flat listing; derive block prefixes from key ancestry."""
    found: set[str] = set()
    objects = await store.list_prefix(root)

    for meta in objects:
        if not meta.key.startswith(root):
            continue
        directories = meta.key[len(root) :].split(DELIMITER)[:-1]
        prefix = root
        for depth, segment in enumerate(directories, start=1):
            if depth > max_depth:
                raise _depth_exceeded(prefix, max_depth)
            prefix = f"{prefix}{segment}{DELIMITER}"
            if matcher.matches(prefix):
                found.add(prefix)
                break

    logger.debug("Scan finished", root=root, objects=len(objects), blocks=len(found))
    return found


async def discover_blocks(
    store: ObjectStore,
    root: str = "",
    *,
    strategy: DiscoveryStrategy = DiscoveryStrategy.WALK,
    matcher: BlockMatcher | None = None,
    max_depth: int = DEFAULT_MAX_DEPTH,
) -> list[BlockRef]:
    """Find every block below root.

    Returns:
        Block refs sorted by prefix, without duplicates.

    Raises:
        DiscoveryError: On any listing failure or when the depth cap is hit.
            A partial result is never returned.
    """
    root = normalize_root(root)
    matcher = matcher or BlockMatcher.from_pattern()

    try:
        if strategy == DiscoveryStrategy.FLAT:
            prefixes = await scan_blocks(store, root, matcher, max_depth)
        else:
            prefixes = await walk_blocks(store, root, matcher, max_depth)
    except ObjectStoreError as e:
        raise DiscoveryError(f"Listing failed under {root!r}: {e}") from e

    blocks = sorted(BlockRef.from_prefix(p) for p in prefixes)
    logger.info("Discovery complete", strategy=str(strategy), root=root, blocks=len(blocks))
    return blocks

"""
Key path helpers for block objects.

All helpers take a block prefix ending with "/" and return keys relative to
the storage backend's configured prefix.
"""

INDEX_HEADER = "index-header"
SPARSE_INDEX_HEADER = "sparse-index-header"
ROTATED_SUFFIX = ".old"
CHUNKS_DIR = "chunks/"


def index_header_key(block_prefix: str) -> str:
    """Key for a block's canonical index header."""
    return f"{block_prefix}{INDEX_HEADER}"


def sparse_index_header_key(block_prefix: str) -> str:
    """Key for a block's sparse index header companion."""
    return f"{block_prefix}{SPARSE_INDEX_HEADER}"


def rotated_index_header_key(block_prefix: str) -> str:
    """Key a rotated-out index header is moved to."""
    return f"{block_prefix}{INDEX_HEADER}{ROTATED_SUFFIX}"


def chunks_prefix(block_prefix: str) -> str:
    """Prefix under which a block's chunk objects live."""
    return f"{block_prefix}{CHUNKS_DIR}"

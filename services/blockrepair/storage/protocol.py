"""
Bucket access contract for blockrepair.

Discovery, inspection and header transitions only ever talk to an
ObjectStore. Backends decide what a failure means where it happens:

- a missing key is ObjectNotFoundError, or False from exists();
- refused credentials are ObjectStorePermissionError;
- anything else (throttling, 5xx, connection loss) is ObjectStoreError.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class ObjectMeta:
    """One object as reported by a listing or a head request.

    For chunk objects, last_modified and size_bytes are what a synthesized
    index header is derived from.
    """

    key: str
    size_bytes: int
    content_type: str
    etag: str
    last_modified: datetime
    metadata: dict[str, str] = field(default_factory=dict)


class ObjectStoreError(Exception):
    """A bucket operation failed."""


class ObjectNotFoundError(ObjectStoreError):
    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"Object not found: {key}")


class ObjectStorePermissionError(ObjectStoreError):
    """Credentials were refused for the key or bucket."""


@runtime_checkable
class ObjectStore(Protocol):
    """Async bucket operations, satisfied structurally by each backend.

    Keys are relative to the backend's own root or prefix. Listings follow
    pagination to the end before returning.
    """

    async def put(
        self,
        key: str,
        data: bytes,
        content_type: str = "application/octet-stream",
        metadata: dict[str, str] | None = None,
    ) -> ObjectMeta:
        """Write data under key, replacing any existing object."""
        ...

    async def get(self, key: str) -> bytes:
        """Read an object. Raises ObjectNotFoundError if it is absent."""
        ...

    async def copy(self, source_key: str, dest_key: str) -> None:
        """Copy source_key to dest_key inside the bucket, overwriting dest_key.

        Raises:
            ObjectNotFoundError: If source_key does not exist.
        """
        ...

    async def delete(self, key: str) -> None:
        """Remove an object. Deleting a missing key is not an error."""
        ...

    async def exists(self, key: str) -> bool:
        """True if key exists, False on a definite not-found.

        Raises:
            ObjectStoreError: When existence could not be determined.
        """
        ...

    async def head(self, key: str) -> ObjectMeta:
        """Metadata for one object. Raises ObjectNotFoundError if absent."""
        ...

    async def list_prefix(self, prefix: str) -> list[ObjectMeta]:
        """Every object whose key starts with prefix, at any depth."""
        ...

    async def list_common_prefixes(self, prefix: str, delimiter: str = "/") -> list[str]:
        """Immediate child directories of prefix.

        Keys below prefix are grouped at the next delimiter. Each returned
        entry is a full prefix ending with delimiter; files directly under
        prefix are not included.
        """
        ...

    async def close(self) -> None: ...

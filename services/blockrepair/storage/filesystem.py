"""
Filesystem storage backend for blockrepair.

Treats a local directory as a bucket: a key is a relative path below root_dir.
Used for dry runs against a synced copy of a bucket and in CI, where no S3
endpoint is available.

Content type and user metadata live in a `<file>.meta` sidecar (first line
content type, then key=value lines). Sidecars are invisible to listings.

OSError never leaves this module: a missing addressed key is
ObjectNotFoundError, anything else (including a file vanishing mid-listing)
is ObjectStoreError.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager, suppress
from datetime import UTC, datetime
from pathlib import Path

import aiofiles
import aiofiles.os

from blockrepair.logging_config import get_logger
from blockrepair.storage.protocol import (
    ObjectMeta,
    ObjectNotFoundError,
    ObjectStoreError,
)

logger = get_logger(__name__)

META_SUFFIX = ".meta"
DEFAULT_CONTENT_TYPE = "application/octet-stream"


def _sidecar(path: Path) -> Path:
    return path.with_name(path.name + META_SUFFIX)


def _encode_sidecar(content_type: str, metadata: dict[str, str] | None) -> str:
    lines = [content_type]
    lines.extend(f"{k}={v}" for k, v in (metadata or {}).items())
    return "\n".join(lines)


def _decode_sidecar(text: str) -> tuple[str, dict[str, str]]:
    first, *rest = text.strip().split("\n")
    metadata = dict(line.split("=", 1) for line in rest if "=" in line)
    return first or DEFAULT_CONTENT_TYPE, metadata


@contextmanager
def _translate_errors(key: str, *, listing: bool = False) -> Iterator[None]:
    """Re-raise OSError for `key` as store errors.

    While listing, a file that disappears after the directory scan is not a
    missing addressed key, so it becomes a plain ObjectStoreError.
    """
    try:
        yield
    except FileNotFoundError as e:
        if listing:
            raise ObjectStoreError(f"Object vanished while listing {key!r}: {e}") from e
        raise ObjectNotFoundError(key) from e
    except OSError as e:
        raise ObjectStoreError(f"Filesystem error for {key}: {e}") from e


class FilesystemStore:
    """Object store rooted at a local directory."""

    def __init__(self, root_dir: str) -> None:
        self._root = Path(root_dir)
        self._root.mkdir(parents=True, exist_ok=True)
        logger.info("Filesystem store initialized", root_dir=str(self._root))

    @property
    def root_dir(self) -> Path:
        return self._root

    def _path(self, key: str) -> Path:
        """Map a key to a path below root. Keys may not escape the root."""
        rel = Path(key)
        if rel.is_absolute() or ".." in rel.parts:
            raise ObjectStoreError(f"Invalid key: {key}")
        return self._root / rel

    def _existing(self, key: str) -> Path:
        path = self._path(key)
        if not path.is_file():
            raise ObjectNotFoundError(key)
        return path

    def _iter_keys(self, prefix: str) -> Iterator[str]:
        # The prefix need not end on a directory boundary, so search from the
        # closest directory and filter by key.
        start = self._path(prefix) if prefix else self._root
        if not start.is_dir():
            start = start.parent
        if not start.exists():
            return

        for path in sorted(start.rglob("*")):
            if path.is_file() and not path.name.endswith(META_SUFFIX):
                key = path.relative_to(self._root).as_posix()
                if key.startswith(prefix):
                    yield key

    async def _describe(self, key: str, path: Path) -> ObjectMeta:
        """Metadata from stat and the sidecar; the object body is never read.

        The etag is a weak one derived from size and mtime.
        """
        stat = await aiofiles.os.stat(path)

        content_type, metadata = DEFAULT_CONTENT_TYPE, {}
        sidecar = _sidecar(path)
        if sidecar.is_file():
            async with aiofiles.open(sidecar) as f:
                content_type, metadata = _decode_sidecar(await f.read())

        return ObjectMeta(
            key=key,
            size_bytes=stat.st_size,
            content_type=content_type,
            etag=f"{stat.st_size:x}-{stat.st_mtime_ns:x}",
            last_modified=datetime.fromtimestamp(stat.st_mtime, tz=UTC),
            metadata=metadata,
        )

    async def put(
        self,
        key: str,
        data: bytes,
        content_type: str = DEFAULT_CONTENT_TYPE,
        metadata: dict[str, str] | None = None,
    ) -> ObjectMeta:
        path = self._path(key)
        with _translate_errors(key):
            path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(path, "wb") as f:
                await f.write(data)
            async with aiofiles.open(_sidecar(path), "w") as f:
                await f.write(_encode_sidecar(content_type, metadata))

            return await self._describe(key, path)

    async def get(self, key: str) -> bytes:
        path = self._existing(key)
        with _translate_errors(key):
            async with aiofiles.open(path, "rb") as f:
                return await f.read()

    async def copy(self, source_key: str, dest_key: str) -> None:
        source = await self.head(source_key)
        await self.put(
            dest_key,
            await self.get(source_key),
            content_type=source.content_type,
            metadata=source.metadata or None,
        )

    async def delete(self, key: str) -> None:
        path = self._path(key)
        with _translate_errors(key):
            for target in (path, _sidecar(path)):
                if target.is_file():
                    # Another writer may remove it between the check and here.
                    with suppress(FileNotFoundError):
                        await aiofiles.os.remove(target)

    async def exists(self, key: str) -> bool:
        return self._path(key).is_file()

    async def head(self, key: str) -> ObjectMeta:
        path = self._existing(key)
        with _translate_errors(key):
            return await self._describe(key, path)

    async def list_prefix(self, prefix: str) -> list[ObjectMeta]:
        with _translate_errors(prefix, listing=True):
            return [
                await self._describe(key, self._root / key) for key in self._iter_keys(prefix)
            ]

    async def list_common_prefixes(self, prefix: str, delimiter: str = "/") -> list[str]:
        # Derived from keys so that empty directories never show up, as in S3.
        children: set[str] = set()
        with _translate_errors(prefix, listing=True):
            for key in self._iter_keys(prefix):
                rest = key[len(prefix) :]
                idx = rest.find(delimiter)
                if idx >= 0:
                    children.add(prefix + rest[: idx + len(delimiter)])
        return sorted(children)

    async def close(self) -> None:
        pass

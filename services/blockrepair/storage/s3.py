"""
S3 storage backend for blockrepair.

Talks to AWS or any S3-compatible endpoint (MinIO, Ceph RGW) through aioboto3.
Self-hosted endpoints usually need path-style addressing, so it is the
default. Without static keys the SDK credential chain is used.

Every botocore failure leaves this module as an ObjectStoreError subclass;
callers never see ClientError.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any

import aioboto3
from aiobotocore.config import AioConfig
from botocore.exceptions import BotoCoreError, ClientError

from blockrepair.logging_config import get_logger
from blockrepair.storage.protocol import (
    ObjectMeta,
    ObjectNotFoundError,
    ObjectStoreError,
    ObjectStorePermissionError,
)

logger = get_logger(__name__)

NOT_FOUND_CODES = frozenset({"404", "NoSuchKey", "NotFound"})
DENIED_CODES = frozenset({"403", "AccessDenied"})


def _error_code(e: ClientError) -> str:
    return e.response.get("Error", {}).get("Code", "")


@contextmanager
def _translate_errors(key: str, *, missing_ok: bool = False) -> Iterator[None]:
    """Re-raise botocore errors for `key` as store errors."""
    try:
        yield
    except ClientError as e:
        code = _error_code(e)
        if code in NOT_FOUND_CODES:
            if missing_ok:
                return
            raise ObjectNotFoundError(key) from e
        if code in DENIED_CODES:
            raise ObjectStorePermissionError(f"Access denied for {key}: {e}") from e
        raise ObjectStoreError(f"S3 error for {key}: {e}") from e
    except BotoCoreError as e:
        raise ObjectStoreError(f"S3 request for {key} failed: {e}") from e


def _etag(response: dict[str, Any]) -> str:
    return response.get("ETag", "").strip('"')


class S3Store:
    """Object store over one bucket, optionally scoped to a key prefix."""

    def __init__(
        self,
        bucket: str,
        region: str = "us-east-1",
        prefix: str = "",
        endpoint_url: str = "",
        access_key: str = "",
        secret_key: str = "",
        path_style: bool = True,
    ) -> None:
        self._bucket = bucket
        self._region = region
        self._prefix = prefix.strip("/")
        self._endpoint_url = endpoint_url or None
        self._addressing_style = "path" if path_style else "auto"

        credentials: dict[str, str] = {}
        if access_key and secret_key:
            credentials = {"aws_access_key_id": access_key, "aws_secret_access_key": secret_key}
        self._session = aioboto3.Session(region_name=region, **credentials)

        self._client: Any = None
        self._client_lock = asyncio.Lock()

    def _full_key(self, key: str) -> str:
        return f"{self._prefix}/{key}" if self._prefix else key

    def _strip_prefix(self, full_key: str) -> str:
        scope = f"{self._prefix}/"
        if self._prefix and full_key.startswith(scope):
            return full_key[len(scope) :]
        return full_key

    async def _get_client(self) -> Any:
        # Workers share one client; the lock keeps them from each opening one.
        async with self._client_lock:
            if self._client is None:
                client_cm = self._session.client(
                    "s3",
                    region_name=self._region,
                    endpoint_url=self._endpoint_url,
                    config=AioConfig(s3={"addressing_style": self._addressing_style}),
                )
                try:
                    self._client = await client_cm.__aenter__()
                except (BotoCoreError, ValueError) as e:
                    raise ObjectStoreError(f"Could not create S3 client: {e}") from e
                logger.info(
                    "S3 client initialized",
                    bucket=self._bucket,
                    endpoint=self._endpoint_url,
                    addressing_style=self._addressing_style,
                )
        return self._client

    async def _pages(self, prefix: str, **params: Any) -> AsyncIterator[dict[str, Any]]:
        client = await self._get_client()
        paginator = client.get_paginator("list_objects_v2")
        with _translate_errors(prefix):
            async for page in paginator.paginate(
                Bucket=self._bucket, Prefix=self._full_key(prefix), **params
            ):
                yield page

    async def put(
        self,
        key: str,
        data: bytes,
        content_type: str = "application/octet-stream",
        metadata: dict[str, str] | None = None,
    ) -> ObjectMeta:
        client = await self._get_client()
        extra = {"Metadata": metadata} if metadata else {}

        with _translate_errors(key):
            response = await client.put_object(
                Bucket=self._bucket,
                Key=self._full_key(key),
                Body=data,
                ContentType=content_type,
                **extra,
            )

        return ObjectMeta(
            key=key,
            size_bytes=len(data),
            content_type=content_type,
            etag=_etag(response),
            last_modified=datetime.now(UTC),
            metadata=metadata or {},
        )

    async def get(self, key: str) -> bytes:
        client = await self._get_client()
        with _translate_errors(key):
            response = await client.get_object(Bucket=self._bucket, Key=self._full_key(key))
            async with response["Body"] as body:
                return await body.read()

    async def copy(self, source_key: str, dest_key: str) -> None:
        client = await self._get_client()
        with _translate_errors(source_key):
            await client.copy_object(
                Bucket=self._bucket,
                Key=self._full_key(dest_key),
                CopySource={"Bucket": self._bucket, "Key": self._full_key(source_key)},
            )

    async def delete(self, key: str) -> None:
        client = await self._get_client()
        with _translate_errors(key, missing_ok=True):
            await client.delete_object(Bucket=self._bucket, Key=self._full_key(key))

    async def exists(self, key: str) -> bool:
        try:
            await self.head(key)
        except ObjectNotFoundError:
            return False
        return True

    async def head(self, key: str) -> ObjectMeta:
        client = await self._get_client()
        with _translate_errors(key):
            response = await client.head_object(Bucket=self._bucket, Key=self._full_key(key))

        return ObjectMeta(
            key=key,
            size_bytes=response.get("ContentLength", 0),
            content_type=response.get("ContentType", "application/octet-stream"),
            etag=_etag(response),
            last_modified=response.get("LastModified") or datetime.now(UTC),
            metadata=response.get("Metadata", {}),
        )

    async def list_prefix(self, prefix: str) -> list[ObjectMeta]:
        # ListObjectsV2 carries no content type; chunk listings never need one.
        return [
            ObjectMeta(
                key=self._strip_prefix(obj["Key"]),
                size_bytes=obj.get("Size", 0),
                content_type="application/octet-stream",
                etag=_etag(obj),
                last_modified=obj.get("LastModified") or datetime.now(UTC),
            )
            async for page in self._pages(prefix)
            for obj in page.get("Contents", [])
        ]

    async def list_common_prefixes(self, prefix: str, delimiter: str = "/") -> list[str]:
        return [
            self._strip_prefix(cp["Prefix"])
            async for page in self._pages(prefix, Delimiter=delimiter)
            for cp in page.get("CommonPrefixes", [])
            if cp.get("Prefix")
        ]

    async def close(self) -> None:
        if self._client is None:
            return
        client, self._client = self._client, None
        await client.__aexit__(None, None, None)
        logger.info("S3 client closed", bucket=self._bucket)

"""
Storage backend fixtures.

S3 fixtures run against LocalStack and skip unless LOCALSTACK_ENDPOINT points
at a healthy instance.
"""

from __future__ import annotations

import os
import urllib.error
import urllib.request
from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from botocore.exceptions import ClientError

from blockrepair.storage.filesystem import FilesystemStore
from blockrepair.storage.s3 import S3Store


def _localstack_endpoint() -> str | None:
    endpoint = os.environ.get("LOCALSTACK_ENDPOINT", "")
    if not endpoint:
        return None
    # The env var alone is not enough: compose sets it before LocalStack is up.
    try:
        req = urllib.request.Request(f"{endpoint}/_localstack/health", method="GET")
        with urllib.request.urlopen(req, timeout=2):  # noqa: S310
            return endpoint
    except (OSError, urllib.error.URLError):
        return None


@pytest_asyncio.fixture
async def fs_store(tmp_path) -> AsyncGenerator[FilesystemStore]:
    store = FilesystemStore(root_dir=str(tmp_path / "bucket"))
    yield store
    await store.close()


@pytest_asyncio.fixture
async def s3_store(request) -> AsyncGenerator[S3Store]:
    """S3Store on a LocalStack bucket, scoped to a per-test key prefix."""
    endpoint = _localstack_endpoint()
    if endpoint is None:
        pytest.skip("LocalStack not available (set LOCALSTACK_ENDPOINT)")

    bucket = os.environ.get("S3_TEST_BUCKET", "blockrepair-test")
    store = S3Store(
        bucket=bucket,
        endpoint_url=endpoint,
        access_key="test",
        secret_key="test",
        prefix=f"it/{request.node.name}",
    )
    client = await store._get_client()
    try:
        await client.create_bucket(Bucket=bucket)
    except ClientError as e:
        if e.response.get("Error", {}).get("Code") not in (
            "BucketAlreadyOwnedByYou",
            "BucketAlreadyExists",
        ):
            raise

    yield store
    await store.close()

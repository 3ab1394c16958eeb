"""
Object storage abstraction layer for blockrepair.

create_storage() builds the configured backend once at process start; the
resulting store is passed explicitly to discovery and transition code.
"""

from __future__ import annotations

from blockrepair.config import StorageBackend, StorageConfig
from blockrepair.logging_config import get_logger
from blockrepair.storage.protocol import ObjectStore

logger = get_logger(__name__)


def create_storage(cfg: StorageConfig) -> ObjectStore:
    """Instantiate the storage backend selected by configuration."""
    match cfg.backend:
        case StorageBackend.FILESYSTEM:
            from blockrepair.storage.filesystem import FilesystemStore

            store: ObjectStore = FilesystemStore(root_dir=cfg.filesystem.root_dir)
            logger.info(
                "Storage initialized", backend="filesystem", root_dir=cfg.filesystem.root_dir
            )

        case StorageBackend.S3:
            from blockrepair.storage.s3 import S3Store

            store = S3Store(
                bucket=cfg.s3.bucket,
                region=cfg.s3.region,
                prefix=cfg.s3.prefix,
                endpoint_url=cfg.s3.endpoint_url,
                access_key=cfg.s3.access_key,
                secret_key=cfg.s3.secret_key,
                path_style=cfg.s3.path_style,
            )
            logger.info("Storage initialized", backend="s3", bucket=cfg.s3.bucket)

        case _:
            raise ValueError(f"Unsupported storage backend: {cfg.backend}")

    return store

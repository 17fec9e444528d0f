import logging
from collections.abc import Callable

from timebill.settings import settings
from timebill.storage.base import StorageBackend

logger = logging.getLogger(__name__)


def _local() -> StorageBackend:
    from timebill.storage.local import LocalStorage

    logger.info("Artifact storage: local path=%s prefix=%s", settings.storage_local_path, settings.storage_prefix)
    return LocalStorage(settings.storage_local_path)


def _s3() -> StorageBackend:
    from timebill.storage.s3 import S3Storage

    if not settings.s3_bucket:
        raise ValueError("TIMEBILL_S3_BUCKET is required for the s3 storage backend")
    logger.info("Artifact storage: s3 bucket=%s prefix=%s", settings.s3_bucket, settings.storage_prefix)
    return S3Storage(
        bucket=settings.s3_bucket,
        region=settings.s3_region,
        access_key_id=settings.s3_access_key_id,
        secret_access_key=settings.s3_secret_access_key,
        endpoint_url=settings.s3_endpoint_url,
        presigned_expiry=settings.s3_presigned_expiry,
    )


BACKENDS: dict[str, Callable[[], StorageBackend]] = {"local": _local, "s3": _s3}


def get_storage() -> StorageBackend:
    """Build the artifact store selected by ``TIMEBILL_STORAGE_BACKEND``."""
    backend = settings.storage_backend.strip().lower()
    try:
        build = BACKENDS[backend]
    except KeyError:
        raise ValueError(f"Unsupported storage backend: {settings.storage_backend}") from None
    return build()

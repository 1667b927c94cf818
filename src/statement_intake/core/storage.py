from __future__ import annotations

import base64
import hashlib
import os
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import TypeVar

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from statement_intake.core.config import settings
from statement_intake.core.logging import get_logger, log_event, log_exception, monotonic_ms

logger = get_logger(__name__)

T = TypeVar("T")

_RETRYABLE_S3_CODES = {
    "RequestTimeout",
    "Throttling",
    "ThrottlingException",
    "SlowDown",
    "InternalError",
    "ServiceUnavailable",
}
_MISSING_S3_CODES = {"NoSuchKey", "404", "NotFound"}


class StorageError(RuntimeError):
    pass


@dataclass(frozen=True)
class StoredObject:
    key: str
    byte_size: int
    sha256: str


def upload_key(user_id: str, filename: str) -> str:
    """Object key for a new upload. Keys never collide, even for the same name."""
    return f"uploads/{user_id}/{uuid.uuid4()}-{filename}"


def _stored(key: str, body: bytes) -> StoredObject:
    return StoredObject(key=key, byte_size=len(body), sha256=hashlib.sha256(body).hexdigest())


class ObjectStorage:
    backend = "abstract"

    def put(self, *, key: str, body: bytes) -> StoredObject:  # pragma: no cover
        raise NotImplementedError

    def get_bytes(self, *, key: str) -> bytes:  # pragma: no cover
        raise NotImplementedError

    def delete(self, *, key: str) -> None:  # pragma: no cover
        raise NotImplementedError

    def get_base64(self, *, key: str) -> str:
        return base64.b64encode(self.get_bytes(key=key)).decode("ascii")


class LocalObjectStorage(ObjectStorage):
    backend = "local"

    def __init__(self, root: Path):
        self._root = root.resolve()
        self._root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        path = (self._root / key).resolve()
        if not path.is_relative_to(self._root):
            raise StorageError(f"Storage key escapes the storage root: {key}")
        return path

    def put(self, *, key: str, body: bytes) -> StoredObject:
        start = time.monotonic()
        path = self._path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(body)
        except OSError:
            log_exception(
                logger, "storage.put.failure", backend=self.backend, storage_key=key, byte_size=len(body)
            )
            raise
        stored = _stored(key, body)
        log_event(
            logger,
            "storage.put.success",
            backend=self.backend,
            storage_key=key,
            byte_size=stored.byte_size,
            sha256=stored.sha256,
            duration_ms=monotonic_ms(start),
        )
        return stored

    def get_bytes(self, *, key: str) -> bytes:
        path = self._path(key)
        try:
            return path.read_bytes()
        except FileNotFoundError as e:
            log_event(logger, "storage.get.missing", backend=self.backend, storage_key=key)
            raise StorageError(f"Object not found: {key}") from e

    def delete(self, *, key: str) -> None:
        self._path(key).unlink(missing_ok=True)
        log_event(logger, "storage.delete.success", backend=self.backend, storage_key=key)


class S3ObjectStorage(ObjectStorage):
    backend = "s3"
    max_attempts = 5

    def __init__(self) -> None:
        # S3-compatible providers accept "auto"; boto3 needs a real region name.
        region = settings.s3_region
        if not region or region.lower() == "auto":
            region = "us-east-1"

        session = boto3.session.Session(
            aws_access_key_id=settings.s3_access_key_id,
            aws_secret_access_key=settings.s3_secret_access_key,
            region_name=region,
        )
        endpoint_url = settings.s3_endpoint_url or None
        config = Config(
            s3={"addressing_style": "path" if endpoint_url else "auto"},
            retries={"max_attempts": 3, "mode": "adaptive"},
            connect_timeout=30,
            read_timeout=60,
        )
        self._client = session.client("s3", endpoint_url=endpoint_url, config=config)
        self._bucket = settings.s3_bucket

    @staticmethod
    def _error_code(error: Exception) -> str | None:
        if isinstance(error, ClientError):
            return (error.response.get("Error") or {}).get("Code")
        return None

    def _should_retry_error(self, error: Exception) -> bool:
        if isinstance(error, ClientError):
            return self._error_code(error) in _RETRYABLE_S3_CODES
        return isinstance(error, BotoCoreError)

    def _call(self, op: str, key: str, fn: Callable[[], T]) -> T:
        start = time.monotonic()
        for attempt in range(1, self.max_attempts + 1):
            try:
                return fn()
            except (ClientError, BotoCoreError) as e:
                if self._error_code(e) in _MISSING_S3_CODES:
                    log_event(logger, f"storage.{op}.missing", backend=self.backend, storage_key=key)
                    raise StorageError(f"Object not found: {key}") from e
                if attempt < self.max_attempts and self._should_retry_error(e):
                    # attempt=1 => 0.25s, attempt=2 => 0.5s, capped at 3s
                    delay_s = min(3.0, 0.25 * (2 ** (attempt - 1)))
                    log_event(
                        logger,
                        f"storage.{op}.retry",
                        backend=self.backend,
                        storage_key=key,
                        attempt=attempt,
                        delay_s=delay_s,
                        error_type=type(e).__name__,
                    )
                    time.sleep(delay_s)
                    continue
                log_exception(
                    logger,
                    f"storage.{op}.failure",
                    backend=self.backend,
                    storage_key=key,
                    attempt=attempt,
                    duration_ms=monotonic_ms(start),
                )
                raise StorageError(f"Storage {op} failed for {key}: {type(e).__name__}") from e
        raise StorageError(f"Storage {op} failed for {key}")  # pragma: no cover

    def put(self, *, key: str, body: bytes) -> StoredObject:
        start = time.monotonic()
        self._call(
            "put", key, lambda: self._client.put_object(Bucket=self._bucket, Key=key, Body=body)
        )
        stored = _stored(key, body)
        log_event(
            logger,
            "storage.put.success",
            backend=self.backend,
            storage_key=key,
            byte_size=stored.byte_size,
            sha256=stored.sha256,
            duration_ms=monotonic_ms(start),
        )
        return stored

    def get_bytes(self, *, key: str) -> bytes:
        resp = self._call(
            "get", key, lambda: self._client.get_object(Bucket=self._bucket, Key=key)
        )
        return resp["Body"].read()

    def delete(self, *, key: str) -> None:
        self._call(
            "delete", key, lambda: self._client.delete_object(Bucket=self._bucket, Key=key)
        )
        log_event(logger, "storage.delete.success", backend=self.backend, storage_key=key)


_storage: ObjectStorage | None = None


def get_storage() -> ObjectStorage:
    global _storage  # noqa: PLW0603
    if _storage is not None:
        return _storage

    if settings.storage_backend == "s3":
        _storage = S3ObjectStorage()
    else:
        root = settings.local_storage_path
        if not root.is_absolute():
            root = Path(os.getcwd()) / root
        _storage = LocalObjectStorage(root)
    return _storage

"""
Object storage for uploaded receipt slips (local filesystem or S3).

Upload keys are content-addressed (``uploads/<owner>/<sha256><ext>``), so a
``put`` onto a key that already holds the same number of bytes is skipped.
"""

from __future__ import annotations

import mimetypes
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from slipsafe.core.config import settings
from slipsafe.core.logging import get_logger, log_event, log_exception, monotonic_ms

logger = get_logger(__name__)

_RETRYABLE_S3_CODES = frozenset(
    {"RequestTimeout", "Throttling", "ThrottlingException", "SlowDown", "InternalError"}
)
_MISSING_S3_CODES = frozenset({"404", "NoSuchKey", "NotFound"})


class StorageError(RuntimeError):
    pass


class ObjectNotFound(StorageError):
    pass


@dataclass(frozen=True)
class StoredObject:
    key: str
    byte_size: int
    # False when the key already held this object and nothing was written.
    written: bool = True


def guess_content_type(key: str) -> str:
    return mimetypes.guess_type(key)[0] or "application/octet-stream"


class ObjectStorage:
    backend = "abstract"

    def put(
        self, *, key: str, body: bytes, content_type: str | None = None
    ) -> StoredObject:  # pragma: no cover
        raise NotImplementedError

    def get(self, *, key: str) -> bytes:  # pragma: no cover
        raise NotImplementedError

    def size(self, *, key: str) -> int | None:  # pragma: no cover
        raise NotImplementedError

    def delete(self, *, key: str) -> None:  # pragma: no cover
        raise NotImplementedError

    def exists(self, *, key: str) -> bool:
        return self.size(key=key) is not None

    def _log_put(self, *, key: str, byte_size: int, written: bool, start: float) -> None:
        log_event(
            logger,
            "storage.put.success" if written else "storage.put.skipped",
            backend=self.backend,
            storage_key=key,
            byte_size=byte_size,
            duration_ms=monotonic_ms(start),
        )


class LocalObjectStorage(ObjectStorage):
    backend = "local"

    def __init__(self, root: Path):
        self._root = root.resolve()
        self._root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        path = (self._root / key).resolve()
        if self._root not in path.parents:
            raise StorageError(f"Storage key escapes the storage root: {key}")
        return path

    def put(self, *, key: str, body: bytes, content_type: str | None = None) -> StoredObject:
        start = time.monotonic()
        if self.size(key=key) == len(body):
            self._log_put(key=key, byte_size=len(body), written=False, start=start)
            return StoredObject(key=key, byte_size=len(body), written=False)

        path = self._path(key)
        tmp = path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_bytes(body)
            tmp.replace(path)
        except OSError as e:
            tmp.unlink(missing_ok=True)
            log_exception(logger, "storage.put.failure", backend=self.backend, storage_key=key)
            raise StorageError(f"Could not write object: {key}") from e
        self._log_put(key=key, byte_size=len(body), written=True, start=start)
        return StoredObject(key=key, byte_size=len(body))

    def get(self, *, key: str) -> bytes:
        path = self._path(key)
        try:
            return path.read_bytes()
        except FileNotFoundError as e:
            log_event(logger, "storage.get.missing", backend=self.backend, storage_key=key)
            raise ObjectNotFound(f"Object not found: {key}") from e

    def size(self, *, key: str) -> int | None:
        path = self._path(key)
        return path.stat().st_size if path.is_file() else None

    def delete(self, *, key: str) -> None:
        self._path(key).unlink(missing_ok=True)
        log_event(logger, "storage.delete", backend=self.backend, storage_key=key)


class S3ObjectStorage(ObjectStorage):
    backend = "s3"
    max_attempts = 4

    def __init__(self) -> None:
        region = settings.s3_region
        if not region or region.lower() == "auto":
            region = "us-east-1"
        session = boto3.session.Session(
            aws_access_key_id=settings.s3_access_key_id,
            aws_secret_access_key=settings.s3_secret_access_key,
            region_name=region,
        )
        self._client = session.client(
            "s3",
            endpoint_url=settings.s3_endpoint_url or None,
            config=Config(retries={"max_attempts": 3, "mode": "adaptive"}, read_timeout=30),
        )
        self._bucket = settings.s3_bucket

    @staticmethod
    def _error_code(error: Exception) -> str | None:
        if isinstance(error, ClientError):
            return (error.response.get("Error") or {}).get("Code")
        return None

    def put(self, *, key: str, body: bytes, content_type: str | None = None) -> StoredObject:
        start = time.monotonic()
        if self.size(key=key) == len(body):
            self._log_put(key=key, byte_size=len(body), written=False, start=start)
            return StoredObject(key=key, byte_size=len(body), written=False)

        attempt = 0
        while True:
            attempt += 1
            try:
                self._client.put_object(
                    Bucket=self._bucket,
                    Key=key,
                    Body=body,
                    ContentType=content_type or guess_content_type(key),
                )
                break
            except (BotoCoreError, ClientError) as e:
                retryable = isinstance(e, BotoCoreError) or (
                    self._error_code(e) in _RETRYABLE_S3_CODES
                )
                if not retryable or attempt >= self.max_attempts:
                    log_exception(
                        logger,
                        "storage.put.failure",
                        backend=self.backend,
                        storage_key=key,
                        attempt=attempt,
                    )
                    raise StorageError(f"Could not write object: {key}") from e
                delay_s = min(2.0, 0.25 * 2 ** (attempt - 1))
                log_event(
                    logger,
                    "storage.put.retry",
                    backend=self.backend,
                    storage_key=key,
                    attempt=attempt,
                    delay_s=delay_s,
                    error_type=type(e).__name__,
                )
                time.sleep(delay_s)
        self._log_put(key=key, byte_size=len(body), written=True, start=start)
        return StoredObject(key=key, byte_size=len(body))

    def get(self, *, key: str) -> bytes:
        try:
            resp = self._client.get_object(Bucket=self._bucket, Key=key)
            return resp["Body"].read()
        except ClientError as e:
            if self._error_code(e) in _MISSING_S3_CODES:
                log_event(logger, "storage.get.missing", backend=self.backend, storage_key=key)
                raise ObjectNotFound(f"Object not found: {key}") from e
            log_exception(logger, "storage.get.failure", backend=self.backend, storage_key=key)
            raise StorageError(f"Could not read object: {key}") from e
        except BotoCoreError as e:
            log_exception(logger, "storage.get.failure", backend=self.backend, storage_key=key)
            raise StorageError(f"Could not read object: {key}") from e

    def size(self, *, key: str) -> int | None:
        try:
            resp = self._client.head_object(Bucket=self._bucket, Key=key)
        except ClientError as e:
            if self._error_code(e) in _MISSING_S3_CODES:
                return None
            raise StorageError(f"Could not stat object: {key}") from e
        return int(resp.get("ContentLength", 0))

    def delete(self, *, key: str) -> None:
        try:
            self._client.delete_object(Bucket=self._bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            log_exception(logger, "storage.delete.failure", backend=self.backend, storage_key=key)
            raise StorageError(f"Could not delete object: {key}") from e
        log_event(logger, "storage.delete", backend=self.backend, storage_key=key)


_storage: ObjectStorage | None = None


def get_storage() -> ObjectStorage:
    global _storage  # noqa: PLW0603
    if _storage is None:
        if settings.storage_backend == "s3":
            _storage = S3ObjectStorage()
        else:
            _storage = LocalObjectStorage(Path(settings.local_storage_path))
    return _storage


def diagnose_storage(*, write_test: bool = False) -> dict[str, Any]:
    """Report whether the configured backend is usable.

    With ``write_test`` a throwaway object is written, read back and deleted.
    """
    result: dict[str, Any] = {"backend": settings.storage_backend, "ok": True}
    try:
        storage = get_storage()
    except (StorageError, BotoCoreError, ClientError, OSError) as e:
        return {**result, "ok": False, "error": f"{type(e).__name__}: {e}"}
    if not write_test:
        return result

    key = f"healthz/{uuid.uuid4()}.txt"
    start = time.monotonic()
    try:
        storage.put(key=key, body=b"ok", content_type="text/plain")
        readback = storage.get(key=key)
        storage.delete(key=key)
    except StorageError as e:
        return {**result, "ok": False, "error": str(e)}
    if readback != b"ok":
        return {**result, "ok": False, "error": "read-back mismatch"}
    result["write_test_ms"] = monotonic_ms(start)
    return result

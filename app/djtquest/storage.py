"""
Byte store for uploaded attachments (finance receipts, forum and SEPBook media).

Keys are opaque "/"-separated paths such as "finance/12/20260901/<uuid>_recibo.pdf";
callers never see filesystem paths or bucket URLs.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, BinaryIO, Iterable

logger = logging.getLogger(__name__)


class StorageError(RuntimeError):
    pass


class Storage:
    backend = "abstract"

    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        raise NotImplementedError

    def open(self, key: str) -> BinaryIO:
        raise NotImplementedError

    def exists(self, key: str) -> bool:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def delete_many(self, keys: Iterable[str]) -> list[str]:
        """Best-effort removal; returns the keys that could not be deleted."""
        failed: list[str] = []
        for key in keys:
            try:
                self.delete(key)
            except StorageError:
                logger.warning("storage(%s): could not delete %s", self.backend, key, exc_info=True)
                failed.append(key)
        return failed


def _clean_key(key: str) -> str:
    parts = [p for p in str(key or "").replace("\\", "/").split("/") if p]
    if not parts or any(p in (".", "..") for p in parts):
        raise StorageError(f"Invalid storage key: {key!r}")
    return "/".join(parts)


@dataclass(frozen=True)
class LocalStorage(Storage):
    root: Path
    backend = "local"

    def _path(self, key: str) -> Path:
        return self.root.joinpath(*_clean_key(key).split("/"))

    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        p = self._path(key)
        try:
            p.parent.mkdir(parents=True, exist_ok=True)
            p.write_bytes(data)
        except OSError as e:
            raise StorageError(f"Could not write {key}: {e}") from e

    def open(self, key: str) -> BinaryIO:
        try:
            return self._path(key).open("rb")
        except FileNotFoundError as e:
            raise StorageError(f"Not found: {key}") from e

    def exists(self, key: str) -> bool:
        return self._path(key).is_file()

    def delete(self, key: str) -> None:
        try:
            self._path(key).unlink(missing_ok=True)
        except OSError as e:
            raise StorageError(f"Could not delete {key}: {e}") from e


@dataclass(frozen=True)
class S3Storage(Storage):
    """S3-compatible bucket (AWS or any endpoint speaking the S3 API)."""

    bucket: str
    client: Any = field(repr=False, compare=False)
    backend = "s3"

    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        from botocore.exceptions import BotoCoreError, ClientError

        extra = {"ContentType": content_type} if content_type else {}
        try:
            self.client.put_object(Bucket=self.bucket, Key=_clean_key(key), Body=data, **extra)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Could not write {key}: {e}") from e

    def open(self, key: str) -> BinaryIO:
        from botocore.exceptions import ClientError

        try:
            obj = self.client.get_object(Bucket=self.bucket, Key=_clean_key(key))
        except ClientError as e:
            raise StorageError(f"Not found: {key}") from e
        return obj["Body"]  # type: ignore[return-value]

    def exists(self, key: str) -> bool:
        from botocore.exceptions import ClientError

        try:
            self.client.head_object(Bucket=self.bucket, Key=_clean_key(key))
        except ClientError:
            return False
        return True

    def delete(self, key: str) -> None:
        from botocore.exceptions import BotoCoreError, ClientError

        try:
            self.client.delete_object(Bucket=self.bucket, Key=_clean_key(key))
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Could not delete {key}: {e}") from e


def _s3_from_config(config) -> S3Storage:
    import boto3

    bucket = (config.get("S3_BUCKET") or "").strip()
    if not bucket:
        raise StorageError("S3_BUCKET is required when STORAGE_BACKEND=s3")
    endpoint = (config.get("S3_ENDPOINT") or "").strip()
    if endpoint and not endpoint.startswith(("http://", "https://")):
        endpoint = f"https://{endpoint}"
    client = boto3.client(
        "s3",
        endpoint_url=endpoint or None,
        region_name=(config.get("S3_REGION") or "sa-east-1").strip(),
        aws_access_key_id=(config.get("S3_ACCESS_KEY_ID") or "").strip() or None,
        aws_secret_access_key=(config.get("S3_SECRET_ACCESS_KEY") or "").strip() or None,
    )
    return S3Storage(bucket=bucket, client=client)


def storage_from_config(config) -> Storage:
    backend = (config.get("STORAGE_BACKEND") or "local").strip().lower()
    if backend == "s3":
        return _s3_from_config(config)
    if backend != "local":
        raise StorageError(f"Unknown STORAGE_BACKEND: {backend}")
    root = (config.get("STORAGE_ROOT") or "").strip()
    return LocalStorage(root=Path(root) if root else Path(os.getcwd()) / "storage")

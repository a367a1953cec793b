"""
Object Store Service
S3 persistence for narration, clips and videos, with a local directory fallback
"""

import asyncio
import mimetypes
import os
import shutil
from pathlib import Path
from typing import List, Optional
from urllib.parse import unquote, urlparse

from ..config import Settings, get_settings
from ..utils.exceptions import StorageError
from ..utils.logger import get_logger

logger = get_logger()

MULTIPART_THRESHOLD = 5 * 1024 * 1024


def _content_type(path: str) -> str:
    content_type, _ = mimetypes.guess_type(path)
    return content_type or "application/octet-stream"


class S3ObjectStore:
    """Async wrapper over boto3; references are virtual-hosted S3 URLs"""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.bucket = self.settings.s3_bucket_name
        self._client = None

    def _ensure_initialized(self):
        """Lazy initialize S3 client"""
        if self._client is not None:
            return

        import boto3
        from botocore.config import Config

        config = Config(
            retries={'max_attempts': 3, 'mode': 'adaptive'},
            max_pool_connections=10
        )
        self._client = boto3.client(
            's3',
            aws_access_key_id=self.settings.aws_access_key_id,
            aws_secret_access_key=self.settings.aws_secret_access_key,
            region_name=self.settings.aws_region,
            config=config
        )
        logger.info(f"S3 client initialized for bucket: {self.bucket}")

    def url_for(self, key: str) -> str:
        return f"https://{self.bucket}.s3.{self.settings.aws_region}.amazonaws.com/{key}"

    def key_for(self, ref: str) -> str:
        parsed = urlparse(ref)
        if parsed.scheme == "s3":
            return parsed.path.lstrip("/")
        if not parsed.netloc.startswith(f"{self.bucket}."):
            raise StorageError(f"Reference is not in bucket {self.bucket}: {ref}", ref=ref)
        return unquote(parsed.path.lstrip("/"))

    async def put_file(self, local_path: str, key: str) -> str:
        """Upload a file and return its reference"""
        self._ensure_initialized()
        if not os.path.exists(local_path):
            raise StorageError(f"File not found: {local_path}", key=key)

        file_size = os.path.getsize(local_path)
        logger.info(f"Uploading to S3: {key} ({file_size / 1024 / 1024:.1f} MB)")

        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._do_upload, local_path, key, file_size)
        except Exception as exc:
            raise StorageError(f"S3 upload failed: {exc}", bucket=self.bucket, key=key) from exc
        return self.url_for(key)

    def _do_upload(self, local_path: str, key: str, file_size: int):
        """Perform the actual upload (blocking)"""
        extra_args = {'ContentType': _content_type(local_path)}

        # Use multipart upload for files > 5MB
        if file_size > MULTIPART_THRESHOLD:
            from boto3.s3.transfer import TransferConfig

            config = TransferConfig(
                multipart_threshold=MULTIPART_THRESHOLD,
                multipart_chunksize=MULTIPART_THRESHOLD,
                max_concurrency=4,
                use_threads=True
            )
            self._client.upload_file(local_path, self.bucket, key, ExtraArgs=extra_args, Config=config)
        else:
            with open(local_path, 'rb') as f:
                self._client.put_object(Bucket=self.bucket, Key=key, Body=f, **extra_args)

    async def put_bytes(self, data: bytes, key: str, content_type: str) -> str:
        self._ensure_initialized()
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(
                None,
                lambda: self._client.put_object(
                    Bucket=self.bucket, Key=key, Body=data, ContentType=content_type
                )
            )
        except Exception as exc:
            raise StorageError(f"S3 upload failed: {exc}", bucket=self.bucket, key=key) from exc
        logger.info(f"Stored {len(data) / 1024:.0f} KB at s3://{self.bucket}/{key}")
        return self.url_for(key)

    async def download(self, ref: str, dest_path: str) -> str:
        """Download a stored object to a local path"""
        self._ensure_initialized()
        key = self.key_for(ref)
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(
                None, lambda: self._client.download_file(self.bucket, key, dest_path)
            )
        except Exception as exc:
            raise StorageError(f"S3 download failed: {exc}", bucket=self.bucket, key=key) from exc
        return dest_path

    async def delete_prefix(self, prefix: str) -> int:
        """Delete every object under a key prefix"""
        self._ensure_initialized()
        loop = asyncio.get_running_loop()

        def _delete() -> int:
            deleted = 0
            paginator = self._client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                keys = [{"Key": item["Key"]} for item in page.get("Contents", [])]
                if keys:
                    self._client.delete_objects(Bucket=self.bucket, Delete={"Objects": keys})
                    deleted += len(keys)
            return deleted

        try:
            return await loop.run_in_executor(None, _delete)
        except Exception as exc:
            raise StorageError(f"S3 delete failed: {exc}", bucket=self.bucket, prefix=prefix) from exc

    async def presign(self, ref: str, expires_in: Optional[int] = None) -> str:
        self._ensure_initialized()
        key = self.key_for(ref)
        expires_in = expires_in or self.settings.presigned_url_expiry
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None,
            lambda: self._client.generate_presigned_url(
                "get_object", Params={"Bucket": self.bucket, "Key": key}, ExpiresIn=expires_in
            )
        )


class LocalObjectStore:
    """Directory-backed store used when S3 is not configured; references are file:// URIs"""

    def __init__(self, root: str):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def _path_for(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if self.root not in path.parents:
            raise StorageError(f"Key escapes the object root: {key}", key=key)
        return path

    def _path_from_ref(self, ref: str) -> Path:
        parsed = urlparse(ref)
        if parsed.scheme != "file":
            raise StorageError(f"Not a local object reference: {ref}", ref=ref)
        path = Path(unquote(parsed.path)).resolve()
        if self.root not in path.parents:
            raise StorageError(f"Reference is outside the object root: {ref}", ref=ref)
        return path

    async def put_file(self, local_path: str, key: str) -> str:
        if not os.path.exists(local_path):
            raise StorageError(f"File not found: {local_path}", key=key)
        target = self._path_for(key)
        target.parent.mkdir(parents=True, exist_ok=True)
        await asyncio.get_running_loop().run_in_executor(None, shutil.copyfile, local_path, target)
        return target.as_uri()

    async def put_bytes(self, data: bytes, key: str, content_type: str) -> str:
        target = self._path_for(key)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        return target.as_uri()

    async def download(self, ref: str, dest_path: str) -> str:
        source = self._path_from_ref(ref)
        if not source.exists():
            raise StorageError(f"Object not found: {ref}", ref=ref)
        await asyncio.get_running_loop().run_in_executor(None, shutil.copyfile, source, dest_path)
        return dest_path

    async def delete_prefix(self, prefix: str) -> int:
        target = self._path_for(prefix.rstrip("/"))
        if not target.exists():
            return 0
        files: List[Path] = [p for p in target.rglob("*") if p.is_file()] if target.is_dir() else [target]
        if target.is_dir():
            shutil.rmtree(target, ignore_errors=True)
        else:
            target.unlink()
        return len(files)

    async def presign(self, ref: str, expires_in: Optional[int] = None) -> str:
        return ref


_object_store = None


def get_object_store():
    """Return the S3 store when configured, else the local store"""
    global _object_store
    if _object_store is None:
        settings = get_settings()
        if settings.s3_enabled:
            _object_store = S3ObjectStore(settings)
        else:
            logger.info("S3 not configured, storing objects locally")
            _object_store = LocalObjectStore(str(Path(settings.output_dir) / "objects"))
    return _object_store

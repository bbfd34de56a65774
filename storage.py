"""
Object storage adapter for the Cloudflare R2 bucket (S3 compatible).

Uploads raise a classified StorageError. Deletes are best-effort: they log and report
False instead of raising, so they never block the database write they follow.
"""
import os
import random
import re
import string
import time
import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import quote

import boto3
from botocore.config import Config
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionError as BotoConnectionError,
    EndpointConnectionError,
    NoCredentialsError,
    PartialCredentialsError,
)
from fastapi import Request

logger = logging.getLogger(__name__)

REQUIRED_ENV = (
    "CLOUDFLARE_ACCOUNT_ID",
    "CLOUDFLARE_ACCESS_KEY_ID",
    "CLOUDFLARE_SECRET_ACCESS_KEY",
    "CLOUDFLARE_R2_BUCKET_NAME",
)
MAX_WORKERS = 5


class StorageError(Exception):
    kind = "upload"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class StorageConfigError(StorageError):
    kind = "config"


class StorageAuthError(StorageError):
    kind = "auth"


class BucketNotFoundError(StorageError):
    kind = "bucket"


class SignatureMismatchError(StorageError):
    kind = "signature"


class StorageNetworkError(StorageError):
    kind = "network"


def _random_id(length: int = 13) -> str:
    return "".join(random.choices(string.ascii_lowercase + string.digits, k=length))


def generate_key(original_name: str, category: str = "general", sub_category: str = "") -> str:
    """``{category}/{sub_}{epochMs}_{randomId}_{cleanName}.{ext}``"""
    extension = original_name.rsplit(".", 1)[-1].lower()
    clean_name = re.sub(r"\.[^/.]+$", "", original_name)
    clean_name = re.sub(r"[^a-zA-Z0-9]", "_", clean_name).lower()
    sub = f"{sub_category}_" if sub_category else ""
    return f"{category}/{sub}{int(time.time() * 1000)}_{_random_id()}_{clean_name}.{extension}"


def _error_code(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "")


class ImageStorage:
    def __init__(self, client=None, bucket: Optional[str] = None, base_url: Optional[str] = None):
        self.client = client
        self.bucket = bucket
        self.base_url = (base_url or "").rstrip("/")

    @classmethod
    def from_env(cls) -> "ImageStorage":
        missing = [name for name in REQUIRED_ENV if not os.getenv(name)]
        if missing:
            logger.error("Missing R2 environment variables: %s", ", ".join(missing))
            raise StorageConfigError(f"Missing required R2 environment variables: {', '.join(missing)}")

        account = os.getenv("CLOUDFLARE_ACCOUNT_ID")
        bucket = os.getenv("CLOUDFLARE_R2_BUCKET_NAME")
        domain = os.getenv("CLOUDFLARE_R2_DOMAIN")
        client = boto3.client(
            "s3",
            endpoint_url=f"https://{account}.r2.cloudflarestorage.com",
            aws_access_key_id=os.getenv("CLOUDFLARE_ACCESS_KEY_ID"),
            aws_secret_access_key=os.getenv("CLOUDFLARE_SECRET_ACCESS_KEY"),
            region_name="auto",
            config=Config(signature_version="s3v4", s3={"addressing_style": "virtual"}),
        )
        base_url = f"https://{domain}" if domain else f"https://{bucket}.{account}.r2.cloudflarestorage.com"
        logger.info("R2 storage configured for bucket %s at %s", bucket, base_url)
        return cls(client=client, bucket=bucket, base_url=base_url)

    # ---------------------- Uploads ----------------------

    def _classify(self, error: Exception) -> StorageError:
        if isinstance(error, (NoCredentialsError, PartialCredentialsError)):
            return StorageAuthError("R2 authentication failed. Please check your Cloudflare R2 credentials.")
        if isinstance(error, ClientError):
            code = _error_code(error)
            if code == "InvalidAccessKeyId":
                return StorageAuthError("R2 authentication failed. Please check your Cloudflare R2 credentials.")
            if code == "NoSuchBucket":
                return BucketNotFoundError(f'R2 bucket "{self.bucket}" not found or not accessible.')
            if code == "SignatureDoesNotMatch":
                return SignatureMismatchError("R2 signature mismatch. Please verify your secret access key.")
        if isinstance(error, (EndpointConnectionError, BotoConnectionError)):
            return StorageNetworkError("Failed to connect to Cloudflare R2. Please check your network connection.")
        return StorageError(f"Failed to upload image: {error}")

    def upload_single_image(self, file, category: str = "general", sub_category: str = "") -> Dict[str, Any]:
        if file is None or file.data is None:
            raise StorageError("Invalid file object - missing buffer")

        key = generate_key(file.filename, category, sub_category)
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=file.data,
                ContentType=file.content_type,
                # S3 metadata values must be ASCII
                Metadata={
                    "category": quote(str(category)),
                    "subCategory": quote(str(sub_category)),
                    "originalName": quote(file.filename),
                    "uploadedAt": datetime.now(timezone.utc).isoformat(),
                },
            )
        except (BotoCoreError, ClientError) as e:
            error = self._classify(e)
            logger.error("R2 upload failed (%s): %s", error.kind, e)
            raise error from e

        url = f"{self.base_url}/{key}"
        logger.info("Uploaded %s to %s", file.filename, url)
        return {
            "success": True,
            "url": url,
            "key": key,
            "category": category,
            "subCategory": sub_category,
            "originalName": file.filename,
            "size": file.size,
            "contentType": file.content_type,
        }

    def upload_multiple_images(self, files: List[Any], category: str = "general", sub_category: str = "") -> List[Dict[str, Any]]:
        """Upload every file concurrently. Any failure fails the whole batch."""
        if not files:
            return []
        logger.info("Starting batch upload of %d files for %s", len(files), category)
        with ThreadPoolExecutor(max_workers=min(MAX_WORKERS, len(files))) as pool:
            futures = [pool.submit(self.upload_single_image, f, category, sub_category) for f in files]
            return [future.result() for future in futures]

    # ---------------------- Deletes ----------------------

    def key_for(self, url_or_key: str) -> str:
        prefix = f"{self.base_url}/"
        if url_or_key.startswith(prefix):
            return url_or_key[len(prefix):]
        return url_or_key

    def delete_image(self, url_or_key: str) -> bool:
        if not url_or_key:
            return False
        key = self.key_for(url_or_key)
        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            logger.warning("Failed to delete image %s: %s", key, e)
            return False
        logger.info("Deleted image %s", key)
        return True

    def delete_multiple_images(self, urls: Iterable[str]) -> Dict[str, Any]:
        urls = list(urls)
        results = [self.delete_image(url) for url in urls]
        successful = sum(1 for r in results if r)
        return {
            "total": len(urls),
            "successful": successful,
            "failed": len(urls) - successful,
            "results": results,
        }

    def get_image_url(self, key: str) -> str:
        if key.startswith("http"):
            return key
        return f"{self.base_url}/{key}"

    def test_connection(self) -> bool:
        key = f"test/connection-test-{int(time.time() * 1000)}.txt"
        try:
            self.client.put_object(Bucket=self.bucket, Key=key, Body=b"R2 connection test", ContentType="text/plain")
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            logger.error("R2 connection test failed: %s", e)
            return False
        return True


def best_effort_cleanup(storage: ImageStorage, urls: Iterable[Optional[str]]) -> Dict[str, Any]:
    """Delete replaced assets after the primary write; failures are logged, never raised."""
    urls = [u for u in urls if u]
    if not urls:
        return {"total": 0, "successful": 0, "failed": 0, "results": []}
    result = storage.delete_multiple_images(urls)
    if result["failed"]:
        logger.warning("Cleanup left %d of %d old images in storage", result["failed"], result["total"])
    return result


def get_storage(request: Request) -> ImageStorage:
    storage = getattr(request.app.state, "storage", None)
    if storage is None:
        storage = ImageStorage.from_env()
        request.app.state.storage = storage
    return storage

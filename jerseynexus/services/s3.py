import os
import uuid
from typing import List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from fastapi import HTTPException, UploadFile
from loguru import logger

from jerseynexus.core.config import settings


class S3Service:
    def __init__(self):
        self._client = None
        self.bucket_name = settings.S3_BUCKET

    @property
    def s3_client(self):
        # Created on first use so importing the app needs no AWS credentials
        if self._client is None:
            self._client = boto3.client(
                "s3",
                aws_access_key_id=settings.AWS_ACCESS_KEY_ID or None,
                aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY or None,
                region_name=settings.AWS_REGION,
            )
        return self._client

    def upload_file(self, file_content: bytes, file_name: str, folder: str = "misc",
                    content_type: str = "image/jpeg") -> Optional[str]:
        """
        Upload a file to S3 under ``folder`` and return its key
        (e.g. "products/uuid.jpg"), or None if the upload failed.
        """
        file_extension = os.path.splitext(file_name or "")[1].lower()
        s3_key = f"{folder}/{uuid.uuid4()}{file_extension}"
        try:
            # Public access is handled by the bucket policy, not object ACLs
            self.s3_client.put_object(
                Bucket=self.bucket_name,
                Key=s3_key,
                Body=file_content,
                ContentType=content_type,
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error uploading {file_name} to S3: {e}")
            return None
        logger.info(f"Uploaded {s3_key} ({len(file_content)} bytes)")
        return s3_key

    def delete_file(self, s3_key: str) -> bool:
        try:
            self.s3_client.delete_object(Bucket=self.bucket_name, Key=s3_key)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error deleting {s3_key} from S3: {e}")
            return False
        return True

    def list_keys(self, prefix: str) -> List[str]:
        keys = []
        paginator = self.s3_client.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=self.bucket_name, Prefix=prefix):
            keys.extend(obj["Key"] for obj in page.get("Contents", []))
        return keys

    def key_from_url(self, url: str) -> Optional[str]:
        """S3 key for a stored image reference; None for images hosted elsewhere."""
        base = f"{settings.S3_BASE_URL}/"
        if url.startswith(base):
            return url[len(base):]
        if url.startswith(("http://", "https://")):
            return None
        return url.lstrip("/")

    def get_public_url(self, s3_key: str) -> str:
        return f"{settings.S3_BASE_URL}/{s3_key}"


# Singleton instance
s3_service = S3Service()


def read_image_upload(file: UploadFile) -> bytes:
    """Read an uploaded image, enforcing the allowed types and MAX_UPLOAD_SIZE."""
    if file.content_type not in settings.ALLOWED_IMAGE_TYPES:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid file type {file.content_type}. Only JPEG, PNG, WebP and GIF images are allowed",
        )
    content = file.file.read()
    if len(content) > settings.MAX_UPLOAD_SIZE:
        raise HTTPException(
            status_code=400,
            detail=f"File too large. Maximum size is {settings.MAX_UPLOAD_SIZE // (1024 * 1024)}MB",
        )
    return content


def upload_image(file: UploadFile, folder: str) -> str:
    content = read_image_upload(file)
    key = s3_service.upload_file(content, file.filename, folder=folder, content_type=file.content_type)
    if key is None:
        raise HTTPException(status_code=500, detail="Failed to upload image")
    return key

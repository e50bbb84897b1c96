import logging
import os
import re
import time
from typing import BinaryIO, Optional
from urllib.parse import urlparse

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from errors import GatewayCommunicationError, ValidationError

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9.-]")


def safe_key(path: str, filename: str) -> str:
    name = _UNSAFE_CHARS.sub("_", os.path.basename(filename or "image"))
    return f"{path.strip('/')}/{int(time.time() * 1000)}_{name}"


class ObjectStorage:
    """Product and banner images in an S3-compatible bucket."""

    def __init__(
            self,
            bucket_name: Optional[str] = None,
            endpoint_url: Optional[str] = None,
            public_base_url: Optional[str] = None,
            aws_access_key_id: Optional[str] = None,
            aws_secret_access_key: Optional[str] = None,
            region_name: Optional[str] = None,
            client=None,
        ):
        self.bucket_name = bucket_name
        self.endpoint_url = endpoint_url
        self.public_base_url = public_base_url
        self.s3_client = client or boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            aws_access_key_id=aws_access_key_id,
            aws_secret_access_key=aws_secret_access_key,
            region_name=region_name,
        )

    @classmethod
    def from_settings(cls, settings) -> "ObjectStorage":
        return cls(
            bucket_name=settings.s3_bucket,
            endpoint_url=settings.s3_endpoint_url,
            public_base_url=settings.s3_public_base_url,
            aws_access_key_id=settings.aws_access_key_id,
            aws_secret_access_key=settings.aws_secret_access_key,
            region_name=settings.aws_region,
        )

    def url_for(self, key: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url.rstrip('/')}/{key}"
        if self.endpoint_url:
            return f"{self.endpoint_url.rstrip('/')}/{self.bucket_name}/{key}"
        return f"https://{self.bucket_name}.s3.amazonaws.com/{key}"

    def key_for(self, url: str) -> str:
        parsed = urlparse(url).path.lstrip("/")
        if self.public_base_url:
            prefix = urlparse(self.public_base_url).path.strip("/")
            return parsed[len(prefix):].lstrip("/") if prefix else parsed
        if self.endpoint_url and parsed.startswith(f"{self.bucket_name}/"):
            return parsed[len(self.bucket_name) + 1:]
        return parsed

    def upload_image(self, fileobj: BinaryIO, filename: str, path: str, content_type: Optional[str] = None) -> str:
        if not self.bucket_name:
            raise ValidationError("Image storage is not configured")
        if content_type and not content_type.startswith("image/"):
            raise ValidationError("Only image uploads are accepted")
        key = safe_key(path, filename)
        extra = {"ContentType": content_type} if content_type else None
        try:
            self.s3_client.upload_fileobj(fileobj, self.bucket_name, key, ExtraArgs=extra)
        except (ClientError, BotoCoreError) as e:
            logger.error("uploading %s to s3://%s failed: %s", key, self.bucket_name, e)
            raise GatewayCommunicationError("Image upload failed")
        logger.info("uploaded s3://%s/%s", self.bucket_name, key)
        return self.url_for(key)

    def delete_image(self, url: str) -> None:
        key = self.key_for(url)
        try:
            self.s3_client.delete_object(Bucket=self.bucket_name, Key=key)
        except (ClientError, BotoCoreError) as e:
            logger.error("deleting s3://%s/%s failed: %s", self.bucket_name, key, e)
            raise GatewayCommunicationError("Image delete failed")

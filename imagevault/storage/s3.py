import boto3
from botocore.config import Config
from typing import Any, Dict, Optional
from botocore.exceptions import ClientError
from imagevault.settings import settings
import logging

log = logging.getLogger(__name__)

MISSING_OBJECT_CODES = {"404", "NoSuchKey", "NotFound"}

# -------------------------
# S3 Service
# -------------------------
class S3Service:
    def __init__(self):
        session = boto3.session.Session(region_name=settings.aws_region)
        kwargs = {
            "aws_access_key_id": settings.aws_access_key_id,
            "aws_secret_access_key": settings.aws_secret_access_key,
            "config": Config(signature_version="s3v4"),
        }
        if settings.aws_endpoint_url:
            kwargs["endpoint_url"] = settings.aws_endpoint_url

        self.client = session.client("s3", **kwargs)
        log.info("Initialized S3 client")

        if settings.auto_create_resources and settings.s3_bucket_name:
            self.ensure_bucket()

    def ensure_bucket(self):
        try:
            self.client.head_bucket(Bucket=settings.s3_bucket_name)
            log.debug("Bucket %s already exists", settings.s3_bucket_name)
        except ClientError as e:
            error_code = e.response["Error"]["Code"]
            if error_code in MISSING_OBJECT_CODES:
                self.client.create_bucket(Bucket=settings.s3_bucket_name)
                log.info("Created bucket %s", settings.s3_bucket_name)
            else:
                log.error("Failed to check/create bucket: %s", e)
                raise

    def _external(self, url: str) -> str:
        if settings.external_endpoint and settings.aws_endpoint_url:
            url = url.replace(settings.aws_endpoint_url, settings.external_endpoint)
        return url

    def generate_presigned_post(
        self,
        key: str,
        content_type: str,
        expires_in: Optional[int] = None,
        max_bytes: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Issues browser upload credentials valid for exactly one key."""
        expires = expires_in or settings.upload_expire_seconds
        conditions = [
            {"Content-Type": content_type},
            ["content-length-range", 1, max_bytes or settings.max_upload_bytes],
        ]
        post = self.client.generate_presigned_post(
            Bucket=settings.s3_bucket_name,
            Key=key,
            Fields={"Content-Type": content_type},
            Conditions=conditions,
            ExpiresIn=expires,
        )
        log.debug("Presigned POST for s3://%s/%s (%ss)", settings.s3_bucket_name, key, expires)
        return {"url": self._external(post["url"]), "fields": post["fields"]}

    def generate_presigned_url(self, key: str, expires_in: Optional[int] = None) -> str:
        expires = expires_in or settings.presign_expire_seconds
        url = self.client.generate_presigned_url(
            "get_object",
            Params={"Bucket": settings.s3_bucket_name, "Key": key},
            ExpiresIn=expires,
        )
        return self._external(url)

    def head(self, key: str) -> Optional[Dict[str, Any]]:
        """Returns the object's metadata, or None when no such object is stored."""
        try:
            return self.client.head_object(Bucket=settings.s3_bucket_name, Key=key)
        except ClientError as e:
            if e.response["Error"]["Code"] in MISSING_OBJECT_CODES:
                return None
            raise

    def read(self, key: str) -> bytes:
        resp = self.client.get_object(Bucket=settings.s3_bucket_name, Key=key)
        return resp["Body"].read()

    def delete(self, key: str):
        self.client.delete_object(Bucket=settings.s3_bucket_name, Key=key)
        log.debug("Deleted s3://%s/%s", settings.s3_bucket_name, key)

    def close(self):
        log.info("Closed S3 client")

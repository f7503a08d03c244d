"""S3 adapter for the ``ObjectStore`` protocol."""
from __future__ import annotations

from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..errors import ExternalServiceError


class S3ObjectStore:
    def __init__(self, bucket: str, region: str, client: Any = None) -> None:
        self.bucket = bucket
        self.region = region
        self.client = client or boto3.client("s3", region_name=region)

    def url_for(self, key: str) -> str:
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"

    def put_object(self, key: str, body: bytes, content_type: str, metadata: dict[str, str] | None = None) -> str:
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=body,
                ContentType=content_type,
                Metadata=metadata or {},
            )
        except (ClientError, BotoCoreError) as exc:
            raise ExternalServiceError(f"S3 put_object {key} failed: {exc}") from exc
        return self.url_for(key)

    def head_object(self, key: str) -> bool:
        try:
            self.client.head_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
            code = exc.response.get("Error", {}).get("Code")
            if status == 404 or code in {"404", "NotFound", "NoSuchKey"}:
                return False
            raise ExternalServiceError(f"S3 head_object {key} failed: {exc}") from exc
        except BotoCoreError as exc:
            raise ExternalServiceError(f"S3 head_object {key} failed: {exc}") from exc
        return True

"""
Object storage for complaint images: S3-compatible (Tencent COS) and in-memory.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Protocol

import boto3
from botocore.config import Config


class StorageClient(Protocol):
    """Defines the operations the API needs from object storage."""

    def upload_bytes(self, path: str, data: bytes, content_type: str) -> None:
        ...

    def presign_get(self, path: str, expires_in: int = 3600) -> str:
        ...

    def delete(self, path: str) -> None:
        ...


@dataclass
class InMemoryStorageClient:
    """Test double for storage interactions."""

    base_url: str = "https://example.test/storage"
    stored_objects: Dict[str, bytes] = field(default_factory=dict)

    def upload_bytes(self, path: str, data: bytes, content_type: str) -> None:
        self.stored_objects[path] = data

    def presign_get(self, path: str, expires_in: int = 3600) -> str:
        return f"{self.base_url}/{path}?op=get&expires={expires_in}"

    def delete(self, path: str) -> None:
        self.stored_objects.pop(path, None)


@dataclass
class CosStorageClient:
    """
    S3-compatible storage client for Tencent COS.
    """

    bucket: str
    region: str
    endpoint: str
    access_key_id: str
    secret_access_key: str

    def __post_init__(self):
        # Use virtual-hosted style addressing to satisfy COS requirements.
        config = Config(
            s3={"addressing_style": "virtual"},
            signature_version="s3v4",
        )
        self._client = boto3.client(
            "s3",
            endpoint_url=self.endpoint,
            region_name=self.region,
            aws_access_key_id=self.access_key_id,
            aws_secret_access_key=self.secret_access_key,
            config=config,
        )

    def upload_bytes(self, path: str, data: bytes, content_type: str) -> None:
        self._client.put_object(
            Bucket=self.bucket, Key=path, Body=data, ContentType=content_type
        )

    def presign_get(self, path: str, expires_in: int = 3600) -> str:
        return self._client.generate_presigned_url(
            ClientMethod="get_object",
            Params={"Bucket": self.bucket, "Key": path},
            ExpiresIn=expires_in,
        )

    def delete(self, path: str) -> None:
        self._client.delete_object(Bucket=self.bucket, Key=path)

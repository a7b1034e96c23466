from __future__ import annotations

import logging
from typing import Dict, Optional, Protocol, Tuple

from engines.image_handler import config
from engines.image_handler.errors import CollaboratorError, collaborator_error

logger = logging.getLogger(__name__)


class ObjectStorage(Protocol):
    """Blob storage used to fetch overlay assets."""

    def get(self, bucket: str, key: str) -> bytes:
        ...


class S3ObjectStorage:
    """S3-backed asset storage; failures keep the service's status, code and message."""

    def __init__(self, client: Optional[object] = None, region: Optional[str] = None) -> None:
        if client is not None:
            self.client = client
        else:
            try:
                import boto3  # type: ignore
            except Exception as exc:  # pragma: no cover - import error path
                raise RuntimeError("boto3 is required for S3 object storage") from exc
            self.client = boto3.client("s3", region_name=region or config.get_aws_region())

    def get(self, bucket: str, key: str) -> bytes:
        try:
            response = self.client.get_object(Bucket=bucket, Key=key)
            return response["Body"].read()
        except Exception as exc:
            err = collaborator_error(exc, "s3")
            logger.warning("S3 get_object failed for s3://%s/%s: %s %s", bucket, key, err.status, err.code)
            raise err from exc


class InMemoryObjectStorage:
    """Dictionary-backed storage for local runs and tests."""

    def __init__(self, objects: Optional[Dict[Tuple[str, str], bytes]] = None) -> None:
        self._objects: Dict[Tuple[str, str], bytes] = dict(objects or {})

    def put(self, bucket: str, key: str, content: bytes) -> None:
        self._objects[(bucket, key)] = content

    def get(self, bucket: str, key: str) -> bytes:
        try:
            return self._objects[(bucket, key)]
        except KeyError:
            raise CollaboratorError(404, "NoSuchKey", "The specified key does not exist.", "memory") from None

# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_workspace

from typing import Any, Callable, Protocol, TypeVar

import anyio
import boto3
from botocore.exceptions import BotoCoreError, ClientError
from loguru import logger

from coreason_workspace.exceptions import UpstreamFailure

T = TypeVar("T")


class ObjectStorage(Protocol):
    """Protocol for the authoritative project store."""

    async def list_objects(self, prefix: str) -> list[str]: ...

    async def get_object(self, key: str) -> str: ...

    async def put_object(self, key: str, body: str) -> None: ...

    async def copy_object(self, source_key: str, dest_key: str) -> None: ...

    async def delete_objects(self, keys: list[str]) -> None: ...


class S3Storage:
    """S3 implementation of the ObjectStorage protocol (works with R2 and MinIO)."""

    def __init__(
        self,
        bucket: str,
        region: str | None = None,
        access_key: str | None = None,
        secret_key: str | None = None,
        endpoint_url: str | None = None,
    ):
        """Initializes the S3Storage backend.

        Args:
            bucket: The S3 bucket name.
            region: Optional AWS region name.
            access_key: Optional AWS access key ID.
            secret_key: Optional AWS secret access key.
            endpoint_url: Optional endpoint URL for S3-compatible services (e.g., R2, MinIO).
        """
        self.bucket = bucket
        self.client = boto3.client(
            "s3",
            region_name=region,
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            endpoint_url=endpoint_url,
        )

    async def _call(self, action: str, func: Callable[[], T]) -> T:
        try:
            return await anyio.to_thread.run_sync(func)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to {action} in s3://{self.bucket}: {e}")
            raise UpstreamFailure(f"Object storage failed to {action}: {e}") from e

    async def list_objects(self, prefix: str) -> list[str]:
        """List every object key under ``prefix``.

        Raises:
            UpstreamFailure: If the listing fails.
        """

        def _list() -> list[str]:
            keys: list[str] = []
            paginator = self.client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                keys.extend(obj["Key"] for obj in page.get("Contents", []))
            return keys

        return await self._call(f"list {prefix}", _list)

    async def get_object(self, key: str) -> str:
        """Fetch an object's content as UTF-8 text. Undecodable bytes are replaced.

        Raises:
            UpstreamFailure: If the object cannot be read.
        """

        def _get() -> str:
            response: dict[str, Any] = self.client.get_object(Bucket=self.bucket, Key=key)
            data: bytes = response["Body"].read()
            # Binary objects decode lossily
            return data.decode("utf-8", errors="replace")

        return await self._call(f"read {key}", _get)

    async def put_object(self, key: str, body: str) -> None:
        logger.debug(f"Writing s3://{self.bucket}/{key}")
        await self._call(
            f"write {key}",
            lambda: self.client.put_object(Bucket=self.bucket, Key=key, Body=body.encode("utf-8")),
        )

    async def copy_object(self, source_key: str, dest_key: str) -> None:
        await self._call(
            f"copy {source_key}",
            lambda: self.client.copy_object(
                Bucket=self.bucket,
                Key=dest_key,
                CopySource={"Bucket": self.bucket, "Key": source_key},
            ),
        )

    async def delete_objects(self, keys: list[str]) -> None:
        """Delete a batch of objects. Missing keys are not an error.

        Raises:
            UpstreamFailure: If S3 rejects the request or reports per-key errors.
        """
        if not keys:
            return

        def _delete() -> None:
            # DeleteObjects accepts at most 1000 keys per request
            for start in range(0, len(keys), 1000):
                batch = keys[start : start + 1000]
                response = self.client.delete_objects(
                    Bucket=self.bucket,
                    Delete={"Objects": [{"Key": k} for k in batch], "Quiet": True},
                )
                errors = response.get("Errors", [])
                if errors:
                    raise ClientError(
                        {"Error": {"Code": errors[0].get("Code", "DeleteError"), "Message": str(errors)}},
                        "DeleteObjects",
                    )

        await self._call(f"delete {len(keys)} objects", _delete)

from __future__ import annotations

import asyncio
import logging
from typing import Any, List, Optional

import boto3
from botocore.exceptions import ClientError
from pydantic import BaseModel, ConfigDict, Field

from common.config import ENV_FERNET_KEY, ENV_STATE_BUCKET, first_set
from common.secret import Secret

from .base import DEFAULT_BATCH_CONCURRENCY, DEFAULT_CONTAINER, RemoteStateStore
from .models import Scope


logger = logging.getLogger(__name__)

NOT_FOUND_CODES = {"NoSuchKey", "NoSuchBucket", "NotFound", "404"}


class S3StateStoreOptions(BaseModel):
    """
    Options for `S3StateStore`.

    - prefix: namespace root for object keys (default "alchemy").
    - bucket: existing bucket; falls back to ALCHEMY_STATE_BUCKET, then
      "alchemy-state".
    - region_name: region for the default boto3 client.
    - batch_concurrency: cap on in-flight requests in `get_batch()`.
    - fernet_key: encrypts `Secret` values at rest; falls back to
      ALCHEMY_STATE_FERNET_KEY.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    prefix: Optional[str] = None
    bucket: Optional[str] = None
    region_name: Optional[str] = None
    batch_concurrency: Optional[int] = Field(default=DEFAULT_BATCH_CONCURRENCY, gt=0)
    fernet_key: Optional[str | Secret] = None


class S3StateStore(RemoteStateStore):
    """
    S3-backed state store; the bucket plays the role of the container.

    Notes
    - boto3 is blocking, so each call runs in a worker thread.
    - `list()` drains the `list_objects_v2` paginator before returning.
    - An S3 client may be injected as `s3` (tests, custom sessions).
    """

    def __init__(
        self,
        scope: Scope,
        options: Optional[S3StateStoreOptions] = None,
        *,
        s3: Optional[Any] = None,
    ) -> None:
        opts = options or S3StateStoreOptions()
        bucket = first_set(opts.bucket, ENV_STATE_BUCKET) or DEFAULT_CONTAINER
        super().__init__(
            scope,
            container=bucket,
            prefix=opts.prefix,
            fernet_key=first_set(Secret.unwrap_value(opts.fernet_key), ENV_FERNET_KEY),
            batch_concurrency=opts.batch_concurrency,
        )
        if s3 is None:
            logger.debug("S3 state store: bucket=%s region=%s", bucket, opts.region_name)
            s3 = boto3.client("s3", region_name=opts.region_name)
        self._s3 = s3

    def _is_not_found(self, exc: BaseException) -> bool:
        if not isinstance(exc, ClientError):
            return False
        code = exc.response.get("Error", {}).get("Code")
        status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        return code in NOT_FOUND_CODES or status == 404

    async def _container_exists(self) -> bool:
        try:
            await asyncio.to_thread(self._s3.head_bucket, Bucket=self.container)
        except ClientError as e:
            if self._is_not_found(e):
                return False
            raise
        return True

    async def _read_object(self, name: str) -> bytes:
        resp = await asyncio.to_thread(self._s3.get_object, Bucket=self.container, Key=name)
        return await asyncio.to_thread(resp["Body"].read)

    async def _write_object(self, name: str, data: bytes, content_type: str) -> None:
        await asyncio.to_thread(
            self._s3.put_object,
            Bucket=self.container,
            Key=name,
            Body=data,
            ContentType=content_type,
        )

    async def _delete_object(self, name: str) -> None:
        await asyncio.to_thread(self._s3.delete_object, Bucket=self.container, Key=name)

    async def _list_objects(self, prefix: str) -> List[str]:
        def drain() -> List[str]:
            paginator = self._s3.get_paginator("list_objects_v2")
            names: List[str] = []
            for page in paginator.paginate(Bucket=self.container, Prefix=prefix):
                names.extend(obj["Key"] for obj in page.get("Contents", []))
            return names

        return await asyncio.to_thread(drain)


__all__ = ["S3StateStore", "S3StateStoreOptions"]

from __future__ import annotations

import logging
from typing import Any, List, Optional

from azure.core.credentials import AzureNamedKeyCredential
from azure.core.exceptions import HttpResponseError, ResourceNotFoundError
from azure.storage.blob import ContentSettings
from azure.storage.blob.aio import BlobServiceClient
from pydantic import BaseModel, ConfigDict, Field

from common.config import ENV_FERNET_KEY, first_set
from common.secret import Secret

from .base import DEFAULT_BATCH_CONCURRENCY, DEFAULT_CONTAINER, RemoteStateStore
from .credentials import resolve_storage_account
from .models import Scope


logger = logging.getLogger(__name__)

NOT_FOUND_CODES = {"BlobNotFound", "ContainerNotFound", "ResourceNotFound"}


class BlobStateStoreOptions(BaseModel):
    """
    Options for `BlobStateStore`.

    - prefix: namespace root for object names (default "alchemy"); lets
      several stores share one container.
    - account_name / account_key: storage account credentials; fall back to
      AZURE_STORAGE_ACCOUNT / AZURE_STORAGE_KEY when omitted.
    - container_name: existing container holding the state objects.
    - batch_concurrency: cap on in-flight requests in `get_batch()`;
      None means unbounded.
    - fernet_key: encrypts `Secret` values at rest; falls back to
      ALCHEMY_STATE_FERNET_KEY.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    prefix: Optional[str] = None
    account_name: Optional[str] = None
    account_key: Optional[str | Secret] = None
    container_name: str = Field(default=DEFAULT_CONTAINER, min_length=1)
    batch_concurrency: Optional[int] = Field(default=DEFAULT_BATCH_CONCURRENCY, gt=0)
    fernet_key: Optional[str | Secret] = None


def account_url(account_name: str) -> str:
    return f"https://{account_name}.blob.core.windows.net"


class BlobStateStore(RemoteStateStore):
    """
    Azure Blob Storage-backed state store.

    Usage
    - `BlobStateStore(scope, BlobStateStoreOptions(account_name=..., account_key=...))`
    - Credentials are resolved at construction; missing ones raise
      StateStoreConfigError. The container must already exist; it is never
      created or deleted by the store.
    - A pre-built `azure.storage.blob.aio.BlobServiceClient` may be passed as
      `client`; the store then leaves closing it to the caller.
    """

    def __init__(
        self,
        scope: Scope,
        options: Optional[BlobStateStoreOptions] = None,
        *,
        client: Optional[Any] = None,
    ) -> None:
        opts = options or BlobStateStoreOptions()
        fernet_key = first_set(Secret.unwrap_value(opts.fernet_key), ENV_FERNET_KEY)
        super().__init__(
            scope,
            container=opts.container_name,
            prefix=opts.prefix,
            fernet_key=fernet_key,
            batch_concurrency=opts.batch_concurrency,
        )
        self._owns_client = client is None
        if client is None:
            name, key = resolve_storage_account(opts.account_name, opts.account_key)
            logger.debug("Blob state store: account=%s container=%s", name, self.container)
            client = BlobServiceClient(
                account_url(name),
                credential=AzureNamedKeyCredential(name, key),
            )
        self._client = client
        self._container_client = client.get_container_client(self.container)

    async def close(self) -> None:
        if self._owns_client:
            await self._client.close()

    def _is_not_found(self, exc: BaseException) -> bool:
        if isinstance(exc, ResourceNotFoundError):
            return True
        if isinstance(exc, HttpResponseError):
            return (
                getattr(exc, "status_code", None) == 404
                or getattr(exc, "error_code", None) in NOT_FOUND_CODES
            )
        return False

    async def _container_exists(self) -> bool:
        return await self._container_client.exists()

    async def _read_object(self, name: str) -> bytes:
        blob = self._container_client.get_blob_client(name)
        downloader = await blob.download_blob()
        return await downloader.readall()

    async def _write_object(self, name: str, data: bytes, content_type: str) -> None:
        blob = self._container_client.get_blob_client(name)
        await blob.upload_blob(
            data,
            overwrite=True,
            content_settings=ContentSettings(content_type=content_type),
        )

    async def _delete_object(self, name: str) -> None:
        blob = self._container_client.get_blob_client(name)
        await blob.delete_blob()

    async def _list_objects(self, prefix: str) -> List[str]:
        # Paging is handled by the async iterator
        return [props.name async for props in self._container_client.list_blobs(name_starts_with=prefix)]


__all__ = ["BlobStateStore", "BlobStateStoreOptions", "account_url"]

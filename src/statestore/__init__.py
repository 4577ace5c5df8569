"""
Remote state stores for infrastructure-as-code deployments.

This package persists one serialized `State` per logical resource key,
namespaced by a deployment `Scope`, on a remote object store (Azure Blob
Storage or S3).
"""

from .base import RemoteStateStore
from .blob_store import BlobStateStore, BlobStateStoreOptions
from .credentials import resolve_azure_credentials, resolve_storage_account
from .errors import (
    ContainerNotFoundError,
    InvalidCredentialsError,
    InvalidKeyError,
    StateSerializationError,
    StateStoreConfigError,
    StateStoreError,
)
from .models import RESOURCE_SCOPE, Scope, State
from .s3_store import S3StateStore, S3StateStoreOptions
from .serde import StateSerializer

__all__ = [
    "RemoteStateStore",
    "BlobStateStore",
    "BlobStateStoreOptions",
    "S3StateStore",
    "S3StateStoreOptions",
    "StateSerializer",
    "resolve_azure_credentials",
    "resolve_storage_account",
    "RESOURCE_SCOPE",
    "Scope",
    "State",
    "StateStoreError",
    "StateStoreConfigError",
    "ContainerNotFoundError",
    "InvalidCredentialsError",
    "InvalidKeyError",
    "StateSerializationError",
]

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional, Tuple

from common.config import (
    ENV_CLIENT_ID,
    ENV_CLIENT_SECRET,
    ENV_STORAGE_ACCOUNT,
    ENV_STORAGE_KEY,
    ENV_SUBSCRIPTION_ID,
    ENV_TENANT_ID,
    first_set,
    getenv,
)
from common.secret import Secret, is_secret

from .errors import InvalidCredentialsError, StateStoreConfigError


logger = logging.getLogger(__name__)

AZURE_CREDENTIAL_FIELDS = ("subscription_id", "tenant_id", "client_id", "client_secret")


def _require(value: Optional[str], what: str, env_name: str) -> str:
    if not value:
        raise StateStoreConfigError(
            f"{what} is required. Set {env_name} environment variable or provide it in options."
        )
    return value


def _validate_azure_props(props: Mapping[str, Any], context: str) -> None:
    for name, value in props.items():
        if name not in AZURE_CREDENTIAL_FIELDS:
            continue  # unknown properties are ignored
        if value is not None and not isinstance(value, str) and not is_secret(value):
            raise InvalidCredentialsError(
                f"Invalid Azure configuration in {context}: Property '{name}' must be a "
                f"string or Secret, got {type(value).__name__}."
            )


def global_azure_config() -> Dict[str, Any]:
    """Azure credentials from the environment (lowest precedence)."""
    tenant = getenv(ENV_TENANT_ID)
    client = getenv(ENV_CLIENT_ID)
    client_secret = getenv(ENV_CLIENT_SECRET)
    return {
        "subscription_id": getenv(ENV_SUBSCRIPTION_ID),
        "tenant_id": Secret(tenant) if tenant else None,
        "client_id": Secret(client) if client else None,
        "client_secret": Secret(client_secret) if client_secret else None,
    }


def resolve_azure_credentials(
    resource_props: Optional[Mapping[str, Any]] = None,
    scope: Optional[Any] = None,
) -> Dict[str, str]:
    """Resolve Azure credentials: resource props > scope > environment.

    - `scope` is any object with a `provider_credentials` mapping; its
      `"azure"` entry is layered over the environment.
    - Recognized fields: subscription_id, tenant_id, client_id, client_secret.
      Each must be a `str` or `Secret`; other keys are ignored.

    Returns a dict of plain strings with unset fields omitted.
    Raises InvalidCredentialsError when a layer holds a non-string value.
    """
    resolved: Dict[str, Any] = dict(global_azure_config())

    provider_creds = getattr(scope, "provider_credentials", None) or {}
    scope_props = provider_creds.get("azure") or {}
    if scope_props:
        _validate_azure_props(scope_props, "scope")
        resolved.update({k: v for k, v in scope_props.items() if k in AZURE_CREDENTIAL_FIELDS})

    if resource_props:
        _validate_azure_props(resource_props, "resource properties")
        resolved.update({k: v for k, v in resource_props.items() if k in AZURE_CREDENTIAL_FIELDS})

    out = {k: Secret.unwrap_value(v) for k, v in resolved.items() if v is not None}
    logger.debug("Resolved Azure credential fields: %s", sorted(out))
    return out


def resolve_storage_account(
    account_name: Optional[str] = None,
    account_key: Optional[str | Secret] = None,
) -> Tuple[str, str]:
    """Return `(account_name, account_key)` for a storage account.

    Explicit values win; `AZURE_STORAGE_ACCOUNT` / `AZURE_STORAGE_KEY` are
    read only for omitted values. Raises StateStoreConfigError if either is
    still missing.
    """
    name = _require(
        first_set(account_name, ENV_STORAGE_ACCOUNT),
        "Azure Storage account name",
        ENV_STORAGE_ACCOUNT,
    )
    key = _require(
        first_set(Secret.unwrap_value(account_key), ENV_STORAGE_KEY),
        "Azure Storage account key",
        ENV_STORAGE_KEY,
    )
    return name, key

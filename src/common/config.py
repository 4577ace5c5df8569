from __future__ import annotations

import os
from typing import Optional


# Environment variable names recognized as fallbacks for explicit options
ENV_STORAGE_ACCOUNT = "AZURE_STORAGE_ACCOUNT"
ENV_STORAGE_KEY = "AZURE_STORAGE_KEY"
ENV_STATE_BUCKET = "ALCHEMY_STATE_BUCKET"
ENV_FERNET_KEY = "ALCHEMY_STATE_FERNET_KEY"

ENV_SUBSCRIPTION_ID = "AZURE_SUBSCRIPTION_ID"
ENV_TENANT_ID = "AZURE_TENANT_ID"
ENV_CLIENT_ID = "AZURE_CLIENT_ID"
ENV_CLIENT_SECRET = "AZURE_CLIENT_SECRET"


def getenv(name: str, default: Optional[str] = None) -> Optional[str]:
    val = os.environ.get(name)
    return val if val not in (None, "") else default


def first_set(explicit: Optional[str], env_name: str) -> Optional[str]:
    """Return `explicit` unless empty, else the value of `env_name`."""
    if explicit not in (None, ""):
        return explicit
    return getenv(env_name)

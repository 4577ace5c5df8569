from __future__ import annotations

from typing import Any, Dict, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, SkipValidation, field_validator


# Reserved output key under which `get()` exposes the store's Scope.
# Never persisted.
RESOURCE_SCOPE = "__scope__"

StateStatus = Literal["creating", "created", "updating", "updated", "deleting", "deleted"]


class Scope(BaseModel):
    """
    Ordered chain of logical names (app -> stage -> nested scope).

    The chain determines the storage key prefix of every State kept for this
    scope. `provider_credentials` holds optional per-provider credential
    overrides (e.g. {"azure": {"subscription_id": ...}}).
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    chain: Tuple[str, ...]
    provider_credentials: Dict[str, Dict[str, Any]] = Field(default_factory=dict)

    @field_validator("chain")
    @classmethod
    def validate_chain(cls, v: Tuple[str, ...]) -> Tuple[str, ...]:
        if not v:
            raise ValueError("Scope chain must contain at least one name")
        for name in v:
            if not name or "/" in name or ":" in name:
                raise ValueError(f"Invalid scope name {name!r}: must be non-empty and contain no '/' or ':'")
        return v

    @classmethod
    def root(cls, app: str, stage: Optional[str] = None, **kwargs: Any) -> "Scope":
        chain = (app,) if stage is None else (app, stage)
        return cls(chain=chain, **kwargs)

    def child(self, name: str) -> "Scope":
        return Scope(chain=(*self.chain, name), provider_credentials=self.provider_credentials)

    @property
    def path(self) -> str:
        return "/".join(self.chain)


class State(BaseModel):
    """
    Last-known-good output of one logical resource plus bookkeeping.

    Fields
    - status: lifecycle phase of the last operation on the resource.
    - kind: resource type identifier (e.g. "azure::BlobContainer").
    - id: logical id of the resource within its scope.
    - fqn: fully-qualified name (scope chain + id).
    - seq: creation order within the scope.
    - data: engine bookkeeping.
    - props: input properties of the last successful apply.
    - output: resource outputs; may be cyclic and may hold `Secret` values
      or nested `State` objects.

    Notes
    - `data`, `props` and `output` skip validation so that the caller's
      objects (and any cycles between them) are kept by identity.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    status: StateStatus = "created"
    kind: str
    id: str
    fqn: str
    seq: int = 0
    data: SkipValidation[Dict[str, Any]] = Field(default_factory=dict)
    props: SkipValidation[Optional[Dict[str, Any]]] = None
    output: SkipValidation[Dict[str, Any]] = Field(default_factory=dict)


__all__ = ["RESOURCE_SCOPE", "Scope", "State", "StateStatus"]

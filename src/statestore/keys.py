from __future__ import annotations

from typing import Optional, Sequence

from .errors import InvalidKeyError


DEFAULT_PREFIX = "alchemy"

# Logical keys use "/" between segments; object stores treat "/" as their own
# hierarchy separator, so it is stored as ":" instead.
LOGICAL_SEPARATOR = "/"
STORAGE_SEPARATOR = ":"


def build_prefix(chain: Sequence[str], prefix: Optional[str] = None) -> str:
    """Return `<prefix-or-default>/<chain joined by "/">/`."""
    root = (prefix or DEFAULT_PREFIX).rstrip(LOGICAL_SEPARATOR)
    parts = [root, *chain] if root else list(chain)
    return LOGICAL_SEPARATOR.join(parts) + LOGICAL_SEPARATOR


class KeyCodec:
    """Maps logical state keys to remote object names under a fixed prefix.

    `decode(encode(k)) == k` for every key `encode` accepts; keys containing
    ":" are rejected since they would collide after encoding.
    """

    def __init__(self, prefix: str) -> None:
        self._prefix = prefix

    @property
    def prefix(self) -> str:
        return self._prefix

    def encode(self, key: str) -> str:
        if not key:
            raise InvalidKeyError("State key must be a non-empty string")
        if STORAGE_SEPARATOR in key:
            raise InvalidKeyError(f"State key {key!r} must not contain {STORAGE_SEPARATOR!r}")
        return self._prefix + key.replace(LOGICAL_SEPARATOR, STORAGE_SEPARATOR)

    def decode(self, name: str) -> str:
        if not name.startswith(self._prefix):
            raise InvalidKeyError(f"Object name {name!r} is outside prefix {self._prefix!r}")
        return name[len(self._prefix):].replace(STORAGE_SEPARATOR, LOGICAL_SEPARATOR)

    def owns(self, name: str) -> bool:
        """True if `name` is a state object of this prefix, not of a nested scope."""
        if not name.startswith(self._prefix):
            return False
        rest = name[len(self._prefix):]
        return bool(rest) and LOGICAL_SEPARATOR not in rest

from __future__ import annotations

from typing import Any


class Secret:
    """
    Wrapper marking a string value as sensitive.

    Notes
    - `repr()`/`str()` never reveal the wrapped value, so secrets are safe to log.
    - The state serializer writes a `Secret` as a tagged object rather than a
      bare string, and rebuilds the wrapper on read.
    """

    __slots__ = ("_value",)

    def __init__(self, value: str) -> None:
        if isinstance(value, Secret):
            value = value.unwrap()
        if not isinstance(value, str):
            raise TypeError(f"Secret value must be a string, got {type(value).__name__}")
        self._value = value

    def unwrap(self) -> str:
        return self._value

    @staticmethod
    def unwrap_value(value: Any) -> Any:
        """Return the plain value of a `Secret`, or `value` unchanged."""
        if isinstance(value, Secret):
            return value.unwrap()
        return value

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Secret):
            return NotImplemented
        return self._value == other._value

    def __hash__(self) -> int:
        return hash((Secret, self._value))

    def __repr__(self) -> str:
        return "Secret(******)"

    __str__ = __repr__


def is_secret(value: Any) -> bool:
    return isinstance(value, Secret)

from __future__ import annotations


class StateStoreError(RuntimeError):
    """Base error for remote state stores."""


class StateStoreConfigError(StateStoreError):
    """Required configuration (e.g. storage credentials) could not be resolved."""


class ContainerNotFoundError(StateStoreError):
    """The backing container/bucket does not exist or is not reachable."""

    def __init__(self, container: str) -> None:
        super().__init__(
            f"State store container '{container}' does not exist. Please create the container first."
        )
        self.container = container


class InvalidCredentialsError(StateStoreConfigError):
    """A credential layer holds a value that is neither a string nor a Secret."""


class InvalidKeyError(ValueError):
    """A logical key cannot be mapped to a remote object name."""


class StateSerializationError(ValueError):
    """State could not be serialized, or stored bytes could not be decoded."""


__all__ = [
    "StateStoreError",
    "StateStoreConfigError",
    "ContainerNotFoundError",
    "InvalidCredentialsError",
    "InvalidKeyError",
    "StateSerializationError",
]

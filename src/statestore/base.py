from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional

from .errors import ContainerNotFoundError
from .keys import KeyCodec, build_prefix
from .models import RESOURCE_SCOPE, Scope, State
from .serde import StateSerializer


logger = logging.getLogger(__name__)

DEFAULT_CONTAINER = "alchemy-state"
DEFAULT_BATCH_CONCURRENCY = 16
CONTENT_TYPE = "application/json"


class RemoteStateStore(ABC):
    """
    Namespaced key -> State persistence on a remote object store.

    Usage
    - Construct with the Scope whose states are stored; no I/O happens here.
    - `init()` checks that the container exists. Every data operation calls
      it implicitly on first use, so calling it explicitly is optional.
    - `get()` returns None for keys that were never written; `delete()` of a
      missing key is a no-op. All other remote errors propagate unchanged.

    Objects are named `<prefix>/<scope chain>/<key with "/" stored as ":">`.

    Notes
    - The store does not lock. Callers must ensure at most one concurrent
      writer per key; independent keys may be used concurrently.
    - No retries or backoff: retry policy belongs to the caller.

    Backends implement the underscore-prefixed transport methods.
    """

    def __init__(
        self,
        scope: Scope,
        *,
        container: str = DEFAULT_CONTAINER,
        prefix: Optional[str] = None,
        fernet_key: Optional[str | bytes] = None,
        batch_concurrency: Optional[int] = DEFAULT_BATCH_CONCURRENCY,
    ) -> None:
        if batch_concurrency is not None and batch_concurrency <= 0:
            raise ValueError("batch_concurrency must be > 0 or None")
        self.scope = scope
        self.container = container
        self._codec = KeyCodec(build_prefix(scope.chain, prefix))
        self._serde = StateSerializer(fernet_key)
        self._batch_concurrency = batch_concurrency
        self._initialized = False
        self._init_task: Optional[asyncio.Future[None]] = None

    @property
    def prefix(self) -> str:
        return self._codec.prefix

    # -------- Transport (backend specific) --------
    @abstractmethod
    async def _container_exists(self) -> bool: ...

    @abstractmethod
    async def _read_object(self, name: str) -> bytes: ...

    @abstractmethod
    async def _write_object(self, name: str, data: bytes, content_type: str) -> None: ...

    @abstractmethod
    async def _delete_object(self, name: str) -> None: ...

    @abstractmethod
    async def _list_objects(self, prefix: str) -> List[str]:
        """Return all object names starting with `prefix`, across every page."""

    @abstractmethod
    def _is_not_found(self, exc: BaseException) -> bool:
        """True if `exc` is the backend's object/container-missing error."""

    async def close(self) -> None:
        """Release transport resources owned by the store."""

    # -------- Lifecycle --------
    async def init(self) -> None:
        """Verify the container exists; idempotent and shared between concurrent callers."""
        if self._initialized:
            return
        if self._init_task is None:
            self._init_task = asyncio.ensure_future(self._check_container())
            self._init_task.add_done_callback(self._init_finished)
        task = self._init_task
        try:
            await asyncio.shield(task)
        except BaseException:
            # Let the next caller try again
            if self._init_task is task and task.done():
                self._init_task = None
            raise
        self._initialized = True

    def _init_finished(self, task: asyncio.Future[None]) -> None:
        # Consume the outcome even when every waiter was cancelled
        if task.cancelled() or task.exception() is not None:
            if self._init_task is task:
                self._init_task = None

    async def ensure_ready(self) -> None:
        if not self._initialized:
            await self.init()

    async def deinit(self) -> None:
        """No-op: the container is managed outside the store."""

    async def _check_container(self) -> None:
        try:
            exists = await self._container_exists()
        except Exception as exc:
            if self._is_not_found(exc):
                raise ContainerNotFoundError(self.container) from exc
            raise
        if not exists:
            raise ContainerNotFoundError(self.container)
        logger.debug("State store ready: container=%s prefix=%s", self.container, self.prefix)

    async def __aenter__(self) -> "RemoteStateStore":
        await self.init()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # -------- Core operations --------
    async def get(self, key: str) -> Optional[State]:
        """Return the State stored under `key`, or None if there is none.

        The returned output carries this store's Scope under RESOURCE_SCOPE.
        Raises StateSerializationError if the stored bytes cannot be decoded.
        """
        await self.ensure_ready()
        name = self._codec.encode(key)
        try:
            data = await self._read_object(name)
        except Exception as exc:
            if self._is_not_found(exc):
                return None
            raise

        state = self._serde.loads(data)
        if state.output is None:
            state.output = {}
        state.output[RESOURCE_SCOPE] = self.scope
        return state

    async def set(self, key: str, state: State) -> None:
        await self.ensure_ready()
        name = self._codec.encode(key)
        data = self._serde.dumps(state)
        await self._write_object(name, data, CONTENT_TYPE)
        logger.debug("Wrote state %s (%d bytes)", name, len(data))

    async def delete(self, key: str) -> None:
        await self.ensure_ready()
        name = self._codec.encode(key)
        try:
            await self._delete_object(name)
        except Exception as exc:
            if not self._is_not_found(exc):
                raise
            logger.debug("Delete of missing state %s ignored", name)
            return
        logger.debug("Deleted state %s", name)

    async def list(self) -> List[str]:
        """Return every logical key stored under this scope (unordered)."""
        await self.ensure_ready()
        names = await self._list_objects(self.prefix)
        keys = [self._codec.decode(n) for n in names if self._codec.owns(n)]
        logger.debug("Listed %d state key(s) under %s", len(keys), self.prefix)
        return keys

    async def count(self) -> int:
        return len(await self.list())

    async def get_batch(self, keys: Iterable[str]) -> Dict[str, State]:
        """Fetch several keys concurrently; keys with no state are omitted.

        At most `batch_concurrency` requests are in flight at once. If any
        fetch fails, the first error is raised once all fetches finish.
        """
        keys = list(dict.fromkeys(keys))
        if not keys:
            return {}
        await self.ensure_ready()

        limit = self._batch_concurrency
        sem = asyncio.Semaphore(limit) if limit else None

        async def fetch(key: str) -> Optional[State]:
            if sem is None:
                return await self.get(key)
            async with sem:
                return await self.get(key)

        results = await asyncio.gather(*(fetch(k) for k in keys), return_exceptions=True)
        out: Dict[str, State] = {}
        for key, res in zip(keys, results):
            if isinstance(res, BaseException):
                raise res
            if res is not None:
                out[key] = res
        return out

    async def all(self) -> Dict[str, State]:
        return await self.get_batch(await self.list())

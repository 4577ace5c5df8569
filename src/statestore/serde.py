"""
Serialization of State objects to JSON bytes.

Outputs may be cyclic and may share sub-objects, so the graph is flattened
into an envelope instead of being dumped recursively:

    {"version": 1, "root": <value>, "nodes": [<node>, ...]}

A value is a JSON scalar, a reference `{"$ref": n}` into `nodes`, a tagged
secret `{"__secret__": true, "value": ..., "encrypted": bool}` or a tagged
timestamp `{"__datetime__": iso}`. Nodes hold the containers:

    {"kind": "dict", "entries": {name: value}}
    {"kind": "list", "items": [value, ...]}
    {"kind": "state", "fields": {name: value}}

Each container is emitted once; every further occurrence (including cycles)
is a `$ref` to it. Decoding restores the same sharing.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from cryptography.fernet import Fernet, InvalidToken

from common.config import ENV_FERNET_KEY
from common.secret import Secret

from .errors import StateSerializationError, StateStoreConfigError
from .models import RESOURCE_SCOPE, Scope, State


ENVELOPE_VERSION = 1

REF = "$ref"
SECRET_TAG = "__secret__"
DATETIME_TAG = "__datetime__"

_SCALARS = (str, int, float, bool)


def to_fernet(key: str | bytes) -> Fernet:
    """Construct a Fernet instance from a user-provided key.

    The key must be a URL-safe base64-encoded 32-byte key (str or bytes),
    as returned by `cryptography.fernet.Fernet.generate_key()`.
    """
    if isinstance(key, str):
        key_bytes = key.encode("utf-8")
    else:
        key_bytes = key
    return Fernet(key_bytes)


class _Encoder:
    def __init__(self, fernet: Optional[Fernet]) -> None:
        self._fernet = fernet
        self.nodes: List[Optional[Dict[str, Any]]] = []
        self._ids: Dict[int, int] = {}
        self._pending: List[Tuple[Any, int]] = []

    def encode(self, root: Any) -> Dict[str, Any]:
        top = self._inline(root)
        while self._pending:
            obj, idx = self._pending.pop()
            self.nodes[idx] = self._node(obj)
        return {"version": ENVELOPE_VERSION, "root": top, "nodes": self.nodes}

    def _inline(self, obj: Any) -> Any:
        if obj is None or isinstance(obj, _SCALARS):
            return obj
        if isinstance(obj, Secret):
            return self._secret(obj)
        if isinstance(obj, datetime):
            return {DATETIME_TAG: obj.isoformat()}
        if isinstance(obj, (dict, list, tuple, State)):
            return {REF: self._ref(obj)}
        raise StateSerializationError(f"Cannot serialize value of type {type(obj).__name__}")

    def _ref(self, obj: Any) -> int:
        idx = self._ids.get(id(obj))
        if idx is None:
            idx = len(self.nodes)
            self._ids[id(obj)] = idx
            self.nodes.append(None)
            self._pending.append((obj, idx))
        return idx

    def _node(self, obj: Any) -> Dict[str, Any]:
        if isinstance(obj, State):
            fields = {name: self._inline(getattr(obj, name)) for name in type(obj).model_fields}
            return {"kind": "state", "fields": fields}
        if isinstance(obj, dict):
            entries: Dict[str, Any] = {}
            for k, v in obj.items():
                if not isinstance(k, str):
                    raise StateSerializationError(
                        f"Cannot serialize mapping key of type {type(k).__name__}; keys must be strings"
                    )
                if k == RESOURCE_SCOPE and isinstance(v, Scope):
                    continue  # injected on read, never stored
                entries[k] = self._inline(v)
            return {"kind": "dict", "entries": entries}
        return {"kind": "list", "items": [self._inline(v) for v in obj]}

    def _secret(self, secret: Secret) -> Dict[str, Any]:
        if self._fernet is None:
            return {SECRET_TAG: True, "value": secret.unwrap(), "encrypted": False}
        token = self._fernet.encrypt(secret.unwrap().encode("utf-8"))
        return {SECRET_TAG: True, "value": token.decode("ascii"), "encrypted": True}


class _Decoder:
    def __init__(self, fernet: Optional[Fernet]) -> None:
        self._fernet = fernet
        self._shells: List[Any] = []

    def decode(self, envelope: Any) -> Any:
        if not isinstance(envelope, dict) or "root" not in envelope:
            raise StateSerializationError("Malformed state envelope: missing 'root'")
        if envelope.get("version") != ENVELOPE_VERSION:
            raise StateSerializationError(f"Unsupported state envelope version: {envelope.get('version')!r}")
        nodes = envelope.get("nodes")
        if not isinstance(nodes, list):
            raise StateSerializationError("Malformed state envelope: 'nodes' must be a list")

        # Create every container first so references (and cycles) can resolve
        for node in nodes:
            self._shells.append(self._shell(node))
        for node, shell in zip(nodes, self._shells):
            self._fill(node, shell)
        return self._value(envelope["root"])

    @staticmethod
    def _shell(node: Any) -> Any:
        kind = node.get("kind") if isinstance(node, dict) else None
        if kind == "dict":
            return {}
        if kind == "list":
            return []
        if kind == "state":
            return State.model_construct()
        raise StateSerializationError(f"Malformed state envelope: unknown node {node!r:.80}")

    def _fill(self, node: Dict[str, Any], shell: Any) -> None:
        kind = node["kind"]
        if kind == "dict":
            entries = node.get("entries") or {}
            if not isinstance(entries, dict):
                raise StateSerializationError("Malformed state envelope: dict 'entries' must be an object")
            for k, v in entries.items():
                shell[k] = self._value(v)
        elif kind == "list":
            items = node.get("items") or []
            if not isinstance(items, list):
                raise StateSerializationError("Malformed state envelope: list 'items' must be an array")
            shell.extend(self._value(v) for v in items)
        else:
            fields = node.get("fields") or {}
            if not isinstance(fields, dict):
                raise StateSerializationError("Malformed state envelope: state 'fields' must be an object")
            missing = [n for n, f in State.model_fields.items() if f.is_required() and n not in fields]
            if missing:
                raise StateSerializationError(f"Malformed state envelope: state missing {', '.join(missing)}")
            for name, v in fields.items():
                if name in State.model_fields:
                    setattr(shell, name, self._value(v))

    def _value(self, raw: Any) -> Any:
        if raw is None or isinstance(raw, _SCALARS):
            return raw
        if isinstance(raw, dict):
            if REF in raw:
                idx = raw[REF]
                if not isinstance(idx, int) or not 0 <= idx < len(self._shells):
                    raise StateSerializationError(f"Malformed state envelope: dangling reference {idx!r}")
                return self._shells[idx]
            if raw.get(SECRET_TAG) is True:
                return self._secret(raw)
            if DATETIME_TAG in raw:
                try:
                    return datetime.fromisoformat(raw[DATETIME_TAG])
                except (TypeError, ValueError) as ex:
                    raise StateSerializationError(f"Malformed timestamp: {raw[DATETIME_TAG]!r:.80}") from ex
        raise StateSerializationError(f"Malformed state envelope: unexpected value {raw!r:.80}")

    def _secret(self, raw: Dict[str, Any]) -> Secret:
        value = raw.get("value")
        if not isinstance(value, str):
            raise StateSerializationError("Malformed secret: 'value' must be a string")
        if not raw.get("encrypted"):
            return Secret(value)
        if self._fernet is None:
            raise StateSerializationError("Encrypted secret found but no Fernet key is configured")
        try:
            return Secret(self._fernet.decrypt(value.encode("ascii")).decode("utf-8"))
        except (InvalidToken, UnicodeError) as ex:
            raise StateSerializationError("Failed to decrypt secret: invalid Fernet token") from ex


class StateSerializer:
    """
    Converts State objects to and from JSON bytes.

    - `fernet_key`: optional Fernet key; when set, `Secret` values are stored
      encrypted, otherwise they are stored as tagged plaintext.
    """

    def __init__(self, fernet_key: Optional[str | bytes] = None) -> None:
        self._fernet: Optional[Fernet] = None
        if fernet_key:
            try:
                self._fernet = to_fernet(fernet_key)
            except ValueError as ex:
                raise StateStoreConfigError(
                    f"Invalid Fernet key. Set {ENV_FERNET_KEY} or the fernet_key option to a "
                    "url-safe base64-encoded 32-byte key."
                ) from ex

    def encode(self, state: State) -> Dict[str, Any]:
        return _Encoder(self._fernet).encode(state)

    def decode(self, envelope: Any) -> State:
        state = _Decoder(self._fernet).decode(envelope)
        if not isinstance(state, State):
            raise StateSerializationError("Malformed state envelope: root is not a state")
        return state

    def dumps(self, state: State) -> bytes:
        return json.dumps(self.encode(state), separators=(",", ":")).encode("utf-8")

    def loads(self, data: bytes) -> State:
        try:
            raw = json.loads(data.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as ex:
            raise StateSerializationError("Failed to parse state JSON") from ex
        return self.decode(raw)


__all__ = ["StateSerializer", "to_fernet", "ENVELOPE_VERSION"]

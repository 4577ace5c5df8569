from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest
from cryptography.fernet import Fernet

from common.secret import Secret
from statestore.errors import StateSerializationError, StateStoreConfigError
from statestore.models import RESOURCE_SCOPE, Scope, State
from statestore.serde import StateSerializer


def _state(**output) -> State:
    return State(kind="azure::StorageAccount", id="sa", fqn="app/prod/sa", seq=3, output=output)


def test_plain_state_roundtrip():
    serde = StateSerializer()
    src = State(
        status="updated",
        kind="azure::StorageAccount",
        id="sa",
        fqn="app/prod/sa",
        seq=3,
        data={"replaced": False},
        props={"sku": "Standard_LRS", "tags": ["a", "b"]},
        output={"endpoint": "https://sa.blob.core.windows.net", "port": 443, "ratio": 0.5, "none": None},
    )
    dst = serde.loads(serde.dumps(src))
    assert dst == src


def test_cyclic_output_preserves_identity():
    network = {"name": "vnet"}
    subnet = {"name": "default", "network": network}
    network["subnets"] = [subnet]
    network["self"] = network

    dst = StateSerializer().loads(StateSerializer().dumps(_state(network=network)))

    net = dst.output["network"]
    assert net["name"] == "vnet"
    assert net["self"] is net
    assert net["subnets"][0]["network"] is net


def test_shared_objects_are_emitted_once():
    shared = {"region": "eastus"}
    envelope = StateSerializer().encode(_state(a=shared, b=shared))
    dict_nodes = [n for n in envelope["nodes"] if n["kind"] == "dict" and "region" in n["entries"]]
    assert len(dict_nodes) == 1

    dst = StateSerializer().decode(json.loads(json.dumps(envelope)))
    assert dst.output["a"] is dst.output["b"]


def test_nested_state_reference():
    parent = _state(name="parent")
    child = State(kind="azure::BlobContainer", id="c", fqn="app/prod/c", output={"account": parent})
    parent.output["children"] = [child]

    dst = StateSerializer().loads(StateSerializer().dumps(child))
    account = dst.output["account"]
    assert isinstance(account, State)
    assert account.id == "sa"
    assert account.output["children"][0] is dst


def test_plaintext_secret_is_tagged():
    serde = StateSerializer()
    envelope = serde.encode(_state(key=Secret("abc")))
    output_node = next(n for n in envelope["nodes"] if n["kind"] == "dict" and "key" in n["entries"])
    assert output_node["entries"]["key"] == {"__secret__": True, "value": "abc", "encrypted": False}

    dst = serde.decode(envelope)
    assert isinstance(dst.output["key"], Secret)
    assert dst.output["key"].unwrap() == "abc"


def test_encrypted_secret_roundtrip():
    serde = StateSerializer(Fernet.generate_key())
    data = serde.dumps(_state(key=Secret("very-secret")))
    assert b"very-secret" not in data
    assert serde.loads(data).output["key"] == Secret("very-secret")


def test_encrypted_secret_with_wrong_key_fails():
    data = StateSerializer(Fernet.generate_key()).dumps(_state(key=Secret("x")))
    with pytest.raises(StateSerializationError):
        StateSerializer(Fernet.generate_key()).loads(data)
    with pytest.raises(StateSerializationError):
        StateSerializer().loads(data)


def test_datetime_roundtrip():
    ts = datetime(2025, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    dst = StateSerializer().loads(StateSerializer().dumps(_state(created_at=ts)))
    assert dst.output["created_at"] == ts


def test_injected_scope_is_not_persisted():
    state = _state(name="x")
    state.output[RESOURCE_SCOPE] = Scope(chain=("app",))
    dst = StateSerializer().loads(StateSerializer().dumps(state))
    assert RESOURCE_SCOPE not in dst.output


def test_tuple_serializes_as_list():
    dst = StateSerializer().loads(StateSerializer().dumps(_state(ports=(80, 443))))
    assert dst.output["ports"] == [80, 443]


def test_non_string_keys_rejected():
    with pytest.raises(StateSerializationError):
        StateSerializer().dumps(_state(by_port={80: "http"}))


def test_unsupported_type_rejected():
    with pytest.raises(StateSerializationError):
        StateSerializer().dumps(_state(handle=object()))


@pytest.mark.parametrize(
    "data",
    [
        b"not json",
        b"\xff\xfe",
        b"{}",
        b'{"version": 1, "root": {"$ref": 0}, "nodes": []}',
        b'{"version": 1, "root": {"$ref": 0}, "nodes": [{"kind": "dict", "entries": {}}]}',
        b'{"version": 1, "root": {"$ref": 0}, "nodes": [{"kind": "state", "fields": {"id": "x"}}]}',
        b'{"version": 9, "root": null, "nodes": []}',
        b'{"version": 1, "root": {"$ref": 0}, "nodes": [{"kind": "dict", "entries": [1]}]}',
        b'{"version": 1, "root": {"$ref": 0}, "nodes": [{"kind": "list", "items": {"a": 1}}]}',
        b'{"version": 1, "root": {"$ref": 0}, "nodes": [{"kind": "state", "fields": [1]}]}',
        b'{"version": 1, "root": {"$ref": 0}, "nodes": [{"kind": "state", "fields": {"kind": "k", "id": "i", "fqn": "f", "output": {"$ref": 1}}}, {"kind": "dict", "entries": {"at": {"__datetime__": "nope"}}}]}',
        b'{"version": 1, "root": {"$ref": 0}, "nodes": [{"kind": "state", "fields": {"kind": "k", "id": "i", "fqn": "f", "output": {"$ref": 1}}}, {"kind": "dict", "entries": {"at": {"__datetime__": 5}}}]}',
    ],
)
def test_malformed_payloads_raise(data):
    with pytest.raises(StateSerializationError):
        StateSerializer().loads(data)


def test_invalid_fernet_key_is_config_error():
    with pytest.raises(StateStoreConfigError, match="ALCHEMY_STATE_FERNET_KEY"):
        StateSerializer("not-a-key")

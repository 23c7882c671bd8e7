import json
import math
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, List, Tuple

import pytest
from cryptography.fernet import Fernet
from pydantic import BaseModel

from actor_persistence.codec import FernetCipher, JsonPayloadCodec, PayloadRegistry
from actor_persistence.errors import DecodeError, EncodeError

registry = PayloadRegistry()


@registry.register
class Deposited(BaseModel):
    account: str
    amount: int


@registry.register(name="ledger.Balance")
class Balance(BaseModel):
    account: str
    total: int
    history: List[Deposited] = []
    window: Tuple[int, int] = (0, 0)


@registry.register
class Envelope(BaseModel):
    body: Any


class NotRegistered(BaseModel):
    value: int


@pytest.fixture
def codec():
    return JsonPayloadCodec(registry=registry)


@pytest.mark.parametrize(
    "payload",
    [
        None,
        True,
        0,
        -(2**63),
        1.5,
        "text",
        [1, "a", None],
        (1, "two", 3.0),
        {"a": 1, "b": [1, 2]},
        {1, 2, 3},
        frozenset({"x", "y"}),
        b"\x00\x01binary",
        datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc),
        datetime(2024, 1, 2, 3, 4, 5),
        date(2024, 1, 2),
        uuid.UUID("12345678-1234-5678-1234-567812345678"),
        Decimal("1.10"),
        Deposited(account="acc-1", amount=10),
        Balance(account="acc-1", total=15, history=[Deposited(account="acc-1", amount=15)], window=(1, 2)),
        {"events": [Deposited(account="a", amount=1), (1, 2)], "meta": {"$type": "not a tag"}},
    ],
)
def test_round_trip_preserves_value_and_type(codec, payload):
    decoded = codec.decode(codec.encode(payload))
    assert decoded == payload
    assert type(decoded) is type(payload)


def test_nested_containers_keep_their_types(codec):
    payload = {"pair": (1, [2, (3,)]), "tags": {"a"}}
    decoded = codec.decode(codec.encode(payload))
    assert type(decoded["pair"]) is tuple
    assert type(decoded["pair"][1]) is list
    assert type(decoded["pair"][1][1]) is tuple
    assert type(decoded["tags"]) is set


def test_encoded_form_carries_type_tag(codec):
    stored = json.loads(codec.encode(Balance(account="a", total=1)))
    assert stored["$type"] == "ledger.Balance"
    assert stored["$value"]["account"] == "a"

    stored = json.loads(codec.encode(Deposited(account="a", amount=1)))
    assert stored["$type"] == f"{__name__}.Deposited"


def test_unregistered_model_is_rejected(codec):
    with pytest.raises(EncodeError, match="not registered"):
        codec.encode(NotRegistered(value=1))


def test_unsupported_type_is_rejected(codec):
    with pytest.raises(EncodeError, match="Unsupported payload type"):
        codec.encode(object())


def test_cyclic_payload_is_rejected(codec):
    payload = [1, 2]
    payload.append(payload)
    with pytest.raises(EncodeError, match="Cyclic"):
        codec.encode(payload)


def test_shared_but_acyclic_references_are_fine(codec):
    shared = [1, 2]
    assert codec.decode(codec.encode([shared, shared])) == [[1, 2], [1, 2]]


def test_non_string_keys_are_rejected(codec):
    with pytest.raises(EncodeError, match="keys must be str"):
        codec.encode({1: "one"})


def test_nan_is_rejected(codec):
    with pytest.raises(EncodeError):
        codec.encode({"value": math.nan})


@pytest.mark.parametrize(
    "text, message",
    [
        ("{not json", "not valid JSON"),
        ('{"a": 1}', "Malformed"),
        ('{"$type": "unknown.Type", "$value": {}}', "Unknown payload type"),
        ('{"$type": "bytes", "$value": "***"}', "Invalid bytes"),
        ('{"$type": "tuple", "$value": "abc"}', "Expected list"),
        ('{"$type": "ledger.Balance", "$value": {"account": "a"}}', "does not match"),
    ],
)
def test_decode_failures(codec, text, message):
    with pytest.raises(DecodeError, match=message):
        codec.decode(text)


def test_registry_rejects_conflicting_names():
    local = PayloadRegistry()
    local.register(Deposited, name="shared")
    local.register(Deposited, name="shared")  # Same class again is fine
    with pytest.raises(ValueError, match="already registered"):
        local.register(Balance, name="shared")
    with pytest.raises(ValueError, match="reserved"):
        local.register(Balance, name="tuple")
    with pytest.raises(TypeError):
        local.register(dict)


def test_registry_lookup():
    assert Balance in registry
    assert registry.name_for(Balance) == "ledger.Balance"
    assert registry.type_for("ledger.Balance") is Balance
    assert NotRegistered not in registry


def test_encrypted_round_trip():
    codec = JsonPayloadCodec(registry=registry, cipher=FernetCipher(Fernet.generate_key()))
    payload = Deposited(account="secret-account", amount=3)
    stored = codec.encode(payload)
    assert "secret-account" not in stored
    assert codec.decode(stored) == payload


def test_decrypting_with_the_wrong_key_fails():
    writer = JsonPayloadCodec(registry=registry, cipher=FernetCipher(Fernet.generate_key()))
    reader = JsonPayloadCodec(registry=registry, cipher=FernetCipher(Fernet.generate_key()))
    with pytest.raises(DecodeError, match="decrypted"):
        reader.decode(writer.encode({"a": 1}))


def test_model_field_typed_any_must_survive_a_round_trip(codec):
    with pytest.raises(EncodeError, match="round trip"):
        codec.encode(Envelope(body=Deposited(account="a", amount=1)))
    with pytest.raises(EncodeError, match="round trip"):
        codec.encode(Envelope(body=(1, 2)))


def test_model_field_typed_any_with_plain_json_is_fine(codec):
    payload = Envelope(body={"account": "a", "amounts": [1, 2]})
    assert codec.decode(codec.encode(payload)) == payload


def deeply_nested(depth):
    payload = []
    for _ in range(depth):
        payload = [payload]
    return payload


def test_deep_nesting_is_an_encode_error(codec):
    with pytest.raises(EncodeError, match="nested too deeply"):
        codec.encode(deeply_nested(5000))


def test_deep_nesting_is_a_decode_error(codec):
    text = "[" * 100000 + "]" * 100000
    with pytest.raises(DecodeError, match="nested too deeply"):
        codec.decode(text)

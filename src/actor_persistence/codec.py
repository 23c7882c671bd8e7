"""
This module converts event and snapshot payloads to stored text and back.

The stored form is JSON in which every object is a tagged node:

    {"$type": "<tag>", "$value": <body>}

Tags either name a built-in container/scalar shape (`dict`, `tuple`, `set`,
`bytes`, `datetime`, ...) or a Pydantic model registered in a
`PayloadRegistry`. Because the tag travels with the data, `decode` rebuilds the
original runtime type without being told what to expect. JSON scalars and
lists are stored untagged.

Optionally the encoded text is encrypted at rest with Fernet.
"""
import base64
import json
import uuid
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Type

import pydantic_core
from cryptography.fernet import Fernet, InvalidToken
from pydantic import BaseModel

from .errors import DecodeError, EncodeError
from .protocols import PayloadCodec

TYPE_KEY = "$type"
VALUE_KEY = "$value"

BUILTIN_TAGS = frozenset(
    {"dict", "tuple", "set", "frozenset", "bytes", "datetime", "date", "uuid", "decimal"}
)


class PayloadRegistry:
    """
    Maps stable type names to the Pydantic models allowed in payloads.

    Registration is explicit: a model that was never registered cannot be
    encoded, and an unknown name cannot be decoded.
    """

    def __init__(self):
        self._by_name: Dict[str, Type[BaseModel]] = {}
        self._by_type: Dict[Type[BaseModel], str] = {}

    def register(self, cls: Type[BaseModel] | None = None, *, name: str | None = None):
        """Registers a model class. Usable as `@registry.register` or `@registry.register(name=...)`."""

        def _register(model_cls: Type[BaseModel]) -> Type[BaseModel]:
            if not (isinstance(model_cls, type) and issubclass(model_cls, BaseModel)):
                raise TypeError(f"Only pydantic models can be registered, got {model_cls!r}")
            type_name = name or f"{model_cls.__module__}.{model_cls.__qualname__}"
            if type_name in BUILTIN_TAGS:
                raise ValueError(f"Type name {type_name!r} is reserved")
            existing = self._by_name.get(type_name)
            if existing is not None and existing is not model_cls:
                raise ValueError(
                    f"Type name {type_name!r} is already registered to {existing.__qualname__}"
                )
            self._by_name[type_name] = model_cls
            self._by_type[model_cls] = type_name
            return model_cls

        if cls is None:
            return _register
        return _register(cls)

    def name_for(self, cls: type) -> str | None:
        return self._by_type.get(cls)

    def type_for(self, name: str) -> Type[BaseModel] | None:
        return self._by_name.get(name)

    def __contains__(self, cls: type) -> bool:
        return cls in self._by_type


default_registry = PayloadRegistry()


def register_payload(cls: Type[BaseModel] | None = None, *, name: str | None = None):
    """Registers a payload model in the default registry."""
    return default_registry.register(cls, name=name)


class FernetCipher:
    """Symmetric at-rest encryption of encoded payload text."""

    def __init__(self, key: str | bytes):
        self.fernet = Fernet(key)

    def encrypt(self, text: str) -> str:
        return self.fernet.encrypt(text.encode("utf-8")).decode("ascii")

    def decrypt(self, token: str) -> str:
        try:
            return self.fernet.decrypt(token.encode("ascii")).decode("utf-8")
        except (InvalidToken, UnicodeError) as e:
            raise DecodeError("Stored payload could not be decrypted", cause=e) from e


def _tagged(tag: str, value: Any) -> Dict[str, Any]:
    return {TYPE_KEY: tag, VALUE_KEY: value}


class JsonPayloadCodec(PayloadCodec):
    """Tagged-JSON implementation of the `PayloadCodec` protocol."""

    def __init__(
        self,
        registry: PayloadRegistry | None = None,
        cipher: FernetCipher | None = None,
    ):
        self.registry = registry if registry is not None else default_registry
        self.cipher = cipher
        self._decoders: Dict[str, Callable[[Any], Any]] = {
            "dict": lambda v: {k: self._from_json(item) for k, item in self._expect(v, dict).items()},
            "tuple": lambda v: tuple(self._from_json(item) for item in self._expect(v, list)),
            "set": lambda v: {self._from_json(item) for item in self._expect(v, list)},
            "frozenset": lambda v: frozenset(self._from_json(item) for item in self._expect(v, list)),
            "bytes": lambda v: base64.b64decode(self._expect(v, str), validate=True),
            "datetime": lambda v: datetime.fromisoformat(self._expect(v, str)),
            "date": lambda v: date.fromisoformat(self._expect(v, str)),
            "uuid": lambda v: uuid.UUID(self._expect(v, str)),
            "decimal": lambda v: Decimal(self._expect(v, str)),
        }

    def encode(self, payload: Any) -> str:
        try:
            text = json.dumps(self._to_json(payload, set()), allow_nan=False, separators=(",", ":"))
        except ValueError as e:
            # Raised by json for NaN/inf.
            raise EncodeError(f"Payload cannot be encoded: {e}", cause=e) from e
        except RecursionError as e:
            raise EncodeError("Payload is nested too deeply to encode", cause=e) from e
        if self.cipher is not None:
            text = self.cipher.encrypt(text)
        return text

    def decode(self, text: str) -> Any:
        if self.cipher is not None:
            text = self.cipher.decrypt(text)
        try:
            raw = json.loads(text)
        except (json.JSONDecodeError, TypeError) as e:
            raise DecodeError(f"Stored payload is not valid JSON: {e}", cause=e) from e
        except RecursionError as e:
            raise DecodeError("Stored payload is nested too deeply to decode", cause=e) from e
        try:
            return self._from_json(raw)
        except RecursionError as e:
            raise DecodeError("Stored payload is nested too deeply to decode", cause=e) from e

    def _to_json(self, value: Any, active: set) -> Any:
        kind = type(value)
        if value is None or kind in (bool, int, float, str):
            return value

        if kind in (list, tuple, set, frozenset, dict):
            marker = id(value)
            if marker in active:
                raise EncodeError(f"Cyclic reference in payload through {kind.__name__}")
            active.add(marker)
            try:
                if kind is dict:
                    body = {}
                    for key, item in value.items():
                        if not isinstance(key, str):
                            raise EncodeError(f"Dictionary keys must be str, got {type(key).__name__}")
                        body[key] = self._to_json(item, active)
                    return _tagged("dict", body)
                items = [self._to_json(item, active) for item in value]
                return items if kind is list else _tagged(kind.__name__, items)
            finally:
                active.discard(marker)

        if kind is bytes:
            return _tagged("bytes", base64.b64encode(value).decode("ascii"))
        if kind is datetime:
            return _tagged("datetime", value.isoformat())
        if kind is date:
            return _tagged("date", value.isoformat())
        if kind is uuid.UUID:
            return _tagged("uuid", str(value))
        if kind is Decimal:
            return _tagged("decimal", str(value))

        if isinstance(value, BaseModel):
            type_name = self.registry.name_for(kind)
            if type_name is None:
                raise EncodeError(f"Payload type {kind.__qualname__} is not registered")
            try:
                body = value.model_dump(mode="json")
                rebuilt = kind.model_validate(body)
            except (ValueError, TypeError, pydantic_core.PydanticSerializationError) as e:
                raise EncodeError(f"Model {kind.__qualname__} cannot be serialized: {e}", cause=e) from e
            # The body carries no tags, so fields typed Any or as a base class
            # would come back as plain JSON values.
            if rebuilt != value:
                raise EncodeError(
                    f"Model {kind.__qualname__} does not survive a round trip; "
                    "type its fields concretely instead of as Any or a base class"
                )
            return _tagged(type_name, body)

        raise EncodeError(f"Unsupported payload type {kind.__qualname__}")

    def _from_json(self, raw: Any) -> Any:
        if isinstance(raw, list):
            return [self._from_json(item) for item in raw]
        if not isinstance(raw, dict):
            return raw

        if set(raw) != {TYPE_KEY, VALUE_KEY} or not isinstance(raw[TYPE_KEY], str):
            raise DecodeError(f"Malformed payload node with keys {sorted(raw)}")
        tag, body = raw[TYPE_KEY], raw[VALUE_KEY]

        decoder = self._decoders.get(tag)
        if decoder is not None:
            try:
                return decoder(body)
            except DecodeError:
                raise
            except (ValueError, TypeError, InvalidOperation) as e:
                raise DecodeError(f"Invalid {tag} value in payload: {e}", cause=e) from e

        model_cls = self.registry.type_for(tag)
        if model_cls is None:
            raise DecodeError(f"Unknown payload type {tag!r}")
        try:
            return model_cls.model_validate(body)
        except pydantic_core.ValidationError as e:
            raise DecodeError(f"Payload does not match {tag}: {e}", cause=e) from e

    @staticmethod
    def _expect(value: Any, kind: type) -> Any:
        if not isinstance(value, kind):
            raise DecodeError(f"Expected {kind.__name__} body, got {type(value).__name__}")
        return value

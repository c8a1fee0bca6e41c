"""
Request Marshaler: untyped JSON payload -> dynamic protobuf message.

Shape is permissive: objects become messages or maps, lists become repeated
fields, and payload keys the schema does not know are ignored. Types are
strict: a string or boolean where the schema expects a number is rejected,
even though the canonical proto3 JSON mapping would accept a quoted number.
"""

from typing import Any, Dict, Union

from google.protobuf import json_format, message_factory
from google.protobuf.descriptor import Descriptor, FieldDescriptor
from google.protobuf.message import DecodeError, Message

from .errors import MarshalError

_NUMERIC_CPP_TYPES = frozenset((
    FieldDescriptor.CPPTYPE_INT32,
    FieldDescriptor.CPPTYPE_INT64,
    FieldDescriptor.CPPTYPE_UINT32,
    FieldDescriptor.CPPTYPE_UINT64,
    FieldDescriptor.CPPTYPE_FLOAT,
    FieldDescriptor.CPPTYPE_DOUBLE,
))

# Well-known types have their own JSON forms (wrappers take quoted numbers,
# Struct takes anything), so the strict check stops at their boundary.
_WELL_KNOWN_PACKAGE = "google.protobuf."

# Message nesting limit, root included. The pre-check and ParseDict share it.
MAX_DEPTH = 100


def message_class(descriptor: Descriptor) -> type:
    """Concrete message class for a runtime-resolved descriptor."""
    return message_factory.GetMessageClass(descriptor)


def _is_map(field: FieldDescriptor) -> bool:
    return field.message_type is not None and field.message_type.GetOptions().map_entry


def _fields_by_key(descriptor: Descriptor) -> Dict[str, FieldDescriptor]:
    # ParseDict accepts both the proto field name and its JSON name
    fields = {}
    for field in descriptor.fields:
        fields[field.name] = field
        fields[field.json_name] = field
    return fields


def _check_value(root: str, field: FieldDescriptor, value: Any, path: str, depth: int):
    if field.cpp_type == FieldDescriptor.CPPTYPE_MESSAGE:
        _check_types(root, field.message_type, value, path, depth + 1)
    elif isinstance(value, (dict, list)):
        raise MarshalError(root, f"scalar expected, got {type(value).__name__}", path)
    elif field.cpp_type in _NUMERIC_CPP_TYPES and isinstance(value, (str, bool)):
        raise MarshalError(root, f"{type(value).__name__} {value!r} given for numeric field", path)
    elif field.type == FieldDescriptor.TYPE_STRING and not isinstance(value, str):
        raise MarshalError(root, f"{type(value).__name__} {value!r} given for string field", path)


def _check_types(root: str, descriptor: Descriptor, payload: Any, path: str = "", depth: int = 1):
    if descriptor.full_name.startswith(_WELL_KNOWN_PACKAGE):
        return
    if depth > MAX_DEPTH:
        raise MarshalError(root, f"nested deeper than {MAX_DEPTH} messages", path or None)
    if not isinstance(payload, dict):
        raise MarshalError(root, f"object expected for {descriptor.full_name}, got {type(payload).__name__}", path or None)

    fields = _fields_by_key(descriptor)
    for key, value in payload.items():
        field = fields.get(key)
        if field is None or value is None:
            continue
        where = f"{path}.{key}" if path else key

        if _is_map(field):
            if not isinstance(value, dict):
                raise MarshalError(root, f"object expected for map, got {type(value).__name__}", where)
            value_field = field.message_type.fields_by_name["value"]
            for map_key, item in value.items():
                if item is not None:
                    _check_value(root, value_field, item, f"{where}[{map_key!r}]", depth)
        elif field.is_repeated:
            if not isinstance(value, list):
                raise MarshalError(root, f"list expected for repeated field, got {type(value).__name__}", where)
            for index, item in enumerate(value):
                if item is None:
                    raise MarshalError(root, "null element in repeated field", f"{where}[{index}]")
                _check_value(root, field, item, f"{where}[{index}]", depth)
        else:
            _check_value(root, field, value, where, depth)


def build(descriptor: Descriptor, payload: Dict[str, Any]) -> Message:
    """
    Build a request message of type ``descriptor`` from ``payload``.

    Raises:
        MarshalError: payload is not an object, or a field's value does not
            fit the schema. Messages nested deeper than ``MAX_DEPTH``
            are rejected too.
    """
    _check_types(descriptor.full_name, descriptor, payload)

    message = message_class(descriptor)()
    try:
        json_format.ParseDict(
            payload,
            message,
            ignore_unknown_fields=True,
            descriptor_pool=descriptor.file.pool,
            max_recursion_depth=MAX_DEPTH,
        )
    except (json_format.ParseError, TypeError, ValueError) as e:
        raise MarshalError(descriptor.full_name, str(e)) from e
    return message


def read(descriptor: Descriptor, message: Union[Message, bytes]) -> Dict[str, Any]:
    """
    Read a message (or its wire bytes) back through ``descriptor``.

    Field names are the original proto names. Fields holding their default
    value are omitted and 64-bit integers come back as strings, following
    the proto3 JSON mapping.
    """
    if isinstance(message, Message):
        message = message.SerializeToString()
    try:
        decoded = message_class(descriptor).FromString(message)
    except DecodeError as e:
        raise MarshalError(descriptor.full_name, f"cannot decode: {e}") from e
    return json_format.MessageToDict(
        decoded,
        preserving_proto_field_name=True,
        descriptor_pool=descriptor.file.pool,
    )

"""Invoker: one unary call over the shared channel."""

from collections.abc import Mapping
from typing import Dict, Iterable, Optional, Tuple, Union

import grpc
from google.protobuf.message import Message

from .catalog import MethodDescriptor
from .errors import InvokeError
from .marshal import message_class

MetadataInput = Union[Mapping, Iterable[Tuple[str, str]]]


def _serialize(message: Message) -> bytes:
    return message.SerializeToString()


def call_metadata(metadata: Optional[MetadataInput]) -> Tuple[Tuple[str, Union[str, bytes]], ...]:
    """
    Flatten ammo metadata into gRPC call metadata.

    Keys are lower-cased as gRPC requires; if two keys collapse to the same
    header the last value wins. Values of binary ``-bin`` headers are sent
    as UTF-8 bytes.
    """
    if not metadata:
        return ()
    pairs = metadata.items() if isinstance(metadata, Mapping) else metadata

    merged: Dict[str, Union[str, bytes]] = {}
    for key, value in pairs:
        key = key.strip().lower()
        merged[key] = value.encode("utf-8") if key.endswith("-bin") else value
    return tuple(merged.items())


async def invoke(
    channel: grpc.aio.Channel,
    method: MethodDescriptor,
    message: Message,
    metadata: Optional[MetadataInput] = None,
) -> Message:
    """
    Issue exactly one unary request for ``method``.

    No retry and no deadline: the call lasts until the transport resolves it.

    Raises:
        InvokeError: the method is streaming, or the call failed.
    """
    if not method.unary:
        raise InvokeError(method.full_name, None, "streaming methods are not supported")

    rpc = channel.unary_unary(
        method.path,
        request_serializer=_serialize,
        response_deserializer=message_class(method.output_type).FromString,
    )
    try:
        return await rpc(message, metadata=call_metadata(metadata))
    except grpc.aio.AioRpcError as e:
        raise InvokeError(method.full_name, e.code().name, e.details() or "") from e
    except grpc.RpcError as e:
        raise InvokeError(method.full_name, None, str(e)) from e
    except (TypeError, ValueError) as e:
        # rejected locally, e.g. malformed metadata
        raise InvokeError(method.full_name, None, str(e)) from e

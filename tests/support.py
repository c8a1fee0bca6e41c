"""
Test target for the gun.

Schemas are built at runtime from FileDescriptorProtos (no generated code) and
served by a grpc.aio server with reflection enabled over the same pool:

    pkg/common.proto   pkg.Meta
    pkg/echo.proto     pkg.Svc { Echo, Fail, Stream }, pkg.Orders { Place }, pkg.Node (self-nesting)
    other/echo.proto   other.Svc { Echo }
"""

import asyncio
from collections import Counter
from typing import List, Optional, Tuple

import grpc
from google.protobuf import descriptor_pb2, descriptor_pool, message_factory
from grpc_reflection.v1alpha import reflection

F = descriptor_pb2.FieldDescriptorProto

SERVICE_NAMES = ("pkg.Svc", "pkg.Orders", "other.Svc")


def _json_name(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def _field(message, name, number, type_, label=F.LABEL_OPTIONAL, type_name=None):
    field = message.field.add(
        name=name, number=number, type=type_, label=label, json_name=_json_name(name)
    )
    if type_name:
        field.type_name = type_name
    return field


def common_file() -> descriptor_pb2.FileDescriptorProto:
    f = descriptor_pb2.FileDescriptorProto(name="pkg/common.proto", package="pkg", syntax="proto3")
    meta = f.message_type.add(name="Meta")
    _field(meta, "request_id", 1, F.TYPE_STRING)
    _field(meta, "priority", 2, F.TYPE_INT32)
    return f


def echo_file() -> descriptor_pb2.FileDescriptorProto:
    f = descriptor_pb2.FileDescriptorProto(
        name="pkg/echo.proto", package="pkg", syntax="proto3", dependency=["pkg/common.proto"]
    )
    request = f.message_type.add(name="EchoRequest")
    _field(request, "msg", 1, F.TYPE_STRING)
    reply = f.message_type.add(name="EchoReply")
    _field(reply, "msg", 1, F.TYPE_STRING)

    order = f.message_type.add(name="Order")
    _field(order, "id", 1, F.TYPE_STRING)
    _field(order, "quantity", 2, F.TYPE_INT32)
    _field(order, "price", 3, F.TYPE_DOUBLE)
    _field(order, "tags", 4, F.TYPE_STRING, F.LABEL_REPEATED)
    entry = order.nested_type.add(name="CountsEntry")
    entry.options.map_entry = True
    _field(entry, "key", 1, F.TYPE_STRING)
    _field(entry, "value", 2, F.TYPE_INT32)
    _field(order, "counts", 5, F.TYPE_MESSAGE, F.LABEL_REPEATED, ".pkg.Order.CountsEntry")
    _field(order, "meta", 6, F.TYPE_MESSAGE, type_name=".pkg.Meta")
    _field(order, "urgent", 7, F.TYPE_BOOL)
    _field(order, "sizes", 8, F.TYPE_INT32, F.LABEL_REPEATED)
    _field(order, "serial", 9, F.TYPE_INT64)

    receipt = f.message_type.add(name="Receipt")
    _field(receipt, "order_id", 1, F.TYPE_STRING)
    _field(receipt, "accepted", 2, F.TYPE_INT32)

    node = f.message_type.add(name="Node")
    _field(node, "child", 1, F.TYPE_MESSAGE, type_name=".pkg.Node")
    _field(node, "v", 2, F.TYPE_INT32)

    svc = f.service.add(name="Svc")
    svc.method.add(name="Echo", input_type=".pkg.EchoRequest", output_type=".pkg.EchoReply")
    svc.method.add(name="Fail", input_type=".pkg.EchoRequest", output_type=".pkg.EchoReply")
    svc.method.add(
        name="Stream", input_type=".pkg.EchoRequest", output_type=".pkg.EchoReply", server_streaming=True
    )
    orders = f.service.add(name="Orders")
    orders.method.add(name="Place", input_type=".pkg.Order", output_type=".pkg.Receipt")
    return f


def other_file() -> descriptor_pb2.FileDescriptorProto:
    f = descriptor_pb2.FileDescriptorProto(name="other/echo.proto", package="other", syntax="proto3")
    request = f.message_type.add(name="EchoRequest")
    _field(request, "text", 1, F.TYPE_STRING)
    reply = f.message_type.add(name="EchoReply")
    _field(reply, "text", 1, F.TYPE_STRING)
    svc = f.service.add(name="Svc")
    svc.method.add(name="Echo", input_type=".other.EchoRequest", output_type=".other.EchoReply")
    return f


def build_pool() -> descriptor_pool.DescriptorPool:
    pool = descriptor_pool.DescriptorPool()
    for f in (common_file(), echo_file(), other_file()):
        pool.AddSerializedFile(f.SerializeToString())
    return pool


class EchoTarget:
    """
    Reflection-enabled grpc.aio server for the runtime-built services.

    Usage:
        target = EchoTarget(delay=0.1)
        await target.start()
        ...  # connect to target.address
        await target.stop()
    """

    def __init__(self, delay: float = 0.0, reflection_enabled: bool = True):
        self.pool = build_pool()
        self.delay = delay
        self.reflection_enabled = reflection_enabled
        self.calls: Counter = Counter()
        self.metadata: List[Tuple[Tuple[str, object], ...]] = []
        self.orders: List[object] = []
        self.server: Optional[grpc.aio.Server] = None
        self.port: Optional[int] = None

    @property
    def address(self) -> str:
        return f"127.0.0.1:{self.port}"

    @property
    def total_calls(self) -> int:
        return sum(self.calls.values())

    def message(self, name: str) -> type:
        return message_factory.GetMessageClass(self.pool.FindMessageTypeByName(name))

    def _unary(self, handler, request: str, response: str):
        return grpc.unary_unary_rpc_method_handler(
            handler,
            request_deserializer=self.message(request).FromString,
            response_serializer=self.message(response).SerializeToString,
        )

    def _handlers(self):
        EchoReply = self.message("pkg.EchoReply")
        OtherReply = self.message("other.EchoReply")
        Receipt = self.message("pkg.Receipt")

        async def echo(request, context):
            self.calls["pkg.Svc.Echo"] += 1
            self.metadata.append(tuple(context.invocation_metadata() or ()))
            if self.delay:
                await asyncio.sleep(self.delay)
            return EchoReply(msg=request.msg)

        async def fail(request, context):
            self.calls["pkg.Svc.Fail"] += 1
            await context.abort(grpc.StatusCode.UNAVAILABLE, "backend down")

        async def stream(request, context):
            self.calls["pkg.Svc.Stream"] += 1
            yield EchoReply(msg=request.msg)

        async def place(request, context):
            self.calls["pkg.Orders.Place"] += 1
            self.orders.append(request)
            return Receipt(order_id=request.id, accepted=request.quantity)

        async def other_echo(request, context):
            self.calls["other.Svc.Echo"] += 1
            return OtherReply(text=request.text)

        return (
            grpc.method_handlers_generic_handler("pkg.Svc", {
                "Echo": self._unary(echo, "pkg.EchoRequest", "pkg.EchoReply"),
                "Fail": self._unary(fail, "pkg.EchoRequest", "pkg.EchoReply"),
                "Stream": grpc.unary_stream_rpc_method_handler(
                    stream,
                    request_deserializer=self.message("pkg.EchoRequest").FromString,
                    response_serializer=EchoReply.SerializeToString,
                ),
            }),
            grpc.method_handlers_generic_handler("pkg.Orders", {
                "Place": self._unary(place, "pkg.Order", "pkg.Receipt"),
            }),
            grpc.method_handlers_generic_handler("other.Svc", {
                "Echo": self._unary(other_echo, "other.EchoRequest", "other.EchoReply"),
            }),
        )

    async def start(self):
        self.server = grpc.aio.server()
        self.server.add_generic_rpc_handlers(self._handlers())
        if self.reflection_enabled:
            reflection.enable_server_reflection(SERVICE_NAMES, self.server, pool=self.pool)
        self.port = self.server.add_insecure_port("127.0.0.1:0")
        await self.server.start()

    async def stop(self):
        if self.server:
            await self.server.stop(None)

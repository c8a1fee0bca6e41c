"""
Service Catalog built from gRPC server reflection.

Discovery runs once per gun at bind time:

    1. ask the target for the names of every exposed service
    2. for each service fetch the file that defines it, then any missing
       transitive imports, and load them into a private descriptor pool
    3. flatten every method of every service into one mapping keyed by the
       fully-qualified method name (``package.Service.Method``)

The resulting catalog is read-only and safe to share between any number of
concurrent shots.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, Iterable, Iterator, List, Optional, Set, Tuple

import grpc
import structlog
from google.protobuf import descriptor_pb2, descriptor_pool
from google.protobuf.descriptor import Descriptor, ServiceDescriptor
from google.protobuf.message import DecodeError
from grpc_reflection.v1alpha import reflection_pb2, reflection_pb2_grpc

from .errors import DiscoveryError

logger = structlog.get_logger()


@dataclass(frozen=True)
class MethodDescriptor:
    """Schema of one RPC method, resolved from the target."""
    full_name: str
    input_type: Descriptor
    output_type: Descriptor
    path: str
    client_streaming: bool = False
    server_streaming: bool = False

    @property
    def unary(self) -> bool:
        return not (self.client_streaming or self.server_streaming)

    @classmethod
    def from_service(cls, service: ServiceDescriptor) -> List["MethodDescriptor"]:
        methods = []
        for method in service.methods:
            proto = descriptor_pb2.MethodDescriptorProto()
            method.CopyToProto(proto)
            methods.append(cls(
                full_name=method.full_name,
                input_type=method.input_type,
                output_type=method.output_type,
                path=f"/{service.full_name}/{method.name}",
                client_streaming=proto.client_streaming,
                server_streaming=proto.server_streaming,
            ))
        return methods


class ReflectionClient:
    """
    Minimal client for grpc.reflection.v1alpha.ServerReflection.

    Every query opens its own short ServerReflectionInfo stream carrying a
    single request. Files received are loaded into ``pool``.
    """

    def __init__(self, channel: grpc.aio.Channel, pool: Optional[descriptor_pool.DescriptorPool] = None):
        self._stub = reflection_pb2_grpc.ServerReflectionStub(channel)
        self.pool = pool or descriptor_pool.DescriptorPool()
        self._loaded: Set[str] = set()

    async def _ask(self, request: reflection_pb2.ServerReflectionRequest) -> reflection_pb2.ServerReflectionResponse:
        try:
            responses = [r async for r in self._stub.ServerReflectionInfo(iter((request,)))]
        except grpc.RpcError as e:
            raise DiscoveryError(f"reflection call failed: {e.code()} - {e.details()}") from e

        if not responses:
            raise DiscoveryError("reflection stream closed without a response")
        response = responses[0]
        if response.HasField("error_response"):
            error = response.error_response
            raise DiscoveryError(
                f"reflection error {error.error_code}: {error.error_message}"
            )
        return response

    async def list_services(self) -> List[str]:
        response = await self._ask(reflection_pb2.ServerReflectionRequest(list_services=""))
        return [service.name for service in response.list_services_response.service]

    async def _file_containing_symbol(self, symbol: str) -> List[bytes]:
        response = await self._ask(
            reflection_pb2.ServerReflectionRequest(file_containing_symbol=symbol)
        )
        return list(response.file_descriptor_response.file_descriptor_proto)

    async def _file_by_filename(self, filename: str) -> List[bytes]:
        response = await self._ask(
            reflection_pb2.ServerReflectionRequest(file_by_filename=filename)
        )
        return list(response.file_descriptor_response.file_descriptor_proto)

    async def _load(self, serialized_files: List[bytes]):
        """Fetch missing imports, then add every file to the pool deps-first."""
        pending: Dict[str, Tuple[descriptor_pb2.FileDescriptorProto, bytes]] = {}
        queue = list(serialized_files)
        while queue:
            raw = queue.pop()
            try:
                proto = descriptor_pb2.FileDescriptorProto.FromString(raw)
            except DecodeError as e:
                raise DiscoveryError(f"malformed file descriptor: {e}") from e
            if proto.name in self._loaded or proto.name in pending:
                continue
            pending[proto.name] = (proto, raw)
            for dependency in proto.dependency:
                if dependency not in self._loaded and dependency not in pending:
                    queue.extend(await self._file_by_filename(dependency))

        visiting: Set[str] = set()

        def add(name: str):
            if name in self._loaded:
                return
            if name not in pending:
                raise DiscoveryError(f"target did not provide imported file {name!r}")
            if name in visiting:
                raise DiscoveryError(f"import cycle through {name!r}")
            visiting.add(name)
            proto, raw = pending[name]
            for dependency in proto.dependency:
                add(dependency)
            try:
                self.pool.AddSerializedFile(raw)
            except (TypeError, ValueError) as e:
                raise DiscoveryError(f"cannot load {name!r}: {e}") from e
            self._loaded.add(name)

        for name in list(pending):
            add(name)

    async def resolve_service(self, name: str) -> ServiceDescriptor:
        """Resolve the full schema of one service, nested types included."""
        await self._load(await self._file_containing_symbol(name))
        try:
            return self.pool.FindServiceByName(name)
        except KeyError as e:
            raise DiscoveryError(f"service {name!r} missing from its own file descriptor") from e


class ServiceCatalog(Mapping):
    """Immutable mapping of fully-qualified method name to MethodDescriptor."""

    def __init__(self, methods: Dict[str, MethodDescriptor], services: Iterable[str] = ()):
        self._methods = MappingProxyType(dict(methods))
        self.services: Tuple[str, ...] = tuple(services)

    def __getitem__(self, name: str) -> MethodDescriptor:
        return self._methods[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._methods)

    def __len__(self) -> int:
        return len(self._methods)

    def __repr__(self) -> str:
        return f"ServiceCatalog(services={len(self.services)}, methods={len(self)})"

    @classmethod
    def from_services(cls, services: Iterable[ServiceDescriptor]) -> "ServiceCatalog":
        """
        Flatten the methods of ``services`` into one namespace.

        Identical fully-qualified names collide and the later service wins.
        Same short names under different services stay distinct.
        """
        methods: Dict[str, MethodDescriptor] = {}
        names: List[str] = []
        for service in services:
            names.append(service.full_name)
            for method in MethodDescriptor.from_service(service):
                if method.full_name in methods:
                    logger.debug("Method overwritten", method=method.full_name)
                logger.info("Method discovered", method=method.full_name)
                methods[method.full_name] = method
        return cls(methods, names)


async def discover(channel: grpc.aio.Channel) -> ServiceCatalog:
    """
    Build the catalog of every method the target exposes.

    Raises:
        DiscoveryError: reflection is unavailable or returned an unusable schema.
    """
    client = ReflectionClient(channel)
    service_names = await client.list_services()
    if not service_names:
        logger.warning("Target reflection lists no services")

    services = []
    for name in service_names:
        services.append(await client.resolve_service(name))

    catalog = ServiceCatalog.from_services(services)
    logger.info("Service catalog built", services=len(catalog.services), methods=len(catalog))
    return catalog

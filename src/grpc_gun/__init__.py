"""
Universal gRPC Gun
==================

A load-generator gun that calls any unary method on any gRPC service the
target exposes, resolving schemas at runtime through server reflection.

Usage:
    from grpc_gun import Ammo, GunConfig, SampleCollector, UniversalGrpcGun

    gun = UniversalGrpcGun(GunConfig(target="localhost:50051"))
    collector = SampleCollector()
    await gun.bind(collector)
    await gun.shoot(Ammo(tag="t1", call="pkg.Svc.Echo", payload={"msg": "hi"}))
"""

from .ammo import Ammo
from .catalog import MethodDescriptor, ServiceCatalog, discover
from .config import GunConfig, get_settings
from .connection import ConnectionManager
from .errors import (
    ConnectError,
    DiscoveryError,
    GunError,
    InvokeError,
    MarshalError,
    RequestError,
    SetupError,
    UnknownMethodError,
)
from .gun import Gun, GunDeps, UniversalGrpcGun
from .invoker import call_metadata, invoke
from .logs import configure_logging
from .marshal import build, read
from .reporter import (
    CODE_BAD_REQUEST,
    CODE_NO_RESPONSE,
    CODE_OK,
    Aggregator,
    Sample,
    SampleCollector,
    classify,
)

__version__ = "1.0.0"

__all__ = [
    # Config
    "GunConfig",
    "get_settings",
    "configure_logging",
    # Gun
    "Gun",
    "GunDeps",
    "UniversalGrpcGun",
    "Ammo",
    # Pipeline
    "ConnectionManager",
    "MethodDescriptor",
    "ServiceCatalog",
    "discover",
    "build",
    "read",
    "invoke",
    "call_metadata",
    # Samples
    "Aggregator",
    "Sample",
    "SampleCollector",
    "classify",
    "CODE_NO_RESPONSE",
    "CODE_OK",
    "CODE_BAD_REQUEST",
    # Errors
    "GunError",
    "SetupError",
    "ConnectError",
    "DiscoveryError",
    "RequestError",
    "UnknownMethodError",
    "MarshalError",
    "InvokeError",
]

"""
The universal gRPC gun.

A gun is constructed explicitly by its host, bound once, then shot
concurrently by the host's workers:

    gun = UniversalGrpcGun(GunConfig(target="localhost:50051"))
    await gun.bind(SampleCollector())     # raises SetupError on failure
    await asyncio.gather(*(gun.shoot(a) for a in ammo))
    await gun.close()

Each shot resolves ``ammo.call`` in the catalog built at bind time, builds
the request from ``ammo.payload``, invokes the method once and reports
exactly one Sample, whatever happened.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import structlog
from google.protobuf.message import Message

from .ammo import Ammo
from .catalog import ServiceCatalog, discover
from .config import GunConfig
from .connection import ConnectionManager
from .errors import InvokeError, MarshalError, RequestError, SetupError, UnknownMethodError
from .invoker import invoke
from .marshal import build
from .metrics import METRICS, metrics_server
from .reporter import Aggregator, Sample, acquire

logger = structlog.get_logger()


@dataclass(frozen=True)
class GunDeps:
    """Per-instance context handed over by the host at bind time."""
    instance_id: int = 0
    pool_id: str = ""


class Gun(ABC):
    """Capability interface every gun implementation provides to its host."""

    name: str = ""

    @abstractmethod
    async def bind(self, aggregator: Aggregator, deps: Optional[GunDeps] = None) -> None:
        """Prepare the gun. Must complete before the first shoot()."""

    @abstractmethod
    async def shoot(self, ammo: Ammo) -> Sample:
        """Fire one ammo and report exactly one sample."""


class UniversalGrpcGun(Gun):
    """Gun that can call any unary method the target exposes via reflection."""

    name = "universal_grpc_gun"

    def __init__(self, config: GunConfig):
        self.config = config
        self._connection = ConnectionManager(
            target=config.target,
            user_agent=config.user_agent,
            connect_timeout=config.connect_timeout,
            max_message_size=config.max_message_size,
            keepalive_time_ms=config.keepalive_time_ms,
            keepalive_timeout_ms=config.keepalive_timeout_ms,
        )
        self._catalog: Optional[ServiceCatalog] = None
        self._aggregator: Optional[Aggregator] = None
        self._deps: Optional[GunDeps] = None
        self._binding = False
        self._log = logger.bind(gun=self.name, target=config.target)

    @property
    def catalog(self) -> ServiceCatalog:
        if self._catalog is None:
            raise RuntimeError("Gun is not bound")
        return self._catalog

    @property
    def bound(self) -> bool:
        return self._catalog is not None

    async def bind(self, aggregator: Aggregator, deps: Optional[GunDeps] = None) -> None:
        """
        Connect to the target and build the service catalog.

        Runs once per gun. Nothing is retried.

        Raises:
            SetupError: connection or discovery failed; the gun is unusable.
            RuntimeError: the gun was already bound.
        """
        if self._binding:
            raise RuntimeError("Gun already bound")
        self._binding = True

        deps = deps or GunDeps()
        self._log = self._log.bind(instance_id=deps.instance_id, pool_id=deps.pool_id)

        try:
            channel = await self._connection.connect()
        except SetupError as e:
            METRICS.setup_errors.labels(stage="connect").inc()
            self._log.error("Gun setup failed", stage="connect", error=str(e))
            raise

        try:
            catalog = await discover(channel)
        except SetupError as e:
            METRICS.setup_errors.labels(stage="discover").inc()
            self._log.error("Gun setup failed", stage="discover", error=str(e))
            await self._connection.close()
            raise

        if self.config.enable_metrics:
            try:
                metrics_server.start(self.config.metrics_port)
            except OSError as e:
                await self._connection.close()
                raise SetupError(f"cannot serve metrics on port {self.config.metrics_port}: {e}") from e

        self._aggregator = aggregator
        self._deps = deps
        METRICS.catalog_methods.set(len(catalog))
        # Published last: a non-None catalog means the gun is ready to shoot
        self._catalog = catalog
        self._log.info("Gun bound", methods=len(catalog))

    async def shoot(self, ammo: Ammo) -> Sample:
        """
        Fire one ammo. Request failures are logged and classified, never raised.

        Raises:
            RuntimeError: shoot() before bind() completed.
            TypeError: ``ammo`` is not an Ammo.
        """
        if self._catalog is None:
            raise RuntimeError("Gun is not bound")
        if not isinstance(ammo, Ammo):
            raise TypeError(f"expected Ammo, got {type(ammo).__name__}")

        pending = acquire(ammo.tag)
        outcome: Optional[object] = None
        METRICS.active_shots.inc()
        try:
            outcome = await self._shoot(ammo)
        except RequestError as e:
            outcome = e
        finally:
            METRICS.active_shots.dec()
            sample = pending.complete(outcome)
            METRICS.record_shot(sample.status_code, sample.elapsed)
            self._aggregator.report(sample)
        return sample

    async def _shoot(self, ammo: Ammo) -> Message:
        method = self._catalog.get(ammo.call)
        if method is None:
            self._log.warning("No such method", call=ammo.call, tag=ammo.tag)
            raise UnknownMethodError(ammo.call)
        self._log.debug("Method resolved", call=ammo.call, input_type=method.input_type.full_name)

        try:
            message = build(method.input_type, ammo.payload)
        except MarshalError as e:
            self._log.warning("Bad request", call=ammo.call, tag=ammo.tag, error=str(e))
            raise

        try:
            return await invoke(self._connection.channel, method, message, ammo.metadata)
        except InvokeError as e:
            self._log.warning(
                "Invocation failed",
                call=ammo.call,
                tag=ammo.tag,
                code=e.code,
                details=e.details,
            )
            raise

    async def close(self):
        """Release the channel. The catalog stays readable."""
        await self._connection.close()

"""Connection Manager: the single multiplexed channel a gun shoots through."""

import asyncio
from typing import List, Optional, Tuple

import grpc
import structlog

from .errors import ConnectError

logger = structlog.get_logger()


class ConnectionManager:
    """
    Owns one long-lived grpc.aio channel to the target.

    The channel is plaintext (no TLS negotiation) and is shared by every
    concurrent call of the gun; HTTP/2 multiplexes the in-flight requests.
    """

    def __init__(
        self,
        target: str,
        user_agent: str = "pandora load test",
        connect_timeout: float = 10.0,
        max_message_size: int = 16 * 1024 * 1024,
        keepalive_time_ms: int = 10000,
        keepalive_timeout_ms: int = 5000,
    ):
        self.target = target
        self.user_agent = user_agent
        self.connect_timeout = connect_timeout
        self.max_message_size = max_message_size
        self.keepalive_time_ms = keepalive_time_ms
        self.keepalive_timeout_ms = keepalive_timeout_ms
        self._channel: Optional[grpc.aio.Channel] = None

    def _options(self) -> List[Tuple[str, object]]:
        return [
            ('grpc.primary_user_agent', self.user_agent),
            ('grpc.max_send_message_length', self.max_message_size),
            ('grpc.max_receive_message_length', self.max_message_size),
            ('grpc.keepalive_time_ms', self.keepalive_time_ms),
            ('grpc.keepalive_timeout_ms', self.keepalive_timeout_ms),
            ('grpc.keepalive_permit_without_calls', True),
            ('grpc.http2.max_pings_without_data', 0),
        ]

    async def connect(self) -> grpc.aio.Channel:
        """
        Establish the channel. No retries.

        With a positive ``connect_timeout`` the channel must become ready
        within that many seconds; otherwise the channel connects lazily on
        first use.

        Raises:
            ConnectError: target is blank, malformed or unreachable.
        """
        if self._channel is not None:
            raise RuntimeError("Channel already connected")
        if not self.target or not self.target.strip():
            raise ConnectError(self.target, "empty target address")

        try:
            channel = grpc.aio.insecure_channel(self.target, options=self._options())
        except ValueError as e:
            raise ConnectError(self.target, str(e)) from e

        if self.connect_timeout and self.connect_timeout > 0:
            try:
                await asyncio.wait_for(channel.channel_ready(), timeout=self.connect_timeout)
            except asyncio.TimeoutError as e:
                await channel.close()
                raise ConnectError(
                    self.target, f"not ready after {self.connect_timeout}s"
                ) from e

        self._channel = channel
        logger.info("gRPC channel established", target=self.target, user_agent=self.user_agent)
        return channel

    async def close(self):
        """Close gRPC channel."""
        if self._channel:
            await self._channel.close()
            self._channel = None
            logger.info("gRPC channel closed", target=self.target)

    @property
    def connected(self) -> bool:
        return self._channel is not None

    @property
    def channel(self) -> grpc.aio.Channel:
        if not self._channel:
            raise RuntimeError("Channel not connected")
        return self._channel

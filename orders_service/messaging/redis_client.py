"""
Async Redis connection used to publish order events.

One ``RedisClient`` owns one connection pool. The API process opens it in the
application lifespan; each Celery task opens and closes its own.
"""

from typing import Any, Optional

from redis.asyncio import ConnectionPool, Redis
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff
from redis.exceptions import (
    ConnectionError,
    RedisError,
    TimeoutError,
)

from orders_service.core.config import get_settings
from orders_service.core.logging import get_logger

logger = get_logger(__name__)


class RedisClient:
    """
    Pooled redis.asyncio client for pub/sub publishing.

    Publishing before ``connect`` (or after a failed connect) raises
    ``ConnectionError`` so callers can treat an absent broker like any other
    publish failure.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        max_connections: Optional[int] = None,
        socket_timeout: float = 5.0,
        socket_connect_timeout: float = 5.0,
        retry_on_timeout: bool = True,
        health_check_interval: int = 30,
    ):
        """
        Args:
            url: Broker URL, ``settings.redis_url`` when omitted
            max_connections: Pool size, ``settings.redis_max_connections``
                when omitted
            socket_timeout: Per-command timeout in seconds
            socket_connect_timeout: Connect timeout in seconds
            retry_on_timeout: Retry commands that time out
            health_check_interval: Idle seconds before a connection is
                pinged on checkout
        """
        settings = get_settings()
        self._url = url or settings.redis_url
        self._max_connections = max_connections or settings.redis_max_connections
        self._socket_timeout = socket_timeout
        self._socket_connect_timeout = socket_connect_timeout
        self._retry_on_timeout = retry_on_timeout
        self._health_check_interval = health_check_interval

        self._pool: Optional[ConnectionPool] = None
        self._client: Optional[Redis] = None
        self._is_connected = False

        self._published_messages = 0
        self._failed_publishes = 0

        logger.debug(
            "Event publisher configured",
            url=self._sanitize_url(self._url),
            max_connections=self._max_connections,
        )

    @staticmethod
    def _sanitize_url(url: str) -> str:
        """Mask credentials in a Redis URL before it is logged."""
        scheme, sep, rest = url.partition("://")
        if sep and "@" in rest:
            return f"{scheme}://***@{rest.split('@', 1)[1]}"
        return url

    @property
    def is_connected(self) -> bool:
        return self._is_connected

    async def connect(self) -> None:
        """
        Open the connection pool and ping the broker.

        Raises:
            ConnectionError: If the broker cannot be reached
        """
        if self._is_connected:
            logger.warning("Event publisher already connected")
            return

        try:
            self._pool = ConnectionPool.from_url(
                self._url,
                max_connections=self._max_connections,
                socket_timeout=self._socket_timeout,
                socket_connect_timeout=self._socket_connect_timeout,
                retry_on_timeout=self._retry_on_timeout,
                health_check_interval=self._health_check_interval,
                retry=Retry(ExponentialBackoff(base=0.1, cap=2.0), retries=3),
                decode_responses=True,
            )
            self._client = Redis(connection_pool=self._pool)

            await self._client.ping()
            self._is_connected = True

            logger.info(
                "Event publisher connected",
                url=self._sanitize_url(self._url),
                pool_size=self._max_connections,
            )

        except (ConnectionError, TimeoutError) as e:
            logger.error(
                "Event publisher connection failed",
                url=self._sanitize_url(self._url),
                error=str(e),
            )
            await self._release()
            raise ConnectionError(f"Redis connection failed: {e}") from e

    async def _release(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

        if self._pool is not None:
            await self._pool.aclose()
            self._pool = None

        self._is_connected = False

    async def disconnect(self) -> None:
        """Close the pool. Does nothing if the client never connected."""
        if not self._is_connected:
            return

        try:
            await self._release()
            logger.info(
                "Event publisher disconnected",
                **self.get_publish_stats(),
            )
        except RedisError as e:
            logger.error(
                "Event publisher disconnect failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            raise

    async def health_check(self) -> bool:
        """Ping the broker; False when disconnected or unresponsive."""
        if not self._is_connected or self._client is None:
            return False

        try:
            await self._client.ping()
            return True
        except RedisError as e:
            logger.warning(
                "Event publisher health check failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

    def _ensure_connected(self) -> None:
        if not self._is_connected or self._client is None:
            raise ConnectionError("Event publisher is not connected")

    async def publish(self, channel: str, message: str) -> int:
        """
        Publish a message on a pub/sub channel.

        Args:
            channel: Channel name
            message: Serialized message body

        Returns:
            Number of subscribers that received the message

        Raises:
            ConnectionError: If the client is not connected
            RedisError: If the PUBLISH command fails
        """
        self._ensure_connected()

        try:
            receivers = await self._client.publish(channel, message)
        except RedisError as e:
            self._failed_publishes += 1
            logger.error("PUBLISH failed", channel=channel, error=str(e))
            raise

        self._published_messages += 1
        logger.debug("PUBLISH sent", channel=channel, receivers=receivers)
        return receivers

    def get_publish_stats(self) -> dict[str, Any]:
        return {
            "published_messages": self._published_messages,
            "failed_publishes": self._failed_publishes,
        }

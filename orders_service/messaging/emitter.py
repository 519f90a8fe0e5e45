"""
Event emitter for outbound order events.

Events are published as JSON envelopes on Redis pub/sub channels named
``<prefix><event name>``. Publishing is fire-and-forget from the caller's
point of view; delivery guarantees belong to the message transport.
"""

import json
from datetime import datetime, timezone
from typing import Any, Optional, Protocol, Union

from redis.exceptions import RedisError

from orders_service.core.config import get_settings
from orders_service.core.logging import get_logger
from orders_service.messaging.redis_client import RedisClient

logger = get_logger(__name__)


class EventPublishError(Exception):
    """Raised when an event cannot be handed to the transport."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class EventEmitter(Protocol):
    """Publishes named events with a JSON-compatible payload."""

    async def emit(self, event: str, payload: dict[str, Any]) -> None:
        ...


class RedisEventEmitter:
    """
    Event emitter backed by Redis pub/sub.

    Each event is published as ``{"event", "payload", "emitted_at"}`` on the
    channel built from the configured prefix and the event name.
    """

    def __init__(
        self,
        redis_client: RedisClient,
        channel_prefix: Optional[str] = None,
    ):
        self.redis_client = redis_client
        self.channel_prefix = (
            channel_prefix
            if channel_prefix is not None
            else get_settings().event_channel_prefix
        )

    def channel_for(self, event: Union[str, Any]) -> str:
        name = getattr(event, "value", event)
        return f"{self.channel_prefix}{name}"

    async def emit(self, event: str, payload: dict[str, Any]) -> None:
        """
        Publish an event.

        Args:
            event: Event name
            payload: JSON-compatible event payload

        Raises:
            EventPublishError: If the event cannot be serialized or published
        """
        name = getattr(event, "value", event)
        channel = self.channel_for(name)

        try:
            message = json.dumps(
                {
                    "event": name,
                    "payload": payload,
                    "emitted_at": datetime.now(timezone.utc).isoformat(),
                }
            )
        except (TypeError, ValueError) as e:
            raise EventPublishError(
                "Event payload is not JSON serializable",
                event=name,
                error=str(e),
            ) from e

        try:
            receivers = await self.redis_client.publish(channel, message)
        except RedisError as e:
            raise EventPublishError(
                "Failed to publish event",
                event=name,
                channel=channel,
                error=str(e),
            ) from e

        logger.info(
            "Event published",
            event_name=name,
            channel=channel,
            receivers=receivers,
        )

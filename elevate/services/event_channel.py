"""
Redis-list backed message channel with at-least-once delivery.

Messages are pushed to `<prefix>channel:<topic>`. A consumer atomically moves
each message to a processing list (`LMOVE`) and removes it from there only
once the handler succeeded. Messages left in the processing list by a dead
consumer are moved back to the queue when a consumer starts, so handlers must
be idempotent.
"""

import asyncio
from typing import Awaitable, Callable, Generic, Optional, Type, TypeVar

import structlog
from pydantic import BaseModel
from redis.asyncio import Redis


logger = structlog.get_logger(__name__)

ACTIVITY_CREATED = "activity.created"

M = TypeVar("M", bound=BaseModel)


class ActivityCreatedEvent(BaseModel):
    """Published once an activity header has been stored."""
    slug: str


class Delivery(Generic[M]):
    """A received message, acknowledged through its channel."""

    def __init__(self, raw: str, message: M):
        self.raw = raw
        self.message = message


class EventChannel(Generic[M]):
    """One topic of the message channel."""

    def __init__(
        self,
        redis: Redis,
        topic: str,
        model: Type[M],
        prefix: str = "elevate:",
        poll_interval: float = 1.0,
    ):
        self.redis = redis
        self.topic = topic
        self.model = model
        self.poll_interval = poll_interval
        self.queue_key = f"{prefix}channel:{topic}"
        self.processing_key = f"{self.queue_key}:processing"
        self.logger = logger.bind(service="event_channel", topic=topic)

    async def publish(self, message: M) -> None:
        await self.redis.rpush(self.queue_key, message.model_dump_json())
        self.logger.debug("Message published", message=message.model_dump())

    async def receive(self) -> Optional[Delivery[M]]:
        """Move the oldest message to the processing list and return it."""
        raw = await self.redis.lmove(self.queue_key, self.processing_key, "LEFT", "RIGHT")
        if raw is None:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode()
        return Delivery(raw, self.model.model_validate_json(raw))

    async def ack(self, delivery: Delivery[M]) -> None:
        await self.redis.lrem(self.processing_key, 1, delivery.raw)

    async def nack(self, delivery: Delivery[M]) -> None:
        """Put a message back at the end of the queue."""
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.lrem(self.processing_key, 1, delivery.raw)
            pipe.rpush(self.queue_key, delivery.raw)
            await pipe.execute()

    async def requeue_unacked(self) -> int:
        """Move every unacknowledged message back to the head of the queue."""
        count = 0
        while await self.redis.lmove(self.processing_key, self.queue_key, "RIGHT", "LEFT") is not None:
            count += 1
        if count:
            self.logger.warning("Requeued unacknowledged messages", count=count)
        return count

    async def pending(self) -> int:
        return await self.redis.llen(self.queue_key)

    async def consume(
        self,
        handler: Callable[[M], Awaitable[None]],
        stop_event: asyncio.Event,
    ) -> None:
        """Deliver messages to `handler` until `stop_event` is set."""
        await self.requeue_unacked()
        self.logger.info("Consumer started")

        while not stop_event.is_set():
            processed = await self.process_next(handler)
            if not processed:
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=self.poll_interval)
                except asyncio.TimeoutError:
                    pass

        self.logger.info("Consumer stopped")

    async def process_next(self, handler: Callable[[M], Awaitable[None]]) -> bool:
        """Handle one message. Returns False when the queue was empty or the handler failed."""
        delivery = await self.receive()
        if delivery is None:
            return False

        try:
            await handler(delivery.message)
        except Exception as e:
            self.logger.error(
                "Handler failed, message requeued",
                message=delivery.raw,
                error=str(e),
                exc_info=True,
            )
            await self.nack(delivery)
            return False

        await self.ack(delivery)
        return True

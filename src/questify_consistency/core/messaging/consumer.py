"""
Event Consumer

Manual-ack consumption with in-process retry and dead-lettering.

Handlers return a HandlerResult:
- ACK:    processed; the delivery is acknowledged
- RETRY:  transient failure; redelivered after exponential backoff
- REJECT: terminal failure; dead-lettered immediately

A raised exception is classified by `classify_exception`: instances of
the consumer's `non_retryable` types (validation, not-found and
authorization errors by default) reject, anything else retries.
After `max_retries` retries the delivery is dead-lettered to
`<topic>.dlq` on the same partition and only then acknowledged.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional, Tuple, Type

from opentelemetry.trace import SpanKind
from pydantic import ValidationError as PydanticValidationError

from ..config import ConsumerSettings
from ..events.envelope import EventEnvelope
from ..observability.metrics import record_counter
from ..observability.tracing import create_span
from .transport import Delivery, Transport

logger = logging.getLogger(__name__)


class HandlerOutcome(str, Enum):
    """What the handler wants done with a delivery."""
    ACK = "ack"
    RETRY = "retry"
    REJECT = "reject"


@dataclass(frozen=True)
class HandlerResult:
    """Tagged handler result."""
    outcome: HandlerOutcome
    reason: Optional[str] = None

    @classmethod
    def ack(cls) -> "HandlerResult":
        return cls(HandlerOutcome.ACK)

    @classmethod
    def retry(cls, reason: str) -> "HandlerResult":
        return cls(HandlerOutcome.RETRY, reason)

    @classmethod
    def reject(cls, reason: str) -> "HandlerResult":
        return cls(HandlerOutcome.REJECT, reason)

    @property
    def is_ack(self) -> bool:
        return self.outcome is HandlerOutcome.ACK


Handler = Callable[[EventEnvelope], Awaitable[Optional[HandlerResult]]]


class ConsumeOutcome(str, Enum):
    """Final fate of a delivery."""
    ACKED = "acked"
    DEAD_LETTERED = "dead_lettered"


# Raised exceptions of these types are never retried
NON_RETRYABLE_EXCEPTIONS: Tuple[Type[BaseException], ...] = (
    ValueError,
    LookupError,
    PermissionError,
)


def describe_exception(exc: BaseException) -> str:
    return f"{type(exc).__name__}: {exc}"


def classify_exception(
    exc: BaseException,
    non_retryable: Tuple[Type[BaseException], ...] = NON_RETRYABLE_EXCEPTIONS,
) -> HandlerResult:
    """Map an unexpected handler exception to RETRY or REJECT."""
    if isinstance(exc, non_retryable):
        return HandlerResult.reject(describe_exception(exc))
    return HandlerResult.retry(describe_exception(exc))


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff with a cap."""
    initial_interval: float = 1.0
    multiplier: float = 2.0
    max_interval: float = 30.0
    max_retries: int = 5

    @classmethod
    def from_settings(cls, settings: ConsumerSettings) -> "RetryPolicy":
        return cls(
            initial_interval=settings.initial_interval_seconds,
            multiplier=settings.multiplier,
            max_interval=settings.max_interval_seconds,
            max_retries=settings.max_retries,
        )

    def delay_for(self, retry_number: int) -> float:
        """Delay before the n-th retry (1-based)."""
        delay = self.initial_interval * (self.multiplier ** (retry_number - 1))
        return min(delay, self.max_interval)


class EventConsumer:
    """
    Consumes one topic for one consumer group.

    Usage:
        consumer = EventConsumer(transport, "questify.users", "quest-service", handler)
        await consumer.start()
        ...
        await consumer.stop()

    Deliveries are processed in order within a partition (one worker task
    per partition) and concurrently across partitions.
    """

    def __init__(
        self,
        transport: Transport,
        topic: str,
        group_id: str,
        handler: Handler,
        retry_policy: Optional[RetryPolicy] = None,
        dlq_suffix: str = ".dlq",
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        non_retryable: Tuple[Type[BaseException], ...] = NON_RETRYABLE_EXCEPTIONS,
    ):
        self.transport = transport
        self.topic = topic
        self.group_id = group_id
        self.handler = handler
        self.retry_policy = retry_policy or RetryPolicy()
        self.dlq_topic = f"{topic}{dlq_suffix}"
        self._sleep = sleep
        self.non_retryable = tuple(non_retryable)
        self._task: Optional[asyncio.Task] = None
        self._queues: Dict[int, asyncio.Queue] = {}
        self._workers: Dict[int, asyncio.Task] = {}

    async def process(self, delivery: Delivery) -> ConsumeOutcome:
        """Run the handler for one delivery until it is acked or dead-lettered."""
        retries = 0
        with create_span(
            f"consume {self.topic}",
            {
                "messaging.destination": self.topic,
                "messaging.consumer_group": self.group_id,
                "messaging.partition": delivery.partition,
                "messaging.offset": delivery.offset,
            },
            kind=SpanKind.CONSUMER,
            parent_headers=delivery.headers,
        ):
            while True:
                result = await self._invoke(delivery)

                if result.outcome is HandlerOutcome.ACK:
                    await delivery.ack()
                    return ConsumeOutcome.ACKED

                if result.outcome is HandlerOutcome.REJECT:
                    logger.error(
                        f"Rejected {self.topic}[{delivery.partition}]@{delivery.offset} "
                        f"for group {self.group_id}: {result.reason}"
                    )
                    await self._dead_letter(delivery, result, retries)
                    return ConsumeOutcome.DEAD_LETTERED

                if retries >= self.retry_policy.max_retries:
                    logger.error(
                        f"Retries exhausted for {self.topic}[{delivery.partition}]@{delivery.offset} "
                        f"after {retries} retries: {result.reason}"
                    )
                    await self._dead_letter(delivery, result, retries)
                    return ConsumeOutcome.DEAD_LETTERED

                retries += 1
                delay = self.retry_policy.delay_for(retries)
                record_counter("consumer_retries_total", 1, {"topic": self.topic, "group": self.group_id})
                logger.warning(
                    f"Retrying {self.topic}[{delivery.partition}]@{delivery.offset} "
                    f"in {delay:.1f}s (retry {retries}/{self.retry_policy.max_retries}): {result.reason}"
                )
                await self._sleep(delay)

    async def _invoke(self, delivery: Delivery) -> HandlerResult:
        try:
            envelope = delivery.envelope
        except (PydanticValidationError, ValueError) as e:
            return HandlerResult.reject(f"Undecodable envelope: {describe_exception(e)}")

        try:
            result = await self.handler(envelope)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.debug(f"Handler raised for event {envelope.event_id}", exc_info=True)
            return classify_exception(e, self.non_retryable)

        return result if result is not None else HandlerResult.ack()

    async def _dead_letter(self, delivery: Delivery, result: HandlerResult, retries: int) -> None:
        headers = dict(delivery.headers)
        headers.update({
            "x-original-topic": delivery.topic,
            "x-original-partition": str(delivery.partition),
            "x-original-offset": str(delivery.offset),
            "x-consumer-group": self.group_id,
            "x-failure-outcome": result.outcome.value,
            "x-failure-reason": (result.reason or "")[:2000],
            "x-retry-count": str(retries),
        })

        # The delivery stays unacknowledged until the dead letter is durable
        while True:
            try:
                await self.transport.send(
                    self.dlq_topic,
                    delivery.key,
                    delivery.value,
                    partition=delivery.partition,
                    headers=headers,
                )
                break
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(
                    f"Dead-letter publish to {self.dlq_topic} failed, retrying in "
                    f"{self.retry_policy.max_interval}s: {e}"
                )
                await self._sleep(self.retry_policy.max_interval)

        record_counter("dlq_entries_total", 1, {"topic": self.topic, "group": self.group_id})
        await delivery.ack()

    # =========================================================================
    # Subscription loop
    # =========================================================================

    async def start(self) -> None:
        """Start consuming in a background task."""
        if self._task is not None:
            return
        self._task = asyncio.create_task(self.run())
        logger.info(f"EventConsumer started: topic={self.topic} group={self.group_id}")

    async def stop(self) -> None:
        """Stop consuming; unacknowledged deliveries are redelivered later."""
        tasks = list(self._workers.values())
        if self._task is not None:
            tasks.append(self._task)
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._task = None
        self._workers.clear()
        self._queues.clear()
        logger.info(f"EventConsumer stopped: topic={self.topic} group={self.group_id}")

    async def run(self) -> None:
        """Subscribe and fan deliveries out to per-partition workers."""
        async for delivery in self.transport.subscribe(self.topic, self.group_id):
            queue = self._queues.get(delivery.partition)
            if queue is None:
                queue = asyncio.Queue()
                self._queues[delivery.partition] = queue
                self._workers[delivery.partition] = asyncio.create_task(
                    self._partition_worker(delivery.partition, queue)
                )
            await queue.put(delivery)

    async def _partition_worker(self, partition: int, queue: asyncio.Queue) -> None:
        while True:
            delivery = await queue.get()
            try:
                await self.process(delivery)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(
                    f"Failed to process {self.topic}[{partition}]@{delivery.offset}: {e}",
                    exc_info=True
                )
            finally:
                queue.task_done()

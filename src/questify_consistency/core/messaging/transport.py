"""
Message Transport Adapter

Abstraction over the at-least-once pub/sub system. Records are keyed;
records with the same key land on the same partition and are delivered
in publish order within that partition. Consumption is manual-ack: a
delivery's offset is committed only when `Delivery.ack()` is awaited.

Implementations:
- InMemoryTransport (local development, tests)
- KafkaTransport (aiokafka, see kafka.py)
"""

from __future__ import annotations

import asyncio
import logging
import zlib
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from functools import cached_property
from typing import AsyncIterator, Awaitable, Callable, Dict, List, Optional, Tuple

from ..events.envelope import EventEnvelope

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecordMetadata:
    """Where a published record landed."""
    topic: str
    partition: int
    offset: int


@dataclass
class Delivery:
    """
    One record handed to a consumer group.

    The envelope is decoded lazily so an undecodable record can still be
    routed to a dead-letter topic with its raw bytes.
    """
    topic: str
    partition: int
    offset: int
    key: Optional[str]
    value: bytes
    headers: Dict[str, str] = field(default_factory=dict)
    _commit: Optional[Callable[[], Awaitable[None]]] = field(default=None, repr=False)
    acked: bool = False

    @cached_property
    def envelope(self) -> EventEnvelope:
        return EventEnvelope.from_json(self.value)

    async def ack(self) -> None:
        """Commit this delivery's offset for the consumer group."""
        if self.acked:
            return
        if self._commit is not None:
            await self._commit()
        self.acked = True


class Transport(ABC):
    """
    Abstract base class for message transports.

    All transports must provide:
    - send: publish raw bytes to a topic (optionally a fixed partition)
    - subscribe: iterate deliveries for a consumer group
    """

    async def start(self) -> None:
        """Open connections. No-op by default."""

    async def stop(self) -> None:
        """Close connections. No-op by default."""

    async def publish(
        self,
        topic: str,
        key: Optional[str],
        envelope: EventEnvelope,
        *,
        partition: Optional[int] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> RecordMetadata:
        """Serialize and publish an envelope."""
        return await self.send(
            topic,
            key,
            envelope.to_json().encode("utf-8"),
            partition=partition,
            headers=headers,
        )

    @abstractmethod
    async def send(
        self,
        topic: str,
        key: Optional[str],
        value: bytes,
        *,
        partition: Optional[int] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> RecordMetadata:
        """
        Publish raw bytes.

        Returns once the transport acknowledged the write.
        """
        ...

    @abstractmethod
    def subscribe(self, topic: str, group_id: str) -> AsyncIterator[Delivery]:
        """
        Iterate deliveries for `group_id`, starting after the group's last
        committed offset on each partition. Runs until cancelled.
        """
        ...


@dataclass(frozen=True)
class StoredRecord:
    """A record held by InMemoryTransport."""
    topic: str
    partition: int
    offset: int
    key: Optional[str]
    value: bytes
    headers: Dict[str, str]

    @property
    def envelope(self) -> EventEnvelope:
        return EventEnvelope.from_json(self.value)


class InMemoryTransport(Transport):
    """
    Process-local transport with Kafka-like semantics.

    Keys are hashed (crc32) onto a fixed number of partitions; each
    consumer group keeps its own committed offset per partition. A
    subscriber that stops without acknowledging sees the same records
    again on its next subscription.
    """

    def __init__(self, num_partitions: int = 3):
        if num_partitions < 1:
            raise ValueError("num_partitions must be >= 1")
        self.num_partitions = num_partitions
        self._logs: Dict[str, List[List[StoredRecord]]] = {}
        self._committed: Dict[Tuple[str, str, int], int] = {}
        self._round_robin = 0
        self._cond = asyncio.Condition()

    def partition_for(self, key: Optional[str]) -> int:
        if key is None:
            self._round_robin = (self._round_robin + 1) % self.num_partitions
            return self._round_robin
        return zlib.crc32(key.encode("utf-8")) % self.num_partitions

    def _topic_log(self, topic: str) -> List[List[StoredRecord]]:
        if topic not in self._logs:
            self._logs[topic] = [[] for _ in range(self.num_partitions)]
        return self._logs[topic]

    async def send(
        self,
        topic: str,
        key: Optional[str],
        value: bytes,
        *,
        partition: Optional[int] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> RecordMetadata:
        if partition is None:
            partition = self.partition_for(key)
        elif not 0 <= partition < self.num_partitions:
            raise ValueError(f"Partition {partition} out of range for topic {topic}")

        async with self._cond:
            log = self._topic_log(topic)[partition]
            record = StoredRecord(
                topic=topic,
                partition=partition,
                offset=len(log),
                key=key,
                value=value,
                headers=dict(headers or {}),
            )
            log.append(record)
            self._cond.notify_all()

        logger.debug(f"Published {topic}[{partition}]@{record.offset} key={key}")
        return RecordMetadata(topic, partition, record.offset)

    async def subscribe(self, topic: str, group_id: str) -> AsyncIterator[Delivery]:
        log = self._topic_log(topic)
        positions = [
            self._committed.get((group_id, topic, p), 0)
            for p in range(self.num_partitions)
        ]

        while True:
            progressed = False
            for p in range(self.num_partitions):
                while positions[p] < len(log[p]):
                    record = log[p][positions[p]]
                    positions[p] += 1
                    progressed = True
                    yield Delivery(
                        topic=record.topic,
                        partition=record.partition,
                        offset=record.offset,
                        key=record.key,
                        value=record.value,
                        headers=dict(record.headers),
                        _commit=self._committer(group_id, record),
                    )

            if not progressed:
                async with self._cond:
                    await self._cond.wait_for(
                        lambda: any(positions[p] < len(log[p]) for p in range(self.num_partitions))
                    )

    def _committer(self, group_id: str, record: StoredRecord) -> Callable[[], Awaitable[None]]:
        async def commit() -> None:
            slot = (group_id, record.topic, record.partition)
            self._committed[slot] = max(self._committed.get(slot, 0), record.offset + 1)
        return commit

    def records(self, topic: str) -> List[StoredRecord]:
        """All records on a topic, partition by partition."""
        return [record for part in self._logs.get(topic, []) for record in part]

    def committed_offset(self, group_id: str, topic: str, partition: int) -> int:
        return self._committed.get((group_id, topic, partition), 0)

"""
Kafka Transport

aiokafka-backed implementation of Transport. Producers wait for the
broker acknowledgement; consumers disable auto-commit and commit an
offset only when the delivery is acknowledged.
"""

import logging
from typing import AsyncIterator, Dict, List, Optional, Tuple

from aiokafka import AIOKafkaConsumer, AIOKafkaProducer, TopicPartition

from .transport import Delivery, RecordMetadata, Transport

logger = logging.getLogger(__name__)


def _encode_headers(headers: Optional[Dict[str, str]]) -> Optional[List[Tuple[str, bytes]]]:
    if not headers:
        return None
    return [(name, value.encode("utf-8")) for name, value in headers.items()]


def _decode_headers(headers) -> Dict[str, str]:
    return {
        name: value.decode("utf-8", errors="replace") if value is not None else ""
        for name, value in (headers or ())
    }


class KafkaTransport(Transport):
    """
    Kafka transport.

    Environment:
        KAFKA_BOOTSTRAP_SERVERS: comma separated broker list
    """

    def __init__(
        self,
        bootstrap_servers: str = "localhost:9092",
        *,
        client_id: str = "questify-consistency",
        acks: str = "all",
    ):
        self.bootstrap_servers = bootstrap_servers
        self.client_id = client_id
        self.acks = acks
        self.producer: Optional[AIOKafkaProducer] = None
        self._started = False

    async def start(self) -> None:
        if self._started:
            return
        logger.info("Starting Kafka Producer...")
        # aiokafka binds to the running loop at construction
        self.producer = AIOKafkaProducer(
            bootstrap_servers=self.bootstrap_servers,
            client_id=self.client_id,
            acks=self.acks,
            enable_idempotence=True,
        )
        await self.producer.start()
        self._started = True
        logger.info("Kafka Producer started.")

    async def stop(self) -> None:
        if not self._started:
            return
        logger.info("Stopping Kafka Producer...")
        await self.producer.stop()
        self._started = False
        logger.info("Kafka Producer stopped.")

    async def send(
        self,
        topic: str,
        key: Optional[str],
        value: bytes,
        *,
        partition: Optional[int] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> RecordMetadata:
        await self.start()
        try:
            metadata = await self.producer.send_and_wait(
                topic,
                value,
                key=key.encode("utf-8") if key is not None else None,
                partition=partition,
                headers=_encode_headers(headers),
            )
        except Exception as e:
            logger.error(f"Failed to send message to topic '{topic}': {e}")
            raise
        return RecordMetadata(metadata.topic, metadata.partition, metadata.offset)

    async def subscribe(self, topic: str, group_id: str) -> AsyncIterator[Delivery]:
        consumer = AIOKafkaConsumer(
            topic,
            bootstrap_servers=self.bootstrap_servers,
            group_id=group_id,
            client_id=f"{self.client_id}-{group_id}",
            enable_auto_commit=False,
            auto_offset_reset="earliest",
        )
        await consumer.start()
        logger.info(f"Kafka consumer started: topic={topic} group={group_id}")
        try:
            async for message in consumer:
                yield Delivery(
                    topic=message.topic,
                    partition=message.partition,
                    offset=message.offset,
                    key=message.key.decode("utf-8") if message.key is not None else None,
                    value=message.value,
                    headers=_decode_headers(message.headers),
                    _commit=self._committer(consumer, message.topic, message.partition, message.offset),
                )
        finally:
            await consumer.stop()
            logger.info(f"Kafka consumer stopped: topic={topic} group={group_id}")

    @staticmethod
    def _committer(consumer: AIOKafkaConsumer, topic: str, partition: int, offset: int):
        async def commit() -> None:
            await consumer.commit({TopicPartition(topic, partition): offset + 1})
        return commit

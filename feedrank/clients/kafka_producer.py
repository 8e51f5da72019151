"""
Async Kafka producer.

Publishes one event per recorded interaction to the `interactions` topic:
  { user_id, target_type, target_id, interaction_type, value, metadata, timestamp }

`recommendation_shown` events double as impressions for downstream analytics.
"""
import json
import logging
from typing import Optional

from aiokafka import AIOKafkaProducer

from feedrank.ranking.types import InteractionRecord

logger = logging.getLogger(__name__)


def _event(record: InteractionRecord) -> dict:
    return {
        "user_id": record.user_id,
        "target_type": record.target_type,
        "target_id": record.target_id,
        "interaction_type": record.interaction_type,
        "value": record.value,
        "metadata": record.metadata,
        "timestamp": int(record.created_at.timestamp() * 1000),  # milliseconds
    }


class KafkaInteractionPublisher:
    def __init__(self, bootstrap_servers: str, topic: str) -> None:
        self.bootstrap_servers = bootstrap_servers
        self.topic = topic
        self._producer: Optional[AIOKafkaProducer] = None

    async def start(self) -> None:
        self._producer = AIOKafkaProducer(
            bootstrap_servers=self.bootstrap_servers,
            value_serializer=lambda v: json.dumps(v, default=str).encode("utf-8"),
            acks="all",          # wait for all in-sync replicas
            enable_idempotence=True,
        )
        await self._producer.start()
        logger.info("Kafka producer started → %s", self.bootstrap_servers)

    async def stop(self) -> None:
        if self._producer:
            await self._producer.stop()

    async def publish(self, records: list[InteractionRecord]) -> None:
        if self._producer is None:
            raise RuntimeError("Kafka producer not initialised — call start() first")
        for record in records:
            await self._producer.send(
                self.topic, _event(record), key=record.user_id.encode("utf-8")
            )
        logger.debug("Published %d interaction events", len(records))

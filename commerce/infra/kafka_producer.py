"""
Publication d'événements métier sur Kafka (confluent-kafka).

Un producteur global est réutilisé entre les publications. Les valeurs sont du
JSON UTF-8; la clé (order_id, user_id) garantit l'ordre par entité sur une partition.
"""
import json
import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from confluent_kafka import Producer

from commerce.config import KAFKA_BOOTSTRAP_SERVERS, KAFKA_CLIENT_ID

logger = logging.getLogger(__name__)

_global_producer: Optional[Producer] = None


def _json_default(value: Any):
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    raise TypeError(f"Type non sérialisable: {type(value).__name__}")


def encode_event(payload: Dict[str, Any]) -> bytes:
    return json.dumps(payload, default=_json_default, separators=(",", ":")).encode("utf-8")


def _get_global_producer() -> Producer:
    global _global_producer
    if _global_producer is None:
        if not KAFKA_BOOTSTRAP_SERVERS:
            raise RuntimeError("KAFKA_BOOTSTRAP_SERVERS manquant")
        _global_producer = Producer(
            {
                "bootstrap.servers": KAFKA_BOOTSTRAP_SERVERS,
                "client.id": KAFKA_CLIENT_ID,
                "enable.idempotence": True,
                "acks": "all",
                "retries": 3,
                "linger.ms": 50,
            }
        )
    return _global_producer


def _on_delivery(err, msg) -> None:
    if err is not None:
        logger.error("kafka.delivery failed topic=%s error=%s", msg.topic(), err)


class KafkaEventPublisher:
    """Publie des événements JSON. produce() est asynchrone côté librdkafka; poll(0) sert les callbacks."""

    def __init__(self, producer: Optional[Producer] = None):
        self._producer = producer

    @property
    def producer(self) -> Producer:
        if self._producer is None:
            self._producer = _get_global_producer()
        return self._producer

    def publish(self, topic: str, payload: Dict[str, Any], key: Optional[str] = None) -> None:
        self.producer.produce(
            topic=topic,
            key=key.encode("utf-8") if key else None,
            value=encode_event(payload),
            on_delivery=_on_delivery,
        )
        self.producer.poll(0)
        logger.info("kafka.publish topic=%s key=%s", topic, key)

    def flush(self, timeout: float = 5.0) -> int:
        if self._producer is None:
            return 0
        return self._producer.flush(timeout)

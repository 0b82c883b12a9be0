"""
Kafka Producer

채팅방 Domain Events를 Kafka로 발행하는 Producer
"""

import asyncio
import json
import logging
from typing import Any, Optional
from aiokafka import AIOKafkaProducer
from aiokafka.errors import KafkaError, KafkaTimeoutError

from app.domain.events.base import DomainEvent
from .config import KafkaConfig, kafka_config

logger = logging.getLogger(__name__)


class DomainEventProducer:
    """Domain Events를 Kafka로 발행하는 Producer (lifespan 에서 생성/시작)"""

    def __init__(self, config: Optional[KafkaConfig] = None):
        self.config = config or kafka_config
        self.producer: Optional[AIOKafkaProducer] = None
        self._started = False

    @property
    def is_started(self) -> bool:
        return self._started

    async def start(self):
        """Producer 시작"""
        if self._started:
            logger.warning("Producer already started")
            return

        try:
            self.producer = AIOKafkaProducer(
                bootstrap_servers=self.config.bootstrap_servers,
                value_serializer=lambda v: json.dumps(v, default=str).encode('utf-8'),
                key_serializer=lambda k: str(k).encode('utf-8') if k else None,
                acks=self.config.producer_acks,
                compression_type=self.config.producer_compression_type,
                request_timeout_ms=self.config.producer_request_timeout_ms
            )
            await self.producer.start()
            self._started = True
            logger.info("Kafka Producer started successfully")

        except Exception as e:
            logger.error(f"Failed to start Kafka Producer: {e}")
            self.producer = None
            raise

    async def stop(self):
        """Producer 중지"""
        if self.producer and self._started:
            await self.producer.stop()
            self._started = False
            logger.info("Kafka Producer stopped")

    async def publish(
        self,
        topic: str,
        event: Any,
        key: Optional[str] = None
    ):
        """
        Domain Event 발행

        Args:
            topic: Kafka topic
            event: Domain Event (DomainEvent 인스턴스 또는 dict)
            key: Partition key (room_id)
        """
        if not self._started or not self.producer:
            raise RuntimeError("Producer not started. Call start() first.")

        if isinstance(event, DomainEvent):
            event_data = event.to_dict()
        elif isinstance(event, dict):
            event_data = event
        else:
            raise ValueError(f"Unsupported event type: {type(event)}")

        try:
            metadata = await self.producer.send_and_wait(
                topic=topic,
                value=event_data,
                key=key
            )
        except KafkaTimeoutError as e:
            logger.error(f"[Kafka Timeout] Topic: {topic}, Error: {e}")
            raise
        except KafkaError as e:
            logger.error(f"[Kafka Error] Topic: {topic}, Error: {e}")
            raise

        logger.info(
            f"[Event Published] "
            f"Topic: {topic}, "
            f"Partition: {metadata.partition}, "
            f"Offset: {metadata.offset}, "
            f"Event: {event_data.get('__event_type__', 'Unknown')}"
        )

    async def publish_with_retry(
        self,
        topic: str,
        event: Any,
        key: Optional[str] = None,
        max_retries: Optional[int] = None
    ) -> bool:
        """
        타임아웃 시 재시도하는 발행

        Returns:
            bool: 성공 여부 (실패는 로그만 남김)
        """
        attempts = max_retries or self.config.producer_max_retries
        for attempt in range(attempts):
            try:
                await self.publish(topic, event, key)
                return True

            except KafkaTimeoutError:
                if attempt < attempts - 1:
                    logger.warning(f"Retry {attempt + 1}/{attempts} for topic: {topic}")
                    await asyncio.sleep(0.5 * (attempt + 1))
                else:
                    logger.error(f"Failed after {attempts} retries: {topic}")
                    return False

            except Exception as e:
                logger.error(f"Unrecoverable publish error on {topic}: {e}")
                return False

        return False

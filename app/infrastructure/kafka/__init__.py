"""
Kafka Infrastructure

채팅방 Domain Event 발행용 Producer 및 설정
"""

from .producer import DomainEventProducer
from .config import KafkaConfig, kafka_config

__all__ = [
    'DomainEventProducer',
    'KafkaConfig',
    'kafka_config',
]

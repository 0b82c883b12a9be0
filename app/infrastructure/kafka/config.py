"""
Kafka Configuration
"""

from typing import List
from pydantic import Field
from pydantic_settings import BaseSettings


class KafkaConfig(BaseSettings):
    """Kafka 설정"""

    # Kafka 브로커 주소
    bootstrap_servers: List[str] = Field(
        default=["localhost:19092"],
        description="Kafka bootstrap servers"
    )

    # Producer 설정
    producer_acks: str = Field(
        default="all",
        description="Producer acks: 'all', '1', '0'"
    )
    producer_compression_type: str = Field(
        default="gzip",
        description="Compression type: 'none', 'gzip', 'snappy', 'lz4'"
    )
    producer_request_timeout_ms: int = Field(
        default=10000,
        description="Request timeout in milliseconds"
    )
    producer_max_retries: int = Field(
        default=3,
        description="Publish attempts on timeout"
    )

    class Config:
        env_prefix = "KAFKA_"
        case_sensitive = False


kafka_config = KafkaConfig()

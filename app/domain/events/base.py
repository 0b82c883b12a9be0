"""
Domain Event Base Class
"""

from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Dict


@dataclass
class DomainEvent:
    """채팅방 Domain Event 기본 클래스"""
    timestamp: datetime

    @property
    def event_type(self) -> str:
        """Consumer 라우팅용 이벤트 이름"""
        return self.__class__.__name__

    def to_dict(self) -> Dict:
        """Kafka 메시지 본문 (timestamp 는 ISO 문자열)"""
        data = asdict(self)
        data['timestamp'] = self.timestamp.isoformat()
        data['__event_type__'] = self.event_type
        return data

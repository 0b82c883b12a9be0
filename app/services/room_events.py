"""
채팅방 Domain Event 발행

Kafka 발행은 best effort 입니다. 비활성화되어 있거나 실패해도 채팅 작업은 실패하지 않습니다.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional

from app.core.config import settings
from app.domain.events import (
    DomainEvent,
    ChatRoomCreated,
    RoomMembersAdded,
    RoomMembersRemoved,
    RoomMemberRolesChanged,
    ChatRoomDeleted,
    ChatRoomUpdated,
    JoinRequestHandled
)
from app.infrastructure.kafka.producer import DomainEventProducer
from app.models.chat_rooms import ChatRoom
from app.models.join_requests import JoinRequest

logger = logging.getLogger(__name__)


class RoomEventPublisher:
    """채팅방 이벤트를 Kafka 토픽으로 발행"""

    def __init__(self, producer: Optional[DomainEventProducer] = None, topic: Optional[str] = None):
        self.producer = producer
        self.topic = topic or settings.kafka_topic_chat_events

    @property
    def enabled(self) -> bool:
        return self.producer is not None and self.producer.is_started

    async def _publish(self, event: DomainEvent, room_id: int) -> bool:
        if not self.enabled:
            return False

        try:
            return await self.producer.publish_with_retry(self.topic, event, key=str(room_id))
        except Exception as e:
            logger.error(f"Failed to publish {event.__class__.__name__} for room {room_id}: {e}")
            return False

    async def room_created(self, room: ChatRoom, channel_id: Optional[str] = None) -> bool:
        return await self._publish(
            ChatRoomCreated(
                timestamp=datetime.utcnow(),
                room_id=room.id,
                room_type=room.room_type,
                created_by=room.created_by,
                member_ids=room.member_ids,
                channel_id=channel_id
            ),
            room.id
        )

    async def members_added(self, room: ChatRoom, acting_user_id: int, member_ids: List[int]) -> bool:
        return await self._publish(
            RoomMembersAdded(
                timestamp=datetime.utcnow(),
                room_id=room.id,
                acting_user_id=acting_user_id,
                member_ids=list(member_ids),
                member_count=room.member_count
            ),
            room.id
        )

    async def members_removed(self, room: ChatRoom, acting_user_id: int, member_ids: List[int]) -> bool:
        return await self._publish(
            RoomMembersRemoved(
                timestamp=datetime.utcnow(),
                room_id=room.id,
                acting_user_id=acting_user_id,
                member_ids=list(member_ids),
                member_count=room.member_count
            ),
            room.id
        )

    async def roles_changed(self, room: ChatRoom, acting_user_id: int, member_ids: List[int], role: str) -> bool:
        return await self._publish(
            RoomMemberRolesChanged(
                timestamp=datetime.utcnow(),
                room_id=room.id,
                acting_user_id=acting_user_id,
                role=role,
                member_ids=list(member_ids)
            ),
            room.id
        )

    async def room_deleted(self, room: ChatRoom, deleted_by: Optional[int], reason: str = "deleted") -> bool:
        return await self._publish(
            ChatRoomDeleted(
                timestamp=datetime.utcnow(),
                room_id=room.id,
                deleted_by=deleted_by,
                reason=reason
            ),
            room.id
        )

    async def room_updated(self, room: ChatRoom, acting_user_id: int, changes: Dict[str, Optional[str]]) -> bool:
        return await self._publish(
            ChatRoomUpdated(
                timestamp=datetime.utcnow(),
                room_id=room.id,
                acting_user_id=acting_user_id,
                changes=dict(changes)
            ),
            room.id
        )

    async def join_request_handled(self, request: JoinRequest) -> bool:
        return await self._publish(
            JoinRequestHandled(
                timestamp=datetime.utcnow(),
                room_id=request.room_id,
                request_id=request.id,
                user_id=request.user_id,
                reviewed_by=request.reviewed_by,
                status=request.status
            ),
            request.room_id
        )

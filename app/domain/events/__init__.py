"""
Domain Events

채팅방 라이프사이클 Domain Event 정의
"""

from .base import DomainEvent
from .chat_events import (
    ChatRoomCreated,
    RoomMembersAdded,
    RoomMembersRemoved,
    RoomMemberRolesChanged,
    ChatRoomDeleted,
    ChatRoomUpdated,
    JoinRequestHandled
)

__all__ = [
    'DomainEvent',
    'ChatRoomCreated',
    'RoomMembersAdded',
    'RoomMembersRemoved',
    'RoomMemberRolesChanged',
    'ChatRoomDeleted',
    'ChatRoomUpdated',
    'JoinRequestHandled',
]

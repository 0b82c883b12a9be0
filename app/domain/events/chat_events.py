"""
Chat Room Context Domain Events
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional
from .base import DomainEvent


@dataclass
class ChatRoomCreated(DomainEvent):
    """채팅방 생성 이벤트"""
    room_id: int
    room_type: str  # "private", "group" or "community"
    created_by: int
    member_ids: List[int] = field(default_factory=list)
    channel_id: Optional[str] = None


@dataclass
class RoomMembersAdded(DomainEvent):
    """채팅방 멤버 추가 이벤트"""
    room_id: int
    acting_user_id: int
    member_ids: List[int] = field(default_factory=list)
    member_count: int = 0


@dataclass
class RoomMembersRemoved(DomainEvent):
    """채팅방 멤버 제거 이벤트"""
    room_id: int
    acting_user_id: int
    member_ids: List[int] = field(default_factory=list)
    member_count: int = 0


@dataclass
class RoomMemberRolesChanged(DomainEvent):
    """채팅방 멤버 역할 변경 이벤트"""
    room_id: int
    acting_user_id: int
    role: str
    member_ids: List[int] = field(default_factory=list)


@dataclass
class ChatRoomDeleted(DomainEvent):
    """채팅방 소프트 삭제 이벤트"""
    room_id: int
    deleted_by: Optional[int]
    reason: str = "deleted"


@dataclass
class ChatRoomUpdated(DomainEvent):
    """채팅방 정보(이름/설명) 변경 이벤트"""
    room_id: int
    acting_user_id: int
    changes: Dict[str, Optional[str]] = field(default_factory=dict)


@dataclass
class JoinRequestHandled(DomainEvent):
    """커뮤니티 가입 요청 처리 이벤트"""
    room_id: int
    request_id: int
    user_id: int
    reviewed_by: int
    status: str  # "accepted" or "rejected"

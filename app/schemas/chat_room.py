from datetime import datetime
from typing import Dict, Optional, List
from pydantic import BaseModel, Field, ConfigDict

from .user import UserSummary


# =============================================================================
# Requests
# =============================================================================

class PrivateChatCreate(BaseModel):
    """1:1 채팅 시작 요청 (recipientId 도 허용)"""
    model_config = ConfigDict(populate_by_name=True)

    recipient_id: int = Field(..., alias="recipientId", description="상대 사용자 ID")


class GroupRoomCreate(BaseModel):
    """그룹/커뮤니티 채팅방 생성 요청"""
    room_type: str = Field("group", description="채팅방 유형 (group, community)")
    name: str = Field(..., max_length=100, description="채팅방 이름")
    description: Optional[str] = Field(None, max_length=1000, description="채팅방 설명")
    member_ids: List[int] = Field(default_factory=list, description="초대할 사용자 ID 목록")


class MemberIdsRequest(BaseModel):
    """멤버 추가/제거 요청"""
    member_ids: List[int] = Field(..., description="대상 사용자 ID 목록")


class MemberRoleUpdate(BaseModel):
    """멤버 역할 변경 요청"""
    member_ids: List[int] = Field(..., description="대상 사용자 ID 목록")
    role: str = Field(..., description="변경할 역할 (member, moderator, admin)")


class RoomDetailsUpdate(BaseModel):
    """채팅방 정보 변경 요청"""
    name: Optional[str] = Field(None, max_length=100, description="채팅방 이름")
    description: Optional[str] = Field(None, max_length=1000, description="채팅방 설명")


class JoinRequestCreate(BaseModel):
    """커뮤니티 가입 요청"""
    message: Optional[str] = Field(None, max_length=500, description="가입 요청 메시지")


class JoinRequestReview(BaseModel):
    """가입 요청 처리"""
    status: str = Field(..., description="처리 결과 (accepted, rejected)")
    note: Optional[str] = Field(None, max_length=500, description="검토 메모")


# =============================================================================
# Responses
# =============================================================================

class RoomMemberResponse(BaseModel):
    """채팅방 멤버 응답"""
    model_config = ConfigDict(from_attributes=True)

    user_id: int = Field(..., description="사용자 ID")
    role: str = Field(..., description="채팅방 역할")
    joined_at: datetime = Field(..., description="참여일시")
    user: Optional[UserSummary] = Field(None, description="사용자 정보")


class RoomMetadata(BaseModel):
    """채팅방 메타데이터"""
    member_count: int = Field(..., description="멤버 수")
    last_activity: Optional[datetime] = Field(None, description="마지막 활동일시")


class ChatRoomResponse(BaseModel):
    """채팅방 응답"""
    id: int = Field(..., description="채팅방 ID")
    room_type: str = Field(..., description="채팅방 유형")
    name: Optional[str] = Field(None, description="채팅방 이름")
    description: Optional[str] = Field(None, description="채팅방 설명")
    created_by: int = Field(..., description="생성자 ID")
    status: str = Field(..., description="상태 (active, deleted)")
    is_active: bool = Field(..., description="활성화 상태")
    members: List[RoomMemberResponse] = Field(default_factory=list, description="멤버 목록")
    metadata: RoomMetadata = Field(..., description="메타데이터")
    created_at: datetime = Field(..., description="생성일시")
    updated_at: datetime = Field(..., description="수정일시")

    @classmethod
    def from_room(cls, room) -> "ChatRoomResponse":
        return cls(
            id=room.id,
            room_type=room.room_type,
            name=room.name,
            description=room.description,
            created_by=room.created_by,
            status=room.status,
            is_active=room.is_active,
            members=[RoomMemberResponse.model_validate(member) for member in room.members],
            metadata=RoomMetadata(**room.metadata_info),
            created_at=room.created_at,
            updated_at=room.updated_at
        )


class ChatRoomList(BaseModel):
    """채팅방 목록"""
    rooms: List[ChatRoomResponse] = Field(..., description="채팅방 목록")
    skip: int = Field(..., description="건너뛴 항목 수")
    limit: int = Field(..., description="페이지당 항목 수")


class StreamChatInfo(BaseModel):
    """외부 채널 정보"""
    channel_id: str = Field(..., description="채널 ID")
    channel_type: str = Field(..., description="채널 유형")
    members: List[str] = Field(default_factory=list, description="채널 멤버")
    synced: bool = Field(..., description="채널 제공자 동기화 여부")

    @classmethod
    def from_handle(cls, handle) -> "StreamChatInfo":
        return cls(**handle.to_dict())


class PrivateChatResponse(BaseModel):
    """1:1 채팅 시작 응답 (streamChat, isNew 키로 직렬화)"""
    model_config = ConfigDict(populate_by_name=True)

    chat: ChatRoomResponse
    stream_chat: StreamChatInfo = Field(..., alias="streamChat")
    is_new: bool = Field(..., alias="isNew", description="새로 생성되었는지 여부")


class RoomDetailResponse(BaseModel):
    """채팅방 상세 응답 (채널 정보 포함)"""
    model_config = ConfigDict(populate_by_name=True)

    chat: ChatRoomResponse
    stream_chat: StreamChatInfo = Field(..., alias="streamChat")


class MembershipResponse(BaseModel):
    """멤버십 변경 응답"""
    chat: ChatRoomResponse
    member_ids: List[int] = Field(default_factory=list, description="실제로 변경된 사용자 ID 목록")
    channel_synced: bool = Field(..., description="채널 동기화 성공 여부")


class UserTokenResponse(BaseModel):
    """채널 제공자 사용자 토큰"""
    user_id: int = Field(..., description="사용자 ID")
    token: str = Field(..., description="사용자 전용 토큰")
    api_key: str = Field(..., description="채널 제공자 공개 API 키")
    expires_in_hours: int = Field(..., description="만료 시간 (시간)")


class RoomUpdateResponse(BaseModel):
    """채팅방 정보 변경 응답"""
    chat: ChatRoomResponse
    changes: Dict[str, Optional[str]] = Field(default_factory=dict, description="실제로 변경된 필드")
    channel_synced: bool = Field(..., description="채널 동기화 성공 여부")


class JoinRequestResponse(BaseModel):
    """가입 요청 응답"""
    model_config = ConfigDict(from_attributes=True)

    id: int = Field(..., description="가입 요청 ID")
    room_id: int = Field(..., description="채팅방 ID")
    user_id: int = Field(..., description="요청자 ID")
    status: str = Field(..., description="상태 (pending, accepted, rejected)")
    message: Optional[str] = Field(None, description="가입 요청 메시지")
    reviewed_by: Optional[int] = Field(None, description="처리자 ID")
    reviewed_at: Optional[datetime] = Field(None, description="처리일시")
    review_note: Optional[str] = Field(None, description="검토 메모")
    created_at: datetime = Field(..., description="요청일시")
    user: Optional[UserSummary] = Field(None, description="요청자 정보")


class JoinRequestList(BaseModel):
    """대기 중인 가입 요청 목록"""
    requests: List[JoinRequestResponse] = Field(..., description="가입 요청 목록")
    skip: int = Field(..., description="건너뛴 항목 수")
    limit: int = Field(..., description="페이지당 항목 수")


class JoinRequestDecisionResponse(BaseModel):
    """가입 요청 처리 응답"""
    join_request: JoinRequestResponse
    chat: ChatRoomResponse
    member_ids: List[int] = Field(default_factory=list, description="추가된 사용자 ID 목록")
    channel_synced: bool = Field(..., description="채널 동기화 성공 여부")

# User schemas
from .user import UserSummary

# Chat Room schemas
from .chat_room import (
    PrivateChatCreate,
    GroupRoomCreate,
    MemberIdsRequest,
    MemberRoleUpdate,
    RoomDetailsUpdate,
    JoinRequestCreate,
    JoinRequestReview,
    RoomMemberResponse,
    RoomMetadata,
    ChatRoomResponse,
    ChatRoomList,
    StreamChatInfo,
    PrivateChatResponse,
    RoomDetailResponse,
    MembershipResponse,
    UserTokenResponse,
    RoomUpdateResponse,
    JoinRequestResponse,
    JoinRequestList,
    JoinRequestDecisionResponse
)

__all__ = [
    # User
    "UserSummary",
    # Chat Room
    "PrivateChatCreate",
    "GroupRoomCreate",
    "MemberIdsRequest",
    "MemberRoleUpdate",
    "RoomDetailsUpdate",
    "JoinRequestCreate",
    "JoinRequestReview",
    "RoomMemberResponse",
    "RoomMetadata",
    "ChatRoomResponse",
    "ChatRoomList",
    "StreamChatInfo",
    "PrivateChatResponse",
    "RoomDetailResponse",
    "MembershipResponse",
    "UserTokenResponse",
    "RoomUpdateResponse",
    "JoinRequestResponse",
    "JoinRequestList",
    "JoinRequestDecisionResponse",
]

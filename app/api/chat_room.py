"""
Chat Room API - 채팅방 생성/조회 및 멤버십 관련 API 엔드포인트
"""

from typing import Iterable, Optional
from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies import (
    get_channel_gateway,
    get_connection_manager,
    get_current_user,
    get_event_publisher
)
from app.core.config import settings
from app.core.validators import Validator
from app.database.mysql import get_async_session
from app.infrastructure.channel_provider import ChannelProviderGateway
from app.models.chat_rooms import ChatRoom
from app.models.users import User
from app.schemas.chat_room import (
    ChatRoomList,
    ChatRoomResponse,
    GroupRoomCreate,
    JoinRequestCreate,
    JoinRequestDecisionResponse,
    JoinRequestList,
    JoinRequestResponse,
    JoinRequestReview,
    MemberIdsRequest,
    MemberRoleUpdate,
    MembershipResponse,
    PrivateChatCreate,
    PrivateChatResponse,
    RoomDetailsUpdate,
    RoomDetailResponse,
    RoomUpdateResponse,
    StreamChatInfo,
    UserTokenResponse
)
from app.services import membership_service, room_store
from app.services.room_events import RoomEventPublisher
from app.services.room_resolution_service import resolve_private_chat
from app.websockets.connection_manager import ConnectionManager

router = APIRouter(prefix="/chat", tags=["Chat Rooms"])


async def _notify(
    manager: ConnectionManager,
    user_ids: Iterable[int],
    event_type: str,
    room: ChatRoom,
    **payload
):
    """멤버십 변경을 관련 사용자의 개인 룸으로 푸시"""
    await manager.send_to_users(user_ids, {
        "type": event_type,
        "room_id": room.id,
        "room_type": room.room_type,
        **payload
    })


# =============================================================================
# Private Chats
# =============================================================================

@router.post("/private", response_model=PrivateChatResponse)
async def create_private_chat(
    payload: PrivateChatCreate,
    response: Response,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
    gateway: ChannelProviderGateway = Depends(get_channel_gateway),
    manager: ConnectionManager = Depends(get_connection_manager),
    publisher: RoomEventPublisher = Depends(get_event_publisher)
) -> PrivateChatResponse:
    """
    1:1 채팅 시작 (조회 또는 생성)

    - 새로 생성된 경우 201, 기존 채팅방이면 200
    - 동시 요청에도 사용자 쌍마다 활성 채팅방은 하나만 존재
    """
    recipient_id = Validator.validate_positive_integer(payload.recipient_id, "recipient_id")

    result = await resolve_private_chat(db, gateway, current_user.id, recipient_id)

    if result.is_new:
        response.status_code = status.HTTP_201_CREATED
        await publisher.room_created(result.room, result.channel.channel_id)
        await _notify(manager, [recipient_id], "room.created", result.room, created_by=current_user.id)
    else:
        response.status_code = status.HTTP_200_OK

    return PrivateChatResponse(
        chat=ChatRoomResponse.from_room(result.room),
        stream_chat=StreamChatInfo.from_handle(result.channel),
        is_new=result.is_new
    )


# =============================================================================
# Rooms
# =============================================================================

@router.get("/rooms", response_model=ChatRoomList)
async def get_chat_rooms(
    room_type: Optional[str] = Query(None, description="채팅방 유형 (private, group, community)"),
    skip: int = Query(0, description="건너뛸 채팅방 수"),
    limit: int = Query(20, description="조회할 채팅방 수 (최대 100)"),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session)
) -> ChatRoomList:
    """사용자가 속한 활성 채팅방 목록 (최근 활동순)"""
    limit, skip = Validator.validate_pagination(limit, skip)
    if room_type is not None:
        Validator.validate_enum(room_type, ["private", "group", "community"], "room_type")

    rooms = await room_store.get_user_rooms(db, current_user.id, room_type=room_type, skip=skip, limit=limit)
    return ChatRoomList(
        rooms=[ChatRoomResponse.from_room(room) for room in rooms],
        skip=skip,
        limit=limit
    )


@router.post("/groups", response_model=RoomDetailResponse, status_code=status.HTTP_201_CREATED)
async def create_group_room(
    payload: GroupRoomCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
    gateway: ChannelProviderGateway = Depends(get_channel_gateway),
    manager: ConnectionManager = Depends(get_connection_manager),
    publisher: RoomEventPublisher = Depends(get_event_publisher)
) -> RoomDetailResponse:
    """그룹/커뮤니티 채팅방 생성 (생성자는 admin)"""
    result = await membership_service.create_group_room(
        db,
        gateway,
        creator_id=current_user.id,
        room_type=payload.room_type,
        name=payload.name,
        description=payload.description,
        member_ids=payload.member_ids
    )

    await publisher.room_created(result.room, result.channel.channel_id)
    invited = [user_id for user_id in result.room.member_ids if user_id != current_user.id]
    await _notify(manager, invited, "room.created", result.room, created_by=current_user.id)

    return RoomDetailResponse(
        chat=ChatRoomResponse.from_room(result.room),
        stream_chat=StreamChatInfo.from_handle(result.channel)
    )


@router.get("/room/{room_id}", response_model=RoomDetailResponse)
async def get_chat_room(
    room_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
    gateway: ChannelProviderGateway = Depends(get_channel_gateway)
) -> RoomDetailResponse:
    """채팅방 상세 조회 (멤버만, 조회 시 채널 동기화 복구)"""
    room_id = Validator.validate_room_id(room_id)
    result = await membership_service.get_room_for_member(db, gateway, room_id, current_user.id)

    return RoomDetailResponse(
        chat=ChatRoomResponse.from_room(result.room),
        stream_chat=StreamChatInfo.from_handle(result.channel)
    )


@router.delete("/room/{room_id}", response_model=MembershipResponse)
async def delete_chat_room(
    room_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
    gateway: ChannelProviderGateway = Depends(get_channel_gateway),
    manager: ConnectionManager = Depends(get_connection_manager),
    publisher: RoomEventPublisher = Depends(get_event_publisher)
) -> MembershipResponse:
    """채팅방 소프트 삭제 (채팅방 admin 또는 플랫폼 admin)"""
    room_id = Validator.validate_room_id(room_id)
    change = await membership_service.delete_room(db, gateway, room_id, current_user)

    await publisher.room_deleted(change.room, current_user.id)
    await _notify(manager, change.member_ids, "room.deleted", change.room, deleted_by=current_user.id)

    return MembershipResponse(
        chat=ChatRoomResponse.from_room(change.room),
        member_ids=change.member_ids,
        channel_synced=change.channel_synced
    )


@router.patch("/room/{room_id}", response_model=RoomUpdateResponse)
async def update_chat_room(
    room_id: int,
    payload: RoomDetailsUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
    gateway: ChannelProviderGateway = Depends(get_channel_gateway),
    manager: ConnectionManager = Depends(get_connection_manager),
    publisher: RoomEventPublisher = Depends(get_event_publisher)
) -> RoomUpdateResponse:
    """채팅방 이름/설명 변경 (admin/moderator, 그룹/커뮤니티만)"""
    room_id = Validator.validate_room_id(room_id)
    update = await membership_service.update_room_details(
        db, gateway, room_id, current_user.id, name=payload.name, description=payload.description
    )

    await publisher.room_updated(update.room, current_user.id, update.changes)
    await _notify(
        manager, update.room.member_ids, "room.updated", update.room,
        changes=update.changes, updated_by=current_user.id
    )

    return RoomUpdateResponse(
        chat=ChatRoomResponse.from_room(update.room),
        changes=update.changes,
        channel_synced=update.channel_synced
    )


# =============================================================================
# Members
# =============================================================================

@router.post("/room/{room_id}/members", response_model=MembershipResponse)
async def add_room_members(
    room_id: int,
    payload: MemberIdsRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
    gateway: ChannelProviderGateway = Depends(get_channel_gateway),
    manager: ConnectionManager = Depends(get_connection_manager),
    publisher: RoomEventPublisher = Depends(get_event_publisher)
) -> MembershipResponse:
    """
    멤버 추가 (admin/moderator)

    - 이미 멤버인 사용자와 요청자 본인은 제외
    - 추가할 사용자가 없으면 400 (no_op)
    """
    room_id = Validator.validate_room_id(room_id)
    change = await membership_service.add_members(db, gateway, room_id, current_user.id, payload.member_ids)

    await publisher.members_added(change.room, current_user.id, change.member_ids)
    await _notify(
        manager, change.room.member_ids, "room.members_added", change.room,
        member_ids=change.member_ids, added_by=current_user.id
    )

    return MembershipResponse(
        chat=ChatRoomResponse.from_room(change.room),
        member_ids=change.member_ids,
        channel_synced=change.channel_synced
    )


@router.delete("/room/{room_id}/members", response_model=MembershipResponse)
async def remove_room_members(
    room_id: int,
    payload: MemberIdsRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
    gateway: ChannelProviderGateway = Depends(get_channel_gateway),
    manager: ConnectionManager = Depends(get_connection_manager),
    publisher: RoomEventPublisher = Depends(get_event_publisher)
) -> MembershipResponse:
    """멤버 제거 (admin/moderator, moderator 는 일반 멤버만)"""
    room_id = Validator.validate_room_id(room_id)
    change = await membership_service.remove_members(db, gateway, room_id, current_user.id, payload.member_ids)

    await publisher.members_removed(change.room, current_user.id, change.member_ids)
    await _notify(
        manager, change.room.member_ids + change.member_ids, "room.members_removed", change.room,
        member_ids=change.member_ids, removed_by=current_user.id
    )

    return MembershipResponse(
        chat=ChatRoomResponse.from_room(change.room),
        member_ids=change.member_ids,
        channel_synced=change.channel_synced
    )


@router.put("/room/{room_id}/members/role", response_model=MembershipResponse)
async def update_room_member_roles(
    room_id: int,
    payload: MemberRoleUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
    gateway: ChannelProviderGateway = Depends(get_channel_gateway),
    manager: ConnectionManager = Depends(get_connection_manager),
    publisher: RoomEventPublisher = Depends(get_event_publisher)
) -> MembershipResponse:
    """멤버 역할 변경 (승격/강등)"""
    room_id = Validator.validate_room_id(room_id)
    change = await membership_service.update_member_roles(
        db, gateway, room_id, current_user.id, payload.member_ids, payload.role
    )

    await publisher.roles_changed(change.room, current_user.id, change.member_ids, change.role)
    await _notify(
        manager, change.room.member_ids, "room.roles_changed", change.room,
        member_ids=change.member_ids, role=change.role, changed_by=current_user.id
    )

    return MembershipResponse(
        chat=ChatRoomResponse.from_room(change.room),
        member_ids=change.member_ids,
        channel_synced=change.channel_synced
    )


# =============================================================================
# Join Requests (community)
# =============================================================================

@router.post("/room/{room_id}/join-requests", response_model=JoinRequestResponse)
async def request_to_join_room(
    room_id: int,
    payload: JoinRequestCreate,
    response: Response,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
    manager: ConnectionManager = Depends(get_connection_manager)
) -> JoinRequestResponse:
    """
    커뮤니티 가입 요청

    - 새 요청이면 201, 이미 대기 중인 요청이 있으면 200
    - 이미 멤버면 400 (no_op)
    """
    room_id = Validator.validate_room_id(room_id)
    result = await membership_service.request_to_join(db, room_id, current_user.id, payload.message)

    if result.is_new:
        response.status_code = status.HTTP_201_CREATED
        managers = [
            member.user_id for member in result.room.members
            if member.role in membership_service.MANAGER_ROLES
        ]
        await _notify(
            manager, managers, "room.join_requested", result.room,
            request_id=result.request.id, user_id=current_user.id
        )
    else:
        response.status_code = status.HTTP_200_OK

    return JoinRequestResponse.model_validate(result.request)


@router.get("/room/{room_id}/join-requests", response_model=JoinRequestList)
async def get_join_requests(
    room_id: int,
    skip: int = Query(0, description="건너뛸 요청 수"),
    limit: int = Query(20, description="조회할 요청 수 (최대 100)"),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session)
) -> JoinRequestList:
    """대기 중인 가입 요청 목록 (admin/moderator)"""
    room_id = Validator.validate_room_id(room_id)
    limit, skip = Validator.validate_pagination(limit, skip)

    requests = await membership_service.get_pending_join_requests(
        db, room_id, current_user.id, skip=skip, limit=limit
    )
    return JoinRequestList(
        requests=[JoinRequestResponse.model_validate(request) for request in requests],
        skip=skip,
        limit=limit
    )


@router.put("/room/{room_id}/join-requests/{request_id}", response_model=JoinRequestDecisionResponse)
async def review_join_request(
    room_id: int,
    request_id: int,
    payload: JoinRequestReview,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session),
    gateway: ChannelProviderGateway = Depends(get_channel_gateway),
    manager: ConnectionManager = Depends(get_connection_manager),
    publisher: RoomEventPublisher = Depends(get_event_publisher)
) -> JoinRequestDecisionResponse:
    """가입 요청 승인/거절 (admin/moderator, 승인 시 멤버로 추가)"""
    room_id = Validator.validate_room_id(room_id)
    request_id = Validator.validate_positive_integer(request_id, "request_id")
    decision = await membership_service.handle_join_request(
        db, gateway, room_id, request_id, current_user.id, payload.status, payload.note
    )

    await publisher.join_request_handled(decision.request)
    await _notify(
        manager, [decision.request.user_id], "room.join_request_handled", decision.room,
        request_id=decision.request.id, status=decision.request.status
    )
    if decision.member_ids:
        await publisher.members_added(decision.room, current_user.id, decision.member_ids)
        await _notify(
            manager, decision.room.member_ids, "room.members_added", decision.room,
            member_ids=decision.member_ids, added_by=current_user.id
        )

    return JoinRequestDecisionResponse(
        join_request=JoinRequestResponse.model_validate(decision.request),
        chat=ChatRoomResponse.from_room(decision.room),
        member_ids=decision.member_ids,
        channel_synced=decision.channel_synced
    )


@router.delete("/room/{room_id}/join-requests/{request_id}", status_code=status.HTTP_204_NO_CONTENT)
async def cancel_join_request(
    room_id: int,
    request_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_session)
):
    """본인의 대기 중인 가입 요청 취소"""
    room_id = Validator.validate_room_id(room_id)
    request_id = Validator.validate_positive_integer(request_id, "request_id")
    await membership_service.cancel_join_request(db, room_id, request_id, current_user.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# =============================================================================
# Channel Provider Token
# =============================================================================

@router.get("/token", response_model=UserTokenResponse)
async def get_user_token(
    current_user: User = Depends(get_current_user),
    gateway: ChannelProviderGateway = Depends(get_channel_gateway)
) -> UserTokenResponse:
    """실시간 채널 접속용 사용자 토큰 발급"""
    return UserTokenResponse(
        user_id=current_user.id,
        token=gateway.issue_user_token(current_user.id),
        api_key=gateway.api_key,
        expires_in_hours=settings.channel_provider_user_token_ttl_hours
    )

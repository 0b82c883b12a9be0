"""
Membership mutation service.

그룹/커뮤니티 채팅방의 생성, 정보 변경, 멤버 추가/제거, 역할 변경, 소프트 삭제와
커뮤니티 가입 요청 처리를 담당합니다.
권한과 불변식 위반은 항상 호출자에게 에러로 전달하고, 채널 동기화 실패는 로그만 남깁니다.
멤버 집합 계산은 항상 새로 읽은 채팅방 기준으로 합니다.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.errors import (
    ForbiddenException,
    InvalidOperationException,
    InvalidRequestException,
    JoinRequestNotFoundException,
    NoOpException,
    RoomNotFoundException,
    StorageConflictException
)
from app.core.logging import log_membership_event
from app.core.validators import Validator
from app.infrastructure.channel_provider import ChannelHandle, ChannelProviderGateway
from app.models.chat_rooms import ChatRoom
from app.models.join_requests import JoinRequest
from app.models.room_members import MEMBER_ROLES, RoomMember
from app.models.users import User
from app.services import room_store
from app.services.channel_sync import (
    ensure_channel,
    freeze_channel,
    reconcile_channel,
    sync_added_members,
    sync_channel_details,
    sync_member_roles,
    sync_removed_members
)
from app.services.user_directory import ensure_users_exist

logger = logging.getLogger(__name__)

MANAGER_ROLES = ("admin", "moderator")
GROUP_ROOM_TYPES = ("group", "community")
MAX_MEMBERSHIP_RETRIES = 3
JOIN_REQUEST_DECISIONS = ("accepted", "rejected")


@dataclass
class RoomWithChannel:
    """채팅방과 채널 핸들"""
    room: ChatRoom
    channel: ChannelHandle


@dataclass
class MembershipChange:
    """멤버십 변경 결과"""
    room: ChatRoom
    member_ids: List[int] = field(default_factory=list)
    channel_synced: bool = True
    role: Optional[str] = None


@dataclass
class RoomUpdate:
    """채팅방 정보 변경 결과"""
    room: ChatRoom
    changes: Dict[str, Optional[str]] = field(default_factory=dict)
    channel_synced: bool = True


@dataclass
class JoinRequestResult:
    """가입 요청 결과"""
    request: JoinRequest
    room: ChatRoom
    is_new: bool


@dataclass
class JoinRequestDecision:
    """가입 요청 처리 결과"""
    request: JoinRequest
    room: ChatRoom
    member_ids: List[int] = field(default_factory=list)
    channel_synced: bool = True


# =============================================================================
# Helpers
# =============================================================================

async def _load_active_room(db: AsyncSession, room_id: int) -> ChatRoom:
    room = await room_store.find_room_by_id(db, room_id)
    if room is None or not room.is_active:
        raise RoomNotFoundException(room_id)
    return room


def _require_member(room: ChatRoom, user_id: int) -> RoomMember:
    member = room_store.find_member(room, user_id)
    if member is None:
        raise ForbiddenException(
            "You are not a member of this chat",
            details={"room_id": room.id}
        )
    return member


def _require_manager(room: ChatRoom, member: RoomMember):
    if member.role not in MANAGER_ROLES:
        raise ForbiddenException(
            "Only admins and moderators can manage members",
            details={"room_id": room.id, "role": member.role}
        )


def _reject_private(room: ChatRoom, message: str):
    if room.room_type == "private":
        raise InvalidOperationException(message, details={"room_id": room.id, "room_type": room.room_type})


def _normalize_targets(member_ids: List[int]) -> List[int]:
    """검증 후 입력 순서를 유지하며 중복 제거"""
    seen = []
    for user_id in Validator.validate_member_ids(member_ids):
        if user_id not in seen:
            seen.append(user_id)
    return seen


def _count_admins(members: List[RoomMember]) -> int:
    return sum(1 for member in members if member.role == "admin")


async def _commit_new_members(
    db: AsyncSession,
    room: ChatRoom,
    user_ids: List[int]
) -> Tuple[ChatRoom, List[int]]:
    """
    멤버 추가를 커밋하고 (채팅방, 실제 추가된 ID) 반환

    동시 요청이 같은 사용자를 먼저 추가했다면 채팅방을 다시 읽어 남은 대상만 다시 시도합니다.
    """
    pending = list(user_ids)
    for _ in range(MAX_MEMBERSHIP_RETRIES):
        try:
            room = await room_store.add_members(db, room, pending)
            return room, pending
        except room_store.MembershipConflict as conflict:
            logger.info(f"Concurrent add on room {conflict.room_id}, recomputing targets {conflict.user_ids}")
            room = await _load_active_room(db, conflict.room_id)
            current = set(room.member_ids)
            pending = [user_id for user_id in pending if user_id not in current]
            if not pending:
                return room, []

    raise StorageConflictException(details={"room_id": room.id, "member_ids": pending})


# =============================================================================
# Room Creation / Read
# =============================================================================

async def create_group_room(
    db: AsyncSession,
    gateway: ChannelProviderGateway,
    creator_id: int,
    room_type: str,
    name: str,
    description: Optional[str] = None,
    member_ids: Optional[List[int]] = None
) -> RoomWithChannel:
    """그룹/커뮤니티 채팅방 생성 (생성자는 admin)"""
    Validator.validate_enum(room_type, list(GROUP_ROOM_TYPES), "room_type")
    Validator.validate_required(name, "name")
    Validator.validate_string_length(name.strip(), "name", min_length=1, max_length=100)

    targets = []
    if member_ids:
        targets = [user_id for user_id in _normalize_targets(member_ids) if user_id != creator_id]
    await ensure_users_exist(db, [creator_id] + targets)

    members: List[Tuple[int, str]] = [(creator_id, "admin")] + [(user_id, "member") for user_id in targets]
    room = await room_store.create_room(
        db,
        room_type=room_type,
        created_by=creator_id,
        members=members,
        name=name.strip(),
        description=description
    )
    log_membership_event(logger, "room_created", room.id, creator_id, member_ids=room.member_ids, room_type=room_type)

    channel = await ensure_channel(gateway, room)
    return RoomWithChannel(room=room, channel=channel)


async def get_room_for_member(
    db: AsyncSession,
    gateway: ChannelProviderGateway,
    room_id: int,
    user_id: int
) -> RoomWithChannel:
    """멤버가 채팅방을 조회 (조회 시 채널 drift 복구)"""
    room = await _load_active_room(db, room_id)
    _require_member(room, user_id)

    channel = await reconcile_channel(gateway, room)
    return RoomWithChannel(room=room, channel=channel)


# =============================================================================
# Membership Mutations
# =============================================================================

async def add_members(
    db: AsyncSession,
    gateway: ChannelProviderGateway,
    room_id: int,
    acting_user_id: int,
    member_ids: List[int]
) -> MembershipChange:
    """
    멤버 추가

    Raises:
        RoomNotFoundException: 채팅방이 없거나 삭제된 경우
        ForbiddenException: 요청자가 admin/moderator 멤버가 아닌 경우
        InvalidOperationException: 1:1 채팅방인 경우
        NoOpException: 모든 대상이 이미 멤버인 경우
        UserNotFoundException: 대상 사용자가 존재하지 않는 경우
    """
    room = await _load_active_room(db, room_id)
    acting = _require_member(room, acting_user_id)
    _reject_private(room, "Cannot add members to a private chat")
    _require_manager(room, acting)

    targets = [user_id for user_id in _normalize_targets(member_ids) if user_id != acting_user_id]
    current = set(room.member_ids)
    new_members = [user_id for user_id in targets if user_id not in current]
    if new_members:
        await ensure_users_exist(db, new_members)
        room, new_members = await _commit_new_members(db, room, new_members)

    if not new_members:
        raise NoOpException(
            "All members are already in the chat",
            details={"room_id": room.id, "member_ids": targets}
        )

    log_membership_event(logger, "members_added", room.id, acting_user_id, member_ids=new_members)

    synced = await sync_added_members(gateway, room, new_members)
    return MembershipChange(room=room, member_ids=new_members, channel_synced=synced)


async def remove_members(
    db: AsyncSession,
    gateway: ChannelProviderGateway,
    room_id: int,
    acting_user_id: int,
    member_ids: List[int]
) -> MembershipChange:
    """
    멤버 제거

    moderator 는 일반 멤버만 제거할 수 있고, 제거 후에도 최소 인원과 최소 admin 수가 유지되어야 합니다.
    """
    room = await _load_active_room(db, room_id)
    acting = _require_member(room, acting_user_id)
    _reject_private(room, "Private chats must keep exactly 2 members")
    _require_manager(room, acting)

    targets = set(_normalize_targets(member_ids))
    removed = [member for member in room.members if member.user_id in targets]
    if not removed:
        raise NoOpException(
            "None of the given users are members of the chat",
            details={"room_id": room.id, "member_ids": sorted(targets)}
        )

    if acting.role == "moderator":
        protected = [member.user_id for member in removed if member.role != "member"]
        if protected:
            raise ForbiddenException(
                "Moderators can only remove regular members",
                details={"room_id": room.id, "member_ids": protected}
            )

    remaining = [member for member in room.members if member.user_id not in targets]
    if len(remaining) < settings.min_group_members:
        raise InvalidOperationException(
            f"A {room.room_type} room must keep at least {settings.min_group_members} member(s)",
            details={"room_id": room.id}
        )
    if _count_admins(remaining) < settings.min_room_admins:
        raise InvalidOperationException(
            f"A {room.room_type} room must keep at least {settings.min_room_admins} admin(s)",
            details={"room_id": room.id}
        )

    removed_ids = [member.user_id for member in removed]
    room = await room_store.remove_members(db, room, removed_ids)
    log_membership_event(logger, "members_removed", room.id, acting_user_id, member_ids=removed_ids)

    synced = await sync_removed_members(gateway, room, removed_ids)
    return MembershipChange(room=room, member_ids=removed_ids, channel_synced=synced)


async def update_member_roles(
    db: AsyncSession,
    gateway: ChannelProviderGateway,
    room_id: int,
    acting_user_id: int,
    member_ids: List[int],
    role: str
) -> MembershipChange:
    """
    멤버 역할 변경 (승격/강등)

    역할은 로컬 권한 개념이므로 채널 멤버십은 바뀌지 않고, 채널 역할 메타데이터만 best effort 로 갱신합니다.
    """
    Validator.validate_enum(role, list(MEMBER_ROLES), "role")

    room = await _load_active_room(db, room_id)
    acting = _require_member(room, acting_user_id)
    _reject_private(room, "Roles cannot be changed in a private chat")
    _require_manager(room, acting)

    targets = _normalize_targets(member_ids)
    members = {member.user_id: member for member in room.members}
    non_members = [user_id for user_id in targets if user_id not in members]
    if non_members:
        raise InvalidRequestException(
            "Some users are not members of the chat",
            details={"room_id": room.id, "member_ids": non_members}
        )

    if acting.role == "moderator":
        if role == "admin":
            raise ForbiddenException(
                "Moderators cannot grant the admin role",
                details={"room_id": room.id}
            )
        protected = [user_id for user_id in targets if members[user_id].role != "member"]
        if protected:
            raise ForbiddenException(
                "Moderators can only change regular members",
                details={"room_id": room.id, "member_ids": protected}
            )

    changed = [user_id for user_id in targets if members[user_id].role != role]
    if not changed:
        raise NoOpException(
            f"Members already have the {role} role",
            details={"room_id": room.id, "member_ids": targets}
        )

    admins_after = sum(
        1 for user_id, member in members.items()
        if (role if user_id in changed else member.role) == "admin"
    )
    if admins_after < settings.min_room_admins:
        raise InvalidOperationException(
            f"A {room.room_type} room must keep at least {settings.min_room_admins} admin(s)",
            details={"room_id": room.id}
        )

    room = await room_store.update_member_roles(db, room, changed, role)
    log_membership_event(logger, "roles_changed", room.id, acting_user_id, member_ids=changed, role=role)

    synced = await sync_member_roles(gateway, room, {user_id: role for user_id in changed})
    return MembershipChange(room=room, member_ids=changed, channel_synced=synced, role=role)


async def delete_room(
    db: AsyncSession,
    gateway: ChannelProviderGateway,
    room_id: int,
    acting_user: User
) -> MembershipChange:
    """채팅방 소프트 삭제 (채팅방 admin 또는 플랫폼 admin)"""
    room = await _load_active_room(db, room_id)
    member = room_store.find_member(room, acting_user.id)

    is_room_admin = member is not None and member.role == "admin"
    if not is_room_admin and acting_user.role != "admin":
        raise ForbiddenException(
            "Only room admins can delete this chat",
            details={"room_id": room.id}
        )

    member_ids = room.member_ids
    room = await room_store.soft_delete(db, room)
    log_membership_event(logger, "room_deleted", room.id, acting_user.id, member_ids=member_ids)

    synced = await freeze_channel(gateway, room)
    return MembershipChange(room=room, member_ids=member_ids, channel_synced=synced)


async def update_room_details(
    db: AsyncSession,
    gateway: ChannelProviderGateway,
    room_id: int,
    acting_user_id: int,
    name: Optional[str] = None,
    description: Optional[str] = None
) -> RoomUpdate:
    """
    채팅방 이름/설명 변경 (admin/moderator)

    Raises:
        InvalidRequestException: 변경할 필드가 없는 경우
        InvalidOperationException: 1:1 채팅방인 경우
        NoOpException: 값이 이미 같은 경우
    """
    room = await _load_active_room(db, room_id)
    acting = _require_member(room, acting_user_id)
    _reject_private(room, "Private chats have no editable details")
    _require_manager(room, acting)

    if name is None and description is None:
        raise InvalidRequestException("Nothing to update", details={"room_id": room.id})

    requested = {}
    if name is not None:
        requested["name"] = Validator.validate_string_length(name.strip(), "name", min_length=1, max_length=100)
    if description is not None:
        requested["description"] = description

    changes = {key: value for key, value in requested.items() if getattr(room, key) != value}
    if not changes:
        raise NoOpException("Room details are unchanged", details={"room_id": room.id})

    room = await room_store.update_room_details(db, room, changes)
    log_membership_event(logger, "room_updated", room.id, acting_user_id, fields=sorted(changes))

    synced = await sync_channel_details(gateway, room)
    return RoomUpdate(room=room, changes=changes, channel_synced=synced)


# =============================================================================
# Join Requests (community)
# =============================================================================

async def _load_community(db: AsyncSession, room_id: int) -> ChatRoom:
    room = await _load_active_room(db, room_id)
    if room.room_type != "community":
        raise InvalidOperationException(
            "Only communities accept join requests",
            details={"room_id": room.id, "room_type": room.room_type}
        )
    return room


async def request_to_join(
    db: AsyncSession,
    room_id: int,
    user_id: int,
    message: Optional[str] = None
) -> JoinRequestResult:
    """
    커뮤니티 가입 요청

    - 대기 중인 요청이 있으면 그대로 반환 (is_new=False)
    - 이전에 처리된 요청은 다시 대기 상태로 전환

    Raises:
        NoOpException: 이미 멤버인 경우
    """
    room = await _load_community(db, room_id)
    if room_store.find_member(room, user_id) is not None:
        raise NoOpException("You are already a member of this community", details={"room_id": room.id})

    if message is not None:
        message = Validator.validate_string_length(message, "message", max_length=500)

    existing = await room_store.find_user_join_request(db, room.id, user_id)
    if existing is not None and existing.status == "pending":
        return JoinRequestResult(request=existing, room=room, is_new=False)

    try:
        request = await room_store.save_join_request(db, room.id, user_id, message, existing=existing)
    except room_store.JoinRequestConflict:
        room = await _load_community(db, room_id)
        request = await room_store.find_user_join_request(db, room_id, user_id)
        if request is None:
            raise StorageConflictException(details={"room_id": room_id})
        return JoinRequestResult(request=request, room=room, is_new=False)

    log_membership_event(logger, "join_requested", room.id, user_id, request_id=request.id)
    return JoinRequestResult(request=request, room=room, is_new=True)


async def cancel_join_request(db: AsyncSession, room_id: int, request_id: int, user_id: int):
    """본인의 대기 중인 가입 요청 취소"""
    request = await room_store.find_join_request(db, request_id)
    if request is None or request.room_id != room_id or request.user_id != user_id or request.status != "pending":
        raise JoinRequestNotFoundException(request_id, message="Join request not found or already processed")

    await room_store.delete_join_request(db, request)
    log_membership_event(logger, "join_request_cancelled", room_id, user_id, request_id=request_id)


async def get_pending_join_requests(
    db: AsyncSession,
    room_id: int,
    acting_user_id: int,
    skip: int = 0,
    limit: int = 20
) -> List[JoinRequest]:
    """대기 중인 가입 요청 목록 (admin/moderator)"""
    room = await _load_community(db, room_id)
    acting = _require_member(room, acting_user_id)
    _require_manager(room, acting)

    return await room_store.get_pending_join_requests(db, room.id, skip=skip, limit=limit)


async def handle_join_request(
    db: AsyncSession,
    gateway: ChannelProviderGateway,
    room_id: int,
    request_id: int,
    acting_user_id: int,
    decision: str,
    note: Optional[str] = None
) -> JoinRequestDecision:
    """
    가입 요청 승인/거절 (admin/moderator)

    승인 시 일반 멤버로 추가하고 채널에 반영합니다 (채널 실패는 로그만 남김).

    Raises:
        JoinRequestNotFoundException: 요청이 없거나 다른 채팅방의 요청인 경우
        InvalidOperationException: 이미 처리된 요청인 경우
        UserNotFoundException: 요청자가 비활성화된 경우 (승인 시)
    """
    Validator.validate_enum(decision, list(JOIN_REQUEST_DECISIONS), "status")

    room = await _load_community(db, room_id)
    acting = _require_member(room, acting_user_id)
    _require_manager(room, acting)

    request = await room_store.find_join_request(db, request_id)
    if request is None or request.room_id != room.id:
        raise JoinRequestNotFoundException(request_id)
    if request.status != "pending":
        raise InvalidOperationException(
            "This request has already been handled",
            details={"request_id": request.id, "status": request.status}
        )

    added: List[int] = []
    if decision == "accepted":
        await ensure_users_exist(db, [request.user_id])
        if room_store.find_member(room, request.user_id) is None:
            room, added = await _commit_new_members(db, room, [request.user_id])
            request = await room_store.find_join_request(db, request_id)

    request = await room_store.review_join_request(db, request, decision, acting_user_id, note)
    log_membership_event(
        logger, "join_request_handled", room.id, acting_user_id,
        request_id=request.id, status=decision, member_ids=added
    )

    synced = True
    if added:
        synced = await sync_added_members(gateway, room, added)
    return JoinRequestDecision(request=request, room=room, member_ids=added, channel_synced=synced)

"""
Room store service layer for database operations.

채팅방과 멤버십의 영속 표현을 다룹니다. 권한 검사는 하지 않으며(상위 계층 책임),
member_count 는 멤버십 변경 후 항상 이 계층에서 다시 계산합니다.
"""

from datetime import datetime
from typing import Dict, Optional, List, Tuple, Iterable
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from app.models.chat_rooms import ChatRoom
from app.models.room_members import RoomMember
from app.models.join_requests import JoinRequest


class RoomCreationConflict(Exception):
    """동일한 pair_key 의 활성 1:1 채팅방이 이미 생성된 경우 (생성 경쟁에서 패배)"""

    def __init__(self, pair_key: str):
        super().__init__(f"Active private room already exists for pair {pair_key}")
        self.pair_key = pair_key


class JoinRequestConflict(Exception):
    """같은 사용자의 가입 요청이 동시에 생성된 경우 ((room_id, user_id) 유니크 제약 충돌)"""

    def __init__(self, room_id: int, user_id: int):
        super().__init__(f"Join request for room {room_id} by user {user_id} already exists")
        self.room_id = room_id
        self.user_id = user_id


class MembershipConflict(Exception):
    """같은 사용자를 동시에 추가하여 (room_id, user_id) 유니크 제약과 충돌한 경우"""

    def __init__(self, room_id: int, user_ids: List[int]):
        super().__init__(f"Concurrent membership change on room {room_id} for users {user_ids}")
        self.room_id = room_id
        self.user_ids = user_ids


# =============================================================================
# Helpers
# =============================================================================

def make_pair_key(user_a_id: int, user_b_id: int) -> str:
    """순서와 무관한 두 사용자 키 ("{min}:{max}")"""
    low, high = sorted((int(user_a_id), int(user_b_id)))
    return f"{low}:{high}"


def channel_id_for(room: ChatRoom) -> str:
    """채팅방 ID로부터 결정되는 채널 ID"""
    if room.room_type == "community":
        return f"community_{room.id}"
    return f"room_{room.id}"


def find_member(room: ChatRoom, user_id: int) -> Optional[RoomMember]:
    """채팅방에서 특정 사용자의 멤버 정보 조회"""
    for member in room.members:
        if member.user_id == user_id:
            return member
    return None


def _recount(room: ChatRoom):
    room.member_count = len(room.members)
    room.last_activity = datetime.utcnow()


# =============================================================================
# Room Queries
# =============================================================================

async def find_room_by_id(db: AsyncSession, room_id: int) -> Optional[ChatRoom]:
    """채팅방 ID로 조회 (identity map 에 캐시된 상태 대신 항상 최신 행을 읽음)"""
    result = await db.execute(
        select(ChatRoom)
        .where(ChatRoom.id == room_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def find_active_private_room(db: AsyncSession, user_a_id: int, user_b_id: int) -> Optional[ChatRoom]:
    """두 사용자 간의 활성 1:1 채팅방 조회 (순서 무관)"""
    result = await db.execute(
        select(ChatRoom)
        .where(
            ChatRoom.pair_key == make_pair_key(user_a_id, user_b_id),
            ChatRoom.room_type == "private",
            ChatRoom.is_active.is_(True)
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_user_rooms(
    db: AsyncSession,
    user_id: int,
    room_type: Optional[str] = None,
    skip: int = 0,
    limit: int = 20
) -> List[ChatRoom]:
    """사용자가 속한 활성 채팅방 목록 (최근 활동순)"""
    query = (
        select(ChatRoom)
        .join(RoomMember, RoomMember.room_id == ChatRoom.id)
        .where(RoomMember.user_id == user_id, ChatRoom.is_active.is_(True))
    )
    if room_type:
        query = query.where(ChatRoom.room_type == room_type)

    query = query.order_by(ChatRoom.last_activity.desc(), ChatRoom.id.desc()).offset(skip).limit(limit)
    result = await db.execute(query)
    return list(result.scalars().all())


# =============================================================================
# Room Mutations
# =============================================================================

async def create_room(
    db: AsyncSession,
    room_type: str,
    created_by: int,
    members: List[Tuple[int, str]],
    name: Optional[str] = None,
    description: Optional[str] = None
) -> ChatRoom:
    """
    새 채팅방 생성

    Args:
        members: (user_id, role) 목록. 순서대로 joined_at 이 부여됩니다.

    Raises:
        RoomCreationConflict: 1:1 채팅방의 pair_key 가 유니크 인덱스와 충돌한 경우
    """
    now = datetime.utcnow()
    pair_key = None
    if room_type == "private":
        pair_key = make_pair_key(members[0][0], members[1][0])

    room = ChatRoom(
        room_type=room_type,
        name=name,
        description=description,
        created_by=created_by,
        status="active",
        is_active=True,
        pair_key=pair_key,
        member_count=len(members),
        last_activity=now,
        created_at=now,
        updated_at=now,
    )
    room.members = [
        RoomMember(user_id=user_id, role=role, joined_at=now)
        for user_id, role in members
    ]

    db.add(room)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        if pair_key is not None:
            raise RoomCreationConflict(pair_key)
        raise

    return await find_room_by_id(db, room.id)


async def add_members(
    db: AsyncSession,
    room: ChatRoom,
    user_ids: Iterable[int],
    role: str = "member"
) -> ChatRoom:
    """
    멤버 추가 (이미 멤버인 사용자는 건너뜀)

    Raises:
        MembershipConflict: 다른 요청이 같은 사용자를 먼저 추가한 경우 (롤백 후 발생)
    """
    now = datetime.utcnow()
    room_id = room.id
    existing = set(room.member_ids)
    added = []
    for user_id in user_ids:
        if user_id in existing:
            continue
        room.members.append(RoomMember(user_id=user_id, role=role, joined_at=now))
        existing.add(user_id)
        added.append(user_id)

    _recount(room)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise MembershipConflict(room_id, added)
    return await find_room_by_id(db, room_id)


async def remove_members(db: AsyncSession, room: ChatRoom, user_ids: Iterable[int]) -> ChatRoom:
    """멤버 제거 (멤버가 아닌 사용자는 무시)"""
    targets = set(user_ids)
    for member in [m for m in room.members if m.user_id in targets]:
        room.members.remove(member)

    _recount(room)
    await db.commit()
    return await find_room_by_id(db, room.id)


async def update_member_roles(db: AsyncSession, room: ChatRoom, user_ids: Iterable[int], role: str) -> ChatRoom:
    """멤버 역할 변경"""
    targets = set(user_ids)
    for member in room.members:
        if member.user_id in targets:
            member.role = role

    room.last_activity = datetime.utcnow()
    await db.commit()
    return await find_room_by_id(db, room.id)


async def touch_room(db: AsyncSession, room: ChatRoom) -> ChatRoom:
    """채팅방 마지막 활동 시각 갱신"""
    room.last_activity = datetime.utcnow()
    await db.commit()
    return room


async def soft_delete(db: AsyncSession, room: ChatRoom) -> ChatRoom:
    """채팅방 소프트 삭제 (pair_key 해제로 같은 쌍의 새 1:1 채팅방 생성 허용)"""
    room.status = "deleted"
    room.is_active = False
    room.pair_key = None
    room.last_activity = datetime.utcnow()
    await db.commit()
    return room


async def update_room_details(db: AsyncSession, room: ChatRoom, changes: Dict[str, Optional[str]]) -> ChatRoom:
    """채팅방 이름/설명 변경"""
    for key, value in changes.items():
        setattr(room, key, value)

    now = datetime.utcnow()
    room.updated_at = now
    room.last_activity = now
    await db.commit()
    return await find_room_by_id(db, room.id)


# =============================================================================
# Join Requests
# =============================================================================

async def find_join_request(db: AsyncSession, request_id: int) -> Optional[JoinRequest]:
    result = await db.execute(
        select(JoinRequest)
        .where(JoinRequest.id == request_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def find_user_join_request(db: AsyncSession, room_id: int, user_id: int) -> Optional[JoinRequest]:
    """채팅방에 대한 사용자의 가입 요청 (상태 무관, 최대 1건)"""
    result = await db.execute(
        select(JoinRequest)
        .where(JoinRequest.room_id == room_id, JoinRequest.user_id == user_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_pending_join_requests(
    db: AsyncSession,
    room_id: int,
    skip: int = 0,
    limit: int = 20
) -> List[JoinRequest]:
    """대기 중인 가입 요청 목록 (최신순)"""
    result = await db.execute(
        select(JoinRequest)
        .where(JoinRequest.room_id == room_id, JoinRequest.status == "pending")
        .order_by(JoinRequest.created_at.desc(), JoinRequest.id.desc())
        .offset(skip)
        .limit(limit)
    )
    return list(result.scalars().all())


async def save_join_request(
    db: AsyncSession,
    room_id: int,
    user_id: int,
    message: Optional[str] = None,
    existing: Optional[JoinRequest] = None
) -> JoinRequest:
    """
    가입 요청 생성 또는 처리된 요청을 다시 대기 상태로 전환

    Raises:
        JoinRequestConflict: 같은 사용자의 요청이 동시에 생성된 경우 (롤백 후 발생)
    """
    now = datetime.utcnow()
    request = existing
    if request is None:
        request = JoinRequest(room_id=room_id, user_id=user_id, created_at=now)
        db.add(request)

    request.status = "pending"
    request.message = message
    request.reviewed_by = None
    request.reviewed_at = None
    request.review_note = None
    request.updated_at = now

    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise JoinRequestConflict(room_id, user_id)
    return await find_join_request(db, request.id)


async def review_join_request(
    db: AsyncSession,
    request: JoinRequest,
    status: str,
    reviewed_by: int,
    note: Optional[str] = None
) -> JoinRequest:
    """가입 요청 승인/거절 기록"""
    now = datetime.utcnow()
    request.status = status
    request.reviewed_by = reviewed_by
    request.reviewed_at = now
    request.review_note = note
    request.updated_at = now
    await db.commit()
    return request


async def delete_join_request(db: AsyncSession, request: JoinRequest):
    await db.delete(request)
    await db.commit()

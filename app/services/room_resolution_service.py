"""
Private chat resolution service.

두 사용자 사이의 1:1 채팅방을 찾거나 정확히 하나만 생성합니다.

- 같은 사용자 쌍에 대한 동시 요청은 프로세스 내에서 pair_key 락으로 직렬화
- 프로세스 간 경쟁은 pair_key 유니크 인덱스 위반(RoomCreationConflict)으로 감지 후 승자를 다시 조회
- 채팅방 생성 후 채널 생성이 실패해도 채팅방은 유지하고 synced=False 채널을 반환
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import InvalidRequestException, StorageConflictException
from app.core.logging import log_membership_event
from app.infrastructure.channel_provider import ChannelHandle, ChannelProviderGateway
from app.models.chat_rooms import ChatRoom
from app.services import room_store
from app.services.channel_sync import ensure_channel
from app.services.pair_lock import KeyedLockRegistry, pair_locks
from app.services.room_store import RoomCreationConflict, make_pair_key
from app.services.user_directory import find_user_pair

logger = logging.getLogger(__name__)


@dataclass
class PrivateChatResult:
    """1:1 채팅방 조회/생성 결과"""
    room: ChatRoom
    channel: ChannelHandle
    is_new: bool


async def resolve_private_chat(
    db: AsyncSession,
    gateway: ChannelProviderGateway,
    initiator_id: int,
    recipient_id: int,
    locks: Optional[KeyedLockRegistry] = None
) -> PrivateChatResult:
    """
    1:1 채팅방 조회 또는 생성

    Args:
        db: 데이터베이스 세션
        gateway: 채널 제공자 게이트웨이
        initiator_id: 요청한 사용자 ID
        recipient_id: 상대 사용자 ID
        locks: 사용자 쌍 락 레지스트리 (기본값: 프로세스 공용 레지스트리)

    Returns:
        PrivateChatResult: 채팅방, 채널 핸들, 신규 생성 여부

    Raises:
        InvalidRequestException: 자기 자신과의 채팅
        UserNotFoundException: 사용자가 존재하지 않는 경우
    """
    if initiator_id == recipient_id:
        raise InvalidRequestException(
            "Cannot create a chat with yourself",
            details={"recipient_id": recipient_id}
        )

    await find_user_pair(db, initiator_id, recipient_id)

    # Fast path
    room = await room_store.find_active_private_room(db, initiator_id, recipient_id)
    if room is not None:
        channel = await ensure_channel(gateway, room)
        return PrivateChatResult(room=room, channel=channel, is_new=False)

    pair_key = make_pair_key(initiator_id, recipient_id)
    registry = locks or pair_locks

    async with registry.hold(pair_key):
        # 읽기 스냅샷을 끝내야 승자가 커밋한 행이 재조회에 보임
        await db.commit()

        room = await room_store.find_active_private_room(db, initiator_id, recipient_id)
        if room is not None:
            logger.info(f"Private room {room.id} created concurrently for pair {pair_key}")
            channel = await ensure_channel(gateway, room)
            return PrivateChatResult(room=room, channel=channel, is_new=False)

        try:
            room = await room_store.create_room(
                db,
                room_type="private",
                created_by=initiator_id,
                members=[(initiator_id, "member"), (recipient_id, "member")]
            )
        except RoomCreationConflict as conflict:
            # 다른 프로세스가 먼저 생성함
            room = await room_store.find_active_private_room(db, initiator_id, recipient_id)
            if room is None:
                logger.error(f"Creation conflict for pair {pair_key} but no active room was found")
                raise StorageConflictException(details={"pair_key": conflict.pair_key}) from conflict
            logger.info(f"Lost creation race for pair {pair_key}, returning room {room.id}")
            channel = await ensure_channel(gateway, room)
            return PrivateChatResult(room=room, channel=channel, is_new=False)

    log_membership_event(logger, "private_created", room.id, initiator_id, member_ids=[initiator_id, recipient_id])

    channel = await ensure_channel(gateway, room)
    return PrivateChatResult(room=room, channel=channel, is_new=True)

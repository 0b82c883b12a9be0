"""
채팅방 정리 서비스

비활성화된 사용자의 멤버십을 정리하고, 유형별 최소 인원에 못 미치는 채팅방을 소프트 삭제합니다.

- 1:1 채팅방은 항상 2명이어야 하므로 비활성 멤버가 있으면 멤버를 빼지 않고 채팅방째 삭제
- 그룹/커뮤니티는 비활성 멤버를 제거하되, 마지막 admin 이 빠지면 가장 먼저 참여한 활성 멤버를 admin 으로 승격
"""

import asyncio
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import settings
from app.core.logging import get_logger, log_membership_event
from app.infrastructure.channel_provider import ChannelProviderGateway
from app.models.chat_rooms import ChatRoom
from app.models.room_members import RoomMember
from app.models.users import User
from app.services import room_store
from app.services.channel_sync import freeze_channel, sync_member_roles, sync_removed_members
from app.services.room_events import RoomEventPublisher

logger = get_logger(__name__)

PRIVATE_ROOM_MEMBERS = 2
# 승격 우선순위 (moderator 먼저, 같은 역할이면 먼저 참여한 멤버)
PROMOTION_ORDER = ("moderator", "member")


@dataclass
class CleanupReport:
    """정리 결과"""
    memberships_removed: int = 0
    rooms_deleted: int = 0
    admins_promoted: int = 0


def _pick_replacement_admin(active_members: List[RoomMember]) -> Optional[RoomMember]:
    for role in PROMOTION_ORDER:
        candidates = [member for member in active_members if member.role == role]
        if candidates:
            return candidates[0]
    return None


async def _delete_room(
    db: AsyncSession,
    gateway: ChannelProviderGateway,
    publisher: Optional[RoomEventPublisher],
    room: ChatRoom,
    reason: str
):
    room = await room_store.soft_delete(db, room)
    log_membership_event(logger, "room_deleted", room.id, None, reason=reason)

    await freeze_channel(gateway, room)
    if publisher is not None:
        await publisher.room_deleted(room, deleted_by=None, reason=reason)


async def _cleanup_group_room(
    db: AsyncSession,
    gateway: ChannelProviderGateway,
    publisher: Optional[RoomEventPublisher],
    room: ChatRoom,
    report: CleanupReport
):
    """그룹/커뮤니티의 비활성 멤버 제거 (최소 인원/최소 admin 유지)"""
    inactive_ids = [member.user_id for member in room.members if member.user and not member.user.is_active]
    active_members = [member for member in room.members if member.user_id not in inactive_ids]

    if len(active_members) < settings.min_group_members:
        await _delete_room(db, gateway, publisher, room, reason="no_active_members")
        report.rooms_deleted += 1
        return

    active_admins = sum(1 for member in active_members if member.role == "admin")
    promoted = []
    while active_admins < settings.min_room_admins:
        replacement = _pick_replacement_admin([m for m in active_members if m.user_id not in promoted])
        if replacement is None:
            break
        promoted.append(replacement.user_id)
        active_admins += 1

    if active_admins < settings.min_room_admins:
        await _delete_room(db, gateway, publisher, room, reason="no_admin_candidate")
        report.rooms_deleted += 1
        return

    if promoted:
        room = await room_store.update_member_roles(db, room, promoted, "admin")
        report.admins_promoted += len(promoted)
        log_membership_event(logger, "admins_promoted", room.id, None, member_ids=promoted)
        await sync_member_roles(gateway, room, {user_id: "admin" for user_id in promoted})

    room = await room_store.remove_members(db, room, inactive_ids)
    report.memberships_removed += len(inactive_ids)
    log_membership_event(logger, "inactive_members_removed", room.id, None, member_ids=inactive_ids)
    await sync_removed_members(gateway, room, inactive_ids)


async def cleanup_invalid_rooms(
    db: AsyncSession,
    gateway: ChannelProviderGateway,
    publisher: Optional[RoomEventPublisher] = None
) -> CleanupReport:
    """비활성 사용자 멤버십 정리 및 최소 인원 미달 채팅방 소프트 삭제"""
    report = CleanupReport()

    result = await db.execute(
        select(ChatRoom.id)
        .join(RoomMember, RoomMember.room_id == ChatRoom.id)
        .join(User, User.id == RoomMember.user_id)
        .where(ChatRoom.is_active.is_(True), User.is_active.is_(False))
        .distinct()
    )
    room_ids = [row[0] for row in result.all()]

    for room_id in room_ids:
        room = await room_store.find_room_by_id(db, room_id)
        if room.room_type == "private":
            await _delete_room(db, gateway, publisher, room, reason="inactive_member")
            report.rooms_deleted += 1
        else:
            await _cleanup_group_room(db, gateway, publisher, room, report)

    result = await db.execute(
        select(ChatRoom.id).where(
            ChatRoom.is_active.is_(True),
            or_(
                and_(ChatRoom.room_type == "private", ChatRoom.member_count < PRIVATE_ROOM_MEMBERS),
                and_(ChatRoom.room_type != "private", ChatRoom.member_count < settings.min_group_members)
            )
        )
    )
    for room_id in [row[0] for row in result.all()]:
        room = await room_store.find_room_by_id(db, room_id)
        await _delete_room(db, gateway, publisher, room, reason="below_minimum_members")
        report.rooms_deleted += 1

    if report.memberships_removed or report.rooms_deleted or report.admins_promoted:
        logger.info(
            f"Room cleanup removed {report.memberships_removed} memberships, "
            f"promoted {report.admins_promoted} admins, deleted {report.rooms_deleted} rooms",
            extra={"event_type": "room_cleanup"}
        )
    return report


class RoomCleanupMonitor:
    """주기적으로 채팅방 정리를 실행하는 백그라운드 작업"""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        gateway: ChannelProviderGateway,
        publisher: Optional[RoomEventPublisher] = None,
        interval_seconds: Optional[float] = None
    ):
        self.session_factory = session_factory
        self.gateway = gateway
        self.publisher = publisher
        self.interval_seconds = interval_seconds or settings.room_cleanup_interval_seconds
        self.running = False
        self.task = None

    async def start(self):
        """정리 작업 시작"""
        if self.running:
            logger.warning("Room cleanup monitor is already running")
            return

        self.running = True
        self.task = asyncio.create_task(self._run())
        logger.info(f"Room cleanup monitor started (interval={self.interval_seconds}s)")

    async def stop(self):
        """정리 작업 중지"""
        self.running = False
        if self.task:
            self.task.cancel()
            try:
                await self.task
            except asyncio.CancelledError:
                pass
            self.task = None
        logger.info("Room cleanup monitor stopped")

    async def run_once(self) -> CleanupReport:
        async with self.session_factory() as db:
            return await cleanup_invalid_rooms(db, self.gateway, self.publisher)

    async def _run(self):
        while self.running:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Room cleanup failed: {e}")

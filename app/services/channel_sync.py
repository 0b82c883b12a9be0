"""
Channel synchronization service.

채팅방(진실의 원천)과 외부 채널(투영) 사이의 동기화를 담당합니다.
채팅방 쓰기 이후의 제공자 실패는 로그로 남기고 삼키며, drift 는 다음 조회 시 복구합니다.
"""

import logging
from typing import Dict, List

from app.core.errors import ExternalServiceException
from app.core.logging import log_channel_sync
from app.infrastructure.channel_provider import ChannelHandle, ChannelProviderGateway
from app.infrastructure.channel_provider.gateway import provider_user_id
from app.models.chat_rooms import ChatRoom
from app.services.room_store import channel_id_for

logger = logging.getLogger(__name__)


# =============================================================================
# Helpers
# =============================================================================

def unsynced_handle(gateway: ChannelProviderGateway, room: ChatRoom) -> ChannelHandle:
    """제공자와 동기화되지 않은 채널 핸들 (채팅방 멤버 기준)"""
    return ChannelHandle(
        channel_id=channel_id_for(room),
        channel_type=gateway.channel_type,
        members=[provider_user_id(user_id) for user_id in room.member_ids],
        synced=False,
    )


def _channel_data(room: ChatRoom) -> Dict:
    data = {"room_id": room.id, "room_type": room.room_type}
    if room.name:
        data["name"] = room.name
    return data


async def _upsert_member_users(gateway: ChannelProviderGateway, room: ChatRoom, user_ids: List[int]):
    targets = set(user_ids)
    for member in room.members:
        if member.user_id not in targets:
            continue
        user = member.user
        await gateway.upsert_user(
            member.user_id,
            name=(user.display_name or user.username) if user else None,
            platform_role=user.role if user else None,
        )


# =============================================================================
# Channel Lifecycle
# =============================================================================

async def ensure_channel(gateway: ChannelProviderGateway, room: ChatRoom) -> ChannelHandle:
    """채널이 없으면 생성 (실패 시 synced=False 핸들 반환)"""
    channel_id = channel_id_for(room)
    try:
        existing = await gateway.get_channel(channel_id)
        if existing is not None:
            return existing

        await _upsert_member_users(gateway, room, room.member_ids)
        handle = await gateway.create_channel(
            channel_id,
            room.member_ids,
            created_by=room.created_by,
            data=_channel_data(room),
        )
        log_channel_sync(logger, "create", channel_id, True, room_id=room.id)
        return handle

    except ExternalServiceException as e:
        log_channel_sync(logger, "create", channel_id, False, room_id=room.id, error=e.error)
        return unsynced_handle(gateway, room)


async def reconcile_channel(gateway: ChannelProviderGateway, room: ChatRoom) -> ChannelHandle:
    """
    채널을 채팅방 멤버십에 맞춤

    채널이 없으면 다시 만들고, 있으면 빠진 멤버는 추가하고 남은 멤버는 제거합니다.
    """
    channel_id = channel_id_for(room)
    try:
        handle = await gateway.get_channel(channel_id)
    except ExternalServiceException as e:
        log_channel_sync(logger, "reconcile", channel_id, False, room_id=room.id, error=e.error)
        return unsynced_handle(gateway, room)

    if handle is None:
        return await ensure_channel(gateway, room)

    expected = {provider_user_id(user_id): user_id for user_id in room.member_ids}
    actual = set(handle.members)
    missing = [user_id for key, user_id in expected.items() if key not in actual]
    extra = [int(key) for key in actual - set(expected) if key.isdigit()]

    if not missing and not extra:
        return handle

    try:
        if missing:
            await _upsert_member_users(gateway, room, missing)
            await gateway.add_members(channel_id, missing)
        if extra:
            await gateway.remove_members(channel_id, extra)
    except ExternalServiceException as e:
        log_channel_sync(
            logger, "reconcile", channel_id, False, room_id=room.id, error=e.error,
            missing=missing, stale=extra
        )
        handle.synced = False
        return handle

    log_channel_sync(logger, "reconcile", channel_id, True, room_id=room.id, missing=missing, stale=extra)
    handle.members = list(expected)
    return handle


# =============================================================================
# Post-write Synchronization
# =============================================================================

async def sync_added_members(gateway: ChannelProviderGateway, room: ChatRoom, member_ids: List[int]) -> bool:
    """추가된 멤버를 채널에 반영"""
    channel_id = channel_id_for(room)
    try:
        await _upsert_member_users(gateway, room, member_ids)
        await gateway.add_members(channel_id, member_ids)
    except ExternalServiceException as e:
        log_channel_sync(logger, "add_members", channel_id, False, room_id=room.id, error=e.error, member_ids=member_ids)
        return False

    log_channel_sync(logger, "add_members", channel_id, True, room_id=room.id, member_ids=member_ids)
    return True


async def sync_removed_members(gateway: ChannelProviderGateway, room: ChatRoom, member_ids: List[int]) -> bool:
    """제거된 멤버를 채널에서 제거"""
    channel_id = channel_id_for(room)
    try:
        await gateway.remove_members(channel_id, member_ids)
    except ExternalServiceException as e:
        log_channel_sync(logger, "remove_members", channel_id, False, room_id=room.id, error=e.error, member_ids=member_ids)
        return False

    log_channel_sync(logger, "remove_members", channel_id, True, room_id=room.id, member_ids=member_ids)
    return True


async def sync_member_roles(gateway: ChannelProviderGateway, room: ChatRoom, roles: Dict[int, str]) -> bool:
    """멤버 역할 메타데이터를 채널에 반영"""
    channel_id = channel_id_for(room)
    try:
        await gateway.update_member_roles(channel_id, roles)
    except ExternalServiceException as e:
        log_channel_sync(logger, "update_roles", channel_id, False, room_id=room.id, error=e.error)
        return False

    log_channel_sync(logger, "update_roles", channel_id, True, room_id=room.id)
    return True


async def freeze_channel(gateway: ChannelProviderGateway, room: ChatRoom) -> bool:
    """삭제된 채팅방의 채널 동결"""
    channel_id = channel_id_for(room)
    try:
        await gateway.update_channel(channel_id, {"frozen": True})
    except ExternalServiceException as e:
        log_channel_sync(logger, "freeze", channel_id, False, room_id=room.id, error=e.error)
        return False

    log_channel_sync(logger, "freeze", channel_id, True, room_id=room.id)
    return True


async def sync_channel_details(gateway: ChannelProviderGateway, room: ChatRoom) -> bool:
    """채팅방 이름/설명을 채널 데이터에 반영"""
    channel_id = channel_id_for(room)
    data = _channel_data(room)
    data["description"] = room.description
    try:
        await gateway.update_channel(channel_id, data)
    except ExternalServiceException as e:
        log_channel_sync(logger, "update_details", channel_id, False, room_id=room.id, error=e.error)
        return False

    log_channel_sync(logger, "update_details", channel_id, True, room_id=room.id)
    return True

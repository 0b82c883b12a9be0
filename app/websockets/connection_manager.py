from typing import Any, Dict, Iterable, List, Set
from fastapi import status
import logging

from app.services.online_status_service import OnlineStatusService
from .session import SocketSession, personal_room_name

logger = logging.getLogger(__name__)


class ConnectionManager:
    """
    인증된 WebSocket 세션을 사용자별 개인 룸(user:{id})으로 관리합니다.

    브로드캐스트 없이 특정 사용자에게만 이벤트(멤버십 변경 등)를 전달하는 데 사용합니다.
    """

    def __init__(self, presence=OnlineStatusService):
        # 개인 룸별 세션: {"user:{id}": {session, ...}}
        self.personal_rooms: Dict[str, Set[SocketSession]] = {}
        self.presence = presence

    async def join(self, session: SocketSession):
        """인증된 세션을 개인 룸에 등록합니다."""
        if not session.is_authenticated:
            raise ValueError("Only authenticated sessions can join a personal room")

        room = session.personal_room
        first_connection = room not in self.personal_rooms
        self.personal_rooms.setdefault(room, set()).add(session)
        logger.info(f"Session {session.session_id} joined {room}")

        if first_connection:
            await self.presence.set_user_online(session.user_id, session_id=session.session_id)

    async def leave(self, session: SocketSession):
        """세션을 개인 룸에서 제거합니다. 마지막 연결이면 오프라인 처리합니다."""
        room = session.personal_room
        if room is None or room not in self.personal_rooms:
            return

        sessions = self.personal_rooms[room]
        sessions.discard(session)
        logger.info(f"Session {session.session_id} left {room}")

        if not sessions:
            del self.personal_rooms[room]
            await self.presence.set_user_offline(session.user_id)

    async def emit_to_room(self, room: str, data: Dict[str, Any]) -> int:
        """개인 룸의 모든 세션에 JSON 이벤트를 전송하고 전달된 수를 반환합니다."""
        sessions = list(self.personal_rooms.get(room, ()))
        delivered = 0
        stale: List[SocketSession] = []

        for session in sessions:
            try:
                await session.send(data)
                delivered += 1
            except Exception as e:
                logger.error(f"Failed to send event to {room} ({session.session_id}): {e}")
                stale.append(session)

        for session in stale:
            await self.leave(session)

        return delivered

    async def send_to_user(self, user_id: int, data: Dict[str, Any]) -> int:
        """특정 사용자에게 이벤트를 전송합니다."""
        return await self.emit_to_room(personal_room_name(user_id), data)

    async def send_to_users(self, user_ids: Iterable[int], data: Dict[str, Any]) -> int:
        """여러 사용자에게 이벤트를 전송합니다."""
        delivered = 0
        for user_id in set(user_ids):
            delivered += await self.send_to_user(user_id, data)
        return delivered

    def is_user_connected(self, user_id: int) -> bool:
        """사용자가 연결되어 있는지 확인합니다."""
        return personal_room_name(user_id) in self.personal_rooms

    def get_connected_user_ids(self) -> List[int]:
        """현재 연결된 사용자 ID 목록을 반환합니다."""
        return [next(iter(sessions)).user_id for sessions in self.personal_rooms.values() if sessions]

    def get_connection_count(self) -> int:
        """현재 연결된 세션 수를 반환합니다."""
        return sum(len(sessions) for sessions in self.personal_rooms.values())

    async def close_all(self):
        """종료 시 모든 연결을 닫습니다."""
        for sessions in list(self.personal_rooms.values()):
            for session in list(sessions):
                try:
                    await session.websocket.close(code=status.WS_1001_GOING_AWAY)
                except Exception as e:
                    logger.debug(f"Error closing session {session.session_id}: {e}")
                session.close()
        self.personal_rooms.clear()

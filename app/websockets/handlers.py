import json
import logging
from datetime import datetime
from typing import Any, Dict, List

from app.core.logging import log_security_event, log_websocket_event
from .connection_manager import ConnectionManager
from .session import SocketSession

logger = logging.getLogger(__name__)

MAX_PRESENCE_QUERY = 100


def error_event(error_code: str, message: str) -> Dict[str, Any]:
    return {"type": "error", "error_code": error_code, "message": message}


class WebSocketEventHandler:
    """인증된 세션에서 받은 이벤트를 처리하는 핸들러"""

    def __init__(self, manager: ConnectionManager):
        self.manager = manager
        self._handlers = {
            "ping": self._handle_ping,
            "whoami": self._handle_whoami,
            "presence": self._handle_presence,
            "auth": self._handle_reauth,
            "authenticate": self._handle_reauth,
        }

    async def handle_raw(self, session: SocketSession, raw: str):
        """텍스트 프레임을 JSON 으로 해석해 처리합니다."""
        try:
            data = json.loads(raw)
        except (TypeError, ValueError):
            await session.send(error_event("invalid_message", "Messages must be JSON objects"))
            return

        if not isinstance(data, dict):
            await session.send(error_event("invalid_message", "Messages must be JSON objects"))
            return

        await self.handle(session, data)

    async def handle(self, session: SocketSession, data: Dict[str, Any]):
        """
        WebSocket으로 받은 이벤트를 처리합니다.

        인증되지 않은 세션의 이벤트는 처리하지 않습니다.
        """
        if not session.is_authenticated:
            logger.warning(f"Dropped event on unauthenticated session {session.session_id}")
            return

        event_type = data.get("type")
        handler = self._handlers.get(event_type)
        if handler is None:
            logger.warning(f"Unknown event type: {event_type} from user {session.user_id}")
            await session.send(error_event("unknown_event", f"Unknown event type: {event_type}"))
            return

        await handler(session, data)

    async def _handle_ping(self, session: SocketSession, data: Dict[str, Any]):
        """ping 에 응답하고 온라인 TTL 을 연장합니다."""
        await self.manager.presence.refresh_user_activity(session.user_id)
        await session.send({
            "type": "pong",
            "timestamp": datetime.utcnow().isoformat()
        })

    async def _handle_whoami(self, session: SocketSession, data: Dict[str, Any]):
        identity = session.identity
        await session.send({
            "type": "identity",
            "user_id": identity.user_id,
            "role": identity.role,
            "session_id": session.session_id
        })

    async def _handle_presence(self, session: SocketSession, data: Dict[str, Any]):
        """주어진 사용자 중 온라인인 사용자를 응답합니다."""
        raw_ids = data.get("user_ids") or []
        if not isinstance(raw_ids, list):
            await session.send(error_event("invalid_message", "user_ids must be a list"))
            return

        user_ids: List[int] = []
        for value in raw_ids[:MAX_PRESENCE_QUERY]:
            try:
                user_ids.append(int(value))
            except (TypeError, ValueError):
                continue

        online = await self.manager.presence.get_online_user_ids(user_ids)
        await session.send({
            "type": "presence",
            "online_user_ids": online
        })

    async def _handle_reauth(self, session: SocketSession, data: Dict[str, Any]):
        """재인증 시도는 무시합니다 (바인딩된 식별 정보는 변경되지 않음)."""
        log_security_event(
            logger,
            "websocket_reauth_attempt",
            severity="medium",
            user_id=session.user_id,
            session_id=session.session_id
        )
        await session.send(error_event(
            "already_authenticated",
            "This connection is already authenticated; open a new connection to switch users"
        ))

    async def on_connected(self, session: SocketSession):
        log_websocket_event(logger, "connected", session.user_id, session_id=session.session_id)
        await session.send({
            "type": "connected",
            "user_id": session.user_id,
            "room": session.personal_room,
            "session_id": session.session_id
        })

"""
WebSocket 세션 상태

연결마다 하나의 SocketSession 이 생기며, 인증 시 바인딩된 SocketIdentity 는
세션이 끝날 때까지 바뀌지 않습니다. 재인증은 새 연결로만 가능합니다.

상태 전이:
    connecting -> authenticating -> authenticated -> closed
    authenticating -> rejected (연결 종료)
"""

import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from fastapi import WebSocket


class SessionState(str, Enum):
    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    REJECTED = "rejected"
    CLOSED = "closed"


class SessionStateError(RuntimeError):
    """허용되지 않는 세션 상태 전이"""


@dataclass(frozen=True)
class SocketIdentity:
    """연결에 바인딩된 사용자 식별 정보 (불변)"""
    user_id: int
    role: Optional[str] = None


def personal_room_name(user_id: int) -> str:
    return f"user:{user_id}"


class SocketSession:
    """WebSocket 연결 하나의 상태와 식별 정보"""

    def __init__(self, websocket: WebSocket, session_id: Optional[str] = None):
        self.websocket = websocket
        self.session_id = session_id or f"ws_{uuid.uuid4().hex}"
        self._state = SessionState.CONNECTING
        self._identity: Optional[SocketIdentity] = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def identity(self) -> Optional[SocketIdentity]:
        return self._identity

    @property
    def user_id(self) -> Optional[int]:
        return self._identity.user_id if self._identity else None

    @property
    def is_authenticated(self) -> bool:
        return self._state == SessionState.AUTHENTICATED

    @property
    def personal_room(self) -> Optional[str]:
        if self._identity is None:
            return None
        return personal_room_name(self._identity.user_id)

    def _transition(self, expected: SessionState, target: SessionState):
        if self._state != expected:
            raise SessionStateError(f"Cannot move from {self._state.value} to {target.value}")
        self._state = target

    def begin_authentication(self):
        self._transition(SessionState.CONNECTING, SessionState.AUTHENTICATING)

    def bind(self, identity: SocketIdentity):
        """인증된 식별 정보 바인딩 (한 번만 가능)"""
        if self._identity is not None:
            raise SessionStateError("Session identity is already bound")
        self._transition(SessionState.AUTHENTICATING, SessionState.AUTHENTICATED)
        self._identity = identity

    def reject(self):
        self._transition(SessionState.AUTHENTICATING, SessionState.REJECTED)

    def close(self):
        self._state = SessionState.CLOSED

    async def send(self, data: Dict[str, Any]):
        await self.websocket.send_json(data)

    def __repr__(self):
        return f"<SocketSession(id={self.session_id}, state={self._state.value}, user_id={self.user_id})>"

"""
WebSocket 실시간 세션 모듈

주요 구성 요소:
- session: 연결별 상태 머신과 불변 사용자 식별 정보
- auth: 핸드셰이크 자격 증명 추출 및 인증
- connection_manager: 사용자별 개인 룸 관리와 타깃 푸시
- handlers: 인증된 세션의 이벤트 처리
"""

from .session import SessionState, SocketIdentity, SocketSession
from .connection_manager import ConnectionManager
from .auth import authenticate_websocket, extract_credential
from .handlers import WebSocketEventHandler

__all__ = [
    "SessionState",
    "SocketIdentity",
    "SocketSession",
    "ConnectionManager",
    "authenticate_websocket",
    "extract_credential",
    "WebSocketEventHandler"
]

from dataclasses import dataclass
from typing import Optional
from fastapi import WebSocket, status
from sqlalchemy.ext.asyncio import async_sessionmaker
import logging

from app.core.logging import log_authentication_event
from app.services.user_directory import find_user_by_id
from app.utils.auth import verify_credential
from .session import SocketIdentity, SocketSession

logger = logging.getLogger(__name__)

# 브라우저 클라이언트는 Sec-WebSocket-Protocol: access_token, <jwt> 로 토큰을 전달
AUTH_SUBPROTOCOL = "access_token"

UNAUTHORIZED_EVENT = {
    "type": "error",
    "error_code": "unauthorized",
    "message": "Authentication required"
}


@dataclass(frozen=True)
class ExtractedCredential:
    """핸드셰이크에서 추출한 자격 증명"""
    token: str
    source: str  # auth_payload, header, query
    subprotocol: Optional[str] = None


def extract_credential(websocket: WebSocket) -> Optional[ExtractedCredential]:
    """
    핸드셰이크에서 Bearer 자격 증명 추출

    우선순위: auth payload(서브프로토콜) > Authorization 헤더 > token 쿼리 파라미터.
    먼저 발견된 값을 사용하며, 유효하지 않더라도 다음 위치로 넘어가지 않습니다.
    """
    protocols = list(websocket.scope.get("subprotocols") or [])
    if AUTH_SUBPROTOCOL in protocols:
        index = protocols.index(AUTH_SUBPROTOCOL)
        if index + 1 < len(protocols) and protocols[index + 1].strip():
            return ExtractedCredential(
                token=protocols[index + 1].strip(),
                source="auth_payload",
                subprotocol=AUTH_SUBPROTOCOL
            )

    authorization = websocket.headers.get("authorization")
    if authorization:
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() == "bearer" and token.strip():
            return ExtractedCredential(token=token.strip(), source="header")

    token = websocket.query_params.get("token")
    if token and token.strip():
        return ExtractedCredential(token=token.strip(), source="query")

    return None


async def reject_websocket(websocket: WebSocket, session: SocketSession, subprotocol: Optional[str] = None):
    """인증 실패 이벤트 1회 전송 후 연결 종료"""
    session.reject()
    try:
        await websocket.accept(subprotocol=subprotocol)
        await websocket.send_json(UNAUTHORIZED_EVENT)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
    except Exception as e:
        logger.warning(f"Failed to deliver WebSocket rejection: {e}")


async def authenticate_websocket(
    websocket: WebSocket,
    session: SocketSession,
    session_factory: async_sessionmaker
) -> Optional[SocketIdentity]:
    """
    WebSocket 연결을 인증하고 세션에 사용자 식별 정보를 바인딩합니다.

    Args:
        websocket: WebSocket 연결 객체
        session: 연결 세션
        session_factory: 사용자 조회용 DB 세션 팩토리

    Returns:
        SocketIdentity: 인증된 사용자, 실패 시 None (연결은 이미 종료됨)
    """
    session.begin_authentication()

    credential = extract_credential(websocket)
    if credential is None:
        log_authentication_event(logger, "websocket", success=False, reason="missing_credential")
        await reject_websocket(websocket, session)
        return None

    claims = verify_credential(credential.token)
    if claims is None:
        log_authentication_event(logger, "websocket", success=False, reason="invalid_credential", source=credential.source)
        await reject_websocket(websocket, session, credential.subprotocol)
        return None

    async with session_factory() as db:
        user = await find_user_by_id(db, claims.user_id)

    if user is None or not user.is_active:
        log_authentication_event(logger, "websocket", user_id=claims.user_id, success=False, reason="unknown_user")
        await reject_websocket(websocket, session, credential.subprotocol)
        return None

    identity = SocketIdentity(user_id=user.id, role=user.role)
    await websocket.accept(subprotocol=credential.subprotocol)
    session.bind(identity)

    log_authentication_event(logger, "websocket", user_id=user.id, success=True, source=credential.source)
    return identity

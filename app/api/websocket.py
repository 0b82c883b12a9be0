import logging
from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.api.dependencies import get_connection_manager, get_session_factory
from app.core.logging import log_websocket_event
from app.websockets.auth import authenticate_websocket
from app.websockets.connection_manager import ConnectionManager
from app.websockets.handlers import WebSocketEventHandler
from app.websockets.session import SocketSession

logger = logging.getLogger(__name__)

router = APIRouter(tags=["WebSocket"])


@router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    session_factory: async_sessionmaker = Depends(get_session_factory),
    manager: ConnectionManager = Depends(get_connection_manager)
):
    """
    실시간 세션 WebSocket 엔드포인트

    자격 증명은 서브프로토콜(access_token, <jwt>), Authorization 헤더, token 쿼리 파라미터 순으로 확인합니다.
    인증 실패 시 unauthorized 에러 이벤트 1회 전송 후 연결을 종료합니다.
    """
    session = SocketSession(websocket)

    # 1. 인증 및 식별 정보 바인딩
    identity = await authenticate_websocket(websocket, session, session_factory)
    if identity is None:
        return

    # 2. 개인 룸 참여
    handler = WebSocketEventHandler(manager)
    await manager.join(session)

    try:
        await handler.on_connected(session)

        # 3. 이벤트 수신 루프
        while True:
            raw = await websocket.receive_text()
            await handler.handle_raw(session, raw)

    except WebSocketDisconnect as e:
        log_websocket_event(logger, "disconnected", identity.user_id, code=e.code, session_id=session.session_id)

    except Exception as e:
        logger.error(f"WebSocket error for user {identity.user_id}: {e}")

    finally:
        await manager.leave(session)
        session.close()

"""
API Dependencies

인증, DB 세션, lifespan 에서 생성된 협력 객체(채널 게이트웨이, 연결 매니저, 이벤트 발행기)를
핸들러에 주입하는 의존성 함수들. 테스트에서는 app.dependency_overrides 로 교체합니다.
"""

from typing import Optional

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from starlette.requests import HTTPConnection

from app.core.errors import AuthenticationException, invalid_token_error, user_not_found_error
from app.database.mysql import AsyncSessionLocal, get_async_session
from app.infrastructure.channel_provider import ChannelProviderGateway
from app.models.users import User
from app.services.room_events import RoomEventPublisher
from app.services.user_directory import find_user_by_id
from app.utils.auth import verify_credential
from app.websockets.connection_manager import ConnectionManager

# OAuth2 설정 (토큰 발급은 인증 서비스 담당)
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)


async def get_current_user(
    token: Optional[str] = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_async_session)
) -> User:
    """
    현재 인증된 사용자를 조회합니다.

    Raises:
        AuthenticationException: 토큰이 없거나 유효하지 않은 경우
        UserNotFoundException: 사용자가 존재하지 않거나 비활성인 경우
    """
    if not token:
        raise AuthenticationException("Not authenticated")

    claims = verify_credential(token)
    if claims is None:
        raise invalid_token_error()

    user = await find_user_by_id(db, claims.user_id)
    if user is None or not user.is_active:
        raise user_not_found_error(claims.user_id)

    return user


def get_channel_gateway(connection: HTTPConnection) -> ChannelProviderGateway:
    """lifespan 에서 초기화한 채널 제공자 게이트웨이"""
    return connection.app.state.channel_gateway


def get_connection_manager(connection: HTTPConnection) -> ConnectionManager:
    """lifespan 에서 생성한 WebSocket 연결 매니저"""
    return connection.app.state.connection_manager


def get_event_publisher(connection: HTTPConnection) -> RoomEventPublisher:
    """채팅방 Domain Event 발행기"""
    return connection.app.state.event_publisher


def get_session_factory() -> async_sessionmaker:
    """WebSocket 처럼 수명이 긴 연결에서 짧게 쓰는 DB 세션 팩토리"""
    return AsyncSessionLocal

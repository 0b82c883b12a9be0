import json
import pytest
import pytest_asyncio
from typing import AsyncGenerator, Dict, List, Optional
from unittest.mock import AsyncMock

import httpx
from fastapi import WebSocketDisconnect
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from app.main import app
from app.api.dependencies import (
    get_channel_gateway,
    get_connection_manager,
    get_event_publisher,
    get_session_factory
)
from app.database.mysql import Base, get_async_session
from app.infrastructure.channel_provider import ChannelProviderGateway
from app.models.users import User
from app.models.chat_rooms import ChatRoom
from app.services import room_store
from app.services.room_events import RoomEventPublisher
from app.utils.auth import create_access_token
from app.websockets.connection_manager import ConnectionManager


# 테스트용 인메모리 SQLite 데이터베이스 설정
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

PROVIDER_BASE_URL = "https://provider.test"


# =============================================================================
# Fake Channel Provider
# =============================================================================

class FakeChannelProvider:
    """httpx.MockTransport 로 동작하는 인메모리 채널 제공자"""

    def __init__(self):
        self.channels: Dict[str, Dict] = {}
        self.users: Dict[str, Dict] = {}
        self.requests: List[httpx.Request] = []
        # None, "connect", "timeout", "server_error", "reject"
        self.fail_mode: Optional[str] = None

    def calls(self, method: str, path_suffix: str = "") -> List[httpx.Request]:
        return [
            request for request in self.requests
            if request.method == method and request.url.path.endswith(path_suffix)
        ]

    def seed_channel(self, channel_id: str, members: List[str], channel_type: str = "messaging"):
        self.channels[channel_id] = {"id": channel_id, "type": channel_type, "members": list(members), "data": {}}

    def _channel_response(self, channel: Dict, status_code: int = 200) -> httpx.Response:
        return httpx.Response(status_code, json={"channel": channel})

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)

        if self.fail_mode == "connect":
            raise httpx.ConnectError("provider down", request=request)
        if self.fail_mode == "timeout":
            raise httpx.ReadTimeout("provider timed out", request=request)
        if self.fail_mode == "server_error":
            return httpx.Response(503, json={"message": "unavailable"})
        if self.fail_mode == "reject":
            return httpx.Response(403, json={"message": "secret provider detail"})

        body = json.loads(request.content) if request.content else {}
        parts = request.url.path.strip("/").split("/")

        if parts == ["users"]:
            self.users.update(body.get("users", {}))
            return httpx.Response(201, json={"users": body.get("users", {})})

        if len(parts) < 3 or parts[0] != "channels":
            return httpx.Response(404, json={"message": "not found"})

        channel_type, channel_id = parts[1], parts[2]
        channel = self.channels.get(channel_id)

        if len(parts) == 3:
            if request.method == "GET":
                if channel is None:
                    return httpx.Response(404, json={"message": "channel not found"})
                return self._channel_response(channel)

            if request.method == "POST":
                if channel is not None:
                    return httpx.Response(409, json={"message": "channel exists"})
                channel = {
                    "id": channel_id,
                    "type": channel_type,
                    "members": list(body.get("members", [])),
                    "created_by_id": body.get("created_by_id"),
                    "data": body.get("data", {}),
                }
                self.channels[channel_id] = channel
                return self._channel_response(channel, 201)

            if request.method == "PATCH":
                if channel is None:
                    return httpx.Response(404, json={"message": "channel not found"})
                channel["data"].update(body.get("set", {}))
                return self._channel_response(channel)

        if len(parts) == 4 and parts[3] == "members" and request.method == "POST":
            if channel is None:
                return httpx.Response(404, json={"message": "channel not found"})
            for member in body.get("add_members", []):
                if member not in channel["members"]:
                    channel["members"].append(member)
            for member in body.get("remove_members", []):
                if member in channel["members"]:
                    channel["members"].remove(member)
            for assignment in body.get("assign_roles", []):
                channel.setdefault("roles", {})[assignment["user_id"]] = assignment["channel_role"]
            return self._channel_response(channel)

        return httpx.Response(405, json={"message": "method not allowed"})


# =============================================================================
# Fake WebSocket
# =============================================================================

class FakeWebSocket:
    """핸드셰이크 정보와 송수신을 흉내내는 WebSocket"""

    def __init__(
        self,
        subprotocols: Optional[List[str]] = None,
        headers: Optional[Dict[str, str]] = None,
        query_params: Optional[Dict[str, str]] = None,
        incoming: Optional[List[str]] = None
    ):
        self.scope = {"type": "websocket", "subprotocols": subprotocols or []}
        self.headers = {key.lower(): value for key, value in (headers or {}).items()}
        self.query_params = query_params or {}
        self.accepted = False
        self.accepted_subprotocol = None
        self.sent: List[Dict] = []
        self.closed_code: Optional[int] = None
        self._incoming = list(incoming or [])

    async def accept(self, subprotocol: Optional[str] = None):
        self.accepted = True
        self.accepted_subprotocol = subprotocol

    async def send_json(self, data: Dict):
        if self.closed_code is not None:
            raise RuntimeError("WebSocket is closed")
        self.sent.append(data)

    async def receive_text(self) -> str:
        if self._incoming:
            return self._incoming.pop(0)
        raise WebSocketDisconnect(code=1000)

    async def close(self, code: int = 1000):
        self.closed_code = code


# =============================================================================
# Database
# =============================================================================

@pytest_asyncio.fixture
async def test_engine():
    """테스트용 비동기 데이터베이스 엔진 생성"""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
        echo=False
    )

    # 테이블 생성
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    # 정리
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(test_engine) -> async_sessionmaker:
    """테스트용 세션 팩토리"""
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def test_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """테스트용 데이터베이스 세션"""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def file_session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker, None]:
    """
    파일 기반 SQLite 세션 팩토리

    세션마다 별도 커넥션을 사용하므로 동시 요청 테스트에 사용합니다.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'chat_core.db'}",
        connect_args={"timeout": 30}
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


# =============================================================================
# Users
# =============================================================================

async def create_user(session: AsyncSession, username: str, role: str = "student", is_active: bool = True) -> User:
    user = User(
        username=username,
        email=f"{username}@example.com",
        display_name=username.capitalize(),
        role=role,
        is_active=is_active
    )
    session.add(user)
    await session.commit()
    await session.refresh(user)
    return user


@pytest_asyncio.fixture
async def test_user_1(test_session) -> User:
    """테스트용 사용자 1 (학생)"""
    return await create_user(test_session, "testuser1", role="student")


@pytest_asyncio.fixture
async def test_user_2(test_session) -> User:
    """테스트용 사용자 2 (임대인)"""
    return await create_user(test_session, "testuser2", role="landlord")


@pytest_asyncio.fixture
async def test_user_3(test_session) -> User:
    """테스트용 사용자 3"""
    return await create_user(test_session, "testuser3", role="student")


@pytest_asyncio.fixture
async def test_user_4(test_session) -> User:
    """테스트용 사용자 4"""
    return await create_user(test_session, "testuser4", role="student")


@pytest_asyncio.fixture
async def platform_admin(test_session) -> User:
    """플랫폼 관리자"""
    return await create_user(test_session, "platformadmin", role="admin")


def token_for(user: User) -> str:
    return create_access_token(data={"sub": str(user.id)})


def auth_headers(user: User) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token_for(user)}"}


@pytest_asyncio.fixture
async def auth_token_user_1(test_user_1) -> str:
    """사용자 1의 인증 토큰"""
    return token_for(test_user_1)


@pytest_asyncio.fixture
async def auth_token_user_2(test_user_2) -> str:
    """사용자 2의 인증 토큰"""
    return token_for(test_user_2)


# =============================================================================
# Rooms
# =============================================================================

@pytest_asyncio.fixture
async def group_room(test_session, test_user_1, test_user_2, test_user_3) -> ChatRoom:
    """user1(admin), user2(moderator), user3(member) 그룹 채팅방"""
    return await room_store.create_room(
        test_session,
        room_type="group",
        created_by=test_user_1.id,
        members=[
            (test_user_1.id, "admin"),
            (test_user_2.id, "moderator"),
            (test_user_3.id, "member")
        ],
        name="Study Group"
    )


@pytest_asyncio.fixture
async def community_room(test_session, test_user_1, test_user_2) -> ChatRoom:
    """user1(admin), user2(moderator) 커뮤니티"""
    return await room_store.create_room(
        test_session,
        room_type="community",
        created_by=test_user_1.id,
        members=[(test_user_1.id, "admin"), (test_user_2.id, "moderator")],
        name="Dorm Board",
        description="Campus housing"
    )


@pytest_asyncio.fixture
async def private_room(test_session, test_user_1, test_user_2) -> ChatRoom:
    """user1-user2 1:1 채팅방"""
    return await room_store.create_room(
        test_session,
        room_type="private",
        created_by=test_user_1.id,
        members=[(test_user_1.id, "member"), (test_user_2.id, "member")]
    )


# =============================================================================
# Collaborators
# =============================================================================

@pytest.fixture
def fake_provider() -> FakeChannelProvider:
    return FakeChannelProvider()


@pytest_asyncio.fixture
async def gateway(fake_provider) -> AsyncGenerator[ChannelProviderGateway, None]:
    """FakeChannelProvider 에 연결된 게이트웨이"""
    gateway = ChannelProviderGateway(
        base_url=PROVIDER_BASE_URL,
        api_key="test-api-key",
        api_secret="test-api-secret",
        channel_type="messaging",
        timeout_seconds=1.0,
        transport=httpx.MockTransport(fake_provider.handler)
    )
    await gateway.init()
    yield gateway
    await gateway.shutdown()


@pytest.fixture
def presence() -> AsyncMock:
    """Redis 대신 사용하는 온라인 상태 서비스 Mock"""
    presence = AsyncMock()
    presence.set_user_online.return_value = True
    presence.set_user_offline.return_value = True
    presence.refresh_user_activity.return_value = True
    presence.get_online_user_ids.return_value = []
    return presence


@pytest.fixture
def manager(presence) -> ConnectionManager:
    return ConnectionManager(presence=presence)


@pytest.fixture
def event_producer() -> AsyncMock:
    """Kafka Producer Mock"""
    producer = AsyncMock()
    producer.is_started = True
    producer.publish_with_retry.return_value = True
    return producer


@pytest.fixture
def publisher(event_producer) -> RoomEventPublisher:
    return RoomEventPublisher(event_producer, topic="chat.events.test")


# =============================================================================
# HTTP Client
# =============================================================================

@pytest_asyncio.fixture
async def client(test_session, session_factory, gateway, manager, publisher) -> AsyncGenerator[AsyncClient, None]:
    """테스트용 비동기 HTTP 클라이언트"""
    def get_test_session():
        return test_session

    app.dependency_overrides[get_async_session] = get_test_session
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_channel_gateway] = lambda: gateway
    app.dependency_overrides[get_connection_manager] = lambda: manager
    app.dependency_overrides[get_event_publisher] = lambda: publisher

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def headers_for():
    """사용자별 Authorization 헤더 생성 함수"""
    return auth_headers


@pytest.fixture
def make_websocket():
    """FakeWebSocket 생성 함수"""
    return FakeWebSocket


@pytest.fixture
def make_user():
    """임의 세션에 사용자를 생성하는 함수"""
    return create_user

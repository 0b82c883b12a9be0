import json
import pytest

from app.api.websocket import websocket_endpoint
from app.utils.auth import create_access_token
from app.websockets.auth import AUTH_SUBPROTOCOL, authenticate_websocket, extract_credential
from app.websockets.handlers import WebSocketEventHandler
from app.websockets.session import SessionState, SessionStateError, SocketIdentity, SocketSession


def token_for(user_id: int) -> str:
    return create_access_token(data={"sub": str(user_id)})


class TestCredentialExtraction:
    """핸드셰이크 자격 증명 추출 테스트"""

    def test_subprotocol_wins_over_header_and_query(self, make_websocket):
        websocket = make_websocket(
            subprotocols=[AUTH_SUBPROTOCOL, "from-payload"],
            headers={"Authorization": "Bearer from-header"},
            query_params={"token": "from-query"}
        )

        credential = extract_credential(websocket)

        assert credential.token == "from-payload"
        assert credential.source == "auth_payload"
        assert credential.subprotocol == AUTH_SUBPROTOCOL

    def test_header_wins_over_query(self, make_websocket):
        websocket = make_websocket(
            headers={"Authorization": "Bearer from-header"},
            query_params={"token": "from-query"}
        )

        credential = extract_credential(websocket)

        assert credential.token == "from-header"
        assert credential.source == "header"

    def test_query_parameter(self, make_websocket):
        credential = extract_credential(make_websocket(query_params={"token": "from-query"}))

        assert credential.token == "from-query"
        assert credential.source == "query"

    def test_missing_credential(self, make_websocket):
        assert extract_credential(make_websocket(headers={"Authorization": "Basic abc"})) is None


class TestSocketSession:
    """세션 상태 전이 테스트"""

    def test_identity_binds_once(self, make_websocket):
        session = SocketSession(make_websocket())
        session.begin_authentication()
        session.bind(SocketIdentity(user_id=1, role="student"))

        assert session.state == SessionState.AUTHENTICATED
        assert session.personal_room == "user:1"
        with pytest.raises(SessionStateError):
            session.bind(SocketIdentity(user_id=2))
        assert session.user_id == 1

    def test_cannot_bind_without_authenticating(self, make_websocket):
        session = SocketSession(make_websocket())

        with pytest.raises(SessionStateError):
            session.bind(SocketIdentity(user_id=1))


class TestWebSocketAuthentication:
    """WebSocket 인증 테스트"""

    @pytest.mark.asyncio
    async def test_valid_subprotocol_token(self, make_websocket, session_factory, test_user_1):
        websocket = make_websocket(subprotocols=[AUTH_SUBPROTOCOL, token_for(test_user_1.id)])
        session = SocketSession(websocket)

        identity = await authenticate_websocket(websocket, session, session_factory)

        assert identity == SocketIdentity(user_id=test_user_1.id, role="student")
        assert websocket.accepted_subprotocol == AUTH_SUBPROTOCOL
        assert session.is_authenticated

    @pytest.mark.asyncio
    async def test_invalid_first_credential_is_not_skipped(self, make_websocket, session_factory, test_user_1):
        websocket = make_websocket(
            subprotocols=[AUTH_SUBPROTOCOL, "not-a-jwt"],
            query_params={"token": token_for(test_user_1.id)}
        )
        session = SocketSession(websocket)

        identity = await authenticate_websocket(websocket, session, session_factory)

        assert identity is None
        assert session.state == SessionState.REJECTED
        assert websocket.sent == [{
            "type": "error",
            "error_code": "unauthorized",
            "message": "Authentication required"
        }]
        assert websocket.closed_code == 1008

    @pytest.mark.asyncio
    async def test_missing_credential_rejected(self, make_websocket, session_factory):
        websocket = make_websocket()
        session = SocketSession(websocket)

        assert await authenticate_websocket(websocket, session, session_factory) is None
        assert websocket.sent[0]["error_code"] == "unauthorized"
        assert websocket.closed_code == 1008

    @pytest.mark.asyncio
    async def test_unknown_user_rejected(self, make_websocket, session_factory, test_user_1):
        websocket = make_websocket(headers={"Authorization": f"Bearer {token_for(9999)}"})
        session = SocketSession(websocket)

        assert await authenticate_websocket(websocket, session, session_factory) is None
        assert websocket.closed_code == 1008


class TestWebSocketEvents:
    """인증된 세션 이벤트 처리 테스트"""

    def _authenticated_session(self, make_websocket, user_id=1, role="student"):
        session = SocketSession(make_websocket(), session_id="ws_test")
        session.begin_authentication()
        session.bind(SocketIdentity(user_id=user_id, role=role))
        return session

    @pytest.mark.asyncio
    async def test_whoami(self, make_websocket, manager):
        session = self._authenticated_session(make_websocket)

        await WebSocketEventHandler(manager).handle_raw(session, json.dumps({"type": "whoami"}))

        assert session.websocket.sent[-1] == {
            "type": "identity",
            "user_id": 1,
            "role": "student",
            "session_id": "ws_test"
        }

    @pytest.mark.asyncio
    async def test_reauthentication_is_ignored(self, make_websocket, manager):
        session = self._authenticated_session(make_websocket)
        handler = WebSocketEventHandler(manager)

        await handler.handle(session, {"type": "authenticate", "token": token_for(2)})
        await handler.handle(session, {"type": "whoami"})

        assert session.websocket.sent[0]["error_code"] == "already_authenticated"
        assert session.websocket.sent[1]["user_id"] == 1

    @pytest.mark.asyncio
    async def test_ping_refreshes_presence(self, make_websocket, manager, presence):
        session = self._authenticated_session(make_websocket)

        await WebSocketEventHandler(manager).handle(session, {"type": "ping"})

        assert session.websocket.sent[-1]["type"] == "pong"
        presence.refresh_user_activity.assert_awaited_once_with(1)

    @pytest.mark.asyncio
    async def test_presence_query(self, make_websocket, manager, presence):
        presence.get_online_user_ids.return_value = [2]
        session = self._authenticated_session(make_websocket)

        await WebSocketEventHandler(manager).handle(session, {"type": "presence", "user_ids": [2, "3", "x"]})

        presence.get_online_user_ids.assert_awaited_once_with([2, 3])
        assert session.websocket.sent[-1] == {"type": "presence", "online_user_ids": [2]}

    @pytest.mark.asyncio
    async def test_invalid_json_and_unknown_event(self, make_websocket, manager):
        session = self._authenticated_session(make_websocket)
        handler = WebSocketEventHandler(manager)

        await handler.handle_raw(session, "not json")
        await handler.handle_raw(session, json.dumps({"type": "dance"}))

        assert [event["error_code"] for event in session.websocket.sent] == ["invalid_message", "unknown_event"]

    @pytest.mark.asyncio
    async def test_unauthenticated_session_is_ignored(self, make_websocket, manager):
        session = SocketSession(make_websocket())

        await WebSocketEventHandler(manager).handle(session, {"type": "whoami"})

        assert session.websocket.sent == []


class TestConnectionManager:
    """개인 룸 관리 테스트"""

    def _session(self, make_websocket, user_id):
        session = SocketSession(make_websocket())
        session.begin_authentication()
        session.bind(SocketIdentity(user_id=user_id))
        return session

    @pytest.mark.asyncio
    async def test_presence_follows_first_and_last_connection(self, make_websocket, manager, presence):
        first = self._session(make_websocket, 1)
        second = self._session(make_websocket, 1)

        await manager.join(first)
        await manager.join(second)
        assert presence.set_user_online.await_count == 1
        assert manager.get_connection_count() == 2

        await manager.leave(first)
        presence.set_user_offline.assert_not_awaited()

        await manager.leave(second)
        presence.set_user_offline.assert_awaited_once_with(1)
        assert not manager.is_user_connected(1)

    @pytest.mark.asyncio
    async def test_send_to_user_reaches_only_that_user(self, make_websocket, manager):
        alice = self._session(make_websocket, 1)
        bob = self._session(make_websocket, 2)
        await manager.join(alice)
        await manager.join(bob)

        delivered = await manager.send_to_user(1, {"type": "room.created", "room_id": 10})

        assert delivered == 1
        assert alice.websocket.sent == [{"type": "room.created", "room_id": 10}]
        assert bob.websocket.sent == []

    @pytest.mark.asyncio
    async def test_unauthenticated_session_cannot_join(self, make_websocket, manager):
        with pytest.raises(ValueError):
            await manager.join(SocketSession(make_websocket()))


class TestWebSocketEndpoint:
    """WebSocket 엔드포인트 흐름 테스트"""

    @pytest.mark.asyncio
    async def test_connect_query_and_disconnect(self, make_websocket, session_factory, manager, presence, test_user_1):
        websocket = make_websocket(
            query_params={"token": token_for(test_user_1.id)},
            incoming=[json.dumps({"type": "whoami"})]
        )

        await websocket_endpoint(websocket, session_factory=session_factory, manager=manager)

        assert websocket.accepted is True
        assert websocket.accepted_subprotocol is None
        assert [event["type"] for event in websocket.sent] == ["connected", "identity"]
        assert websocket.sent[0]["room"] == f"user:{test_user_1.id}"
        presence.set_user_online.assert_awaited_once()
        presence.set_user_offline.assert_awaited_once_with(test_user_1.id)
        assert manager.get_connection_count() == 0

    @pytest.mark.asyncio
    async def test_rejected_connection_never_joins(self, make_websocket, session_factory, manager, presence):
        websocket = make_websocket(query_params={"token": "bad"})

        await websocket_endpoint(websocket, session_factory=session_factory, manager=manager)

        assert websocket.sent[0]["error_code"] == "unauthorized"
        presence.set_user_online.assert_not_awaited()

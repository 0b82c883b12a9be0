"""
Channel Provider Gateway

외부 실시간 메시징 서비스(채널 제공자)에 대한 얇은 어댑터.
채널 생성/조회/멤버 관리와 사용자별 토큰 발급을 담당합니다.

모듈 전역 클라이언트를 두지 않고, 애플리케이션 lifespan에서 생성한 인스턴스를
``init()`` / ``shutdown()`` 으로 관리하며 의존성 주입으로 전달합니다.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

import httpx
from jose import jwt

from app.core.config import settings
from app.core.errors import ProviderRejectedException, ProviderUnavailableException

logger = logging.getLogger(__name__)


# 플랫폼 역할 -> 제공자 역할
PROVIDER_USER_ROLES = {
    "admin": "admin",
    "moderator": "moderator",
}

# 채팅방 멤버 역할 -> 제공자 채널 멤버 역할
PROVIDER_CHANNEL_ROLES = {
    "admin": "channel_admin",
    "moderator": "channel_moderator",
    "member": "channel_member",
}


@dataclass
class ChannelHandle:
    """제공자 채널에 대한 핸들"""
    channel_id: str
    channel_type: str
    members: List[str] = field(default_factory=list)
    synced: bool = True
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "channel_id": self.channel_id,
            "channel_type": self.channel_type,
            "members": list(self.members),
            "synced": self.synced,
        }


def provider_user_id(user_id: int) -> str:
    """제공자 측 사용자 식별자 (문자열)"""
    return str(user_id)


def map_provider_role(platform_role: Optional[str]) -> str:
    """플랫폼 역할을 제공자 사용자 역할로 변환 (그 외는 모두 user)"""
    return PROVIDER_USER_ROLES.get(platform_role or "", "user")


class ChannelProviderGateway:
    """외부 채널 제공자 REST API 클라이언트"""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        api_secret: Optional[str] = None,
        channel_type: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url or settings.channel_provider_base_url
        self.api_key = api_key or settings.channel_provider_api_key
        self.api_secret = api_secret or settings.channel_provider_api_secret
        self.channel_type = channel_type or settings.channel_provider_channel_type
        self.timeout_seconds = timeout_seconds or settings.channel_provider_timeout_seconds
        self._transport = transport
        self.http: Optional[httpx.AsyncClient] = None

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def init(self):
        """HTTP 클라이언트 생성"""
        if self.http is not None:
            return

        self.http = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(self.timeout_seconds),
            transport=self._transport,
            headers={"Authorization": self._server_token()},
            params={"api_key": self.api_key},
        )
        logger.info(f"Channel provider gateway initialized (base_url={self.base_url})")

    async def shutdown(self):
        """HTTP 클라이언트 종료"""
        if self.http is not None:
            await self.http.aclose()
            self.http = None
            logger.info("Channel provider gateway shut down")

    @property
    def is_initialized(self) -> bool:
        return self.http is not None

    # =========================================================================
    # Credentials
    # =========================================================================

    def _server_token(self) -> str:
        """서버 간 호출용 토큰"""
        return jwt.encode({"server": True}, self.api_secret, algorithm="HS256")

    def issue_user_token(self, user_id: int, ttl_hours: Optional[int] = None) -> str:
        """
        사용자 전용 토큰 발급

        클라이언트가 제공자에 직접 실시간 세션을 여는 데 사용합니다.
        네트워크 호출 없이 api_secret 으로 서명합니다.
        """
        hours = ttl_hours or settings.channel_provider_user_token_ttl_hours
        issued_at = datetime.utcnow()
        payload = {
            "user_id": provider_user_id(user_id),
            "iat": int(issued_at.timestamp()),
            "exp": int((issued_at + timedelta(hours=hours)).timestamp()),
        }
        return jwt.encode(payload, self.api_secret, algorithm="HS256")

    # =========================================================================
    # Transport
    # =========================================================================

    def _channel_path(self, channel_id: str) -> str:
        return f"/channels/{self.channel_type}/{channel_id}"

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Dict[str, Any]] = None,
        allow_status: Iterable[int] = (),
    ) -> httpx.Response:
        if self.http is None:
            raise ProviderUnavailableException("Channel provider gateway is not initialized")

        started = time.perf_counter()
        try:
            response = await self.http.request(method, path, json=json)
        except httpx.TimeoutException as exc:
            logger.warning(f"Channel provider timeout: {method} {path} after {self.timeout_seconds}s")
            raise ProviderUnavailableException(
                f"Channel provider timed out after {self.timeout_seconds}s"
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning(f"Channel provider connection failed: {method} {path}: {exc}")
            raise ProviderUnavailableException("Channel provider connection failed") from exc

        duration_ms = round((time.perf_counter() - started) * 1000, 2)
        logger.debug(f"Channel provider {method} {path} -> {response.status_code} ({duration_ms}ms)")

        if response.status_code in allow_status:
            return response
        if response.status_code >= 500:
            raise ProviderUnavailableException(
                "Channel provider returned a server error",
                details={"status_code": response.status_code},
            )
        if response.status_code >= 400:
            # 제공자 응답 본문은 로그에만 남기고 클라이언트로 전달하지 않음
            logger.warning(f"Channel provider rejected {method} {path}: {response.status_code} {response.text}")
            raise ProviderRejectedException(details={"status_code": response.status_code})
        return response

    def _handle_from_payload(self, channel_id: str, payload: Dict[str, Any]) -> ChannelHandle:
        channel = payload.get("channel", payload)
        members = [str(member) for member in channel.get("members", [])]
        return ChannelHandle(
            channel_id=channel.get("id", channel_id),
            channel_type=channel.get("type", self.channel_type),
            members=members,
            synced=True,
            data=channel.get("data", {}) or {},
        )

    # =========================================================================
    # Channels
    # =========================================================================

    async def get_channel(self, channel_id: str) -> Optional[ChannelHandle]:
        """채널 조회 (없으면 None)"""
        response = await self._request("GET", self._channel_path(channel_id), allow_status=(404,))
        if response.status_code == 404:
            return None
        return self._handle_from_payload(channel_id, response.json())

    async def create_channel(
        self,
        channel_id: str,
        member_ids: List[int],
        created_by: int,
        data: Optional[Dict[str, Any]] = None,
    ) -> ChannelHandle:
        """
        채널 생성 (멱등)

        동일한 channel_id 의 채널이 이미 있으면 에러 없이 기존 채널을 반환합니다.
        """
        body = {
            "members": [provider_user_id(member_id) for member_id in member_ids],
            "created_by_id": provider_user_id(created_by),
            "data": data or {},
        }
        response = await self._request(
            "POST", self._channel_path(channel_id), json=body, allow_status=(409,)
        )
        if response.status_code == 409:
            existing = await self.get_channel(channel_id)
            if existing is None:
                raise ProviderRejectedException(
                    "Channel reported as existing but could not be read",
                    details={"channel_id": channel_id},
                )
            return existing

        return self._handle_from_payload(channel_id, response.json())

    async def add_members(self, channel_id: str, member_ids: List[int]) -> None:
        """채널 멤버 추가 (이미 존재하는 멤버는 무시)"""
        if not member_ids:
            return
        await self._request(
            "POST",
            f"{self._channel_path(channel_id)}/members",
            json={"add_members": [provider_user_id(member_id) for member_id in member_ids]},
        )

    async def remove_members(self, channel_id: str, member_ids: List[int]) -> None:
        """채널 멤버 제거 (이미 없는 멤버는 무시)"""
        if not member_ids:
            return
        await self._request(
            "POST",
            f"{self._channel_path(channel_id)}/members",
            json={"remove_members": [provider_user_id(member_id) for member_id in member_ids]},
        )

    async def update_member_roles(self, channel_id: str, roles: Dict[int, str]) -> None:
        """채널 멤버 역할 메타데이터 갱신"""
        if not roles:
            return
        assignments = [
            {
                "user_id": provider_user_id(user_id),
                "channel_role": PROVIDER_CHANNEL_ROLES.get(role, "channel_member"),
            }
            for user_id, role in roles.items()
        ]
        await self._request(
            "POST",
            f"{self._channel_path(channel_id)}/members",
            json={"assign_roles": assignments},
        )

    async def update_channel(self, channel_id: str, data: Dict[str, Any]) -> None:
        """채널 데이터 부분 갱신 (예: 삭제 시 frozen)"""
        await self._request("PATCH", self._channel_path(channel_id), json={"set": data})

    # =========================================================================
    # Users
    # =========================================================================

    async def upsert_user(self, user_id: int, name: Optional[str] = None, platform_role: Optional[str] = None) -> None:
        """사용자를 제공자에 반영 (플랫폼 역할을 제공자 역할로 매핑)"""
        user_key = provider_user_id(user_id)
        await self._request(
            "POST",
            "/users",
            json={
                "users": {
                    user_key: {
                        "id": user_key,
                        "name": name or user_key,
                        "role": map_provider_role(platform_role),
                    }
                }
            },
        )

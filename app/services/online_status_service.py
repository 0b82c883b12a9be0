"""
온라인 상태 관리 서비스

Redis를 사용하여 WebSocket 세션 사용자의 온라인 상태(presence)를 관리합니다.
Redis 장애는 로그만 남기고 소켓 세션을 끊지 않습니다.
"""

import json
from datetime import datetime
from typing import List, Optional
from app.database.redis import get_redis
from app.core.logging import get_logger

logger = get_logger(__name__)

# Redis 키 패턴
USER_ONLINE_KEY = "user:online:{user_id}"
USER_LAST_SEEN_KEY = "user:last_seen:{user_id}"
ONLINE_USERS_SET = "online_users"

# TTL 설정 (초)
ONLINE_STATUS_TTL = 300  # 5분 (ping 으로 연장)
LAST_SEEN_TTL = 86400 * 7  # 7일


class OnlineStatusService:
    """온라인 상태 관리 서비스"""

    @staticmethod
    async def set_user_online(user_id: int, session_id: Optional[str] = None) -> bool:
        """
        사용자를 온라인 상태로 설정

        Args:
            user_id: 사용자 ID
            session_id: WebSocket 세션 ID

        Returns:
            성공 여부
        """
        try:
            redis = await get_redis()
            current_time = datetime.utcnow().isoformat()

            pipe = redis.pipeline()
            pipe.setex(
                USER_ONLINE_KEY.format(user_id=user_id),
                ONLINE_STATUS_TTL,
                json.dumps({
                    "user_id": user_id,
                    "status": "online",
                    "last_activity": current_time,
                    "session_id": session_id
                })
            )
            pipe.sadd(ONLINE_USERS_SET, user_id)
            pipe.setex(USER_LAST_SEEN_KEY.format(user_id=user_id), LAST_SEEN_TTL, current_time)
            await pipe.execute()

            logger.info(f"User {user_id} set to online status", extra={
                "user_id": user_id,
                "session_id": session_id,
                "event_type": "user_online"
            })
            return True

        except Exception as e:
            logger.error(f"Failed to set user {user_id} online: {e}")
            return False

    @staticmethod
    async def set_user_offline(user_id: int) -> bool:
        """사용자를 오프라인 상태로 설정"""
        try:
            redis = await get_redis()
            current_time = datetime.utcnow().isoformat()

            pipe = redis.pipeline()
            pipe.delete(USER_ONLINE_KEY.format(user_id=user_id))
            pipe.srem(ONLINE_USERS_SET, user_id)
            pipe.setex(USER_LAST_SEEN_KEY.format(user_id=user_id), LAST_SEEN_TTL, current_time)
            await pipe.execute()

            logger.info(f"User {user_id} set to offline status", extra={
                "user_id": user_id,
                "event_type": "user_offline"
            })
            return True

        except Exception as e:
            logger.error(f"Failed to set user {user_id} offline: {e}")
            return False

    @staticmethod
    async def refresh_user_activity(user_id: int) -> bool:
        """온라인 TTL 연장 (ping)"""
        try:
            redis = await get_redis()
            return bool(await redis.expire(USER_ONLINE_KEY.format(user_id=user_id), ONLINE_STATUS_TTL))

        except Exception as e:
            logger.error(f"Failed to refresh activity for user {user_id}: {e}")
            return False

    @staticmethod
    async def get_online_user_ids(user_ids: List[int]) -> List[int]:
        """주어진 사용자 중 온라인인 사용자 ID 목록"""
        if not user_ids:
            return []

        try:
            redis = await get_redis()
            pipe = redis.pipeline()
            for user_id in user_ids:
                pipe.exists(USER_ONLINE_KEY.format(user_id=user_id))
            results = await pipe.execute()

            return [user_id for user_id, exists in zip(user_ids, results) if exists]

        except Exception as e:
            logger.error(f"Failed to get online status for users {user_ids}: {e}")
            return []

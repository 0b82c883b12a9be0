"""
키 단위 비동기 락 레지스트리

1:1 채팅방 생성 시 같은 사용자 쌍(pair_key)에 대한 요청을 프로세스 내에서 직렬화합니다.
프로세스 간 경쟁은 chat_rooms.pair_key 유니크 인덱스가 막습니다.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Dict


class KeyedLockRegistry:
    """키별 asyncio.Lock 을 대기자가 있는 동안만 보관"""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._holders: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str):
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._holders[key] = self._holders.get(key, 0) + 1

        try:
            async with lock:
                yield
        finally:
            self._holders[key] -= 1
            if self._holders[key] == 0:
                del self._holders[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)

    def is_locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return bool(lock and lock.locked())


# 프로세스 단위 기본 레지스트리
pair_locks = KeyedLockRegistry()

"""
User directory service layer.

채팅 코어가 사용하는 사용자 조회 경계입니다. 사용자 생성/수정은 이 서비스의 범위가 아닙니다.
"""

from typing import Optional, List, Iterable, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from app.models.users import User
from app.core.errors import UserNotFoundException


# =============================================================================
# User Lookups
# =============================================================================

async def find_user_by_id(db: AsyncSession, user_id: int) -> Optional[User]:
    """사용자 ID로 조회"""
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def find_users_by_ids(db: AsyncSession, user_ids: Iterable[int]) -> List[User]:
    """여러 사용자 ID로 조회 (존재하는 사용자만 반환)"""
    ids = list(set(user_ids))
    if not ids:
        return []

    result = await db.execute(select(User).where(User.id.in_(ids)))
    return list(result.scalars().all())


async def find_user_pair(db: AsyncSession, user_a_id: int, user_b_id: int) -> Tuple[User, User]:
    """
    두 사용자가 모두 존재하는지 확인하고 함께 반환

    Raises:
        UserNotFoundException: 어느 한쪽이라도 존재하지 않거나 비활성인 경우
    """
    users = {user.id: user for user in await find_users_by_ids(db, [user_a_id, user_b_id])}

    missing = [
        user_id for user_id in (user_a_id, user_b_id)
        if user_id not in users or not users[user_id].is_active
    ]
    if missing:
        raise UserNotFoundException(user_ids=missing)

    return users[user_a_id], users[user_b_id]


async def ensure_users_exist(db: AsyncSession, user_ids: List[int]) -> List[User]:
    """모든 대상 사용자가 존재하는지 확인 (멤버 추가 시 사용)"""
    users = await find_users_by_ids(db, user_ids)
    found = {user.id for user in users if user.is_active}

    missing = sorted(set(user_ids) - found)
    if missing:
        raise UserNotFoundException(user_ids=missing)

    return users

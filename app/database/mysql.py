"""
MySQL (SQLAlchemy async)

채팅방/멤버십의 진실의 원천. 사용자 테이블은 사용자 디렉터리 조회용으로만 사용합니다.
"""

from typing import AsyncGenerator
import logging
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy import text
from app.core.config import settings

Base = declarative_base()

engine = create_async_engine(
    settings.mysql_url,
    echo=settings.debug,
    pool_size=settings.mysql_pool_size,
    max_overflow=settings.mysql_max_overflow,
    pool_recycle=settings.mysql_pool_recycle_seconds,
    pool_pre_ping=True,
)

# 커밋 후에도 응답 직렬화에 객체를 그대로 사용하므로 만료시키지 않음
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False
)

logger = logging.getLogger(__name__)


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """요청 단위 DB 세션 의존성"""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception as e:
            await session.rollback()
            logger.error(f"Database session error: {e}")
            raise


async def init_mysql_db():
    """채팅 코어 테이블 생성 (users, chat_rooms, room_members, join_requests)"""
    try:
        from app.models import User, ChatRoom, RoomMember, JoinRequest  # noqa: F401

        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("MySQL tables ready: users, chat_rooms, room_members, join_requests")
    except Exception as e:
        logger.error(f"Failed to initialize MySQL database: {e}")
        raise


async def check_mysql_connection() -> bool:
    try:
        async with engine.connect() as conn:
            result = await conn.execute(text("SELECT 1"))
            return result.fetchone() is not None
    except Exception as e:
        logger.error(f"MySQL connection check failed: {e}")
        return False


async def close_mysql_db():
    await engine.dispose()
    logger.info("MySQL database connections closed")

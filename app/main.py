"""
Rental Chat Core - FastAPI Application

1:1/그룹/커뮤니티 채팅방 라이프사이클, 멤버십 일관성, 외부 채널 동기화, 실시간 세션을 담당하는 서비스
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator

from app.api import chat_room, health, websocket
from app.core.config import settings
from app.core.logging import get_logger, setup_logging
from app.database import init_databases, close_databases
from app.database.mysql import AsyncSessionLocal
from app.infrastructure.channel_provider import ChannelProviderGateway
from app.infrastructure.kafka import DomainEventProducer
from app.middleware.error_handler import register_exception_handlers
from app.middleware.logging_middleware import LoggingMiddleware
from app.services.room_cleanup_service import RoomCleanupMonitor
from app.services.room_events import RoomEventPublisher
from app.websockets.connection_manager import ConnectionManager

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle management"""
    # Startup
    setup_logging()
    logger.info(f"{settings.app_name} starting up...")

    await init_databases()

    producer = None
    if settings.kafka_enabled:
        producer = DomainEventProducer()
        try:
            await producer.start()
        except Exception as e:
            logger.error(f"Kafka producer unavailable, room events disabled: {e}")
            producer = None
    app.state.event_publisher = RoomEventPublisher(producer)

    gateway = ChannelProviderGateway()
    await gateway.init()
    app.state.channel_gateway = gateway

    app.state.connection_manager = ConnectionManager()

    cleanup_monitor = RoomCleanupMonitor(AsyncSessionLocal, gateway, app.state.event_publisher)
    await cleanup_monitor.start()

    yield

    # Shutdown
    logger.info(f"{settings.app_name} shutting down...")

    await cleanup_monitor.stop()
    await app.state.connection_manager.close_all()
    await gateway.shutdown()
    if producer is not None:
        await producer.stop()
    await close_databases()


app = FastAPI(
    title=settings.app_name,
    version=settings.version,
    lifespan=lifespan
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(LoggingMiddleware)

register_exception_handlers(app)

# Include routers
app.include_router(health.router)
app.include_router(chat_room.router)
app.include_router(websocket.router)

# Prometheus metrics
Instrumentator().instrument(app).expose(app)


@app.get("/")
async def root():
    return {
        "service": settings.app_name,
        "version": settings.version,
        "status": "running"
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug
    )

"""
통합 에러 처리

모든 예외를 {"error", "message", "details", "status_code"} 형식의 표준 응답으로 변환합니다.
운영 환경에서는 스택 트레이스나 외부 제공자 응답을 노출하지 않습니다.
"""

import traceback
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import DatabaseError, OperationalError
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.core.config import settings
from app.core.errors import (
    BaseCustomException,
    ValidationError,
    create_error_response,
    create_validation_error_response
)
from app.core.logging import get_logger

logger = get_logger(__name__)


async def custom_exception_handler(request: Request, exc: BaseCustomException):
    """커스텀 예외를 그대로 표준 형식으로 반환"""
    if exc.status_code >= 500:
        logger.warning(
            f"{exc.error} on {request.method} {request.url.path}: {exc.message}",
            extra={"event_type": "api_error", "error": exc.error}
        )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """일반 HTTPException을 표준 형식으로 변환"""
    error_response = create_error_response(
        "http_error",
        exc.detail if isinstance(exc.detail, str) else "HTTP error occurred",
        exc.status_code,
        {"detail": exc.detail} if not isinstance(exc.detail, str) else None
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=error_response.model_dump(),
        headers=getattr(exc, "headers", None)
    )


async def request_validation_handler(request: Request, exc: RequestValidationError):
    """요청 본문/파라미터 검증 에러"""
    validation_errors = []
    for error in exc.errors():
        field_name = ".".join(str(loc) for loc in error["loc"])
        validation_errors.append(
            ValidationError(
                field=field_name,
                message=error["msg"],
                value=error.get("input") if settings.debug else None
            )
        )

    error_response = create_validation_error_response(
        "Request validation failed",
        validation_errors
    )
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=error_response.model_dump()
    )


async def database_exception_handler(request: Request, exc: Exception):
    """MySQL 연결/작업 에러"""
    logger.error(
        f"Database error on {request.method} {request.url.path}: {type(exc).__name__}",
        extra={"event_type": "database_error"},
        exc_info=True
    )

    error_response = create_error_response(
        "database_error",
        "Database connection or operation failed",
        status.HTTP_503_SERVICE_UNAVAILABLE,
        {"detail": str(exc)} if settings.debug else None
    )
    return JSONResponse(
        status_code=error_response.status_code,
        content=error_response.model_dump()
    )


async def unhandled_exception_handler(request: Request, exc: Exception):
    """예상하지 못한 모든 에러"""
    logger.error(
        f"Unhandled exception on {request.method} {request.url.path}: {type(exc).__name__}: {exc}",
        extra={"event_type": "unhandled_exception"},
        exc_info=True
    )

    error_detail = None
    if settings.debug:
        error_detail = {
            "exception": str(exc),
            "type": type(exc).__name__,
            "traceback": traceback.format_exc()
        }

    error_response = create_error_response(
        "internal_server_error",
        "An unexpected error occurred",
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_detail
    )
    return JSONResponse(
        status_code=error_response.status_code,
        content=error_response.model_dump()
    )


def register_exception_handlers(app: FastAPI):
    """애플리케이션에 예외 핸들러 등록"""
    app.add_exception_handler(BaseCustomException, custom_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(OperationalError, database_exception_handler)
    app.add_exception_handler(DatabaseError, database_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

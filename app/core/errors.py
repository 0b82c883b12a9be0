from typing import Optional, Dict, Any, List
from fastapi import HTTPException, status
from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """표준 에러 응답 모델"""
    error: str
    message: str
    details: Optional[Dict[str, Any]] = None
    status_code: int


class ValidationError(BaseModel):
    """검증 에러 세부사항"""
    field: str
    message: str
    value: Optional[Any] = None


class ValidationErrorResponse(BaseModel):
    """검증 에러 응답 모델"""
    error: str = "validation_error"
    message: str
    validation_errors: List[ValidationError]
    status_code: int


# =============================================================================
# 커스텀 예외 클래스들
# =============================================================================

class BaseCustomException(HTTPException):
    """기본 커스텀 예외 클래스"""
    def __init__(
        self,
        status_code: int,
        error: str,
        message: str,
        details: Optional[Dict[str, Any]] = None
    ):
        self.error = error
        self.message = message
        self.details = details
        self.status_code = status_code
        super().__init__(status_code=status_code, detail=self.to_dict())

    def to_dict(self) -> Dict[str, Any]:
        """예외를 딕셔너리로 변환"""
        return {
            "error": self.error,
            "message": self.message,
            "details": self.details,
            "status_code": self.status_code
        }


class ValidationException(BaseCustomException):
    """입력 검증 실패 예외"""
    def __init__(
        self,
        message: str = "Validation failed",
        validation_errors: Optional[List[ValidationError]] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.validation_errors = validation_errors or []
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error="validation_error",
            message=message,
            details=details
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.error,
            "message": self.message,
            "validation_errors": [error.model_dump() for error in self.validation_errors],
            "status_code": self.status_code
        }


class InvalidRequestException(BaseCustomException):
    """잘못된 요청 예외 (예: 자기 자신과의 채팅)"""
    def __init__(
        self,
        message: str = "Invalid request",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            error="invalid_request",
            message=message,
            details=details
        )


class AuthenticationException(BaseCustomException):
    """인증 실패 예외"""
    def __init__(
        self,
        message: str = "Authentication failed",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            error="authentication_error",
            message=message,
            details=details
        )


class ForbiddenException(BaseCustomException):
    """권한 부족 예외"""
    def __init__(
        self,
        message: str = "Access denied",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            error="forbidden",
            message=message,
            details=details
        )


class ResourceNotFoundException(BaseCustomException):
    """리소스를 찾을 수 없음 예외"""
    def __init__(
        self,
        resource: str = "Resource",
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        error: str = "resource_not_found"
    ):
        if message is None:
            message = f"{resource} not found"

        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            error=error,
            message=message,
            details=details or {"resource": resource}
        )


class UserNotFoundException(ResourceNotFoundException):
    """사용자를 찾을 수 없음 예외"""
    def __init__(self, user_ids: Optional[List[int]] = None, message: Optional[str] = None):
        details = {"user_ids": user_ids} if user_ids else None
        super().__init__("User", message=message, details=details, error="user_not_found")


class RoomNotFoundException(ResourceNotFoundException):
    """채팅방을 찾을 수 없음 예외"""
    def __init__(self, room_id: Optional[int] = None, message: Optional[str] = None):
        details = {"room_id": room_id} if room_id is not None else None
        super().__init__("Chat room", message=message, details=details, error="room_not_found")


class JoinRequestNotFoundException(ResourceNotFoundException):
    """가입 요청을 찾을 수 없음 예외"""
    def __init__(self, request_id: Optional[int] = None, message: Optional[str] = None):
        details = {"request_id": request_id} if request_id is not None else None
        super().__init__("Join request", message=message, details=details, error="join_request_not_found")


class NoOpException(BaseCustomException):
    """아무 효과가 없는 작업 예외 (예: 이미 모두 멤버인 경우)"""
    def __init__(
        self,
        message: str = "Operation would have no effect",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            error="no_op",
            message=message,
            details=details
        )


class InvalidOperationException(BaseCustomException):
    """채팅방 크기/역할 불변식을 위반하는 작업 예외"""
    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            error="invalid_operation",
            message=message,
            details=details
        )


class StorageConflictException(BaseCustomException):
    """저장소 동시성 충돌을 복구하지 못한 경우의 예외 (재시도 가능)"""
    def __init__(
        self,
        message: str = "Concurrent update could not be resolved, please retry",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            error="database_error",
            message=message,
            details=details
        )


class ExternalServiceException(BaseCustomException):
    """외부 서비스 에러 예외"""
    def __init__(
        self,
        service: str,
        message: str = "External service error",
        details: Optional[Dict[str, Any]] = None,
        status_code: int = status.HTTP_502_BAD_GATEWAY,
        error: str = "external_service_error"
    ):
        super().__init__(
            status_code=status_code,
            error=error,
            message=f"{service}: {message}",
            details=details or {"service": service}
        )


class ProviderUnavailableException(ExternalServiceException):
    """채널 제공자 연결 실패/타임아웃 예외"""
    def __init__(self, message: str = "Channel provider unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__(
            "channel_provider",
            message=message,
            details=details,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            error="provider_unavailable"
        )


class ProviderRejectedException(ExternalServiceException):
    """채널 제공자가 요청을 거부한 경우의 예외"""
    def __init__(self, message: str = "Channel provider rejected the request", details: Optional[Dict[str, Any]] = None):
        super().__init__(
            "channel_provider",
            message=message,
            details=details,
            status_code=status.HTTP_502_BAD_GATEWAY,
            error="provider_rejected"
        )


# =============================================================================
# 에러 헬퍼 함수들
# =============================================================================

def create_error_response(
    error: str,
    message: str,
    status_code: int,
    details: Optional[Dict[str, Any]] = None
) -> ErrorResponse:
    """표준 에러 응답 생성"""
    return ErrorResponse(
        error=error,
        message=message,
        status_code=status_code,
        details=details
    )


def create_validation_error_response(
    message: str,
    validation_errors: List[ValidationError],
    status_code: int = status.HTTP_422_UNPROCESSABLE_ENTITY
) -> ValidationErrorResponse:
    """검증 에러 응답 생성"""
    return ValidationErrorResponse(
        message=message,
        validation_errors=validation_errors,
        status_code=status_code
    )


# =============================================================================
# 자주 사용되는 에러 팩토리 함수들
# =============================================================================

def user_not_found_error(user_id: Optional[int] = None):
    """사용자를 찾을 수 없음 에러"""
    return UserNotFoundException([user_id] if user_id else None)


def invalid_token_error():
    """잘못된 토큰 에러"""
    return AuthenticationException("Invalid or expired token")

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Dict, Any

from jose import JWTError, jwt

from app.core.config import settings


@dataclass(frozen=True)
class CredentialClaims:
    """검증된 자격 증명에서 추출한 사용자 식별 정보"""
    user_id: int
    role: Optional[str] = None


def create_access_token(data: Dict[str, Any],
                        expires_delta: Optional[timedelta] = None) -> str:
    """JWT 액세스 토큰 생성"""
    to_encode = data.copy()

    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(
            hours=settings.access_token_expire_hours)

    to_encode.update({"exp": expire, "type": "access"})
    encoded_jwt = jwt.encode(to_encode, settings.secret_key,
                             algorithm=settings.algorithm)
    return encoded_jwt


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    """JWT 액세스 토큰 디코드"""
    try:
        payload = jwt.decode(token, settings.secret_key,
                             algorithms=[settings.algorithm])
        # 액세스 토큰인지 확인
        if payload.get("type") != "access":
            return None
        return payload
    except JWTError:
        return None


def verify_credential(token: Optional[str]) -> Optional[CredentialClaims]:
    """
    Bearer 자격 증명 검증

    서명과 만료를 확인하고 사용자 ID/역할을 반환합니다.
    HTTP 인증 의존성과 WebSocket 인증이 동일하게 사용합니다.

    Returns:
        CredentialClaims 또는 유효하지 않으면 None
    """
    if not token:
        return None

    payload = decode_access_token(token)
    if not payload:
        return None

    subject = payload.get("sub")
    try:
        user_id = int(subject)
    except (TypeError, ValueError):
        return None
    if user_id <= 0:
        return None

    return CredentialClaims(user_id=user_id, role=payload.get("role"))

from typing import Optional
from pydantic import BaseModel, Field, ConfigDict


class UserSummary(BaseModel):
    """채팅방 멤버 응답에 포함되는 사용자 정보"""
    model_config = ConfigDict(from_attributes=True)

    id: int = Field(..., description="사용자 ID")
    username: str = Field(..., description="사용자명")
    email: Optional[str] = Field(None, description="이메일")
    display_name: Optional[str] = Field(None, description="표시명")
    role: Optional[str] = Field(None, description="플랫폼 역할")

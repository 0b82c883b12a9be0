from datetime import datetime
from sqlalchemy import Column, Integer, String, Text, DateTime, Boolean, ForeignKey
from sqlalchemy.orm import relationship
from app.database.mysql import Base


ROOM_TYPES = ("private", "group", "community")
ROOM_STATUSES = ("active", "deleted")


class ChatRoom(Base):
    __tablename__ = "chat_rooms"

    id = Column(Integer, primary_key=True, index=True)
    room_type = Column(String(20), nullable=False, index=True)  # private, group, community
    name = Column(String(100), nullable=True)
    description = Column(Text, nullable=True)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    status = Column(String(20), default="active", nullable=False)  # active, deleted
    is_active = Column(Boolean, default=True, index=True)
    # "{min}:{max}" of the two user ids, only while an active private room exists
    pair_key = Column(String(64), unique=True, nullable=True)
    member_count = Column(Integer, default=0, nullable=False)
    last_activity = Column(DateTime, default=datetime.utcnow)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    creator = relationship("User", foreign_keys=[created_by])
    members = relationship(
        "RoomMember",
        back_populates="room",
        lazy="selectin",
        order_by="[RoomMember.joined_at, RoomMember.id]",
        cascade="all, delete-orphan"
    )

    @property
    def member_ids(self):
        return [member.user_id for member in self.members]

    @property
    def metadata_info(self):
        return {"member_count": self.member_count, "last_activity": self.last_activity}

    def __repr__(self):
        return f"<ChatRoom(id={self.id}, room_type={self.room_type}, status={self.status}, members={self.member_count})>"

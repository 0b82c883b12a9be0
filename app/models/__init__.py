from .users import User
from .chat_rooms import ChatRoom
from .room_members import RoomMember
from .join_requests import JoinRequest

__all__ = [
    "User",
    "ChatRoom",
    "RoomMember",
    "JoinRequest",
]

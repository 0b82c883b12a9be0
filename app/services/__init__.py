"""
Services layer for data access and external communications.

This layer handles:
- Room store queries and mutations
- Private chat resolution and membership protocols
- Channel provider synchronization
- Presence and domain event publishing
"""

from . import room_store
from . import user_directory
from . import room_resolution_service
from . import membership_service
from . import channel_sync

__all__ = [
    "room_store",
    "user_directory",
    "room_resolution_service",
    "membership_service",
    "channel_sync"
]

"""
Channel Provider

외부 실시간 메시징 서비스 어댑터
"""

from .gateway import ChannelHandle, ChannelProviderGateway, map_provider_role

__all__ = [
    'ChannelHandle',
    'ChannelProviderGateway',
    'map_provider_role',
]

"""
Configuration module for the notification cascade
"""

from .redis import create_redis_connection, get_redis_url, test_redis_connection
from .settings import Settings, load_settings

__all__ = [
    'create_redis_connection',
    'get_redis_url',
    'test_redis_connection',
    'Settings',
    'load_settings'
]

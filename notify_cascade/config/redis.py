"""
Redis configuration for the notification cascade
"""
import logging
import os
from typing import Optional

import redis

logger = logging.getLogger("redis-config")


def get_redis_config(decode_responses: bool = True) -> dict:
    """Get Redis configuration from environment variables"""
    return {
        'host': os.getenv('REDIS_HOST', 'localhost'),
        'port': int(os.getenv('REDIS_PORT', '6379')),
        'db': int(os.getenv('REDIS_DB', '0')),
        'password': os.getenv('REDIS_PASSWORD'),
        'socket_timeout': int(os.getenv('REDIS_SOCKET_TIMEOUT', '5')),
        'socket_connect_timeout': int(os.getenv('REDIS_CONNECT_TIMEOUT', '5')),
        'decode_responses': decode_responses
    }


def create_redis_connection(decode_responses: bool = True) -> redis.Redis:
    """
    Create a Redis connection with proper configuration

    The tracker store and the appointment read model work with decoded strings.
    RQ stores pickled job data, so queue connections must pass
    ``decode_responses=False``.
    """
    redis_url = os.getenv('REDIS_URL')
    if redis_url:
        return redis.Redis.from_url(redis_url, decode_responses=decode_responses)

    config = get_redis_config(decode_responses=decode_responses)

    # Remove None values
    config = {k: v for k, v in config.items() if v is not None}

    return redis.Redis(**config)


def test_redis_connection(client: Optional[redis.Redis] = None) -> bool:
    """Test Redis connection and return True if successful"""
    try:
        r = client or create_redis_connection()
        r.ping()
        return True
    except redis.RedisError as e:
        logger.error(f"Redis connection failed: {e}")
        return False


# Redis URL for RQ (used by RQ workers)
def get_redis_url() -> str:
    """Get Redis URL for RQ workers"""
    redis_url = os.getenv('REDIS_URL')
    if redis_url:
        return redis_url

    config = get_redis_config()

    if config.get('password'):
        return f"redis://:{config['password']}@{config['host']}:{config['port']}/{config['db']}"
    else:
        return f"redis://{config['host']}:{config['port']}/{config['db']}"

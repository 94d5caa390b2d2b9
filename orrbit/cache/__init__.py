"""
Redis access used for cross-process coordination.
"""

from .redis_client import RedisClient, get_redis_client, close_redis_client

__all__ = ["RedisClient", "get_redis_client", "close_redis_client"]

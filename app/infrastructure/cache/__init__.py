"""
Cache infrastructure module.
"""
from .redis import RedisCache, close_redis, get_redis

__all__ = ["RedisCache", "close_redis", "get_redis"]

"""Cache package for Redis integration."""
from .redis_client import close_redis, get_redis, health_check, init_redis

__all__ = [
    "close_redis",
    "get_redis",
    "health_check",
    "init_redis",
]

## formflow/core/redis.py

# Third party imports
import redis

# Local imports
from formflow.core.config import settings


def create_redis_client(db: int = None) -> redis.Redis:
    """
    Build a redis client for the cache tier
    """
    return redis.Redis(
        host=settings.redis_host,
        port=settings.redis_port,
        username=settings.redis_username,
        password=settings.redis_password,
        db=settings.redis_cache_db if db is None else db,
        decode_responses=True,
        socket_timeout=2,
    )

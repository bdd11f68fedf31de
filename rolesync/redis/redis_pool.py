import threading

import redis
from redis.client import Redis

from rolesync.configs.app_configs import REDIS_DB_NUMBER
from rolesync.configs.app_configs import REDIS_HOST
from rolesync.configs.app_configs import REDIS_PASSWORD
from rolesync.configs.app_configs import REDIS_PORT
from rolesync.configs.app_configs import REDIS_SSL


class RedisPool:
    """Process wide connection pool, created lazily on first use."""

    _instance: "RedisPool | None" = None
    _lock = threading.Lock()

    def __init__(self) -> None:
        self._pool = redis.ConnectionPool(
            host=REDIS_HOST,
            port=REDIS_PORT,
            db=REDIS_DB_NUMBER,
            password=REDIS_PASSWORD or None,
            connection_class=redis.SSLConnection if REDIS_SSL else redis.Connection,
            max_connections=128,
            socket_keepalive=True,
            health_check_interval=30,
        )

    @classmethod
    def get_instance(cls) -> "RedisPool":
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    def get_client(self) -> Redis:
        return redis.Redis(connection_pool=self._pool)


def get_redis_client() -> Redis:
    return RedisPool.get_instance().get_client()

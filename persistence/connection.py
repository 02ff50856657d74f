"""
Mirror Redis Connection

Shared Redis client for the identity store. One pool per process; the
verified and unverified clients are cached separately.
"""

import os
import logging
from functools import lru_cache

import redis
from redis.exceptions import RedisError, AuthenticationError

logger = logging.getLogger(__name__)


@lru_cache(maxsize=2)
def get_redis_client(verify: bool = True) -> redis.Redis:
    """
    Return the cached Redis client for identity records.

    Environment:
    - REDIS_HOST: Hostname (default: localhost)
    - REDIS_PORT: Port (default: 6379)
    - REDIS_DB: Database index (default: 0)
    - REDIS_PASSWORD: Password (optional for a local kiosk install)

    With verify=False the client is returned without a ping, so callers
    can run degraded and let each operation fail on its own.

    Raises:
        RedisError: verify=True and the server is unreachable or rejects auth.
    """
    host = os.getenv("REDIS_HOST", "localhost")
    port = int(os.getenv("REDIS_PORT", 6379))
    db = int(os.getenv("REDIS_DB", 0))
    password = os.getenv("REDIS_PASSWORD") or None

    if password is None:
        logger.warning("REDIS_PASSWORD is not set; identity store connects without authentication.")

    pool = redis.ConnectionPool(
        host=host,
        port=port,
        db=db,
        password=password,
        decode_responses=True,  # Identity records are JSON text
        max_connections=10,
        socket_timeout=5.0,     # A stalled store must not stall a session
    )
    client = redis.Redis(connection_pool=pool)

    if not verify:
        logger.info(f"Identity store client created for {host}:{port}/{db} (unverified)")
        return client

    try:
        client.ping()
    except AuthenticationError:
        logger.critical("Identity store rejected credentials. Check REDIS_PASSWORD.")
        raise
    except RedisError as e:
        logger.critical(f"Identity store unreachable at {host}:{port}: {e}")
        raise

    logger.info(f"Connected to identity store at {host}:{port}/{db}")
    return client

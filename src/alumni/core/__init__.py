"""
Core module - Configuration, database, security, and infrastructure clients.
"""

from alumni.core.config import get_settings, settings
from alumni.core.database import Base, close_db, get_db, init_db
from alumni.core.redis import close_redis, init_redis, redis_status
from alumni.core.security import create_access_token, decode_token

__all__ = [
    # Config
    "settings",
    "get_settings",
    # Database
    "Base",
    "get_db",
    "init_db",
    "close_db",
    # Redis
    "init_redis",
    "close_redis",
    "redis_status",
    # Security
    "create_access_token",
    "decode_token",
]

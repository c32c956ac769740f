from presence.core.redis.service import RedisService

__all__ = ["RedisService"]

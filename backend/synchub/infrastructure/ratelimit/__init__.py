from .redis_token_bucket import RedisTokenBucketLimiter, ProcessLocalPacer

__all__ = ["RedisTokenBucketLimiter", "ProcessLocalPacer"]

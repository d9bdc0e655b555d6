# Distributed backends for plantflow

from .redis_backend import RedisWorkflowPersistence

__all__ = [
    "RedisWorkflowPersistence",
]

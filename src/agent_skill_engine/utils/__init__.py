"""Generic utilities: TTL/LRU cache and retry with exponential backoff."""

from agent_skill_engine.utils.cache import CacheManager, CacheStats
from agent_skill_engine.utils.retry import RetryConfig, RetryResult, RetryStrategy, retry

__all__ = ["CacheManager", "CacheStats", "RetryConfig", "RetryResult", "RetryStrategy", "retry"]

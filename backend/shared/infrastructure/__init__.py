"""
Infrastructure module: Redis pub/sub and logging context.

Provides:
- Redis connection pool, publisher and chat message schema (events/)
- Connection id propagation into log records (correlation.py)
"""

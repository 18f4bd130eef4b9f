"""
Redis Health Check.

Pings Redis through the relay's own pool, so a healthy result also means a
client could be checked out. Used by /health/detailed and `convo ping`.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from shared.config.logging import get_logger
from .broker_pool import BrokerPool

logger = get_logger(__name__)

DEFAULT_TIMEOUT = 3.0


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


@dataclass
class BrokerHealth:
    """Outcome of one broker ping."""

    status: HealthStatus
    latency_ms: float | None = None
    error: str | None = None
    pool: dict[str, Any] = field(default_factory=dict)

    @property
    def is_healthy(self) -> bool:
        return self.status == HealthStatus.HEALTHY

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"status": self.status.value, "component": "redis"}
        if self.latency_ms is not None:
            result["latency_ms"] = round(self.latency_ms, 2)
        if self.error:
            result["error"] = self.error
        if self.pool:
            result["pool"] = self.pool
        return result


async def _ping(pool: BrokerPool) -> None:
    async with pool.connection() as client:
        await client.ping()


async def check_broker_health(pool: BrokerPool, timeout: float = DEFAULT_TIMEOUT) -> BrokerHealth:
    """
    Ping Redis with a timeout.

    Never raises (except on cancellation): failures come back as an
    UNHEALTHY result carrying the error text.
    """
    start = time.perf_counter()
    try:
        await asyncio.wait_for(_ping(pool), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("Redis health check timed out", timeout=timeout)
        error = f"timeout after {timeout}s"
    except Exception as e:
        logger.warning("Redis health check failed", error=str(e))
        error = str(e)
    else:
        error = None
    latency_ms = (time.perf_counter() - start) * 1000

    return BrokerHealth(
        status=HealthStatus.UNHEALTHY if error else HealthStatus.HEALTHY,
        latency_ms=latency_ms,
        error=error,
        pool=pool.stats(),
    )

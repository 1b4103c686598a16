"""
Synthetic provider health checks.

Classifies a single bounded GET against a provider endpoint as
operational, degraded or unreachable.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple

import httpx

logger = logging.getLogger(__name__)

DEFAULT_HEALTH_TIMEOUT = 10.0


class HealthStatus(Enum):
    """Tri-state provider availability."""
    OPERATIONAL = "operational"
    DEGRADED = "degraded"
    UNREACHABLE = "unreachable"


@dataclass(frozen=True)
class HealthCheckResult:
    """Ephemeral result of one health check."""
    provider: str
    status: HealthStatus
    response_time: int  # milliseconds
    timestamp: int  # epoch milliseconds
    endpoint: str
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "provider": self.provider,
            "status": self.status.value,
            "responseTime": self.response_time,
            "timestamp": self.timestamp,
            "endpoint": self.endpoint,
        }
        if self.error is not None:
            data["error"] = self.error
        return data


def classify_status(status_code: int) -> Tuple[HealthStatus, Optional[str]]:
    """Map an HTTP status code to a health status and error text.

    2xx is operational, 5xx unreachable, anything else degraded.
    """
    if 200 <= status_code < 300:
        return HealthStatus.OPERATIONAL, None
    if status_code >= 500:
        return HealthStatus.UNREACHABLE, f"Server error: {status_code}"
    return HealthStatus.DEGRADED, f"HTTP {status_code}"


def _format_seconds(seconds: float) -> str:
    return f"{seconds:g}s"


async def perform_health_check(
    client: httpx.AsyncClient,
    provider: str,
    endpoint: str,
    timeout: float = DEFAULT_HEALTH_TIMEOUT,
) -> HealthCheckResult:
    """Issue one GET against a provider endpoint and classify the outcome.

    The request is cancelled once ``timeout`` seconds elapse. Response time
    covers request start to settled outcome in every branch. Never raises
    for transport problems; they become an unreachable result.

    Args:
        client: HTTP client used for the request
        provider: Provider display name
        endpoint: URL to probe
        timeout: Cancellation deadline in seconds

    Returns:
        HealthCheckResult
    """
    start = time.monotonic()
    error: Optional[str]
    try:
        response = await asyncio.wait_for(
            client.get(endpoint, headers={"Accept": "application/json"}),
            timeout=timeout,
        )
        status, error = classify_status(response.status_code)
    except asyncio.TimeoutError:
        status, error = HealthStatus.UNREACHABLE, f"Timed out after {_format_seconds(timeout)}"
    except httpx.HTTPError as e:
        status, error = HealthStatus.UNREACHABLE, str(e) or type(e).__name__

    response_time = int((time.monotonic() - start) * 1000)
    if status is not HealthStatus.OPERATIONAL:
        logger.info("Health check for %s at %s: %s (%s)", provider, endpoint, status.value, error)

    return HealthCheckResult(
        provider=provider,
        status=status,
        response_time=response_time,
        timestamp=int(time.time() * 1000),
        endpoint=endpoint,
        error=error,
    )

"""
Endpoint Selector

Ordered failover over RPC endpoint candidates:
1. Probe candidates strictly in priority order
2. Each probe fetches the chain height, racing a fixed timeout
3. The first candidate that answers wins, later ones are never contacted
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence

from loguru import logger


DEFAULT_PROBE_TIMEOUT_SECONDS = 5.0


@dataclass
class EndpointProbe:
    """Outcome of one liveness probe"""
    endpoint: str
    is_healthy: bool
    latency_ms: Optional[float] = None
    block_number: Optional[int] = None
    error_message: Optional[str] = None
    checked_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            'endpoint': self.endpoint,
            'healthy': self.is_healthy,
            'latency_ms': self.latency_ms,
            'block_number': self.block_number,
            'error': self.error_message,
        }

    def __repr__(self):
        status = "✓ HEALTHY" if self.is_healthy else "✗ UNHEALTHY"
        return f"EndpointProbe({self.endpoint}: {status})"


@dataclass
class EndpointSelection:
    """Tagged result of a selection pass"""
    attempts: List[EndpointProbe]
    endpoint: Optional[str] = None
    connection: Optional[object] = None

    @property
    def ok(self) -> bool:
        return self.connection is not None

    @property
    def error_message(self) -> str:
        if self.ok:
            return ""
        if not self.attempts:
            return "No endpoint candidates configured"
        failures = "; ".join(f"{a.endpoint}: {a.error_message}" for a in self.attempts)
        return f"No endpoint reachable ({len(self.attempts)} tried): {failures}"


async def _close_quietly(connection):
    try:
        await connection.close()
    except Exception as e:
        logger.debug(f"Error closing probe connection: {e}")


async def probe_endpoint(connection, endpoint: str, timeout: float) -> EndpointProbe:
    """Fetch the current block number from connection within timeout"""
    started = time.monotonic()
    try:
        block_number = await asyncio.wait_for(connection.block_number(), timeout=timeout)
    except asyncio.TimeoutError:
        return EndpointProbe(endpoint, False, error_message=f"timed out after {timeout}s")
    except Exception as e:
        return EndpointProbe(endpoint, False, error_message=str(e)[:200] or type(e).__name__)

    latency_ms = (time.monotonic() - started) * 1000
    return EndpointProbe(endpoint, True, latency_ms=round(latency_ms, 1), block_number=block_number)


async def select_endpoint(
    candidates: Sequence[str],
    connect: Callable[[str], object],
    timeout: float = DEFAULT_PROBE_TIMEOUT_SECONDS
) -> EndpointSelection:
    """
    Bind the first responsive endpoint

    Args:
        candidates: Endpoint URLs in priority order
        connect: Factory returning a connection for an endpoint
        timeout: Per-candidate probe timeout in seconds

    Returns:
        EndpointSelection (check .ok)
    """
    attempts: List[EndpointProbe] = []

    for index, endpoint in enumerate(candidates, start=1):
        logger.debug(f"Probing endpoint {index}/{len(candidates)}: {endpoint}")

        try:
            connection = connect(endpoint)
        except Exception as e:
            probe = EndpointProbe(endpoint, False, error_message=f"connect failed: {e}")
            attempts.append(probe)
            logger.warning(f"✗ {endpoint} rejected: {probe.error_message}")
            continue

        probe = await probe_endpoint(connection, endpoint, timeout)
        attempts.append(probe)

        if probe.is_healthy:
            logger.info(f"✓ Bound endpoint {endpoint} (block {probe.block_number}, {probe.latency_ms}ms)")
            return EndpointSelection(attempts=attempts, endpoint=endpoint, connection=connection)

        logger.warning(f"✗ Endpoint {endpoint} failed liveness probe: {probe.error_message}")
        await _close_quietly(connection)

    selection = EndpointSelection(attempts=attempts)
    logger.error(f"✗ {selection.error_message}")
    return selection

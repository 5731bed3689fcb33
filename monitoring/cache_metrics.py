from prometheus_client import Counter, Histogram
import structlog
import time
from functools import wraps
from typing import Callable

logger = structlog.get_logger()

# Cache operation metrics
CACHE_HITS = Counter(
    'rpc_cache_hits_total',
    'Total number of cache hits',
    ['tier', 'method']
)
CACHE_MISSES = Counter(
    'rpc_cache_misses_total',
    'Total number of cache misses',
    ['tier', 'method']
)
CACHE_STORES = Counter(
    'rpc_cache_stores_total',
    'Total number of responses written to a cache tier',
    ['tier', 'method']
)
CACHE_DECISIONS = Counter(
    'rpc_cache_decisions_total',
    'Eligibility decisions by method and outcome',
    ['method', 'outcome']
)
CACHE_ERRORS = Counter(
    'rpc_cache_errors_total',
    'Cache layer failures degraded to a skip',
    ['kind']
)
CACHE_OPERATION_DURATION = Histogram(
    'rpc_cache_operation_duration_seconds',
    'Duration of durable store operations',
    ['operation']
)
HEAD_PROBE_DURATION = Histogram(
    'rpc_cache_head_probe_duration_seconds',
    'Duration of chain head probes'
)


def record_decision(method: str, cacheable: bool) -> None:
    CACHE_DECISIONS.labels(method=method, outcome='cacheable' if cacheable else 'skip').inc()


def record_error(kind: str) -> None:
    CACHE_ERRORS.labels(kind=kind).inc()


def track_store_operation(operation: str):
    """Decorator to time durable store operations and count failures."""
    def decorator(func: Callable):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            start_time = time.time()
            try:
                return await func(*args, **kwargs)
            except Exception as e:
                CACHE_ERRORS.labels(kind=f'store_{operation}').inc()
                logger.error(
                    "store_operation_failed",
                    operation=operation,
                    error=str(e)
                )
                raise
            finally:
                CACHE_OPERATION_DURATION.labels(operation=operation).observe(time.time() - start_time)
        return wrapper
    return decorator

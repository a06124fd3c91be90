"""FFLogs v2 API access: GraphQL documents, the quota-aware client and retry helpers."""

from .client import FFLogsClient
from .resilience import run_with_retries

__all__ = [
    "FFLogsClient",
    "run_with_retries",
]

"""
Observability module - Logging, Metrics, and Tracing.
"""

from vault_access.observability.logging import get_logger, setup_logging
from vault_access.observability.metrics import metrics
from vault_access.observability.tracing import setup_tracing

__all__ = [
    "get_logger",
    "setup_logging",
    "metrics",
    "setup_tracing",
]

"""
Scheduler Module

Per-run port routing and the per-kind node executors.
"""

from .router import UNAVAILABLE, PortRouter
from .executors import (
    DEFAULT_EXECUTORS,
    NodeContext,
    NodeExecutor,
    NodeOutcome,
    NodeStatus,
    get_executor,
)

__all__ = [
    "DEFAULT_EXECUTORS",
    "NodeContext",
    "NodeExecutor",
    "NodeOutcome",
    "NodeStatus",
    "PortRouter",
    "UNAVAILABLE",
    "get_executor",
]

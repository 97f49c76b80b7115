"""
Runtime Module

Run coordination and the command-line entry point.
"""

from .coordinator import NodeResult, RunCoordinator, RunResult

__all__ = [
    "NodeResult",
    "RunCoordinator",
    "RunResult",
]

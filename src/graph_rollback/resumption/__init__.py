"""Resumption module for execution recovery.

This module provides:
- Checkpoint analysis
- Graph re-validation against a checkpoint
- Re-entry into the execution loop
"""

from .analyzer import ExecutionAnalyzer
from .manager import PreparedResume, ResumptionManager

__all__ = [
    "ExecutionAnalyzer",
    "ResumptionManager",
    "PreparedResume",
]

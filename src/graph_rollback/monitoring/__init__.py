"""Monitoring module for execution streaming.

This module provides:
- Execution event definitions
- Event fan-out to stream sinks and typed subscriptions
- Live execution metrics
- Per-execution logging
"""

from .broadcaster import (
    EventBroadcaster,
    ExecutionEmitter,
    QueueSink,
    SinkClosedError,
    StreamRegistry,
    StreamSink,
    Subscription,
)
from .events import EventFactory, EventType, ExecutionEvent
from .monitor import ExecutionLogger, ExecutionMonitor

__all__ = [
    # Events
    "EventType",
    "ExecutionEvent",
    "EventFactory",
    # Broadcasting
    "EventBroadcaster",
    "StreamRegistry",
    "StreamSink",
    "QueueSink",
    "SinkClosedError",
    "ExecutionEmitter",
    "Subscription",
    # Monitor
    "ExecutionMonitor",
    "ExecutionLogger",
]

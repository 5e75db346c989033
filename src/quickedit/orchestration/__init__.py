"""Session orchestration: queueing, history, external-change detection."""

from quickedit.orchestration.events import EVENT_NAMES, EditEvent, EventBus
from quickedit.orchestration.history import EditHistory
from quickedit.orchestration.monitor import (
    ExternalChangeMonitor,
    ExternalChangeSource,
    InMemoryChangeSource,
    SurfaceRemoved,
)
from quickedit.orchestration.orchestrator import EditOrchestrator
from quickedit.orchestration.queue import EditQueue, QueueStatistics

__all__ = [
    "EVENT_NAMES",
    "EditEvent",
    "EditHistory",
    "EditOrchestrator",
    "EditQueue",
    "EventBus",
    "ExternalChangeMonitor",
    "ExternalChangeSource",
    "InMemoryChangeSource",
    "QueueStatistics",
    "SurfaceRemoved",
]

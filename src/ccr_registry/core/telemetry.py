"""
Structured telemetry for registry operations.
[CTX:PBI-1:1-6:TELEM]

This module provides structured logging capabilities for understanding:
- Which resources a scan discovered, removed or failed to process
- When the registry degraded to empty because of corruption
- Identifier injections written into resource files
- Registry saves and rejected configuration changes
"""
import json
import logging
import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class TelemetryLevel(Enum):
    """Telemetry verbosity levels."""
    INFO = "info"
    DEBUG = "debug"


class EventKind(Enum):
    """Registry event types."""
    AGENT_DISCOVERED = "agent_discovered"
    AGENT_REMOVED = "agent_removed"
    WORKFLOW_DISCOVERED = "workflow_discovered"
    WORKFLOW_REMOVED = "workflow_removed"
    RESOURCE_FAILED = "resource_failed"
    RESOURCE_SKIPPED = "resource_skipped"
    ID_INJECTED = "id_injected"
    REGISTRY_SAVED = "registry_saved"
    REGISTRY_DEGRADED = "registry_degraded"
    PROJECT_REGISTERED = "project_registered"
    CONFIG_CHANGED = "config_changed"


# Kinds that are logged at INFO even when the recorder is not in DEBUG mode
_NOTABLE = {
    EventKind.AGENT_DISCOVERED.value,
    EventKind.AGENT_REMOVED.value,
    EventKind.WORKFLOW_DISCOVERED.value,
    EventKind.WORKFLOW_REMOVED.value,
    EventKind.RESOURCE_FAILED.value,
    EventKind.REGISTRY_DEGRADED.value,
    EventKind.PROJECT_REGISTERED.value,
}


# [CTX:PBI-1:1-6:TELEM] Telemetry event structure
@dataclass
class RegistryEvent:
    """
    A single telemetry event capturing registry activity.

    Attributes:
        timestamp: ISO 8601 timestamp of event
        kind: Event type (see EventKind)
        project_id: Project the event relates to, if any
        resource_id: Agent or workflow identifier, if known
        resource_name: File or workflow name
        path: Filesystem path involved
        detail: Free-form detail (error message, counts)
    """
    timestamp: str
    kind: str
    project_id: Optional[str] = None
    resource_id: Optional[str] = None
    resource_name: Optional[str] = None
    path: Optional[str] = None
    detail: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert event to dictionary for logging, dropping empty fields."""
        return {k: v for k, v in asdict(self).items() if v is not None}

    def to_json(self) -> str:
        """Convert event to JSON string."""
        return json.dumps(self.to_dict(), default=str)

    def to_keyvalue(self) -> str:
        """Convert event to key=value format."""
        return " ".join(f"{key}={value}" for key, value in self.to_dict().items())


# [CTX:PBI-1:1-6:TELEM] In-memory statistics tracker
@dataclass
class TelemetryStats:
    """
    Aggregated statistics for telemetry analysis.

    Useful for tests and runtime monitoring.
    """
    total_events: int = 0
    events_by_kind: Dict[str, int] = field(default_factory=dict)
    failures: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert stats to dictionary."""
        return {
            "total_events": self.total_events,
            "events_by_kind": dict(self.events_by_kind),
            "failures": self.failures,
        }


# [CTX:PBI-1:1-6:TELEM] Main telemetry recorder
class TelemetryRecorder:
    """
    Records and emits structured telemetry for registry operations.

    Features:
    - Structured logging in JSON or key=value format
    - Configurable verbosity (info/debug)
    - Optional in-memory statistics collection
    - Thread-safe operation
    """

    def __init__(
        self,
        level: TelemetryLevel = TelemetryLevel.INFO,
        format_json: bool = True,
        collect_stats: bool = False,
        log: Optional[logging.Logger] = None,
    ):
        """
        Initialize telemetry recorder.

        Args:
            level: Logging verbosity level
            format_json: If True, log as JSON; otherwise use key=value
            collect_stats: If True, collect in-memory statistics
            log: Logger to emit to (defaults to this module's logger)
        """
        self.level = level
        self.format_json = format_json
        self.collect_stats = collect_stats
        self.log = log or logger

        self._stats = TelemetryStats()
        self._stats_lock = threading.Lock()

        # Event history (for testing)
        self._events: List[RegistryEvent] = []
        self._events_lock = threading.Lock()

    def record(self, event: RegistryEvent) -> None:
        """
        Record a telemetry event.

        Args:
            event: Event to record
        """
        payload = event.to_json() if self.format_json else event.to_keyvalue()
        log_message = f"[registry] {payload}"

        if self.level == TelemetryLevel.DEBUG:
            self.log.debug(log_message)
        elif event.kind in _NOTABLE:
            self.log.info(log_message)
        else:
            self.log.debug(log_message)

        if self.collect_stats:
            with self._stats_lock:
                self._stats.total_events += 1
                self._stats.events_by_kind[event.kind] = (
                    self._stats.events_by_kind.get(event.kind, 0) + 1
                )
                if event.kind == EventKind.RESOURCE_FAILED.value:
                    self._stats.failures += 1

        with self._events_lock:
            self._events.append(event)

    def get_stats(self) -> TelemetryStats:
        """Get current statistics snapshot."""
        with self._stats_lock:
            return TelemetryStats(
                total_events=self._stats.total_events,
                events_by_kind=self._stats.events_by_kind.copy(),
                failures=self._stats.failures,
            )

    def reset_stats(self) -> None:
        """Reset statistics."""
        with self._stats_lock:
            self._stats = TelemetryStats()

    def get_events(self, kind: Optional[EventKind] = None) -> List[RegistryEvent]:
        """Get recorded events, optionally filtered by kind (for testing)."""
        with self._events_lock:
            if kind is None:
                return self._events.copy()
            return [e for e in self._events if e.kind == kind.value]

    def clear_events(self) -> None:
        """Clear event history."""
        with self._events_lock:
            self._events.clear()


# [CTX:PBI-1:1-6:TELEM] Global telemetry recorder instance
_global_recorder: Optional[TelemetryRecorder] = None
_recorder_lock = threading.Lock()


def get_recorder() -> TelemetryRecorder:
    """
    Get the global telemetry recorder instance.

    Creates a default recorder if none exists.
    """
    global _global_recorder

    if _global_recorder is None:
        with _recorder_lock:
            if _global_recorder is None:
                _global_recorder = TelemetryRecorder()

    return _global_recorder


def set_recorder(recorder: TelemetryRecorder) -> None:
    """
    Set the global telemetry recorder instance.

    Args:
        recorder: Recorder instance to use globally
    """
    global _global_recorder

    with _recorder_lock:
        _global_recorder = recorder


def create_event(
    kind: EventKind,
    project_id: Optional[str] = None,
    resource_id: Optional[str] = None,
    resource_name: Optional[str] = None,
    path: Optional[str] = None,
    detail: Optional[str] = None,
) -> RegistryEvent:
    """
    Helper to create a telemetry event with current timestamp.

    Args:
        kind: Event type
        project_id: Project identifier
        resource_id: Agent or workflow identifier
        resource_name: File or workflow name
        path: Filesystem path
        detail: Extra detail

    Returns:
        RegistryEvent ready for recording
    """
    return RegistryEvent(
        timestamp=datetime.now(timezone.utc).isoformat(),
        kind=kind.value,
        project_id=project_id,
        resource_id=resource_id,
        resource_name=resource_name,
        path=str(path) if path is not None else None,
        detail=detail,
    )


def configure_logging(level: str = "info") -> None:
    """Set the package logger level from a configuration string."""
    logging.getLogger("ccr_registry").setLevel(getattr(logging, level.upper(), logging.INFO))

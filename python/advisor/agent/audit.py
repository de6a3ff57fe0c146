"""
Audit Log

Structured record of every thought, action, observation, reflection, error
and recommendation in a session. Events go to one or more sinks; a sink that
raises is logged and skipped so auditing can never fail a turn.
"""
import json
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from threading import Lock
from typing import Any, Dict, List, Optional, Sequence

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    THOUGHT = "thought"
    ACTION = "action"
    OBSERVATION = "observation"
    REFLECTION = "reflection"
    ERROR = "error"
    RECOMMENDATION = "recommendation"


_PREFIX = {
    EventKind.THOUGHT: "[THINK]",
    EventKind.ACTION: "[ACT]",
    EventKind.OBSERVATION: "[OBSERVE]",
    EventKind.REFLECTION: "[REFLECT]",
    EventKind.ERROR: "[ERROR]",
    EventKind.RECOMMENDATION: "[RECOMMEND]",
}


@dataclass
class AuditEvent:
    session_id: str
    event_kind: EventKind
    payload: Dict[str, Any]
    timestamp: datetime = field(default_factory=datetime.utcnow)
    # cost, latency_ms, model
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "timestamp": self.timestamp.isoformat(),
            "event_kind": self.event_kind.value,
            "payload": self.payload,
            "metadata": self.metadata,
        }


class AuditSink(ABC):

    @abstractmethod
    def write(self, event: AuditEvent) -> None:
        pass


class LoggingAuditSink(AuditSink):
    """Writes events through the standard logger with component prefixes."""

    def __init__(self, name: str = "advisor.audit"):
        self._logger = logging.getLogger(name)

    def write(self, event: AuditEvent) -> None:
        level = logging.WARNING if event.event_kind == EventKind.ERROR else logging.INFO
        summary = json.dumps(event.payload, default=str)
        if len(summary) > 300:
            summary = summary[:297] + "..."
        self._logger.log(
            level,
            f"{_PREFIX[event.event_kind]} [{event.session_id}] {summary}",
            extra={"session_id": event.session_id, "event_kind": event.event_kind.value},
        )


class InMemoryAuditSink(AuditSink):
    """Keeps events per session for inspection and export."""

    def __init__(self, max_events_per_session: int = 1000):
        self.max_events_per_session = max_events_per_session
        self._lock = Lock()
        self._events: Dict[str, List[AuditEvent]] = defaultdict(list)

    def write(self, event: AuditEvent) -> None:
        with self._lock:
            events = self._events[event.session_id]
            events.append(event)
            if len(events) > self.max_events_per_session:
                del events[0]

    def get_session_logs(self, session_id: str) -> List[AuditEvent]:
        with self._lock:
            return list(self._events.get(session_id, []))

    def export_logs(self, session_id: str) -> str:
        return json.dumps([e.to_dict() for e in self.get_session_logs(session_id)], indent=2)

    def clear(self, session_id: str) -> None:
        with self._lock:
            self._events.pop(session_id, None)

    def get_stats(self, session_id: Optional[str] = None) -> Dict[str, Any]:
        with self._lock:
            if session_id is not None:
                events = list(self._events.get(session_id, []))
            else:
                events = [e for evs in self._events.values() for e in evs]
        by_kind: Dict[str, int] = defaultdict(int)
        total_cost = 0.0
        latencies = []
        for e in events:
            by_kind[e.event_kind.value] += 1
            total_cost += float(e.metadata.get("cost", 0.0) or 0.0)
            if "latency_ms" in e.metadata:
                latencies.append(float(e.metadata["latency_ms"]))
        return {
            "total_events": len(events),
            "by_kind": dict(by_kind),
            "total_cost": round(total_cost, 6),
            "avg_latency_ms": sum(latencies) / len(latencies) if latencies else 0.0,
        }


class AuditLogger:

    def __init__(self, sinks: Optional[Sequence[AuditSink]] = None):
        self.sinks: List[AuditSink] = list(sinks) if sinks is not None else [LoggingAuditSink()]

    def emit(
        self,
        session_id: str,
        kind: EventKind,
        payload: Dict[str, Any],
        **metadata,
    ) -> AuditEvent:
        event = AuditEvent(
            session_id=session_id,
            event_kind=kind,
            payload=payload,
            metadata={k: v for k, v in metadata.items() if v is not None},
        )
        for sink in self.sinks:
            try:
                sink.write(event)
            except Exception as e:
                logger.error(f"Audit sink {type(sink).__name__} failed: {e}")
        return event

    def thought(self, session_id: str, payload: Dict[str, Any], **metadata) -> AuditEvent:
        return self.emit(session_id, EventKind.THOUGHT, payload, **metadata)

    def action(self, session_id: str, payload: Dict[str, Any], **metadata) -> AuditEvent:
        return self.emit(session_id, EventKind.ACTION, payload, **metadata)

    def observation(self, session_id: str, payload: Dict[str, Any], **metadata) -> AuditEvent:
        return self.emit(session_id, EventKind.OBSERVATION, payload, **metadata)

    def reflection(self, session_id: str, payload: Dict[str, Any], **metadata) -> AuditEvent:
        return self.emit(session_id, EventKind.REFLECTION, payload, **metadata)

    def error(self, session_id: str, payload: Dict[str, Any], **metadata) -> AuditEvent:
        return self.emit(session_id, EventKind.ERROR, payload, **metadata)

    def recommendation(self, session_id: str, payload: Dict[str, Any], **metadata) -> AuditEvent:
        return self.emit(session_id, EventKind.RECOMMENDATION, payload, **metadata)

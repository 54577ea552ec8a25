from __future__ import annotations

import json
import os
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from queue import Queue, Full, Empty
from typing import Any, Dict, List, Optional

DEFAULT_SCHEMA_VERSION = "1.0"

# Optional global bus so the engine can publish without threading it through signatures
_GLOBAL_BUS: Optional["EventBus"] = None


def set_global_bus(bus: Optional["EventBus"]) -> None:
    global _GLOBAL_BUS
    _GLOBAL_BUS = bus


def get_global_bus() -> Optional["EventBus"]:
    return _GLOBAL_BUS


def publish_event(
    *,
    stage: str,
    status: str,
    instance_id: Optional[str] = None,
    property_name: Optional[str] = None,
    component_type: Optional[str] = None,
    duration_ms: Optional[int] = None,
    details: Optional[Dict[str, Any]] = None,
    error: Optional[Dict[str, Any]] = None,
) -> None:
    """Module-level helper to publish events to the global bus (if configured).

    A no-op without a bus. Bus errors never reach the caller.
    """
    bus = _GLOBAL_BUS
    if bus is None:
        return
    try:
        bus.publish(
            stage=stage,
            status=status,
            instance_id=instance_id,
            property_name=property_name,
            component_type=component_type,
            duration_ms=duration_ms,
            details=details,
            error=error,
        )
    except Exception:
        # Diagnostics must not break resolution
        pass


class timed_stage:
    """Context manager publishing started/completed/failed events for a stage.

    Usage:
        with timed_stage("schema.register", component_type="donut"):
            registry.register_schema(schema)
    """

    def __init__(
        self,
        stage: str,
        *,
        component_type: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.stage = stage
        self.component_type = component_type
        self.details = details
        self._start_ms: Optional[int] = None

    def __enter__(self) -> "timed_stage":
        self._start_ms = int(time.time() * 1000)
        publish_event(stage=self.stage, status="started", component_type=self.component_type, details=self.details)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):  # type: ignore
        duration_ms = int(time.time() * 1000) - (self._start_ms or 0)
        error = None
        if exc_type is not None:
            error = {"code": exc_type.__name__, "message": str(exc_val)}
        publish_event(
            stage=self.stage,
            status="failed" if error else "completed",
            component_type=self.component_type,
            duration_ms=duration_ms,
            details=self.details,
            error=error,
        )
        return False


@dataclass
class DiagnosticEvent:
    """Structured diagnostic event (fallbacks, registrations, rebinds).

    Decoupled from debug logging; designed for a console feed and JSONL files.
    """

    schema_version: str = DEFAULT_SCHEMA_VERSION
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    seq_no: int = 0
    ts: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    session_id: str = "-"

    stage: str = "-"   # e.g. schema.register, resolution.fallback, binding.changed
    status: str = "-"  # started|completed|failed|fallback

    instance_id: Optional[str] = None
    property_name: Optional[str] = None
    component_type: Optional[str] = None

    duration_ms: Optional[int] = None
    details: Optional[Dict[str, Any]] = None
    error: Optional[Dict[str, Any]] = None


class EventObserver:
    """Observer interface for handling diagnostic events."""

    # Whether the bus should flush this observer while its queue is idle.
    periodic_flush: bool = True

    def handle(self, event: DiagnosticEvent) -> None:  # pragma: no cover
        raise NotImplementedError


class StdoutObserver(EventObserver):
    """Emit one concise line per event to stdout."""

    def handle(self, event: DiagnosticEvent) -> None:
        target = ".".join(p for p in (event.instance_id, event.property_name) if p)
        duration = f" duration_ms={event.duration_ms}" if event.duration_ms is not None else ""
        msg = f"{event.ts} | session={event.session_id} | {event.stage} {event.status}{duration}"
        if target:
            msg += f" | {target}"
        if event.details:
            brief = {k: event.details[k] for k in list(event.details.keys())[:4]}
            msg += f" | details={brief}"
        if event.error:
            brief_err = {k: event.error.get(k) for k in ("code", "message") if k in event.error}
            msg += f" | error={brief_err}"
        print(msg)


class MemoryObserver(EventObserver):
    """Keeps every event in memory; used by editors' diagnostics panes and tests."""

    periodic_flush: bool = False

    def __init__(self) -> None:
        self.events: List[DiagnosticEvent] = []
        self._lock = threading.Lock()

    def handle(self, event: DiagnosticEvent) -> None:
        with self._lock:
            self.events.append(event)

    def by_stage(self, stage: str) -> List[DiagnosticEvent]:
        with self._lock:
            return [e for e in self.events if e.stage == stage]


class JSONLObserver(EventObserver):
    """Buffered JSONL writer.

    Layout: <base_path>/<YYYY-MM-DD>/<session_id>.jsonl. Writes once per
    flush, appending to the file.
    """

    periodic_flush: bool = False

    def __init__(self, base_path: str, session_id: str, *, debug_errors: bool = False) -> None:
        self.debug_errors = debug_errors
        self._buf: List[str] = []
        date_str = datetime.now(timezone.utc).strftime("%Y-%m-%d")
        self.dir_path = os.path.join(base_path, date_str)
        self.file_path = os.path.join(self.dir_path, f"{session_id}.jsonl")

    def handle(self, event: DiagnosticEvent) -> None:
        try:
            rec = json.dumps(dict(event.__dict__), ensure_ascii=False, default=repr)
        except (TypeError, ValueError):
            rec = json.dumps({
                "schema_version": event.schema_version,
                "ts": event.ts,
                "session_id": event.session_id,
                "stage": event.stage,
                "status": event.status,
            })
        self._buf.append(rec)

    def flush(self) -> None:
        if not self._buf:
            return
        try:
            os.makedirs(self.dir_path, exist_ok=True)
            with open(self.file_path, "a", encoding="utf-8") as f:
                f.write("\n".join(self._buf) + "\n")
            self._buf.clear()
        except OSError as e:
            if self.debug_errors:
                print(f"[JSONLObserver] flush failed: {type(e).__name__}: {e}")


class EventBus:
    """Event bus with a background dispatcher thread and a bounded queue.

    Producers never block: when the queue is full the event is dropped and
    counted.
    """

    def __init__(
        self,
        *,
        session_id: Optional[str] = None,
        observers: Optional[List[EventObserver]] = None,
        queue_size: int = 10_000,
    ) -> None:
        self.session_id = str(session_id) if session_id is not None else str(uuid.uuid4())
        self._observers: List[EventObserver] = observers or []
        self._q: Queue[DiagnosticEvent] = Queue(maxsize=max(1, queue_size))
        self._seq_no = 0
        self._seq_lock = threading.Lock()
        self._running = False
        self._worker: Optional[threading.Thread] = None
        self.dropped = 0

    def _deliver(self, evt: DiagnosticEvent) -> None:
        for obs in self._observers:
            try:
                obs.handle(evt)
            except Exception:
                # Isolate observer failures
                pass

    def _flush_observers(self, *, periodic: bool) -> None:
        for obs in self._observers:
            if periodic and getattr(obs, "periodic_flush", True) is False:
                continue
            flush = getattr(obs, "flush", None)
            if callable(flush):
                try:
                    flush()
                except Exception:
                    pass

    def _dispatch_loop(self) -> None:
        while self._running:
            try:
                evt = self._q.get(timeout=0.5)
            except Empty:
                self._flush_observers(periodic=True)
                continue
            self._deliver(evt)

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._worker = threading.Thread(target=self._dispatch_loop, name="propbind_event_bus", daemon=True)
        self._worker.start()

    def shutdown(self) -> None:
        if not self._running:
            return
        self._running = False
        if self._worker is not None and self._worker.is_alive():
            self._worker.join(timeout=2.0)
        while True:
            try:
                evt = self._q.get_nowait()
            except Empty:
                break
            self._deliver(evt)
        self._flush_observers(periodic=False)
        self._worker = None

    def publish(
        self,
        *,
        stage: str,
        status: str,
        instance_id: Optional[str] = None,
        property_name: Optional[str] = None,
        component_type: Optional[str] = None,
        duration_ms: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
        error: Optional[Dict[str, Any]] = None,
    ) -> None:
        with self._seq_lock:
            self._seq_no += 1
            seq_no = self._seq_no
        evt = DiagnosticEvent(
            seq_no=seq_no,
            session_id=self.session_id,
            stage=stage,
            status=status,
            instance_id=instance_id,
            property_name=property_name,
            component_type=component_type,
            duration_ms=duration_ms,
            details=details,
            error=error,
        )
        try:
            self._q.put_nowait(evt)
        except Full:
            self.dropped += 1


def _env_flag(name: str, default: str) -> str:
    val = os.getenv(name)
    return val if val not in (None, "") else default


def build_default_bus(*, session_id: Optional[str] = None) -> Optional[EventBus]:
    """Construct an EventBus from environment variables.

    PROPBIND_EVENTS_ENABLED: "true" | "false" (default: "true")
    PROPBIND_EVENTS_TRANSPORTS: comma list of stdout, jsonl (default: "stdout")
    PROPBIND_EVENTS_JSONL_PATH: base path for jsonl (default: "./propbind_events")
    PROPBIND_EVENTS_QUEUE_SIZE: int (default: 10000)
    PROPBIND_EVENTS_DEBUG_ERRORS: "true" | "false" (default: "false")
    """
    enabled = _env_flag("PROPBIND_EVENTS_ENABLED", "true").lower() == "true"
    if not enabled:
        return None

    session_id = session_id or str(uuid.uuid4())
    transports = [s.strip() for s in _env_flag("PROPBIND_EVENTS_TRANSPORTS", "stdout").split(",") if s.strip()]
    try:
        q_size = int(_env_flag("PROPBIND_EVENTS_QUEUE_SIZE", "10000"))
    except ValueError:
        q_size = 10000
    debug_errors = _env_flag("PROPBIND_EVENTS_DEBUG_ERRORS", "false").lower() == "true"

    observers: List[EventObserver] = []
    if "stdout" in transports:
        observers.append(StdoutObserver())
    if "jsonl" in transports:
        observers.append(JSONLObserver(
            base_path=_env_flag("PROPBIND_EVENTS_JSONL_PATH", "./propbind_events"),
            session_id=session_id,
            debug_errors=debug_errors,
        ))

    return EventBus(session_id=session_id, observers=observers, queue_size=q_size)

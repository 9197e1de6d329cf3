import logging
from dataclasses import dataclass, field
from typing import Optional

logger = logging.getLogger(__name__)

# Browser field name -> PageEvent attribute
_FIELDS = {
    "type": "type",
    "code": "code",
    "key": "key",
    "ctrlKey": "ctrl",
    "shiftKey": "shift",
    "altKey": "alt",
    "metaKey": "meta",
    "clientX": "client_x",
    "clientY": "client_y",
    "innerWidth": "view_width",
    "innerHeight": "view_height",
    "hidden": "hidden",
    "fullscreen": "fullscreen",
    "timeStamp": "timestamp",
}


@dataclass
class PageEvent:
    """A browser event forwarded to Python, with DOM-style cancellation flags."""
    type: str
    code: str = ""
    key: str = ""
    ctrl: bool = False
    shift: bool = False
    alt: bool = False
    meta: bool = False
    client_x: Optional[float] = None
    client_y: Optional[float] = None
    view_width: Optional[float] = None
    view_height: Optional[float] = None
    hidden: bool = False
    fullscreen: Optional[bool] = None
    # Seconds on the browser clock
    timestamp: Optional[float] = None
    default_prevented: bool = field(default=False, compare=False)
    propagation_stopped: bool = field(default=False, compare=False)

    @classmethod
    def from_dict(cls, data: dict) -> "PageEvent":
        kwargs = {}
        for src, dst in _FIELDS.items():
            if src in data:
                kwargs[dst] = data[src]
            elif dst in data:
                kwargs[dst] = data[dst]
        if "type" not in kwargs:
            raise ValueError("Page event without a type")
        return cls(**kwargs)

    def prevent_default(self):
        self.default_prevented = True

    def stop_propagation(self):
        self.propagation_stopped = True


class EventTarget:
    """Listener registry. Capture listeners run before bubble listeners."""

    def __init__(self):
        self._listeners = []

    def add_listener(self, event_type: str, handler, capture: bool = False):
        """Register a handler and return its disposer."""
        entry = (event_type, handler, capture)
        self._listeners.append(entry)

        def remove():
            if entry in self._listeners:
                self._listeners.remove(entry)

        return remove

    def listener_count(self, event_type: str = None) -> int:
        return sum(1 for t, _, _ in self._listeners if event_type is None or t == event_type)

    def dispatch(self, event: PageEvent) -> PageEvent:
        matching = [e for e in self._listeners if e[0] == event.type]
        ordered = [e for e in matching if e[2]] + [e for e in matching if not e[2]]
        for _, handler, _ in ordered:
            if event.propagation_stopped:
                break
            try:
                handler(event)
            except Exception:
                logger.exception("Listener for %s failed", event.type)
        return event


class BridgeInbox:
    """Picks the new events out of the browser bridge's component value.

    The bridge resends every event until its seq is acknowledged through
    `ack`, so one value may repeat events that were already taken. Seqs are
    per bridge instance; a reloaded bridge starts again from 1.
    """

    def __init__(self):
        self.bridge = None
        self.last_seq = 0

    @property
    def ack(self) -> dict:
        return {"bridge": self.bridge, "seq": self.last_seq}

    def take(self, value) -> list:
        if not value:
            return []
        if value.get("bridge") != self.bridge:
            self.bridge = value.get("bridge")
            self.last_seq = 0
        fresh = sorted((e for e in value.get("events", []) if e.get("seq", 0) > self.last_seq),
                       key=lambda e: e["seq"])
        if fresh:
            self.last_seq = fresh[-1]["seq"]
        return fresh

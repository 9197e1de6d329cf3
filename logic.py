import enum
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Optional

logger = logging.getLogger(__name__)

TAB_SWITCH = "tab-switch"
CAMERA_LOOK_AWAY = "camera-look-away"
WARNING_TYPES = (TAB_SWITCH, CAMERA_LOOK_AWAY)


@dataclass
class Thresholds:
    """Monitoring policy. All durations in seconds."""
    max_warnings: int = 3
    dedup_window: float = 3.0
    tick_interval: float = 0.5
    no_face_grace: float = 5.0
    no_eyes_grace: float = 7.0
    not_looking_grace: float = 10.0
    calibration: float = 0.0
    continuous_look_away: float = 60.0
    watchdog: float = 5.0


class MonitorState(enum.Enum):
    IDLE = "idle"
    MONITORING = "monitoring"
    WARNING = "warning"
    TERMINATED = "terminated"


@dataclass
class DetectionStatus:
    face_detected: bool = False
    eyes_detected: bool = False
    looking_at_camera: bool = False

    def as_dict(self):
        return {
            "faceDetected": self.face_detected,
            "eyesDetected": self.eyes_detected,
            "lookingAtCamera": self.looking_at_camera,
        }


@dataclass
class ViolationEvent:
    type: str
    observed_at: float
    detail: str = ""


class ViolationAggregator:
    """Single writer of the warning counter.

    Drops events of a type seen less than `dedup_window` seconds after the last
    accepted event of that type, and fires `on_interview_terminated` exactly
    once when the counter reaches `max_warnings`. Nothing is accepted after
    that.
    """

    def __init__(self, on_warning, on_interview_terminated, max_warnings: int = 3,
                 dedup_window: float = 3.0, clock=time.monotonic):
        if max_warnings < 1:
            raise ValueError("max_warnings must be at least 1")
        self.on_warning = on_warning
        self.on_interview_terminated = on_interview_terminated
        self.max_warnings = max_warnings
        self.dedup_window = dedup_window
        self.clock = clock
        self._lock = threading.RLock()
        self._last_accepted = {}
        self.warning_count = 0
        self.terminated = False

    def raise_violation(self, violation_type: str, detail: str = "") -> bool:
        if violation_type not in WARNING_TYPES:
            raise ValueError(f"Unknown violation type: {violation_type}")
        with self._lock:
            if self.terminated:
                logger.debug("Ignoring %s after termination", violation_type)
                return False
            now = self.clock()
            last = self._last_accepted.get(violation_type)
            if last is not None and now - last < self.dedup_window:
                logger.debug("Dropping duplicate %s (%.2fs after last)", violation_type, now - last)
                return False
            self._last_accepted[violation_type] = now
            self.warning_count += 1
            count = self.warning_count
            terminate = count >= self.max_warnings
            if terminate:
                self.terminated = True

            event = ViolationEvent(violation_type, now, detail)
            logger.info("Warning %d/%d: %s %s", count, self.max_warnings, violation_type, detail)
            try:
                self.on_warning(event, count)
            except Exception:
                logger.exception("on_warning callback failed")
            if terminate:
                logger.warning("Warning limit reached, terminating interview")
                try:
                    self.on_interview_terminated()
                except Exception:
                    logger.exception("on_interview_terminated callback failed")
            return True


class ProctorState:
    """Camera-branch timing state machine.

    Each detection tick picks the most severe unmet condition and arms the one
    camera grace timer for it; a fully compliant tick cancels the timer. A
    separate long-running look-away period raises one extra warning.
    """

    TIMER_KEY = "camera"

    def __init__(self, thresholds: Thresholds, timers, raise_violation, clock=time.monotonic):
        self.t = thresholds
        self.timers = timers
        self.raise_violation = raise_violation
        self.clock = clock
        self.away_start: Optional[float] = None
        self.away_warned = False

    def reset_away(self):
        self.away_start = None
        self.away_warned = False

    def reset(self):
        self.timers.cancel(self.TIMER_KEY)
        self.reset_away()

    def update(self, status: DetectionStatus, calibrating: bool = False):
        now = self.clock()

        if not status.face_detected:
            reason, grace = "No face", self.t.no_face_grace
        elif not status.eyes_detected:
            reason, grace = "Eyes not visible", self.t.no_eyes_grace
        elif not status.looking_at_camera:
            reason, grace = "Looking away", self.t.not_looking_grace
        else:
            self.timers.cancel(self.TIMER_KEY)
            self.reset_away()
            return "OK", "Normal", 0.0

        if calibrating:
            return "OK", f"{reason} (calibrating)", 0.0

        detail = f"{reason} for {grace:.0f}s"
        self.timers.start(self.TIMER_KEY, grace, lambda: self.raise_violation(CAMERA_LOOK_AWAY, detail))

        if self.away_start is None:
            self.away_start = now
            self.away_warned = False
        dt = now - self.away_start
        if not self.away_warned and dt >= self.t.continuous_look_away:
            self.away_warned = True
            self.raise_violation(CAMERA_LOOK_AWAY, f"Continuously away for {dt:.0f}s")
        return "GRACE", reason, dt


@dataclass
class MonitorSnapshot:
    """Read-only view handed to the host for rendering."""
    state: MonitorState = MonitorState.IDLE
    warning_count: int = 0
    max_warnings: int = 3
    is_monitoring: bool = False
    camera_available: bool = False
    calibrating: bool = False
    detection_stalled: bool = False
    detection_status: DetectionStatus = field(default_factory=DetectionStatus)
    reason: str = ""
    seconds: float = 0.0

import logging
import threading
from contextlib import ExitStack
from dataclasses import replace

from detectors.focus_guard import FocusGuard, GuardPolicy
from detectors.frame_sampler import CameraUnavailable, FrameSampler, StreamCamera
from detectors.presence_heuristic import HeuristicThresholds, PresenceClassifier
from logic import (
    DetectionStatus,
    MonitorSnapshot,
    MonitorState,
    ProctorState,
    Thresholds,
    ViolationAggregator,
)
from page_events import EventTarget, PageEvent
from timers import GraceTimers, RecurringTimer, ThreadingScheduler

logger = logging.getLogger(__name__)


class InterviewMonitor:
    """Proctoring monitor for one interview session.

    The host supplies `on_warning(type, count)` and `on_interview_terminated()`,
    feeds camera frames into `video_sink` and browser events into `dispatch()`,
    and must call `stop_camera_monitoring()` on every way out of the interview.
    """

    def __init__(self, on_warning, on_interview_terminated, max_warnings: int = None,
                 enabled: bool = True, thresholds: Thresholds = None,
                 heuristics: HeuristicThresholds = None, guard_policy: GuardPolicy = None,
                 camera=None, scheduler=None, page: EventTarget = None, on_violation=None):
        self.t = thresholds or Thresholds()
        if max_warnings is not None:
            self.t = replace(self.t, max_warnings=max_warnings)
        self.on_warning = on_warning
        self.on_interview_terminated = on_interview_terminated
        self.on_violation = on_violation

        self.scheduler = scheduler or ThreadingScheduler()
        self.camera = camera or StreamCamera()
        self.video_sink = self.camera.sink
        self.sampler = FrameSampler(self.video_sink)
        self.classifier = PresenceClassifier(heuristics)
        self.page = page or EventTarget()
        self.timers = GraceTimers(self.scheduler)

        self.aggregator = ViolationAggregator(
            self._handle_warning,
            self._handle_terminated,
            max_warnings=self.t.max_warnings,
            dedup_window=self.t.dedup_window,
            clock=self.scheduler.now,
        )
        self.proctor = ProctorState(self.t, self.timers, self.aggregator.raise_violation, clock=self.scheduler.now)
        self.guard = FocusGuard(guard_policy or GuardPolicy(), self.timers,
                                self.aggregator.raise_violation, clock=self.scheduler.now)
        self._ticker = RecurringTimer(self.scheduler, self.t.tick_interval, self._tick)

        self._lock = threading.RLock()
        self._listeners = None
        self._generation = 0
        self._enabled = enabled
        self.state = MonitorState.IDLE
        self.is_monitoring = False
        self.camera_available = False
        self.detection_status = DetectionStatus()
        self.detection_stalled = False
        self._started_at = None
        self._last_result_at = None
        self._reason = ""
        self._seconds = 0.0

    @property
    def warning_count(self) -> int:
        return self.aggregator.warning_count

    @property
    def max_warnings(self) -> int:
        return self.t.max_warnings

    @property
    def canvas(self):
        return self.sampler.canvas

    @property
    def calibrating(self) -> bool:
        if not self.camera_available or self._started_at is None:
            return False
        return self.scheduler.now() - self._started_at < self.t.calibration

    @property
    def enabled(self) -> bool:
        return self._enabled

    @enabled.setter
    def enabled(self, value: bool):
        self._enabled = value
        if not value and self.is_monitoring:
            self.stop_camera_monitoring()

    def start_camera_monitoring(self) -> bool:
        with self._lock:
            if not self._enabled or self.is_monitoring:
                return False
            if self.state is MonitorState.TERMINATED:
                logger.info("Interview already terminated, not restarting monitoring")
                return False

            self.is_monitoring = True
            self.state = MonitorState.WARNING if self.warning_count else MonitorState.MONITORING

            stack = ExitStack()
            self.guard.attach(self.page, stack)
            stack.callback(self.page.add_listener("pagehide", self._on_page_exit))
            stack.callback(self.page.add_listener("beforeunload", self._on_page_exit))
            self._listeners = stack

            try:
                self.camera.open()
            except CameraUnavailable as e:
                logger.warning("Camera unavailable (%s): %s. Monitoring focus only.", e.reason, e)
                self.camera_available = False
                return True
            except Exception:
                logger.exception("Camera acquisition failed. Monitoring focus only.")
                self.camera_available = False
                return True

            self.camera_available = True
            self._started_at = self.scheduler.now()
            self._last_result_at = None
            self.classifier.reset()
            self._ticker.start()
            logger.info("Camera monitoring started")
            return True

    def stop_camera_monitoring(self):
        with self._lock:
            self._generation += 1
            self._ticker.stop()
            self.timers.cancel_all()
            self.proctor.reset_away()

            stack, self._listeners = self._listeners, None
            if stack is not None:
                try:
                    stack.close()
                except Exception:
                    logger.exception("Error removing page listeners")

            try:
                self.camera.release()
            except Exception:
                logger.exception("Error releasing camera")

            self.classifier.reset()
            self.detection_status = DetectionStatus()
            self.detection_stalled = False
            self.camera_available = False
            self._started_at = None
            self._reason, self._seconds = "", 0.0

            was_monitoring = self.is_monitoring
            self.is_monitoring = False
            if self.state is not MonitorState.TERMINATED:
                self.state = MonitorState.IDLE
            if was_monitoring:
                logger.info("Monitoring stopped")

    def dispatch(self, event) -> PageEvent:
        """Route a browser event (PageEvent or its dict form) to the listeners."""
        if not isinstance(event, PageEvent):
            event = PageEvent.from_dict(event)
        return self.page.dispatch(event)

    def snapshot(self) -> MonitorSnapshot:
        return MonitorSnapshot(
            state=self.state,
            warning_count=self.warning_count,
            max_warnings=self.max_warnings,
            is_monitoring=self.is_monitoring,
            camera_available=self.camera_available,
            calibrating=self.calibrating,
            detection_stalled=self.detection_stalled,
            detection_status=self.detection_status,
            reason=self._reason,
            seconds=self._seconds,
        )

    def _on_page_exit(self, event: PageEvent):
        logger.info("Page %s, releasing camera", event.type)
        self.stop_camera_monitoring()

    def _tick(self):
        with self._lock:
            if not self.is_monitoring:
                return
            generation = self._generation
        now = self.scheduler.now()
        try:
            frame = self.sampler.sample()
            if frame is None:
                self._check_watchdog(now)
                return
            status = self.classifier.classify(frame)
        except Exception:
            logger.exception("Detection tick failed")
            return

        with self._lock:
            if not self.is_monitoring or generation != self._generation:
                return
            self._last_result_at = now
            if self.detection_stalled:
                self.detection_stalled = False
                logger.info("Detection resumed")
            self.detection_status = status

        _, self._reason, self._seconds = self.proctor.update(status, calibrating=self.calibrating)
        with self._lock:
            stopped = not self.is_monitoring or generation != self._generation
        if stopped:
            # stop_camera_monitoring() ran during update()
            self.proctor.reset()
            self._reason, self._seconds = "", 0.0

    def _check_watchdog(self, now: float):
        last = self._last_result_at if self._last_result_at is not None else self._started_at
        if last is None or self.detection_stalled:
            return
        if now - last > self.t.watchdog:
            self.detection_stalled = True
            logger.warning("No camera frames classified for %.1fs, check camera view", now - last)

    def _handle_warning(self, event, count: int):
        if self.state is not MonitorState.TERMINATED:
            self.state = MonitorState.WARNING
        try:
            self.on_warning(event.type, count)
        except Exception:
            logger.exception("on_warning callback failed")
        if self.on_violation is not None:
            try:
                self.on_violation(event, count)
            except Exception:
                logger.exception("on_violation callback failed")

    def _handle_terminated(self):
        self.state = MonitorState.TERMINATED
        self._ticker.stop()
        self.timers.cancel_all()
        self.on_interview_terminated()

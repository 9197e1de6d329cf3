import logging
import threading
import time

import cv2
import numpy as np

logger = logging.getLogger(__name__)


class CameraUnavailable(Exception):
    """Camera could not be acquired. `reason` is one of REASONS."""

    REASONS = ("permission-denied", "not-found", "busy", "failed")

    def __init__(self, reason: str, message: str = ""):
        self.reason = reason if reason in self.REASONS else "failed"
        super().__init__(message or self.reason)


class VideoSink:
    """Latest-frame holder shared between the frame producer and the sampler."""

    def __init__(self):
        self._lock = threading.Lock()
        self._frame = None
        self.pushed_at = None
        self.accepting = True

    def push(self, frame_bgr):
        with self._lock:
            if not self.accepting:
                return
            self._frame = frame_bgr
            self.pushed_at = time.monotonic()

    def latest(self):
        with self._lock:
            return self._frame

    @property
    def ready(self) -> bool:
        frame = self.latest()
        return frame is not None and frame.ndim >= 2 and frame.shape[0] > 0 and frame.shape[1] > 0

    def clear(self):
        with self._lock:
            self._frame = None
            self.pushed_at = None


class StreamCamera:
    """Camera whose frames are pushed in by the host (e.g. a WebRTC callback)."""

    def __init__(self, sink: VideoSink = None):
        self.sink = sink or VideoSink()

    def open(self):
        self.sink.accepting = True

    def release(self):
        self.sink.accepting = False
        self.sink.clear()


class OpenCVCamera:
    """Local webcam read on a background thread into a VideoSink."""

    def __init__(self, index: int = 0, width: int = 640, height: int = 480, sink: VideoSink = None):
        self.index = index
        self.width = width
        self.height = height
        self.sink = sink or VideoSink()
        self.cap = None
        self._stop = threading.Event()
        self._thread = None

    def open(self):
        cap = cv2.VideoCapture(self.index)
        if not cap.isOpened():
            cap.release()
            raise CameraUnavailable("not-found", f"Could not open camera {self.index}")
        cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
        ok, frame = cap.read()
        if not ok:
            cap.release()
            raise CameraUnavailable("busy", f"Camera {self.index} opened but returned no frame")

        self.cap = cap
        self.sink.accepting = True
        self.sink.push(frame)
        self._stop.clear()
        self._thread = threading.Thread(target=self._read_loop, name="camera-reader", daemon=True)
        self._thread.start()

    def _read_loop(self):
        failing = False
        while not self._stop.is_set():
            ok, frame = self.cap.read()
            if not ok:
                if not failing:
                    logger.warning("Camera read failure, retrying")
                    failing = True
                time.sleep(0.1)
                continue
            if failing:
                logger.info("Camera reads recovered")
                failing = False
            self.sink.push(frame)

    def release(self):
        self._stop.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=1.0)
        self._thread = None
        if self.cap is not None:
            self.cap.release()
            self.cap = None
        self.sink.accepting = False
        self.sink.clear()


class FrameSampler:
    """Draws the sink's latest frame into a reusable RGBA canvas."""

    def __init__(self, sink: VideoSink):
        self.sink = sink
        self.canvas = None

    def sample(self):
        """Return the RGBA canvas, or None when the feed is not ready."""
        frame = self.sink.latest()
        if frame is None or frame.ndim < 2 or frame.shape[0] == 0 or frame.shape[1] == 0:
            return None

        h, w = frame.shape[:2]
        if self.canvas is None or self.canvas.shape[:2] != (h, w):
            self.canvas = np.empty((h, w, 4), dtype=np.uint8)

        if frame.ndim == 2:
            cv2.cvtColor(frame, cv2.COLOR_GRAY2RGBA, dst=self.canvas)
        elif frame.shape[2] == 4:
            cv2.cvtColor(frame, cv2.COLOR_BGRA2RGBA, dst=self.canvas)
        else:
            cv2.cvtColor(frame, cv2.COLOR_BGR2RGBA, dst=self.canvas)
        return self.canvas

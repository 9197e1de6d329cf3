"""Replay a recorded interview video through the monitor on the video's own clock.

Usage: python -m scripts.replay_session recording.mp4 [--max-warnings 3]
"""
import argparse
import logging
from pathlib import Path

import cv2

from detectors.frame_sampler import StreamCamera
from logic import Thresholds
from monitor import InterviewMonitor
from timers import ManualScheduler
from violation_log import ViolationLog

LOG_OUT = Path("logs/replay_violations.csv")
DEFAULT_FPS = 25.0


def replay(video_path, thresholds: Thresholds = None, log: ViolationLog = None):
    """Return ([(seconds, type, count, detail), ...], terminated_at_or_None)."""
    scheduler = ManualScheduler()
    warnings = []
    terminated = []

    def on_violation(event, count):
        warnings.append((scheduler.now(), event.type, count, event.detail))
        if log is not None:
            log.append(event.type, count, event.detail, ts=f"{scheduler.now():.2f}s")

    monitor = InterviewMonitor(
        lambda kind, count: None,
        lambda: terminated.append(scheduler.now()),
        thresholds=thresholds,
        camera=StreamCamera(),
        scheduler=scheduler,
        on_violation=on_violation,
    )

    cap = cv2.VideoCapture(str(video_path))
    if not cap.isOpened():
        raise SystemExit(f"Could not open {video_path}")
    fps = cap.get(cv2.CAP_PROP_FPS) or DEFAULT_FPS

    monitor.start_camera_monitoring()
    idx = 0
    try:
        while not terminated:
            ok, frame = cap.read()
            if not ok:
                break
            monitor.video_sink.push(frame)
            idx += 1
            scheduler.advance_to(idx / fps)
    finally:
        monitor.stop_camera_monitoring()
        cap.release()
    return warnings, (terminated[0] if terminated else None)


def main():
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("video", type=Path)
    parser.add_argument("--max-warnings", type=int, default=3)
    parser.add_argument("--calibration", type=float, default=0.0)
    parser.add_argument("--log", type=Path, default=LOG_OUT)
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO)
    thresholds = Thresholds(max_warnings=args.max_warnings, calibration=args.calibration)
    warnings, terminated_at = replay(args.video, thresholds, ViolationLog(args.log))

    for seconds, kind, count, detail in warnings:
        print(f"{seconds:8.2f}s  #{count}  {kind:<17} {detail}")
    if terminated_at is not None:
        print(f"Interview would have been terminated at {terminated_at:.2f}s")
    else:
        print(f"{len(warnings)} warning(s), no termination")
    print(f"Log written to {args.log}")


if __name__ == "__main__":
    main()

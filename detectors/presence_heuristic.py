from dataclasses import dataclass

import numpy as np

from logic import DetectionStatus


@dataclass
class HeuristicThresholds:
    """Empirical constants of the presence heuristic; recalibrate per camera/lighting."""
    stride: int = 8
    dark_brightness: float = 100.0
    edge_delta: float = 30.0
    uniform_spread: float = 12.0
    center_radius: float = 0.3
    motion_delta: int = 30
    skin_min_brightness: float = 50.0
    skin_max_brightness: float = 240.0
    empty_uniform_ratio: float = 0.8
    empty_variance: float = 15.0
    empty_skin_ratio: float = 0.02
    min_skin_ratio: float = 0.05
    min_variance: float = 20.0
    min_brightness: float = 30.0
    max_brightness: float = 190.0
    max_uniform_ratio: float = 0.75
    min_dark_ratio: float = 0.08
    min_center_activity: float = 0.12


@dataclass
class FrameStats:
    samples: int = 0
    brightness: float = 0.0
    variance: float = 0.0
    skin_ratio: float = 0.0
    dark_ratio: float = 0.0
    center_activity: float = 0.0
    motion_ratio: float = 0.0
    edge_ratio: float = 0.0
    uniform_ratio: float = 0.0
    empty: bool = True


def _usable(frame) -> bool:
    return (
        frame is not None
        and getattr(frame, "ndim", 0) == 3
        and frame.shape[0] > 0
        and frame.shape[1] > 0
        and frame.shape[2] >= 3
    )


def frame_stats(frame, previous=None, t: HeuristicThresholds = None) -> FrameStats:
    """Aggregate pixel statistics over a coarse grid of an RGB(A) frame."""
    t = t or HeuristicThresholds()
    if not _usable(frame):
        return FrameStats()

    h, w = frame.shape[:2]
    s = max(1, int(t.stride))
    ys = np.arange(0, h, s)
    xs = np.arange(0, w, s)
    sub = frame[::s, ::s, :3].astype(np.int16)
    n = sub.shape[0] * sub.shape[1]
    if n == 0:
        return FrameStats()

    r, g, b = sub[..., 0], sub[..., 1], sub[..., 2]
    brightness = sub.sum(axis=2) / 3.0
    spread = sub.max(axis=2) - sub.min(axis=2)

    # Skin: warm, flesh and olive tone rules inside a brightness window
    in_window = (brightness > t.skin_min_brightness) & (brightness < t.skin_max_brightness)
    warm = (r > g) & (g > b) & (r - b > 20)
    flesh = (r > 95) & (g > 40) & (b > 20) & (r - g > 15) & (r > b)
    tone = (r > b) & (g > b) & (np.abs(r - g) <= 25) & (r - b > 15)
    skin = in_window & (warm | flesh | tone)

    dark = brightness < t.dark_brightness
    uniform = spread < t.uniform_spread

    up = frame[np.ix_(np.maximum(ys - 1, 0), xs)][..., :3].astype(np.int16).sum(axis=2) / 3.0
    left = frame[np.ix_(ys, np.maximum(xs - 1, 0))][..., :3].astype(np.int16).sum(axis=2) / 3.0
    edge = (np.abs(brightness - up) > t.edge_delta) | (np.abs(brightness - left) > t.edge_delta)

    cy, cx = h / 2.0, w / 2.0
    radius = t.center_radius * min(h, w)
    center = ((ys[:, None] - cy) ** 2 + (xs[None, :] - cx) ** 2) <= radius ** 2

    motion = np.zeros_like(dark)
    if _usable(previous) and previous.shape[:2] == frame.shape[:2]:
        prev = previous[::s, ::s, :3].astype(np.int16)
        motion = np.abs(sub - prev).sum(axis=2) > t.motion_delta

    active = skin | dark | motion

    stats = FrameStats(
        samples=int(n),
        brightness=float(brightness.mean()),
        variance=float(spread.mean()),
        skin_ratio=float(skin.sum()) / n,
        dark_ratio=float(dark.sum()) / n,
        center_activity=float((center & active).sum()) / n,
        motion_ratio=float(motion.sum()) / n,
        edge_ratio=float(edge.sum()) / n,
        uniform_ratio=float(uniform.sum()) / n,
    )
    stats.empty = stats.uniform_ratio > t.empty_uniform_ratio or (
        stats.variance < t.empty_variance and stats.skin_ratio < t.empty_skin_ratio
    )
    return stats


def decide(stats: FrameStats, t: HeuristicThresholds = None) -> DetectionStatus:
    t = t or HeuristicThresholds()
    if stats.samples == 0:
        return DetectionStatus()
    face = (
        stats.skin_ratio > t.min_skin_ratio
        and stats.variance > t.min_variance
        and t.min_brightness < stats.brightness < t.max_brightness
        and stats.uniform_ratio < t.max_uniform_ratio
        and not stats.empty
    )
    eyes = face and stats.dark_ratio > t.min_dark_ratio
    looking = eyes and stats.center_activity > t.min_center_activity
    return DetectionStatus(face, eyes, looking)


def classify(frame, previous=None, thresholds: HeuristicThresholds = None) -> DetectionStatus:
    return decide(frame_stats(frame, previous, thresholds), thresholds)


class PresenceClassifier:
    """Stateful wrapper that keeps one previous frame for the motion check."""

    def __init__(self, thresholds: HeuristicThresholds = None):
        self.t = thresholds or HeuristicThresholds()
        self.previous = None
        self.last_stats = FrameStats()

    def reset(self):
        self.previous = None
        self.last_stats = FrameStats()

    def classify(self, frame) -> DetectionStatus:
        if not _usable(frame):
            return DetectionStatus()
        stats = frame_stats(frame, self.previous, self.t)
        self.last_stats = stats
        # The sampler reuses its canvas, so keep our own copy
        self.previous = np.array(frame, copy=True)
        return decide(stats, self.t)

import numpy as np
import pytest

from timers import GraceTimers, ManualScheduler

SKIN = (200, 140, 110)
DARK = (20, 20, 20)
GRAY = (120, 120, 120)


def rgba(height=240, width=320, color=SKIN):
    frame = np.zeros((height, width, 4), dtype=np.uint8)
    frame[..., :3] = color
    frame[..., 3] = 255
    return frame


def looking_frame():
    """Skin-toned frame with a dark block in the middle: face, eyes, centred."""
    frame = rgba()
    frame[72:168, 96:224, :3] = DARK
    return frame


def looking_away_frame():
    """Face and eyes present but the centre of the image is flat gray."""
    frame = rgba()
    frame[0:40, :, :3] = DARK
    frame[40:201, 80:241, :3] = GRAY
    return frame


def no_eyes_frame():
    return rgba()


def empty_frame():
    return rgba(color=GRAY)


def to_bgr(frame_rgba):
    return np.ascontiguousarray(frame_rgba[..., 2::-1])


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def timers(scheduler):
    return GraceTimers(scheduler)


class Recorder:
    def __init__(self):
        self.warnings = []
        self.terminations = 0

    def on_warning(self, kind, count):
        self.warnings.append((kind, count))

    def on_terminated(self):
        self.terminations += 1


@pytest.fixture
def recorder():
    return Recorder()

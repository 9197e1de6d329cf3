import logging
import threading
import time
from contextlib import ExitStack
from dataclasses import dataclass

from logic import TAB_SWITCH
from page_events import EventTarget, PageEvent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Shortcut:
    """Key combination; matches when the code is equal and every required modifier is held."""
    code: str
    ctrl: bool = False
    shift: bool = False
    alt: bool = False
    meta: bool = False

    def matches(self, event: PageEvent) -> bool:
        return (
            event.code == self.code
            and (event.ctrl or not self.ctrl)
            and (event.shift or not self.shift)
            and (event.alt or not self.alt)
            and (event.meta or not self.meta)
        )

    def as_dict(self):
        return {"code": self.code, "ctrl": self.ctrl, "shift": self.shift, "alt": self.alt, "meta": self.meta}

    def __str__(self):
        mods = [name for name, on in (("Ctrl", self.ctrl), ("Shift", self.shift),
                                      ("Alt", self.alt), ("Meta", self.meta)) if on]
        return "+".join(mods + [self.code])


BLOCKED_SHORTCUTS = (
    Shortcut("Tab", alt=True),
    Shortcut("Tab", ctrl=True),
    Shortcut("Tab", ctrl=True, shift=True),
    Shortcut("F4", alt=True),
    Shortcut("F12"),
    Shortcut("KeyI", ctrl=True, shift=True),
    Shortcut("KeyJ", ctrl=True, shift=True),
    Shortcut("KeyC", ctrl=True, shift=True),
    Shortcut("KeyU", ctrl=True),
    Shortcut("KeyS", ctrl=True),
    Shortcut("KeyP", ctrl=True),
    Shortcut("KeyR", ctrl=True),
    Shortcut("KeyR", ctrl=True, shift=True),
    Shortcut("F5"),
    Shortcut("Delete", ctrl=True, shift=True),
)

# Window management, new tabs/windows and other console shortcuts
EXTENDED_SHORTCUTS = (
    Shortcut("KeyK", ctrl=True, shift=True),
    Shortcut("F5", ctrl=True),
    Shortcut("KeyN", ctrl=True),
    Shortcut("KeyN", ctrl=True, shift=True),
    Shortcut("KeyT", ctrl=True),
    Shortcut("KeyT", ctrl=True, shift=True),
    Shortcut("KeyW", ctrl=True),
    Shortcut("F1"),
    Shortcut("F11"),
    Shortcut("Space", alt=True),
    Shortcut("Enter", alt=True),
    Shortcut("KeyM", meta=True),
    Shortcut("KeyH", meta=True),
    Shortcut("KeyD", meta=True),
    Shortcut("F3", meta=True),
    Shortcut("ArrowLeft", meta=True),
    Shortcut("ArrowRight", meta=True),
    Shortcut("ArrowUp", meta=True),
    Shortcut("ArrowDown", meta=True),
    Shortcut("Semicolon", ctrl=True),
    Shortcut("Backquote", ctrl=True),
)


@dataclass
class GuardPolicy:
    focus_grace: float = 0.5
    long_absence: float = 1.0
    mouse_grace: float = 2.0
    resize_ratio: float = 0.25
    block_extended_shortcuts: bool = True
    watch_resize: bool = True
    watch_fullscreen: bool = True

    def shortcuts(self):
        if self.block_extended_shortcuts:
            return BLOCKED_SHORTCUTS + EXTENDED_SHORTCUTS
        return BLOCKED_SHORTCUTS


class FocusGuard:
    """Turns page focus, pointer and keyboard events into tab-switch violations."""

    FOCUS_KEY = "focus"
    MOUSE_KEY = "mouse-leave"

    def __init__(self, policy: GuardPolicy, timers, raise_violation, clock=time.monotonic):
        self.p = policy
        self.timers = timers
        self.raise_violation = raise_violation
        self.clock = clock
        self._lock = threading.Lock()
        self.away_since = None
        self.away_ts = None
        self.mouse_outside = False
        self.mouse_left_ts = None
        self.initial_size = None

    def attach(self, target: EventTarget, stack: ExitStack):
        """Register listeners on `target`; their disposers go onto `stack`."""
        handlers = [
            ("visibilitychange", self.on_visibility_change, False),
            ("blur", self.on_blur, False),
            ("focus", self.on_focus, False),
            ("mouseleave", self.on_mouse_leave, False),
            ("mouseenter", self.on_mouse_enter, False),
            ("keydown", self.on_key_down, True),
            ("contextmenu", self.on_context_menu, True),
        ]
        if self.p.watch_resize:
            handlers.append(("resize", self.on_resize, False))
        if self.p.watch_fullscreen:
            handlers.append(("fullscreenchange", self.on_fullscreen_change, False))

        stack.callback(self.reset)
        for event_type, handler, capture in handlers:
            stack.callback(target.add_listener(event_type, handler, capture=capture))

    def reset(self):
        self.timers.cancel(self.FOCUS_KEY)
        self.timers.cancel(self.MOUSE_KEY)
        with self._lock:
            self.away_since = self.away_ts = None
            self.mouse_outside = False
            self.mouse_left_ts = None
            self.initial_size = None

    # Visibility and window focus

    def on_visibility_change(self, event: PageEvent):
        if event.hidden:
            self._went_away(event)
        else:
            self._came_back(event)

    def on_blur(self, event: PageEvent):
        self._went_away(event)

    def on_focus(self, event: PageEvent):
        self._came_back(event)

    def _went_away(self, event: PageEvent):
        with self._lock:
            if self.away_since is not None:
                return
            self.away_since = self.clock()
            self.away_ts = event.timestamp
        # Receipt-time fallback; browser timestamps take over on return
        self.timers.start(self.FOCUS_KEY, self.p.focus_grace, self._focus_grace_expired)

    def _focus_grace_expired(self):
        with self._lock:
            still_away = self.away_since is not None
        if still_away:
            self.raise_violation(TAB_SWITCH, "Left the interview window")

    def _came_back(self, event: PageEvent):
        with self._lock:
            if self.away_since is None:
                return
            if self.away_ts is not None and event.timestamp is not None:
                away = event.timestamp - self.away_ts
            else:
                away = self.clock() - self.away_since
            self.away_since = self.away_ts = None
        grace_pending = self.timers.cancel(self.FOCUS_KEY)
        # Events delivered in one batch arrive together; the grace timer never ran
        if grace_pending and away > self.p.focus_grace:
            self.raise_violation(TAB_SWITCH, "Left the interview window")
        if away > self.p.long_absence:
            self.raise_violation(TAB_SWITCH, f"Away from the interview window for {away:.1f}s")

    # Pointer

    def _outside_viewport(self, event: PageEvent) -> bool:
        if event.client_x is None or event.client_y is None:
            return True
        if event.client_x <= 0 or event.client_y <= 0:
            return True
        if event.view_width is not None and event.client_x >= event.view_width:
            return True
        if event.view_height is not None and event.client_y >= event.view_height:
            return True
        return False

    def on_mouse_leave(self, event: PageEvent):
        if not self._outside_viewport(event):
            return
        with self._lock:
            if not self.mouse_outside:
                self.mouse_left_ts = event.timestamp
            self.mouse_outside = True
        self.timers.start(self.MOUSE_KEY, self.p.mouse_grace, self._mouse_grace_expired)

    def on_mouse_enter(self, event: PageEvent):
        with self._lock:
            left_ts, self.mouse_left_ts = self.mouse_left_ts, None
            self.mouse_outside = False
        grace_pending = self.timers.cancel(self.MOUSE_KEY)
        if grace_pending and left_ts is not None and event.timestamp is not None \
                and event.timestamp - left_ts > self.p.mouse_grace:
            self.raise_violation(TAB_SWITCH, "Pointer left the interview window")

    def _mouse_grace_expired(self):
        with self._lock:
            outside = self.mouse_outside
        if outside:
            self.raise_violation(TAB_SWITCH, "Pointer left the interview window")

    # Keyboard and context menu

    def on_key_down(self, event: PageEvent):
        for shortcut in self.p.shortcuts():
            if shortcut.matches(event):
                event.prevent_default()
                event.stop_propagation()
                self.raise_violation(TAB_SWITCH, f"Blocked shortcut {shortcut}")
                return

    def on_context_menu(self, event: PageEvent):
        event.prevent_default()
        event.stop_propagation()
        self.raise_violation(TAB_SWITCH, "Context menu")

    # Window geometry

    def on_resize(self, event: PageEvent):
        if not event.view_width or not event.view_height:
            return
        if self.initial_size is None:
            self.initial_size = (event.view_width, event.view_height)
            return
        width, height = self.initial_size
        if (width - event.view_width) / width > self.p.resize_ratio or \
                (height - event.view_height) / height > self.p.resize_ratio:
            self.raise_violation(TAB_SWITCH, "Window shrunk (split screen or minimise)")

    def on_fullscreen_change(self, event: PageEvent):
        if event.fullscreen is False:
            self.raise_violation(TAB_SWITCH, "Exited fullscreen")

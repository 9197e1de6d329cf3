import logging

from timers import GraceTimers, ManualScheduler, RecurringTimer


def test_manual_scheduler_runs_callbacks_in_due_order():
    s = ManualScheduler()
    seen = []
    s.call_later(2.0, lambda: seen.append(("b", s.now())))
    s.call_later(1.0, lambda: seen.append(("a", s.now())))
    s.call_later(2.0, lambda: seen.append(("c", s.now())))
    s.advance(1.5)
    assert seen == [("a", 1.0)]
    s.advance(1.0)
    assert seen == [("a", 1.0), ("b", 2.0), ("c", 2.0)]
    assert s.now() == 2.5


def test_manual_scheduler_skips_cancelled():
    s = ManualScheduler()
    seen = []
    handle = s.call_later(1.0, lambda: seen.append(1))
    handle.cancel()
    assert s.pending() == 0
    s.advance(5)
    assert seen == []


def test_grace_timer_start_is_noop_while_pending(scheduler, timers):
    fired = []
    assert timers.start("camera", 5.0, lambda: fired.append("first"))
    scheduler.advance(1.0)
    assert not timers.start("camera", 1.0, lambda: fired.append("second"))
    scheduler.advance(4.0)
    assert fired == ["first"]
    assert not timers.pending("camera")


def test_cancelled_grace_timer_never_fires(scheduler, timers):
    fired = []
    timers.start("focus", 0.5, lambda: fired.append(1))
    assert timers.cancel("focus")
    assert not timers.cancel("focus")
    scheduler.advance(1.0)
    assert fired == []


def test_key_is_free_again_after_fire(scheduler, timers):
    fired = []
    timers.start("mouse-leave", 2.0, lambda: fired.append(scheduler.now()))
    scheduler.advance(2.0)
    assert timers.start("mouse-leave", 2.0, lambda: fired.append(scheduler.now()))
    scheduler.advance(2.0)
    assert fired == [2.0, 4.0]


def test_cancel_all(scheduler, timers):
    fired = []
    timers.start("camera", 1.0, lambda: fired.append("camera"))
    timers.start("focus", 1.0, lambda: fired.append("focus"))
    assert sorted(timers.keys()) == ["camera", "focus"]
    timers.cancel_all()
    scheduler.advance(2.0)
    assert fired == []
    assert timers.keys() == []


def test_callback_may_restart_its_own_key(scheduler, timers):
    fired = []

    def again():
        fired.append(scheduler.now())
        if len(fired) < 3:
            timers.start("camera", 1.0, again)

    timers.start("camera", 1.0, again)
    scheduler.advance(10.0)
    assert fired == [1.0, 2.0, 3.0]


def test_recurring_timer_ticks_until_stopped(scheduler):
    ticks = []
    rt = RecurringTimer(scheduler, 0.5, lambda: ticks.append(scheduler.now()))
    rt.start()
    rt.start()
    scheduler.advance(2.0)
    assert ticks == [0.5, 1.0, 1.5, 2.0]
    rt.stop()
    assert not rt.running
    scheduler.advance(2.0)
    assert len(ticks) == 4


def test_recurring_timer_survives_callback_errors(scheduler, caplog):
    calls = []

    def flaky():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("bad frame")

    rt = RecurringTimer(scheduler, 0.5, flaky)
    rt.start()
    with caplog.at_level(logging.ERROR):
        scheduler.advance(1.5)
    assert len(calls) == 3
    assert "Recurring timer callback failed" in caplog.text


def test_recurring_timer_can_stop_from_inside_callback(scheduler):
    ticks = []
    rt = RecurringTimer(scheduler, 0.5, lambda: (ticks.append(1), rt.stop()))
    rt.start()
    scheduler.advance(3.0)
    assert ticks == [1]
    assert scheduler.pending() == 0

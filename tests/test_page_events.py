import logging

import pytest

from page_events import BridgeInbox, EventTarget, PageEvent


def test_from_dict_maps_browser_names():
    event = PageEvent.from_dict({
        "type": "mouseleave", "clientX": -3, "clientY": 40,
        "innerWidth": 1280, "innerHeight": 720, "timeStamp": 12.5, "unknown": 1,
    })
    assert event == PageEvent("mouseleave", client_x=-3, client_y=40,
                              view_width=1280, view_height=720, timestamp=12.5)


def test_from_dict_requires_type():
    with pytest.raises(ValueError):
        PageEvent.from_dict({"code": "F12"})


def test_capture_listeners_run_first():
    target = EventTarget()
    order = []
    target.add_listener("keydown", lambda e: order.append("bubble"))
    target.add_listener("keydown", lambda e: order.append("capture"), capture=True)
    target.add_listener("blur", lambda e: order.append("blur"))
    target.dispatch(PageEvent("keydown"))
    assert order == ["capture", "bubble"]


def test_stop_propagation_skips_remaining_listeners():
    target = EventTarget()
    seen = []
    target.add_listener("keydown", lambda e: e.stop_propagation(), capture=True)
    target.add_listener("keydown", seen.append)
    event = target.dispatch(PageEvent("keydown"))
    assert event.propagation_stopped
    assert seen == []


def test_disposer_removes_only_its_listener():
    target = EventTarget()
    remove = target.add_listener("focus", print)
    target.add_listener("blur", print)
    remove()
    remove()
    assert target.listener_count("focus") == 0
    assert target.listener_count() == 1


def test_listener_errors_are_logged(caplog):
    target = EventTarget()
    seen = []

    def broken(event):
        raise RuntimeError("boom")

    target.add_listener("resize", broken)
    target.add_listener("resize", seen.append)
    with caplog.at_level(logging.ERROR):
        target.dispatch(PageEvent("resize"))
    assert len(seen) == 1
    assert "Listener for resize failed" in caplog.text


def bridge_value(bridge, *seqs):
    return {"bridge": bridge, "seq": max(seqs), "events": [{"type": "keydown", "seq": s} for s in seqs]}


def test_inbox_takes_every_unacknowledged_event_once():
    inbox = BridgeInbox()
    # Two flushes merged into one rerun: only the latest value is seen
    assert [e["seq"] for e in inbox.take(bridge_value("a", 1, 2))] == [1, 2]
    assert inbox.ack == {"bridge": "a", "seq": 2}
    assert inbox.take(bridge_value("a", 1, 2)) == []
    assert [e["seq"] for e in inbox.take(bridge_value("a", 2, 3))] == [3]
    assert inbox.take(None) == []


def test_inbox_restarts_for_a_reloaded_bridge():
    inbox = BridgeInbox()
    inbox.take(bridge_value("a", 1, 2, 3))
    assert [e["seq"] for e in inbox.take(bridge_value("b", 1))] == [1]
    assert inbox.ack == {"bridge": "b", "seq": 1}

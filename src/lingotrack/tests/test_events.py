"""Tests for the event emitter."""
from lingotrack.services.events import MILESTONE_REACHED, SESSION_ENDED, EventEmitter


def test_emit_to_subscribers(events: EventEmitter) -> None:
    """Test that handlers receive their events and wildcard handlers receive all."""
    milestones = []
    everything = []
    events.subscribe(MILESTONE_REACHED, lambda name, payload: milestones.append(payload))
    events.subscribe("*", lambda name, payload: everything.append(name))

    events.emit(MILESTONE_REACHED, {"type": "keyword_mastered"})
    events.emit(SESSION_ENDED, {"reason": "completed"})

    assert milestones == [{"type": "keyword_mastered"}]
    assert everything == [MILESTONE_REACHED, SESSION_ENDED]


def test_failing_handler_does_not_propagate(events: EventEmitter) -> None:
    """Test that one failing handler neither raises nor blocks the others."""
    received = []

    def broken(name, payload):
        raise RuntimeError("analytics down")

    events.subscribe(SESSION_ENDED, broken)
    events.subscribe(SESSION_ENDED, lambda name, payload: received.append(payload))

    events.emit(SESSION_ENDED, {"reason": "user_exit"})

    assert received == [{"reason": "user_exit"}]


def test_unsubscribe(events: EventEmitter) -> None:
    """Test removing handlers."""
    received = []

    def handler(name, payload):
        received.append(payload)

    events.subscribe(SESSION_ENDED, handler)
    events.unsubscribe(SESSION_ENDED, handler)
    events.unsubscribe(MILESTONE_REACHED, handler)

    events.emit(SESSION_ENDED, {})

    assert received == []

import pytest
from datetime import date
from capacity_sync.services.debounce import DebounceTracker, should_flush


def test_should_flush():
    """Testa a decisão de envio pela janela de debounce"""
    assert not should_flush(now=10.2, last_edit=10.0, debounce_seconds=0.5)
    assert should_flush(now=10.5, last_edit=10.0, debounce_seconds=0.5)
    assert should_flush(now=11.0, last_edit=10.0, debounce_seconds=0.5)


def test_touch_restarts_window():
    """Testa que nova edição reinicia a janela da chave"""
    tracker = DebounceTracker(0.5)
    key = (11, date(2024, 1, 15))

    tracker.touch(key, 0.0)
    tracker.touch(key, 0.4)

    assert tracker.due(0.6) == []
    assert tracker.due(1.0) == [key]
    assert len(tracker) == 1


def test_due_per_key():
    """Testa que cada chave tem sua própria janela"""
    tracker = DebounceTracker(0.5)
    first = (11, date(2024, 1, 15))
    second = (11, date(2024, 1, 16))

    tracker.touch(first, 0.0)
    tracker.touch(second, 0.3)

    assert tracker.due(0.5) == [first]
    assert set(tracker.due(1.0)) == {first, second}


def test_remaining_and_discard():
    tracker = DebounceTracker(0.5)
    key = (10, date(2024, 1, 14))

    assert tracker.remaining(key, 0.0) is None

    tracker.touch(key, 1.0)
    assert tracker.remaining(key, 1.2) == pytest.approx(0.3)
    assert tracker.remaining(key, 2.0) == 0.0

    assert tracker.discard(key) == 1.0
    assert key not in tracker
    assert tracker.keys() == []

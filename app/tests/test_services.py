"""
Tests for the session host and the service layer.
"""

import pytest
from unittest.mock import MagicMock

from calcpad.config import Config
from calcpad.engine import (
    DIVIDE_BY_ZERO,
    INITIAL_STATE,
    Clear,
    Digit,
    Equals,
    OperatorPress,
)
from calcpad.services import CalculatorService, SessionNotFound
from calcpad.session import CalculatorSession
from calcpad.sink import MemorySink, SinkDispatcher


def dispatch_all(session, actions):
    """Dispatch actions in order and return the last snapshot."""
    snapshot = session.snapshot()
    for action in actions:
        snapshot = session.dispatch(action)
    return snapshot


class TestCalculatorSession:
    """Test the single-writer session host."""

    @pytest.fixture
    def sink(self):
        return MemorySink()

    @pytest.fixture
    def session(self, sink):
        return CalculatorSession(session_id="sess-1", dispatcher=SinkDispatcher(sink))

    def test_initial_snapshot(self, session):
        snapshot = session.snapshot()
        assert snapshot.display == "0"
        assert snapshot.expression is None
        assert snapshot.overwrite is True
        assert snapshot.has_error is False
        assert snapshot.session_id == "sess-1"

    def test_generates_session_id(self):
        assert len(CalculatorSession().session_id) == 32

    def test_dispatch_updates_state(self, session):
        session.dispatch(Digit("9"))
        snapshot = session.dispatch(OperatorPress("*"))
        assert snapshot.expression == "9 ×"
        assert snapshot.previous == "9"
        assert snapshot.operator == "*"
        assert session.state.previous == "9"

    def test_press_maps_keys(self, session, sink):
        for key in "12+3":
            session.press(key)
        snapshot = session.press("Enter")
        assert snapshot.display == "15"
        assert snapshot.expression is None

        session.dispatcher.drain()
        assert len(sink.records) == 1
        record = sink.records[0]
        assert (record.a, record.operator, record.b, record.result) == (12.0, "+", 3.0, 15.0)
        assert record.session_id == "sess-1"

    def test_unknown_key_is_ignored(self, session):
        session.press("7")
        snapshot = session.press("Shift")
        assert snapshot.current == "7"
        assert session.actions_applied == 1

    def test_glyph_operators(self, session):
        for key in ["8", "÷", "2", "="]:
            snapshot = session.press(key)
        assert snapshot.display == "4"

    def test_errors_are_not_recorded(self, session, sink):
        snapshot = dispatch_all(session, [Digit("7"), OperatorPress("/"), Digit("0"), Equals()])
        assert snapshot.display == DIVIDE_BY_ZERO
        assert snapshot.has_error is True
        session.dispatcher.drain()
        assert sink.records == []
        assert session.calculations == 0

    def test_long_result_is_formatted_but_kept(self, session):
        for key in "0.1+0.2=":
            snapshot = session.press(key)
        assert snapshot.display == "0.3"
        assert snapshot.current == "0.30000000000000004"

    def test_dispatcher_failure_does_not_affect_state(self):
        dispatcher = MagicMock()
        dispatcher.submit.side_effect = RuntimeError("queue broken")
        session = CalculatorSession(dispatcher=dispatcher)

        snapshot = dispatch_all(session, [Digit("2"), OperatorPress("+"), Digit("2"), Equals()])
        assert snapshot.display == "4"
        dispatcher.submit.assert_called_once()

    def test_without_dispatcher(self):
        session = CalculatorSession()
        snapshot = dispatch_all(session, [Digit("5"), OperatorPress("+"), Equals()])
        assert snapshot.display == "10"
        assert session.calculations == 1

    def test_clear(self, session):
        dispatch_all(session, [Digit("5"), OperatorPress("+"), Digit("1")])
        session.dispatch(Clear())
        assert session.state == INITIAL_STATE

    def test_custom_width(self):
        session = CalculatorSession(max_len=8)
        for key in "1234567890":
            snapshot = session.press(key)
        assert snapshot.current == "12345678"

    def test_get_status(self, session):
        dispatch_all(session, [Digit("1"), OperatorPress("+"), Digit("1"), Equals()])
        status = session.get_status()
        assert status["actions_applied"] == 4
        assert status["calculations"] == 1
        assert status["display"] == "2"


class TestCalculatorService:
    """Test the session registry."""

    @pytest.fixture
    def service(self):
        return CalculatorService(Config(), sink=MemorySink())

    def test_create_session(self, service):
        session = service.create_session()
        assert service.get_session(session.session_id) is session
        assert session.dispatcher is service.dispatcher

    def test_create_session_with_id(self, service):
        session = service.create_session("fixed-id")
        assert session.session_id == "fixed-id"

    def test_get_or_create_session(self, service):
        session, is_new = service.get_or_create_session("abc")
        assert is_new is True
        again, is_new = service.get_or_create_session("abc")
        assert again is session
        assert is_new is False

    def test_get_or_create_without_id(self, service):
        session, is_new = service.get_or_create_session()
        assert is_new is True
        assert session.session_id in service.sessions

    def test_unknown_session(self, service):
        with pytest.raises(SessionNotFound):
            service.get_session("missing")

    def test_close_session(self, service):
        session = service.create_session()
        service.close_session(session.session_id)
        with pytest.raises(SessionNotFound):
            service.get_session(session.session_id)
        with pytest.raises(SessionNotFound):
            service.close_session(session.session_id)

    def test_cleanup_idle_sessions(self, service):
        session = service.create_session()
        assert service.cleanup_idle_sessions(max_idle=3600) == []
        assert service.cleanup_idle_sessions(max_idle=-1) == [session.session_id]
        assert service.sessions == {}

    def test_sessions_share_the_sink(self, service):
        first = service.create_session("one")
        second = service.create_session("two")
        dispatch_all(first, [Digit("1"), OperatorPress("+"), Digit("1"), Equals()])
        dispatch_all(second, [Digit("3"), OperatorPress("*"), Digit("3"), Equals()])

        service.stop()
        assert sorted(r.session_id for r in service.sink.records) == ["one", "two"]

    def test_uses_configured_width(self):
        service = CalculatorService(Config(max_display_len=10), sink=MemorySink())
        assert service.create_session().max_len == 10

    def test_get_status(self, service):
        service.create_session()
        status = service.get_status()
        assert status["sessions"] == 1
        assert status["sink"]["sink"]["backend"] == "memory"

"""
Tests for the Connection State Machine.
"""

import pytest
from rtcp.states import ConnectionState, Role, StateMachine, TRANSITIONS


class TestConnectionState:
    """Test state enum helpers."""

    def test_state_properties(self):
        assert ConnectionState.ESTABLISHED.is_established()
        assert not ConnectionState.CLOSING.is_established()

        assert ConnectionState.HANDSHAKE_SENT.is_handshaking()
        assert ConnectionState.LISTENING.is_handshaking()
        assert not ConnectionState.ESTABLISHED.is_handshaking()


class TestInitiatorMachine:
    """Test the initiator's lifecycle."""

    def test_initial_state(self):
        sm = StateMachine(Role.INITIATOR)
        assert sm.state == ConnectionState.CLOSED
        assert sm.is_closed()

    def test_full_lifecycle(self):
        """CLOSED -> HANDSHAKE_SENT -> ESTABLISHED -> CLOSING -> CLOSED"""
        sm = StateMachine(Role.INITIATOR)

        assert sm.transition("active_open") == (True, "send_syn")
        assert sm.state == ConnectionState.HANDSHAKE_SENT

        success, _ = sm.transition("recv_syn_ack")
        assert success
        assert sm.is_established()

        assert sm.transition("close") == (True, "send_fin")
        assert sm.state == ConnectionState.CLOSING

        success, _ = sm.transition("recv_fin_ack")
        assert success
        assert sm.is_closed()

    def test_cannot_listen(self):
        sm = StateMachine(Role.INITIATOR)
        assert sm.transition("passive_open") == (False, None)
        assert sm.state == ConnectionState.CLOSED


class TestResponderMachine:
    """Test the responder's lifecycle."""

    def test_full_lifecycle(self):
        """CLOSED -> LISTENING -> ESTABLISHED -> CLOSING -> CLOSED"""
        sm = StateMachine(Role.RESPONDER)

        sm.transition("passive_open")
        assert sm.state == ConnectionState.LISTENING

        sm.transition("recv_ack")
        assert sm.is_established()

        assert sm.transition("recv_fin") == (True, "send_fin_ack")
        assert sm.state == ConnectionState.CLOSING

        sm.transition("recv_ack")
        assert sm.is_closed()

    def test_invalid_transitions(self):
        """Events outside the table leave the state alone."""
        sm = StateMachine(Role.RESPONDER)
        sm.transition("passive_open")

        assert sm.transition("recv_fin") == (False, None)
        assert sm.transition("active_open") == (False, None)
        assert sm.state == ConnectionState.LISTENING


class TestAbortAndCallbacks:
    """Test abort and transition notification."""

    @pytest.mark.parametrize("role", list(Role))
    def test_abort_from_anywhere(self, role):
        sm = StateMachine(role)
        first_event = "active_open" if role is Role.INITIATOR else "passive_open"
        sm.transition(first_event)

        assert sm.transition("abort") == (True, "release")
        assert sm.is_closed()

    def test_transition_callback(self):
        """Callbacks see every change, but not failed transitions."""
        transitions = []
        sm = StateMachine(Role.INITIATOR)
        sm.on_transition(lambda old, new, event: transitions.append((old, new, event)))

        sm.transition("active_open")
        sm.transition("close")  # invalid in HANDSHAKE_SENT
        sm.transition("recv_syn_ack")

        assert transitions == [
            (ConnectionState.CLOSED, ConnectionState.HANDSHAKE_SENT, "active_open"),
            (ConnectionState.HANDSHAKE_SENT, ConnectionState.ESTABLISHED, "recv_syn_ack"),
        ]

    def test_valid_events(self):
        sm = StateMachine(Role.RESPONDER)
        assert sm.valid_events() == ["passive_open", "abort"]

    def test_tables_cover_both_roles(self):
        assert set(TRANSITIONS) == {Role.INITIATOR, Role.RESPONDER}

"""
Connection State Machine.

An rtcp connection is much simpler than a full TCP one: data only flows from
the initiator to the responder, and the teardown is driven by the initiator's
FIN. Five states are enough:

    initiator:  CLOSED -> HANDSHAKE_SENT -> ESTABLISHED -> CLOSING -> CLOSED
    responder:  CLOSED -> LISTENING      -> ESTABLISHED -> CLOSING -> CLOSED

Any state may jump straight to CLOSED on abort (retry budget exhausted,
inactivity ceiling exceeded, I/O failure).

Instead of a single machine full of "if sender" branches, each Role gets its
own transition table and the machine just looks events up in it.
"""

from enum import Enum, auto
from dataclasses import dataclass
from typing import Optional, Tuple, Callable, Dict


class Role(Enum):
    """Which end of the transfer a connection plays."""
    INITIATOR = auto()  # Opens the connection and sends the data
    RESPONDER = auto()  # Listens and receives the data


class ConnectionState(Enum):
    """The lifecycle states of a connection."""

    # No socket, nothing in progress
    CLOSED = auto()

    # Initiator sent SYN, waiting for SYN-ACK
    HANDSHAKE_SENT = auto()

    # Responder waiting for a SYN
    LISTENING = auto()

    # Handshake complete, data phase
    ESTABLISHED = auto()

    # FIN exchange in progress
    CLOSING = auto()

    def is_established(self) -> bool:
        return self == ConnectionState.ESTABLISHED

    def is_handshaking(self) -> bool:
        return self in (ConnectionState.HANDSHAKE_SENT, ConnectionState.LISTENING)


@dataclass
class StateTransition:
    """A row of a transition table."""
    from_state: ConnectionState
    event: str
    to_state: ConnectionState
    action: Optional[str] = None

    def __str__(self) -> str:
        action_str = f" / {self.action}" if self.action else ""
        return f"{self.from_state.name} --[{self.event}]--> {self.to_state.name}{action_str}"


def _table(*rows: StateTransition) -> Dict[Tuple[ConnectionState, str], StateTransition]:
    return {(row.from_state, row.event): row for row in rows}


S = ConnectionState

TRANSITIONS = {
    Role.INITIATOR: _table(
        StateTransition(S.CLOSED, "active_open", S.HANDSHAKE_SENT, "send_syn"),
        StateTransition(S.HANDSHAKE_SENT, "recv_syn_ack", S.ESTABLISHED, "send_ack"),
        StateTransition(S.ESTABLISHED, "close", S.CLOSING, "send_fin"),
        StateTransition(S.CLOSING, "recv_fin_ack", S.CLOSED, "send_ack"),
    ),
    Role.RESPONDER: _table(
        StateTransition(S.CLOSED, "passive_open", S.LISTENING, None),
        StateTransition(S.LISTENING, "recv_ack", S.ESTABLISHED, None),
        StateTransition(S.ESTABLISHED, "recv_fin", S.CLOSING, "send_fin_ack"),
        StateTransition(S.CLOSING, "recv_ack", S.CLOSED, None),
    ),
}

del S


class StateMachine:
    """
    Connection state machine for one role.

    transition() validates an event against the role's table; an event that
    is not legal in the current state leaves the state unchanged and reports
    failure. "abort" is legal everywhere.
    """

    def __init__(self, role: Role, initial_state: ConnectionState = ConnectionState.CLOSED):
        self.role = role
        self.state = initial_state
        self._table = TRANSITIONS[role]
        self._transition_callbacks: list[Callable] = []

    def on_transition(self, callback: Callable[[ConnectionState, ConnectionState, str], None]):
        """Register a callback for state changes."""
        self._transition_callbacks.append(callback)

    def _notify_transition(self, from_state: ConnectionState, to_state: ConnectionState, event: str):
        for callback in self._transition_callbacks:
            callback(from_state, to_state, event)

    def transition(self, event: str) -> Tuple[bool, Optional[str]]:
        """
        Attempt a state transition.

        Returns:
            Tuple of (success, action_to_take)
        """
        old_state = self.state

        if event == "abort":
            self.state = ConnectionState.CLOSED
            if old_state != self.state:
                self._notify_transition(old_state, self.state, event)
            return (True, "release")

        row = self._table.get((self.state, event))
        if row is None:
            return (False, None)

        self.state = row.to_state
        if self.state != old_state:
            self._notify_transition(old_state, self.state, event)
        return (True, row.action)

    def is_established(self) -> bool:
        return self.state.is_established()

    def is_closed(self) -> bool:
        return self.state == ConnectionState.CLOSED

    def valid_events(self) -> list[str]:
        """Events accepted in the current state."""
        events = [event for (state, event) in self._table if state == self.state]
        return events + ["abort"]

    def __str__(self) -> str:
        return f"StateMachine({self.role.name}: {self.state.name})"

"""Exception Lifecycle: state machine."""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .config import ExceptionStatus


@dataclass
class State:
    """A single state in the exception lifecycle."""

    name: ExceptionStatus
    allowed_transitions: List[ExceptionStatus] = field(default_factory=list)
    is_terminal: bool = False


@dataclass
class Transition:
    """A permitted move between two states."""

    from_state: ExceptionStatus
    to_state: ExceptionStatus
    automatic: bool = False
    label: str = ""


class StateMachine:
    """Table of permitted lifecycle transitions.

    The machine only answers "is this move allowed"; callers own the
    entity and perform the write under their own lock.
    """

    def __init__(self, name: str = "exception_lifecycle"):
        self.name = name
        self.states: Dict[ExceptionStatus, State] = {}
        self.transitions: List[Transition] = []

    def add_state(self, state: State) -> None:
        self.states[state.name] = state

    def add_transition(self, transition: Transition) -> None:
        self.transitions.append(transition)
        if transition.from_state in self.states:
            src = self.states[transition.from_state]
            if transition.to_state not in src.allowed_transitions:
                src.allowed_transitions.append(transition.to_state)

    def find(self, current: ExceptionStatus, target: ExceptionStatus) -> Optional[Transition]:
        for t in self.transitions:
            if t.from_state == current and t.to_state == target:
                return t
        return None

    def can_transition(self, current: ExceptionStatus, target: ExceptionStatus) -> bool:
        return self.find(current, target) is not None

    def is_terminal(self, status: ExceptionStatus) -> bool:
        state = self.states.get(status)
        return state is not None and state.is_terminal

    def validate(self) -> List[str]:
        """Validate the definition. Returns a list of error strings."""
        errors: List[str] = []
        for trans in self.transitions:
            if trans.from_state not in self.states:
                errors.append(f"Transition references unknown source state: {trans.from_state.value}")
            if trans.to_state not in self.states:
                errors.append(f"Transition references unknown target state: {trans.to_state.value}")
            elif trans.from_state in self.states and self.states[trans.from_state].is_terminal:
                errors.append(f"Terminal state {trans.from_state.value} has an outgoing transition")
        if not any(s.is_terminal for s in self.states.values()):
            errors.append("No terminal state defined")
        return errors

    def visualize(self) -> Dict[str, List[str]]:
        """Adjacency list keyed by status value."""
        adj: Dict[str, List[str]] = {s.value: [] for s in self.states}
        for t in self.transitions:
            adj[t.from_state.value].append(t.to_state.value)
        return adj


def build_exception_lifecycle() -> StateMachine:
    """open -> in_progress -> {escalated, resolved}; escalated -> resolved."""
    sm = StateMachine()
    for status in ExceptionStatus:
        sm.add_state(State(name=status, is_terminal=status == ExceptionStatus.RESOLVED))

    sm.add_transition(Transition(ExceptionStatus.OPEN, ExceptionStatus.IN_PROGRESS, label="acknowledge"))
    sm.add_transition(
        Transition(ExceptionStatus.IN_PROGRESS, ExceptionStatus.ESCALATED, automatic=True, label="escalate")
    )
    for source in (ExceptionStatus.OPEN, ExceptionStatus.IN_PROGRESS, ExceptionStatus.ESCALATED):
        sm.add_transition(Transition(source, ExceptionStatus.RESOLVED, label="resolve"))
    return sm

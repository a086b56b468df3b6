"""Specification lifecycle state machine using the transitions library.

The graph is fixed. Every edge has a named trigger, an optional set of
preconditions the document store checks before firing, and an actor: most
edges are driven by the coordinator, the approval edges only by the operator.

Usage:
    from specd.store.fsm import SpecFSM

    fsm = SpecFSM("0001-login", "draft")
    fsm.submit_review()  # draft -> in_review
"""

import logging
from typing import Callable

from transitions import Machine, MachineError

from specd.lib.errors import InvalidTransitionError

logger = logging.getLogger(__name__)

STATES = [
    "draft",
    "in_review",
    "approved",
    "in_progress",
    "verifying",
    "completed",
    "locked",
]

INITIAL_STATE = "draft"
TERMINAL_STATE = "locked"

ACTOR_COORDINATOR = "coordinator"
ACTOR_OPERATOR = "operator"

# Preconditions besides plain artifact presence
REQ_TASKS_DONE = "tasks_done"
REQ_NO_TRANSIENT = "no_transient"
REQ_VERIFICATION_PASSED = "verification_passed"

_COMPLETION_REQUIREMENTS = (
    "verification",
    "report",
    REQ_TASKS_DONE,
    REQ_NO_TRANSIENT,
    REQ_VERIFICATION_PASSED,
)

TRANSITIONS = [
    # Review loop
    {"trigger": "submit_review", "source": "draft", "dest": "in_review",
     "requires": ("requirements",)},
    {"trigger": "return_to_draft", "source": "in_review", "dest": "draft",
     "requires": ("learnings",)},

    # Human approval, never worker-originated
    {"trigger": "approve", "source": "draft", "dest": "approved",
     "requires": ("requirements",), "actor": ACTOR_OPERATOR},
    {"trigger": "approve", "source": "in_review", "dest": "approved",
     "requires": ("requirements",), "actor": ACTOR_OPERATOR},

    # Implementation and verification
    {"trigger": "start_implementation", "source": "approved", "dest": "in_progress"},
    {"trigger": "request_verification", "source": "in_progress", "dest": "verifying",
     "requires": (REQ_TASKS_DONE,)},
    {"trigger": "verification_failed", "source": "verifying", "dest": "in_progress",
     "requires": ("verification",)},
    {"trigger": "verification_passed", "source": "verifying", "dest": "completed",
     "requires": _COMPLETION_REQUIREMENTS},

    # Automatic, immediately after completion
    {"trigger": "lock", "source": "completed", "dest": "locked",
     "requires": _COMPLETION_REQUIREMENTS},
]


def _build_edge_table() -> dict[tuple[str, str], dict]:
    table: dict[tuple[str, str], dict] = {}
    for t in TRANSITIONS:
        table[(t["source"], t["dest"])] = {
            "trigger": t["trigger"],
            "requires": tuple(t.get("requires", ())),
            "actor": t.get("actor", ACTOR_COORDINATOR),
        }
    return table


# (source, dest) -> {"trigger", "requires", "actor"}
EDGES = _build_edge_table()


def is_edge(source: str, dest: str) -> bool:
    return (source, dest) in EDGES


def edge_requirements(source: str, dest: str) -> tuple[str, ...]:
    """Preconditions for an edge; empty for edges that are not in the graph."""
    edge = EDGES.get((source, dest))
    return edge["requires"] if edge else ()


def edge_actor(source: str, dest: str) -> str | None:
    edge = EDGES.get((source, dest))
    return edge["actor"] if edge else None


class SpecFSM:
    """State machine for one specification's status.

    Holds no storage of its own; the document store loads the current
    status, fires the trigger and persists the result.
    """

    def __init__(self, spec_id: str, status: str,
                 on_transition: Callable[[str, str, str], None] | None = None):
        """Initialize FSM for a specification.

        Args:
            spec_id: Specification ID, used in log lines and errors
            status: Current persisted status
            on_transition: Optional callback(from_state, to_state, trigger)
        """
        if status not in STATES:
            raise InvalidTransitionError(spec_id, status, "?", "unknown current status")
        self.spec_id = spec_id
        self.on_transition = on_transition

        self.machine = Machine(
            model=self,
            states=STATES,
            transitions=[
                {"trigger": t["trigger"], "source": t["source"], "dest": t["dest"]}
                for t in TRANSITIONS
            ],
            initial=status,
            auto_transitions=False,
            send_event=True,
            after_state_change="on_state_change",
        )

    def on_state_change(self, event) -> None:
        from_state = event.transition.source
        to_state = event.transition.dest
        trigger = event.event.name

        logger.info(f"[FSM] {self.spec_id}: {from_state} -> {to_state} ({trigger})")

        if self.on_transition:
            self.on_transition(from_state, to_state, trigger)

    def fire(self, dest: str) -> str:
        """Move to dest through the edge's trigger. Returns the trigger name.

        Raises:
            InvalidTransitionError: if (current, dest) is not an edge
        """
        source = self.state
        edge = EDGES.get((source, dest))
        if edge is None:
            raise InvalidTransitionError(self.spec_id, source, dest, "not in the state graph")
        try:
            getattr(self, edge["trigger"])()
        except MachineError as e:
            raise InvalidTransitionError(self.spec_id, source, dest, str(e)) from e
        return edge["trigger"]

    def can(self, trigger: str) -> bool:
        """Check if a trigger can be executed in current state."""
        return trigger in self.machine.get_triggers(self.state)

    def get_available_triggers(self) -> list[str]:
        return self.machine.get_triggers(self.state)

    def next_states(self) -> list[str]:
        return [dest for (source, dest) in EDGES if source == self.state]

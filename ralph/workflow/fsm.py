"""Iteration state machine using the transitions library.

One machine per run. Each iteration walks

    idle -> selecting -> implementing -> verifying -> recording -> idle

(legacy mode skips selecting) until a terminal state is reached:
complete, halted or max_iterations. An operator interrupt restarts the
iteration from idle; an agent failure drops back to idle so the loop policy
can decide between halting and continuing.
"""

import logging
from typing import Callable

from transitions import Machine

logger = logging.getLogger(__name__)

STATES = [
    "idle",
    "selecting",
    "implementing",
    "verifying",
    "recording",
    "complete",
    "halted",
    "max_iterations",
    "stopped",
]

TERMINAL_STATES = ("complete", "halted", "max_iterations", "stopped")

_WORKING = ["selecting", "implementing", "verifying", "recording"]

TRANSITIONS = [
    {"trigger": "select", "source": "idle", "dest": "selecting"},
    {"trigger": "implement", "source": ["idle", "selecting"], "dest": "implementing"},
    {"trigger": "verify", "source": "implementing", "dest": "verifying"},
    {"trigger": "record", "source": "verifying", "dest": "recording"},
    {"trigger": "next_iteration", "source": "recording", "dest": "idle"},

    # Operator interrupt: same iteration again
    {"trigger": "restart", "source": ["selecting", "implementing"], "dest": "idle"},

    # Agent or commit failure; loop policy decides what follows
    {"trigger": "fail", "source": _WORKING, "dest": "idle"},

    {"trigger": "finish", "source": ["idle", "recording"], "dest": "complete"},
    {"trigger": "halt", "source": ["idle"] + _WORKING, "dest": "halted"},
    {"trigger": "exhaust", "source": "idle", "dest": "max_iterations"},
    {"trigger": "stop", "source": ["idle"] + _WORKING, "dest": "stopped"},
]


class IterationFSM:
    """State machine for one Ralph run."""

    def __init__(self, on_transition: Callable[[str, str, str], None] | None = None):
        """
        Args:
            on_transition: Optional callback(from_state, to_state, trigger)
        """
        self.on_transition = on_transition
        self.machine = Machine(
            model=self,
            states=STATES,
            transitions=TRANSITIONS,
            initial="idle",
            auto_transitions=False,
            send_event=True,
            after_state_change="on_state_change",
        )

    def on_state_change(self, event) -> None:
        from_state = event.transition.source
        to_state = event.transition.dest
        trigger = event.event.name
        logger.debug(f"[FSM] {from_state} -> {to_state} ({trigger})")
        if self.on_transition:
            self.on_transition(from_state, to_state, trigger)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def can(self, trigger: str) -> bool:
        """Check if a trigger can be executed in current state."""
        return trigger in self.machine.get_triggers(self.state)

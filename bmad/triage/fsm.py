"""Per-thread triage state machine using transitions library.

    new -> analyzed -> (await_approval) -> implemented -> resolved
    new -> analyzed -> skipped            (approval declined)
    any -> failed
"""

import logging

from transitions import Machine

logger = logging.getLogger(__name__)

STATES = [
    "new",
    "analyzed",
    "await_approval",
    "implemented",
    "resolved",
    "skipped",
    "failed",
]

TRANSITIONS = [
    {"trigger": "analyze", "source": "new", "dest": "analyzed"},

    # High scores need a human decision
    {"trigger": "request_approval", "source": "analyzed", "dest": "await_approval"},
    {"trigger": "decline", "source": "await_approval", "dest": "skipped"},
    {"trigger": "decline", "source": "analyzed", "dest": "skipped"},

    {"trigger": "implement", "source": "analyzed", "dest": "implemented"},
    {"trigger": "implement", "source": "await_approval", "dest": "implemented"},

    {"trigger": "resolve", "source": "implemented", "dest": "resolved"},
    # Outdated threads are resolved without analysis
    {"trigger": "resolve_outdated", "source": "new", "dest": "resolved"},

    {"trigger": "fail", "source": ["new", "analyzed", "await_approval", "implemented"], "dest": "failed"},
]


class ThreadFSM:
    """State of one review thread during triage."""

    def __init__(self, thread_id: str):
        self.thread_id = thread_id
        self.machine = Machine(
            model=self,
            states=STATES,
            transitions=TRANSITIONS,
            initial="new",
            auto_transitions=False,
            send_event=True,
            after_state_change="on_state_change",
        )

    def on_state_change(self, event) -> None:
        from_state = event.transition.source
        to_state = event.transition.dest
        trigger = event.event.name

        logger.debug(f"[FSM] {self.thread_id}: {from_state} -> {to_state} ({trigger})")

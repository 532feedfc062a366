"""
Grid job lifecycle state machine definitions.

This module defines the canonical job states and the allowed transitions
between them. Unlike a best-effort observer, the job owns its own state,
so disallowed transitions are programming errors and raise.
"""

from __future__ import annotations

from enum import Enum

from grid_orchestrator.core.domain.errors import InvalidJobTransitionError


class JobState(str, Enum):
    QUEUED = "QUEUED"
    RUNNING = "RUNNING"
    DONE = "DONE"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"


# Terminal job states: once reached, the job never changes state again.
JOB_TERMINAL_STATES: frozenset[JobState] = frozenset(
    {
        JobState.DONE,
        JobState.CANCELLED,
        JobState.FAILED,
    }
)


# Allowed job state transitions.
#
# Key   : previous state
# Value : set of allowed next states
#
# Notes:
# - QUEUED may finish without ever running, e.g. when every point was
#   already recovered from a previous attempt, or on early cancellation.
# - RUNNING is entered on the first dispatch.
JOB_ALLOWED_TRANSITIONS: dict[JobState, frozenset[JobState]] = {
    JobState.QUEUED: frozenset(
        {
            JobState.RUNNING,
            JobState.DONE,
            JobState.CANCELLED,
            JobState.FAILED,
        }
    ),

    JobState.RUNNING: frozenset(
        {
            JobState.DONE,
            JobState.CANCELLED,
            JobState.FAILED,
        }
    ),
}


def is_terminal_state(state: JobState) -> bool:
    """Return True if the given state is terminal."""
    return state in JOB_TERMINAL_STATES


def is_valid_transition(prev_state: JobState, next_state: JobState) -> bool:
    """Return True if the transition prev_state -> next_state is allowed."""
    allowed = JOB_ALLOWED_TRANSITIONS.get(prev_state)
    if allowed is None:
        return False
    return next_state in allowed


def require_transition(prev_state: JobState, next_state: JobState) -> None:
    if not is_valid_transition(prev_state, next_state):
        raise InvalidJobTransitionError(
            f"job cannot move from {prev_state.value} to {next_state.value}"
        )

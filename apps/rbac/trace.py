"""
Decision and trace types produced by the resolution engine.
"""
from dataclasses import dataclass
from enum import Enum
from typing import List, Tuple


class Outcome(str, Enum):
    ALLOW = 'allow'
    DENY = 'deny'
    SKIP = 'skip'


class MatchedSource(str, Enum):
    USER_OVERRIDE = 'user_override'
    ROLE_PERMISSION = 'role_permission'
    PLATFORM_ROLE_PERMISSION = 'platform_role_permission'
    DEFAULT_DENY = 'default_deny'


@dataclass(frozen=True)
class TraceStep:
    step_name: str
    outcome: Outcome
    reason: str

    @property
    def is_terminal(self) -> bool:
        return self.outcome is not Outcome.SKIP

    def as_dict(self):
        return {
            'step_name': self.step_name,
            'outcome': self.outcome.value,
            'reason': self.reason,
        }


@dataclass(frozen=True)
class Decision:
    allowed: bool
    matched_source: MatchedSource

    def as_dict(self):
        return {
            'allowed': self.allowed,
            'matched_source': self.matched_source.value,
        }


class TraceError(Exception):
    """Raised when a trace is built out of order."""


class TraceRecorder:
    """
    Append-only trace builder for one resolution.

    After the first allow/deny step every further step must be a skip.
    """

    def __init__(self):
        self._steps: List[TraceStep] = []
        self._terminal = None

    @property
    def decided(self) -> bool:
        return self._terminal is not None

    @property
    def terminal(self):
        return self._terminal

    def record(self, step_name, outcome, reason):
        outcome = Outcome(outcome)
        if outcome is not Outcome.SKIP and self._terminal is not None:
            raise TraceError(
                f"Trace already terminated at '{self._terminal.step_name}'; "
                f"cannot record '{step_name}' as {outcome.value}"
            )

        step = TraceStep(step_name=step_name, outcome=outcome, reason=reason)
        self._steps.append(step)
        if step.is_terminal:
            self._terminal = step
        return step

    def allow(self, step_name, reason):
        return self.record(step_name, Outcome.ALLOW, reason)

    def deny(self, step_name, reason):
        return self.record(step_name, Outcome.DENY, reason)

    def skip(self, step_name, reason):
        return self.record(step_name, Outcome.SKIP, reason)

    def steps(self) -> Tuple[TraceStep, ...]:
        """The finished trace."""
        return tuple(self._steps)


def trace_as_dicts(trace):
    """Serialize a trace for API responses and logs."""
    return [step.as_dict() for step in trace]

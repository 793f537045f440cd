"""
Counterexample Traces

A trace is an initial state followed by (action, resulting state) steps.
Its JSON form is the contract with presentation tools:

    {"initial_state": {...},
     "steps": [{"action": {"type": "CastVote", ...}, "state": {...}}, ...]}

``replay`` re-derives every state from the initial one through the
transition function and checks it against the recorded snapshot.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .actions import Action, action_from_dict
from .config import VerificationConfig
from .errors import ExplorationError
from .state import ProtocolState
from .transitions import apply, is_rejection

logger = logging.getLogger(__name__)


@dataclass
class TraceStep:
    action: Action
    state: ProtocolState


@dataclass
class Trace:
    initial_state: ProtocolState
    steps: List[TraceStep] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.steps)

    @property
    def actions(self) -> List[Action]:
        return [step.action for step in self.steps]

    @property
    def final_state(self) -> ProtocolState:
        return self.steps[-1].state if self.steps else self.initial_state

    @classmethod
    def from_actions(cls, initial_state: ProtocolState, actions: List[Action]) -> "Trace":
        """Build a trace by applying actions; every action must be legal"""
        trace = cls(initial_state)
        state = initial_state
        for position, action in enumerate(actions):
            outcome = apply(state, action)
            if is_rejection(outcome):
                raise ExplorationError("trace action rejected",
                                       {'step': position, 'reason': outcome.reason})
            trace.steps.append(TraceStep(action, outcome))
            state = outcome
        return trace

    def describe(self) -> List[str]:
        return [f"{i + 1}. {step.action.describe()}" for i, step in enumerate(self.steps)]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'initial_state': self.initial_state.to_dict(),
            'steps': [{'action': s.action.to_dict(), 'state': s.state.to_dict()}
                      for s in self.steps],
        }

    def to_json(self, indent: Optional[int] = None) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    @classmethod
    def from_dict(cls, data: Dict[str, Any], config: VerificationConfig) -> "Trace":
        initial = ProtocolState.from_dict(data['initial_state'], config)
        steps = [TraceStep(action_from_dict(s['action']), ProtocolState.from_dict(s['state'], config))
                 for s in data['steps']]
        return cls(initial, steps)

    @classmethod
    def from_json(cls, text: str, config: VerificationConfig) -> "Trace":
        return cls.from_dict(json.loads(text), config)

    def replay(self, config: Optional[VerificationConfig] = None) -> ProtocolState:
        """Re-apply every action from the initial state.

        Raises ExplorationError when an action is rejected or a derived
        state differs from the recorded snapshot. Returns the final state.
        """
        state = self.initial_state
        if config is not None:
            state = ProtocolState.from_dict(state.to_dict(), config)
        for position, step in enumerate(self.steps):
            outcome = apply(state, step.action)
            if is_rejection(outcome):
                raise ExplorationError("replayed action rejected",
                                       {'step': position, 'reason': outcome.reason})
            if outcome.fingerprint() != step.state.fingerprint():
                raise ExplorationError("replay diverged from recorded state", {'step': position})
            state = outcome
        logger.debug(f"Replayed {len(self.steps)} steps")
        return state

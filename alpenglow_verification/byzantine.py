"""
Byzantine Strategy Module

The adversary is a closed set of strategies. Each has a profile (required
stake fraction, detection likelihood, severity when caught, reward
multiplier), an injector that adds its actions to the catalogue for the
Byzantine validators of a state, and an estimator of attack success and
detection used by the utility evaluator.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Iterable, List

from .actions import Action, CastVote, ProposeBlock, Timeout
from .rotor import canonical_block, conflicting_block
from .state import ProtocolState, Severity, ValidatorStatus, VotePath

logger = logging.getLogger(__name__)


class ByzantineStrategy(Enum):
    EQUIVOCATION = "equivocation"
    SELECTIVE_WITHHOLDING = "selective_withholding"
    COALITION = "coalition"
    STRATEGIC_TIMING = "strategic_timing"


@dataclass(frozen=True)
class StrategyProfile:
    strategy: ByzantineStrategy
    base_detection: float
    severity: Severity
    reward_multiplier: float
    description: str


@dataclass(frozen=True)
class AttackEstimate:
    strategy: ByzantineStrategy
    byzantine_fraction: float
    required_fraction: float
    success_probability: float
    detection_probability: float


PROFILES: Dict[ByzantineStrategy, StrategyProfile] = {
    ByzantineStrategy.EQUIVOCATION: StrategyProfile(
        ByzantineStrategy.EQUIVOCATION, 0.99, Severity.SEVERE, 2.0,
        "vote for every candidate block and propose conflicting blocks when leading"),
    ByzantineStrategy.SELECTIVE_WITHHOLDING: StrategyProfile(
        ByzantineStrategy.SELECTIVE_WITHHOLDING, 0.2, Severity.MINOR, 0.5,
        "withhold votes and proposals, time out prematurely"),
    ByzantineStrategy.COALITION: StrategyProfile(
        ByzantineStrategy.COALITION, 0.8, Severity.CRITICAL, 3.0,
        "all Byzantine validators back the conflicting block together"),
    ByzantineStrategy.STRATEGIC_TIMING: StrategyProfile(
        ByzantineStrategy.STRATEGIC_TIMING, 0.3, Severity.MODERATE, 1.2,
        "vote only on the slow path to delay fast finalization"),
}


def parse_strategies(names: Iterable[str]) -> List[ByzantineStrategy]:
    return [ByzantineStrategy(name) for name in names]


def required_stake_fraction(strategy: ByzantineStrategy, fast_quorum: float,
                            slow_quorum: float) -> float:
    """Byzantine stake needed for the attack to succeed outright.

    Derived from quorum intersection: two slow quorums overlap in
    ``2 * slow - 1`` of the stake, and withholding more than ``1 - fast``
    (resp. ``1 - slow``) denies the fast (resp. slow) quorum.
    """
    if strategy is ByzantineStrategy.EQUIVOCATION:
        required = 2 * slow_quorum - 1
    elif strategy is ByzantineStrategy.COALITION:
        required = 1 - slow_quorum
    else:
        required = 1 - fast_quorum
    return max(0.0, round(required, 12))


def estimate_attack(strategy: ByzantineStrategy, byzantine_fraction: float,
                    fast_quorum: float, slow_quorum: float) -> AttackEstimate:
    required = required_stake_fraction(strategy, fast_quorum, slow_quorum)
    if required == 0:
        success = 1.0
    else:
        success = min(1.0, byzantine_fraction / required)
    detection = PROFILES[strategy].base_detection * (1.0 - byzantine_fraction)
    return AttackEstimate(strategy, byzantine_fraction, required, success, detection)


# Injection

def _attack_slots(state: ProtocolState) -> List[int]:
    return [s for s in state.started_slots() if not state.is_finalized(s)]


def _leader_proposals(state: ProtocolState, attackers: List[int], blocks_for) -> List[Action]:
    actions: List[Action] = []
    for slot in _attack_slots(state):
        if state.leader_of(slot) in attackers:
            actions.extend(ProposeBlock(slot, b) for b in blocks_for(slot))
    return actions


def _equivocation(state: ProtocolState, attackers: List[int]) -> List[Action]:
    actions = _leader_proposals(state, attackers,
                                lambda s: (canonical_block(s), conflicting_block(s)))
    for slot in _attack_slots(state):
        for validator in attackers:
            actions.extend(CastVote(validator, slot, b, VotePath.FAST)
                           for b in state.candidate_blocks(slot))
    return actions


def _selective_withholding(state: ProtocolState, attackers: List[int]) -> List[Action]:
    return [Timeout(validator, slot) for slot in _attack_slots(state) for validator in attackers]


def _coalition(state: ProtocolState, attackers: List[int]) -> List[Action]:
    actions = _leader_proposals(state, attackers, lambda s: (conflicting_block(s),))
    for slot in _attack_slots(state):
        actions.extend(CastVote(validator, slot, conflicting_block(slot), VotePath.FAST)
                       for validator in attackers)
    return actions


def _strategic_timing(state: ProtocolState, attackers: List[int]) -> List[Action]:
    actions = _leader_proposals(state, attackers, lambda s: (canonical_block(s),))
    for slot in _attack_slots(state):
        for block in state.proposals.get(slot, ()):
            actions.extend(CastVote(validator, slot, block, VotePath.SLOW)
                           for validator in attackers)
    return actions


INJECTORS: Dict[ByzantineStrategy, Callable[[ProtocolState, List[int]], List[Action]]] = {
    ByzantineStrategy.EQUIVOCATION: _equivocation,
    ByzantineStrategy.SELECTIVE_WITHHOLDING: _selective_withholding,
    ByzantineStrategy.COALITION: _coalition,
    ByzantineStrategy.STRATEGIC_TIMING: _strategic_timing,
}


def inject_attack(strategy: ByzantineStrategy, state: ProtocolState,
                  attackers: List[int]) -> List[Action]:
    """Candidate actions one strategy adds for the given attackers"""
    return INJECTORS[strategy](state, attackers)


def injected_actions(state: ProtocolState) -> List[Action]:
    """Union of the configured strategies' candidate actions, in stable order.

    Candidates are not filtered here; the transition function rejects the
    ones whose preconditions do not hold.
    """
    attackers = state.ids_with_status(ValidatorStatus.BYZANTINE)
    if not attackers:
        return []
    seen = set()
    actions: List[Action] = []
    for strategy in parse_strategies(state.config.byzantine_strategies):
        for action in inject_attack(strategy, state, attackers):
            if action not in seen:
                seen.add(action)
                actions.append(action)
    return actions

"""
Economic Model

Ledger arithmetic used by the transition function (epoch rewards,
slashing amounts, observable misbehaviour), the economic invariants
checked on every state, and the utility evaluator that compares honest
behaviour against each Byzantine strategy.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from .byzantine import PROFILES, ByzantineStrategy, estimate_attack, parse_strategies
from .state import ProtocolState, ValidatorStatus, ViolationKind

logger = logging.getLogger(__name__)


def epoch_rewards(state: ProtocolState, epoch: int) -> Dict[int, int]:
    """Rewards earned in an epoch, proportional to certified participation.

    A validator participates in a slot when one of its votes is inside the
    slot's certificate, and is credited with the stake it held when that
    certificate formed.
    """
    slots = state.epoch_slots(epoch)
    rate = state.ledger.reward_rate
    rewards = {}
    for validator in sorted(state.validators):
        participating_stake = 0
        for slot in slots:
            certificate = state.certificates.get(slot)
            if certificate and validator in certificate.voters:
                participating_stake += certificate.stake_of(validator)
        rewards[validator] = int(participating_stake * rate // len(slots))
    return rewards


def slash_amount(balance: int, rate: float) -> int:
    return int(balance * rate)


def evidence_observable(state: ProtocolState, validator: int, kind: ViolationKind,
                        slot: int) -> bool:
    """Whether the state contains proof of a misbehaviour"""
    if kind is ViolationKind.EQUIVOCATION:
        blocks = {v.block for v in state.slot_votes(slot) if v.validator == validator}
        return len(blocks) > 1
    if kind is ViolationKind.CONFLICTING_PROPOSAL:
        return state.leader_of(slot) == validator and len(state.proposals.get(slot, ())) > 1
    return (validator, slot) in state.premature_timeouts


def observed_violations(state: ProtocolState) -> List[Tuple[int, ViolationKind, int]]:
    """All (validator, kind, slot) misbehaviours currently provable"""
    found = []
    for slot in sorted(state.votes):
        for validator in sorted({v.validator for v in state.votes[slot]}):
            if evidence_observable(state, validator, ViolationKind.EQUIVOCATION, slot):
                found.append((validator, ViolationKind.EQUIVOCATION, slot))
    for slot in sorted(state.proposals):
        leader = state.leader_of(slot)
        if leader is not None and len(state.proposals[slot]) > 1:
            found.append((leader, ViolationKind.CONFLICTING_PROPOSAL, slot))
    for validator, slot in sorted(state.premature_timeouts):
        found.append((validator, ViolationKind.PREMATURE_TIMEOUT, slot))
    return found


def validate_economic_invariants(state: ProtocolState) -> List[str]:
    """Ledger consistency checks; returns one message per broken invariant"""
    ledger = state.ledger
    problems = []

    negative = sorted(v for v, b in ledger.balances.items() if b < 0)
    if negative:
        problems.append(f"negative balances for validators {negative}")
    negative = sorted(v for v, r in ledger.pending_rewards.items() if r < 0)
    if negative:
        problems.append(f"negative pending rewards for validators {negative}")
    if ledger.rewards_pool < 0:
        problems.append(f"rewards pool is negative ({ledger.rewards_pool})")

    slashed = ledger.slashed_validators()
    for validator in state.validators.values():
        if validator.stake > 0 and ledger.balances.get(validator.id, 0) == 0 \
                and validator.id not in slashed:
            problems.append(f"validator {validator.id} is active with a zero balance")

    expected = ledger.initial_total_stake + ledger.net_stake_change
    if state.total_stake() != expected:
        problems.append(f"total stake {state.total_stake()} differs from {expected} "
                        f"(initial plus net deposits)")

    if ledger.total_slashed != sum(ledger.slashed.values()):
        problems.append("total slashed does not match applied evidence")
    for index in ledger.slashed:
        if not 0 <= index < len(ledger.evidence):
            problems.append(f"slashing applied for unknown evidence {index}")
    return problems


# Utility

def utility(stake: float, reward_rate: float, success_probability: float,
            detection_probability: float, penalty_rate: float) -> float:
    """Expected payoff: reward when the strategy succeeds minus expected penalty"""
    return (stake * reward_rate * success_probability
            - stake * detection_probability * penalty_rate)


@dataclass(frozen=True)
class UtilityEstimate:
    validator: int
    strategy: Optional[ByzantineStrategy]  # None for honest behaviour
    stake: int
    success_probability: float
    detection_probability: float
    penalty_rate: float
    utility: float


@dataclass(frozen=True)
class ProfitableDeviation:
    validator: int
    strategy: ByzantineStrategy
    honest: UtilityEstimate
    deviation: UtilityEstimate

    def describe(self) -> str:
        return (f"validator {self.validator} gains by {self.strategy.value}: "
                f"{self.deviation.utility:.4f} > honest {self.honest.utility:.4f}")


class UtilityEvaluator:
    """Compares honest and deviating expected utility for every validator.

    A validator deviating joins the current Byzantine coalition, so the
    attack estimate is taken at the coalition's stake fraction including
    the deviator. Its honest alternative counts it among the responsive
    honest stake.
    """

    def __init__(self, state: ProtocolState):
        self.state = state
        self.total = state.total_stake()
        self.config = state.config

    def _fractions(self, validator: int) -> Tuple[float, float]:
        """(responsive honest fraction if honest, Byzantine fraction if deviating)"""
        stake = self.state.stake_of(validator)
        status = self.state.validators[validator].status
        honest = self.state.honest_stake()
        byzantine = self.state.byzantine_stake()
        if status is ValidatorStatus.HONEST:
            return honest / self.total, (byzantine + stake) / self.total
        if status is ValidatorStatus.BYZANTINE:
            return (honest + stake) / self.total, byzantine / self.total
        # crashed: neither responsive nor attacking yet
        return (honest + stake) / self.total, (byzantine + stake) / self.total

    def honest_utility(self, validator: int) -> UtilityEstimate:
        stake = self.state.stake_of(validator)
        responsive, _ = self._fractions(validator)
        success = min(1.0, responsive / self.config.slow_quorum)
        value = utility(stake, self.state.ledger.reward_rate, success, 0.0, 0.0)
        return UtilityEstimate(validator, None, stake, success, 0.0, 0.0, value)

    def deviation_utility(self, validator: int, strategy: ByzantineStrategy) -> UtilityEstimate:
        stake = self.state.stake_of(validator)
        _, fraction = self._fractions(validator)
        profile = PROFILES[strategy]
        attack = estimate_attack(strategy, fraction, self.config.fast_quorum,
                                 self.config.slow_quorum)
        penalty = self.state.ledger.slashing_rates[profile.severity]
        value = utility(stake, self.state.ledger.reward_rate * profile.reward_multiplier,
                        attack.success_probability, attack.detection_probability, penalty)
        return UtilityEstimate(validator, strategy, stake, attack.success_probability,
                               attack.detection_probability, penalty, value)

    def profitable_deviations(self) -> List[ProfitableDeviation]:
        strategies = parse_strategies(self.config.byzantine_strategies) or list(ByzantineStrategy)
        found = []
        for validator in sorted(self.state.validators):
            if self.state.stake_of(validator) == 0:
                continue
            honest = self.honest_utility(validator)
            for strategy in strategies:
                deviation = self.deviation_utility(validator, strategy)
                if deviation.utility > honest.utility:
                    found.append(ProfitableDeviation(validator, strategy, honest, deviation))
        if found:
            logger.debug(f"{len(found)} profitable deviation(s) found")
        return found

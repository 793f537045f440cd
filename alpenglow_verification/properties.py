"""
Property Checker Suite

Each property is a predicate returning ``None`` when it holds or a message
describing the violation. Always-properties are evaluated on every visited
state; eventually-properties on the final state of a complete execution,
which carries the full history (certificates, leader record, ledger).
"""

import logging
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from typing import Callable, Dict, List, Optional, Tuple

from .confidence import chi_square_bound
from .economics import UtilityEvaluator, validate_economic_invariants
from .leader import expected_shares, history_counts, leadership_counts
from .state import ProtocolState, ValidatorStatus, VotePath

logger = logging.getLogger(__name__)


class PropertyKind(Enum):
    ALWAYS = "always"
    EVENTUALLY = "eventually"


@dataclass(frozen=True)
class Property:
    name: str
    kind: PropertyKind
    check: Callable[[ProtocolState], Optional[str]]
    description: str


# Helpers

def _honest_led(state: ProtocolState, slot: int) -> bool:
    leader = state.leader_of(slot)
    return leader is not None and state.validators[leader].is_honest


def _obligated(state: ProtocolState, slot: int, path: VotePath) -> bool:
    """Whether timing obligations apply: undisturbed, honest-led, enough honest voters.

    Stakes of a certified slot are those recorded when its certificate formed.
    """
    if slot in state.network.disrupted_slots or not _honest_led(state, slot):
        return False
    voters = {v.validator for v in state.slot_votes(slot) if state.validators[v.validator].is_honest}
    certificate = state.certificates.get(slot)
    if certificate is None:
        return state.meets_quorum(sum(state.stake_of(v) for v in voters), path)
    return state.meets_quorum(sum(certificate.stake_of(v) for v in voters), path,
                              certificate.total_stake)


# Always-properties

def check_safety(state: ProtocolState) -> Optional[str]:
    """At most one finalized outcome per slot, each certificate for one block"""
    for slot, certificate in state.certificates.items():
        if certificate.slot != slot:
            return f"certificate for slot {certificate.slot} stored under slot {slot}"
        blocks = {v.block for v in certificate.votes}
        if blocks - {certificate.block}:
            return f"slot {slot} certificate mixes blocks {sorted(blocks)}"
        if slot in state.skip_certificates:
            return f"slot {slot} is both certified and skipped"
    return None


def check_byzantine_resilience(state: ProtocolState) -> Optional[str]:
    total = state.total_stake()
    byzantine = state.byzantine_stake()
    if byzantine > state.config.byzantine_bound * total:
        return None
    problem = check_safety(state)
    if problem:
        return f"safety failed with {byzantine}/{total} Byzantine stake: {problem}"
    # each certificate is judged against the stakes it was formed with
    for slot, certificate in state.certificates.items():
        formed_total = certificate.total_stake
        formed_byzantine = sum(certificate.stake_of(v) for v in state.validators
                               if state.validators[v].status is ValidatorStatus.BYZANTINE)
        if formed_byzantine > state.config.byzantine_bound * formed_total:
            continue
        honest = sum(certificate.stake_of(v) for v in certificate.voters
                     if state.validators[v].status is not ValidatorStatus.BYZANTINE)
        fraction = (state.config.fast_quorum if certificate.path is VotePath.FAST
                    else state.config.slow_quorum)
        if honest < fraction * formed_total - formed_byzantine - 1e-9:
            return (f"slot {slot} certificate has only {honest} honest stake, below the "
                    f"{certificate.path.value} quorum minus Byzantine stake")
    return None


def check_certificate_validity(state: ProtocolState) -> Optional[str]:
    for slot, certificate in state.certificates.items():
        for vote in certificate.votes:
            if vote.slot != slot or vote.block != certificate.block:
                return f"slot {slot} certificate contains a vote for slot {vote.slot} block {vote.block}"
            if certificate.path is VotePath.FAST and vote.path is not VotePath.FAST:
                return f"slot {slot} fast certificate contains a slow vote"
        for validator in {v.validator for v in certificate.votes}:
            if not state.validators[validator].is_honest:
                continue
            blocks = {v.block for v in state.slot_votes(slot) if v.validator == validator}
            if len(blocks) > 1:
                return f"honest validator {validator} equivocated in certified slot {slot}"
    return None


def check_erasure_availability(state: ProtocolState) -> Optional[str]:
    for block in state.blocks.values():
        if block.can_reconstruct() and not block.reconstructed:
            return (f"block {block.block} has {block.available_count}/{block.total_chunks} chunks "
                    f"(k={block.threshold}) but is not reconstructable")
    return None


def check_bounded_finalization(state: ProtocolState) -> Optional[str]:
    config = state.config
    bound = min(config.delta_fast, 2 * config.delta_slow)
    for slot, certificate in sorted(state.certificates.items()):
        if not _obligated(state, slot, VotePath.SLOW):
            continue
        elapsed = certificate.formed_at - state.slot_start(slot)
        if elapsed > bound:
            return f"slot {slot} finalized after {elapsed} ticks, bound is {bound}"
    return None


def check_economic_invariants(state: ProtocolState) -> Optional[str]:
    problems = validate_economic_invariants(state)
    return "; ".join(problems) if problems else None


# Eventually-properties

def check_progress(state: ProtocolState) -> Optional[str]:
    if state.honest_stake() <= state.config.slow_quorum * state.total_stake():
        return None
    pending = [s for s in range(1, state.config.max_slot + 1) if not state.is_finalized(s)]
    if pending:
        return f"slots {pending} never certified or skipped"
    return None


def check_fast_path_efficiency(state: ProtocolState) -> Optional[str]:
    config = state.config
    for slot in range(1, config.max_slot + 1):
        if not _obligated(state, slot, VotePath.FAST):
            continue
        certificate = state.certificates.get(slot)
        if certificate is None or certificate.path is not VotePath.FAST:
            return f"slot {slot} had fast-quorum honest votes but no fast certificate"
        deadline = state.slot_start(slot) + state.network.delay + config.delta_fast
        if certificate.formed_at > deadline:
            return f"slot {slot} fast certificate formed at t={certificate.formed_at}, after one round"
    return None


@lru_cache(maxsize=64)
def _schedule_counts(stakes: Tuple[Tuple[int, int], ...], seed: int, window_size: int,
                     windows: int) -> Tuple[Tuple[int, int], ...]:
    counts = leadership_counts(dict(stakes), seed, window_size, windows)
    return tuple(sorted(counts.items()))


def leader_fairness(state: ProtocolState) -> Tuple[float, float]:
    """Chi-square statistic of leadership counts against stake shares, and its bound"""
    config = state.config
    stakes = {vid: stake for vid, stake in enumerate(config.stakes)}
    counts = dict(_schedule_counts(tuple(sorted(stakes.items())), state.window.seed,
                                   config.window_size, config.fairness_windows))
    for validator, count in history_counts(state.leader_history(), list(stakes)).items():
        counts[validator] = counts.get(validator, 0) + count

    shares = {v: s for v, s in expected_shares(stakes).items() if s > 0}
    observations = sum(counts[v] for v in shares)
    statistic = sum((counts[v] - observations * share) ** 2 / (observations * share)
                    for v, share in shares.items())
    if len(shares) < 2:
        return statistic, float('inf')
    bound = chi_square_bound(len(shares) - 1, config.fairness_alpha)
    return statistic, bound


def check_leader_rotation_fairness(state: ProtocolState) -> Optional[str]:
    statistic, bound = leader_fairness(state)
    if statistic > bound:
        return f"leadership chi-square {statistic:.2f} exceeds bound {bound:.2f}"
    return None


def check_economic_equilibrium(state: ProtocolState) -> Optional[str]:
    deviations = UtilityEvaluator(state).profitable_deviations()
    if deviations:
        return deviations[0].describe()
    return None


ALWAYS_PROPERTIES: List[Property] = [
    Property("safety", PropertyKind.ALWAYS, check_safety,
             "at most one certified block per slot"),
    Property("byzantine_resilience", PropertyKind.ALWAYS, check_byzantine_resilience,
             "safety and honest quorum cores while Byzantine stake is within bound"),
    Property("certificate_validity", PropertyKind.ALWAYS, check_certificate_validity,
             "certificates hold consistent votes and no honest equivocation"),
    Property("erasure_availability", PropertyKind.ALWAYS, check_erasure_availability,
             "k available chunks make a block reconstructable"),
    Property("bounded_finalization", PropertyKind.ALWAYS, check_bounded_finalization,
             "finalization within min(delta_fast, 2 * delta_slow)"),
    Property("economic_invariants", PropertyKind.ALWAYS, check_economic_invariants,
             "ledger balances, pool and stake totals stay consistent"),
]

EVENTUALLY_PROPERTIES: List[Property] = [
    Property("progress", PropertyKind.EVENTUALLY, check_progress,
             "every slot is certified or skipped when honest stake exceeds the slow quorum"),
    Property("fast_path_efficiency", PropertyKind.EVENTUALLY, check_fast_path_efficiency,
             "fast-quorum honest participation yields a one-round fast certificate"),
    Property("leader_rotation_fairness", PropertyKind.EVENTUALLY, check_leader_rotation_fairness,
             "leadership frequency is consistent with stake"),
    Property("economic_equilibrium", PropertyKind.EVENTUALLY, check_economic_equilibrium,
             "no validator profits from a Byzantine strategy"),
]

ALL_PROPERTIES: List[Property] = ALWAYS_PROPERTIES + EVENTUALLY_PROPERTIES


def _evaluate(properties: List[Property], state: ProtocolState) -> Dict[str, str]:
    violations = {}
    for prop in properties:
        message = prop.check(state)
        if message is not None:
            violations[prop.name] = message
    return violations


def check_always(state: ProtocolState) -> Dict[str, str]:
    """Violated always-properties of a state, name -> message"""
    return _evaluate(ALWAYS_PROPERTIES, state)


def check_eventually(state: ProtocolState) -> Dict[str, str]:
    """Violated eventually-properties of a terminal state, name -> message"""
    return _evaluate(EVENTUALLY_PROPERTIES, state)

"""
Enabled-action enumeration.

Honest behaviour follows a maximal-progress schedule: urgent protocol
steps (rotation, proposals, fast-path votes, fast certification, due
timeouts, skip certification, chunk relaying) come first; slow
certification settles a slot only once nothing urgent is left; and time
advances only when neither is possible. Adversarial, network and economic
actions are offered in every state so the explorer interleaves them
everywhere.
"""

import logging
from typing import AbstractSet, List, Tuple

from .actions import (Action, AdvanceTime, CastVote, Certify, DistributeRewards, HealPartition,
                      NetworkPartition, PropagateChunk, ProposeBlock, ReportSlashing,
                      RotateLeader, SkipCertify, SlashValidator, StakeDeposit, StakeWithdrawal,
                      Timeout)
from .byzantine import injected_actions
from .economics import observed_violations
from .rotor import canonical_block
from .state import ProtocolState, ValidatorStatus, VotePath
from .transitions import apply, is_rejection

logger = logging.getLogger(__name__)

Successor = Tuple[Action, ProtocolState]


def urgent_candidates(state: ProtocolState) -> List[Action]:
    actions: List[Action] = []
    honest = state.ids_with_status(ValidatorStatus.HONEST)
    for slot in state.started_slots():
        if slot not in state.leaders:
            actions.append(RotateLeader(slot))
            continue
        if state.is_finalized(slot):
            continue
        leader = state.leaders[slot]
        if state.validators[leader].is_honest:
            actions.append(ProposeBlock(slot, canonical_block(slot)))
        for block in state.proposals.get(slot, ()):
            actions.extend(CastVote(v, slot, block, VotePath.FAST) for v in honest)
            actions.append(Certify(slot, block, VotePath.FAST))
        actions.extend(Timeout(v, slot) for v in honest)
        actions.append(SkipCertify(slot))
    for block_id, assignment in sorted(state.relays.items()):
        for index, relays in enumerate(assignment.chunk_relays):
            actions.append(PropagateChunk(assignment.slot, block_id, index, relays))
    return actions


def settle_candidates(state: ProtocolState) -> List[Action]:
    return [Certify(slot, block, VotePath.SLOW)
            for slot in state.started_slots() if not state.is_finalized(slot)
            for block in state.proposals.get(slot, ())]


def network_candidates(state: ProtocolState) -> List[Action]:
    config = state.config
    if not config.explore_partitions:
        return []
    if state.network.partitioned:
        return [HealPartition()]
    ids = sorted(state.validators)
    if len(ids) < 2 or state.network.partitions_opened >= config.max_partitions:
        return []
    half = len(ids) // 2
    return [NetworkPartition(tuple(ids[:half]), tuple(ids[half:]))]


def economic_candidates(state: ProtocolState) -> List[Action]:
    config = state.config
    if not config.explore_economics:
        return []
    ledger = state.ledger
    actions: List[Action] = [DistributeRewards(ledger.last_rewarded_epoch + 1)]

    honest = state.ids_with_status(ValidatorStatus.HONEST)
    for validator, kind, slot in observed_violations(state):
        reporter = next((h for h in honest if h != validator), None)
        if reporter is not None and not ledger.has_evidence(validator, kind, slot):
            actions.append(ReportSlashing(reporter, validator, kind, slot))
    actions.extend(SlashValidator(e.validator, i) for i, e in enumerate(ledger.evidence)
                   if i not in ledger.slashed)

    if config.stake_change_amount > 0 and ledger.stake_changes < config.max_stake_changes:
        for validator in sorted(state.validators):
            actions.append(StakeDeposit(validator, config.stake_change_amount))
            actions.append(StakeWithdrawal(validator, config.stake_change_amount))
    return actions


def _legal(state: ProtocolState, candidates: List[Action],
           excluded: AbstractSet[Action]) -> List[Successor]:
    result = []
    for action in candidates:
        if action in excluded:
            continue
        outcome = apply(state, action)
        if not is_rejection(outcome):
            result.append((action, outcome))
    return result


def successors(state: ProtocolState, excluded: AbstractSet[Action] = frozenset()) -> List[Successor]:
    """Legal (action, successor) pairs of a state under the tiered schedule.

    ``excluded`` actions are treated as unavailable, e.g. messages the
    sampler decided were lost.
    """
    scheduled = _legal(state, urgent_candidates(state), excluded)
    if not scheduled:
        scheduled = _legal(state, settle_candidates(state), excluded)
    if not scheduled:
        scheduled = _legal(state, [AdvanceTime(1)], excluded)

    always = injected_actions(state) + network_candidates(state) + economic_candidates(state)
    return scheduled + _legal(state, always, excluded)


def enabled_actions(state: ProtocolState) -> List[Action]:
    return [action for action, _ in successors(state)]

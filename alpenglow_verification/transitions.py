"""
Transition Function

``apply(state, action)`` returns either a new ``ProtocolState`` or a
``Rejection`` naming the unmet precondition. Rejections are ordinary
values: the exploration engine simply adds no edge for them. The input
state is never modified.
"""

import logging
from dataclasses import dataclass, replace
from typing import Callable, Dict, Type, Union

from .actions import (Action, AdvanceTime, CastVote, Certify, DistributeRewards, HealPartition,
                      NetworkPartition, PropagateChunk, ProposeBlock, ReportSlashing,
                      RotateLeader, SkipCertify, SlashValidator, StakeDeposit, StakeWithdrawal,
                      Timeout, UpdateEconomicParameters, WithdrawRewards)
from .economics import epoch_rewards, evidence_observable, slash_amount
from .leader import build_window, window_index
from .rotor import canonical_block, create_erasure_coded_block, sample_relays
from .state import (VIOLATION_SEVERITY, Certificate, ProtocolState, Severity, SkipCertificate,
                    SlashingEvidence, ValidatorStatus, Vote, VotePath)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Rejection:
    """An action whose preconditions do not hold in the given state"""
    action: Action
    reason: str

    def __str__(self) -> str:
        return f"{self.action.describe()} rejected: {self.reason}"


Outcome = Union[ProtocolState, Rejection]


def is_rejection(outcome: Outcome) -> bool:
    return isinstance(outcome, Rejection)


def _mark_disrupted(state: ProtocolState):
    """While partitioned, every started and unfinalized slot is disrupted"""
    if not state.network.partitioned:
        return
    pending = {s for s in state.started_slots() if not state.is_finalized(s)}
    if not pending <= state.network.disrupted_slots:
        state.network = replace(state.network,
                                disrupted_slots=state.network.disrupted_slots | pending)


def _slot_in_range(state: ProtocolState, slot: int) -> bool:
    return 1 <= slot <= state.config.max_slot


# Time and leaders

def _advance_time(state: ProtocolState, action: AdvanceTime) -> Outcome:
    if action.ticks < 1:
        return Rejection(action, "time only moves forward")
    if state.clock + action.ticks > state.config.max_time:
        return Rejection(action, f"clock would pass max_time {state.config.max_time}")
    new = state.copy()
    new.clock += action.ticks
    _mark_disrupted(new)
    return new


def _rotate_leader(state: ProtocolState, action: RotateLeader) -> Outcome:
    slot = action.slot
    if not _slot_in_range(state, slot):
        return Rejection(action, "slot outside the modelled range")
    if slot in state.leaders:
        return Rejection(action, "leader already rotated in")
    if slot > 1 and slot - 1 not in state.leaders:
        return Rejection(action, "previous slot has no leader yet")

    new = state.copy()
    if not state.window.contains(slot):
        next_id = state.window.window_id + 1
        if window_index(slot, state.config.window_size) != next_id:
            return Rejection(action, "slot is outside the current and next window")
        new.window = build_window(state.stakes(), state.window.seed, next_id,
                                  state.config.window_size)
        logger.debug(f"Installed leader window {next_id} at slot {slot}")
    new.leaders[slot] = new.window.leader_for(slot)
    return new


def _propose_block(state: ProtocolState, action: ProposeBlock) -> Outcome:
    slot, block = action.slot, action.block
    leader = state.leader_of(slot)
    if leader is None:
        return Rejection(action, "no leader for slot")
    status = state.validators[leader].status
    if status is ValidatorStatus.CRASHED:
        return Rejection(action, "leader has crashed")
    if state.clock < state.slot_start(slot):
        return Rejection(action, "slot has not started")
    if state.is_finalized(slot):
        return Rejection(action, "slot already finalized")
    if block not in state.candidate_blocks(slot):
        return Rejection(action, f"block {block} is not a candidate for slot {slot}")
    proposed = state.proposals.get(slot, ())
    if block in proposed:
        return Rejection(action, "block already proposed")
    if status is ValidatorStatus.HONEST and (proposed or block != canonical_block(slot)):
        return Rejection(action, "honest leaders propose one canonical block")

    config = state.config
    new = state.copy()
    new.proposals[slot] = proposed + (block,)
    new.blocks[block] = create_erasure_coded_block(slot, block, leader, config.redundancy,
                                                   config.erasure_threshold, state.clock)
    relay_stakes = {v: s for v, s in state.stakes().items() if v != leader}
    new.relays[block] = sample_relays(relay_stakes, slot, block, config.chunk_count,
                                      config.min_relay_sample_size, state.window.seed)
    return new


# Votes and certificates

def _cast_vote(state: ProtocolState, action: CastVote) -> Outcome:
    validator = state.validators.get(action.validator)
    slot = action.slot
    if validator is None:
        return Rejection(action, "unknown validator")
    if validator.status is ValidatorStatus.CRASHED:
        return Rejection(action, "validator has crashed")
    if not _slot_in_range(state, slot):
        return Rejection(action, "slot outside the modelled range")
    if state.is_finalized(slot):
        return Rejection(action, "slot already finalized")
    if action.block not in state.candidate_blocks(slot):
        return Rejection(action, f"block {action.block} is not a candidate for slot {slot}")
    vote = Vote(action.validator, slot, action.block, action.path)
    if vote in state.slot_votes(slot):
        return Rejection(action, "duplicate vote")

    if validator.is_honest:
        if action.block not in state.proposals.get(slot, ()):
            return Rejection(action, "block was not proposed")
        if state.has_voted(validator.id, slot, action.path):
            return Rejection(action, f"already voted on the {action.path.value} path")
        if any(v.validator == validator.id and v.block != action.block
               for v in state.slot_votes(slot)):
            return Rejection(action, "honest validators never vote for two blocks")
        if not state.message_deliverable(validator.id, state.leader_of(slot), slot):
            return Rejection(action, "vote not deliverable yet")
    elif state.clock < state.slot_start(slot):
        return Rejection(action, "slot has not started")

    new = state.copy()
    new.votes[slot] = state.slot_votes(slot) | {vote}
    return new


def _certify(state: ProtocolState, action: Certify) -> Outcome:
    slot = action.slot
    if slot in state.certificates:
        return Rejection(action, f"slot already certified for block {state.certificates[slot].block}")
    if slot in state.skip_certificates:
        return Rejection(action, "slot was skipped")
    path_filter = VotePath.FAST if action.path is VotePath.FAST else None
    stake, votes = state.support(slot, action.block, path_filter)
    if not state.meets_quorum(stake, action.path):
        return Rejection(action, f"{stake} of {state.total_stake()} stake is below the "
                                 f"{action.path.value} quorum")

    new = state.copy()
    new.certificates[slot] = Certificate(slot, action.block, action.path, votes, stake,
                                         state.clock, state.stake_snapshot())
    logger.debug(f"Slot {slot} certified for block {action.block} on the "
                 f"{action.path.value} path at t={state.clock}")
    return new


def _timeout(state: ProtocolState, action: Timeout) -> Outcome:
    validator = state.validators.get(action.validator)
    slot = action.slot
    if validator is None:
        return Rejection(action, "unknown validator")
    if validator.status is ValidatorStatus.CRASHED:
        return Rejection(action, "validator has crashed")
    if not _slot_in_range(state, slot) or state.clock < state.slot_start(slot):
        return Rejection(action, "slot has not started")
    if state.is_finalized(slot):
        return Rejection(action, "slot already finalized")
    if validator.id in state.timeouts.get(slot, frozenset()):
        return Rejection(action, "timeout already registered")
    early = state.clock < state.slot_start(slot) + state.config.timeout_delay
    if early and validator.is_honest:
        return Rejection(action, "timeout delay has not elapsed")

    new = state.copy()
    new.timeouts[slot] = state.timeouts.get(slot, frozenset()) | {validator.id}
    if early:
        new.premature_timeouts = state.premature_timeouts | {(validator.id, slot)}
    return new


def _skip_certify(state: ProtocolState, action: SkipCertify) -> Outcome:
    slot = action.slot
    if slot in state.certificates:
        return Rejection(action, "slot already certified")
    if slot in state.skip_certificates:
        return Rejection(action, "slot already skipped")
    timeouts = state.timeouts.get(slot, frozenset())
    if len(timeouts) < state.config.timeout_threshold:
        return Rejection(action, f"{len(timeouts)} of {state.config.timeout_threshold} "
                                 f"timeouts registered")

    new = state.copy()
    new.skip_certificates[slot] = SkipCertificate(slot, timeouts, state.clock)
    logger.debug(f"Slot {slot} skipped at t={state.clock}")
    return new


def _propagate_chunk(state: ProtocolState, action: PropagateChunk) -> Outcome:
    if len(action.relays) < state.config.min_relay_sample_size:
        return Rejection(action, "relay set below the minimum sample size")
    block = state.blocks.get(action.block)
    if block is None or block.slot != action.slot:
        return Rejection(action, "block was not proposed in this slot")
    if not 0 <= action.chunk < block.total_chunks:
        return Rejection(action, f"no chunk {action.chunk}")
    if any(r not in state.validators for r in action.relays):
        return Rejection(action, "unknown relay")
    if state.clock < state.slot_start(action.slot) + state.network.delay:
        return Rejection(action, "chunk not deliverable yet")

    holders = frozenset(
        r for r in action.relays
        if r != block.proposer
        and state.validators[r].status is not ValidatorStatus.CRASHED
        and state.network.can_communicate(block.proposer, r)
    )
    if not holders:
        return Rejection(action, "no relay can receive the chunk")
    if holders <= block.chunks[action.chunk].holders:
        return Rejection(action, "chunk already held by every reachable relay")

    new = state.copy()
    new.blocks[action.block] = block.with_holders(action.chunk, holders)
    return new


# Economics

def _distribute_rewards(state: ProtocolState, action: DistributeRewards) -> Outcome:
    ledger = state.ledger
    epoch = action.epoch
    if epoch != ledger.last_rewarded_epoch + 1:
        return Rejection(action, f"next epoch to reward is {ledger.last_rewarded_epoch + 1}")
    slots = state.epoch_slots(epoch)
    if not slots:
        return Rejection(action, "epoch is outside the modelled slots")
    if not all(state.is_finalized(s) for s in slots):
        return Rejection(action, "epoch has unfinalized slots")
    rewards = epoch_rewards(state, epoch)
    total = sum(rewards.values())
    if total > ledger.rewards_pool:
        return Rejection(action, f"rewards pool {ledger.rewards_pool} cannot cover {total}")

    new = state.copy()
    for validator, amount in rewards.items():
        new.ledger.pending_rewards[validator] = new.ledger.pending_rewards.get(validator, 0) + amount
    new.ledger.rewards_pool -= total
    new.ledger.last_rewarded_epoch = epoch
    return new


def _withdraw_rewards(state: ProtocolState, action: WithdrawRewards) -> Outcome:
    pending = state.ledger.pending_rewards.get(action.validator)
    if pending is None:
        return Rejection(action, "unknown validator")
    if not 0 < action.amount <= pending:
        return Rejection(action, f"amount must be in (0, {pending}]")

    new = state.copy()
    new.ledger.pending_rewards[action.validator] = pending - action.amount
    new.ledger.balances[action.validator] += action.amount
    return new


def _report_slashing(state: ProtocolState, action: ReportSlashing) -> Outcome:
    reporter = state.validators.get(action.reporter)
    if reporter is None or not reporter.is_honest:
        return Rejection(action, "reporter must be an honest validator")
    if action.reporter == action.validator or action.validator not in state.validators:
        return Rejection(action, "reported validator must be another known validator")
    if not evidence_observable(state, action.validator, action.kind, action.slot):
        return Rejection(action, "no evidence of the violation in this state")
    if state.ledger.has_evidence(action.validator, action.kind, action.slot):
        return Rejection(action, "violation already reported")

    new = state.copy()
    new.ledger.evidence.append(SlashingEvidence(
        validator=action.validator,
        kind=action.kind,
        severity=VIOLATION_SEVERITY[action.kind],
        slot=action.slot,
        reporter=action.reporter,
        timestamp=state.clock,
    ))
    return new


def _slash_validator(state: ProtocolState, action: SlashValidator) -> Outcome:
    ledger = state.ledger
    index = action.evidence_index
    if not 0 <= index < len(ledger.evidence):
        return Rejection(action, "unknown evidence")
    evidence = ledger.evidence[index]
    if evidence.validator != action.validator:
        return Rejection(action, "evidence concerns another validator")
    if index in ledger.slashed:
        return Rejection(action, "evidence already applied")

    amount = slash_amount(ledger.balances[action.validator], ledger.slashing_rates[evidence.severity])
    new = state.copy()
    new.ledger.balances[action.validator] -= amount
    new.ledger.slashed[index] = amount
    new.ledger.total_slashed += amount
    logger.debug(f"Slashed validator {action.validator} by {amount} for {evidence.kind.value}")
    return new


def _stake_deposit(state: ProtocolState, action: StakeDeposit) -> Outcome:
    validator = state.validators.get(action.validator)
    if validator is None:
        return Rejection(action, "unknown validator")
    if action.amount <= 0:
        return Rejection(action, "deposit must be positive")

    new = state.copy()
    new.validators[validator.id] = replace(validator, stake=validator.stake + action.amount)
    new.ledger.balances[validator.id] += action.amount
    new.ledger.net_stake_change += action.amount
    new.ledger.stake_changes += 1
    return new


def _stake_withdrawal(state: ProtocolState, action: StakeWithdrawal) -> Outcome:
    validator = state.validators.get(action.validator)
    if validator is None:
        return Rejection(action, "unknown validator")
    amount = action.amount
    if amount <= 0:
        return Rejection(action, "withdrawal must be positive")
    if amount > validator.stake or amount > state.ledger.balances[validator.id]:
        return Rejection(action, "insufficient stake or balance")
    remaining = validator.stake - amount
    if 0 < remaining < state.ledger.min_active_stake:
        return Rejection(action, f"remaining stake {remaining} below the minimum active stake")
    if state.total_stake() - amount <= 0:
        return Rejection(action, "total stake would reach zero")

    new = state.copy()
    new.validators[validator.id] = replace(validator, stake=remaining)
    new.ledger.balances[validator.id] -= amount
    new.ledger.net_stake_change -= amount
    new.ledger.stake_changes += 1
    return new


def _update_parameters(state: ProtocolState, action: UpdateEconomicParameters) -> Outcome:
    if not 0.0 <= action.reward_rate <= 1.0:
        return Rejection(action, "reward rate outside [0, 1]")
    rates = {}
    for name, rate in action.slashing_rates:
        try:
            severity = Severity(name)
        except ValueError:
            return Rejection(action, f"unknown severity {name!r}")
        if not 0.0 <= rate <= 1.0:
            return Rejection(action, f"{name} rate outside [0, 1]")
        rates[severity] = rate

    new = state.copy()
    new.ledger.reward_rate = action.reward_rate
    new.ledger.slashing_rates.update(rates)
    return new


# Network

def _network_partition(state: ProtocolState, action: NetworkPartition) -> Outcome:
    if state.network.partitioned:
        return Rejection(action, "network already partitioned")
    side_a, side_b = frozenset(action.side_a), frozenset(action.side_b)
    if not side_a or not side_b:
        return Rejection(action, "both sides must be non-empty")
    if side_a & side_b:
        return Rejection(action, "sides overlap")
    if side_a | side_b != set(state.validators):
        return Rejection(action, "sides must cover every validator")

    new = state.copy()
    new.network = replace(state.network, partition=(side_a, side_b),
                          partitions_opened=state.network.partitions_opened + 1)
    _mark_disrupted(new)
    return new


def _heal_partition(state: ProtocolState, action: HealPartition) -> Outcome:
    if not state.network.partitioned:
        return Rejection(action, "network is not partitioned")
    new = state.copy()
    new.network = replace(state.network, partition=None)
    return new


HANDLERS: Dict[Type[Action], Callable[[ProtocolState, Action], Outcome]] = {
    AdvanceTime: _advance_time,
    RotateLeader: _rotate_leader,
    ProposeBlock: _propose_block,
    CastVote: _cast_vote,
    Certify: _certify,
    Timeout: _timeout,
    SkipCertify: _skip_certify,
    PropagateChunk: _propagate_chunk,
    DistributeRewards: _distribute_rewards,
    WithdrawRewards: _withdraw_rewards,
    ReportSlashing: _report_slashing,
    SlashValidator: _slash_validator,
    StakeDeposit: _stake_deposit,
    StakeWithdrawal: _stake_withdrawal,
    UpdateEconomicParameters: _update_parameters,
    NetworkPartition: _network_partition,
    HealPartition: _heal_partition,
}


def apply(state: ProtocolState, action: Action) -> Outcome:
    """Apply an action, returning the successor state or a Rejection"""
    handler = HANDLERS.get(type(action))
    if handler is None:
        raise TypeError(f"no transition defined for {type(action).__name__}")
    return handler(state, action)

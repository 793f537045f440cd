"""
Alpenglow Protocol State Model

One point in the protocol's execution: validators and stakes, per-slot
votes, certificates and skip-certificates, erasure-coded blocks with chunk
availability, leader-window state, the economic ledger and the network
condition.

Records (votes, certificates, chunks, evidence) are frozen. Containers are
copied by ``ProtocolState.copy()`` before a transition mutates them, so a
state, once produced, is never changed and can be kept for counterexample
reporting.
"""

import hashlib
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from .config import VerificationConfig
from .leader import LeaderWindow, build_window, window_index
from .rotor import (ErasureCodedBlock, RelayAssignment, canonical_block,
                    conflicting_block)

logger = logging.getLogger(__name__)


class ValidatorStatus(Enum):
    HONEST = "honest"
    BYZANTINE = "byzantine"
    CRASHED = "crashed"


class VotePath(Enum):
    FAST = "fast"  # 80% stake threshold
    SLOW = "slow"  # 60% stake threshold


class Severity(Enum):
    MINOR = "minor"
    MODERATE = "moderate"
    SEVERE = "severe"
    CRITICAL = "critical"


class ViolationKind(Enum):
    EQUIVOCATION = "equivocation"
    CONFLICTING_PROPOSAL = "conflicting_proposal"
    PREMATURE_TIMEOUT = "premature_timeout"


VIOLATION_SEVERITY = {
    ViolationKind.EQUIVOCATION: Severity.SEVERE,
    ViolationKind.CONFLICTING_PROPOSAL: Severity.CRITICAL,
    ViolationKind.PREMATURE_TIMEOUT: Severity.MINOR,
}


@dataclass(frozen=True)
class Validator:
    id: int
    stake: int
    status: ValidatorStatus

    @property
    def is_honest(self) -> bool:
        return self.status is ValidatorStatus.HONEST

    def to_dict(self) -> Dict[str, Any]:
        return {'id': self.id, 'stake': self.stake, 'status': self.status.value}


@dataclass(frozen=True)
class Vote:
    validator: int
    slot: int
    block: int
    path: VotePath

    def sort_key(self) -> Tuple[int, int, int, str]:
        return (self.slot, self.validator, self.block, self.path.value)

    def to_dict(self) -> Dict[str, Any]:
        return {'validator': self.validator, 'slot': self.slot, 'block': self.block,
                'path': self.path.value}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Vote":
        return cls(data['validator'], data['slot'], data['block'], VotePath(data['path']))


@dataclass(frozen=True)
class Certificate:
    """Proof that a block was finalized for a slot.

    ``stake_snapshot`` holds every validator's stake when the certificate
    formed; later deposits and withdrawals do not change what it proves.
    """
    slot: int
    block: int
    path: VotePath
    votes: FrozenSet[Vote]
    stake: int
    formed_at: int
    stake_snapshot: Tuple[Tuple[int, int], ...]

    def stake_of(self, validator: int) -> int:
        return dict(self.stake_snapshot).get(validator, 0)

    @property
    def total_stake(self) -> int:
        return sum(stake for _, stake in self.stake_snapshot)

    @property
    def voters(self) -> FrozenSet[int]:
        return frozenset(v.validator for v in self.votes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'slot': self.slot,
            'block': self.block,
            'path': self.path.value,
            'votes': [v.to_dict() for v in sorted(self.votes, key=Vote.sort_key)],
            'stake': self.stake,
            'formed_at': self.formed_at,
            'stake_snapshot': [list(item) for item in self.stake_snapshot],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Certificate":
        return cls(data['slot'], data['block'], VotePath(data['path']),
                   frozenset(Vote.from_dict(v) for v in data['votes']),
                   data['stake'], data['formed_at'],
                   tuple((v, s) for v, s in data['stake_snapshot']))


@dataclass(frozen=True)
class SkipCertificate:
    """Proof that a slot was explicitly skipped after timeouts"""
    slot: int
    timeouts: FrozenSet[int]
    formed_at: int

    def to_dict(self) -> Dict[str, Any]:
        return {'slot': self.slot, 'timeouts': sorted(self.timeouts), 'formed_at': self.formed_at}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SkipCertificate":
        return cls(data['slot'], frozenset(data['timeouts']), data['formed_at'])


@dataclass(frozen=True)
class SlashingEvidence:
    validator: int
    kind: ViolationKind
    severity: Severity
    slot: int
    reporter: int
    timestamp: int

    def to_dict(self) -> Dict[str, Any]:
        return {'validator': self.validator, 'kind': self.kind.value,
                'severity': self.severity.value, 'slot': self.slot,
                'reporter': self.reporter, 'timestamp': self.timestamp}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SlashingEvidence":
        return cls(data['validator'], ViolationKind(data['kind']), Severity(data['severity']),
                   data['slot'], data['reporter'], data['timestamp'])


@dataclass
class EconomicLedger:
    """Balances, rewards pool, slashing evidence and rate parameters"""
    balances: Dict[int, int]
    pending_rewards: Dict[int, int]
    rewards_pool: int
    reward_rate: float
    slashing_rates: Dict[Severity, float]
    min_active_stake: int
    initial_total_stake: int
    evidence: List[SlashingEvidence] = field(default_factory=list)
    slashed: Dict[int, int] = field(default_factory=dict)  # evidence index -> amount
    total_slashed: int = 0
    last_rewarded_epoch: int = 0
    net_stake_change: int = 0
    stake_changes: int = 0

    def copy(self) -> "EconomicLedger":
        return EconomicLedger(
            balances=dict(self.balances),
            pending_rewards=dict(self.pending_rewards),
            rewards_pool=self.rewards_pool,
            reward_rate=self.reward_rate,
            slashing_rates=dict(self.slashing_rates),
            min_active_stake=self.min_active_stake,
            initial_total_stake=self.initial_total_stake,
            evidence=list(self.evidence),
            slashed=dict(self.slashed),
            total_slashed=self.total_slashed,
            last_rewarded_epoch=self.last_rewarded_epoch,
            net_stake_change=self.net_stake_change,
            stake_changes=self.stake_changes,
        )

    def has_evidence(self, validator: int, kind: ViolationKind, slot: int) -> bool:
        return any(e.validator == validator and e.kind is kind and e.slot == slot
                   for e in self.evidence)

    def slashed_validators(self) -> FrozenSet[int]:
        return frozenset(self.evidence[i].validator for i in self.slashed)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'balances': {str(v): b for v, b in sorted(self.balances.items())},
            'pending_rewards': {str(v): r for v, r in sorted(self.pending_rewards.items())},
            'rewards_pool': self.rewards_pool,
            'reward_rate': self.reward_rate,
            'slashing_rates': {s.value: r for s, r in sorted(self.slashing_rates.items(),
                                                              key=lambda i: i[0].value)},
            'min_active_stake': self.min_active_stake,
            'initial_total_stake': self.initial_total_stake,
            'evidence': [e.to_dict() for e in self.evidence],
            'slashed': {str(i): a for i, a in sorted(self.slashed.items())},
            'total_slashed': self.total_slashed,
            'last_rewarded_epoch': self.last_rewarded_epoch,
            'net_stake_change': self.net_stake_change,
            'stake_changes': self.stake_changes,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EconomicLedger":
        return cls(
            balances={int(v): b for v, b in data['balances'].items()},
            pending_rewards={int(v): r for v, r in data['pending_rewards'].items()},
            rewards_pool=data['rewards_pool'],
            reward_rate=data['reward_rate'],
            slashing_rates={Severity(s): r for s, r in data['slashing_rates'].items()},
            min_active_stake=data['min_active_stake'],
            initial_total_stake=data['initial_total_stake'],
            evidence=[SlashingEvidence.from_dict(e) for e in data['evidence']],
            slashed={int(i): a for i, a in data['slashed'].items()},
            total_slashed=data['total_slashed'],
            last_rewarded_epoch=data['last_rewarded_epoch'],
            net_stake_change=data['net_stake_change'],
            stake_changes=data['stake_changes'],
        )


@dataclass(frozen=True)
class NetworkCondition:
    """Optional partition plus the delay/loss model used for deliverability"""
    delay: int = 0
    loss_rate: float = 0.0
    partition: Optional[Tuple[FrozenSet[int], FrozenSet[int]]] = None
    partitions_opened: int = 0
    disrupted_slots: FrozenSet[int] = frozenset()

    @property
    def partitioned(self) -> bool:
        return self.partition is not None

    def can_communicate(self, a: int, b: int) -> bool:
        if self.partition is None or a == b:
            return True
        side_a, side_b = self.partition
        return (a in side_a and b in side_a) or (a in side_b and b in side_b)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'delay': self.delay,
            'loss_rate': self.loss_rate,
            'partition': None if self.partition is None else [sorted(side) for side in self.partition],
            'partitions_opened': self.partitions_opened,
            'disrupted_slots': sorted(self.disrupted_slots),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NetworkCondition":
        partition = None
        if data['partition'] is not None:
            side_a, side_b = data['partition']
            partition = (frozenset(side_a), frozenset(side_b))
        return cls(data['delay'], data['loss_rate'], partition, data['partitions_opened'],
                   frozenset(data['disrupted_slots']))


@dataclass
class ProtocolState:
    """One point of the protocol's execution"""
    config: VerificationConfig = field(repr=False, compare=False)
    validators: Dict[int, Validator]
    window: LeaderWindow
    ledger: EconomicLedger
    network: NetworkCondition
    clock: int = 0
    leaders: Dict[int, int] = field(default_factory=dict)  # slot -> leader, in rotation order
    proposals: Dict[int, Tuple[int, ...]] = field(default_factory=dict)
    blocks: Dict[int, ErasureCodedBlock] = field(default_factory=dict)
    relays: Dict[int, RelayAssignment] = field(default_factory=dict)
    votes: Dict[int, FrozenSet[Vote]] = field(default_factory=dict)
    certificates: Dict[int, Certificate] = field(default_factory=dict)
    skip_certificates: Dict[int, SkipCertificate] = field(default_factory=dict)
    timeouts: Dict[int, FrozenSet[int]] = field(default_factory=dict)
    premature_timeouts: FrozenSet[Tuple[int, int]] = frozenset()

    def copy(self) -> "ProtocolState":
        """Fresh containers holding the same immutable records"""
        return ProtocolState(
            config=self.config,
            validators=dict(self.validators),
            window=self.window,
            ledger=self.ledger.copy(),
            network=self.network,
            clock=self.clock,
            leaders=dict(self.leaders),
            proposals=dict(self.proposals),
            blocks=dict(self.blocks),
            relays=dict(self.relays),
            votes=dict(self.votes),
            certificates=dict(self.certificates),
            skip_certificates=dict(self.skip_certificates),
            timeouts=dict(self.timeouts),
            premature_timeouts=self.premature_timeouts,
        )

    # Stake accounting

    def total_stake(self) -> int:
        return sum(v.stake for v in self.validators.values())

    def stake_of(self, validator: int) -> int:
        return self.validators[validator].stake

    def stakes(self) -> Dict[int, int]:
        return {v.id: v.stake for v in self.validators.values()}

    def ids_with_status(self, status: ValidatorStatus) -> List[int]:
        return sorted(v.id for v in self.validators.values() if v.status is status)

    def byzantine_stake(self) -> int:
        return sum(v.stake for v in self.validators.values()
                   if v.status is ValidatorStatus.BYZANTINE)

    def honest_stake(self) -> int:
        """Stake of honest validators; crashed validators are not responsive"""
        return sum(v.stake for v in self.validators.values() if v.is_honest)

    def meets_quorum(self, stake: int, path: VotePath, total: Optional[int] = None) -> bool:
        # integer comparison avoids float rounding at exact thresholds
        fraction = self.config.fast_quorum if path is VotePath.FAST else self.config.slow_quorum
        if total is None:
            total = self.total_stake()
        return stake * 10**6 >= round(fraction * 10**6) * total

    def stake_snapshot(self) -> Tuple[Tuple[int, int], ...]:
        return tuple(sorted(self.stakes().items()))

    # Slots and blocks

    def slot_start(self, slot: int) -> int:
        return (slot - 1) * self.config.slot_duration

    def current_slot(self) -> int:
        """Highest modelled slot that has started"""
        return min(self.config.max_slot, self.clock // self.config.slot_duration + 1)

    def started_slots(self) -> range:
        return range(1, self.current_slot() + 1)

    def is_finalized(self, slot: int) -> bool:
        return slot in self.certificates or slot in self.skip_certificates

    def candidate_blocks(self, slot: int) -> Tuple[int, ...]:
        return (canonical_block(slot), conflicting_block(slot))

    def slot_votes(self, slot: int) -> FrozenSet[Vote]:
        return self.votes.get(slot, frozenset())

    def support(self, slot: int, block: int, path: Optional[VotePath] = None) -> Tuple[int, FrozenSet[Vote]]:
        """Stake of distinct validators voting for a block, and those votes.

        ``path`` restricts to one path; ``None`` counts votes on either path.
        """
        votes = frozenset(v for v in self.slot_votes(slot)
                          if v.block == block and (path is None or v.path is path))
        voters = {v.validator for v in votes}
        return sum(self.stake_of(v) for v in voters), votes

    def has_voted(self, validator: int, slot: int, path: Optional[VotePath] = None) -> bool:
        return any(v.validator == validator and (path is None or v.path is path)
                   for v in self.slot_votes(slot))

    def leader_of(self, slot: int) -> Optional[int]:
        return self.leaders.get(slot)

    def leader_history(self) -> List[Tuple[int, int]]:
        return list(self.leaders.items())

    def message_deliverable(self, sender: int, receiver: int, slot: int) -> bool:
        """Whether a slot message can currently travel between two validators"""
        if self.clock < self.slot_start(slot) + self.network.delay:
            return False
        return self.network.can_communicate(sender, receiver)

    def epoch_of(self, slot: int) -> int:
        return window_index(slot, self.config.window_size) + 1

    def epoch_slots(self, epoch: int) -> range:
        first = (epoch - 1) * self.config.window_size + 1
        last = min(epoch * self.config.window_size, self.config.max_slot)
        return range(first, last + 1)

    # Snapshots

    def to_dict(self) -> Dict[str, Any]:
        """Lossless JSON-compatible snapshot (configuration excluded)"""
        return {
            'clock': self.clock,
            'validators': [v.to_dict() for _, v in sorted(self.validators.items())],
            'window': self.window.to_dict(),
            'leaders': [[s, v] for s, v in self.leaders.items()],
            'proposals': {str(s): list(b) for s, b in sorted(self.proposals.items())},
            'blocks': [b.to_dict() for _, b in sorted(self.blocks.items())],
            'relays': [r.to_dict() for _, r in sorted(self.relays.items())],
            'votes': {str(s): [v.to_dict() for v in sorted(votes, key=Vote.sort_key)]
                      for s, votes in sorted(self.votes.items())},
            'certificates': [c.to_dict() for _, c in sorted(self.certificates.items())],
            'skip_certificates': [c.to_dict() for _, c in sorted(self.skip_certificates.items())],
            'timeouts': {str(s): sorted(t) for s, t in sorted(self.timeouts.items())},
            'premature_timeouts': sorted([list(p) for p in self.premature_timeouts]),
            'ledger': self.ledger.to_dict(),
            'network': self.network.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], config: VerificationConfig) -> "ProtocolState":
        validators = {}
        for item in data['validators']:
            validators[item['id']] = Validator(item['id'], item['stake'],
                                               ValidatorStatus(item['status']))
        return cls(
            config=config,
            validators=validators,
            window=LeaderWindow.from_dict(data['window']),
            ledger=EconomicLedger.from_dict(data['ledger']),
            network=NetworkCondition.from_dict(data['network']),
            clock=data['clock'],
            leaders={s: v for s, v in data['leaders']},
            proposals={int(s): tuple(b) for s, b in data['proposals'].items()},
            blocks={b['block']: ErasureCodedBlock.from_dict(b) for b in data['blocks']},
            relays={r['block']: RelayAssignment.from_dict(r) for r in data['relays']},
            votes={int(s): frozenset(Vote.from_dict(v) for v in votes)
                   for s, votes in data['votes'].items()},
            certificates={c['slot']: Certificate.from_dict(c) for c in data['certificates']},
            skip_certificates={c['slot']: SkipCertificate.from_dict(c)
                               for c in data['skip_certificates']},
            timeouts={int(s): frozenset(t) for s, t in data['timeouts'].items()},
            premature_timeouts=frozenset((v, s) for v, s in data['premature_timeouts']),
        )

    def fingerprint(self) -> str:
        """SHA-256 content hash of the canonical snapshot"""
        payload = json.dumps(self.to_dict(), sort_keys=True, separators=(',', ':'))
        return hashlib.sha256(payload.encode()).hexdigest()


def initial_states(config: VerificationConfig) -> List[ProtocolState]:
    """Starting states for a configuration, one per leader-window seed.

    The configuration has already been validated; states with identical
    content (e.g. repeated seeds) are returned once.
    """
    byzantine = set(config.byzantine)
    crashed = set(config.crashed)
    validators = {}
    for vid, stake in enumerate(config.stakes):
        if vid in byzantine:
            status = ValidatorStatus.BYZANTINE
        elif vid in crashed:
            status = ValidatorStatus.CRASHED
        else:
            status = ValidatorStatus.HONEST
        validators[vid] = Validator(vid, stake, status)

    stakes = {vid: v.stake for vid, v in validators.items()}
    states: List[ProtocolState] = []
    seen = set()
    for seed in config.window_seeds:
        ledger = EconomicLedger(
            balances=dict(stakes),
            pending_rewards={vid: 0 for vid in stakes},
            rewards_pool=config.rewards_pool,
            reward_rate=config.reward_rate,
            slashing_rates={Severity(s): r for s, r in config.slashing_rates.items()},
            min_active_stake=config.min_active_stake,
            initial_total_stake=config.total_stake,
        )
        state = ProtocolState(
            config=config,
            validators=dict(validators),
            window=build_window(stakes, seed, 0, config.window_size),
            ledger=ledger,
            network=NetworkCondition(delay=config.delay, loss_rate=config.loss_rate),
        )
        fingerprint = state.fingerprint()
        if fingerprint not in seen:
            seen.add(fingerprint)
            states.append(state)

    logger.debug(f"Built {len(states)} initial state(s) for {config.validator_count} validators")
    return states

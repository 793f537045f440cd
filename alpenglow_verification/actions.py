"""
Action Catalogue

One frozen record per protocol action. Actions are plain values: they are
hashable, compare by content and serialize losslessly to a JSON mapping
tagged with ``"type"``, which is what counterexample traces carry.
"""

from dataclasses import dataclass, fields
from typing import Any, Dict, Tuple, Type

from .state import VotePath, ViolationKind


@dataclass(frozen=True)
class Action:
    """Base class for all actions"""

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {'type': type(self).__name__}
        for f in fields(self):
            data[f.name] = _encode(getattr(self, f.name))
        return data

    def describe(self) -> str:
        args = ", ".join(f"{f.name}={getattr(self, f.name)!s}" for f in fields(self))
        return f"{type(self).__name__}({args})"


@dataclass(frozen=True)
class AdvanceTime(Action):
    ticks: int = 1


@dataclass(frozen=True)
class RotateLeader(Action):
    slot: int


@dataclass(frozen=True)
class ProposeBlock(Action):
    slot: int
    block: int


@dataclass(frozen=True)
class CastVote(Action):
    validator: int
    slot: int
    block: int
    path: VotePath


@dataclass(frozen=True)
class Certify(Action):
    slot: int
    block: int
    path: VotePath


@dataclass(frozen=True)
class Timeout(Action):
    validator: int
    slot: int


@dataclass(frozen=True)
class SkipCertify(Action):
    slot: int


@dataclass(frozen=True)
class PropagateChunk(Action):
    slot: int
    block: int
    chunk: int
    relays: Tuple[int, ...]


@dataclass(frozen=True)
class DistributeRewards(Action):
    epoch: int


@dataclass(frozen=True)
class WithdrawRewards(Action):
    validator: int
    amount: int


@dataclass(frozen=True)
class ReportSlashing(Action):
    reporter: int
    validator: int
    kind: ViolationKind
    slot: int


@dataclass(frozen=True)
class SlashValidator(Action):
    validator: int
    evidence_index: int


@dataclass(frozen=True)
class StakeDeposit(Action):
    validator: int
    amount: int


@dataclass(frozen=True)
class StakeWithdrawal(Action):
    validator: int
    amount: int


@dataclass(frozen=True)
class UpdateEconomicParameters(Action):
    reward_rate: float
    slashing_rates: Tuple[Tuple[str, float], ...]  # (severity, rate) pairs


@dataclass(frozen=True)
class NetworkPartition(Action):
    side_a: Tuple[int, ...]
    side_b: Tuple[int, ...]


@dataclass(frozen=True)
class HealPartition(Action):
    pass


ACTION_TYPES: Dict[str, Type[Action]] = {
    cls.__name__: cls for cls in (
        AdvanceTime, RotateLeader, ProposeBlock, CastVote, Certify, Timeout, SkipCertify,
        PropagateChunk, DistributeRewards, WithdrawRewards, ReportSlashing, SlashValidator,
        StakeDeposit, StakeWithdrawal, UpdateEconomicParameters, NetworkPartition, HealPartition,
    )
}

# Actions that carry a network message and are subject to the loss model
MESSAGE_ACTIONS = (CastVote, PropagateChunk)


def _encode(value: Any) -> Any:
    if isinstance(value, (VotePath, ViolationKind)):
        return value.value
    if isinstance(value, tuple):
        return [_encode(v) for v in value]
    return value


_DECODERS = {
    'path': VotePath,
    'kind': ViolationKind,
    'relays': tuple,
    'side_a': tuple,
    'side_b': tuple,
    'slashing_rates': lambda pairs: tuple((str(s), float(r)) for s, r in pairs),
}


def action_from_dict(data: Dict[str, Any]) -> Action:
    """Rebuild an action from its ``to_dict`` form"""
    data = dict(data)
    type_name = data.pop('type', None)
    cls = ACTION_TYPES.get(type_name)
    if cls is None:
        raise ValueError(f"unknown action type {type_name!r}")
    kwargs = {}
    for f in fields(cls):
        if f.name not in data:
            raise ValueError(f"{type_name} is missing field {f.name!r}")
        decode = _DECODERS.get(f.name)
        kwargs[f.name] = decode(data[f.name]) if decode else data[f.name]
    return cls(**kwargs)

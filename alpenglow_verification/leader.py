"""
Leader Rotation

Deterministic stake-weighted leader schedules. Each window of
``window_size`` slots gets a schedule drawn from a generator seeded with
``(window_seed, window_id)``, so any schedule can be recomputed from the
seed and the stake distribution alone.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Tuple

import numpy as np


@dataclass(frozen=True)
class LeaderWindow:
    """A leader window: slot range plus its leader schedule"""
    window_id: int
    first_slot: int
    last_slot: int
    seed: int
    schedule: Tuple[int, ...]

    def contains(self, slot: int) -> bool:
        return self.first_slot <= slot <= self.last_slot

    def leader_for(self, slot: int) -> int:
        if not self.contains(slot):
            raise ValueError(f"slot {slot} outside window {self.window_id}")
        return self.schedule[slot - self.first_slot]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'window_id': self.window_id,
            'first_slot': self.first_slot,
            'last_slot': self.last_slot,
            'seed': self.seed,
            'schedule': list(self.schedule),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LeaderWindow":
        return cls(data['window_id'], data['first_slot'], data['last_slot'], data['seed'],
                   tuple(data['schedule']))


def window_index(slot: int, window_size: int) -> int:
    """Window id holding a 1-based slot"""
    return (slot - 1) // window_size


def leader_schedule(stakes: Dict[int, int], seed: int, window_id: int,
                    window_size: int) -> Tuple[int, ...]:
    """Draw a window's leaders with probability proportional to stake"""
    ids = sorted(v for v, stake in stakes.items() if stake > 0)
    weights = np.array([stakes[v] for v in ids], dtype=float)
    rng = np.random.default_rng([seed, window_id])
    picks = rng.choice(len(ids), size=window_size, p=weights / weights.sum())
    return tuple(int(ids[i]) for i in picks)


def build_window(stakes: Dict[int, int], seed: int, window_id: int,
                 window_size: int) -> LeaderWindow:
    first_slot = window_id * window_size + 1
    return LeaderWindow(
        window_id=window_id,
        first_slot=first_slot,
        last_slot=first_slot + window_size - 1,
        seed=seed,
        schedule=leader_schedule(stakes, seed, window_id, window_size),
    )


def leadership_counts(stakes: Dict[int, int], seed: int, window_size: int,
                      windows: int) -> Dict[int, int]:
    """Leader slot counts per validator over the first ``windows`` windows"""
    counts = {v: 0 for v in stakes}
    for window_id in range(windows):
        for leader in leader_schedule(stakes, seed, window_id, window_size):
            counts[leader] += 1
    return counts


def expected_shares(stakes: Dict[int, int]) -> Dict[int, float]:
    total = sum(stakes.values())
    return {v: stake / total for v, stake in stakes.items()}


def history_counts(history: List[Tuple[int, int]], validators: List[int]) -> Dict[int, int]:
    """Count leaderships in a recorded (slot, leader) history"""
    counts = {v: 0 for v in validators}
    for _, leader in history:
        counts[leader] = counts.get(leader, 0) + 1
    return counts

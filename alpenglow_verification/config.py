"""
Verification Configuration

Everything the engine needs to build initial states and drive an
exploration: validator set and stakes, quorum thresholds, timing, erasure
coding and leader-window parameters, economic rates and exploration
budgets. Configurations are validated when constructed and never silently
corrected.
"""

import logging
import math
from dataclasses import dataclass, field, asdict, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import numpy as np
import yaml

from .errors import ConfigurationError
from .rotor import chunk_count as encoded_chunk_count

logger = logging.getLogger(__name__)

EXHAUSTIVE_MAX_VALIDATORS = 10
BOUNDED_MAX_VALIDATORS = 50

MODES = ("auto", "exhaustive", "bounded", "statistical")
STAKE_DISTRIBUTIONS = ("uniform", "power_law")
STRATEGY_NAMES = ("equivocation", "selective_withholding", "coalition", "strategic_timing")

DEFAULT_SLASHING_RATES = {
    "minor": 0.05,
    "moderate": 0.15,
    "severe": 0.30,
    "critical": 0.50,
}


def power_law_stakes(validator_count: int, total_stake: int, seed: int = 0) -> List[int]:
    """Integer stakes approximating a mainnet-like power law.

    Top 10% of validators hold ~60% of stake, the next 30% hold ~30% and the
    remaining 60% share ~10% with some seeded variance.
    """
    large = max(1, int(validator_count * 0.1))
    medium = int(validator_count * 0.3)
    small = validator_count - large - medium
    rng = np.random.default_rng(seed)

    weights: List[float] = []
    for count, share in ((large, 0.6), (medium, 0.3)):
        if count == 0:
            continue
        harmonic = sum(1.0 / (j + 1) for j in range(count))
        weights.extend(share * (1.0 / (i + 1)) / harmonic for i in range(count))
    if small > 0:
        weights.extend((0.1 / small) * rng.uniform(0.5, 1.5, size=small))

    weights_array = np.asarray(weights, dtype=float)
    weights_array /= weights_array.sum()
    stakes = np.maximum(1, np.floor(weights_array * total_stake)).astype(int)
    return [int(s) for s in stakes]


@dataclass
class VerificationConfig:
    """Configuration for one verification run"""

    # Validator set
    validator_count: Optional[int] = None
    stakes: Optional[List[int]] = None
    stake_distribution: str = "uniform"
    base_stake: int = 100
    byzantine: List[int] = field(default_factory=list)
    crashed: List[int] = field(default_factory=list)
    byzantine_strategies: List[str] = field(default_factory=lambda: list(STRATEGY_NAMES))

    # Quorums (fractions of total stake)
    fast_quorum: float = 0.80
    slow_quorum: float = 0.60
    byzantine_bound: float = 0.20

    # Timing (ticks)
    max_slot: int = 2
    slot_duration: int = 4
    delay: int = 0
    timeout_delay: int = 2
    max_time: Optional[int] = None
    delta_fast: int = 1  # latency for 80% of stake to respond
    delta_slow: int = 1  # latency for 60% of stake to respond

    # Skip certificates
    timeout_threshold: Optional[int] = None

    # Erasure coding (Rotor)
    redundancy: float = 1.5
    erasure_threshold: int = 2
    min_relay_sample_size: int = 1

    # Leader windows
    window_size: int = 4
    fairness_windows: int = 250
    fairness_alpha: float = 0.001

    # Network
    loss_rate: float = 0.0
    explore_partitions: bool = True
    max_partitions: int = 1

    # Economics
    explore_economics: bool = True
    reward_rate: float = 0.05
    slashing_rates: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_SLASHING_RATES))
    rewards_pool: Optional[int] = None
    min_active_stake: int = 1
    stake_change_amount: int = 0
    max_stake_changes: int = 1

    # Exploration
    mode: str = "auto"
    max_states: int = 200_000
    max_depth: int = 12
    samples: int = 200
    max_steps: Optional[int] = None
    confidence: float = 0.95
    error_bound: float = 0.05
    workers: int = 4
    time_budget_seconds: Optional[float] = None
    seed: int = 0
    window_seeds: Optional[List[int]] = None

    def __post_init__(self):
        self._resolve_stakes()
        if self.timeout_threshold is None:
            self.timeout_threshold = max(1, math.ceil(self.slow_quorum * self.validator_count))
        if self.max_time is None:
            self.max_time = (self.max_slot - 1) * self.slot_duration + self.timeout_delay + 1
        if self.rewards_pool is None:
            self.rewards_pool = 1000 * self.validator_count
        if self.max_steps is None:
            self.max_steps = 20 * self.validator_count * self.max_slot + 200
        if self.window_seeds is None:
            self.window_seeds = [self.seed]
        self.validate()

    def _resolve_stakes(self):
        if self.stakes is not None:
            try:
                self.stakes = [int(s) for s in self.stakes]
            except (TypeError, ValueError) as e:
                raise ConfigurationError(f"stakes must be integers ({e})", "stakes")
            if self.validator_count is None:
                self.validator_count = len(self.stakes)
            elif self.validator_count != len(self.stakes):
                raise ConfigurationError(
                    f"{len(self.stakes)} stakes given for {self.validator_count} validators",
                    "stakes",
                )
            return

        if self.validator_count is None or self.validator_count < 1:
            raise ConfigurationError("either stakes or a positive validator_count is required",
                                     "validator_count")
        if self.stake_distribution == "uniform":
            self.stakes = [self.base_stake] * self.validator_count
        elif self.stake_distribution == "power_law":
            self.stakes = power_law_stakes(self.validator_count,
                                           self.base_stake * self.validator_count, self.seed)
        else:
            raise ConfigurationError(
                f"unknown distribution {self.stake_distribution!r}, expected one of {STAKE_DISTRIBUTIONS}",
                "stake_distribution",
            )

    def validate(self):
        """Check configuration invariants; raise ConfigurationError on the first failure"""
        n = self.validator_count
        if n < 1:
            raise ConfigurationError("at least one validator is required", "validator_count")
        if any(s < 0 for s in self.stakes):
            raise ConfigurationError("stakes must be non-negative", "stakes")
        if sum(self.stakes) <= 0:
            raise ConfigurationError("total stake must be positive", "stakes")

        for name in ("fast_quorum", "slow_quorum"):
            value = getattr(self, name)
            if not 0.0 < value <= 1.0:
                raise ConfigurationError(f"{value} outside (0, 1]", name)
        if self.slow_quorum > self.fast_quorum:
            raise ConfigurationError("slow quorum exceeds fast quorum", "slow_quorum")
        for name in ("byzantine_bound", "fairness_alpha", "loss_rate", "reward_rate"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ConfigurationError(f"{value} outside [0, 1]", name)
        for name in ("confidence", "error_bound"):
            value = getattr(self, name)
            if not 0.0 < value < 1.0:
                raise ConfigurationError(f"{value} outside (0, 1)", name)

        unknown = set(self.slashing_rates) - set(DEFAULT_SLASHING_RATES)
        missing = set(DEFAULT_SLASHING_RATES) - set(self.slashing_rates)
        if unknown or missing:
            raise ConfigurationError(
                f"severities must be exactly {sorted(DEFAULT_SLASHING_RATES)}", "slashing_rates")
        for severity, rate in self.slashing_rates.items():
            if not 0.0 <= rate <= 1.0:
                raise ConfigurationError(f"{severity} rate {rate} outside [0, 1]", "slashing_rates")

        for name in ("byzantine", "crashed"):
            ids = getattr(self, name)
            bad = [v for v in ids if not 0 <= v < n]
            if bad:
                raise ConfigurationError(f"unknown validator ids {bad}", name)
            if len(set(ids)) != len(ids):
                raise ConfigurationError("duplicate validator ids", name)
        if set(self.byzantine) & set(self.crashed):
            raise ConfigurationError("a validator cannot be both byzantine and crashed", "crashed")
        bad_strategies = [s for s in self.byzantine_strategies if s not in STRATEGY_NAMES]
        if bad_strategies:
            raise ConfigurationError(f"unknown strategies {bad_strategies}", "byzantine_strategies")

        positive = ("max_slot", "slot_duration", "timeout_delay", "erasure_threshold",
                    "min_relay_sample_size", "window_size", "fairness_windows", "max_states",
                    "max_depth", "samples", "max_steps", "workers")
        for name in positive:
            if getattr(self, name) < 1:
                raise ConfigurationError("must be at least 1", name)
        for name in ("delay", "delta_fast", "delta_slow", "max_partitions", "min_active_stake",
                     "stake_change_amount", "max_stake_changes", "rewards_pool"):
            if getattr(self, name) < 0:
                raise ConfigurationError("must be non-negative", name)

        if self.timeout_delay <= self.delay:
            raise ConfigurationError("timeout delay must exceed message delay", "timeout_delay")
        for name in ("delta_fast", "delta_slow"):
            if getattr(self, name) < self.delay:
                raise ConfigurationError("latency bound below the message delay", name)
        last_slot_timeout = (self.max_slot - 1) * self.slot_duration + self.timeout_delay
        if self.max_time < last_slot_timeout:
            raise ConfigurationError(
                f"max_time {self.max_time} ends before the last slot can time out ({last_slot_timeout})",
                "max_time",
            )
        if not 1 <= self.timeout_threshold <= n:
            raise ConfigurationError(f"{self.timeout_threshold} outside [1, {n}]", "timeout_threshold")
        if self.redundancy < 1.0:
            raise ConfigurationError(f"redundancy {self.redundancy} below 1.0", "redundancy")
        if self.min_relay_sample_size > max(1, n - 1):
            raise ConfigurationError("relay sample larger than the non-proposing validators",
                                     "min_relay_sample_size")
        if self.mode not in MODES:
            raise ConfigurationError(f"unknown mode {self.mode!r}, expected one of {MODES}", "mode")
        if self.time_budget_seconds is not None and self.time_budget_seconds <= 0:
            raise ConfigurationError("must be positive", "time_budget_seconds")
        if self.seed < 0:
            raise ConfigurationError("must be non-negative", "seed")
        if not self.window_seeds:
            raise ConfigurationError("at least one seed is required", "window_seeds")
        if any(s < 0 for s in self.window_seeds):
            raise ConfigurationError("seeds must be non-negative", "window_seeds")

    @property
    def total_stake(self) -> int:
        return sum(self.stakes)

    @property
    def chunk_count(self) -> int:
        """Total chunks per block: n = ceil(k * r)"""
        return encoded_chunk_count(self.erasure_threshold, self.redundancy)

    def resolved_mode(self) -> str:
        """Exploration mode after applying the validator-count policy"""
        if self.mode != "auto":
            return self.mode
        if self.validator_count <= EXHAUSTIVE_MAX_VALIDATORS:
            return "exhaustive"
        if self.validator_count <= BOUNDED_MAX_VALIDATORS:
            return "bounded"
        return "statistical"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VerificationConfig":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(f"unknown configuration keys {unknown}")
        return cls(**data)

    @classmethod
    def from_yaml(cls, path: Union[str, Path],
                  overrides: Optional[Dict[str, Any]] = None) -> "VerificationConfig":
        """Load a YAML configuration file, with optional overrides on top"""
        path = Path(path)
        try:
            with open(path, 'r') as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"cannot read {path}: {e}")
        if not isinstance(data, dict):
            raise ConfigurationError(f"{path} does not contain a mapping")

        merged = _merge_config(data, overrides or {})
        logger.info(f"Loaded configuration from {path}")
        return cls.from_dict(merged)


def _merge_config(base: Dict[str, Any], user: Dict[str, Any]) -> Dict[str, Any]:
    """Merge user values over a base mapping, recursing into nested mappings"""
    result = dict(base)
    for key, value in user.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _merge_config(result[key], value)
        else:
            result[key] = value
    return result

"""
Alpenglow verification test fixtures
"""

import pytest

from alpenglow_verification.config import VerificationConfig
from alpenglow_verification.state import ProtocolState, initial_states
from alpenglow_verification.transitions import apply, is_rejection


def make_config(**overrides) -> VerificationConfig:
    """Small configuration with partitions and economics off unless asked for."""
    values = dict(
        validator_count=3,
        max_slot=1,
        explore_partitions=False,
        explore_economics=False,
        redundancy=1.0,
        erasure_threshold=1,
        byzantine_strategies=["equivocation"],
    )
    if "stakes" in overrides:
        values.pop("validator_count")
    values.update(overrides)
    return VerificationConfig(**values)


def run_actions(state: ProtocolState, *actions) -> ProtocolState:
    """Apply actions in order, failing the test on any rejection."""
    for action in actions:
        outcome = apply(state, action)
        assert not is_rejection(outcome), str(outcome)
        state = outcome
    return state


@pytest.fixture
def small_config() -> VerificationConfig:
    """Three honest validators, one slot."""
    return make_config()


@pytest.fixture
def weighted_config() -> VerificationConfig:
    """Stakes [40, 30, 20, 10] with validator 3 Byzantine."""
    return make_config(stakes=[40, 30, 20, 10], byzantine=[3])


@pytest.fixture
def small_state(small_config) -> ProtocolState:
    return initial_states(small_config)[0]


@pytest.fixture
def weighted_state(weighted_config) -> ProtocolState:
    return initial_states(weighted_config)[0]

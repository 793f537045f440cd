"""
State model, erasure coding and leader rotation tests
"""

import pytest

from alpenglow_verification.leader import (build_window, leader_schedule, leadership_counts,
                                           window_index)
from alpenglow_verification.rotor import (canonical_block, conflicting_block,
                                          create_erasure_coded_block, sample_relays)
from alpenglow_verification.state import ProtocolState, ValidatorStatus, initial_states

from conftest import make_config


class TestInitialStates:
    """initial_states(config)"""

    def test_statuses(self):
        config = make_config(validator_count=4, byzantine=[1], crashed=[2])
        state = initial_states(config)[0]
        assert state.validators[0].status is ValidatorStatus.HONEST
        assert state.validators[1].status is ValidatorStatus.BYZANTINE
        assert state.validators[2].status is ValidatorStatus.CRASHED
        assert state.honest_stake() == 200
        assert state.byzantine_stake() == 100

    def test_ledger_starts_at_stake(self, weighted_state):
        assert weighted_state.ledger.balances == {0: 40, 1: 30, 2: 20, 3: 10}
        assert weighted_state.ledger.rewards_pool == 4000
        assert weighted_state.clock == 0

    def test_one_state_per_seed(self):
        config = make_config(validator_count=5, window_seeds=[1, 2, 3])
        states = initial_states(config)
        assert len(states) == 3
        assert len({s.fingerprint() for s in states}) == 3

    def test_repeated_seed_deduplicated(self):
        config = make_config(validator_count=5, window_seeds=[4, 4])
        assert len(initial_states(config)) == 1


class TestSnapshots:
    """Lossless serialization and content fingerprints"""

    def test_round_trip(self, weighted_config, weighted_state):
        restored = ProtocolState.from_dict(weighted_state.to_dict(), weighted_config)
        assert restored == weighted_state
        assert restored.fingerprint() == weighted_state.fingerprint()

    def test_copy_is_independent(self, small_state):
        copied = small_state.copy()
        copied.ledger.balances[0] = 0
        copied.leaders[1] = 0
        assert small_state.ledger.balances[0] == 100
        assert 1 not in small_state.leaders

    def test_fingerprint_tracks_content(self, small_state):
        advanced = small_state.copy()
        advanced.clock += 1
        assert advanced.fingerprint() != small_state.fingerprint()


class TestErasureCoding:
    """Reconstruction threshold over abstract chunks"""

    def test_five_of_eight(self):
        """Any 5 of 8 chunks reconstruct, 4 do not."""
        block = create_erasure_coded_block(1, canonical_block(1), 0, 1.6, 5, 0)
        assert block.total_chunks == 8
        for index in (0, 2, 3, 6):
            block = block.with_holders(index, frozenset({1}))
        assert block.available_count == 4
        assert not block.can_reconstruct()
        assert not block.reconstructed

        block = block.with_holders(7, frozenset({2}))
        assert block.can_reconstruct()
        assert block.reconstructed

    def test_reconstruction_is_sticky(self):
        block = create_erasure_coded_block(1, 10, 0, 1.0, 1, 0).with_holders(0, frozenset({1}))
        assert block.reconstructed
        assert block.with_holders(0, frozenset({2})).reconstructed

    def test_chunk_hash_verification(self):
        block = create_erasure_coded_block(2, 20, 0, 1.5, 2, 4)
        assert block.verify_chunk(1, block.chunks[1].content_hash)
        assert not block.verify_chunk(1, block.chunks[0].content_hash)
        assert not block.verify_chunk(9, block.chunks[0].content_hash)

    def test_candidate_blocks(self):
        assert canonical_block(3) == 30
        assert conflicting_block(3) == 31

    def test_relays_are_deterministic(self):
        stakes = {0: 40, 1: 30, 2: 20, 3: 10}
        first = sample_relays(stakes, 1, 10, 4, 2, seed=9)
        second = sample_relays(stakes, 1, 10, 4, 2, seed=9)
        assert first == second
        for relays in first.chunk_relays:
            assert len(relays) == 2
            assert len(set(relays)) == 2
        assert set(first.by_validator()) <= set(stakes)

    def test_zero_stake_never_relays(self):
        relays = sample_relays({0: 50, 1: 0, 2: 50}, 1, 10, 6, 1, seed=0)
        assert all(1 not in r for r in relays.chunk_relays)


class TestLeaderRotation:
    """Deterministic stake-weighted schedules"""

    def test_schedule_is_deterministic(self):
        stakes = {0: 40, 1: 30, 2: 20, 3: 10}
        assert leader_schedule(stakes, 3, 0, 4) == leader_schedule(stakes, 3, 0, 4)

    def test_window_bounds(self):
        window = build_window({0: 1, 1: 1}, 0, 2, 4)
        assert (window.first_slot, window.last_slot) == (9, 12)
        assert window.contains(10)
        assert window_index(12, 4) == 2
        with pytest.raises(ValueError):
            window.leader_for(13)

    def test_frequency_follows_stake(self):
        counts = leadership_counts({0: 70, 1: 20, 2: 10}, 1, 4, 500)
        assert sum(counts.values()) == 2000
        assert counts[0] > counts[1] > counts[2]

    def test_zero_stake_never_leads(self):
        counts = leadership_counts({0: 10, 1: 0}, 0, 4, 20)
        assert counts[1] == 0

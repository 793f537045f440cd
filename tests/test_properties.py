"""
Property checker, adversary and economic model tests
"""

from dataclasses import replace

import pytest

from alpenglow_verification.actions import (AdvanceTime, CastVote, Certify, NetworkPartition,
                                            ProposeBlock, RotateLeader, SkipCertify,
                                            StakeWithdrawal, Timeout, UpdateEconomicParameters)
from alpenglow_verification.byzantine import (ByzantineStrategy, estimate_attack,
                                              inject_attack, injected_actions,
                                              required_stake_fraction)
from alpenglow_verification.catalogue import enabled_actions
from alpenglow_verification.confidence import (chi_square_bound, required_sample_size,
                                               wilson_interval)
from alpenglow_verification.economics import (UtilityEvaluator, observed_violations, utility,
                                              validate_economic_invariants)
from alpenglow_verification.properties import (ALL_PROPERTIES, check_always,
                                               check_bounded_finalization,
                                               check_byzantine_resilience,
                                               check_certificate_validity,
                                               check_economic_equilibrium,
                                               check_erasure_availability,
                                               check_fast_path_efficiency,
                                               check_leader_rotation_fairness, check_progress,
                                               check_safety)
from alpenglow_verification.rotor import create_erasure_coded_block
from alpenglow_verification.state import (Certificate, SkipCertificate, ViolationKind, Vote,
                                          VotePath, initial_states)

from conftest import make_config, run_actions

FAST = VotePath.FAST
SLOW = VotePath.SLOW


def fast_certified(state):
    """Every validator votes fast for the canonical block of slot 1."""
    state = run_actions(state, RotateLeader(1), ProposeBlock(1, 10))
    for validator in sorted(state.validators):
        state = run_actions(state, CastVote(validator, 1, 10, FAST))
    return run_actions(state, Certify(1, 10, FAST))


class TestPropertyCatalogue:
    """Named properties"""

    def test_names(self):
        assert [p.name for p in ALL_PROPERTIES] == [
            "safety", "byzantine_resilience", "certificate_validity", "erasure_availability",
            "bounded_finalization", "economic_invariants", "progress", "fast_path_efficiency",
            "leader_rotation_fairness", "economic_equilibrium",
        ]

    def test_initial_state_satisfies_always(self, weighted_state):
        assert check_always(weighted_state) == {}


class TestSafety:
    """Safety and certificate validity"""

    def test_certified_state_is_safe(self, small_state):
        state = fast_certified(small_state)
        assert check_safety(state) is None
        assert check_certificate_validity(state) is None
        assert check_byzantine_resilience(state) is None

    def test_certified_and_skipped(self, small_state):
        state = fast_certified(small_state).copy()
        state.skip_certificates[1] = SkipCertificate(1, frozenset({0, 1}), 2)
        assert "both certified and skipped" in check_safety(state)
        assert "safety failed" in check_byzantine_resilience(state)

    def test_mixed_certificate(self, small_state):
        state = fast_certified(small_state).copy()
        certificate = state.certificates[1]
        votes = certificate.votes | {Vote(2, 1, 11, FAST)}
        state.certificates[1] = replace(certificate, votes=votes)
        assert "mixes blocks" in check_safety(state)
        assert check_certificate_validity(state) is not None

    def test_honest_equivocation_detected(self, small_state):
        state = fast_certified(small_state).copy()
        state.votes[1] = state.votes[1] | {Vote(0, 1, 11, SLOW)}
        assert "honest validator 0 equivocated" in check_certificate_validity(state)

    def test_slow_vote_in_fast_certificate(self, small_state):
        state = fast_certified(small_state).copy()
        certificate = state.certificates[1]
        state.certificates[1] = replace(certificate, votes=certificate.votes | {Vote(0, 1, 10, SLOW)})
        assert "slow vote" in check_certificate_validity(state)

    def test_thin_certificate_breaks_resilience(self, weighted_state):
        """A certificate resting on Byzantine stake alone is flagged."""
        state = weighted_state.copy()
        state.certificates[1] = Certificate(1, 10, SLOW, frozenset({Vote(3, 1, 10, SLOW)}), 10, 0,
                                            state.stake_snapshot())
        assert "honest stake" in check_byzantine_resilience(state)

    def test_withdrawal_after_certificate_keeps_resilience(self):
        """A certificate is judged by the stakes it formed with."""
        config = make_config(stakes=[40, 30, 20, 10], byzantine=[3], explore_economics=True,
                             stake_change_amount=40)
        state = run_actions(initial_states(config)[0], RotateLeader(1), ProposeBlock(1, 10),
                            CastVote(0, 1, 10, FAST), CastVote(2, 1, 10, FAST),
                            Certify(1, 10, SLOW))
        assert check_always(state) == {}
        assert StakeWithdrawal(0, 40) in enabled_actions(state)

        state = run_actions(state, StakeWithdrawal(0, 40))
        assert state.total_stake() == 60
        assert state.certificates[1].total_stake == 100
        assert state.certificates[1].stake_of(0) == 40
        assert check_always(state) == {}

    def test_resilience_vacuous_above_bound(self):
        state = initial_states(make_config(validator_count=3, byzantine=[0]))[0].copy()
        state.skip_certificates[1] = SkipCertificate(1, frozenset({0}), 0)
        state.certificates[1] = Certificate(1, 10, SLOW, frozenset(), 0, 0, state.stake_snapshot())
        assert check_byzantine_resilience(state) is None


class TestAvailability:
    """Erasure availability"""

    def test_reconstructable_blocks_pass(self, small_state):
        state = small_state.copy()
        block = create_erasure_coded_block(1, 10, 0, 1.5, 2, 0)
        state.blocks[10] = block.with_holders(0, frozenset({1})).with_holders(1, frozenset({2}))
        assert check_erasure_availability(state) is None

    def test_missing_reconstruction_flag(self, small_state):
        state = small_state.copy()
        block = create_erasure_coded_block(1, 10, 0, 1.5, 2, 0)
        block = block.with_holders(0, frozenset({1})).with_holders(1, frozenset({2}))
        state.blocks[10] = replace(block, reconstructed=False)
        assert "not reconstructable" in check_erasure_availability(state)


class TestTiming:
    """Bounded finalization and fast-path efficiency"""

    def late_certificate(self, state, path):
        state = run_actions(state, RotateLeader(1), ProposeBlock(1, 10), AdvanceTime(2))
        for validator in sorted(state.validators):
            state = run_actions(state, CastVote(validator, 1, 10, FAST))
        return run_actions(state, Certify(1, 10, path))

    def test_one_round_certificate_passes(self, small_state):
        state = fast_certified(small_state)
        assert check_bounded_finalization(state) is None
        assert check_fast_path_efficiency(state) is None

    def test_late_certificate_flagged(self, small_state):
        state = self.late_certificate(small_state, FAST)
        assert "finalized after 2 ticks" in check_bounded_finalization(state)
        assert "after one round" in check_fast_path_efficiency(state)

    def test_slow_certificate_with_fast_quorum(self, small_state):
        state = run_actions(small_state, RotateLeader(1), ProposeBlock(1, 10))
        for validator in sorted(state.validators):
            state = run_actions(state, CastVote(validator, 1, 10, FAST))
        state = run_actions(state, Certify(1, 10, SLOW))
        assert "no fast certificate" in check_fast_path_efficiency(state)

    def test_disrupted_slot_exempt(self):
        config = make_config(validator_count=4)
        state = run_actions(initial_states(config)[0], RotateLeader(1), ProposeBlock(1, 10),
                            NetworkPartition((0, 1), (2, 3)))
        assert 1 in state.network.disrupted_slots
        state = state.copy()
        votes = frozenset(Vote(v, 1, 10, FAST) for v in range(4))
        state.votes[1] = votes
        state.certificates[1] = Certificate(1, 10, SLOW, votes, 400, 3, state.stake_snapshot())
        assert check_bounded_finalization(state) is None
        assert check_fast_path_efficiency(state) is None

    def test_byzantine_led_slot_exempt(self):
        config = make_config(validator_count=3, byzantine=[0, 1, 2])
        state = run_actions(initial_states(config)[0], RotateLeader(1), AdvanceTime(2),
                            CastVote(0, 1, 10, FAST), CastVote(1, 1, 10, FAST),
                            Certify(1, 10, SLOW))
        assert check_bounded_finalization(state) is None
        assert check_fast_path_efficiency(state) is None


class TestProgress:
    """Eventual finalization"""

    def test_unfinalized_slot(self, small_state):
        assert "never certified or skipped" in check_progress(small_state)

    def test_finalized(self, small_state):
        assert check_progress(fast_certified(small_state)) is None

    def test_skipped_counts(self):
        config = make_config(validator_count=3, timeout_threshold=2)
        state = run_actions(initial_states(config)[0], AdvanceTime(2), Timeout(0, 1),
                            Timeout(1, 1))
        assert check_progress(state) is not None
        assert check_progress(run_actions(state, SkipCertify(1))) is None

    def test_vacuous_without_honest_quorum(self):
        state = initial_states(make_config(validator_count=3, crashed=[1, 2]))[0]
        assert check_progress(state) is None


class TestFairness:
    """Leader rotation fairness"""

    def test_schedule_is_fair(self, weighted_state):
        assert check_leader_rotation_fairness(weighted_state) is None

    def test_skewed_history_flagged(self, small_state):
        state = small_state.copy()
        state.leaders = {slot: 0 for slot in range(1, 3001)}
        assert "chi-square" in check_leader_rotation_fairness(state)


class TestEconomics:
    """Ledger invariants and utility"""

    def test_utility_example(self):
        assert utility(1000, 0.05, 0.5, 0.9, 0.3) == pytest.approx(-245.0)
        assert utility(1000, 0.05, 0.5, 0.0, 0.0) == pytest.approx(25.0)

    def test_negative_balance(self, weighted_state):
        state = weighted_state.copy()
        state.ledger.balances[1] = -5
        assert any("negative balances" in p for p in validate_economic_invariants(state))

    def test_stake_total_mismatch(self, weighted_state):
        state = weighted_state.copy()
        state.validators[0] = replace(state.validators[0], stake=50)
        assert any("differs from" in p for p in validate_economic_invariants(state))

    def test_zero_balance_without_slashing(self, weighted_state):
        state = weighted_state.copy()
        state.ledger.balances[2] = 0
        assert any("zero balance" in p for p in validate_economic_invariants(state))

    def test_observed_violations(self, weighted_state):
        state = run_actions(weighted_state, CastVote(3, 1, 10, FAST), CastVote(3, 1, 11, FAST),
                            Timeout(3, 1))
        assert observed_violations(state) == [
            (3, ViolationKind.EQUIVOCATION, 1),
            (3, ViolationKind.PREMATURE_TIMEOUT, 1),
        ]

    def test_honest_is_equilibrium(self, weighted_state):
        assert UtilityEvaluator(weighted_state).profitable_deviations() == []
        assert check_economic_equilibrium(weighted_state) is None

    def test_honest_utility(self, weighted_state):
        estimate = UtilityEvaluator(weighted_state).honest_utility(0)
        assert estimate.success_probability == 1.0
        assert estimate.utility == pytest.approx(2.0)

    def test_deviation_utility(self, weighted_state):
        estimate = UtilityEvaluator(weighted_state).deviation_utility(
            0, ByzantineStrategy.EQUIVOCATION)
        assert estimate.detection_probability == pytest.approx(0.495)
        assert estimate.utility == pytest.approx(4.0 - 40 * 0.495 * 0.3)

    def test_unpunished_equivocation_is_profitable(self, weighted_state):
        state = run_actions(weighted_state, UpdateEconomicParameters(0.05, (("severe", 0.0),)))
        message = check_economic_equilibrium(state)
        assert "gains by equivocation" in message


class TestAdversary:
    """Byzantine strategies"""

    @pytest.mark.parametrize("strategy,fraction", [
        (ByzantineStrategy.EQUIVOCATION, 0.2),
        (ByzantineStrategy.COALITION, 0.4),
        (ByzantineStrategy.SELECTIVE_WITHHOLDING, 0.2),
        (ByzantineStrategy.STRATEGIC_TIMING, 0.2),
    ])
    def test_required_fraction(self, strategy, fraction):
        assert required_stake_fraction(strategy, 0.8, 0.6) == pytest.approx(fraction)

    def test_estimate(self):
        estimate = estimate_attack(ByzantineStrategy.EQUIVOCATION, 0.1, 0.8, 0.6)
        assert estimate.success_probability == pytest.approx(0.5)
        assert estimate.detection_probability == pytest.approx(0.891)

    def test_success_caps_at_one(self):
        estimate = estimate_attack(ByzantineStrategy.COALITION, 0.9, 0.8, 0.6)
        assert estimate.success_probability == 1.0

    def test_equivocation_votes_every_candidate(self, weighted_state):
        actions = inject_attack(ByzantineStrategy.EQUIVOCATION, weighted_state, [3])
        assert CastVote(3, 1, 10, FAST) in actions
        assert CastVote(3, 1, 11, FAST) in actions

    def test_withholding_times_out(self, weighted_state):
        actions = inject_attack(ByzantineStrategy.SELECTIVE_WITHHOLDING, weighted_state, [3])
        assert actions == [Timeout(3, 1)]

    def test_coalition_backs_conflicting_block(self, weighted_state):
        actions = inject_attack(ByzantineStrategy.COALITION, weighted_state, [3])
        assert CastVote(3, 1, 11, FAST) in actions
        assert CastVote(3, 1, 10, FAST) not in actions

    def test_strategic_timing_votes_slow(self, weighted_state):
        state = run_actions(weighted_state, RotateLeader(1), ProposeBlock(1, 10))
        actions = inject_attack(ByzantineStrategy.STRATEGIC_TIMING, state, [3])
        assert CastVote(3, 1, 10, SLOW) in actions

    def test_union_is_deduplicated(self):
        config = make_config(stakes=[40, 30, 20, 10], byzantine=[3],
                             byzantine_strategies=["equivocation", "coalition"])
        actions = injected_actions(initial_states(config)[0])
        assert actions.count(CastVote(3, 1, 11, FAST)) == 1

    def test_no_attackers(self, small_state):
        assert injected_actions(small_state) == []

    def test_finalized_slots_not_attacked(self, weighted_state):
        state = run_actions(weighted_state, RotateLeader(1), ProposeBlock(1, 10),
                            CastVote(0, 1, 10, FAST), CastVote(1, 1, 10, FAST),
                            CastVote(2, 1, 10, FAST), Certify(1, 10, FAST))
        assert injected_actions(state) == []


class TestConfidence:
    """Statistical helpers"""

    def test_required_sample_size(self):
        assert required_sample_size(0.95, 0.05) == 59

    def test_wilson_without_trials(self):
        assert wilson_interval(0, 0, 0.95) == (0.0, 1.0)

    def test_wilson_no_failures(self):
        low, high = wilson_interval(0, 100, 0.95)
        assert low == pytest.approx(0.0, abs=1e-12)
        assert 0.03 < high < 0.045

    def test_wilson_contains_estimate(self):
        low, high = wilson_interval(30, 100, 0.95)
        assert low < 0.3 < high

    def test_chi_square_bound(self):
        assert chi_square_bound(2, 0.05) == pytest.approx(5.991, abs=1e-3)

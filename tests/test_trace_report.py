"""
Counterexample trace and report tests
"""

import json

import pytest

from alpenglow_verification.actions import (CastVote, Certify, ProposeBlock, RotateLeader,
                                            action_from_dict)
from alpenglow_verification.errors import ExplorationError, PropertyViolation
from alpenglow_verification.report import PropertyResult, Verdict, VerificationReport
from alpenglow_verification.state import VotePath
from alpenglow_verification.trace import Trace, TraceStep

FAST = VotePath.FAST


@pytest.fixture
def certified_trace(small_state):
    actions = [RotateLeader(1), ProposeBlock(1, 10)]
    actions += [CastVote(v, 1, 10, FAST) for v in range(3)]
    actions.append(Certify(1, 10, FAST))
    return Trace.from_actions(small_state, actions)


class TestTrace:
    """Trace construction, replay and JSON form"""

    def test_from_actions(self, certified_trace, small_state):
        assert len(certified_trace) == 6
        assert certified_trace.initial_state is small_state
        assert 1 in certified_trace.final_state.certificates
        assert certified_trace.describe()[0].startswith("1. ")

    def test_illegal_action_rejected(self, small_state):
        with pytest.raises(ExplorationError) as info:
            Trace.from_actions(small_state, [ProposeBlock(1, 10)])
        assert info.value.context["step"] == 0

    def test_replay(self, certified_trace):
        final = certified_trace.replay()
        assert final.fingerprint() == certified_trace.final_state.fingerprint()

    def test_tampered_trace_diverges(self, certified_trace):
        steps = list(certified_trace.steps)
        steps[1] = TraceStep(steps[1].action, steps[0].state)
        with pytest.raises(ExplorationError):
            Trace(certified_trace.initial_state, steps).replay()

    def test_json_round_trip(self, certified_trace, small_config):
        data = json.loads(certified_trace.to_json())
        assert data["steps"][0]["action"] == {"type": "RotateLeader", "slot": 1}
        restored = Trace.from_json(certified_trace.to_json(), small_config)
        assert restored.actions == certified_trace.actions
        assert restored.replay(small_config).fingerprint() == certified_trace.final_state.fingerprint()

    def test_action_from_dict(self):
        action = CastVote(2, 1, 11, VotePath.SLOW)
        assert action_from_dict(action.to_dict()) == action
        with pytest.raises(ValueError):
            action_from_dict({"type": "Teleport"})


def sample_report(trace):
    report = VerificationReport(mode="exhaustive")
    report.results = {
        "safety": PropertyResult("safety", "always", Verdict.VERIFIED, states_checked=12,
                                 confidence=1.0),
        "progress": PropertyResult("progress", "eventually", Verdict.VIOLATED,
                                   message="slots [1] never certified or skipped",
                                   counterexample=trace, states_checked=12, violations=1),
        "leader_rotation_fairness": PropertyResult(
            "leader_rotation_fairness", "eventually", Verdict.INDETERMINATE,
            samples=10, required_samples=59, interval=(0.0, 0.28)),
    }
    return report


class TestReport:
    """Aggregated verdicts"""

    def test_lookup_and_violations(self, certified_trace):
        report = sample_report(certified_trace)
        assert report["safety"].verdict is Verdict.VERIFIED
        assert [r.name for r in report.violations] == ["progress"]
        assert report.has_violations
        assert [r.name for r in report.indeterminate] == ["leader_rotation_fairness"]

    def test_raise_for_violations(self, certified_trace):
        report = sample_report(certified_trace)
        with pytest.raises(PropertyViolation) as info:
            report.raise_for_violations()
        assert info.value.property_name == "progress"
        assert info.value.trace is certified_trace

    def test_summary(self, certified_trace):
        lines = sample_report(certified_trace).summary()
        assert lines[0] == "safety: verified (12 states)"
        assert "trace of 6 steps" in lines[1]
        assert lines[2] == "leader_rotation_fairness: indeterminate (10 of 59 samples)"

    def test_json(self, certified_trace):
        data = json.loads(sample_report(certified_trace).to_json())
        assert data["mode"] == "exhaustive"
        assert data["results"]["progress"]["verdict"] == "violated"
        assert len(data["results"]["progress"]["counterexample"]["steps"]) == 6
        assert data["results"]["leader_rotation_fairness"]["interval"] == [0.0, 0.28]

    def test_dataframe(self, certified_trace):
        frame = sample_report(certified_trace).to_dataframe()
        assert list(frame["property"]) == ["safety", "progress", "leader_rotation_fairness"]
        assert frame.set_index("property").loc["progress", "trace_length"] == 6
        assert frame.set_index("property").loc["leader_rotation_fairness", "interval_high"] == 0.28

"""
Command-line entry point tests
"""

import json

import pytest

from alpenglow_verification.cli import build_parser, main

SMALL_CONFIG = """
validator_count: 3
max_slot: 1
explore_partitions: false
explore_economics: false
redundancy: 1.0
erasure_threshold: 1
byzantine_strategies: [equivocation]
"""


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "small.yaml"
    path.write_text(SMALL_CONFIG)
    return path


class TestCli:
    """alpenglow-verify"""

    def test_parser_defaults(self):
        args = build_parser().parse_args([])
        assert args.config is None
        assert not args.verbose

    def test_verified_run_writes_report(self, config_file, tmp_path):
        output = tmp_path / "reports" / "report.json"
        assert main(["--config", str(config_file), "--output", str(output)]) == 0
        report = json.loads(output.read_text())
        assert report["mode"] == "exhaustive"
        assert report["results"]["safety"]["verdict"] == "verified"

    def test_report_printed_without_output(self, config_file, capsys):
        assert main(["--config", str(config_file), "--seed", "3"]) == 0
        report = json.loads(capsys.readouterr().out)
        assert report["metadata"]["config"]["seed"] == 3

    def test_violation_exit_code(self, tmp_path):
        path = tmp_path / "unpunished.yaml"
        path.write_text(SMALL_CONFIG + "slashing_rates: {minor: 0.05, moderate: 0.15, "
                                       "severe: 0.0, critical: 0.5}\n")
        assert main(["--config", str(path), "-o", str(tmp_path / "out.json")]) == 1

    def test_invalid_config_exit_code(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("validator_count: 3\nfast_quorum: 1.5\n")
        assert main(["--config", str(path)]) == 2

    def test_missing_config_file(self, tmp_path):
        assert main(["--config", str(tmp_path / "absent.yaml")]) == 2

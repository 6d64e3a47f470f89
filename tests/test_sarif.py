"""
Tests for SARIF 2.1.0 output.
"""

import json

import pytest

from p4reach.analyzer import Analyzer
from p4reach.ci.config import AnalysisConfig
from p4reach.ci.sarif import load_sarif, results_to_sarif, write_sarif
from p4reach.dse.constraint_solver import CancellationToken

from builders import BOOL_T, assert_, bug, call, control, if_, not_, param, program


@pytest.fixture
def prog():
    return program(
        control("A", params=[param("in", BOOL_T, "c")], body=[
            assert_("c", line=5),
            if_(not_("c"), [bug(line=6)]),
            bug(line=7),
        ]),
        control("Bad", body=[call("nope")]),
    )


def _run(prog, cancelled=False):
    token = CancellationToken()
    if cancelled:
        token.cancel()
    return Analyzer(AnalysisConfig(parallel=False)).analyze(prog, token)


def _run_entry(sarif):
    (run,) = sarif["runs"]
    return run


class TestResults:

    def test_rules_and_levels(self, prog, tmp_path):
        run = _run_entry(results_to_sarif(_run(prog), tmp_path))
        rule_ids = [r["id"] for r in run["tool"]["driver"]["rules"]]
        assert sorted(rule_ids) == ["P4R001", "P4R002", "P4R003", "P4R100"]

        results = [(r["ruleId"], r["level"]) for r in run["results"]]
        assert results == [
            ("P4R002", "error"),
            ("P4R001", "error"),
            ("P4R100", "error"),
        ]

    def test_unreachable_targets_are_omitted(self, prog, tmp_path):
        run = _run_entry(results_to_sarif(_run(prog), tmp_path))
        ids = [r.get("partialFingerprints", {}).get("targetId") for r in run["results"]]
        assert "A#1" not in ids
        assert ids[:2] == ["A#0", "A#2"]

    def test_location_and_witness(self, prog, tmp_path):
        run = _run_entry(results_to_sarif(_run(prog), tmp_path))
        first = run["results"][0]
        region = first["locations"][0]["physicalLocation"]["region"]
        assert region["startLine"] == 5
        assert first["properties"]["witness"] == {"c": False}
        rules = run["tool"]["driver"]["rules"]
        assert rules[first["ruleIndex"]]["id"] == first["ruleId"]

    def test_elaboration_error_properties(self, prog, tmp_path):
        run = _run_entry(results_to_sarif(_run(prog), tmp_path))
        error = run["results"][-1]
        assert error["properties"] == {"control": "Bad", "errorKind": "UnknownIdentifier"}

    def test_metrics(self, prog, tmp_path):
        run = _run_entry(results_to_sarif(_run(prog), tmp_path))
        assert run["properties"]["metrics"] == {
            "controls": 2,
            "targets": 3,
            "reachable": 2,
            "unreachable": 1,
            "unknown": 0,
            "errors": 1,
        }
        assert run["invocations"][0]["executionSuccessful"] is True


def test_cancelled_run(prog, tmp_path):
    sarif = results_to_sarif(_run(prog, cancelled=True), tmp_path)
    run = _run_entry(sarif)
    assert run["invocations"][0]["executionSuccessful"] is False
    unknown = [r for r in run["results"] if r["ruleId"] == "P4R003"]
    assert len(unknown) == 3
    assert all(r["level"] == "warning" for r in unknown)
    assert unknown[0]["properties"] == {"reason": "canceled"}


def test_write_and_load(prog, tmp_path):
    sarif = results_to_sarif(_run(prog), tmp_path)
    path = tmp_path / "out" / "results.sarif"
    write_sarif(sarif, path)
    assert load_sarif(path) == json.loads(json.dumps(sarif))
    assert load_sarif(path)["version"] == "2.1.0"

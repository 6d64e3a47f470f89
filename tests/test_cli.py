"""
Tests for the p4reach command line: exit codes, output files and init.
"""

import json
import subprocess
import sys

import pytest

from p4reach.analyzer import Analyzer
from p4reach.ci.config import AnalysisConfig
from p4reach.cli import exit_code, main
from p4reach.dse.constraint_solver import CancellationToken

from builders import call, control, program, to_json


def _write(tmp_path, prog, name="prog.json"):
    path = tmp_path / name
    path.write_text(json.dumps(to_json(prog)))
    return path


def test_module_help():
    proc = subprocess.run(
        [sys.executable, "-m", "p4reach", "--help"],
        capture_output=True, text=True, timeout=60,
    )
    assert proc.returncode == 0
    assert "scan" in proc.stdout


class TestScan:

    def test_reachable_target_exits_1(self, tmp_path, scenario_a, capsys):
        path = _write(tmp_path, scenario_a)
        assert main(["scan", str(path), "--no-parallel"]) == 1
        out = capsys.readouterr().out
        assert "BUG     C#0" in out
        assert "s.b = true" in out

    def test_safe_program_exits_0(self, tmp_path, scenario_b, capsys):
        path = _write(tmp_path, scenario_b)
        assert main(["scan", str(path)]) == 0
        assert "SAFE    C#0" in capsys.readouterr().out

    def test_legacy_invocation(self, tmp_path, scenario_b):
        assert main([str(_write(tmp_path, scenario_b))]) == 0

    def test_missing_file_exits_3(self, tmp_path, capsys):
        assert main(["scan", str(tmp_path / "absent.json")]) == 3
        assert "Target not found" in capsys.readouterr().err

    def test_malformed_json_exits_3(self, tmp_path, capsys):
        path = tmp_path / "bad.json"
        path.write_text('{"kind": "Program", "declarations": [{"kind": "Loop"}]}')
        assert main(["scan", str(path)]) == 3
        assert "unknown node kind" in capsys.readouterr().err

    def test_undecodable_input_exits_3(self, tmp_path, capsys):
        bad_bytes = tmp_path / "bytes.json"
        bad_bytes.write_bytes(b"\xff\xfe{")
        assert main(["scan", str(bad_bytes)]) == 3
        assert "UTF-8" in capsys.readouterr().err

        bad_location = tmp_path / "loc.json"
        doc = to_json(program(control("C")))
        doc["declarations"][0]["location"] = {"line": "one"}
        bad_location.write_text(json.dumps(doc))
        assert main(["scan", str(bad_location)]) == 3
        assert "bad location" in capsys.readouterr().err

    def test_elaboration_error_exits_3(self, tmp_path):
        path = _write(tmp_path, program(control("Bad", body=[call("nope")])))
        assert main(["scan", str(path)]) == 3

    def test_invalid_config_exits_3(self, tmp_path, scenario_b, capsys):
        path = _write(tmp_path, scenario_b)
        (tmp_path / ".p4reach.yml").write_text("analysis:\n  max-workers: 0\n")
        assert main(["scan", str(path)]) == 3
        assert "max-workers" in capsys.readouterr().err

    def test_output_files(self, tmp_path, scenario_a):
        path = _write(tmp_path, scenario_a)
        report_path = tmp_path / "out" / "report.json"
        sarif_path = tmp_path / "out" / "results.sarif"
        code = main([
            "scan", str(path),
            "--output-json", str(report_path),
            "--output-sarif", str(sarif_path),
        ])
        assert code == 1
        report = json.loads(report_path.read_text())
        assert report["summary"]["reachable"] == 1
        sarif = json.loads(sarif_path.read_text())
        assert sarif["runs"][0]["results"][0]["ruleId"] == "P4R001"

    def test_config_next_to_program(self, tmp_path, scenario_b, monkeypatch):
        monkeypatch.chdir(tmp_path)
        path = _write(tmp_path, scenario_b)
        (tmp_path / ".p4reach.yml").write_text("output:\n  json-file: from-config.json\n")
        assert main(["scan", str(path)]) == 0
        assert (tmp_path / "from-config.json").exists()


class TestInit:

    def test_init_then_refuse_then_overwrite(self, tmp_path):
        assert main(["init", str(tmp_path)]) == 0
        config = tmp_path / ".p4reach.yml"
        assert config.read_text().startswith("# .p4reach.yml")

        config.write_text("analysis:\n  max-workers: 1\n")
        assert main(["init", str(tmp_path)]) == 3
        assert "max-workers: 1" in config.read_text()

        assert main(["init", str(tmp_path), "--overwrite"]) == 0
        assert "max-workers: 4" in config.read_text()

    def test_init_requires_directory(self, tmp_path):
        assert main(["init", str(tmp_path / "nowhere")]) == 3


def test_unknown_only_report_exits_2(scenario_b):
    token = CancellationToken()
    token.cancel()
    report = Analyzer(AnalysisConfig(parallel=False)).analyze(scenario_b, token)
    assert exit_code(report) == 2


@pytest.mark.parametrize("argv", [[], ["--help"]])
def test_help(argv, capsys):
    if argv:
        with pytest.raises(SystemExit) as exc:
            main(argv)
        assert exc.value.code == 0
    else:
        assert main(argv) == 0
    assert "p4reach" in capsys.readouterr().out

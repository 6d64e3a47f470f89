"""Tests for .p4reach.yml loading."""

import pytest
import yaml

from p4reach.ci.config import AnalysisConfig, ConfigError, P4ReachConfig


def test_defaults_without_file(tmp_path):
    cfg = P4ReachConfig.load(tmp_path)
    assert cfg.analysis == AnalysisConfig()
    assert cfg.analysis.solver_timeout_ms == 5000
    assert cfg.analysis.exclusive_table_actions is True
    assert cfg.output.json_file is None


def test_kebab_case_keys(tmp_path):
    (tmp_path / ".p4reach.yml").write_text(
        "analysis:\n"
        "  solver-timeout-ms: 250\n"
        "  max-workers: 2\n"
        "  exclusive-table-actions: false\n"
        "output:\n"
        "  sarif-file: out/results.sarif\n"
    )
    cfg = P4ReachConfig.load(tmp_path)
    assert cfg.analysis.solver_timeout_ms == 250
    assert cfg.analysis.max_workers == 2
    assert cfg.analysis.exclusive_table_actions is False
    assert cfg.analysis.parallel is True
    assert cfg.output.sarif_file == "out/results.sarif"


def test_snake_case_keys_and_yaml_suffix(tmp_path):
    (tmp_path / ".p4reach.yaml").write_text(
        "analysis:\n  solver_rlimit: 1000\n  parallel: false\n"
    )
    cfg = P4ReachConfig.load(tmp_path)
    assert cfg.analysis.solver_rlimit == 1000
    assert cfg.analysis.parallel is False


def test_empty_file_gives_defaults(tmp_path):
    path = tmp_path / ".p4reach.yml"
    path.write_text("")
    assert P4ReachConfig.load_file(path) == P4ReachConfig()


@pytest.mark.parametrize("text", [
    "analysis:\n  solver-timeout-ms: 0\n",
    "analysis:\n  max-workers: -1\n",
    "analysis:\n  max-workers: many\n",
    "- just\n- a list\n",
    "analysis: [unclosed\n",
])
def test_invalid_files(tmp_path, text):
    path = tmp_path / ".p4reach.yml"
    path.write_text(text)
    with pytest.raises(ConfigError):
        P4ReachConfig.load_file(path)


def test_to_yaml_reloads(tmp_path):
    cfg = P4ReachConfig()
    cfg.analysis.solver_timeout_ms = 1234
    cfg.output.json_file = "report.json"
    text = cfg.to_yaml()
    assert text.startswith("# .p4reach.yml")
    assert yaml.safe_load(text)["analysis"]["solver-timeout-ms"] == 1234

    (tmp_path / ".p4reach.yml").write_text(text)
    assert P4ReachConfig.load(tmp_path) == cfg

"""Shared fixtures: an analyzer factory and the small programs reused by several modules."""

import pytest

from p4reach.analyzer import Analyzer
from p4reach.ci.config import AnalysisConfig
from p4reach.semantics.environment import build_global_environment
from p4reach.cfg.call_graph import build_call_graph
from p4reach.cfg.control_flow import build_cfg

from builders import (
    BOOL_T,
    assign,
    bug,
    control,
    field,
    if_,
    named,
    program,
    struct,
    var,
)


@pytest.fixture
def analyze():
    """Run the analyzer sequentially (or in parallel with ``parallel=True``)."""
    def run(prog, **overrides):
        config = AnalysisConfig(parallel=False)
        for key, value in overrides.items():
            setattr(config, key, value)
        return Analyzer(config).analyze(prog)
    return run


@pytest.fixture
def cfg_of():
    """Build the CFG of control ``name`` in ``prog``; returns (cfg, errors)."""
    def build(prog, name=None):
        genv = build_global_environment(prog)
        assert genv.errors == []
        name = name or prog.controls[0].name
        return build_cfg(genv.env.lookup(name), build_call_graph(prog))
    return build


@pytest.fixture
def scenario_a():
    """struct S { bool b; }  control C() { apply { S s; s.b = true; if (s.b) { bug(); } } }"""
    return program(
        struct("S", ("b", BOOL_T)),
        control("C", body=[
            var(named("S"), "s", line=2),
            assign(field("s", "b"), True, line=3),
            if_(field("s", "b"), [bug(line=4)], line=4),
        ]),
    )


@pytest.fixture
def scenario_b():
    """control C() { apply { bool x = true; x = false; if (x) { bug(); } } }"""
    return program(
        control("C", body=[
            var(BOOL_T, "x", True),
            assign("x", False),
            if_("x", [bug()]),
        ]),
    )

"""
Tests for the BUG / ASSERT_FAIL error locations.

bug() is an unconditional error location, assert(c) an error location
guarded by !c, and assume(c) no error location at all. A program
declaration with one of these names turns the call into an ordinary one.
"""

import pytest

from p4reach.dse.constraint_solver import Verdict
from p4reach.frontend import ast
from p4reach.semantics.environment import Environment
from p4reach.semantics.errors import TypeMismatch
from p4reach.unsafe.assert_fail import (
    ASSERT,
    ASSUME,
    BUG,
    assertion_condition,
    assertion_kind,
    describe_target,
    extract_counterexample,
)

from builders import BOOL_T, action, and_, arg, assert_, bug, call, control, param, program


def _call(name, *args):
    return ast.Call(ast.VarRef(name), [arg(a) if not isinstance(a, ast.Argument) else a for a in args])


@pytest.mark.parametrize("name, kind", [("bug", BUG), ("assert", ASSERT), ("assume", ASSUME), ("foo", None)])
def test_assertion_kind(name, kind):
    assert assertion_kind(_call(name), Environment()) == kind


def test_condition_of_assert():
    condition = assertion_condition(_call("assert", "c"), ASSERT)
    assert condition == ast.VarRef("c")


@pytest.mark.parametrize("c, kind", [
    (_call("bug", True), BUG),
    (_call("assert"), ASSERT),
    (_call("assume", True, False), ASSUME),
    (_call("assert", arg()), ASSERT),
    (_call("assert", arg(True, name="cond")), ASSERT),
])
def test_bad_arguments(c, kind):
    with pytest.raises(TypeMismatch):
        assertion_condition(c, kind)


def test_descriptions():
    assert describe_target(BUG, None) == "bug() reached"
    assert describe_target(ASSERT, and_("a", "b")) == "assert(a && b) fails"


def test_counterexample_record(cfg_of):
    cfg, _ = cfg_of(program(control("C", params=[param("in", BOOL_T, "c")], body=[assert_("c")])))
    (target,) = cfg.targets
    record = extract_counterexample(target, Verdict.reachable({"c": False}))
    assert record == {
        "bug_type": "ASSERT_FAIL",
        "description": "assert(c) fails",
        "witness": {"c": False},
    }


def test_shadowed_bug_is_an_ordinary_call(analyze):
    prog = program(control("C", locals=[action("bug")], body=[call("bug")]))
    report = analyze(prog)
    assert report.control("C").analyzed
    assert report.results == []


def test_bug_with_arguments_is_rejected(analyze):
    report = analyze(program(control("C", body=[call("bug", True)])))
    assert [e.kind for e in report.control("C").errors] == ["TypeMismatch"]


def test_unconditional_bug_has_empty_witness(analyze):
    report = analyze(program(control("C", body=[bug()])))
    (result,) = report.results
    assert result.verdict.is_reachable
    assert result.verdict.witness == {}

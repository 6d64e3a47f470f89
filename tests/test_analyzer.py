"""
End-to-end tests: programs in, per-target verdicts out.
"""

import json

from p4reach.analyzer import Analyzer, analyze_program
from p4reach.ci.config import AnalysisConfig
from p4reach.dse.constraint_solver import CANCELED, CancellationToken

from builders import (
    BOOL_T,
    STR_T,
    action,
    apply,
    arg,
    assert_,
    assign,
    assume,
    block,
    bug,
    call,
    const,
    control,
    eq,
    field,
    if_,
    instance,
    lit,
    named,
    neq,
    not_,
    param,
    program,
    ref,
    struct,
    struct_lit,
    table,
    var,
)


def _verdicts(report):
    return [(r.target.id, r.verdict.kind.value) for r in report.results]


def _outcomes(report):
    return [(r.target.id, r.verdict.kind, r.verdict.witness, r.verdict.reason) for r in report.results]


def _scenario_c():
    """Two mutually exclusive actions; the target is inside a1 only."""
    return program(control(
        "C",
        locals=[action("a1", body=[bug()]), action("a2"), table("t", ["a1", "a2"])],
        body=[apply("t")],
    ))


class TestScenarios:

    def test_struct_field_assignment_reaches_target(self, analyze, scenario_a):
        report = analyze(scenario_a)
        (result,) = report.results
        assert result.target.id == "C#0"
        assert result.verdict.is_reachable
        assert result.verdict.witness == {"s.b": True}

    def test_overwritten_flag_makes_target_unreachable(self, analyze, scenario_b):
        report = analyze(scenario_b)
        assert _verdicts(report) == [("C#0", "unreachable")]

    def test_exclusive_table_actions(self, analyze):
        report = analyze(_scenario_c())
        (result,) = report.results
        assert result.verdict.is_reachable
        assert result.verdict.witness == {
            "C.t#0.a1": True,
            "C.t#0.a2": False,
            "C.t#0.$miss": False,
        }

    def test_undeclared_action_fails_only_its_control(self, analyze):
        prog = program(
            struct("S", ("b", BOOL_T)),
            control("Bad", body=[call("nope")]),
            control("Good", body=[
                var(named("S"), "s"),
                assign(field("s", "b"), True),
                if_(field("s", "b"), [bug()]),
            ]),
        )
        report = analyze(prog)
        bad, good = report.control("Bad"), report.control("Good")
        assert [e.kind for e in bad.errors] == ["UnknownIdentifier"]
        assert not bad.analyzed
        assert bad.results == []
        assert good.analyzed
        assert _verdicts(report) == [("Good#0", "reachable")]


class TestSemantics:
    """Language features end to end."""

    def test_block_scoping(self, analyze):
        prog = program(control("C", body=[
            var(BOOL_T, "x", True),
            block(var(BOOL_T, "x", False), if_("x", [bug()])),
            if_("x", [bug()]),
        ]))
        report = analyze(prog)
        assert _verdicts(report) == [("C#0", "unreachable"), ("C#1", "reachable")]
        assert report.result("C#1").verdict.witness == {"x": True}

    def test_out_parameter(self, analyze):
        def prog(argument):
            return program(control(
                "C",
                locals=[action("set", [param("out", BOOL_T, "r")], [assign("r", True)])],
                body=[var(BOOL_T, "y", False), call("set", argument), if_("y", [bug()])],
            ))
        assert _verdicts(analyze(prog("y"))) == [("C#0", "reachable")]
        assert _verdicts(analyze(prog(arg()))) == [("C#0", "unreachable")]

    def test_in_parameter_copy_in(self, analyze):
        def prog(value):
            return program(control(
                "C",
                locals=[action("check", [param("in", BOOL_T, "v")], [if_("v", [bug()])])],
                body=[call("check", value)],
            ))
        assert _verdicts(analyze(prog(False))) == [("C#0", "unreachable")]
        report = analyze(prog(True))
        assert report.results[0].verdict.witness == {"v": True}

    def test_inout_parameter_sees_caller_value(self, analyze):
        prog = program(control(
            "C",
            locals=[action("check", [param("inout", BOOL_T, "f")], [assert_("f")])],
            body=[var(BOOL_T, "y", True), call("check", f="y")],
        ))
        assert _verdicts(analyze(prog)) == [("C#0", "unreachable")]

    def test_default_action_runs_on_miss(self, analyze):
        prog = program(control(
            "C",
            locals=[action("a1"), action("hit", body=[bug()]), table("t", ["a1"], default="hit")],
            body=[apply("t")],
        ))
        report = analyze(prog)
        assert report.results[0].verdict.witness == {"C.t#0.a1": False, "C.t#0.$miss": True}

    def test_action_data_is_unconstrained(self, analyze):
        def prog(entry):
            return program(control(
                "C",
                locals=[
                    var(BOOL_T, "y", False),
                    action("set_to", [param("", BOOL_T, "v")], [assign("y", "v")]),
                    table("t", [entry]),
                ],
                body=[apply("t"), if_("y", [bug()])],
            ))
        report = analyze(prog("set_to"))
        witness = report.results[0].verdict.witness
        assert witness["y"] is True
        assert witness["C.t#0.set_to"] is True
        # Data bound in the table's action list is fixed
        assert _verdicts(analyze(prog(ref("set_to", False)))) == [("C#0", "unreachable")]

    def test_control_application(self, analyze):
        prog = program(
            control("Inner", params=[param("inout", BOOL_T, "f")], body=[assign("f", True)]),
            control(
                "Outer",
                locals=[var(BOOL_T, "z", False), instance("Inner", "i")],
                body=[apply("i", "z"), if_("z", [bug()])],
            ),
        )
        report = analyze(prog)
        assert report.control("Inner").results == []
        assert _verdicts(report) == [("Outer#0", "reachable")]
        assert report.result("Outer#0").verdict.witness == {"z": True}

    def test_struct_equality(self, analyze):
        s = struct("S", ("a", BOOL_T), ("b", BOOL_T))
        literal = struct_lit(("a", True), ("b", False))
        prog = program(
            s,
            control("P", params=[param("in", named("S"), "p")], body=[if_(eq("p", literal), [bug()])]),
            control("Q", body=[var(named("S"), "q", literal), if_(neq("q", literal), [bug()])]),
        )
        report = analyze(prog)
        assert report.result("P#0").verdict.witness == {"p.a": True, "p.b": False}
        assert report.result("Q#0").verdict.is_unreachable

    def test_string_equality(self, analyze):
        prog = program(control(
            "C", params=[param("in", STR_T, "s")], body=[if_(eq("s", lit("eth0")), [bug()])],
        ))
        assert analyze(prog).results[0].verdict.witness == {"s": "eth0"}

    def test_constants(self, analyze):
        prog = program(
            const(BOOL_T, "K", False),
            control("C", locals=[const(BOOL_T, "L", True)], body=[if_("K", [bug()]), if_(not_("L"), [bug()])]),
        )
        assert _verdicts(analyze(prog)) == [("C#0", "unreachable"), ("C#1", "unreachable")]

    def test_assume(self, analyze):
        prog = program(control(
            "C", params=[param("in", BOOL_T, "c")], body=[assume("c"), if_(not_("c"), [bug()])],
        ))
        assert _verdicts(analyze(prog)) == [("C#0", "unreachable")]

    def test_failed_assert_does_not_taint_later_ones(self, analyze):
        prog = program(control(
            "C", params=[param("in", BOOL_T, "c")], body=[assert_("c"), assert_("c")],
        ))
        report = analyze(prog)
        assert _verdicts(report) == [("C#0", "reachable"), ("C#1", "unreachable")]
        assert report.result("C#0").verdict.witness == {"c": False}

    def test_code_after_bug_is_unreachable(self, analyze):
        report = analyze(program(control("C", body=[bug(), bug()])))
        assert _verdicts(report) == [("C#0", "reachable"), ("C#1", "unreachable")]

    def test_recursive_actions_reported(self, analyze):
        prog = program(control(
            "C",
            locals=[action("a", body=[call("b")]), action("b", body=[call("a")])],
            body=[call("a"), bug()],
        ))
        report = analyze(prog)
        assert report.results == []
        assert {e.kind for e in report.control("C").errors} == {"UnsupportedConstruct"}


class TestReport:

    def test_global_errors_do_not_block_unrelated_controls(self, analyze, scenario_b):
        scenario_b.declarations.append(struct("Dup"))
        scenario_b.declarations.append(struct("Dup"))
        report = analyze(scenario_b)
        assert [e.kind for e in report.errors] == ["DuplicateName"]
        assert _verdicts(report) == [("C#0", "unreachable")]
        assert report.summary()["errors"] == 1

    def test_results_are_deterministic(self, analyze, scenario_a):
        prog = program(
            *scenario_a.declarations,
            control("B", params=[param("in", BOOL_T, "c")], body=[assert_("c"), if_("c", [bug()])]),
        )
        first = analyze(prog)
        second = analyze(prog)
        parallel = analyze(prog, parallel=True, max_workers=4)
        assert _outcomes(first) == _outcomes(second) == _outcomes(parallel)
        assert [r.target.id for r in first.results] == ["B#0", "B#1", "C#0"]

    def test_target_order_is_numeric(self, analyze):
        report = analyze(program(control(
            "C", params=[param("in", BOOL_T, "c")], body=[if_("c", [bug()]) for _ in range(12)],
        )))
        assert [r.target.id for r in report.results] == [f"C#{i}" for i in range(12)]

    def test_cancelled_run_reports_unknown(self, scenario_a):
        token = CancellationToken()
        token.cancel()
        report = Analyzer(AnalysisConfig(parallel=False)).analyze(scenario_a, token)
        assert report.cancelled
        (result,) = report.results
        assert result.verdict.is_unknown
        assert result.verdict.reason == CANCELED
        assert report.summary()["unknown"] == 1

    def test_to_dict_is_json_serializable(self, scenario_a):
        report = analyze_program(scenario_a, AnalysisConfig(parallel=False))
        data = json.loads(json.dumps(report.to_dict()))
        assert data["summary"]["reachable"] == 1
        (target,) = data["controls"][0]["targets"]
        assert target["verdict"] == "reachable"
        assert target["witness"] == {"s.b": True}
        assert target["counterexample"]["bug_type"] == "BUG"
        assert target["location"]["line"] == 4
        assert data["stats"]["queries"] == 1

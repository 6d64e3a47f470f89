"""
Tests for call graph construction and recursion detection.
"""

from p4reach.cfg.call_graph import build_call_graph

from builders import action, apply, call, control, if_, instance, program, table


def test_action_calls_and_table_edges():
    prog = program(control(
        "C",
        locals=[
            action("helper"),
            action("a1", body=[call("helper")]),
            action("a2"),
            action("d"),
            table("t", ["a1", "a2"], default="d"),
        ],
        body=[apply("t")],
    ))
    graph = build_call_graph(prog)

    assert graph.functions["C.t"].kind == "table"
    assert graph.functions["C.a1"].kind == "action"
    assert graph.get_callees("C") == {"C.t"}
    assert graph.get_callees("C.t") == {"C.a1", "C.a2", "C.d"}
    assert graph.get_callees("C.a1") == {"C.helper"}
    assert graph.get_callers("C.helper") == {"C.a1"}
    assert graph.recursive_callables() == set()
    assert graph.get_reachable_from(["C"]) == {"C", "C.t", "C.a1", "C.a2", "C.d", "C.helper"}


def test_acyclic_graph_has_singleton_sccs():
    prog = program(control("C", locals=[action("a"), action("b", body=[call("a")])], body=[call("b")]))
    sccs = build_call_graph(prog).compute_sccs()
    assert all(len(scc) == 1 for scc in sccs)
    # Leaves first
    order = [next(iter(scc)) for scc in sccs]
    assert order.index("C.a") < order.index("C.b") < order.index("C")


def test_mutual_recursion_detected():
    prog = program(control(
        "C",
        locals=[action("a", body=[call("b")]), action("b", body=[call("a")]), action("c")],
        body=[call("a"), call("c")],
    ))
    graph = build_call_graph(prog)

    assert graph.recursive_callables() == {"C.a", "C.b"}
    assert graph.is_recursive("C.a")
    assert not graph.is_recursive("C")
    assert graph.cycle_through("C.a") == ["C.a", "C.b", "C.a"]
    assert graph.cycle_through("C.c") == []


def test_self_recursion_detected():
    prog = program(control("C", locals=[action("a", body=[call("a")])], body=[call("a")]))
    assert build_call_graph(prog).recursive_callables() == {"C.a"}


def test_control_application_edges():
    prog = program(
        control("Inner"),
        control("Outer", locals=[instance("Inner", "i")], body=[apply("i")]),
    )
    graph = build_call_graph(prog)
    assert graph.get_callees("Outer") == {"Inner"}
    assert "Inner" in graph.get_reachable_from(["Outer"])


def test_recursion_through_control_instances():
    prog = program(
        control("A", locals=[instance("B", "b")], body=[apply("b")]),
        control("B", locals=[instance("A", "a")], body=[apply("a")]),
    )
    assert build_call_graph(prog).recursive_callables() == {"A", "B"}


def test_calls_inside_branches_are_edges():
    prog = program(control(
        "C",
        locals=[action("x"), action("y")],
        body=[if_(True, [call("x")], [call("y")])],
    ))
    assert build_call_graph(prog).get_callees("C") == {"C.x", "C.y"}

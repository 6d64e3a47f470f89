"""
Tests for the JSON AST loader.
"""

import json

import pytest

from p4reach.analyzer import analyze_program
from p4reach.ci.config import AnalysisConfig
from p4reach.frontend import ast
from p4reach.frontend.loader import LoaderError, decode_node, load_program, program_from_dict

from builders import (
    BOOL_T,
    action,
    apply,
    arg,
    assign,
    call,
    control,
    if_,
    param,
    program,
    ref,
    struct,
    struct_lit,
    table,
    to_json,
    var,
    named,
    eq,
)


SCENARIO_A = {
    "kind": "Program",
    "declarations": [
        {"kind": "StructDeclaration", "name": "S", "fields": [
            {"kind": "StructField", "type": {"kind": "BoolTypeRef"}, "name": "b"},
        ]},
        {"kind": "ControlDeclaration", "name": "C", "params": [], "locals": [],
         "body": {"kind": "BlockStatement", "statements": [
             {"kind": "VariableDeclaration", "type": {"kind": "NamedTypeRef", "name": "S"}, "name": "s"},
             {"kind": "Assignment",
              "lvalue": {"kind": "FieldAccess", "target": {"kind": "VarRef", "name": "s"}, "field": "b"},
              "value": {"kind": "BoolLiteral", "value": True}},
             {"kind": "IfStatement",
              "condition": {"kind": "FieldAccess", "target": {"kind": "VarRef", "name": "s"}, "field": "b"},
              "then_block": [
                  {"kind": "CallStatement",
                   "call": {"kind": "Call", "callee": {"kind": "VarRef", "name": "bug"}, "args": []},
                   "location": {"file": "a.p4", "line": 5, "column": 9}},
              ]},
         ]}},
    ],
}


def test_decode_scenario():
    prog = program_from_dict(SCENARIO_A, source="a.json")
    assert prog.source == "a.json"
    (ctrl,) = prog.controls
    stmt = ctrl.body.statements[2]
    assert isinstance(stmt, ast.IfStatement)
    assert isinstance(stmt.then_block, ast.BlockStatement)
    assert stmt.then_block.statements[0].location == ast.SourceLocation("a.p4", 5, 9)

    report = analyze_program(prog, AnalysisConfig(parallel=False))
    (result,) = report.results
    assert result.verdict.witness == {"s.b": True}
    assert result.target.location.line == 5


def test_load_program_from_file(tmp_path):
    path = tmp_path / "prog.json"
    path.write_text(json.dumps(SCENARIO_A))
    prog = load_program(path)
    assert prog.source == str(path)
    assert [d.name for d in prog.declarations] == ["S", "C"]


def test_bare_declaration_list():
    prog = program_from_dict(SCENARIO_A["declarations"])
    assert len(prog.controls) == 1


def test_encoded_program_decodes_to_equal_tree():
    prog = program(
        struct("S", ("a", BOOL_T), ("b", BOOL_T)),
        control(
            "C",
            params=[param("inout", named("S"), "p"), param("in", BOOL_T, "c")],
            locals=[
                action("set", [param("out", BOOL_T, "r"), param("", BOOL_T, "d")], [assign("r", "d")]),
                table("t", [ref("set", arg(), True)], keys=["c"]),
            ],
            body=[
                var(BOOL_T, "y"),
                if_(eq("p", struct_lit(("a", True), ("b", False))), [apply("t")], [call("set", "y", False)]),
            ],
        ),
    )
    assert program_from_dict(to_json(prog)) == prog


def test_struct_literal_pairs():
    node = decode_node({
        "kind": "StructLiteral",
        "fields": [["a", {"kind": "BoolLiteral", "value": True}]],
    })
    assert node == ast.StructLiteral([("a", ast.BoolLiteral(True))])


def test_directions():
    node = decode_node({"kind": "Parameter", "direction": "inout", "type": {"kind": "BoolTypeRef"}, "name": "x"})
    assert node.direction == ast.Direction.INOUT
    node = decode_node({"kind": "Parameter", "direction": "", "type": {"kind": "BoolTypeRef"}, "name": "x"})
    assert node.direction == ast.Direction.NONE


@pytest.mark.parametrize("raw, message", [
    ({"name": "x"}, "without a 'kind'"),
    ({"kind": "WhileStatement"}, "unknown node kind"),
    ({"kind": "VarRef", "name": "x", "colour": "red"}, "no field 'colour'"),
    ({"kind": "VarRef"}, "VarRef"),
    ({"kind": "Parameter", "direction": "sideways", "type": {"kind": "BoolTypeRef"}, "name": "x"}, "direction"),
    ({"kind": "IfStatement", "condition": {"kind": "BoolLiteral", "value": True},
      "then_block": {"kind": "VarRef", "name": "x"}}, "BlockStatement"),
    ({"kind": "StructLiteral", "fields": [{"name": "a"}]}, "expected"),
    ({"kind": "VarRef", "name": "x", "location": {"line": "x"}}, "bad location"),
    ({"kind": "VarRef", "name": "x", "location": {"column": [3]}}, "bad location"),
])
def test_malformed_nodes(raw, message):
    with pytest.raises(LoaderError, match=message):
        decode_node(raw)


def test_top_level_must_be_program():
    with pytest.raises(LoaderError, match="expected a Program"):
        program_from_dict({"kind": "VarRef", "name": "x"})


def test_invalid_json(tmp_path):
    path = tmp_path / "broken.json"
    path.write_text("{ not json")
    with pytest.raises(LoaderError, match="invalid JSON"):
        load_program(path)


def test_non_utf8_file(tmp_path):
    path = tmp_path / "latin1.json"
    path.write_bytes(b"\xff\xfe{")
    with pytest.raises(LoaderError, match="UTF-8"):
        load_program(path)

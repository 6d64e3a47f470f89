"""
JSON decoding of the AST.

A node is an object whose ``"kind"`` names the node class (``"IfStatement"``,
``"VarRef"``, ...) and whose other keys are that class's fields. Locations
are ``{"file", "line", "column"}`` objects; directions are ``"in"``,
``"out"``, ``"inout"`` or ``""``. Struct-literal fields are written as
``[{"name": ..., "value": <expr>}, ...]``.

    {"kind": "Program", "declarations": [
        {"kind": "StructDeclaration", "name": "S", "fields": [
            {"kind": "StructField", "type": {"kind": "BoolTypeRef"}, "name": "b"}]}]}
"""

from __future__ import annotations

import dataclasses
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

from . import ast

logger = logging.getLogger(__name__)


class LoaderError(ValueError):
    """The input is not a well-formed AST document."""


_NODE_TYPES: Dict[str, type] = {
    cls.__name__: cls
    for cls in (
        ast.BoolTypeRef, ast.StringTypeRef, ast.NamedTypeRef,
        ast.BoolLiteral, ast.StringLiteral, ast.VarRef, ast.Paren, ast.FieldAccess,
        ast.StructLiteral, ast.Not, ast.And, ast.Or, ast.Equal, ast.NotEqual,
        ast.Argument, ast.Call,
        ast.BlockStatement, ast.IfStatement, ast.Assignment, ast.CallStatement,
        ast.StructField, ast.StructDeclaration, ast.TypedefDeclaration, ast.Parameter,
        ast.VariableDeclaration, ast.ConstantDeclaration, ast.Instantiation,
        ast.ActionDeclaration, ast.KeyElement, ast.ActionRef, ast.TableDeclaration,
        ast.ControlDeclaration, ast.Program,
    )
}


def decode_node(raw: Any, path: str = "$") -> Any:
    """Decode one JSON value into AST nodes, recursively."""
    if isinstance(raw, list):
        return [decode_node(item, f"{path}[{i}]") for i, item in enumerate(raw)]
    if not isinstance(raw, dict):
        return raw
    kind = raw.get("kind")
    if kind is None:
        raise LoaderError(f"{path}: object without a 'kind'")
    cls = _NODE_TYPES.get(kind)
    if cls is None:
        raise LoaderError(f"{path}: unknown node kind '{kind}'")

    kwargs: Dict[str, Any] = {}
    known = {f.name: f for f in dataclasses.fields(cls)}
    for key, value in raw.items():
        if key == "kind":
            continue
        if key not in known:
            raise LoaderError(f"{path}: {kind} has no field '{key}'")
        where = f"{path}.{key}"
        if key == "location":
            kwargs[key] = _decode_location(value, where)
        elif key == "direction":
            kwargs[key] = _decode_direction(value, where)
        elif cls is ast.StructLiteral and key == "fields":
            kwargs[key] = _decode_struct_fields(value, where)
        elif key in ("then_block", "else_block", "body"):
            kwargs[key] = _decode_block(value, where)
        else:
            kwargs[key] = decode_node(value, where)
    try:
        return cls(**kwargs)
    except TypeError as e:
        raise LoaderError(f"{path}: {kind}: {e}") from e


def _decode_block(raw: Any, path: str) -> Optional[ast.BlockStatement]:
    """then/else/body must be blocks; a bare list of statements is accepted too."""
    if raw is None:
        return None
    if isinstance(raw, list):
        return ast.BlockStatement(decode_node(raw, path))
    node = decode_node(raw, path)
    if not isinstance(node, ast.BlockStatement):
        raise LoaderError(f"{path}: expected a BlockStatement, got {type(node).__name__}")
    return node


def _decode_location(raw: Any, path: str) -> Optional[ast.SourceLocation]:
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise LoaderError(f"{path}: location must be an object")
    try:
        return ast.SourceLocation(
            file=str(raw.get("file", "<input>")),
            line=int(raw.get("line", 0)),
            column=int(raw.get("column", 0)),
        )
    except (TypeError, ValueError) as e:
        raise LoaderError(f"{path}: bad location: {e}") from e


def _decode_direction(raw: Any, path: str) -> ast.Direction:
    try:
        return ast.Direction(raw or "")
    except ValueError:
        raise LoaderError(f"{path}: unknown direction '{raw}'") from None


def _decode_struct_fields(raw: Any, path: str):
    if not isinstance(raw, list):
        raise LoaderError(f"{path}: struct literal fields must be a list")
    out = []
    for i, item in enumerate(raw):
        if isinstance(item, dict) and "name" in item and "value" in item:
            out.append((item["name"], decode_node(item["value"], f"{path}[{i}].value")))
        elif isinstance(item, list) and len(item) == 2:
            out.append((item[0], decode_node(item[1], f"{path}[{i}][1]")))
        else:
            raise LoaderError(f"{path}[{i}]: expected {{'name', 'value'}}")
    return out


def program_from_dict(raw: Any, source: str = "<input>") -> ast.Program:
    """Decode a whole program; a bare list of declarations is accepted."""
    if isinstance(raw, list):
        raw = {"kind": "Program", "declarations": raw}
    node = decode_node(raw)
    if not isinstance(node, ast.Program):
        raise LoaderError(f"$: expected a Program, got {type(node).__name__}")
    if node.source == "<input>":
        node.source = source
    return node


def load_program(path: Union[str, Path]) -> ast.Program:
    """Read a JSON AST file."""
    path = Path(path)
    with open(path, encoding="utf-8") as f:
        try:
            raw = json.load(f)
        except UnicodeDecodeError as e:
            raise LoaderError(f"{path}: not UTF-8 text: {e}") from e
        except json.JSONDecodeError as e:
            raise LoaderError(f"{path}: invalid JSON: {e}") from e
    program = program_from_dict(raw, source=str(path))
    logger.debug("loaded %s: %d declarations", path, len(program.declarations))
    return program


__all__ = ["LoaderError", "decode_node", "program_from_dict", "load_program"]

"""
ASSERT_FAIL / BUG: reachable error locations marked in the program text.

Unsafe region: an execution of a control that arrives at
  - a ``bug()`` call (unconditional error location), or
  - an ``assert(c)`` call with ``c`` false.

``assume(c)`` marks no error; it only discards the executions on which ``c``
is false. After ``assert(c)`` execution continues under ``assume(c)``, so a
failing assertion is reported once and does not taint later targets.

The three names are recognized only while they are not shadowed by a
program declaration of the same name.
"""

from typing import Any, Dict, Optional

from ..frontend import ast
from ..semantics.errors import TypeMismatch

BUG = "bug"
ASSERT = "assert"
ASSUME = "assume"

ASSERTION_CALLS = (BUG, ASSERT, ASSUME)


def assertion_kind(call: ast.Call, scope) -> Optional[str]:
    """
    Kind of an assertion-like call, or None for an ordinary call.

    ``scope`` is the environment at the call site; a user declaration named
    ``bug``/``assert``/``assume`` takes precedence over the built-in.
    """
    callee = call.callee
    if not isinstance(callee, ast.VarRef) or callee.name not in ASSERTION_CALLS:
        return None
    if scope.lookup(callee.name) is not None:
        return None
    return callee.name


def assertion_condition(call: ast.Call, kind: str) -> Optional[ast.Expression]:
    """The checked condition of ``assert``/``assume``; None for ``bug``."""
    if kind == BUG:
        if call.args:
            raise TypeMismatch("bug() takes no arguments", call.location)
        return None
    if len(call.args) != 1 or call.args[0].is_dont_care:
        raise TypeMismatch(f"{kind}() takes exactly one condition argument", call.location)
    arg = call.args[0]
    if arg.name is not None and arg.name != "condition":
        raise TypeMismatch(f"{kind}() has no parameter '{arg.name}'", arg.location or call.location)
    return arg.value


def describe_target(kind: str, condition: Optional[ast.Expression]) -> str:
    if kind == BUG:
        return "bug() reached"
    return f"assert({ast.describe(condition)}) fails"


def extract_counterexample(target, verdict) -> Dict[str, Any]:
    """
    Witness record for a reachable target.

    Returns a dictionary with:
    - bug_type: "BUG" or "ASSERT_FAIL"
    - description: what was reached
    - witness: source-level variable values and table guard choices
    """
    return {
        "bug_type": "BUG" if target.kind == BUG else "ASSERT_FAIL",
        "description": target.description,
        "witness": dict(verdict.witness),
    }


__all__ = [
    "BUG",
    "ASSERT",
    "ASSUME",
    "ASSERTION_CALLS",
    "assertion_kind",
    "assertion_condition",
    "describe_target",
    "extract_counterexample",
]

"""
Error taxonomy for elaboration and CFG construction.

    AnalysisError (base)
    ├── DuplicateName         - name already declared in the same scope
    ├── UnknownIdentifier     - name not found in any enclosing scope
    ├── UnknownField          - field access on a struct without that field
    ├── TypeMismatch          - operand/assignment types disagree
    └── UnsupportedConstruct  - recognized syntax with no modeled semantics,
                                recursion, or a cycle in the CFG

Solver-level "unknown" answers are verdicts, not errors; see
``p4reach.dse.constraint_solver``.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from ..frontend.ast import SourceLocation


class AnalysisError(Exception):
    """Base class for all elaboration errors."""

    kind = "AnalysisError"

    def __init__(
        self,
        message: str,
        location: Optional[SourceLocation] = None,
        control: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.location = location
        self.control = control

    def in_control(self, control: str) -> "AnalysisError":
        """Attach the enclosing control name (first one wins)."""
        if self.control is None:
            self.control = control
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "message": self.message,
            "control": self.control,
            "location": _location_dict(self.location),
        }

    def __str__(self) -> str:
        where = f"{self.location}: " if self.location else ""
        return f"{where}{self.kind}: {self.message}"


class DuplicateName(AnalysisError):
    kind = "DuplicateName"


class UnknownIdentifier(AnalysisError):
    kind = "UnknownIdentifier"


class UnknownField(AnalysisError):
    kind = "UnknownField"


class TypeMismatch(AnalysisError):
    kind = "TypeMismatch"


class UnsupportedConstruct(AnalysisError):
    kind = "UnsupportedConstruct"


def _location_dict(location: Optional[SourceLocation]) -> Optional[Dict[str, Any]]:
    if location is None:
        return None
    return {"file": location.file, "line": location.line, "column": location.column}


__all__ = [
    "AnalysisError",
    "DuplicateName",
    "UnknownIdentifier",
    "UnknownField",
    "TypeMismatch",
    "UnsupportedConstruct",
]

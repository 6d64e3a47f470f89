"""
Verification-condition generation and solving.

1. **Path conditions** (path_condition.py): forward symbolic execution of a
   CFG into one reachability formula per target
2. **Constraint solving** (constraint_solver.py): isolated Z3 query per
   target with timeout, resource limit and cancellation

Key property:
- SAT(formula ∧ side assertions) → target reachable, model is the witness
- UNSAT → target unreachable
- anything else → Unknown, never Unreachable
"""

from .constraint_solver import (
    CancellationToken,
    ConstraintSolver,
    Verdict,
    VerdictKind,
)
from .path_condition import PredicateGenerator, ReachabilityQuery, evaluate_block

__all__ = [
    "CancellationToken",
    "ConstraintSolver",
    "Verdict",
    "VerdictKind",
    "PredicateGenerator",
    "ReachabilityQuery",
    "evaluate_block",
]

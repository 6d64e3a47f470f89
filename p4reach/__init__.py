"""
p4reach: SMT-based reachability checking for P4-style packet-processing programs.

Every ``bug()`` and ``assert()`` in a control is a verification target. For
each target the analysis produces one of:
1. REACHABLE: a witness (input values and table choices) driving the control there
2. UNREACHABLE: a solver proof that no execution gets there
3. UNKNOWN: the solver gave no answer within its bounds, or the run was canceled

Pipeline: JSON AST -> environment -> CFG -> path formula -> Z3.
"""

__version__ = "0.1.0"

"""
Control-flow graphs of controls, and the call graph used to reject
recursion before actions and controls are inlined.
"""

from .call_graph import CallGraph, build_call_graph
from .control_flow import (
    BasicBlock,
    ControlFlowGraph,
    EdgeType,
    TableSite,
    VerificationTarget,
    build_cfg,
)

__all__ = [
    "CallGraph",
    "build_call_graph",
    "BasicBlock",
    "ControlFlowGraph",
    "EdgeType",
    "TableSite",
    "VerificationTarget",
    "build_cfg",
]

"""
Call graph over controls, actions and tables.

Action calls and control applications are inlined by the CFG builder, which
is only sound when the call structure is finite:

    G_call = (V, E),  V = controls ∪ actions ∪ tables
    (f, g) ∈ E  iff the body of f contains a call that may invoke g

A table contributes edges to every action it lists (including its default
action). Any strongly connected component with more than one member, or a
self-loop, is recursion and is rejected before inlining.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set

from ..frontend import ast
from ..frontend.ast import SourceLocation

logger = logging.getLogger(__name__)


@dataclass
class CallSite:
    """A call statement found in a control, action or table."""
    caller: str
    callee_name: str                 # qualified name of the resolved callee
    location: Optional[SourceLocation] = None


@dataclass
class CallableInfo:
    """A node of the call graph."""
    qualified_name: str
    kind: str                        # 'control', 'action', 'table'
    location: Optional[SourceLocation] = None
    call_sites: List[CallSite] = field(default_factory=list)


@dataclass
class CallGraph:
    functions: Dict[str, CallableInfo] = field(default_factory=dict)
    edges: Dict[str, Set[str]] = field(default_factory=dict)
    reverse_edges: Dict[str, Set[str]] = field(default_factory=dict)

    def add_function(self, func: CallableInfo) -> None:
        self.functions[func.qualified_name] = func
        self.edges.setdefault(func.qualified_name, set())
        self.reverse_edges.setdefault(func.qualified_name, set())

    def add_edge(self, caller: str, callee: str, location: Optional[SourceLocation] = None) -> None:
        self.edges.setdefault(caller, set()).add(callee)
        self.reverse_edges.setdefault(callee, set()).add(caller)
        if caller in self.functions:
            self.functions[caller].call_sites.append(CallSite(caller, callee, location))

    def get_callees(self, func: str) -> Set[str]:
        return self.edges.get(func, set())

    def get_callers(self, func: str) -> Set[str]:
        return self.reverse_edges.get(func, set())

    def compute_sccs(self) -> List[Set[str]]:
        """
        Strongly connected components (Tarjan), in reverse topological
        order (leaves first). Iteration order is sorted for determinism.
        """
        index_counter = [0]
        stack: List[str] = []
        lowlink: Dict[str, int] = {}
        index: Dict[str, int] = {}
        on_stack: Dict[str, bool] = {}
        sccs: List[Set[str]] = []

        def strongconnect(v: str) -> None:
            index[v] = index_counter[0]
            lowlink[v] = index_counter[0]
            index_counter[0] += 1
            stack.append(v)
            on_stack[v] = True

            for w in sorted(self.edges.get(v, set())):
                if w not in self.functions:
                    continue
                if w not in index:
                    strongconnect(w)
                    lowlink[v] = min(lowlink[v], lowlink[w])
                elif on_stack.get(w, False):
                    lowlink[v] = min(lowlink[v], index[w])

            if lowlink[v] == index[v]:
                scc = set()
                while True:
                    w = stack.pop()
                    on_stack[w] = False
                    scc.add(w)
                    if w == v:
                        break
                sccs.append(scc)

        for v in sorted(self.functions):
            if v not in index:
                strongconnect(v)

        return sccs

    def recursive_callables(self) -> Set[str]:
        """Every node that lies on a call cycle."""
        out: Set[str] = set()
        for scc in self.compute_sccs():
            if len(scc) > 1:
                out |= scc
            else:
                (v,) = tuple(scc)
                if v in self.edges.get(v, set()):
                    out.add(v)
        return out

    def is_recursive(self, func: str) -> bool:
        return func in self.recursive_callables()

    def cycle_through(self, func: str) -> List[str]:
        """One call cycle starting and ending at ``func`` (empty if none)."""
        # BFS back to func; parents give the path
        parents: Dict[str, Optional[str]] = {func: None}
        queue = [func]
        while queue:
            v = queue.pop(0)
            for w in sorted(self.edges.get(v, set())):
                if w == func:
                    path = [v]
                    while parents[path[-1]] is not None:
                        path.append(parents[path[-1]])
                    return list(reversed(path)) + [func]
                if w not in parents:
                    parents[w] = v
                    queue.append(w)
        return []

    def get_reachable_from(self, entry_points: Iterable[str]) -> Set[str]:
        reachable: Set[str] = set()
        worklist = list(entry_points)
        while worklist:
            func = worklist.pop()
            if func in reachable or func not in self.functions:
                continue
            reachable.add(func)
            worklist.extend(self.edges.get(func, set()))
        return reachable


# ============================================================================
# CONSTRUCTION
# ============================================================================

class CallGraphBuilder:
    """
    Collects nodes and edges from the declaration structure.

    Callee names are resolved syntactically against the declaring control's
    locals, which is the only scope where actions, tables and instances live.
    """

    def __init__(self, program: ast.Program):
        self.program = program
        self.graph = CallGraph()
        self.controls = {d.name: d for d in program.controls}

    def build(self) -> CallGraph:
        for control in self.program.controls:
            self.graph.add_function(CallableInfo(control.name, "control", control.location))
            for local in control.locals:
                if isinstance(local, ast.ActionDeclaration):
                    self.graph.add_function(
                        CallableInfo(f"{control.name}.{local.name}", "action", local.location)
                    )
                elif isinstance(local, ast.TableDeclaration):
                    self.graph.add_function(
                        CallableInfo(f"{control.name}.{local.name}", "table", local.location)
                    )

        for control in self.program.controls:
            names = self._local_names(control)
            for local in control.locals:
                if isinstance(local, ast.ActionDeclaration):
                    self._visit_block(f"{control.name}.{local.name}", local.body, names)
                elif isinstance(local, ast.TableDeclaration):
                    caller = f"{control.name}.{local.name}"
                    refs = list(local.actions)
                    if local.default_action is not None:
                        refs.append(local.default_action)
                    for ref in refs:
                        callee = names.get(ref.name)
                        if callee is not None:
                            self.graph.add_edge(caller, callee, ref.location)
            self._visit_block(control.name, control.body, names)

        logger.debug(
            "call graph: %d nodes, %d edges",
            len(self.graph.functions), sum(len(e) for e in self.graph.edges.values()),
        )
        return self.graph

    def _local_names(self, control: ast.ControlDeclaration) -> Dict[str, str]:
        """Map local callable/instance names to call-graph node names."""
        names: Dict[str, str] = {}
        for local in control.locals:
            if isinstance(local, (ast.ActionDeclaration, ast.TableDeclaration)):
                names[local.name] = f"{control.name}.{local.name}"
            elif isinstance(local, ast.Instantiation) and local.type_name in self.controls:
                names[local.name] = local.type_name
        return names

    def _visit_block(self, caller: str, block: ast.BlockStatement, names: Dict[str, str]) -> None:
        for stmt in block.statements:
            if isinstance(stmt, ast.BlockStatement):
                self._visit_block(caller, stmt, names)
            elif isinstance(stmt, ast.IfStatement):
                self._visit_block(caller, stmt.then_block, names)
                if stmt.else_block is not None:
                    self._visit_block(caller, stmt.else_block, names)
            elif isinstance(stmt, ast.CallStatement):
                callee = _callee_name(stmt.call.callee)
                if callee is not None and callee in names:
                    self.graph.add_edge(caller, names[callee], stmt.location)


def _callee_name(callee: ast.Expression) -> Optional[str]:
    """``a(...)`` -> 'a'; ``t.apply(...)`` -> 't'."""
    if isinstance(callee, ast.VarRef):
        return callee.name
    if isinstance(callee, ast.FieldAccess) and callee.field == "apply" and isinstance(callee.target, ast.VarRef):
        return callee.target.name
    return None


def build_call_graph(program: ast.Program) -> CallGraph:
    return CallGraphBuilder(program).build()


__all__ = [
    "CallSite",
    "CallableInfo",
    "CallGraph",
    "CallGraphBuilder",
    "build_call_graph",
]

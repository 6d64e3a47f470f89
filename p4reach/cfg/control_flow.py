"""
Control Flow Graph for P4-style controls, in guarded-command form.

Each control's apply body is lowered to basic blocks of primitive operations
joined by guarded edges:

- Operations: assignment ``x.f = e``, havoc ``x := *`` (fresh value),
  assume ``[c]``.
- Edges: fallthrough, conditional (guard ``c`` / ``!c``), table action
  selection (opaque per-site guard), table miss, and the edge into an
  error location (guard = enabling condition of the assertion).

Action calls and control applications are inlined with copy-in/copy-out
argument passing, so the resulting graph is intraprocedural and acyclic.
Every block is reachable from the entry once ``build_cfg`` returns.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Dict, Iterator, List, Optional, Set, Tuple, Union

from ..frontend import ast
from ..frontend.ast import Direction, SourceLocation
from ..semantics.environment import (
    ActionBinding,
    ConstantBinding,
    ControlBinding,
    Environment,
    InstanceBinding,
    TableBinding,
    Variable,
    binding_kind,
    check_assignable,
)
from ..semantics.errors import (
    AnalysisError,
    DuplicateName,
    TypeMismatch,
    UnknownIdentifier,
    UnsupportedConstruct,
)
from ..semantics.types import BOOL, STRING, StructType, Type, types_match
from ..unsafe import assert_fail
from .call_graph import CallGraph

logger = logging.getLogger(__name__)


class EdgeType(Enum):
    """Type of CFG edge."""
    FALLTHROUGH = auto()      # Sequential execution / join
    COND_TRUE = auto()        # if-branch taken, or assertion holds
    COND_FALSE = auto()       # else-branch taken
    TABLE_ACTION = auto()     # Table lookup selected an action
    TABLE_MISS = auto()       # Table lookup matched no entry
    ASSERT_FAIL = auto()      # Into an error location


# ============================================================================
# LOWERED EXPRESSIONS
# ============================================================================
#
# Identifiers are resolved to Variable objects and constants are inlined, so
# the predicate generator never consults an environment.

@dataclass(frozen=True, eq=False)
class Const:
    value: Union[bool, str]
    type: Type


@dataclass(frozen=True, eq=False)
class VarRead:
    var: Variable

    @property
    def type(self) -> Type:
        return self.var.type


@dataclass(frozen=True, eq=False)
class FieldRead:
    base: "IRExpr"
    field: str
    type: Type


@dataclass(frozen=True, eq=False)
class StructBuild:
    type: StructType
    fields: Tuple[Tuple[str, "IRExpr"], ...]


@dataclass(frozen=True, eq=False)
class NotOp:
    operand: "IRExpr"
    type: Type = BOOL


@dataclass(frozen=True, eq=False)
class AndOp:
    left: "IRExpr"
    right: "IRExpr"
    type: Type = BOOL


@dataclass(frozen=True, eq=False)
class OrOp:
    left: "IRExpr"
    right: "IRExpr"
    type: Type = BOOL


@dataclass(frozen=True, eq=False)
class EqOp:
    left: "IRExpr"
    right: "IRExpr"
    negated: bool = False
    type: Type = BOOL


@dataclass(frozen=True, eq=False)
class TableGuard:
    """Opaque "site ``site`` selected ``label``" boolean."""
    site: int
    label: str
    name: str
    type: Type = BOOL


IRExpr = Union[Const, VarRead, FieldRead, StructBuild, NotOp, AndOp, OrOp, EqOp, TableGuard]


def render_ir(expr: IRExpr) -> str:
    if isinstance(expr, Const):
        if expr.type == STRING:
            return f'"{expr.value}"'
        return "true" if expr.value else "false"
    if isinstance(expr, VarRead):
        return expr.var.display
    if isinstance(expr, FieldRead):
        return f"{render_ir(expr.base)}.{expr.field}"
    if isinstance(expr, StructBuild):
        return "{ " + ", ".join(f"{n} = {render_ir(v)}" for n, v in expr.fields) + " }"
    if isinstance(expr, NotOp):
        return f"!{render_ir(expr.operand)}"
    if isinstance(expr, AndOp):
        return f"({render_ir(expr.left)} && {render_ir(expr.right)})"
    if isinstance(expr, OrOp):
        return f"({render_ir(expr.left)} || {render_ir(expr.right)})"
    if isinstance(expr, EqOp):
        op = "!=" if expr.negated else "=="
        return f"({render_ir(expr.left)} {op} {render_ir(expr.right)})"
    if isinstance(expr, TableGuard):
        return expr.name
    return repr(expr)


# ============================================================================
# OPERATIONS, BLOCKS, GRAPH
# ============================================================================

@dataclass
class AssignOp:
    """``target.path = value``; an empty path assigns the whole variable."""
    target: Variable
    path: Tuple[str, ...]
    value: IRExpr
    location: Optional[SourceLocation] = None

    def __str__(self) -> str:
        lhs = ".".join((self.target.display,) + self.path)
        return f"{lhs} = {render_ir(self.value)}"


@dataclass
class HavocOp:
    """``target := *``. ``uid`` names the fresh value this operation produces."""
    target: Variable
    uid: int
    location: Optional[SourceLocation] = None

    def __str__(self) -> str:
        return f"havoc {self.target.display}"


@dataclass
class AssumeOp:
    condition: IRExpr
    location: Optional[SourceLocation] = None

    def __str__(self) -> str:
        return f"assume {render_ir(self.condition)}"


Op = Union[AssignOp, HavocOp, AssumeOp]


@dataclass(frozen=True)
class VerificationTarget:
    """
    An error location.

    ``observed`` lists the source-level variables in scope at the call, in
    the order they are reported in a witness.
    """
    id: str
    control: str
    kind: str                          # 'bug' or 'assert'
    block_id: int
    description: str
    location: Optional[SourceLocation] = None
    observed: Tuple[Tuple[str, Variable], ...] = ()


@dataclass
class TableSite:
    """One application of a table: a single multi-way choice point."""
    id: int
    table: str
    labels: List[str] = field(default_factory=list)
    location: Optional[SourceLocation] = None

    MISS = "$miss"

    def guard(self, label: str) -> TableGuard:
        return TableGuard(self.id, label, f"{self.table}#{self.id}.{label}")

    @property
    def guards(self) -> List[TableGuard]:
        return [self.guard(label) for label in self.labels]


@dataclass
class BasicBlock:
    """
    A basic block in the CFG.

    Operations run in order; control then moves along one successor edge
    whose guard holds. An error-location block has ``target`` set and no
    successors.
    """
    id: int
    ops: List[Op] = field(default_factory=list)

    # Successor edges: (target_block_id, edge_type, guard); guard None = true
    successors: List[Tuple[int, EdgeType, Optional[IRExpr]]] = field(default_factory=list)

    # Predecessor block IDs
    predecessors: List[int] = field(default_factory=list)

    target: Optional[VerificationTarget] = None
    label: str = ""

    @property
    def is_exit(self) -> bool:
        return not self.successors and self.target is None


@dataclass
class ControlFlowGraph:
    """
    Complete CFG for one control.

    ``inputs`` are the control's own parameters; ``dead_targets`` are error
    locations whose blocks were pruned as unreachable from the entry.
    """
    name: str
    blocks: Dict[int, BasicBlock]
    entry_block: int
    exit_blocks: List[int] = field(default_factory=list)
    targets: List[VerificationTarget] = field(default_factory=list)
    dead_targets: List[VerificationTarget] = field(default_factory=list)
    table_sites: Dict[int, TableSite] = field(default_factory=dict)
    inputs: List[Variable] = field(default_factory=list)
    back_edges: List[Tuple[int, int]] = field(default_factory=list)
    pruned: int = 0

    def edge_count(self) -> int:
        return sum(len(b.successors) for b in self.blocks.values())

    def reachable_from_entry(self) -> Set[int]:
        seen: Set[int] = set()
        stack = [self.entry_block]
        while stack:
            bid = stack.pop()
            if bid in seen:
                continue
            seen.add(bid)
            stack.extend(s for s, _, _ in self.blocks[bid].successors)
        return seen

    def blocks_reaching(self, block_id: int) -> Set[int]:
        """Blocks from which ``block_id`` is reachable (including itself)."""
        seen: Set[int] = set()
        stack = [block_id]
        while stack:
            bid = stack.pop()
            if bid in seen or bid not in self.blocks:
                continue
            seen.add(bid)
            stack.extend(self.blocks[bid].predecessors)
        return seen

    def find_back_edges(self) -> List[Tuple[int, int]]:
        """Edges closing a cycle, found by iterative DFS from the entry."""
        color: Dict[int, int] = {}       # 1 = on stack, 2 = done
        back: List[Tuple[int, int]] = []
        stack: List[Tuple[int, Iterator[int]]] = [
            (self.entry_block, iter([s for s, _, _ in self.blocks[self.entry_block].successors]))
        ]
        color[self.entry_block] = 1
        while stack:
            bid, succs = stack[-1]
            nxt = next(succs, None)
            if nxt is None:
                color[bid] = 2
                stack.pop()
                continue
            state = color.get(nxt)
            if state == 1:
                back.append((bid, nxt))
            elif state is None:
                color[nxt] = 1
                stack.append((nxt, iter([s for s, _, _ in self.blocks[nxt].successors])))
        return back

    def topological_order(self, block_ids: Set[int]) -> List[int]:
        """Blocks of ``block_ids`` reachable from the entry, predecessors first (acyclic graphs only)."""
        if self.entry_block not in block_ids:
            return []
        postorder: List[int] = []
        visited: Set[int] = {self.entry_block}
        stack: List[Tuple[int, Iterator[int]]] = [
            (self.entry_block, iter([s for s, _, _ in self.blocks[self.entry_block].successors]))
        ]
        while stack:
            bid, succs = stack[-1]
            nxt = next(succs, None)
            if nxt is None:
                postorder.append(bid)
                stack.pop()
                continue
            if nxt in block_ids and nxt not in visited:
                visited.add(nxt)
                stack.append((nxt, iter([s for s, _, _ in self.blocks[nxt].successors])))
        postorder.reverse()
        return postorder

    def sites_in(self, block_ids: Set[int]) -> List[TableSite]:
        """Table sites whose choice edges leave one of ``block_ids``."""
        ids: Set[int] = set()
        for bid in block_ids:
            for _, edge_type, guard in self.blocks[bid].successors:
                if isinstance(guard, TableGuard):
                    ids.add(guard.site)
        return [self.table_sites[i] for i in sorted(ids)]


# ============================================================================
# BUILDER
# ============================================================================

class CFGBuilder:
    """
    Lowers one control declaration to a ControlFlowGraph.

    Elaboration errors are collected per statement: the failing statement
    is skipped and construction continues, so one run reports every error
    in the control. A graph built with errors must not be analyzed.
    """

    def __init__(self, control: ControlBinding, call_graph: Optional[CallGraph] = None):
        self.binding = control
        self.control = control.decl
        self.name = control.decl.name
        self.global_env: Environment = control.scope
        self.call_graph = call_graph
        self._recursive: Set[str] = call_graph.recursive_callables() if call_graph is not None else set()

        self.blocks: Dict[int, BasicBlock] = {}
        self.targets: List[VerificationTarget] = []
        self.table_sites: Dict[int, TableSite] = {}
        self.inputs: List[Variable] = []
        self.errors: List[AnalysisError] = []

        self._next_block = 0
        self._next_var = 0
        self._next_havoc = 0
        self._constants: Dict[ConstantBinding, IRExpr] = {}
        self._inline_stack: List[str] = []
        self._inlined: Set[str] = set()
        self._action_bindings: List[ActionBinding] = []

        self.current = self._new_block("entry")
        self.entry = self.current

    # -- construction -------------------------------------------------------

    def build(self) -> ControlFlowGraph:
        """
        Build the CFG.

        Steps:
        1. Parameters become symbolic inputs
        2. Local declarations (variables, constants, actions, tables, instances)
        3. Apply body
        4. Type-check actions never called from the body (detached blocks)
        5. Prune unreachable blocks, detect back-edges
        """
        scope = self.global_env.child("control", self.name)
        self._recorded(self._bind_control_params, self.control.params, scope)
        for local in self.control.locals:
            self._recorded(self._declare_local, local, scope)
        self._block(self.control.body, scope)
        self._check_uncalled_actions()

        cfg = ControlFlowGraph(
            name=self.name,
            blocks=self.blocks,
            entry_block=self.entry.id,
            table_sites=self.table_sites,
            inputs=self.inputs,
        )
        _prune_unreachable(cfg, self.targets)
        cfg.back_edges = cfg.find_back_edges()
        if cfg.back_edges:
            self.errors.append(UnsupportedConstruct(
                f"control flow graph of '{self.name}' contains a cycle", self.control.location
            ))
        cfg.exit_blocks = [bid for bid, blk in sorted(cfg.blocks.items()) if blk.is_exit]

        self.errors = _dedupe_errors(e.in_control(self.name) for e in self.errors)
        logger.debug(
            "cfg %s: %d blocks, %d edges, %d targets, %d table sites, %d pruned, %d errors",
            self.name, len(cfg.blocks), cfg.edge_count(), len(cfg.targets),
            len(cfg.table_sites), cfg.pruned, len(self.errors),
        )
        return cfg

    def _recorded(self, fn, *args) -> None:
        try:
            fn(*args)
        except AnalysisError as e:
            self.errors.append(e)

    def _new_block(self, label: str = "") -> BasicBlock:
        block = BasicBlock(id=self._next_block, label=label)
        self.blocks[block.id] = block
        self._next_block += 1
        return block

    def _connect(self, src: BasicBlock, dst: BasicBlock, edge_type: EdgeType, guard: Optional[IRExpr] = None) -> None:
        src.successors.append((dst.id, edge_type, guard))
        dst.predecessors.append(src.id)

    def _new_var(self, name: str, ty: Type, kind: str = "local", direction: Direction = Direction.NONE,
                 read_only: bool = False, display: str = "") -> Variable:
        var = Variable(self._next_var, name, ty, kind, direction, read_only, display or name)
        self._next_var += 1
        return var

    def _havoc(self, var: Variable, location: Optional[SourceLocation]) -> None:
        self.current.ops.append(HavocOp(var, self._next_havoc, location))
        self._next_havoc += 1

    # -- declarations -------------------------------------------------------

    def _bind_control_params(self, params: List[ast.Parameter], scope: Environment) -> None:
        for param in params:
            try:
                ty = scope.resolve_type(param.type)
                var = self._new_var(
                    param.name, ty, kind="param", direction=param.direction,
                    read_only=param.direction in (Direction.IN, Direction.NONE),
                )
                scope.declare(param.name, var, param.location)
            except AnalysisError as e:
                self.errors.append(e)
                continue
            self.inputs.append(var)
            self._havoc(var, param.location)

    def _declare_local(self, decl, scope: Environment) -> None:
        if isinstance(decl, ast.VariableDeclaration):
            self._declare_variable(decl, scope)
        elif isinstance(decl, ast.ConstantDeclaration):
            self._declare_constant(decl, scope)
        elif isinstance(decl, ast.ActionDeclaration):
            binding = ActionBinding(decl, scope, scope.qualified(decl.name))
            scope.declare(decl.name, binding, decl.location)
            self._action_bindings.append(binding)
        elif isinstance(decl, ast.TableDeclaration):
            scope.declare(decl.name, TableBinding(decl, scope, scope.qualified(decl.name)), decl.location)
            self._check_table(decl, scope)
        elif isinstance(decl, ast.Instantiation):
            target = scope.resolve(decl.type_name, decl.location)
            if not isinstance(target, ControlBinding):
                raise UnsupportedConstruct(
                    f"instantiation of {binding_kind(target)} '{decl.type_name}' is not modeled",
                    decl.location,
                )
            if decl.args:
                raise UnsupportedConstruct(
                    f"constructor arguments for '{decl.type_name}' are not modeled", decl.location
                )
            scope.declare(decl.name, InstanceBinding(decl, target), decl.location)
        else:
            raise UnsupportedConstruct(
                f"local {type(decl).__name__} is not supported", getattr(decl, "location", None)
            )

    def _declare_variable(self, decl: ast.VariableDeclaration, scope: Environment) -> None:
        ty = scope.resolve_type(decl.type)
        value = None
        if decl.initializer is not None:
            # Initializer sees the enclosing binding of the name, not the new one
            check_assignable(scope, ty, decl.initializer, decl.location)
            value = self._lower(decl.initializer, scope, ty)
        var = self._new_var(decl.name, ty, display=self._display(decl.name))
        scope.declare(decl.name, var, decl.location)
        if value is not None:
            self.current.ops.append(AssignOp(var, (), value, decl.location))
        else:
            self._havoc(var, decl.location)

    def _declare_constant(self, decl: ast.ConstantDeclaration, scope: Environment) -> None:
        ty = scope.resolve_type(decl.type)
        check_assignable(scope, ty, decl.value, decl.location)
        value = self._lower(decl.value, scope, ty)
        binding = ConstantBinding(decl, ty)
        scope.declare(decl.name, binding, decl.location)
        self._constants[binding] = value

    def _check_table(self, decl: ast.TableDeclaration, scope: Environment) -> None:
        for key in decl.keys:
            scope.type_of(key.expr)
        seen: Set[str] = set()
        for ref in decl.actions:
            if ref.name in seen:
                raise DuplicateName(f"table {decl.name} lists action '{ref.name}' twice", ref.location)
            seen.add(ref.name)
            self._resolve_action(ref, scope)
        if decl.default_action is not None:
            self._resolve_action(decl.default_action, scope)

    def _resolve_action(self, ref: ast.ActionRef, scope: Environment) -> ActionBinding:
        binding = scope.resolve(ref.name, ref.location)
        if not isinstance(binding, ActionBinding):
            raise TypeMismatch(f"'{ref.name}' is a {binding_kind(binding)}, not an action", ref.location)
        return binding

    def _display(self, name: str) -> str:
        """Witness name: qualified by the inlined action/control, if any."""
        if self._inline_stack:
            return f"{self._inline_stack[-1]}.{name}"
        return name

    # -- statements ---------------------------------------------------------

    def _block(self, block: ast.BlockStatement, scope: Environment) -> None:
        inner = scope.child("block")
        for stmt in block.statements:
            self._recorded(self._statement, stmt, inner)

    def _statement(self, stmt, scope: Environment) -> None:
        if isinstance(stmt, ast.BlockStatement):
            self._block(stmt, scope)
        elif isinstance(stmt, ast.IfStatement):
            self._if(stmt, scope)
        elif isinstance(stmt, ast.Assignment):
            self._assign(stmt, scope)
        elif isinstance(stmt, ast.CallStatement):
            self._call(stmt.call, scope, stmt.location)
        elif isinstance(stmt, ast.VariableDeclaration):
            self._declare_variable(stmt, scope)
        elif isinstance(stmt, ast.ConstantDeclaration):
            self._declare_constant(stmt, scope)
        else:
            raise UnsupportedConstruct(
                f"statement {type(stmt).__name__} is not supported", getattr(stmt, "location", None)
            )

    def _if(self, stmt: ast.IfStatement, scope: Environment) -> None:
        ty = scope.type_of(stmt.condition)
        if ty != BOOL:
            raise TypeMismatch(f"if condition must be bool, got {ty}", stmt.location)
        cond = self._lower(stmt.condition, scope)
        branch = self.current

        then_entry = self._new_block("then")
        self._connect(branch, then_entry, EdgeType.COND_TRUE, cond)
        self.current = then_entry
        self._block(stmt.then_block, scope)
        then_exit = self.current

        join = self._new_block("join")
        if stmt.else_block is not None:
            else_entry = self._new_block("else")
            self._connect(branch, else_entry, EdgeType.COND_FALSE, NotOp(cond))
            self.current = else_entry
            self._block(stmt.else_block, scope)
            self._connect(self.current, join, EdgeType.FALLTHROUGH)
        else:
            self._connect(branch, join, EdgeType.COND_FALSE, NotOp(cond))
        self._connect(then_exit, join, EdgeType.FALLTHROUGH)
        self.current = join

    def _assign(self, stmt: ast.Assignment, scope: Environment) -> None:
        var, path, ty = self._lvalue(stmt.lvalue, scope)
        check_assignable(scope, ty, stmt.value, stmt.location)
        value = self._lower(stmt.value, scope, ty)
        self.current.ops.append(AssignOp(var, path, value, stmt.location))

    def _lvalue(self, expr: ast.Expression, scope: Environment) -> Tuple[Variable, Tuple[str, ...], Type]:
        path: List[str] = []
        node = expr
        while isinstance(node, (ast.Paren, ast.FieldAccess)):
            if isinstance(node, ast.FieldAccess):
                path.append(node.field)
                node = node.target
            else:
                node = node.expr
        location = getattr(expr, "location", None)
        if not isinstance(node, ast.VarRef):
            raise UnsupportedConstruct(f"'{ast.describe(expr)}' is not an assignable location", location)
        binding = scope.resolve(node.name, node.location)
        if isinstance(binding, ConstantBinding):
            raise UnsupportedConstruct(f"cannot assign to constant '{node.name}'", location)
        if not isinstance(binding, Variable):
            raise TypeMismatch(f"'{node.name}' is a {binding_kind(binding)}, not a variable", location)
        if binding.read_only:
            raise UnsupportedConstruct(
                f"cannot assign to read-only parameter '{node.name}'", location
            )
        ty = scope.type_of(expr)
        return binding, tuple(reversed(path)), ty

    # -- calls --------------------------------------------------------------

    def _call(self, call: ast.Call, scope: Environment, location: Optional[SourceLocation]) -> None:
        location = location or call.location
        kind = assert_fail.assertion_kind(call, scope)
        if kind is not None:
            self._assertion(kind, call, scope, location)
            return

        callee = call.callee
        if isinstance(callee, ast.VarRef):
            binding = scope.resolve(callee.name, callee.location or location)
            if isinstance(binding, ActionBinding):
                self._inline_action(binding, call.args, scope, location)
            elif isinstance(binding, TableBinding):
                self._apply_table(binding, call.args, location)
            else:
                raise TypeMismatch(f"'{callee.name}' is a {binding_kind(binding)} and cannot be called", location)
            return

        if isinstance(callee, ast.FieldAccess) and isinstance(callee.target, ast.VarRef):
            name = callee.target.name
            binding = scope.resolve(name, callee.target.location or location)
            if callee.field != "apply":
                raise UnsupportedConstruct(
                    f"method '{callee.field}' of {binding_kind(binding)} '{name}' is not modeled", location
                )
            if isinstance(binding, TableBinding):
                self._apply_table(binding, call.args, location)
            elif isinstance(binding, InstanceBinding) and binding.control is not None:
                self._inline_control(binding, call.args, scope, location)
            else:
                raise UnsupportedConstruct(
                    f"apply() on {binding_kind(binding)} '{name}' is not modeled", location
                )
            return

        raise UnsupportedConstruct(f"call of '{ast.describe(callee)}' is not modeled", location)

    def _assertion(self, kind: str, call: ast.Call, scope: Environment, location) -> None:
        condition = assert_fail.assertion_condition(call, kind)
        cond = None
        if condition is not None:
            ty = scope.type_of(condition)
            if ty != BOOL:
                raise TypeMismatch(f"{kind}() condition must be bool, got {ty}", location)
            cond = self._lower(condition, scope)

        if kind == assert_fail.ASSUME:
            self.current.ops.append(AssumeOp(cond, location))
            return

        block = self._new_block(kind)
        target = VerificationTarget(
            id=f"{self.name}#{len(self.targets)}",
            control=self.name,
            kind=kind,
            block_id=block.id,
            description=assert_fail.describe_target(kind, condition),
            location=location,
            observed=tuple(scope.visible_variables()),
        )
        block.target = target
        self.targets.append(target)

        if kind == assert_fail.BUG:
            # bug() ends the execution; what follows is dead code
            self._connect(self.current, block, EdgeType.ASSERT_FAIL)
            self.current = self._new_block("after-bug")
        else:
            self._connect(self.current, block, EdgeType.ASSERT_FAIL, NotOp(cond))
            cont = self._new_block("assert-ok")
            self._connect(self.current, cont, EdgeType.COND_TRUE, cond)
            self.current = cont

    @contextmanager
    def _inlining(self, qualified: str, location: Optional[SourceLocation]):
        if qualified in self._recursive:
            cycle = self.call_graph.cycle_through(qualified) if self.call_graph is not None else []
            shown = " -> ".join(cycle) if cycle else qualified
            raise UnsupportedConstruct(f"recursive call cycle {shown} cannot be inlined", location)
        if qualified in self._inline_stack:
            shown = " -> ".join(self._inline_stack + [qualified])
            raise UnsupportedConstruct(f"recursive call cycle {shown} cannot be inlined", location)
        logger.debug("%s: inlining %s", self.name, qualified)
        self._inline_stack.append(qualified)
        self._inlined.add(qualified)
        try:
            yield
        finally:
            self._inline_stack.pop()

    def _inline_action(self, binding: ActionBinding, args: List[ast.Argument], caller: Environment,
                       location, missing: str = "none") -> None:
        decl = binding.decl
        bound = _bind_arguments(decl.params, args, decl.name, location, missing)
        with self._inlining(binding.qualified_name, location):
            callee = binding.scope.child("action", decl.name)
            copy_out = self._bind_parameters(bound, binding.scope, callee, caller, location)
            self._block(decl.body, callee)
        self._copy_out(copy_out, location)

    def _inline_control(self, binding: InstanceBinding, args: List[ast.Argument], caller: Environment,
                        location) -> None:
        control = binding.control.decl
        for param in control.params:
            if param.direction == Direction.NONE:
                raise UnsupportedConstruct(
                    f"directionless parameter '{param.name}' of applied control '{control.name}' is not modeled",
                    param.location or location,
                )
        bound = _bind_arguments(control.params, args, control.name, location, "none")
        with self._inlining(control.name, location):
            callee = binding.control.scope.child("control", control.name)
            copy_out = self._bind_parameters(bound, binding.control.scope, callee, caller, location)
            for local in control.locals:
                self._recorded(self._declare_local, local, callee)
            self._block(control.body, callee)
        self._copy_out(copy_out, location)

    def _bind_parameters(self, bound, decl_scope: Environment, callee: Environment, caller: Environment,
                         location) -> List[Tuple[Variable, Tuple[str, ...], Variable]]:
        """
        Copy-in: evaluate every argument in the caller's scope, then declare
        the formals in the callee scope. Returns the copy-out list.
        """
        copy_out = []
        formals = []
        for param, arg in bound:
            ty = decl_scope.resolve_type(param.type)
            var = self._new_var(
                param.name, ty, kind="param", direction=param.direction,
                read_only=param.direction in (Direction.IN, Direction.NONE),
                display=self._display(param.name),
            )
            arg_location = (arg.location if arg is not None else None) or location
            if arg is None or arg.is_dont_care:
                formals.append((param, var, None))
            elif param.direction in (Direction.IN, Direction.NONE):
                check_assignable(caller, ty, arg.value, arg_location)
                formals.append((param, var, AssignOp(var, (), self._lower(arg.value, caller, ty), arg_location)))
            else:
                target, path, target_ty = self._lvalue(arg.value, caller)
                if not types_match(ty, target_ty):
                    raise TypeMismatch(
                        f"argument for {param.direction.value} parameter '{param.name}' has type "
                        f"{target_ty}, expected {ty}",
                        arg_location,
                    )
                copy_in = None
                if param.direction == Direction.INOUT:
                    copy_in = AssignOp(var, (), self._lower(arg.value, caller, ty), arg_location)
                formals.append((param, var, copy_in))
                copy_out.append((target, path, var))

        for param, var, copy_in in formals:
            if copy_in is None:
                self._havoc(var, param.location or location)
            else:
                self.current.ops.append(copy_in)
            callee.declare(param.name, var, param.location)
        return copy_out

    def _copy_out(self, copy_out, location) -> None:
        for target, path, var in copy_out:
            self.current.ops.append(AssignOp(target, path, VarRead(var), location))

    def _apply_table(self, binding: TableBinding, args: List[ast.Argument], location) -> None:
        if args:
            raise TypeMismatch(f"table '{binding.decl.name}' takes no arguments", location)
        decl = binding.decl
        # Checked at declaration; resolution here cannot fail
        actions = [(ref, self._resolve_action(ref, binding.scope)) for ref in decl.actions]

        site = TableSite(len(self.table_sites), binding.qualified_name, location=location)
        self.table_sites[site.id] = site
        choice = self.current
        join = self._new_block(f"{decl.name}-join")

        for ref, action in actions:
            site.labels.append(ref.name)
            entry = self._new_block(f"{decl.name}.{ref.name}")
            self._connect(choice, entry, EdgeType.TABLE_ACTION, site.guard(ref.name))
            self.current = entry
            self._recorded(self._inline_action, action, ref.args, binding.scope, ref.location or location, "data")
            self._connect(self.current, join, EdgeType.FALLTHROUGH)

        site.labels.append(TableSite.MISS)
        miss = self._new_block(f"{decl.name}.{TableSite.MISS}")
        self._connect(choice, miss, EdgeType.TABLE_MISS, site.guard(TableSite.MISS))
        self.current = miss
        if decl.default_action is not None:
            ref = decl.default_action
            action = self._resolve_action(ref, binding.scope)
            self._recorded(self._inline_action, action, ref.args, binding.scope, ref.location or location, "data")
        self._connect(self.current, join, EdgeType.FALLTHROUGH)
        self.current = join

    def _check_uncalled_actions(self) -> None:
        """Elaborate action bodies never inlined, in blocks detached from the entry."""
        for binding in self._action_bindings:
            if binding.qualified_name in self._inlined:
                continue
            self.current = self._new_block(f"detached {binding.qualified_name}")
            self._recorded(self._inline_action, binding, [], binding.scope, binding.decl.location, "all")

    # -- expressions --------------------------------------------------------

    def _lower(self, expr: ast.Expression, scope: Environment, expected: Optional[Type] = None) -> IRExpr:
        """Lower a type-correct expression; callers type-check first."""
        if isinstance(expr, ast.BoolLiteral):
            return Const(expr.value, BOOL)
        if isinstance(expr, ast.StringLiteral):
            return Const(expr.value, STRING)
        if isinstance(expr, ast.Paren):
            return self._lower(expr.expr, scope, expected)
        if isinstance(expr, ast.VarRef):
            binding = scope.resolve(expr.name, expr.location)
            if isinstance(binding, Variable):
                return VarRead(binding)
            if isinstance(binding, ConstantBinding):
                return self._constant_value(binding, expr.location)
            raise TypeMismatch(f"'{expr.name}' is a {binding_kind(binding)}, not a value", expr.location)
        if isinstance(expr, ast.FieldAccess):
            return FieldRead(self._lower(expr.target, scope), expr.field, scope.type_of(expr))
        if isinstance(expr, ast.StructLiteral):
            ty = scope.type_of(expr, expected)
            return StructBuild(ty, tuple(
                (name, self._lower(value, scope, ty.fields[name])) for name, value in expr.fields
            ))
        if isinstance(expr, ast.Not):
            return NotOp(self._lower(expr.operand, scope))
        if isinstance(expr, ast.And):
            return AndOp(self._lower(expr.left, scope), self._lower(expr.right, scope))
        if isinstance(expr, ast.Or):
            return OrOp(self._lower(expr.left, scope), self._lower(expr.right, scope))
        if isinstance(expr, (ast.Equal, ast.NotEqual)):
            left, right = expr.left, expr.right
            if _is_struct_literal(left) and not _is_struct_literal(right):
                left, right = right, left
            left_type = scope.type_of(left)
            return EqOp(
                self._lower(left, scope, left_type),
                self._lower(right, scope, left_type),
                negated=isinstance(expr, ast.NotEqual),
            )
        # Calls and anything else are rejected by type_of
        scope.type_of(expr, expected)
        raise UnsupportedConstruct(f"cannot lower {type(expr).__name__}", getattr(expr, "location", None))

    def _constant_value(self, binding: ConstantBinding, location) -> IRExpr:
        value = self._constants.get(binding)
        if value is None:
            if binding.type is None:
                raise TypeMismatch(f"constant '{binding.decl.name}' has no valid type", location)
            value = self._lower(binding.decl.value, self.global_env, binding.type)
            self._constants[binding] = value
        return value


def _is_struct_literal(expr) -> bool:
    while isinstance(expr, ast.Paren):
        expr = expr.expr
    return isinstance(expr, ast.StructLiteral)


def _bind_arguments(params: List[ast.Parameter], args: List[ast.Argument], callee: str, location,
                    missing: str) -> List[Tuple[ast.Parameter, Optional[ast.Argument]]]:
    """
    Match arguments to parameters, positionally or by name.

    ``missing`` says which unbound parameters are allowed: 'none',
    'data' (directionless ones, supplied by the control plane) or 'all'.
    """
    positional = [a for a in args if a.name is None]
    named = [a for a in args if a.name is not None]
    if positional and named:
        raise UnsupportedConstruct(f"call of '{callee}' mixes positional and named arguments", location)
    if len(positional) > len(params):
        raise TypeMismatch(
            f"'{callee}' takes {len(params)} argument(s), {len(positional)} given", location
        )
    bound: Dict[str, ast.Argument] = {}
    for param, arg in zip(params, positional):
        bound[param.name] = arg
    names = {p.name for p in params}
    for arg in named:
        if arg.name not in names:
            raise UnknownIdentifier(f"'{callee}' has no parameter '{arg.name}'", arg.location or location)
        if arg.name in bound:
            raise DuplicateName(f"argument '{arg.name}' of '{callee}' given twice", arg.location or location)
        bound[arg.name] = arg
    for param in params:
        if param.name in bound or missing == "all":
            continue
        if missing == "data" and param.direction == Direction.NONE:
            continue
        raise TypeMismatch(f"missing argument for parameter '{param.name}' of '{callee}'", location)
    return [(p, bound.get(p.name)) for p in params]


def _prune_unreachable(cfg: ControlFlowGraph, targets: List[VerificationTarget]) -> None:
    live = cfg.reachable_from_entry()
    dead = [bid for bid in cfg.blocks if bid not in live]
    for bid in dead:
        del cfg.blocks[bid]
    for block in cfg.blocks.values():
        block.predecessors = [p for p in block.predecessors if p in live]
    cfg.targets = [t for t in targets if t.block_id in live]
    cfg.dead_targets = [t for t in targets if t.block_id not in live]
    cfg.pruned = len(dead)
    if dead:
        logger.debug("cfg %s: pruned %d unreachable blocks", cfg.name, len(dead))


def _dedupe_errors(errors) -> List[AnalysisError]:
    """One error per (kind, message, location); inlined bodies repeat them."""
    out: List[AnalysisError] = []
    seen = set()
    for err in errors:
        key = (err.kind, err.message, err.location)
        if key in seen:
            continue
        seen.add(key)
        out.append(err)
    return out


def build_cfg(control: ControlBinding, call_graph: Optional[CallGraph] = None) -> Tuple[ControlFlowGraph, List[AnalysisError]]:
    """
    Build the CFG of one control.

    Returns the graph together with every elaboration error found in the
    control; callers must not analyze a graph that came with errors.
    """
    builder = CFGBuilder(control, call_graph)
    cfg = builder.build()
    return cfg, builder.errors


__all__ = [
    "EdgeType",
    "Const",
    "VarRead",
    "FieldRead",
    "StructBuild",
    "NotOp",
    "AndOp",
    "OrOp",
    "EqOp",
    "TableGuard",
    "IRExpr",
    "render_ir",
    "AssignOp",
    "HavocOp",
    "AssumeOp",
    "Op",
    "VerificationTarget",
    "TableSite",
    "BasicBlock",
    "ControlFlowGraph",
    "CFGBuilder",
    "build_cfg",
]

"""
Reachability conditions for verification targets.

For a target block t the generator produces one formula that is
satisfiable iff some execution from the control's entry reaches t with t's
enabling condition true.

MATHEMATICAL FOUNDATION (guarded commands, forward substitution):

    sp(x := e, σ)     = σ[x ↦ σ(e)]
    sp(havoc x, σ)    = σ[x ↦ x@k]            (x@k fresh)
    sp([c], σ)        : contributes σ(c) as a conjunct

Blocks are visited once each, in topological order. A block b with store
σ_b and reachability condition R_b passes R_b ∧ σ_b'(g) to the successor
along each edge (b → s, g). A block with one live incoming edge inherits
that edge's condition and store. At a join with incoming edges
(c_1, σ_1) ... (c_n, σ_n) every edge gets a fresh selector e_i and
every variable whose values differ gets a fresh join value x_j:

    R_join = e_1 ∨ ... ∨ e_n
    e_i → c_i          e_i → (x_j = σ_i(x))

Projected onto the program symbols this is exactly the disjunction over
the paths into the join, but each block is translated once, so the
formula grows linearly with the graph instead of with the number of paths.

    F(t) = side definitions ∧ R_t ∧ ⋀_{v visible at t} ( obs_v = σ_t(v) )

Table choice points contribute one edge per action with the site's opaque
guard; the query's side assertions require exactly one guard per site to
hold.

ARCHITECTURE:

    ┌──────────────────────────────────────────────────────────────┐
    │                   PREDICATE GENERATOR                         │
    ├──────────────────────────────────────────────────────────────┤
    │                                                               │
    │  CFG ──► blocks_reaching(t) ──► topological order ──► F(t)    │
    │              │                        │                       │
    │              ▼                        ▼                       │
    │  ┌──────────────────┐     ┌───────────────────────┐           │
    │  │ Symbolic store   │     │ Formula tree (z3model │           │
    │  │ per block        │     │ .formula, immutable)  │           │
    │  └──────────────────┘     └───────────┬───────────┘           │
    │                                       ▼                       │
    │          ReachabilityQuery(formula, side assertions,          │
    │                            observations, table guards)        │
    └──────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple, Union

from ..cfg.control_flow import (
    AndOp,
    AssignOp,
    AssumeOp,
    Const,
    ControlFlowGraph,
    EqOp,
    FieldRead,
    HavocOp,
    IRExpr,
    NotOp,
    OrOp,
    StructBuild,
    TableGuard,
    VarRead,
    VerificationTarget,
)
from ..semantics.environment import Variable
from ..semantics.errors import UnsupportedConstruct
from ..semantics.types import STRING, StructType
from ..z3model.formula import (
    FALSE,
    TRUE,
    BoolConst,
    Sort,
    StrConst,
    Symbol,
    Term,
    free_symbols,
    mk_and,
    mk_eq,
    mk_exactly_one,
    mk_not,
    mk_or,
    size,
)

logger = logging.getLogger(__name__)


# ============================================================================
# SYMBOLIC VALUES
# ============================================================================

@dataclass(frozen=True)
class StructValue:
    """A struct value: one symbolic value per field, in declaration order."""
    fields: Tuple[Tuple[str, "Value"], ...]

    def get(self, name: str) -> "Value":
        for n, v in self.fields:
            if n == name:
                return v
        raise KeyError(name)

    def replace(self, name: str, value: "Value") -> "StructValue":
        return StructValue(tuple((n, value if n == name else v) for n, v in self.fields))

    def leaves(self, prefix: Tuple[str, ...] = ()) -> List[Tuple[Tuple[str, ...], Term]]:
        out: List[Tuple[Tuple[str, ...], Term]] = []
        for n, v in self.fields:
            if isinstance(v, StructValue):
                out.extend(v.leaves(prefix + (n,)))
            else:
                out.append((prefix + (n,), v))
        return out


Value = Union[Term, StructValue]

Store = Dict[Variable, Value]


def _sort_of(ty) -> Sort:
    return Sort.STRING if ty == STRING else Sort.BOOL


def fresh_value(ty, name: str) -> Value:
    """Unconstrained value of type ``ty``; struct leaves are named ``name.field...``."""
    if isinstance(ty, StructType):
        return StructValue(tuple((n, fresh_value(fty, f"{name}.{n}")) for n, fty in ty.fields.items()))
    return Symbol(name, _sort_of(ty))


def values_equal(a: Value, b: Value) -> Term:
    """Equality; on structs, the conjunction of per-field equalities."""
    if isinstance(a, StructValue) and isinstance(b, StructValue):
        return mk_and(*(values_equal(va, b.get(n)) for n, va in a.fields))
    return mk_eq(a, b)


def _update(value: Value, path: Tuple[str, ...], new: Value) -> Value:
    if not path:
        return new
    if not isinstance(value, StructValue):
        raise TypeError(f"field path {'.'.join(path)} into a scalar value")
    return value.replace(path[0], _update(value.get(path[0]), path[1:], new))


def evaluate(expr: IRExpr, store: Store) -> Value:
    """Evaluate a lowered expression in a symbolic store."""
    if isinstance(expr, Const):
        return StrConst(expr.value) if expr.type == STRING else BoolConst(bool(expr.value))
    if isinstance(expr, VarRead):
        value = store.get(expr.var)
        if value is None:
            raise UnsupportedConstruct(f"'{expr.var.display}' is read before it is defined")
        return value
    if isinstance(expr, FieldRead):
        base = evaluate(expr.base, store)
        return base.get(expr.field)
    if isinstance(expr, StructBuild):
        return StructValue(tuple((n, evaluate(v, store)) for n, v in expr.fields))
    if isinstance(expr, NotOp):
        return mk_not(evaluate(expr.operand, store))
    if isinstance(expr, AndOp):
        return mk_and(evaluate(expr.left, store), evaluate(expr.right, store))
    if isinstance(expr, OrOp):
        return mk_or(evaluate(expr.left, store), evaluate(expr.right, store))
    if isinstance(expr, EqOp):
        eq = values_equal(evaluate(expr.left, store), evaluate(expr.right, store))
        return mk_not(eq) if expr.negated else eq
    if isinstance(expr, TableGuard):
        return Symbol(expr.name)
    raise TypeError(f"cannot evaluate {expr!r}")


def execute(op, store: Store, conjuncts: List[Term]) -> None:
    """Apply one primitive operation to ``store`` in place."""
    if isinstance(op, AssignOp):
        value = evaluate(op.value, store)
        if op.path:
            store[op.target] = _update(store[op.target], op.path, value)
        else:
            store[op.target] = value
    elif isinstance(op, HavocOp):
        store[op.target] = fresh_value(op.target.type, f"{op.target.display}@{op.uid}")
    elif isinstance(op, AssumeOp):
        conjuncts.append(evaluate(op.condition, store))
    else:
        raise TypeError(f"unknown operation {op!r}")


# ============================================================================
# QUERIES
# ============================================================================

@dataclass
class ReachabilityQuery:
    """
    Everything the solver needs for one target.

    ``observations`` maps witness keys (``s.b``) to the symbols bound to
    their values at the target; ``guards`` maps table guard names to their
    symbols.
    """
    target: VerificationTarget
    formula: Term
    side_conditions: List[Term] = field(default_factory=list)
    observations: Dict[str, Symbol] = field(default_factory=dict)
    guards: Dict[str, Symbol] = field(default_factory=dict)

    def assertions(self) -> List[Term]:
        return [self.formula] + list(self.side_conditions)


class GenerationCanceled(Exception):
    """Formula generation stopped because the run was canceled."""


class PredicateGenerator:
    """
    Builds ReachabilityQuery objects for the targets of one CFG.

    ``cancellation`` is any object with a ``cancelled`` flag; it is polled
    once per block.
    """

    def __init__(self, cfg: ControlFlowGraph, exclusive_table_actions: bool = True,
                 cancellation=None):
        self.cfg = cfg
        self.exclusive_table_actions = exclusive_table_actions
        self.cancellation = cancellation

    def generate(self, target: VerificationTarget) -> ReachabilityQuery:
        if self.cfg.back_edges or self.cfg.find_back_edges():
            raise UnsupportedConstruct(
                f"control flow graph of '{self.cfg.name}' has a cycle; unrolling is not supported",
                target.location,
            )
        if target.block_id not in self.cfg.blocks:
            raise ValueError(f"target {target.id} is not in the graph of {self.cfg.name}")

        relevant = self.cfg.blocks_reaching(target.block_id)
        observations: Dict[str, Symbol] = {}
        formula = self._formula(relevant, target, observations)

        sites = self.cfg.sites_in(relevant)
        guards = {g.name: Symbol(g.name) for site in sites for g in site.guards}
        side: List[Term] = []
        if self.exclusive_table_actions:
            side = [mk_exactly_one(Symbol(g.name) for g in site.guards) for site in sites]

        query = ReachabilityQuery(target, formula, side, observations, guards)
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                "query %s: %d relevant blocks, %d formula nodes, %d symbols, %d table sites",
                target.id, len(relevant), size(formula), len(free_symbols(formula)), len(sites),
            )
        return query

    def _formula(self, relevant: Set[int], target: VerificationTarget,
                 observations: Dict[str, Symbol]) -> Term:
        definitions: List[Term] = []
        incoming: Dict[int, List[Tuple[Term, Store]]] = {self.cfg.entry_block: [(TRUE, {})]}

        for block_id in self.cfg.topological_order(relevant):
            if self.cancellation is not None and self.cancellation.cancelled:
                raise GenerationCanceled(target.id)
            edges = incoming.pop(block_id, [])
            if not edges:
                continue
            if len(edges) == 1:
                reach, store = edges[0][0], dict(edges[0][1])
            else:
                reach, store = _join(block_id, edges, definitions)

            block = self.cfg.blocks[block_id]
            assumed: List[Term] = []
            for op in block.ops:
                execute(op, store, assumed)
            reach = mk_and(reach, *assumed)

            if block_id == target.block_id:
                return mk_and(*definitions, reach, *_observe(target, store, observations))

            for succ, _, guard in block.successors:
                if succ not in relevant:
                    continue
                g = TRUE if guard is None else evaluate(guard, store)
                if g == FALSE:
                    continue
                incoming.setdefault(succ, []).append((mk_and(reach, g), store))
        return FALSE


def _join(block_id: int, edges: List[Tuple[Term, Store]], definitions: List[Term]) -> Tuple[Term, Store]:
    """Reachability condition and store of a block entered along several edges."""
    selectors = [Symbol(f"edge@{block_id}.{i}") for i in range(len(edges))]
    for sel, (condition, _) in zip(selectors, edges):
        definitions.append(mk_or(mk_not(sel), condition))

    stores = [s for _, s in edges]
    store: Store = {}
    for var in stores[0]:
        # Variables missing from some edge went out of scope before the join
        if not all(var in s for s in stores[1:]):
            continue
        values = [s[var] for s in stores]
        store[var] = _merge(values, f"{var.display}@join{block_id}", selectors, definitions)
    return mk_or(*selectors), store


def _merge(values: List[Value], name: str, selectors: List[Symbol], definitions: List[Term]) -> Value:
    first = values[0]
    if all(v is first or v == first for v in values[1:]):
        return first
    if isinstance(first, StructValue):
        return StructValue(tuple(
            (n, _merge([v.get(n) for v in values], f"{name}.{n}", selectors, definitions))
            for n, _ in first.fields
        ))
    joined = Symbol(name, _term_sort(first))
    for sel, value in zip(selectors, values):
        definitions.append(mk_or(mk_not(sel), mk_eq(joined, value)))
    return joined


def _observe(target: VerificationTarget, store: Store, observations: Dict[str, Symbol]) -> List[Term]:
    """Bind one observation symbol per visible variable leaf."""
    out: List[Term] = []
    for key, var in target.observed:
        value = store.get(var)
        if value is None:
            continue
        if isinstance(value, StructValue):
            leaves = [(key + "." + ".".join(path), term) for path, term in value.leaves()]
        else:
            leaves = [(key, value)]
        for leaf_key, term in leaves:
            sym = observations.get(leaf_key)
            if sym is None:
                sym = Symbol(f"{target.id}|{leaf_key}", _term_sort(term))
                observations[leaf_key] = sym
            out.append(mk_eq(sym, term))
    return out


def _term_sort(term: Term) -> Sort:
    if isinstance(term, (StrConst, Symbol)):
        return term.sort
    return Sort.BOOL


def evaluate_block(cfg: ControlFlowGraph) -> Tuple[Dict[Variable, Value], List[Term]]:
    """
    Directly execute a branch-free control from its entry.

    Follows the single unguarded successor of each block and returns the
    final store and the assumed conditions. Raises UnsupportedConstruct
    on any branching.
    """
    store: Store = {}
    assumed: List[Term] = []
    block_id: Optional[int] = cfg.entry_block
    while block_id is not None:
        block = cfg.blocks[block_id]
        for op in block.ops:
            execute(op, store, assumed)
        if len(block.successors) > 1 or any(g is not None for _, _, g in block.successors):
            raise UnsupportedConstruct(f"block {block_id} of '{cfg.name}' branches")
        block_id = block.successors[0][0] if block.successors else None
    return store, assumed


__all__ = [
    "StructValue",
    "Value",
    "fresh_value",
    "values_equal",
    "evaluate",
    "execute",
    "ReachabilityQuery",
    "GenerationCanceled",
    "PredicateGenerator",
    "evaluate_block",
]

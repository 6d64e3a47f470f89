"""
Immutable formula trees for verification conditions.

Terms are frozen dataclasses, so equal sub-formulas compare (and hash)
equal and can be shared freely between the disjuncts of a query. The
``mk_*`` constructors apply straightforward simplification only:
constant folding, flattening of nested conjunctions/disjunctions,
duplicate removal and double negation. Nothing else is rewritten.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Iterator, Set, Tuple, Union


class Sort(Enum):
    BOOL = "Bool"
    STRING = "String"


@dataclass(frozen=True)
class BoolConst:
    value: bool

    @property
    def sort(self) -> Sort:
        return Sort.BOOL


@dataclass(frozen=True)
class StrConst:
    value: str

    @property
    def sort(self) -> Sort:
        return Sort.STRING


@dataclass(frozen=True)
class Symbol:
    """A free variable: symbolic input, fresh value, table guard or witness observation."""
    name: str
    sort: Sort = Sort.BOOL


@dataclass(frozen=True)
class Not:
    arg: "Term"

    @property
    def sort(self) -> Sort:
        return Sort.BOOL


@dataclass(frozen=True)
class And:
    args: Tuple["Term", ...]

    @property
    def sort(self) -> Sort:
        return Sort.BOOL


@dataclass(frozen=True)
class Or:
    args: Tuple["Term", ...]

    @property
    def sort(self) -> Sort:
        return Sort.BOOL


@dataclass(frozen=True)
class Eq:
    lhs: "Term"
    rhs: "Term"

    @property
    def sort(self) -> Sort:
        return Sort.BOOL


@dataclass(frozen=True)
class ExactlyOne:
    """Exactly one of ``args`` holds (table action selection)."""
    args: Tuple["Term", ...]

    @property
    def sort(self) -> Sort:
        return Sort.BOOL


Term = Union[BoolConst, StrConst, Symbol, Not, And, Or, Eq, ExactlyOne]

TRUE = BoolConst(True)
FALSE = BoolConst(False)


# ============================================================================
# SMART CONSTRUCTORS
# ============================================================================

def mk_not(arg: Term) -> Term:
    if isinstance(arg, BoolConst):
        return FALSE if arg.value else TRUE
    if isinstance(arg, Not):
        return arg.arg
    return Not(arg)


def mk_and(*args: Term) -> Term:
    flat = []
    for a in _flatten(args, And):
        if a == FALSE:
            return FALSE
        if a == TRUE or a in flat:
            continue
        flat.append(a)
    if not flat:
        return TRUE
    if len(flat) == 1:
        return flat[0]
    return And(tuple(flat))


def mk_or(*args: Term) -> Term:
    flat = []
    for a in _flatten(args, Or):
        if a == TRUE:
            return TRUE
        if a == FALSE or a in flat:
            continue
        flat.append(a)
    if not flat:
        return FALSE
    if len(flat) == 1:
        return flat[0]
    return Or(tuple(flat))


def mk_eq(lhs: Term, rhs: Term) -> Term:
    if lhs == rhs:
        return TRUE
    if isinstance(lhs, (BoolConst, StrConst)) and isinstance(rhs, (BoolConst, StrConst)):
        return TRUE if lhs == rhs else FALSE
    if isinstance(lhs, BoolConst):
        lhs, rhs = rhs, lhs
    if isinstance(rhs, BoolConst):
        return lhs if rhs.value else mk_not(lhs)
    return Eq(lhs, rhs)


def mk_exactly_one(args: Iterable[Term]) -> Term:
    args = tuple(args)
    if not args:
        return FALSE
    if len(args) == 1:
        return args[0]
    return ExactlyOne(args)


def _flatten(args: Iterable[Term], kind) -> Iterator[Term]:
    for a in args:
        if isinstance(a, kind):
            yield from a.args
        else:
            yield a


# ============================================================================
# INSPECTION
# ============================================================================

def free_symbols(term: Term) -> Set[Symbol]:
    """All symbols occurring in ``term``."""
    out: Set[Symbol] = set()
    stack = [term]
    seen = set()
    while stack:
        t = stack.pop()
        if id(t) in seen:
            continue
        seen.add(id(t))
        if isinstance(t, Symbol):
            out.add(t)
        elif isinstance(t, Not):
            stack.append(t.arg)
        elif isinstance(t, (And, Or, ExactlyOne)):
            stack.extend(t.args)
        elif isinstance(t, Eq):
            stack.extend((t.lhs, t.rhs))
    return out


def size(term: Term) -> int:
    """Number of nodes in the tree (shared nodes counted once per occurrence)."""
    if isinstance(term, Not):
        return 1 + size(term.arg)
    if isinstance(term, (And, Or, ExactlyOne)):
        return 1 + sum(size(a) for a in term.args)
    if isinstance(term, Eq):
        return 1 + size(term.lhs) + size(term.rhs)
    return 1


def render(term: Term) -> str:
    """Infix rendering for logs and debugging."""
    if isinstance(term, BoolConst):
        return "true" if term.value else "false"
    if isinstance(term, StrConst):
        return f'"{term.value}"'
    if isinstance(term, Symbol):
        return term.name
    if isinstance(term, Not):
        return f"!{render(term.arg)}"
    if isinstance(term, And):
        return "(" + " && ".join(render(a) for a in term.args) + ")"
    if isinstance(term, Or):
        return "(" + " || ".join(render(a) for a in term.args) + ")"
    if isinstance(term, Eq):
        return f"({render(term.lhs)} == {render(term.rhs)})"
    if isinstance(term, ExactlyOne):
        return "exactly_one(" + ", ".join(render(a) for a in term.args) + ")"
    raise TypeError(f"not a formula: {term!r}")

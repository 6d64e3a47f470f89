"""
Translation of formula trees into Z3 expressions.

Each encoder is bound to one ``z3.Context``; queries that run in parallel
use separate encoders over separate contexts. Symbols are declared on first
use and kept in ``self.symbols`` so that model values can be read back.
"""

from __future__ import annotations

from typing import Dict, Optional, Tuple

import z3

from .formula import (
    And,
    BoolConst,
    Eq,
    ExactlyOne,
    Not,
    Or,
    Sort,
    StrConst,
    Symbol,
    Term,
)


class Z3Encoder:
    """Encode ``Term`` trees as Z3 expressions in a fixed context."""

    def __init__(self, ctx: Optional[z3.Context] = None):
        self.ctx = ctx if ctx is not None else z3.main_ctx()
        self.symbols: Dict[Symbol, z3.ExprRef] = {}
        # id(term) -> (term, expression); holding the term keeps its id unique
        self._cache: Dict[int, Tuple[Term, z3.ExprRef]] = {}

    def declare(self, sym: Symbol) -> z3.ExprRef:
        expr = self.symbols.get(sym)
        if expr is None:
            if sym.sort == Sort.BOOL:
                expr = z3.Bool(sym.name, self.ctx)
            elif sym.sort == Sort.STRING:
                expr = z3.String(sym.name, self.ctx)
            else:
                raise TypeError(f"unsupported sort {sym.sort} for {sym.name}")
            self.symbols[sym] = expr
        return expr

    def encode(self, term: Term) -> z3.ExprRef:
        key = id(term)
        cached = self._cache.get(key)
        if cached is not None:
            return cached[1]
        expr = self._encode(term)
        self._cache[key] = (term, expr)
        return expr

    def _encode(self, term: Term) -> z3.ExprRef:
        if isinstance(term, BoolConst):
            return z3.BoolVal(term.value, self.ctx)
        if isinstance(term, StrConst):
            return z3.StringVal(term.value, self.ctx)
        if isinstance(term, Symbol):
            return self.declare(term)
        if isinstance(term, Not):
            return z3.Not(self.encode(term.arg))
        if isinstance(term, And):
            return z3.And(*[self.encode(a) for a in term.args])
        if isinstance(term, Or):
            return z3.Or(*[self.encode(a) for a in term.args])
        if isinstance(term, Eq):
            return self.encode(term.lhs) == self.encode(term.rhs)
        if isinstance(term, ExactlyOne):
            return z3.PbEq([(self.encode(a), 1) for a in term.args], 1)
        raise TypeError(f"cannot encode {term!r}")

    def decode(self, model: z3.ModelRef, sym: Symbol):
        """Concrete Python value of ``sym`` in ``model`` (bool or str)."""
        expr = self.declare(sym)
        val = model.evaluate(expr, model_completion=True)
        if sym.sort == Sort.BOOL:
            return z3.is_true(val)
        if z3.is_string_value(val):
            return val.as_string()
        return str(val)

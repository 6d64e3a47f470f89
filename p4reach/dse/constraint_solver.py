"""
Solver interface: reachability queries to Z3.

This module provides:
1. Verdicts: Reachable(witness), Unreachable, Unknown(reason)
2. ConstraintSolver: one isolated ``z3.Context`` and ``z3.Solver`` per
   query, bounded by a timeout and an optional resource limit
3. CancellationToken: run-level cancellation that interrupts in-flight
   contexts and turns every later query into Unknown("canceled")

An Unknown answer is never reported as Unreachable.
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Set

import z3

from ..z3model.encoding import Z3Encoder
from .path_condition import ReachabilityQuery

logger = logging.getLogger(__name__)


class VerdictKind(Enum):
    REACHABLE = "reachable"
    UNREACHABLE = "unreachable"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class Verdict:
    """
    Result of one reachability query.

    ``witness`` is set for REACHABLE (source-level variable values and
    table guard choices); ``reason`` is set for UNKNOWN.
    """
    kind: VerdictKind
    witness: Dict[str, Any] = field(default_factory=dict)
    reason: str = ""

    @classmethod
    def reachable(cls, witness: Dict[str, Any]) -> "Verdict":
        return cls(VerdictKind.REACHABLE, witness=dict(witness))

    @classmethod
    def unreachable(cls) -> "Verdict":
        return cls(VerdictKind.UNREACHABLE)

    @classmethod
    def unknown(cls, reason: str) -> "Verdict":
        return cls(VerdictKind.UNKNOWN, reason=reason)

    @property
    def is_reachable(self) -> bool:
        return self.kind == VerdictKind.REACHABLE

    @property
    def is_unreachable(self) -> bool:
        return self.kind == VerdictKind.UNREACHABLE

    @property
    def is_unknown(self) -> bool:
        return self.kind == VerdictKind.UNKNOWN


class CancellationToken:
    """
    Run-level cancellation signal.

    Solvers register their context for the duration of ``check()``;
    ``cancel()`` interrupts every registered context. An interrupt only
    reaches a check that is already running, so contexts still registered
    after the first round are interrupted again every ``retry_s`` seconds
    until they are released.
    """

    def __init__(self, retry_s: float = 0.05):
        self.retry_s = retry_s
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._contexts: Set[z3.Context] = set()

    def cancel(self) -> None:
        with self._lock:
            already = self._event.is_set()
            self._event.set()
        count = self._interrupt_all()
        logger.info("cancellation requested; interrupted %d solver(s)", count)
        if not already:
            threading.Thread(target=self._keep_interrupting, name="p4reach-cancel", daemon=True).start()

    def _interrupt_all(self) -> int:
        with self._lock:
            contexts = list(self._contexts)
        for ctx in contexts:
            ctx.interrupt()
        return len(contexts)

    def _keep_interrupting(self) -> None:
        while True:
            time.sleep(self.retry_s)
            if not self._interrupt_all():
                return

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @contextmanager
    def track(self, ctx: z3.Context):
        with self._lock:
            self._contexts.add(ctx)
        try:
            yield
        finally:
            with self._lock:
                self._contexts.discard(ctx)


CANCELED = "canceled"
TIMEOUT = "timeout"


class ConstraintSolver:
    """
    Discharges ReachabilityQuery objects.

    Every query gets a fresh ``z3.Context``: no assertion, symbol or model
    is shared between queries, so calls may run concurrently from several
    threads. ``stats`` is updated under a lock.
    """

    def __init__(self, timeout_ms: int = 5000, rlimit: int = 0,
                 cancellation: Optional[CancellationToken] = None):
        self.timeout_ms = timeout_ms
        self.rlimit = rlimit
        self.cancellation = cancellation
        self._lock = threading.Lock()
        self.stats = {
            "queries": 0,
            "reachable": 0,
            "unreachable": 0,
            "unknown": 0,
            "total_time_ms": 0.0,
        }

    def check_reachable(self, query: ReachabilityQuery) -> Verdict:
        if self._cancelled():
            return self._record(Verdict.unknown(CANCELED), 0.0)

        start = time.perf_counter()
        ctx = z3.Context()
        try:
            encoder = Z3Encoder(ctx)
            solver = z3.Solver(ctx=ctx)
            solver.set("timeout", int(self.timeout_ms))
            if self.rlimit:
                solver.set("rlimit", int(self.rlimit))
            for assertion in query.assertions():
                solver.add(encoder.encode(assertion))

            result = self._check(solver, ctx)
            if result is None:
                verdict = Verdict.unknown(CANCELED)
            elif result == z3.sat:
                verdict = Verdict.reachable(self._witness(query, encoder, solver.model()))
            elif result == z3.unsat:
                verdict = Verdict.unreachable()
            else:
                verdict = Verdict.unknown(self._unknown_reason(solver))
        except z3.Z3Exception as e:
            reason = CANCELED if self._cancelled() else f"solver error: {e}"
            verdict = Verdict.unknown(reason)

        elapsed_ms = (time.perf_counter() - start) * 1000
        if verdict.is_unknown:
            logger.warning("target %s: unknown (%s)", query.target.id, verdict.reason)
        else:
            logger.info("target %s: %s in %.1f ms", query.target.id, verdict.kind.value, elapsed_ms)
        return self._record(verdict, elapsed_ms)

    def _check(self, solver: z3.Solver, ctx: z3.Context):
        """``solver.check()`` under cancellation; None if canceled before it started."""
        if self.cancellation is None:
            return solver.check()
        with self.cancellation.track(ctx):
            # A cancel() that raced with registration must not be lost
            if self.cancellation.cancelled:
                return None
            return solver.check()

    def _cancelled(self) -> bool:
        return self.cancellation is not None and self.cancellation.cancelled

    def _unknown_reason(self, solver: z3.Solver) -> str:
        if self._cancelled():
            return CANCELED
        reason = solver.reason_unknown()
        if reason in ("timeout", "canceled"):
            # z3 reports an expired timer as "canceled" on some versions
            return TIMEOUT
        return reason or "unknown"

    def _witness(self, query: ReachabilityQuery, encoder: Z3Encoder, model: z3.ModelRef) -> Dict[str, Any]:
        witness: Dict[str, Any] = {}
        for key in sorted(query.observations):
            witness[key] = encoder.decode(model, query.observations[key])
        for name in sorted(query.guards):
            witness[name] = encoder.decode(model, query.guards[name])
        return witness

    def _record(self, verdict: Verdict, elapsed_ms: float) -> Verdict:
        with self._lock:
            self.stats["queries"] += 1
            self.stats[verdict.kind.value] += 1
            self.stats["total_time_ms"] += elapsed_ms
        return verdict

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return dict(self.stats)


__all__ = [
    "VerdictKind",
    "Verdict",
    "CancellationToken",
    "ConstraintSolver",
    "CANCELED",
    "TIMEOUT",
]

"""
Reachability driver.

Runs the whole pipeline for one program:

    Program ──► build_global_environment ──► build_call_graph
           ──► build_cfg (per control, parallel)
           ──► PredicateGenerator.generate + ConstraintSolver.check_reachable
               (per target, parallel)
           ──► AnalysisReport

Elaboration errors stop the analysis of the control they occur in and of
nothing else. Targets are independent: an Unknown or Reachable verdict on
one target does not affect the others.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, TypeVar

from .cfg.call_graph import build_call_graph
from .cfg.control_flow import ControlFlowGraph, VerificationTarget, build_cfg
from .ci.config import AnalysisConfig
from .dse.constraint_solver import CANCELED, CancellationToken, ConstraintSolver, Verdict
from .dse.path_condition import GenerationCanceled, PredicateGenerator
from .frontend import ast
from .semantics.environment import ControlBinding, build_global_environment
from .semantics.errors import AnalysisError
from .unsafe.assert_fail import extract_counterexample

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


def _location_dict(location: Optional[ast.SourceLocation]) -> Optional[Dict[str, Any]]:
    if location is None:
        return None
    return {"file": location.file, "line": location.line, "column": location.column}


@dataclass
class TargetResult:
    target: VerificationTarget
    verdict: Verdict
    elapsed_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "id": self.target.id,
            "control": self.target.control,
            "kind": self.target.kind,
            "description": self.target.description,
            "location": _location_dict(self.target.location),
            "verdict": self.verdict.kind.value,
        }
        if self.verdict.is_reachable:
            out["witness"] = dict(self.verdict.witness)
            out["counterexample"] = extract_counterexample(self.target, self.verdict)
        if self.verdict.is_unknown:
            out["reason"] = self.verdict.reason
        return out


@dataclass
class ControlReport:
    """Per-control outcome: target verdicts, or the errors that prevented them."""
    name: str
    results: List[TargetResult] = field(default_factory=list)
    errors: List[AnalysisError] = field(default_factory=list)
    blocks: int = 0

    @property
    def analyzed(self) -> bool:
        return not self.errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "analyzed": self.analyzed,
            "blocks": self.blocks,
            "targets": [r.to_dict() for r in self.results],
            "errors": [e.to_dict() for e in self.errors],
        }


@dataclass
class AnalysisReport:
    source: str
    controls: List[ControlReport] = field(default_factory=list)
    errors: List[AnalysisError] = field(default_factory=list)     # not tied to a control
    cancelled: bool = False
    stats: Dict[str, Any] = field(default_factory=dict)

    @property
    def results(self) -> List[TargetResult]:
        return [r for c in self.controls for r in c.results]

    @property
    def all_errors(self) -> List[AnalysisError]:
        return list(self.errors) + [e for c in self.controls for e in c.errors]

    def control(self, name: str) -> Optional[ControlReport]:
        for c in self.controls:
            if c.name == name:
                return c
        return None

    def result(self, target_id: str) -> Optional[TargetResult]:
        for r in self.results:
            if r.target.id == target_id:
                return r
        return None

    @property
    def reachable(self) -> List[TargetResult]:
        return [r for r in self.results if r.verdict.is_reachable]

    @property
    def unknown(self) -> List[TargetResult]:
        return [r for r in self.results if r.verdict.is_unknown]

    def summary(self) -> Dict[str, int]:
        results = self.results
        return {
            "controls": len(self.controls),
            "targets": len(results),
            "reachable": sum(1 for r in results if r.verdict.is_reachable),
            "unreachable": sum(1 for r in results if r.verdict.is_unreachable),
            "unknown": sum(1 for r in results if r.verdict.is_unknown),
            "errors": len(self.all_errors),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "cancelled": self.cancelled,
            "summary": self.summary(),
            "controls": [c.to_dict() for c in self.controls],
            "errors": [e.to_dict() for e in self.all_errors],
            "stats": dict(self.stats),
        }


@dataclass
class _Job:
    report: ControlReport
    cfg: ControlFlowGraph
    target: VerificationTarget


class Analyzer:
    """
    Whole-program reachability analysis.

    The global environment is built once, frozen, and shared read-only by
    every task; each task creates only its own scopes, graphs and solver
    contexts.
    """

    def __init__(self, config: Optional[AnalysisConfig] = None):
        self.config = config or AnalysisConfig()

    def analyze(self, program: ast.Program, cancellation: Optional[CancellationToken] = None) -> AnalysisReport:
        start = time.perf_counter()
        cancellation = cancellation or CancellationToken()
        report = AnalysisReport(source=program.source)

        genv = build_global_environment(program)
        report.errors.extend(genv.errors)
        call_graph = build_call_graph(program)

        bindings: List[ControlBinding] = []
        for decl in program.controls:
            binding = genv.env.lookup_local(decl.name)
            if isinstance(binding, ControlBinding) and binding.decl is decl:
                bindings.append(binding)

        # Step 1: CFGs
        built = self._map(lambda b: build_cfg(b, call_graph), bindings)

        jobs: List[_Job] = []
        for binding, (cfg, errors) in zip(bindings, built):
            control = ControlReport(binding.decl.name, errors=list(errors), blocks=len(cfg.blocks))
            report.controls.append(control)
            if errors:
                for err in errors:
                    logger.warning("%s", err)
                logger.warning("control %s: %d error(s); not analyzed", control.name, len(errors))
                continue
            for target in cfg.dead_targets:
                control.results.append(TargetResult(target, Verdict.unreachable()))
            jobs.extend(_Job(control, cfg, t) for t in cfg.targets)

        # Step 2: one query per target
        solver = ConstraintSolver(
            timeout_ms=self.config.solver_timeout_ms,
            rlimit=self.config.solver_rlimit,
            cancellation=cancellation,
        )
        outcomes = self._map(lambda job: self._solve(job, solver, cancellation), jobs)
        for job, outcome in zip(jobs, outcomes):
            if isinstance(outcome, AnalysisError):
                job.report.errors.append(outcome.in_control(job.report.name))
            else:
                job.report.results.append(outcome)

        # Step 3: deterministic order
        report.controls.sort(key=lambda c: c.name)
        for control in report.controls:
            control.results.sort(key=lambda r: _target_order(r.target))

        report.cancelled = cancellation.cancelled
        report.stats = solver.get_stats()
        report.stats["elapsed_ms"] = (time.perf_counter() - start) * 1000
        logger.info("analysis of %s: %s", program.source, report.summary())
        return report

    def _solve(self, job: _Job, solver: ConstraintSolver, cancellation: CancellationToken):
        if cancellation.cancelled:
            return TargetResult(job.target, Verdict.unknown(CANCELED))
        start = time.perf_counter()
        generator = PredicateGenerator(job.cfg, self.config.exclusive_table_actions, cancellation)
        try:
            query = generator.generate(job.target)
        except GenerationCanceled:
            return TargetResult(job.target, Verdict.unknown(CANCELED))
        except AnalysisError as e:
            return e
        verdict = solver.check_reachable(query)
        return TargetResult(job.target, verdict, (time.perf_counter() - start) * 1000)

    def _map(self, fn: Callable[[T], R], items: Sequence[T]) -> List[R]:
        """``[fn(x) for x in items]``, on a thread pool when enabled; order preserved."""
        if not self.config.parallel or len(items) <= 1:
            return [fn(item) for item in items]
        out: List[Optional[R]] = [None] * len(items)
        with ThreadPoolExecutor(max_workers=self.config.max_workers) as executor:
            futures = {executor.submit(fn, item): i for i, item in enumerate(items)}
            for future in as_completed(futures):
                out[futures[future]] = future.result()
        return out


def _target_order(target: VerificationTarget):
    """Order by the numeric suffix of ``Control#n``."""
    _, _, n = target.id.rpartition("#")
    return (target.control, int(n) if n.isdigit() else 0, target.id)


def analyze_program(program: ast.Program, config: Optional[AnalysisConfig] = None,
                    cancellation: Optional[CancellationToken] = None) -> AnalysisReport:
    """Convenience wrapper: ``Analyzer(config).analyze(program, cancellation)``."""
    return Analyzer(config).analyze(program, cancellation)


__all__ = [
    "TargetResult",
    "ControlReport",
    "AnalysisReport",
    "Analyzer",
    "analyze_program",
]

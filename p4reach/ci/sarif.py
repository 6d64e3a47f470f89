"""
SARIF 2.1.0 serializer for p4reach reports.

Converts an ``AnalysisReport`` to the SARIF JSON format consumed by GitHub
Code Scanning, VS Code SARIF Viewer and other SARIF-compatible tools.
Reachable targets are errors, Unknown targets are warnings, and
elaboration errors are reported as notes under their own rules.
Unreachable targets produce no result.

Spec: https://docs.oasis-open.org/sarif/sarif/v2.1.0/sarif-v2.1.0.html
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from p4reach import __version__

# ── Rule metadata ────────────────────────────────────────────────────────────

_RULES: dict[str, dict[str, str]] = {
    "BUG": {
        "id": "P4R001",
        "name": "BugReachable",
        "shortDescription": "bug() location is reachable",
        "fullDescription": (
            "Some input packet and table configuration drive the control to "
            "a bug() call."
        ),
        "level": "error",
    },
    "ASSERT_FAIL": {
        "id": "P4R002",
        "name": "AssertionFailure",
        "shortDescription": "Assertion can fail",
        "fullDescription": (
            "Some input packet and table configuration reach an assert() "
            "call with its condition false."
        ),
        "level": "error",
    },
    "UNKNOWN": {
        "id": "P4R003",
        "name": "ReachabilityUnknown",
        "shortDescription": "Reachability could not be decided",
        "fullDescription": (
            "The solver returned unknown, hit its time or resource limit, or "
            "the run was canceled. The target is neither proven safe nor "
            "shown reachable."
        ),
        "level": "warning",
    },
    "ELABORATION": {
        "id": "P4R100",
        "name": "ElaborationError",
        "shortDescription": "Control could not be analyzed",
        "fullDescription": (
            "A naming, typing or unsupported-construct error prevented the "
            "enclosing control from being analyzed."
        ),
        "level": "error",
    },
}


def _rule_key(result) -> str:
    if result.verdict.is_unknown:
        return "UNKNOWN"
    return "BUG" if result.target.kind == "bug" else "ASSERT_FAIL"


def _physical_location(location, repo_root: Path) -> dict[str, Any] | None:
    if location is None:
        return None
    uri = location.file
    try:
        uri = str(Path(location.file).resolve().relative_to(repo_root))
    except ValueError:
        pass
    region: dict[str, int] = {}
    if location.line:
        region["startLine"] = location.line
    if location.column:
        region["startColumn"] = location.column
    physical: dict[str, Any] = {"artifactLocation": {"uri": uri}}
    if region:
        physical["region"] = region
    return {"physicalLocation": physical}


def results_to_sarif(report, repo_root: Path | str = ".") -> dict[str, Any]:
    """
    Convert an AnalysisReport to SARIF 2.1.0 JSON.

    Parameters
    ----------
    report : AnalysisReport
        Result of ``Analyzer.analyze``.
    repo_root : Path
        File paths in the SARIF output are made relative to this when
        possible.

    Returns
    -------
    dict
        A SARIF 2.1.0 JSON-serialisable dict.
    """
    repo_root = Path(repo_root).resolve()

    keys = sorted(_RULES)
    rule_index = {key: i for i, key in enumerate(keys)}
    rules = []
    for key in keys:
        meta = _RULES[key]
        rules.append({
            "id": meta["id"],
            "name": meta["name"],
            "shortDescription": {"text": meta["shortDescription"]},
            "fullDescription": {"text": meta["fullDescription"]},
            "defaultConfiguration": {"level": meta["level"]},
        })

    sarif_results = []
    for result in report.results:
        if result.verdict.is_unreachable:
            continue
        key = _rule_key(result)
        meta = _RULES[key]
        if result.verdict.is_reachable:
            text = f"{result.target.description} in control {result.target.control}"
            properties: dict[str, Any] = {"witness": dict(result.verdict.witness)}
        else:
            text = f"{result.target.description}: reachability unknown ({result.verdict.reason})"
            properties = {"reason": result.verdict.reason}
        entry: dict[str, Any] = {
            "ruleId": meta["id"],
            "ruleIndex": rule_index[key],
            "level": meta["level"],
            "message": {"text": text},
            "partialFingerprints": {"targetId": result.target.id},
            "properties": properties,
        }
        location = _physical_location(result.target.location, repo_root)
        if location is not None:
            entry["locations"] = [location]
        sarif_results.append(entry)

    for err in report.all_errors:
        meta = _RULES["ELABORATION"]
        entry = {
            "ruleId": meta["id"],
            "ruleIndex": rule_index["ELABORATION"],
            "level": meta["level"],
            "message": {"text": f"{err.kind}: {err.message}"},
            "properties": {"control": err.control, "errorKind": err.kind},
        }
        location = _physical_location(err.location, repo_root)
        if location is not None:
            entry["locations"] = [location]
        sarif_results.append(entry)

    summary = report.summary()
    return {
        "$schema": "https://json.schemastore.org/sarif-2.1.0.json",
        "version": "2.1.0",
        "runs": [
            {
                "tool": {
                    "driver": {
                        "name": "p4reach",
                        "semanticVersion": __version__,
                        "rules": rules,
                    }
                },
                "results": sarif_results,
                "invocations": [
                    {
                        "executionSuccessful": not report.cancelled,
                        "toolExecutionNotifications": [],
                    }
                ],
                "properties": {
                    "metrics": {
                        "controls": summary["controls"],
                        "targets": summary["targets"],
                        "reachable": summary["reachable"],
                        "unreachable": summary["unreachable"],
                        "unknown": summary["unknown"],
                        "errors": summary["errors"],
                    }
                },
            }
        ],
    }


def write_sarif(sarif: dict[str, Any], output_path: Path | str) -> None:
    """Write a SARIF dict to a JSON file."""
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w") as f:
        json.dump(sarif, f, indent=2)


def load_sarif(path: Path | str) -> dict[str, Any]:
    """Load a SARIF JSON file."""
    with open(path) as f:
        return json.load(f)

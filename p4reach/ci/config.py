"""
Configuration file loader for ``.p4reach.yml``.

Provides defaults so the tool works without a config file, while allowing
per-project tuning of solver bounds, parallelism and table semantics.
Keys may be written in kebab-case or snake_case.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

CONFIG_NAMES = (".p4reach.yml", ".p4reach.yaml")


class ConfigError(ValueError):
    """Malformed configuration file."""


@dataclass
class AnalysisConfig:
    solver_timeout_ms: int = 5000
    solver_rlimit: int = 0              # 0 = no resource limit
    max_workers: int = 4
    exclusive_table_actions: bool = True
    parallel: bool = True


@dataclass
class OutputConfig:
    json_file: Optional[str] = None
    sarif_file: Optional[str] = None


@dataclass
class P4ReachConfig:
    """Top-level configuration for p4reach."""
    analysis: AnalysisConfig = field(default_factory=AnalysisConfig)
    output: OutputConfig = field(default_factory=OutputConfig)

    @classmethod
    def load(cls, root: Path) -> "P4ReachConfig":
        """Load config from .p4reach.yml in ``root``, falling back to defaults."""
        for name in CONFIG_NAMES:
            config_path = Path(root) / name
            if config_path.exists():
                return cls.load_file(config_path)
        return cls()

    @classmethod
    def load_file(cls, config_path: Path) -> "P4ReachConfig":
        with open(config_path) as f:
            try:
                raw = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigError(f"{config_path}: {e}") from e
        if not isinstance(raw, dict):
            raise ConfigError(f"{config_path}: top level must be a mapping")
        return cls._from_dict(raw)

    @classmethod
    def _from_dict(cls, raw: dict[str, Any]) -> "P4ReachConfig":
        analysis_raw = raw.get("analysis", {}) or {}
        output_raw = raw.get("output", {}) or {}

        try:
            analysis = AnalysisConfig(
                solver_timeout_ms=int(_get(analysis_raw, "solver-timeout-ms", 5000)),
                solver_rlimit=int(_get(analysis_raw, "solver-rlimit", 0)),
                max_workers=int(_get(analysis_raw, "max-workers", 4)),
                exclusive_table_actions=bool(_get(analysis_raw, "exclusive-table-actions", True)),
                parallel=bool(_get(analysis_raw, "parallel", True)),
            )
        except (TypeError, ValueError) as e:
            raise ConfigError(f"invalid analysis setting: {e}") from e
        if analysis.solver_timeout_ms <= 0:
            raise ConfigError("solver-timeout-ms must be positive")
        if analysis.max_workers <= 0:
            raise ConfigError("max-workers must be positive")

        output = OutputConfig(
            json_file=_get(output_raw, "json-file", None),
            sarif_file=_get(output_raw, "sarif-file", None),
        )
        return cls(analysis=analysis, output=output)

    def to_yaml(self) -> str:
        """Serialise to YAML string."""
        data = {
            "analysis": {
                "solver-timeout-ms": self.analysis.solver_timeout_ms,
                "solver-rlimit": self.analysis.solver_rlimit,
                "max-workers": self.analysis.max_workers,
                "exclusive-table-actions": self.analysis.exclusive_table_actions,
                "parallel": self.analysis.parallel,
            },
        }
        output = {}
        if self.output.json_file:
            output["json-file"] = self.output.json_file
        if self.output.sarif_file:
            output["sarif-file"] = self.output.sarif_file
        if output:
            data["output"] = output
        return "# .p4reach.yml\n" + yaml.safe_dump(data, sort_keys=False)


def _get(raw: dict[str, Any], key: str, default: Any) -> Any:
    """Look up a kebab-case key, accepting its snake_case spelling too."""
    if key in raw:
        return raw[key]
    return raw.get(key.replace("-", "_"), default)

"""
Configuration and report output.

Provides:
- ``.p4reach.yml`` loading with defaults
- SARIF 2.1.0 output for code-scanning tools
"""

__all__ = ["config", "sarif"]

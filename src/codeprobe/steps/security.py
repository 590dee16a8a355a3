"""Security hygiene step."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Mapping

from ..models import AnalysisType
from .base import BaseStep

SENSITIVE_NAMES = frozenset({".env", "id_rsa", "id_dsa", "id_ecdsa", "id_ed25519", ".npmrc", ".pypirc"})
SENSITIVE_SUFFIXES = frozenset({".pem", ".key", ".p12", ".pfx"})
_ASSIGNMENT = re.compile(
    r"""(?i)\b(password|passwd|secret|api[_-]?key|token)\b\s*[:=]\s*["'][^"'\s]{6,}["']"""
)


class SecurityStep(BaseStep):
    name = "security"
    analysis_type = AnalysisType.SECURITY
    description = "Flag committed credentials files and hard-coded secret assignments"

    def analyze(self, project: Path, options: Mapping[str, Any]) -> dict[str, Any]:
        findings: list[dict[str, Any]] = []

        for source in self._scanner.iter_files(project):
            if source.path.name in SENSITIVE_NAMES or source.suffix in SENSITIVE_SUFFIXES:
                findings.append({"file": source.relative, "rule": "sensitive_file", "severity": "high"})
                continue
            text = self._scanner.read_small(source)
            if not text:
                continue
            for lineno, line in enumerate(text.splitlines(), start=1):
                match = _ASSIGNMENT.search(line)
                if match:
                    findings.append(
                        {
                            "file": source.relative,
                            "line": lineno,
                            "rule": "hardcoded_secret",
                            "identifier": match.group(1).lower(),
                            "severity": "medium",
                        }
                    )

        severities = {finding["severity"] for finding in findings}
        if "high" in severities:
            risk = "high"
        elif severities:
            risk = "medium"
        else:
            risk = "low"
        return {
            "risk_level": risk,
            "vulnerabilities": findings,
            "recommendations": _recommendations(findings),
        }


def _recommendations(findings: list[dict[str, Any]]) -> list[str]:
    rules = {finding["rule"] for finding in findings}
    advice: list[str] = []
    if "sensitive_file" in rules:
        advice.append("Remove credential files from the repository and rotate the affected keys.")
    if "hardcoded_secret" in rules:
        advice.append("Load secrets from the environment or a secret manager instead of source code.")
    return advice

"""Data models for audit metrics.

Contains dataclasses used to structure and serialize the JSON output:
    - FileCoverage / CoverageResult    (SimpleCov)
    - CoverageEstimate                 (estimation mode)
    - ModuleQuality / QualityResult    (RubyCritic)
    - Finding                          (pattern-hint scan)
    - Outcome                          (result of a metric workflow)
"""

from dataclasses import asdict, dataclass, field
from typing import Any


@dataclass
class FileCoverage:
    path: str
    lines_relevant: int
    lines_covered: int
    percent: float
    branches_total: int = 0
    branches_covered: int = 0

    @property
    def lines_missed(self) -> int:
        return self.lines_relevant - self.lines_covered


@dataclass
class CoverageResult:
    lines_relevant: int
    lines_covered: int
    percent: float
    rating: str
    files: list[FileCoverage] = field(default_factory=list)
    branches_total: int = 0
    branches_covered: int = 0
    branch_percent: float | None = None
    command_names: list[str] = field(default_factory=list)

    def lowest_files(self, limit: int = 10) -> list[FileCoverage]:
        """Return the *limit* least-covered files that have relevant lines."""
        return [f for f in self.files if f.lines_relevant > 0][:limit]

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class CoverageEstimate:
    estimated_percent: float
    tested_files: list[str] = field(default_factory=list)
    untested_files: list[str] = field(default_factory=list)
    estimated: bool = True

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class Smell:
    type: str
    message: str
    context: str = ""
    path: str | None = None
    line: int | None = None


@dataclass
class ModuleQuality:
    name: str
    path: str
    rating: str
    cost: float = 0.0
    complexity: float = 0.0
    duplication: float = 0.0
    churn: int = 0
    methods_count: int = 0
    smells: list[Smell] = field(default_factory=list)


@dataclass
class QualityResult:
    score: float
    grade: str
    ratings: dict[str, int]
    smells_by_type: dict[str, int]
    modules: list[ModuleQuality] = field(default_factory=list)

    @property
    def total_smells(self) -> int:
        return sum(self.smells_by_type.values())

    def worst_modules(self, limit: int = 10) -> list[ModuleQuality]:
        return self.modules[:limit]

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["total_smells"] = self.total_smells
        return data


@dataclass
class Finding:
    rule: str
    category: str
    severity: str
    path: str
    line: int
    message: str
    snippet: str = ""
    reference: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class Outcome:
    """Result of running one metric workflow against a project.

    ``ok`` is True when ``result`` holds parsed data. Otherwise ``reason``
    explains what went wrong and, for coverage, ``estimate`` may hold the
    estimation-mode fallback.
    """

    kind: str
    ok: bool
    result: CoverageResult | QualityResult | None = None
    reason: str | None = None
    estimate: CoverageEstimate | None = None

    @classmethod
    def failed(cls, kind: str, reason: str, estimate: CoverageEstimate | None = None) -> "Outcome":
        return cls(kind=kind, ok=False, reason=reason, estimate=estimate)

    def to_dict(self) -> dict[str, Any]:
        return {
            "report_type": self.kind,
            "ok": self.ok,
            "result": self.result.to_dict() if self.result is not None else None,
            "reason": self.reason,
            "estimate": self.estimate.to_dict() if self.estimate is not None else None,
        }

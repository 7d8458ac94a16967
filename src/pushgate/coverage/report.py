"""Normalized per-file line coverage and its lcov tracefile encoding."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType


class CoverageFormatError(ValueError):
    """Raised when an lcov tracefile cannot be parsed."""


@dataclass(frozen=True, slots=True)
class FileCoverage:
    """Line coverage for one source file.

    ``lines_covered`` is always a subset of ``lines_instrumented``.
    """

    lines_covered: frozenset[int]
    lines_instrumented: frozenset[int]

    def __post_init__(self) -> None:
        covered = frozenset(self.lines_covered)
        instrumented = frozenset(self.lines_instrumented)
        if any(line < 1 for line in instrumented):
            raise ValueError("line numbers must be >= 1")
        if not covered <= instrumented:
            extra = sorted(covered - instrumented)[:5]
            raise ValueError(f"covered lines are not instrumented: {extra}")
        object.__setattr__(self, "lines_covered", covered)
        object.__setattr__(self, "lines_instrumented", instrumented)

    @property
    def lines_total(self) -> int:
        return len(self.lines_instrumented)

    @property
    def lines_hit(self) -> int:
        return len(self.lines_covered)

    def merge(self, other: FileCoverage) -> FileCoverage:
        return FileCoverage(
            lines_covered=self.lines_covered | other.lines_covered,
            lines_instrumented=self.lines_instrumented | other.lines_instrumented,
        )


@dataclass(frozen=True, slots=True)
class CoverageReport:
    """Mapping of source path to ``FileCoverage``, ordered by path."""

    per_file: Mapping[str, FileCoverage] = field(default_factory=dict)

    def __post_init__(self) -> None:
        ordered = {path: self.per_file[path] for path in sorted(self.per_file)}
        for path in ordered:
            if not path:
                raise ValueError("coverage paths must be non-empty")
        object.__setattr__(self, "per_file", MappingProxyType(ordered))

    @property
    def is_empty(self) -> bool:
        return not self.per_file

    @property
    def lines_total(self) -> int:
        return sum(item.lines_total for item in self.per_file.values())

    @property
    def lines_hit(self) -> int:
        return sum(item.lines_hit for item in self.per_file.values())

    @property
    def percent(self) -> float:
        total = self.lines_total
        if total == 0:
            return 0.0
        return round(100.0 * self.lines_hit / total, 2)

    def merge(self, other: CoverageReport) -> CoverageReport:
        merged = dict(self.per_file)
        for path, coverage in other.per_file.items():
            existing = merged.get(path)
            merged[path] = coverage if existing is None else existing.merge(coverage)
        return CoverageReport(per_file=merged)

    def summary(self) -> str:
        return (
            f"{len(self.per_file)} files, {self.lines_hit}/{self.lines_total} lines "
            f"({self.percent:.2f}%)"
        )

    def to_lcov(self) -> str:
        blocks: list[str] = []
        for path, coverage in self.per_file.items():
            lines = [f"SF:{path}"]
            for line in sorted(coverage.lines_instrumented):
                hits = 1 if line in coverage.lines_covered else 0
                lines.append(f"DA:{line},{hits}")
            lines.append(f"LF:{coverage.lines_total}")
            lines.append(f"LH:{coverage.lines_hit}")
            lines.append("end_of_record")
            blocks.append("\n".join(lines))
        return "\n".join(blocks) + ("\n" if blocks else "")

    @classmethod
    def from_lcov(cls, text: str) -> CoverageReport:
        return cls(per_file=_parse_lcov(text.splitlines()))

    @classmethod
    def load(cls, path: str | Path) -> CoverageReport:
        return cls.from_lcov(Path(path).read_text(encoding="utf-8", errors="replace"))


def _parse_lcov(lines: Iterable[str]) -> dict[str, FileCoverage]:
    per_file: dict[str, FileCoverage] = {}
    current: str | None = None
    covered: set[int] = set()
    instrumented: set[int] = set()

    for number, raw in enumerate(lines, start=1):
        line = raw.strip()
        if not line:
            continue
        if line.startswith("SF:"):
            if current is not None:
                raise CoverageFormatError(f"line {number}: SF before end_of_record")
            current = line[3:].strip()
            if not current:
                raise CoverageFormatError(f"line {number}: empty source path")
            covered, instrumented = set(), set()
            continue
        if line == "end_of_record":
            if current is None:
                raise CoverageFormatError(f"line {number}: end_of_record without SF")
            record = FileCoverage(frozenset(covered), frozenset(instrumented))
            existing = per_file.get(current)
            per_file[current] = record if existing is None else existing.merge(record)
            current = None
            continue
        if line.startswith("DA:"):
            if current is None:
                raise CoverageFormatError(f"line {number}: DA outside of a record")
            line_no, hits = _parse_da(line[3:], number)
            instrumented.add(line_no)
            if hits > 0:
                covered.add(line_no)
        # TN/FN/FNDA/FNF/FNH/BRDA/BRF/BRH/LF/LH carry nothing the report keeps.

    if current is not None:
        raise CoverageFormatError(f"record for {current!r} is missing end_of_record")
    return per_file


def _parse_da(payload: str, number: int) -> tuple[int, int]:
    parts = payload.split(",")
    if len(parts) < 2:
        raise CoverageFormatError(f"line {number}: malformed DA record")
    try:
        line_no = int(parts[0])
        # Some producers emit float hit counts ("DA:3,1.0").
        hits = int(float(parts[1]))
    except ValueError as exc:
        raise CoverageFormatError(f"line {number}: malformed DA record") from exc
    if line_no < 1:
        raise CoverageFormatError(f"line {number}: line numbers start at 1")
    return line_no, hits


__all__ = ["CoverageFormatError", "CoverageReport", "FileCoverage"]

"""Raw coverage collection and the normalized report model."""

from pushgate.coverage.collector import (
    CollectionFailure,
    CoverageCollector,
    CoverageSettings,
)
from pushgate.coverage.report import CoverageFormatError, CoverageReport, FileCoverage

__all__ = [
    "CollectionFailure",
    "CoverageCollector",
    "CoverageFormatError",
    "CoverageReport",
    "CoverageSettings",
    "FileCoverage",
]

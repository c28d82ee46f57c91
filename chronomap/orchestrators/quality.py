"""Data-quality sweep over stored features."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from chronomap.models.query import QueryFilters
from chronomap.processing.validator import GeometryValidator

if TYPE_CHECKING:
    from chronomap.query.store import FeatureStore

logger = logging.getLogger("chronomap.orchestrators.quality")


@dataclass(frozen=True, slots=True)
class QualityReport:
    """Validity summary for a set of stored features.

    Attributes:
        total: Features checked.
        valid: Features that passed validation.
        invalid: Features with at least one error.
        issues: One ``{"feature_id", "name", "errors"}`` entry per invalid feature.
        warnings: Count of warnings across all features.
    """

    total: int = 0
    valid: int = 0
    invalid: int = 0
    issues: list[dict[str, object]] = field(default_factory=list)
    warnings: int = 0

    @property
    def validity_rate(self) -> float:
        return 1.0 if self.total == 0 else self.valid / self.total

    def to_dict(self) -> dict[str, object]:
        return {
            "total": self.total,
            "valid": self.valid,
            "invalid": self.invalid,
            "validity_rate": round(self.validity_rate, 4),
            "warnings": self.warnings,
            "issues": list(self.issues),
        }


class QualityChecker:
    """Re-validate stored features with a ``GeometryValidator``."""

    def __init__(self, store: FeatureStore, validator: GeometryValidator | None = None) -> None:
        self.store = store
        self.validator = validator or GeometryValidator()

    def check(self, layer_id: str | None = None) -> QualityReport:
        features = self.store.all(QueryFilters(layer_id=layer_id))
        valid = 0
        warnings = 0
        issues: list[dict[str, object]] = []
        for feature in features:
            result = self.validator.validate(feature)
            warnings += len(result.warnings)
            if result.valid:
                valid += 1
                continue
            issues.append(
                {"feature_id": feature.id, "name": feature.name, "errors": list(result.errors)}
            )

        report = QualityReport(
            total=len(features),
            valid=valid,
            invalid=len(features) - valid,
            issues=issues,
            warnings=warnings,
        )
        logger.info(
            "quality check completed | layer=%s | total=%d | invalid=%d | rate=%.4f",
            layer_id or "*",
            report.total,
            report.invalid,
            report.validity_rate,
        )
        return report

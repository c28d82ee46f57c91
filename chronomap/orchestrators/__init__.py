"""Scheduled-job orchestration.

- DataUpdater: Runs import jobs for every enabled source with
  per-source failure isolation and reports one outcome per source.
- QualityChecker: Re-validates stored features and reports the
  validity rate and per-feature issues.
"""

from chronomap.orchestrators.data_updater import DataUpdater, SourceOutcome, UpdateJob
from chronomap.orchestrators.quality import QualityChecker, QualityReport

__all__ = [
    "DataUpdater",
    "QualityChecker",
    "QualityReport",
    "SourceOutcome",
    "UpdateJob",
]

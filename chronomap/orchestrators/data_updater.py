"""Multi-source update runs.

``DataUpdater.run(jobs)`` executes one import per job, sequentially,
and never lets one source's failure stop the others.  Each job ends in
exactly one outcome:

- ``succeeded``: the import finished (individual records may still
  have failed; see the result's ``stats``).
- ``failed``: the import raised; the structured error is recorded.
- ``skipped``: another import of the same source was in flight
  (``ImportInProgressError`` from the shared ``SingleFlight`` guard).
- ``disabled``: the source is not in ``config.enabled_sources``.

The guard is an explicit object owned by the updater and handed to
every importer it builds; concurrent ``run`` calls on the same updater
therefore never import the same source twice at once.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal

from chronomap.core.config import PipelineConfig
from chronomap.core.exceptions import PipelineError
from chronomap.importers.base import ImportInProgressError, SingleFlight
from chronomap.importers.factory import get_importer

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from chronomap.importers.base import Importer, ImportResult
    from chronomap.models.contracts import SourceOutcomePayload
    from chronomap.query.store import FeatureStore

logger = logging.getLogger("chronomap.orchestrators.data_updater")

OutcomeStatus = Literal["succeeded", "failed", "skipped", "disabled"]


@dataclass(frozen=True, slots=True)
class UpdateJob:
    """One import to run: a source name and its parameters."""

    source: str
    params: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class SourceOutcome:
    """Outcome of one job in an update run."""

    source: str
    status: OutcomeStatus
    result: ImportResult | None = None
    error: dict[str, object] | None = None

    def to_dict(self) -> SourceOutcomePayload:
        return {
            "source": self.source,
            "status": self.status,
            "result": self.result.to_dict() if self.result else None,
            "error": self.error,  # type: ignore[typeddict-item]
        }


class DataUpdater:
    """Run import jobs across sources with per-source isolation.

    Args:
        store: Destination feature store shared by every importer.
        config: Pipeline configuration (also decides which sources are enabled).
        guard: Single-flight guard; a private one is created when omitted.
        importer_factory: ``(source, store, **kwargs) -> Importer``.
        importer_kwargs: Extra constructor arguments for every importer
            (e.g. ``transport`` in tests).
    """

    def __init__(
        self,
        store: FeatureStore,
        *,
        config: PipelineConfig | None = None,
        guard: SingleFlight | None = None,
        importer_factory: Callable[..., Importer] = get_importer,
        importer_kwargs: Mapping[str, Any] | None = None,
    ) -> None:
        self.store = store
        self.config = config or PipelineConfig()
        self.guard = guard or SingleFlight()
        self._factory = importer_factory
        self._importer_kwargs = dict(importer_kwargs or {})

    def run(
        self,
        jobs: Iterable[UpdateJob] | Mapping[str, Mapping[str, Any]],
        *,
        cancel_event: threading.Event | None = None,
    ) -> list[SourceOutcome]:
        """Run every job and return one outcome per job, in order."""
        if isinstance(jobs, Mapping):
            jobs = [UpdateJob(source, dict(params)) for source, params in jobs.items()]
        job_list = list(jobs)
        logger.info("update run started | jobs=%d", len(job_list))

        outcomes = [self.run_job(job, cancel_event=cancel_event) for job in job_list]

        counts: dict[str, int] = {}
        for outcome in outcomes:
            counts[outcome.status] = counts.get(outcome.status, 0) + 1
        logger.info(
            "update run completed | succeeded=%d | failed=%d | skipped=%d | disabled=%d",
            counts.get("succeeded", 0),
            counts.get("failed", 0),
            counts.get("skipped", 0),
            counts.get("disabled", 0),
        )
        return outcomes

    def run_job(
        self, job: UpdateJob, *, cancel_event: threading.Event | None = None
    ) -> SourceOutcome:
        if job.source not in self.config.enabled_sources:
            logger.info("source disabled | source=%s", job.source)
            return SourceOutcome(job.source, "disabled")

        importer: Importer | None = None
        try:
            importer = self._factory(
                job.source,
                self.store,
                config=self.config,
                guard=self.guard,
                **self._importer_kwargs,
            )
            result = importer.import_data(job.params, cancel_event=cancel_event)
        except ImportInProgressError as exc:
            logger.warning("source skipped | source=%s | reason=%s", job.source, exc)
            return SourceOutcome(job.source, "skipped", error=exc.to_error_dict())
        except PipelineError as exc:
            logger.error(
                "source failed | source=%s | code=%s | error=%s", job.source, exc.code, exc
            )
            return SourceOutcome(job.source, "failed", error=exc.to_error_dict())
        except Exception as exc:
            logger.exception("source failed unexpectedly | source=%s", job.source)
            error = PipelineError(
                str(exc) or type(exc).__name__, stage="import", code="UNEXPECTED_ERROR"
            )
            return SourceOutcome(job.source, "failed", error=error.to_error_dict())
        finally:
            if importer is not None:
                importer.close()

        return SourceOutcome(job.source, "succeeded", result=result)

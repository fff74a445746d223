"""Run Orchestrator: sequences one analysis run for a project.

Phase transitions:
- idle → preparing
- preparing → first_run | incremental (work to do), completed (nothing
  unanalyzed), failed (missing project, no opinions)
- first_run | incremental → committing
- committing → first_run | incremental (next batch), completed, failed
- completed, failed: terminal

Batches run one after another; the topic list is reloaded after every
commit so each batch is classified against the topics the previous one
created. A failed batch fails the run but leaves earlier batches committed.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Optional, Set

from ..config import AnalysisSettings
from ..db.storage import AnalysisStorage
from ..exceptions import PreconditionError, ProjectNotFoundError, StorageError
from ..models import (
    AnalysisHistory,
    AnalysisType,
    RunOptions,
    RunPhase,
    RunResult,
)
from .assignment_resolver import AssignmentResolver
from .batch_builder import BatchBudget, pack
from .classification_protocol import ClassificationProtocol
from .completion_client import CompletionClient
from .mirror import MirrorStore
from .mirror_sync import MirrorSync, ProgressReporter
from .persistence import PersistenceCoordinator
from .state_tracker import StateTracker

logger = logging.getLogger(__name__)

TERMINAL_PHASES = {RunPhase.COMPLETED, RunPhase.FAILED}

CLASSIFYING_PHASES = {RunPhase.FIRST_RUN, RunPhase.INCREMENTAL}

VALID_PHASE_TRANSITIONS = {
    RunPhase.IDLE: {RunPhase.PREPARING, RunPhase.FAILED},
    RunPhase.PREPARING: CLASSIFYING_PHASES | TERMINAL_PHASES,
    RunPhase.FIRST_RUN: {RunPhase.COMMITTING, RunPhase.FAILED},
    RunPhase.INCREMENTAL: {RunPhase.COMMITTING, RunPhase.FAILED},
    RunPhase.COMMITTING: CLASSIFYING_PHASES | TERMINAL_PHASES,
}


class InvalidTransitionError(Exception):
    """Raised when a run phase transition is not allowed."""

    pass


class RunStateMachine:
    """Tracks the phase of one run and reports each transition."""

    def __init__(self, project_key: str, reporter: ProgressReporter):
        self.project_key = project_key
        self.reporter = reporter
        self.phase = RunPhase.IDLE
        self.batches_total = 0
        self.batches_done = 0

    @property
    def is_terminal(self) -> bool:
        return self.phase in TERMINAL_PHASES

    def percentage(self) -> int:
        if self.phase == RunPhase.COMPLETED:
            return 100
        if self.phase in (RunPhase.IDLE, RunPhase.PREPARING) or not self.batches_total:
            return 0 if self.phase == RunPhase.IDLE else 5
        # preparing takes the first 10%
        share = self.batches_done / self.batches_total
        if self.phase == RunPhase.COMMITTING:
            share += 0.5 / self.batches_total
        return min(99, 10 + int(share * 90))

    def transition(self, to: RunPhase, error: Optional[str] = None) -> None:
        if self.phase in TERMINAL_PHASES:
            raise InvalidTransitionError(f"Run is {self.phase.value}, cannot move to {to.value}")
        allowed = VALID_PHASE_TRANSITIONS.get(self.phase, set())
        if to not in allowed:
            raise InvalidTransitionError(f"Cannot transition run from {self.phase.value} to {to.value}")

        logger.debug(f"Run {self.project_key}: {self.phase.value} -> {to.value}")
        self.phase = to
        self.reporter.report(
            self.project_key,
            to,
            self.percentage(),
            processed_batches=self.batches_done,
            total_batches=self.batches_total,
            error=error,
        )


class RunOrchestrator:
    """Runs incremental analysis for a project.

    The completion client and mirror store are passed in; the orchestrator
    holds no global clients.
    """

    def __init__(
        self,
        storage: AnalysisStorage,
        completion_client: CompletionClient,
        mirror: MirrorStore,
        settings: Optional[AnalysisSettings] = None,
    ):
        self.settings = settings or AnalysisSettings()
        self.storage = storage
        self.tracker = StateTracker(storage)
        self.protocol = ClassificationProtocol(completion_client)
        self.resolver = AssignmentResolver()
        self.mirror_sync = MirrorSync(storage, mirror, self.settings.mirror_history_limit)
        self.persistence = PersistenceCoordinator(
            storage,
            self.mirror_sync,
            low_confidence_threshold=self.settings.low_confidence_threshold,
        )
        self.reporter = ProgressReporter(mirror)

    def _budget(self, options: RunOptions) -> BatchBudget:
        return BatchBudget(
            max_size_units=options.max_size_units or self.settings.max_size_units,
            max_count=options.max_count or self.settings.max_count,
        )

    def run_incremental_analysis(
        self,
        project_id: str,
        user_id: str,
        options: Optional[RunOptions] = None,
    ) -> RunResult:
        """Classify the project's unanalyzed opinions.

        Never raises for run-level failures; the returned result carries the
        final phase, the counts and, on failure, a single summarizing error.
        """
        options = options or RunOptions()
        started = time.monotonic()
        result = RunResult(
            project_id=project_id,
            status=RunPhase.IDLE,
            started_at=datetime.now(timezone.utc),
        )
        run = RunStateMachine(project_id, self.reporter)
        created_ids: Set[str] = set()
        updated_ids: Set[str] = set()
        project = None

        logger.info(f"Starting analysis for project {project_id} (force={options.force_reanalysis})")

        try:
            project = self.storage.get_project(project_id)
            if project is not None:
                run.project_key = project.mirror_key
            run.transition(RunPhase.PREPARING)
            if project is None:
                raise ProjectNotFoundError(project_id)

            if self.storage.count_opinions(project.id) == 0:
                raise PreconditionError(f"Project {project_id} has no opinions to analyze")

            topics = self.tracker.existing_topics(project)
            pending = self.tracker.unanalyzed(project, force=options.force_reanalysis)

            if not topics or options.force_reanalysis:
                result.analysis_type = AnalysisType.FULL
            else:
                result.analysis_type = AnalysisType.INCREMENTAL

            batches = pack(pending, self._budget(options))
            result.batches_total = run.batches_total = len(batches)

            for index, batch in enumerate(batches, start=1):
                discovery = not topics
                run.transition(RunPhase.FIRST_RUN if discovery else RunPhase.INCREMENTAL)

                classification = self.protocol.classify(batch, topics)
                resolution = self.resolver.resolve(
                    classification.assignments,
                    batch,
                    topics,
                    proposals=classification.proposals,
                    consolidate=discovery and bool(classification.proposals),
                )

                run.transition(RunPhase.COMMITTING)
                try:
                    commit = self.persistence.commit(project, resolution, classification.insights)
                except StorageError as e:
                    raise StorageError(f"Batch {index}/{len(batches)} failed: {e}") from e
                except Exception as e:
                    logger.exception(f"Unexpected error committing batch {index}/{len(batches)}")
                    raise StorageError(f"Batch {index}/{len(batches)} failed: {e}") from e

                run.batches_done = result.batches_committed = index
                result.opinions_processed += commit.opinions_linked
                created_ids.update(t.id for t in commit.topics_created)
                updated_ids.update(commit.topics_updated)
                logger.info(
                    f"Batch {index}/{len(batches)} committed: {commit.opinions_linked} opinions, "
                    f"{len(commit.topics_created)} new topics ({classification.outcome})"
                )

                topics = self.tracker.existing_topics(project)

            result.new_topics_created = len(created_ids)
            result.updated_topics = len(updated_ids - created_ids)
            run.transition(RunPhase.COMPLETED)
            result.status = RunPhase.COMPLETED

        except (ProjectNotFoundError, PreconditionError, StorageError) as e:
            logger.error(f"Analysis failed for project {project_id}: {e}")
            result.error = str(e)
            result.new_topics_created = len(created_ids)
            result.updated_topics = len(updated_ids - created_ids)
            result.status = RunPhase.FAILED
            if not run.is_terminal:
                run.transition(RunPhase.FAILED, error=result.error)

        result.execution_time_seconds = round(time.monotonic() - started, 3)
        result.completed_at = datetime.now(timezone.utc)

        if result.status == RunPhase.COMPLETED:
            result.history_id = self._record_history(project, user_id, options, result)

        self._log_summary(result)
        return result

    def _record_history(self, project, user_id: str, options: RunOptions, result: RunResult) -> Optional[str]:
        history = AnalysisHistory(
            project_id=project.id,
            analysis_type=result.analysis_type or AnalysisType.INCREMENTAL,
            opinions_processed=result.opinions_processed,
            new_topics_created=result.new_topics_created,
            updated_topics=result.updated_topics,
            execution_time_seconds=result.execution_time_seconds,
            executed_by=user_id,
            execution_reason=options.execution_reason,
        )
        try:
            stored = self.persistence.record_history(project, history)
        except StorageError as e:
            logger.error(f"Could not record analysis history for project {project.id}: {e}")
            return None
        return stored.id if stored else None

    def _log_summary(self, result: RunResult) -> None:
        logger.info("=" * 50)
        logger.info(f"Analysis {result.status.value} for project {result.project_id}")
        logger.info(f"  Processed:  {result.opinions_processed}")
        logger.info(f"  New topics: {result.new_topics_created}")
        logger.info(f"  Updated:    {result.updated_topics}")
        logger.info(f"  Batches:    {result.batches_committed}/{result.batches_total}")
        logger.info(f"  Time:       {result.execution_time_seconds:.1f}s")
        if result.error:
            logger.info(f"  Error:      {result.error}")
        logger.info("=" * 50)

"""Persistence Coordinator: apply a resolved batch to both stores.

Consistency policy per entity class:

- topics, opinion links, analysis state, insights: one primary transaction,
  then a mirror snapshot. A failed mirror write marks the rows
  `sync_status = error` and keeps them; `MirrorSync.sync_pending` retries.
- analysis history: the row is kept only if the mirror acknowledges it,
  otherwise it is deleted again.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence, Tuple

from ..config import DEFAULT_LOW_CONFIDENCE_THRESHOLD
from ..db.storage import AnalysisStorage
from ..exceptions import MirrorSyncError, StorageError
from ..models import (
    AnalysisHistory,
    CommitResult,
    Insight,
    Project,
    Resolution,
    SyncStatus,
    Topic,
)
from .mirror_sync import MirrorSync
from .similarity import derive_keywords

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PersistenceCoordinator:
    """Writes batch results to the primary store, then mirrors them."""

    def __init__(
        self,
        storage: AnalysisStorage,
        mirror_sync: MirrorSync,
        low_confidence_threshold: float = DEFAULT_LOW_CONFIDENCE_THRESHOLD,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.storage = storage
        self.mirror_sync = mirror_sync
        self.low_confidence_threshold = low_confidence_threshold
        self.clock = clock

    def commit(
        self,
        project: Project,
        resolution: Resolution,
        insights: Sequence[Insight] = (),
    ) -> CommitResult:
        """Apply one batch atomically.

        Raises:
            StorageError: the transaction was rolled back; nothing from this
                batch is stored and its opinions stay unanalyzed
        """
        if resolution.is_empty() and not insights:
            return CommitResult()

        analyzed_at = self.clock()
        affected = set()
        links: List[Tuple[str, str, float]] = []
        created: List[Topic] = []
        stored_insights: List[Insight] = []

        with self.storage.transaction():
            for assignment in resolution.existing_assignments:
                previous = self.storage.link_opinion(assignment.opinion_id, assignment.topic_id)
                affected.update((assignment.topic_id, previous))
                links.append((assignment.opinion_id, assignment.topic_id, assignment.confidence))

            for proposal in resolution.new_topic_proposals:
                topic = self.storage.create_topic(Topic(
                    project_id=project.id,
                    name=proposal.name,
                    category=proposal.category,
                    summary=proposal.summary,
                    keywords=proposal.keywords or derive_keywords(proposal.name, proposal.summary),
                ))
                created.append(topic)
                for placement in proposal.placements:
                    previous = self.storage.link_opinion(placement.opinion_id, topic.id)
                    affected.update((topic.id, previous))
                    links.append((placement.opinion_id, topic.id, placement.confidence))

            counts = self.storage.reconcile_topic_counts(t for t in affected if t)

            for opinion_id, topic_id, confidence in links:
                self.storage.upsert_analysis_state(
                    opinion_id=opinion_id,
                    project_id=project.id,
                    topic_id=topic_id,
                    confidence=confidence,
                    analyzed_at=analyzed_at,
                    manual_review_flag=confidence < self.low_confidence_threshold,
                )

            for insight in insights:
                stored_insights.append(
                    self.storage.create_insight(insight.model_copy(update={"project_id": project.id}))
                )

            self.storage.update_project_after_analysis(project.id, analyzed_at)

        created_ids = {t.id for t in created}
        created = [t.model_copy(update={"count": counts.get(t.id, t.count)}) for t in created]
        updated = sorted(t for t in affected if t and t not in created_ids)

        logger.info(
            f"Committed {len(links)} opinions for project {project.id}: "
            f"{len(created)} new topics, {len(updated)} updated"
        )

        mirror_synced = self.mirror_sync.sync_project(project)

        return CommitResult(
            opinions_linked=len(links),
            topics_created=created,
            topics_updated=updated,
            insights_created=len(stored_insights),
            mirror_synced=mirror_synced,
        )

    def record_history(self, project: Project, history: AnalysisHistory) -> Optional[AnalysisHistory]:
        """Store a history record only if the mirror also accepts it.

        Returns the stored record, or None when the mirror write failed and
        the primary row was deleted again.
        """
        with self.storage.transaction():
            stored = self.storage.create_history(history)

        if not self.mirror_sync.mirror.enabled:
            return stored

        try:
            self.mirror_sync.push_snapshot(project)
        except (MirrorSyncError, StorageError) as e:
            logger.warning(f"History {stored.id} not mirrored, removing it: {e}")
            with self.storage.transaction():
                self.storage.delete_history(stored.id)
            return None

        with self.storage.transaction():
            self.storage.set_history_sync_status(stored.id, SyncStatus.SYNCED)
            self.storage.set_sync_status(project.id, SyncStatus.SYNCED)
        return stored.model_copy(update={"sync_status": SyncStatus.SYNCED})

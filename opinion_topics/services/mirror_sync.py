"""Push analysis results and run progress to the mirror store.

The primary store is the source of truth. After a primary commit the whole
analysis snapshot of the project is rebuilt from it and written in one
multi-path update, together with a null at the legacy topics path. Sync
outcomes are recorded as `sync_status` on the primary rows so a later
out-of-band pass can retry projects left in `pending` or `error`.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from ..config import DEFAULT_HISTORY_LIMIT
from ..db.storage import AnalysisStorage
from ..exceptions import MirrorSyncError, StorageError
from ..models import (
    AnalysisHistory,
    Insight,
    Opinion,
    Project,
    RunPhase,
    SyncStatus,
    Topic,
)
from .mirror import MirrorStore

logger = logging.getLogger(__name__)

TOP_INSIGHTS = 5


def analysis_path(project: Project) -> str:
    return f"projects/{project.mirror_key}/analysis"


def legacy_topics_path(project: Project) -> str:
    return f"projects/{project.mirror_key}/topics"


def session_path(project_key: str) -> str:
    return f"analysis-sessions/{project_key}"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def build_snapshot(
    project: Project,
    topics: Sequence[Topic],
    opinions: Sequence[Opinion],
    insights: Sequence[Insight],
    history: Sequence[AnalysisHistory],
    generated_at: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Denormalized view of a project's analysis for the mirror."""
    generated_at = generated_at or datetime.now(timezone.utc)

    opinions_by_topic: Dict[str, List[Opinion]] = {}
    for opinion in opinions:
        if opinion.topic_id:
            opinions_by_topic.setdefault(opinion.topic_id, []).append(opinion)

    topic_nodes = {}
    for topic in topics:
        members = opinions_by_topic.get(topic.id, [])
        topic_nodes[topic.id] = {
            "id": topic.id,
            "name": topic.name,
            "category": topic.category,
            "summary": topic.summary,
            "keywords": list(topic.keywords),
            "count": topic.count,
            "status": topic.status.value,
            "createdAt": _iso(topic.created_at),
            "updatedAt": _iso(topic.updated_at),
            "opinions": {
                o.id: {"id": o.id, "content": o.content, "submittedAt": _iso(o.submitted_at)}
                for o in members
            },
        }

    insight_nodes = {
        insight.id: {
            "id": insight.id,
            "title": insight.title,
            "description": insight.description,
            "count": insight.count,
            "priority": insight.priority.value,
            "status": insight.status,
            "createdAt": _iso(insight.created_at),
        }
        for insight in insights
    }

    history_nodes = {
        entry.id: {
            "id": entry.id,
            "analysisType": entry.analysis_type.value,
            "opinionsProcessed": entry.opinions_processed,
            "newTopicsCreated": entry.new_topics_created,
            "updatedTopics": entry.updated_topics,
            "executionTimeSeconds": entry.execution_time_seconds,
            "executedBy": entry.executed_by,
            "executionReason": entry.execution_reason,
            "createdAt": _iso(entry.created_at),
        }
        for entry in history
    }

    top_insights = sorted(insights, key=lambda i: i.count, reverse=True)[:TOP_INSIGHTS]

    return {
        "projectId": project.mirror_key,
        "lastUpdated": generated_at.isoformat(),
        "topics": topic_nodes,
        "insights": insight_nodes,
        "analysisHistory": history_nodes,
        "topInsights": [i.id for i in top_insights],
        "summary": {
            "topicsCount": len(topic_nodes),
            "insightsCount": len(insight_nodes),
            "totalOpinions": len(opinions),
            "analysisHistoryCount": len(history_nodes),
            "generatedAt": generated_at.isoformat(),
        },
    }


class MirrorSync:
    """Writes project snapshots to the mirror and records the outcome."""

    def __init__(self, storage: AnalysisStorage, mirror: MirrorStore, history_limit: int = DEFAULT_HISTORY_LIMIT):
        self.storage = storage
        self.mirror = mirror
        self.history_limit = history_limit

    def push_snapshot(self, project: Project) -> None:
        """Rebuild and write the project's snapshot.

        Raises:
            MirrorSyncError: if the mirror rejected the write
        """
        snapshot = build_snapshot(
            project,
            topics=self.storage.list_topics(project.id),
            opinions=self.storage.list_opinions(project.id),
            insights=self.storage.list_insights(project.id),
            history=self.storage.list_history(project.id, self.history_limit),
        )
        self.mirror.update({
            analysis_path(project): snapshot,
            legacy_topics_path(project): None,
        })

    def sync_project(self, project: Project) -> bool:
        """Push the snapshot and mark rows synced, or mark them as errored.

        Returns True when the mirror acknowledged the write. A disabled mirror
        leaves sync statuses untouched and returns False.
        """
        if not self.mirror.enabled:
            return False
        try:
            self.push_snapshot(project)
        except MirrorSyncError as e:
            logger.warning(f"Mirror sync failed for project {project.id}: {e}")
            self._mark(project, SyncStatus.ERROR)
            return False
        except StorageError as e:
            logger.warning(f"Could not build mirror snapshot for project {project.id}: {e}")
            return False
        self._mark(project, SyncStatus.SYNCED)
        return True

    def _mark(self, project: Project, status: SyncStatus) -> None:
        # Rows left pending are picked up by sync_pending().
        try:
            with self.storage.transaction():
                self.storage.set_sync_status(project.id, status)
        except StorageError as e:
            logger.warning(f"Could not record sync status {status.value} for project {project.id}: {e}")

    def sync_pending(self, project_id: Optional[str] = None) -> Dict[str, bool]:
        """Out-of-band reconciliation of projects whose mirror copy is behind."""
        if project_id:
            project = self.storage.get_project(project_id)
            projects = [project] if project else []
        else:
            projects = self.storage.list_projects_needing_sync()

        results = {}
        for project in projects:
            results[project.id] = self.sync_project(project)
        synced = sum(1 for ok in results.values() if ok)
        logger.info(f"Mirror reconciliation: {synced}/{len(results)} projects synced")
        return results


class ProgressReporter:
    """Best-effort run progress at analysis-sessions/{project}.

    Reporting failures are logged and never reach the run.
    """

    def __init__(self, mirror: MirrorStore):
        self.mirror = mirror

    def report(
        self,
        project_key: str,
        phase: RunPhase,
        percentage: int,
        processed_batches: int = 0,
        total_batches: int = 0,
        error: Optional[str] = None,
    ) -> None:
        now = datetime.now(timezone.utc).isoformat()
        if phase == RunPhase.COMPLETED:
            status = "completed"
        elif phase == RunPhase.FAILED:
            status = "failed"
        else:
            status = "processing"

        node: Dict[str, Any] = {
            "status": status,
            "progress": {
                "percentage": max(0, min(100, int(percentage))),
                "currentPhase": phase.value,
                "processedBatches": processed_batches,
                "totalBatches": total_batches,
            },
            "updatedAt": now,
        }
        if phase == RunPhase.PREPARING:
            node["startedAt"] = now
        if phase in (RunPhase.COMPLETED, RunPhase.FAILED):
            node["completedAt"] = now
        if error:
            node["error"] = error

        try:
            self.mirror.update({session_path(project_key): node})
        except Exception as e:
            logger.warning(f"Progress report failed for {project_key} ({phase.value}): {e}")

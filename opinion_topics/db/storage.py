"""Primary-store operations for projects, opinions, topics and analysis state.

Service class takes a db_connection and uses cursors for queries. Writes
made by the Persistence Coordinator happen inside `transaction()`, which
commits on success and rolls back everything on failure.
"""

import json
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Sequence

import psycopg2
from psycopg2.extras import RealDictCursor

from ..exceptions import StorageError
from ..models import (
    AnalysisHistory,
    AnalysisState,
    AnalysisType,
    Insight,
    InsightPriority,
    Opinion,
    Project,
    SyncStatus,
    Topic,
    TopicStatus,
)

logger = logging.getLogger(__name__)

PROJECT_COLUMNS = """
    id, mirror_id, user_id, name, status, last_analysis_at,
    last_analyzed_opinions_count, is_analyzed, sync_status, last_sync_at
"""

TOPIC_COLUMNS = """
    id, project_id, name, category, summary, keywords, count, status,
    sync_status, created_at, updated_at
"""

HISTORY_COLUMNS = """
    id, project_id, analysis_type, opinions_processed, new_topics_created,
    updated_topics, execution_time_seconds, executed_by, execution_reason,
    sync_status, created_at
"""


class AnalysisStorage:
    """CRUD operations backing an analysis run.

    Requires a psycopg2 connection; cursors are opened with RealDictCursor so
    row mappers can access columns by key.
    """

    def __init__(self, db_connection):
        self.db = db_connection
        self._in_transaction = False

    def _cursor(self):
        """Get a cursor with RealDictCursor to ensure dict-style row access."""
        return self.db.cursor(cursor_factory=RealDictCursor)

    @contextmanager
    def transaction(self):
        """Run the enclosed writes as one all-or-nothing transaction."""
        if self._in_transaction:
            yield self
            return
        self._in_transaction = True
        try:
            yield self
            self.db.commit()
        except psycopg2.Error as e:
            self.db.rollback()
            raise StorageError(f"Transaction rolled back: {e}") from e
        except Exception:
            self.db.rollback()
            raise
        finally:
            self._in_transaction = False

    @contextmanager
    def _query(self):
        """Cursor for a single statement group, mapping driver errors to StorageError.

        Outside an explicit transaction a failed statement leaves the
        connection aborted, so it is rolled back here.
        """
        try:
            with self._cursor() as cur:
                yield cur
        except psycopg2.Error as e:
            if not self._in_transaction:
                self.db.rollback()
            raise StorageError(str(e)) from e

    # ========================================================================
    # Projects
    # ========================================================================

    def get_project(self, project_id: str) -> Optional[Project]:
        """Look up a project by its primary id or its mirror id."""
        with self._query() as cur:
            cur.execute(
                f"""
                SELECT {PROJECT_COLUMNS}
                FROM projects
                WHERE id = %s OR mirror_id = %s
                ORDER BY (id = %s) DESC
                LIMIT 1
                """,
                (project_id, project_id, project_id),
            )
            row = cur.fetchone()
            return self._row_to_project(row) if row else None

    def update_project_after_analysis(self, project_id: str, analyzed_at: datetime) -> None:
        """Record that the project's current opinions have been analyzed."""
        with self._query() as cur:
            cur.execute(
                """
                UPDATE projects
                SET last_analysis_at = %s,
                    last_analyzed_opinions_count = (
                        SELECT COUNT(*) FROM opinions WHERE project_id = %s
                    ),
                    is_analyzed = TRUE,
                    sync_status = %s,
                    updated_at = NOW()
                WHERE id = %s
                """,
                (analyzed_at, project_id, SyncStatus.PENDING.value, project_id),
            )

    def list_projects_needing_sync(self) -> List[Project]:
        with self._query() as cur:
            cur.execute(
                f"""
                SELECT {PROJECT_COLUMNS}
                FROM projects
                WHERE sync_status IN (%s, %s)
                ORDER BY updated_at
                """,
                (SyncStatus.PENDING.value, SyncStatus.ERROR.value),
            )
            return [self._row_to_project(row) for row in cur.fetchall()]

    def set_sync_status(self, project_id: str, status: SyncStatus) -> None:
        """Propagate a mirror sync outcome to the project and its unsynced rows.

        SYNCED clears both pending and error rows; ERROR only marks rows that
        were still pending, so earlier successful syncs are not downgraded.
        """
        if status == SyncStatus.SYNCED:
            affected = [SyncStatus.PENDING.value, SyncStatus.ERROR.value]
        else:
            affected = [SyncStatus.PENDING.value]

        with self._query() as cur:
            for table in ("topics", "opinions", "insights"):
                cur.execute(
                    f"""
                    UPDATE {table}
                    SET sync_status = %s
                    WHERE project_id = %s AND sync_status = ANY(%s)
                    """,
                    (status.value, project_id, affected),
                )
            cur.execute(
                """
                UPDATE projects
                SET sync_status = %s,
                    last_sync_at = CASE WHEN %s THEN NOW() ELSE last_sync_at END
                WHERE id = %s
                """,
                (status.value, status == SyncStatus.SYNCED, project_id),
            )

    # ========================================================================
    # Opinions
    # ========================================================================

    def count_opinions(self, project_id: str) -> int:
        with self._query() as cur:
            cur.execute(
                "SELECT COUNT(*) AS total FROM opinions WHERE project_id = %s",
                (project_id,),
            )
            row = cur.fetchone()
            return int(row["total"]) if row else 0

    def list_opinions(self, project_id: str) -> List[Opinion]:
        """All opinions of a project in submission order."""
        with self._query() as cur:
            cur.execute(
                """
                SELECT id, project_id, content, submitted_at, topic_id
                FROM opinions
                WHERE project_id = %s
                ORDER BY submitted_at ASC, id ASC
                """,
                (project_id,),
            )
            return [Opinion(**row) for row in cur.fetchall()]

    def link_opinion(self, opinion_id: str, topic_id: str) -> Optional[str]:
        """Point an opinion at a topic. Returns the topic it was linked to before."""
        with self._query() as cur:
            cur.execute(
                "SELECT topic_id FROM opinions WHERE id = %s FOR UPDATE",
                (opinion_id,),
            )
            row = cur.fetchone()
            if row is None:
                raise StorageError(f"Opinion not found: {opinion_id}")
            cur.execute(
                """
                UPDATE opinions
                SET topic_id = %s, sync_status = %s
                WHERE id = %s
                """,
                (topic_id, SyncStatus.PENDING.value, opinion_id),
            )
            return row["topic_id"]

    # ========================================================================
    # Analysis state
    # ========================================================================

    def list_analysis_states(self, project_ids: Sequence[str]) -> List[AnalysisState]:
        """State rows written under any of the given project identifiers."""
        with self._query() as cur:
            cur.execute(
                """
                SELECT opinion_id, project_id, last_analyzed_at, analysis_version,
                       topic_id, classification_confidence, manual_review_flag
                FROM opinion_analysis_state
                WHERE project_id = ANY(%s)
                """,
                (list(project_ids),),
            )
            return [AnalysisState(**row) for row in cur.fetchall()]

    def upsert_analysis_state(
        self,
        opinion_id: str,
        project_id: str,
        topic_id: str,
        confidence: float,
        analyzed_at: datetime,
        manual_review_flag: bool = False,
    ) -> AnalysisState:
        """Create the state row, or bump its version on re-classification."""
        with self._query() as cur:
            cur.execute(
                """
                INSERT INTO opinion_analysis_state (
                    opinion_id, project_id, last_analyzed_at, analysis_version,
                    topic_id, classification_confidence, manual_review_flag
                ) VALUES (%s, %s, %s, 1, %s, %s, %s)
                ON CONFLICT (opinion_id) DO UPDATE SET
                    project_id = EXCLUDED.project_id,
                    last_analyzed_at = EXCLUDED.last_analyzed_at,
                    analysis_version = opinion_analysis_state.analysis_version + 1,
                    topic_id = EXCLUDED.topic_id,
                    classification_confidence = EXCLUDED.classification_confidence,
                    manual_review_flag = EXCLUDED.manual_review_flag
                RETURNING opinion_id, project_id, last_analyzed_at, analysis_version,
                          topic_id, classification_confidence, manual_review_flag
                """,
                (opinion_id, project_id, analyzed_at, topic_id, confidence, manual_review_flag),
            )
            return AnalysisState(**cur.fetchone())

    # ========================================================================
    # Topics
    # ========================================================================

    def list_topics(self, project_id: str) -> List[Topic]:
        """Topics of a project, largest first."""
        with self._query() as cur:
            cur.execute(
                f"""
                SELECT {TOPIC_COLUMNS}
                FROM topics
                WHERE project_id = %s
                ORDER BY count DESC, created_at ASC
                """,
                (project_id,),
            )
            return [self._row_to_topic(row) for row in cur.fetchall()]

    def create_topic(self, topic: Topic) -> Topic:
        with self._query() as cur:
            cur.execute(
                f"""
                INSERT INTO topics (project_id, name, category, summary, keywords, count, status, sync_status)
                VALUES (%s, %s, %s, %s, %s, 0, %s, %s)
                RETURNING {TOPIC_COLUMNS}
                """,
                (
                    topic.project_id,
                    topic.name,
                    topic.category,
                    topic.summary,
                    json.dumps(topic.keywords),
                    topic.status.value,
                    SyncStatus.PENDING.value,
                ),
            )
            return self._row_to_topic(cur.fetchone())

    def reconcile_topic_counts(self, topic_ids: Iterable[str]) -> Dict[str, int]:
        """Recompute `count` from the opinions that reference each topic."""
        ids = sorted({t for t in topic_ids if t})
        if not ids:
            return {}
        with self._query() as cur:
            cur.execute(
                """
                UPDATE topics t
                SET count = (SELECT COUNT(*) FROM opinions o WHERE o.topic_id = t.id),
                    sync_status = %s,
                    updated_at = NOW()
                WHERE t.id = ANY(%s)
                RETURNING t.id, t.count
                """,
                (SyncStatus.PENDING.value, ids),
            )
            return {row["id"]: row["count"] for row in cur.fetchall()}

    # ========================================================================
    # Insights
    # ========================================================================

    def list_insights(self, project_id: str) -> List[Insight]:
        with self._query() as cur:
            cur.execute(
                """
                SELECT id, project_id, title, description, count, priority, status,
                       created_at, updated_at
                FROM insights
                WHERE project_id = %s
                ORDER BY count DESC, created_at ASC
                """,
                (project_id,),
            )
            return [self._row_to_insight(row) for row in cur.fetchall()]

    def create_insight(self, insight: Insight) -> Insight:
        with self._query() as cur:
            cur.execute(
                """
                INSERT INTO insights (project_id, title, description, count, priority, status)
                VALUES (%s, %s, %s, %s, %s, %s)
                RETURNING id, project_id, title, description, count, priority, status,
                          created_at, updated_at
                """,
                (
                    insight.project_id,
                    insight.title,
                    insight.description,
                    insight.count,
                    insight.priority.value,
                    insight.status,
                ),
            )
            return self._row_to_insight(cur.fetchone())

    # ========================================================================
    # Analysis history
    # ========================================================================

    def list_history(self, project_id: str, limit: int = 10) -> List[AnalysisHistory]:
        """Most recent history entries first."""
        with self._query() as cur:
            cur.execute(
                f"""
                SELECT {HISTORY_COLUMNS}
                FROM analysis_history
                WHERE project_id = %s
                ORDER BY created_at DESC
                LIMIT %s
                """,
                (project_id, limit),
            )
            return [self._row_to_history(row) for row in cur.fetchall()]

    def create_history(self, history: AnalysisHistory) -> AnalysisHistory:
        with self._query() as cur:
            cur.execute(
                f"""
                INSERT INTO analysis_history (
                    project_id, analysis_type, opinions_processed, new_topics_created,
                    updated_topics, execution_time_seconds, executed_by, execution_reason,
                    sync_status
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING {HISTORY_COLUMNS}
                """,
                (
                    history.project_id,
                    history.analysis_type.value,
                    history.opinions_processed,
                    history.new_topics_created,
                    history.updated_topics,
                    history.execution_time_seconds,
                    history.executed_by,
                    history.execution_reason,
                    SyncStatus.PENDING.value,
                ),
            )
            return self._row_to_history(cur.fetchone())

    def set_history_sync_status(self, history_id: str, status: SyncStatus) -> None:
        with self._query() as cur:
            cur.execute(
                "UPDATE analysis_history SET sync_status = %s WHERE id = %s",
                (status.value, history_id),
            )

    def delete_history(self, history_id: str) -> bool:
        with self._query() as cur:
            cur.execute("DELETE FROM analysis_history WHERE id = %s", (history_id,))
            return cur.rowcount > 0

    # ========================================================================
    # Row mappers
    # ========================================================================

    def _row_to_project(self, row: dict) -> Project:
        return Project(
            id=row["id"],
            mirror_id=row.get("mirror_id"),
            user_id=row["user_id"],
            name=row.get("name") or "",
            status=row.get("status") or "collecting",
            last_analysis_at=row.get("last_analysis_at"),
            last_analyzed_opinions_count=row.get("last_analyzed_opinions_count") or 0,
            is_analyzed=bool(row.get("is_analyzed")),
            sync_status=SyncStatus(row.get("sync_status") or SyncStatus.PENDING.value),
            last_sync_at=row.get("last_sync_at"),
        )

    def _row_to_topic(self, row: dict) -> Topic:
        keywords = row.get("keywords") or []
        if isinstance(keywords, str):
            keywords = json.loads(keywords)
        return Topic(
            id=row["id"],
            project_id=row["project_id"],
            name=row["name"],
            category=row.get("category"),
            summary=row.get("summary") or "",
            keywords=keywords,
            count=row.get("count") or 0,
            status=TopicStatus(row.get("status") or TopicStatus.UNHANDLED.value),
            sync_status=SyncStatus(row.get("sync_status") or SyncStatus.PENDING.value),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

    def _row_to_insight(self, row: dict) -> Insight:
        return Insight(
            id=row["id"],
            project_id=row["project_id"],
            title=row["title"],
            description=row.get("description") or "",
            count=row.get("count") or 0,
            priority=InsightPriority(row.get("priority") or InsightPriority.MEDIUM.value),
            status=row.get("status") or "unhandled",
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

    def _row_to_history(self, row: dict) -> AnalysisHistory:
        return AnalysisHistory(
            id=row["id"],
            project_id=row["project_id"],
            analysis_type=AnalysisType(row["analysis_type"]),
            opinions_processed=row.get("opinions_processed") or 0,
            new_topics_created=row.get("new_topics_created") or 0,
            updated_topics=row.get("updated_topics") or 0,
            execution_time_seconds=float(row.get("execution_time_seconds") or 0.0),
            executed_by=row["executed_by"],
            execution_reason=row.get("execution_reason") or "manual",
            sync_status=SyncStatus(row.get("sync_status") or SyncStatus.PENDING.value),
            created_at=row.get("created_at") or datetime.now(timezone.utc),
        )

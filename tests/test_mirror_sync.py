"""
Mirror Sync Tests

Snapshot layout, sync status bookkeeping, out-of-band reconciliation,
progress reporting and the REST mirror client.
Run with: pytest tests/test_mirror_sync.py -v
"""

from datetime import datetime, timezone
from unittest.mock import Mock

import pytest
import requests

from opinion_topics.config import AnalysisSettings
from opinion_topics.exceptions import MirrorSyncError
from opinion_topics.models import (
    AnalysisHistory,
    AnalysisType,
    Insight,
    Opinion,
    Project,
    RunPhase,
    SyncStatus,
    Topic,
)
from opinion_topics.services.mirror import (
    DisabledMirrorStore,
    RestMirrorStore,
    build_mirror_store,
)
from opinion_topics.services.mirror_sync import MirrorSync, ProgressReporter, build_snapshot
from tests.fakes import BASE_TIME, InMemoryMirror, InMemoryStorage

GENERATED_AT = datetime(2026, 2, 1, tzinfo=timezone.utc)


class TestBuildSnapshot:
    """Tests for the denormalized project snapshot."""

    @pytest.fixture
    def snapshot(self):
        project = Project(id="proj-1", mirror_id="mirror-1", user_id="user-1")
        topics = [Topic(id="t-1", project_id="proj-1", name="Billing", keywords=["fee"], count=1)]
        opinions = [
            Opinion(id="op-1", project_id="proj-1", content="Too pricey", submitted_at=BASE_TIME, topic_id="t-1"),
            Opinion(id="op-2", project_id="proj-1", content="Unlinked", submitted_at=BASE_TIME),
        ]
        insights = [
            Insight(id=f"i-{n}", project_id="proj-1", title=f"Insight {n}", count=n)
            for n in range(1, 8)
        ]
        history = [AnalysisHistory(id="h-1", project_id="proj-1", analysis_type=AnalysisType.FULL,
                                   executed_by="user-1")]
        return build_snapshot(project, topics, opinions, insights, history, generated_at=GENERATED_AT)

    def test_keyed_by_mirror_id(self, snapshot):
        assert snapshot["projectId"] == "mirror-1"
        assert snapshot["lastUpdated"] == GENERATED_AT.isoformat()

    def test_topics_embed_their_opinions(self, snapshot):
        topic = snapshot["topics"]["t-1"]
        assert topic["name"] == "Billing"
        assert topic["status"] == "unhandled"
        assert topic["opinions"] == {
            "op-1": {"id": "op-1", "content": "Too pricey", "submittedAt": BASE_TIME.isoformat()},
        }

    def test_top_insights_by_count(self, snapshot):
        assert snapshot["topInsights"] == ["i-7", "i-6", "i-5", "i-4", "i-3"]

    def test_summary(self, snapshot):
        assert snapshot["summary"] == {
            "topicsCount": 1,
            "insightsCount": 7,
            "totalOpinions": 2,
            "analysisHistoryCount": 1,
            "generatedAt": GENERATED_AT.isoformat(),
        }


class TestMirrorSync:
    """Tests for pushing snapshots and recording sync status."""

    @pytest.fixture
    def storage(self):
        storage = InMemoryStorage()
        storage.add_project("proj-1", mirror_id="mirror-1")
        storage.add_topic("proj-1", "Billing")
        return storage

    @pytest.fixture
    def mirror(self):
        return InMemoryMirror()

    def test_push_replaces_legacy_topics(self, storage, mirror):
        mirror.tree = {"projects": {"mirror-1": {"topics": {"old": {"name": "Legacy"}}}}}

        MirrorSync(storage, mirror).push_snapshot(storage.projects["proj-1"])

        assert mirror.get("projects/mirror-1/topics") is None
        assert mirror.get("projects/mirror-1/analysis/summary/topicsCount") == 1
        assert len(mirror.updates) == 1

    def test_sync_marks_project_and_topics(self, storage, mirror):
        assert MirrorSync(storage, mirror).sync_project(storage.projects["proj-1"]) is True

        project = storage.projects["proj-1"]
        assert project.sync_status == SyncStatus.SYNCED
        assert project.last_sync_at is not None
        assert all(t.sync_status == SyncStatus.SYNCED for t in storage.topics.values())

    def test_rejected_write_marks_error(self, storage, mirror):
        mirror.fail_on("projects/mirror-1")

        assert MirrorSync(storage, mirror).sync_project(storage.projects["proj-1"]) is False
        assert storage.projects["proj-1"].sync_status == SyncStatus.ERROR

    def test_snapshot_read_failure_leaves_status(self, storage, mirror):
        storage.fail("list_topics")

        assert MirrorSync(storage, mirror).sync_project(storage.projects["proj-1"]) is False
        assert storage.projects["proj-1"].sync_status == SyncStatus.PENDING
        assert mirror.updates == []

    def test_disabled_mirror_is_a_no_op(self, storage):
        assert MirrorSync(storage, DisabledMirrorStore()).sync_project(storage.projects["proj-1"]) is False
        assert "set_sync_status" not in storage.calls

    def test_sync_pending_retries_behind_projects(self, storage, mirror):
        storage.add_project("proj-2")
        synced = storage.add_project("proj-3")
        storage.projects["proj-3"] = synced.model_copy(update={"sync_status": SyncStatus.SYNCED})

        results = MirrorSync(storage, mirror).sync_pending()

        assert results == {"proj-1": True, "proj-2": True}
        assert mirror.get("projects/proj-2/analysis/projectId") == "proj-2"

    def test_sync_pending_single_project_by_mirror_id(self, storage, mirror):
        storage.add_project("proj-2")

        results = MirrorSync(storage, mirror).sync_pending("mirror-1")

        assert results == {"proj-1": True}

    def test_sync_pending_unknown_project(self, storage, mirror):
        assert MirrorSync(storage, mirror).sync_pending("nope") == {}


class TestProgressReporter:
    """Tests for best-effort progress records."""

    def test_preparing_sets_started_at(self):
        mirror = InMemoryMirror()
        ProgressReporter(mirror).report("mirror-1", RunPhase.PREPARING, 5)

        node = mirror.get("analysis-sessions/mirror-1")
        assert node["status"] == "processing"
        assert node["progress"]["currentPhase"] == "preparing"
        assert node["progress"]["percentage"] == 5
        assert "startedAt" in node
        assert "completedAt" not in node

    def test_failed_run_carries_error(self):
        mirror = InMemoryMirror()
        ProgressReporter(mirror).report("mirror-1", RunPhase.FAILED, 40, 1, 3, error="Batch 2/3 failed")

        node = mirror.get("analysis-sessions/mirror-1")
        assert node["status"] == "failed"
        assert node["error"] == "Batch 2/3 failed"
        assert node["progress"]["processedBatches"] == 1
        assert node["progress"]["totalBatches"] == 3
        assert "completedAt" in node

    def test_percentage_is_clamped(self):
        mirror = InMemoryMirror()
        ProgressReporter(mirror).report("p", RunPhase.COMPLETED, 140)

        assert mirror.get("analysis-sessions/p/progress/percentage") == 100
        assert mirror.get("analysis-sessions/p/status") == "completed"

    def test_write_failure_is_swallowed(self):
        mirror = InMemoryMirror()
        mirror.fail_on("analysis-sessions/")

        ProgressReporter(mirror).report("p", RunPhase.INCREMENTAL, 50)

        assert mirror.updates == []


class TestRestMirrorStore:
    """Tests for the REST client, with the HTTP session mocked."""

    @pytest.fixture
    def session(self):
        session = Mock()
        session.patch.return_value = Mock(status_code=200)
        return session

    def test_multi_path_patch(self, session):
        store = RestMirrorStore("https://mirror.example.com/", auth_token="secret", timeout=3, session=session)

        store.update({"/projects/p/analysis": {"a": 1}, "projects/p/topics": None})

        session.patch.assert_called_once_with(
            "https://mirror.example.com/.json",
            json={"projects/p/analysis": {"a": 1}, "projects/p/topics": None},
            params={"auth": "secret"},
            timeout=3,
        )

    def test_http_error_raises_mirror_sync_error(self, session):
        session.patch.return_value.raise_for_status.side_effect = requests.HTTPError("401 Unauthorized")
        store = RestMirrorStore("https://mirror.example.com", session=session)

        with pytest.raises(MirrorSyncError) as exc_info:
            store.update({"projects/p/analysis": {}})

        assert exc_info.value.paths == ["projects/p/analysis"]

    def test_connection_error_raises_mirror_sync_error(self, session):
        session.patch.side_effect = requests.ConnectionError("refused")
        store = RestMirrorStore("https://mirror.example.com", session=session)

        with pytest.raises(MirrorSyncError):
            store.update({"projects/p/analysis": {}})

    def test_empty_update_sends_nothing(self, session):
        RestMirrorStore("https://mirror.example.com", session=session).update({})

        session.patch.assert_not_called()


class TestBuildMirrorStore:
    """Tests for choosing the mirror client from settings."""

    def test_disabled_flag(self):
        settings = AnalysisSettings(mirror_url="https://m.example.com", mirror_disable_sync=True)
        assert isinstance(build_mirror_store(settings), DisabledMirrorStore)

    def test_missing_url(self):
        assert build_mirror_store(AnalysisSettings()).enabled is False

    def test_configured(self):
        settings = AnalysisSettings(mirror_url="https://m.example.com", mirror_auth_token="t")
        store = build_mirror_store(settings)

        assert isinstance(store, RestMirrorStore)
        assert store.auth_token == "t"

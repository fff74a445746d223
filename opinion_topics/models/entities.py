"""Pydantic models for primary-store entities."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .enums import AnalysisType, InsightPriority, SyncStatus, TopicStatus


class Opinion(BaseModel):
    """A single free-text opinion submitted to a project. Content is immutable."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    project_id: str
    content: str
    submitted_at: datetime
    topic_id: Optional[str] = None


class Topic(BaseModel):
    """A named cluster of opinions.

    `count` always equals the number of opinions whose topic_id is this
    topic; it is recomputed on every commit that touches the topic.
    """

    model_config = ConfigDict(from_attributes=True)

    id: Optional[str] = None
    project_id: str
    name: str
    category: Optional[str] = None
    summary: str = ""
    keywords: List[str] = Field(default_factory=list)
    count: int = 0
    status: TopicStatus = TopicStatus.UNHANDLED
    sync_status: SyncStatus = SyncStatus.PENDING
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class AnalysisState(BaseModel):
    """Per-opinion bookkeeping of the last classification."""

    model_config = ConfigDict(from_attributes=True)

    opinion_id: str
    project_id: str
    last_analyzed_at: datetime
    analysis_version: int = 1
    topic_id: Optional[str] = None
    classification_confidence: Optional[float] = None
    manual_review_flag: bool = False

    def is_stale_for(self, opinion: Opinion) -> bool:
        """True when the opinion was submitted after its last classification."""
        return self.last_analyzed_at < opinion.submitted_at


class AnalysisHistory(BaseModel):
    """Append-only record of one completed run."""

    model_config = ConfigDict(from_attributes=True)

    id: Optional[str] = None
    project_id: str
    analysis_type: AnalysisType
    opinions_processed: int = 0
    new_topics_created: int = 0
    updated_topics: int = 0
    execution_time_seconds: float = 0.0
    executed_by: str
    execution_reason: str = "manual"
    created_at: Optional[datetime] = None
    sync_status: SyncStatus = SyncStatus.PENDING


class Insight(BaseModel):
    """A cross-topic observation produced by a topic-discovery request."""

    model_config = ConfigDict(from_attributes=True)

    id: Optional[str] = None
    project_id: str
    title: str
    description: str = ""
    count: int = 0
    priority: InsightPriority = InsightPriority.MEDIUM
    status: str = "unhandled"
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Project(BaseModel):
    """Project the opinions belong to.

    A project may be addressed by its primary-store id or by the id it has
    in the mirror store (`mirror_id`).
    """

    model_config = ConfigDict(from_attributes=True)

    id: str
    mirror_id: Optional[str] = None
    user_id: str
    name: str = ""
    status: str = "collecting"
    last_analysis_at: Optional[datetime] = None
    last_analyzed_opinions_count: int = 0
    is_analyzed: bool = False
    sync_status: SyncStatus = SyncStatus.PENDING
    last_sync_at: Optional[datetime] = None

    @property
    def identifiers(self) -> List[str]:
        """All identifiers analysis state may have been written under."""
        ids = [self.id]
        if self.mirror_id and self.mirror_id != self.id:
            ids.append(self.mirror_id)
        return ids

    @property
    def mirror_key(self) -> str:
        return self.mirror_id or self.id

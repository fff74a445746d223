"""Models for opinions, topics, analysis state and run results."""

from .classification import (
    Assignment,
    ClassificationResult,
    CommitResult,
    ExistingAssignment,
    ParseResult,
    Placement,
    Reference,
    Resolution,
    RunOptions,
    RunResult,
    Structured,
    TopicProposal,
    Unstructured,
    normalize_topic_name,
)
from .entities import (
    AnalysisHistory,
    AnalysisState,
    Insight,
    Opinion,
    Project,
    Topic,
)
from .enums import (
    AnalysisType,
    AssignmentAction,
    AssignmentOrigin,
    InsightPriority,
    RunPhase,
    SyncStatus,
    TopicStatus,
)

__all__ = [
    "AnalysisHistory",
    "AnalysisState",
    "AnalysisType",
    "Assignment",
    "AssignmentAction",
    "AssignmentOrigin",
    "ClassificationResult",
    "CommitResult",
    "ExistingAssignment",
    "Insight",
    "InsightPriority",
    "Opinion",
    "ParseResult",
    "Placement",
    "Project",
    "Reference",
    "Resolution",
    "RunOptions",
    "RunPhase",
    "RunResult",
    "Structured",
    "SyncStatus",
    "Topic",
    "TopicProposal",
    "TopicStatus",
    "Unstructured",
    "normalize_topic_name",
]

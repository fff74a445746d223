"""Enums for analysis runs, topics and mirror synchronization."""

from enum import Enum


class RunPhase(str, Enum):
    """Analysis run lifecycle phase."""

    IDLE = "idle"
    PREPARING = "preparing"
    FIRST_RUN = "first_run"
    INCREMENTAL = "incremental"
    COMMITTING = "committing"
    COMPLETED = "completed"
    FAILED = "failed"


class AnalysisType(str, Enum):
    """Kind of run recorded in analysis history."""

    FULL = "full"
    INCREMENTAL = "incremental"


class TopicStatus(str, Enum):
    """Handling status of a topic. Only UNHANDLED is set by analysis runs."""

    UNHANDLED = "unhandled"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    DISMISSED = "dismissed"


class SyncStatus(str, Enum):
    """Mirror-store synchronization status of a primary-store row."""

    PENDING = "pending"
    SYNCED = "synced"
    ERROR = "error"


class AssignmentAction(str, Enum):
    """What the completion service asked for an opinion."""

    ASSIGN_TO_EXISTING = "ASSIGN_TO_EXISTING"
    CREATE_NEW_TOPIC = "CREATE_NEW_TOPIC"


class AssignmentOrigin(str, Enum):
    """Where an assignment came from."""

    MODEL = "model"
    PARSE_FAILED = "structured-parse-failed"
    SERVICE_FAILED = "completion-service-failed"
    OMITTED = "omitted-from-response"


class InsightPriority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

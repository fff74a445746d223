"""Value objects passed between the classification stages.

The completion service refers to opinions and topics by integers whose
convention is not stable across calls (1-based position, 0-based position or
a stored id). `Reference` keeps that ambiguity in one place.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import AbstractSet, Any, Dict, List, Optional, Sequence, Union

from pydantic import BaseModel, Field

from .entities import Insight, Topic
from .enums import AnalysisType, AssignmentAction, AssignmentOrigin, RunPhase

_INTEGER_RE = re.compile(r"^[#]?\s*(\d+)$")


@dataclass(frozen=True)
class Reference:
    """An identifier as written by the completion service."""

    raw: Any

    def as_int(self) -> Optional[int]:
        if isinstance(self.raw, bool):
            return None
        if isinstance(self.raw, int):
            return self.raw
        if isinstance(self.raw, float) and self.raw.is_integer():
            return int(self.raw)
        if isinstance(self.raw, str):
            match = _INTEGER_RE.match(self.raw.strip())
            if match:
                return int(match.group(1))
        return None

    def candidates(self, ids: Sequence[str]) -> List[str]:
        """Interpretations in priority order: 1-based, 0-based, literal id."""
        found = []
        number = self.as_int()
        if number is not None:
            if 1 <= number <= len(ids):
                found.append(ids[number - 1])
            if 0 <= number < len(ids):
                found.append(ids[number])
        if self.raw is not None:
            literal = str(self.raw).strip()
            for candidate in ids:
                if str(candidate) == literal:
                    found.append(candidate)
                    break
        return found

    def resolve(self, ids: Sequence[str], consumed: Optional[AbstractSet[str]] = None) -> Optional[str]:
        """Return the first interpretation that is valid and not yet consumed."""
        consumed = consumed or set()
        for candidate in self.candidates(ids):
            if candidate not in consumed:
                return candidate
        return None


@dataclass
class Assignment:
    """The classification outcome for one opinion."""

    opinion_id: str
    action: AssignmentAction
    confidence: float
    rationale: str = ""
    origin: AssignmentOrigin = AssignmentOrigin.MODEL
    topic_ref: Optional[Reference] = None
    topic_name: Optional[str] = None
    topic_summary: str = ""
    category: Optional[str] = None
    keywords: List[str] = field(default_factory=list)

    @property
    def is_fallback(self) -> bool:
        return self.origin is not AssignmentOrigin.MODEL


@dataclass
class Placement:
    """An opinion placed into a proposed topic."""

    opinion_id: str
    confidence: float
    rationale: str = ""


@dataclass
class TopicProposal:
    """A topic that does not exist yet, with the opinions it will receive."""

    name: str
    summary: str = ""
    category: Optional[str] = None
    keywords: List[str] = field(default_factory=list)
    placements: List[Placement] = field(default_factory=list)

    @property
    def normalized_name(self) -> str:
        return normalize_topic_name(self.name)

    @property
    def opinion_ids(self) -> List[str]:
        return [p.opinion_id for p in self.placements]


@dataclass
class ExistingAssignment:
    """An opinion linked to a topic that already exists in the primary store."""

    opinion_id: str
    topic_id: str
    confidence: float
    rationale: str = ""


@dataclass(frozen=True)
class Structured:
    """Parsed response payload, always a dict."""

    payload: Dict[str, Any]
    strategy: str


@dataclass(frozen=True)
class Unstructured:
    """A response no parse strategy could make sense of."""

    raw_text: str
    reason: str


ParseResult = Union[Structured, Unstructured]


@dataclass
class ClassificationResult:
    """Output of one classification request: exactly one assignment per opinion."""

    assignments: List[Assignment]
    proposals: List[TopicProposal] = field(default_factory=list)
    insights: List[Insight] = field(default_factory=list)
    outcome: str = "structured"
    summary: Optional[str] = None

    @property
    def degraded(self) -> bool:
        return self.outcome != "structured"


@dataclass
class Resolution:
    existing_assignments: List[ExistingAssignment] = field(default_factory=list)
    new_topic_proposals: List[TopicProposal] = field(default_factory=list)

    @property
    def opinion_ids(self) -> List[str]:
        ids = [a.opinion_id for a in self.existing_assignments]
        for proposal in self.new_topic_proposals:
            ids.extend(proposal.opinion_ids)
        return ids

    def is_empty(self) -> bool:
        return not self.opinion_ids


@dataclass
class CommitResult:
    """What one batch commit changed."""

    opinions_linked: int = 0
    topics_created: List[Topic] = field(default_factory=list)
    topics_updated: List[str] = field(default_factory=list)
    insights_created: int = 0
    mirror_synced: bool = False


class RunOptions(BaseModel):
    """Options accepted by a run trigger."""

    force_reanalysis: bool = False
    max_size_units: Optional[int] = Field(default=None, ge=1)
    max_count: Optional[int] = Field(default=None, ge=1)
    execution_reason: str = "manual"


class RunResult(BaseModel):
    """Outcome of a run. Counts are always reported, `error` only on failure."""

    project_id: str
    status: RunPhase
    analysis_type: Optional[AnalysisType] = None
    opinions_processed: int = 0
    new_topics_created: int = 0
    updated_topics: int = 0
    batches_total: int = 0
    batches_committed: int = 0
    execution_time_seconds: float = 0.0
    history_id: Optional[str] = None
    error: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def succeeded(self) -> bool:
        return self.status == RunPhase.COMPLETED


def normalize_topic_name(name: str) -> str:
    """Lower-cased, trimmed, inner whitespace collapsed."""
    return " ".join((name or "").lower().split())

"""Classification protocol: one completion request per batch.

Builds the request, submits it, parses the reply and converts it into exactly
one Assignment per opinion in the batch. Service failures and unusable replies
are absorbed here as low-confidence fallback assignments; `classify` never
raises.
"""

import logging
import math
from typing import Any, Dict, List, Optional, Sequence

from ..models import (
    Assignment,
    AssignmentAction,
    AssignmentOrigin,
    ClassificationResult,
    Insight,
    InsightPriority,
    Opinion,
    Reference,
    Topic,
    TopicProposal,
    Unstructured,
)
from ..prompts import build_incremental_prompt, build_topic_discovery_prompt
from .completion_client import CompletionClient
from .response_parser import parse_response
from .similarity import heuristic_topic_name

logger = logging.getLogger(__name__)

FALLBACK_CONFIDENCE = 0.4
OMITTED_CONFIDENCE = 0.3
DEFAULT_MODEL_CONFIDENCE = 0.7
FALLBACK_SUMMARY_CHARS = 120


def _first(entry: Dict[str, Any], *keys: str) -> Any:
    """First present, non-null value among keys."""
    for key in keys:
        value = entry.get(key)
        if value is not None and value != "":
            return value
    return None


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def _string_list(value: Any) -> List[str]:
    return [str(v).strip() for v in _as_list(value) if v is not None and str(v).strip()]


def _confidence(value: Any, default: float) -> float:
    """Coerce a model-reported confidence into [0, 1]; percentages are scaled."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(number):
        return default
    if 1.0 < number <= 100.0:
        number = number / 100.0
    return min(max(number, 0.0), 1.0)


def _category(value: Any) -> Optional[str]:
    """A scalar category as stripped text; lists, objects and blanks become None."""
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        return None
    return str(value).strip() or None


def _action(entry: Dict[str, Any]) -> AssignmentAction:
    raw = str(entry.get("action") or "").strip().upper()
    if raw in ("ASSIGN_TO_EXISTING", "ASSIGN", "EXISTING"):
        return AssignmentAction.ASSIGN_TO_EXISTING
    if raw in ("CREATE_NEW_TOPIC", "CREATE", "NEW"):
        return AssignmentAction.CREATE_NEW_TOPIC
    if _first(entry, "topicId", "topicIndex", "topic_id") is not None:
        return AssignmentAction.ASSIGN_TO_EXISTING
    return AssignmentAction.CREATE_NEW_TOPIC


def fallback_assignment(
    opinion: Opinion,
    origin: AssignmentOrigin,
    confidence: float = FALLBACK_CONFIDENCE,
) -> Assignment:
    """Low-confidence new-topic proposal named from the opinion's own text."""
    name, category, keywords = heuristic_topic_name(opinion.content)
    summary = " ".join(opinion.content.split())
    if len(summary) > FALLBACK_SUMMARY_CHARS:
        summary = summary[:FALLBACK_SUMMARY_CHARS].rstrip() + "..."
    return Assignment(
        opinion_id=opinion.id,
        action=AssignmentAction.CREATE_NEW_TOPIC,
        confidence=confidence,
        rationale=origin.value,
        origin=origin,
        topic_name=name,
        topic_summary=summary,
        category=category,
        keywords=keywords,
    )


class ClassificationProtocol:
    """Drives the request/response exchange for one batch at a time."""

    def __init__(self, completion_client: CompletionClient):
        self.client = completion_client

    def classify(self, batch: Sequence[Opinion], existing_topics: Sequence[Topic]) -> ClassificationResult:
        """Classify a batch in a single completion request.

        With no existing topics the topic-discovery format is used; otherwise
        the topics are listed as numbered context and the model assigns each
        opinion to one of them or proposes a new topic.
        """
        if not batch:
            return ClassificationResult(assignments=[])

        discovery = not existing_topics
        if discovery:
            prompt = build_topic_discovery_prompt(batch)
        else:
            prompt = build_incremental_prompt(batch, existing_topics)

        try:
            raw = self.client.submit(prompt)
        except Exception as e:
            logger.warning(f"Completion service failed for batch of {len(batch)}: {e}")
            return self._fallback(batch, AssignmentOrigin.SERVICE_FAILED)

        parsed = parse_response(raw)
        if isinstance(parsed, Unstructured):
            logger.warning(f"Unparseable completion response ({parsed.reason}), using fallback topics")
            return self._fallback(batch, AssignmentOrigin.PARSE_FAILED)

        payload = parsed.payload
        if isinstance(payload.get("topics"), list):
            result = self._from_topics(batch, payload)
        elif isinstance(payload.get("assignments"), list):
            result = self._from_assignments(batch, payload)
        else:
            logger.warning(f"Completion response has no topics or assignments: keys={sorted(payload)}")
            return self._fallback(batch, AssignmentOrigin.PARSE_FAILED)

        omitted = len(batch) - sum(1 for a in result.assignments if not a.is_fallback)
        if omitted:
            logger.info(f"{omitted} of {len(batch)} opinions missing from response, using fallback topics")
        return result

    def _fallback(self, batch: Sequence[Opinion], origin: AssignmentOrigin) -> ClassificationResult:
        return ClassificationResult(
            assignments=[fallback_assignment(o, origin) for o in batch],
            outcome=origin.value,
        )

    def _complete(self, batch: Sequence[Opinion], found: Dict[str, Assignment]) -> List[Assignment]:
        """Batch-ordered assignments, synthesizing one for every omitted opinion."""
        return [
            found.get(o.id) or fallback_assignment(o, AssignmentOrigin.OMITTED, OMITTED_CONFIDENCE)
            for o in batch
        ]

    def _from_topics(self, batch: Sequence[Opinion], payload: Dict[str, Any]) -> ClassificationResult:
        ids = [o.id for o in batch]
        consumed = set()
        found: Dict[str, Assignment] = {}
        proposals: List[TopicProposal] = []

        for entry in payload["topics"]:
            if not isinstance(entry, dict):
                continue
            name = str(entry.get("name") or "").strip()
            if not name:
                continue
            summary = str(entry.get("summary") or "")
            category = _category(entry.get("category"))
            keywords = _string_list(entry.get("keywords"))
            confidence = _confidence(entry.get("confidence"), DEFAULT_MODEL_CONFIDENCE)
            proposals.append(TopicProposal(name=name, summary=summary, category=category, keywords=keywords))

            for raw_ref in _as_list(_first(entry, "opinionIds", "opinions", "opinionIndexes")):
                opinion_id = Reference(raw_ref).resolve(ids, consumed)
                if opinion_id is None:
                    logger.debug(f"Topic '{name}': unusable opinion reference {raw_ref!r}")
                    continue
                consumed.add(opinion_id)
                found[opinion_id] = Assignment(
                    opinion_id=opinion_id,
                    action=AssignmentAction.CREATE_NEW_TOPIC,
                    confidence=confidence,
                    rationale=f"grouped under '{name}'",
                    topic_name=name,
                    topic_summary=summary,
                    category=category,
                    keywords=keywords,
                )

        project_id = batch[0].project_id
        return ClassificationResult(
            assignments=self._complete(batch, found),
            proposals=proposals,
            insights=self._insights(project_id, payload.get("insights")),
            summary=payload.get("summary") if isinstance(payload.get("summary"), str) else None,
        )

    def _from_assignments(self, batch: Sequence[Opinion], payload: Dict[str, Any]) -> ClassificationResult:
        ids = [o.id for o in batch]
        consumed = set()
        found: Dict[str, Assignment] = {}

        for entry in payload["assignments"]:
            if not isinstance(entry, dict):
                continue
            raw_ref = _first(entry, "opinionIndex", "opinionId", "index", "opinion")
            opinion_id = Reference(raw_ref).resolve(ids, consumed) if raw_ref is not None else None
            if opinion_id is None:
                logger.debug(f"Assignment with unusable opinion reference {raw_ref!r}")
                continue
            consumed.add(opinion_id)

            action = _action(entry)
            confidence = _confidence(entry.get("confidence"), DEFAULT_MODEL_CONFIDENCE)
            rationale = str(_first(entry, "reasoning", "rationale", "reason") or "")

            if action is AssignmentAction.ASSIGN_TO_EXISTING:
                found[opinion_id] = Assignment(
                    opinion_id=opinion_id,
                    action=action,
                    confidence=confidence,
                    rationale=rationale,
                    topic_ref=Reference(_first(entry, "topicId", "topicIndex", "topic_id")),
                )
                continue

            name = _first(entry, "suggestedName", "newTopicName", "topicName", "name")
            summary = _first(entry, "suggestedSummary", "newTopicSummary", "summary") or ""
            keywords = _string_list(entry.get("keywords"))
            category = _category(entry.get("category"))
            if not name:
                opinion = batch[ids.index(opinion_id)]
                name, category, keywords = heuristic_topic_name(opinion.content)
            found[opinion_id] = Assignment(
                opinion_id=opinion_id,
                action=action,
                confidence=confidence,
                rationale=rationale,
                topic_name=str(name).strip(),
                topic_summary=str(summary),
                category=category,
                keywords=keywords,
            )

        return ClassificationResult(assignments=self._complete(batch, found))

    def _insights(self, project_id: str, entries: Any) -> List[Insight]:
        insights = []
        for entry in _as_list(entries):
            if not isinstance(entry, dict) or not entry.get("title"):
                continue
            try:
                priority = InsightPriority(str(entry.get("priority") or "medium").lower())
            except ValueError:
                priority = InsightPriority.MEDIUM
            try:
                count = max(int(entry.get("count") or 0), 0)
            except (TypeError, ValueError):
                count = 0
            insights.append(Insight(
                project_id=project_id,
                title=str(entry["title"]).strip(),
                description=str(entry.get("description") or ""),
                count=count,
                priority=priority,
            ))
        return insights

"""Assignment Resolver: map every classified opinion to a topic.

Model assignments that reference an existing topic are resolved through
`Reference`. Everything else (fallback assignments, unusable references) goes
through similarity scoring against the existing topics and the topics the
model proposed, in a strict pass and then a permissive pass. Whatever is left
is disposed of so that every valid opinion lands in some topic and only
invalid content is quarantined.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from ..models import (
    Assignment,
    AssignmentAction,
    ExistingAssignment,
    Opinion,
    Placement,
    Resolution,
    Topic,
    TopicProposal,
    normalize_topic_name,
)
from .similarity import (
    MISC_TOPIC_CATEGORY,
    MISC_TOPIC_NAME,
    PRIMARY_THRESHOLD,
    SECONDARY_THRESHOLD,
    best_topic,
    heuristic_topic_name,
    is_valid_opinion,
    rank_topics,
)

logger = logging.getLogger(__name__)

FORCED_CONFIDENCE = 0.2
MAX_SIMILARITY_CONFIDENCE = 0.5


@dataclass
class _Candidate:
    """A topic an unresolved opinion may be matched against."""

    name: str
    keywords: List[str]
    topic_id: Optional[str] = None
    proposal: Optional[TopicProposal] = None


def similarity_confidence(score: int) -> float:
    """Confidence for a similarity match, never above 0.5."""
    return round(min(MAX_SIMILARITY_CONFIDENCE, 0.2 + score / 100.0), 2)


class AssignmentResolver:
    """Turns assignments into existing-topic links and new-topic proposals."""

    def resolve(
        self,
        assignments: Sequence[Assignment],
        opinions: Sequence[Opinion],
        existing_topics: Sequence[Topic],
        proposals: Sequence[TopicProposal] = (),
        consolidate: bool = False,
    ) -> Resolution:
        """Resolve a batch.

        Args:
            assignments: One per opinion, as produced by the protocol
            opinions: The batch
            existing_topics: Topics already stored for the project, in the
                order they were listed to the model
            proposals: Topics the model proposed, including ones it attached
                no usable opinion to; they are similarity candidates
            consolidate: Attach valid leftovers to a candidate topic instead
                of keeping their own fallback proposal (topic-discovery batches)
        """
        by_id = {o.id: o for o in opinions}
        topic_ids = [t.id for t in existing_topics]
        existing: List[ExistingAssignment] = []
        buckets: Dict[str, TopicProposal] = {}
        unresolved: List[Assignment] = []
        seen = set()

        for assignment in assignments:
            if assignment.opinion_id not in by_id or assignment.opinion_id in seen:
                logger.debug(f"Skipping assignment for unknown or repeated opinion {assignment.opinion_id}")
                continue
            seen.add(assignment.opinion_id)

            if assignment.is_fallback:
                unresolved.append(assignment)
            elif assignment.action is AssignmentAction.ASSIGN_TO_EXISTING:
                topic_id = assignment.topic_ref.resolve(topic_ids) if assignment.topic_ref else None
                if topic_id is None:
                    logger.info(
                        f"Opinion {assignment.opinion_id}: topic reference "
                        f"{assignment.topic_ref.raw if assignment.topic_ref else None!r} did not resolve"
                    )
                    unresolved.append(assignment)
                else:
                    existing.append(ExistingAssignment(
                        opinion_id=assignment.opinion_id,
                        topic_id=topic_id,
                        confidence=assignment.confidence,
                        rationale=assignment.rationale,
                    ))
            elif assignment.topic_name:
                self._bucket(buckets, assignment.topic_name, assignment.topic_summary,
                             assignment.category, assignment.keywords).placements.append(
                    Placement(assignment.opinion_id, assignment.confidence, assignment.rationale)
                )
            else:
                unresolved.append(assignment)

        for proposal in proposals:
            self._bucket(buckets, proposal.name, proposal.summary, proposal.category, proposal.keywords)

        candidates = self._candidates(existing_topics, buckets)

        for threshold in (PRIMARY_THRESHOLD, SECONDARY_THRESHOLD):
            remaining = []
            for assignment in unresolved:
                ranked = rank_topics(by_id[assignment.opinion_id].content,
                                     [(c.name, c.keywords) for c in candidates])
                if ranked and ranked[0].score >= threshold:
                    self._place(assignment, candidates[ranked[0].index], ranked[0].score, existing)
                else:
                    remaining.append(assignment)
            unresolved = remaining

        for assignment in unresolved:
            opinion = by_id[assignment.opinion_id]
            if not is_valid_opinion(opinion.content):
                misc = self._bucket(buckets, MISC_TOPIC_NAME, "Submissions too short, too long or without content",
                                    MISC_TOPIC_CATEGORY, ["miscellaneous"])
                misc.placements.append(Placement(opinion.id, FORCED_CONFIDENCE, "invalid-content"))
            elif assignment.topic_name and not (consolidate and candidates):
                self._bucket(buckets, assignment.topic_name, assignment.topic_summary,
                             assignment.category, assignment.keywords).placements.append(
                    Placement(opinion.id, assignment.confidence, assignment.rationale)
                )
            elif candidates:
                best = best_topic(opinion.content, [(c.name, c.keywords) for c in candidates])
                self._place(assignment, candidates[best.index], best.score, existing, forced=True)
            else:
                name, category, keywords = heuristic_topic_name(opinion.content)
                self._bucket(buckets, name, "", category, keywords).placements.append(
                    Placement(opinion.id, FORCED_CONFIDENCE, assignment.rationale or "unresolved")
                )

        return self._finalize(existing, buckets, existing_topics)

    def _bucket(
        self,
        buckets: Dict[str, TopicProposal],
        name: str,
        summary: str,
        category: Optional[str],
        keywords: Sequence[str],
    ) -> TopicProposal:
        """Proposal for a normalized name, created on first use."""
        key = normalize_topic_name(name)
        proposal = buckets.get(key)
        if proposal is None:
            proposal = TopicProposal(name=name.strip(), summary=summary or "", category=category,
                                     keywords=list(keywords))
            buckets[key] = proposal
        else:
            if not proposal.summary and summary:
                proposal.summary = summary
            if not proposal.category and category:
                proposal.category = category
            for keyword in keywords:
                if keyword not in proposal.keywords:
                    proposal.keywords.append(keyword)
        return proposal

    def _candidates(self, existing_topics: Sequence[Topic], buckets: Dict[str, TopicProposal]) -> List[_Candidate]:
        misc_key = normalize_topic_name(MISC_TOPIC_NAME)
        candidates = [
            _Candidate(name=t.name, keywords=list(t.keywords), topic_id=t.id)
            for t in existing_topics
            if normalize_topic_name(t.name) != misc_key
        ]
        existing_names = {normalize_topic_name(t.name) for t in existing_topics}
        for key, proposal in buckets.items():
            if key == misc_key or key in existing_names:
                continue
            candidates.append(_Candidate(name=proposal.name, keywords=proposal.keywords, proposal=proposal))
        return candidates

    def _place(
        self,
        assignment: Assignment,
        candidate: _Candidate,
        score: int,
        existing: List[ExistingAssignment],
        forced: bool = False,
    ) -> None:
        confidence = FORCED_CONFIDENCE if forced else similarity_confidence(score)
        prefix = f"{assignment.rationale}; " if assignment.rationale else ""
        rationale = f"{prefix}{'forced' if forced else 'similarity'} match to '{candidate.name}' (score {score})"
        if candidate.topic_id is not None:
            existing.append(ExistingAssignment(
                opinion_id=assignment.opinion_id,
                topic_id=candidate.topic_id,
                confidence=confidence,
                rationale=rationale,
            ))
        else:
            candidate.proposal.placements.append(Placement(assignment.opinion_id, confidence, rationale))

    def _finalize(
        self,
        existing: List[ExistingAssignment],
        buckets: Dict[str, TopicProposal],
        existing_topics: Sequence[Topic],
    ) -> Resolution:
        """Drop empty proposals and fold name collisions into existing topics."""
        by_name = {normalize_topic_name(t.name): t for t in existing_topics}
        proposals = []
        for key, proposal in buckets.items():
            if not proposal.placements:
                continue
            topic = by_name.get(key)
            if topic is not None:
                existing.extend(
                    ExistingAssignment(p.opinion_id, topic.id, p.confidence, p.rationale)
                    for p in proposal.placements
                )
                continue
            proposals.append(proposal)

        logger.debug(
            f"Resolved {len(existing)} existing-topic assignments and "
            f"{len(proposals)} new-topic proposals"
        )
        return Resolution(existing_assignments=existing, new_topic_proposals=proposals)

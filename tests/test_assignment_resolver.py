"""
Assignment Resolver Tests

Reference resolution, similarity fallback, quarantine of invalid content and
the guarantee that every opinion ends up in exactly one place.
Run with: pytest tests/test_assignment_resolver.py -v
"""

import pytest

from opinion_topics.models import (
    Assignment,
    AssignmentAction,
    AssignmentOrigin,
    Reference,
    Topic,
    TopicProposal,
)
from opinion_topics.services.assignment_resolver import (
    FORCED_CONFIDENCE,
    AssignmentResolver,
    similarity_confidence,
)
from opinion_topics.services.classification_protocol import fallback_assignment
from opinion_topics.services.similarity import MISC_TOPIC_NAME
from tests.fakes import make_opinions


@pytest.fixture
def resolver():
    return AssignmentResolver()


@pytest.fixture
def topics():
    return [
        Topic(id="t-billing", project_id="proj-1", name="Billing", keywords=["fee", "cost"]),
        Topic(id="t-speed", project_id="proj-1", name="Performance", keywords=["slow"]),
    ]


def assign(opinion_id, ref, confidence=0.9):
    return Assignment(
        opinion_id=opinion_id,
        action=AssignmentAction.ASSIGN_TO_EXISTING,
        confidence=confidence,
        topic_ref=Reference(ref),
    )


def create(opinion_id, name, confidence=0.8):
    return Assignment(
        opinion_id=opinion_id,
        action=AssignmentAction.CREATE_NEW_TOPIC,
        confidence=confidence,
        topic_name=name,
    )


def placed_ids(resolution):
    return sorted(resolution.opinion_ids)


class TestExistingReferences:
    """Tests for ASSIGN_TO_EXISTING resolution."""

    def test_one_based_reference(self, resolver, topics):
        opinions = make_opinions("proj-1", ["The fee is too high"])
        resolution = resolver.resolve([assign("op-1", 1)], opinions, topics)

        (link,) = resolution.existing_assignments
        assert link.topic_id == "t-billing"
        assert link.confidence == 0.9
        assert resolution.new_topic_proposals == []

    def test_stored_id_reference(self, resolver, topics):
        opinions = make_opinions("proj-1", ["It is slow"])
        resolution = resolver.resolve([assign("op-1", "t-speed")], opinions, topics)

        assert resolution.existing_assignments[0].topic_id == "t-speed"

    def test_unresolvable_reference_falls_back_to_similarity(self, resolver, topics):
        opinions = make_opinions("proj-1", ["The fee is too high"])
        resolution = resolver.resolve([assign("op-1", 99)], opinions, topics)

        (link,) = resolution.existing_assignments
        assert link.topic_id == "t-billing"
        # keyword "fee" (8) plus the pricing concept bonus (5)
        assert link.confidence == similarity_confidence(13)
        assert "similarity match to 'Billing'" in link.rationale


class TestNewTopics:
    """Tests for CREATE_NEW_TOPIC bucketing."""

    def test_same_normalized_name_shares_one_proposal(self, resolver, topics):
        opinions = make_opinions("proj-1", ["Startup is sluggish", "Boot takes ages"])
        resolution = resolver.resolve(
            [create("op-1", "Slow Startup"), create("op-2", "  slow   startup ")],
            opinions,
            topics,
        )

        (proposal,) = resolution.new_topic_proposals
        assert proposal.name == "Slow Startup"
        assert proposal.opinion_ids == ["op-1", "op-2"]

    def test_name_collision_links_to_existing_topic(self, resolver, topics):
        opinions = make_opinions("proj-1", ["Charged twice"])
        resolution = resolver.resolve([create("op-1", "billing")], opinions, topics)

        assert resolution.new_topic_proposals == []
        assert resolution.existing_assignments[0].topic_id == "t-billing"

    def test_unused_proposals_are_dropped(self, resolver):
        opinions = make_opinions("proj-1", ["The fee is too high"])
        resolution = resolver.resolve(
            [create("op-1", "Fees")],
            opinions,
            [],
            proposals=[TopicProposal(name="Fees"), TopicProposal(name="Never used")],
        )

        assert [p.name for p in resolution.new_topic_proposals] == ["Fees"]

    def test_omitted_opinion_matches_model_proposal(self, resolver):
        opinions = make_opinions("proj-1", ["The app is slow", "Checkout takes forever to load"])
        assignments = [
            create("op-1", "[Performance] Slowness"),
            fallback_assignment(opinions[1], AssignmentOrigin.OMITTED, 0.3),
        ]
        resolution = resolver.resolve(
            assignments,
            opinions,
            [],
            proposals=[TopicProposal(name="[Performance] Slowness", keywords=["slow"])],
        )

        (proposal,) = resolution.new_topic_proposals
        assert proposal.opinion_ids == ["op-1", "op-2"]
        assert proposal.placements[1].confidence == similarity_confidence(5)


class TestFallbackDisposition:
    """Tests for opinions no pass could place."""

    def test_service_failure_lands_in_matching_topic(self, resolver, topics):
        opinions = make_opinions("proj-1", ["the fee is too high"])
        assignments = [fallback_assignment(opinions[0], AssignmentOrigin.SERVICE_FAILED)]
        resolution = resolver.resolve(assignments, opinions, topics)

        (link,) = resolution.existing_assignments
        assert link.topic_id == "t-billing"
        assert link.confidence <= 0.5

    def test_invalid_content_is_quarantined(self, resolver, topics):
        opinions = make_opinions("proj-1", ["!!!!!!!!!!!!"])
        assignments = [fallback_assignment(opinions[0], AssignmentOrigin.PARSE_FAILED)]
        resolution = resolver.resolve(assignments, opinions, topics)

        (proposal,) = resolution.new_topic_proposals
        assert proposal.name == MISC_TOPIC_NAME
        assert proposal.placements[0].confidence == FORCED_CONFIDENCE

    def test_invalid_content_joins_stored_misc_topic(self, resolver, topics):
        misc = Topic(id="t-misc", project_id="proj-1", name=MISC_TOPIC_NAME)
        opinions = make_opinions("proj-1", ["x"])
        assignments = [fallback_assignment(opinions[0], AssignmentOrigin.PARSE_FAILED)]
        resolution = resolver.resolve(assignments, opinions, topics + [misc])

        assert resolution.existing_assignments[0].topic_id == "t-misc"

    def test_valid_unmatched_opinion_keeps_own_topic(self, resolver, topics):
        opinions = make_opinions("proj-1", ["Parking at the office is terrible"])
        assignments = [fallback_assignment(opinions[0], AssignmentOrigin.PARSE_FAILED)]
        resolution = resolver.resolve(assignments, opinions, topics)

        (proposal,) = resolution.new_topic_proposals
        assert proposal.name == "[Environment] Parking at the office is terrible"
        assert proposal.placements[0].confidence == 0.4

    def test_misc_topic_is_never_a_similarity_candidate(self, resolver):
        misc = Topic(id="t-misc", project_id="proj-1", name=MISC_TOPIC_NAME, keywords=["fee"])
        opinions = make_opinions("proj-1", ["The fee is too high"])
        assignments = [fallback_assignment(opinions[0], AssignmentOrigin.PARSE_FAILED)]
        resolution = resolver.resolve(assignments, opinions, [misc])

        assert resolution.existing_assignments == []
        assert resolution.new_topic_proposals[0].name == "[Pricing] The fee is too high"

    def test_consolidate_forces_onto_best_candidate(self, resolver):
        opinions = make_opinions("proj-1", ["The app is slow", "Parking at the office is terrible"])
        assignments = [
            create("op-1", "[Performance] Slowness"),
            fallback_assignment(opinions[1], AssignmentOrigin.OMITTED, 0.3),
        ]
        resolution = resolver.resolve(
            assignments,
            opinions,
            [],
            proposals=[TopicProposal(name="[Performance] Slowness")],
            consolidate=True,
        )

        (proposal,) = resolution.new_topic_proposals
        assert proposal.opinion_ids == ["op-1", "op-2"]
        forced = proposal.placements[1]
        assert forced.confidence == FORCED_CONFIDENCE
        assert "forced match" in forced.rationale

    def test_forced_placement_prefers_first_listed_topic_on_tie(self, resolver, topics):
        opinions = make_opinions("proj-1", ["Parking at the office is terrible"])
        assignments = [fallback_assignment(opinions[0], AssignmentOrigin.OMITTED, 0.3)]
        resolution = resolver.resolve(assignments, opinions, topics, consolidate=True)

        assert resolution.new_topic_proposals == []
        (placed,) = resolution.existing_assignments
        assert placed.topic_id == "t-billing"
        assert placed.confidence == FORCED_CONFIDENCE
        assert "forced match to 'Billing' (score 0)" in placed.rationale

    def test_no_candidates_and_no_proposal_names_from_text(self, resolver):
        opinions = make_opinions("proj-1", ["The fee is too high"])
        resolution = resolver.resolve([assign("op-1", 3)], opinions, [])

        (proposal,) = resolution.new_topic_proposals
        assert proposal.name == "[Pricing] The fee is too high"
        assert proposal.placements[0].confidence == FORCED_CONFIDENCE


class TestCoverage:
    """Every opinion of the batch is placed exactly once."""

    def test_every_opinion_placed_once(self, resolver, topics):
        opinions = make_opinions("proj-1", [
            "The fee is too high",
            "It is slow",
            "zzzzzzzzzzzzzz",
            "Parking at the office is terrible",
            "New dark mode please",
        ])
        assignments = [
            assign("op-1", 1),
            assign("op-2", 42),
            fallback_assignment(opinions[2], AssignmentOrigin.PARSE_FAILED),
            fallback_assignment(opinions[3], AssignmentOrigin.OMITTED, 0.3),
            create("op-5", "Dark mode"),
        ]
        resolution = resolver.resolve(assignments, opinions, topics)

        assert placed_ids(resolution) == ["op-1", "op-2", "op-3", "op-4", "op-5"]

    def test_repeated_and_unknown_assignments_are_ignored(self, resolver, topics):
        opinions = make_opinions("proj-1", ["The fee is too high"])
        resolution = resolver.resolve(
            [assign("op-1", 1), assign("op-1", 2), assign("op-404", 1)],
            opinions,
            topics,
        )

        assert placed_ids(resolution) == ["op-1"]
        assert resolution.existing_assignments[0].topic_id == "t-billing"

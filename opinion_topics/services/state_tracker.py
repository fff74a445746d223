"""State Tracker: which opinions still need classification."""

import logging
from typing import Dict, List

from ..db.storage import AnalysisStorage
from ..exceptions import StorageError
from ..models import AnalysisState, Opinion, Project, Topic
from .similarity import derive_keywords

logger = logging.getLogger(__name__)


class StateTracker:
    """Reads opinions, analysis state and topics for a project."""

    def __init__(self, storage: AnalysisStorage):
        self.storage = storage

    def analysis_states(self, project: Project) -> Dict[str, AnalysisState]:
        """State rows under either project identifier, one per opinion.

        When the same opinion has rows under both identifiers the most
        recently analyzed one wins. A failed read is treated as no state at
        all, so nothing is silently skipped.
        """
        try:
            rows = self.storage.list_analysis_states(project.identifiers)
        except StorageError as e:
            logger.warning(f"Could not load analysis state for project {project.id}, treating all as unanalyzed: {e}")
            return {}

        states: Dict[str, AnalysisState] = {}
        for row in rows:
            current = states.get(row.opinion_id)
            if current is None or row.last_analyzed_at > current.last_analyzed_at:
                states[row.opinion_id] = row
        return states

    def unanalyzed(self, project: Project, force: bool = False) -> List[Opinion]:
        """Opinions with no state or a stale one, in submission order.

        With `force` every opinion of the project is returned.
        """
        opinions = self.storage.list_opinions(project.id)
        if force:
            logger.info(f"Forced re-analysis of {len(opinions)} opinions for project {project.id}")
            return opinions

        states = self.analysis_states(project)
        pending = []
        for opinion in opinions:
            state = states.get(opinion.id)
            if state is None or state.is_stale_for(opinion):
                pending.append(opinion)

        logger.info(f"Project {project.id}: {len(pending)} of {len(opinions)} opinions unanalyzed")
        return pending

    def existing_topics(self, project: Project) -> List[Topic]:
        """Stored topics, largest first, with keywords derived where none are stored."""
        topics = self.storage.list_topics(project.id)
        return [
            t if t.keywords else t.model_copy(update={"keywords": derive_keywords(t.name, t.summary)})
            for t in topics
        ]

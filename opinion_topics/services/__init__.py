"""
Analysis services

Stages of an analysis run, leaves first: state tracking, batch packing,
the classification protocol, assignment resolution, persistence and the
run orchestrator that sequences them.
"""

from .assignment_resolver import AssignmentResolver
from .batch_builder import BatchBudget, estimate_size, pack
from .classification_protocol import ClassificationProtocol
from .completion_client import CompletionClient, OpenAICompletionClient
from .mirror import DisabledMirrorStore, MirrorStore, RestMirrorStore, build_mirror_store
from .mirror_sync import MirrorSync, ProgressReporter
from .orchestrator import InvalidTransitionError, RunOrchestrator
from .persistence import PersistenceCoordinator
from .response_parser import parse_response
from .state_tracker import StateTracker

__all__ = [
    "AssignmentResolver",
    "BatchBudget",
    "ClassificationProtocol",
    "CompletionClient",
    "DisabledMirrorStore",
    "InvalidTransitionError",
    "MirrorStore",
    "MirrorSync",
    "OpenAICompletionClient",
    "PersistenceCoordinator",
    "ProgressReporter",
    "RestMirrorStore",
    "RunOrchestrator",
    "StateTracker",
    "build_mirror_store",
    "estimate_size",
    "pack",
    "parse_response",
]

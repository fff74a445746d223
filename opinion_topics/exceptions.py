"""Exception hierarchy for analysis runs.

Completion and parse errors are absorbed by the classification protocol and
never reach the orchestrator. Storage errors fail the current batch.
Not-found and precondition errors fail the run before anything is written.
"""


class AnalysisError(Exception):
    """Base class for errors raised by the analysis engine."""

    pass


class ProjectNotFoundError(AnalysisError):
    """Raised when the requested project does not exist."""

    def __init__(self, project_id: str):
        self.project_id = project_id
        super().__init__(f"Project not found: {project_id}")


class PreconditionError(AnalysisError):
    """Raised when a run cannot start (e.g. the project has no opinions)."""

    pass


class StorageError(AnalysisError):
    """Raised when a primary-store transaction fails and is rolled back."""

    pass


class CompletionServiceError(AnalysisError):
    """Raised by a completion client on timeout, transport error or empty reply."""

    pass


class MirrorSyncError(AnalysisError):
    """Raised when a write to the mirror store fails."""

    def __init__(self, message: str, paths=None):
        self.paths = list(paths or [])
        super().__init__(message)

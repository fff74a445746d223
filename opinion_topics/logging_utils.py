"""Console logging for analysis runs.

Records are tagged with the project under analysis so interleaved output from
`analyze` and `sync` stays attributable. The console handler drops writes to
a closed or broken stream, which happens when a run is piped into `head` or
outlives its terminal.
"""
import contextlib
import contextvars
import logging
import sys

PACKAGE_LOGGER = "opinion_topics"
LOG_FORMAT = "%(asctime)s %(levelname)s [%(project)s] %(name)s: %(message)s"
NO_PROJECT = "-"

# Client libraries that log every HTTP request at INFO
CHATTY_LOGGERS = ("httpx", "openai", "urllib3")

_current_project = contextvars.ContextVar("current_project", default=NO_PROJECT)


@contextlib.contextmanager
def project_context(project_id: str):
    """Tag every record logged inside the block with project_id."""
    token = _current_project.set(project_id or NO_PROJECT)
    try:
        yield
    finally:
        _current_project.reset(token)


class ProjectFilter(logging.Filter):
    """Sets `record.project` unless the caller passed one via `extra`."""

    def filter(self, record):
        if not hasattr(record, "project"):
            record.project = _current_project.get()
        return True


class RunConsoleHandler(logging.StreamHandler):
    """Stream handler for CLI runs; a vanished console is not an error."""

    def __init__(self, stream=None):
        super().__init__(stream)
        self.addFilter(ProjectFilter())
        self.setFormatter(logging.Formatter(LOG_FORMAT))

    def handleError(self, record):
        # BrokenPipeError when stdout is closed, ValueError on a closed file
        if isinstance(sys.exc_info()[1], (BrokenPipeError, ValueError)):
            return
        super().handleError(record)


def configure_logging(verbose: bool = False, stream=None, quiet=CHATTY_LOGGERS) -> RunConsoleHandler:
    """Install the console handler on the root logger.

    Calling it again reuses the installed handler and only adjusts levels.

    Args:
        verbose: DEBUG for this package's loggers; INFO otherwise
        stream: Output stream (default: stderr)
        quiet: Loggers held at WARNING regardless of verbosity
    """
    level = logging.DEBUG if verbose else logging.INFO
    root = logging.getLogger()

    handler = next((h for h in root.handlers if isinstance(h, RunConsoleHandler)), None)
    if handler is None:
        handler = RunConsoleHandler(stream)
        root.addHandler(handler)
    handler.setLevel(level)

    # The OpenAI SDK may raise the root level during import.
    if root.level == logging.NOTSET or root.level > logging.INFO:
        root.setLevel(logging.INFO)
    logging.getLogger(PACKAGE_LOGGER).setLevel(level)

    for name in quiet:
        logging.getLogger(name).setLevel(logging.WARNING)
    return handler

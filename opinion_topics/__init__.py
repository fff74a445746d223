"""Incremental opinion classification engine.

Groups free-text opinions submitted against a project into topics using an
LLM completion service, re-running as new opinions arrive without
re-processing opinions that are already classified.
"""

__version__ = "0.1.0"

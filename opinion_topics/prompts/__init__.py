"""Prompt templates for classification requests."""

from .classification import (
    CLASSIFICATION_SYSTEM_PROMPT,
    build_incremental_prompt,
    build_topic_discovery_prompt,
)

__all__ = [
    "CLASSIFICATION_SYSTEM_PROMPT",
    "build_incremental_prompt",
    "build_topic_discovery_prompt",
]

"""
Opinion Classification Prompts

Two request formats share one system prompt:
- topic discovery: the project has no topics yet; the model proposes topics
  and lists which numbered opinions belong to each
- incremental: existing topics are listed as context; the model assigns each
  numbered opinion to one of them or proposes a new topic
"""

from typing import List, Sequence

from ..models import Opinion, Topic

CLASSIFICATION_SYSTEM_PROMPT = """You are an analyst grouping free-text opinions into topics.
Respond with valid JSON only (no markdown, no explanation)."""

MAX_OPINION_CHARS = 1000
MAX_SUMMARY_CHARS = 200


TOPIC_DISCOVERY_TEMPLATE = """Group the following {count} opinions into topics.

## Opinions
{opinions}

## Rules
- Every opinion number must appear in exactly one topic's "opinionIds".
- Use the opinion numbers shown above (1 to {count}).
- Prefix each topic name with its category in square brackets, e.g. "[Pricing] Fees too high".
- Prefer a few broad topics over many narrow ones.

Output ONLY valid JSON with this exact structure:
{{
  "topics": [
    {{
      "category": "Pricing",
      "name": "[Pricing] short topic name",
      "summary": "one or two sentences",
      "keywords": ["keyword1", "keyword2"],
      "opinionIds": [1, 2]
    }}
  ],
  "insights": [
    {{"title": "...", "description": "...", "priority": "high|medium|low", "count": 2}}
  ],
  "summary": "one paragraph overview"
}}
"""


INCREMENTAL_TEMPLATE = """Classify {count} new opinions against the existing topics.

## Existing topics
{topics}

## New opinions
{opinions}

## Rules
- Return exactly one entry per opinion number (1 to {count}).
- Use ASSIGN_TO_EXISTING with "topicId" set to the topic number shown above when an existing topic fits.
- Use CREATE_NEW_TOPIC with "suggestedName" and "suggestedSummary" only when no existing topic fits.
- "confidence" is a number between 0 and 1.

Output ONLY valid JSON with this exact structure:
{{
  "assignments": [
    {{"opinionIndex": 1, "action": "ASSIGN_TO_EXISTING", "topicId": 2, "confidence": 0.85, "reasoning": "..."}},
    {{"opinionIndex": 2, "action": "CREATE_NEW_TOPIC", "suggestedName": "[Category] name", "suggestedSummary": "...", "confidence": 0.7, "reasoning": "..."}}
  ]
}}
"""


def _clip(text: str, limit: int) -> str:
    text = " ".join((text or "").split())
    if len(text) > limit:
        return text[:limit].rstrip() + "..."
    return text


def format_opinions(opinions: Sequence[Opinion]) -> str:
    """Numbered listing, 1-based."""
    return "\n".join(
        f"{i}. {_clip(opinion.content, MAX_OPINION_CHARS)}"
        for i, opinion in enumerate(opinions, start=1)
    )


def format_topics(topics: Sequence[Topic]) -> str:
    """Numbered listing of name, summary and count, 1-based."""
    lines: List[str] = []
    for i, topic in enumerate(topics, start=1):
        line = f"{i}. {topic.name} ({topic.count} opinions)"
        if topic.summary:
            line += f" - {_clip(topic.summary, MAX_SUMMARY_CHARS)}"
        lines.append(line)
    return "\n".join(lines)


def build_topic_discovery_prompt(opinions: Sequence[Opinion]) -> str:
    return TOPIC_DISCOVERY_TEMPLATE.format(
        count=len(opinions),
        opinions=format_opinions(opinions),
    )


def build_incremental_prompt(opinions: Sequence[Opinion], topics: Sequence[Topic]) -> str:
    return INCREMENTAL_TEMPLATE.format(
        count=len(opinions),
        topics=format_topics(topics),
        opinions=format_opinions(opinions),
    )

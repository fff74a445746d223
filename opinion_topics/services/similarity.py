"""Pure scoring and text heuristics used when the model's answer is unusable.

Every function here takes its inputs explicitly and returns a value; there is
no module-level mutable state, so scores can be unit tested directly.
"""

import re
from dataclasses import dataclass
from typing import List, Optional, Sequence, Set, Tuple

NAME_TOKEN_WEIGHT = 10
KEYWORD_WEIGHT = 8
CONCEPT_CLUSTER_BONUS = 5
EXPRESSION_GROUP_BONUS = 3

PRIMARY_THRESHOLD = 5
SECONDARY_THRESHOLD = 3

MIN_OPINION_LENGTH = 2
MAX_OPINION_LENGTH = 1000

MISC_TOPIC_NAME = "[Other] Miscellaneous / invalid submissions"
MISC_TOPIC_CATEGORY = "Other"

_WORD_RE = re.compile(r"\w+", re.UNICODE)
_REPEATED_CHAR_RE = re.compile(r"(.)\1{9,}", re.DOTALL)
_CATEGORY_PREFIX_RE = re.compile(r"^\s*\[[^\]]*\]\s*")

STOP_WORDS = frozenset({
    "a", "an", "and", "are", "as", "at", "be", "but", "by", "for", "from",
    "has", "have", "i", "in", "is", "it", "its", "me", "my", "of", "on", "or",
    "so", "that", "the", "their", "there", "this", "to", "too", "very", "was",
    "we", "were", "with", "you", "your", "our", "not", "no", "can", "do",
    "does", "will", "would", "should", "could", "about", "all", "more", "some",
})

# Terms that denote the same underlying concern.
CONCEPT_CLUSTERS = {
    "pricing": (
        "cost", "costs", "price", "prices", "pricing", "fee", "fees", "billing",
        "bill", "charge", "charged", "expensive", "cheap", "payment", "refund",
        "subscription", "invoice", "money",
    ),
    "performance": (
        "slow", "fast", "latency", "speed", "lag", "laggy", "loading", "load",
        "performance", "freeze", "freezes", "timeout", "responsive", "wait",
    ),
    "usability": (
        "ui", "ux", "interface", "design", "layout", "button", "screen", "menu",
        "navigation", "usability", "confusing", "intuitive", "font", "color",
    ),
    "support": (
        "support", "help", "staff", "service", "reply", "response", "agent",
        "helpdesk", "contact", "answer",
    ),
    "features": (
        "feature", "features", "function", "functionality", "option", "options",
        "capability", "integration", "export", "import", "setting", "settings",
    ),
    "reliability": (
        "bug", "bugs", "error", "errors", "crash", "crashes", "broken", "fail",
        "fails", "failure", "outage", "glitch", "down",
    ),
}

# Near-synonym phrasings of the same complaint or request.
EXPRESSION_GROUPS = (
    ("too expensive", "overpriced", "costly", "too much money", "rip off"),
    ("hard to use", "difficult", "confusing", "complicated", "not intuitive"),
    ("takes forever", "too long", "waiting", "slow to", "takes ages"),
    ("would like", "wish", "please add", "should have", "it would be nice"),
    ("doesn't work", "does not work", "not working", "stopped working", "broken"),
    ("love", "great", "excellent", "awesome", "amazing"),
)

# Category vocabularies for naming a topic from an opinion's own text.
CATEGORY_KEYWORDS = (
    ("Pricing", ("price", "pricing", "cost", "fee", "expensive", "cheap", "billing", "payment", "subscription", "refund")),
    ("Performance", ("slow", "fast", "speed", "lag", "loading", "latency", "performance", "freeze", "timeout")),
    ("Reliability", ("bug", "error", "crash", "broken", "fail", "glitch", "outage", "not working")),
    ("Usability", ("ui", "ux", "interface", "design", "layout", "confusing", "intuitive", "easy", "hard to use", "navigation")),
    ("Support", ("support", "help", "staff", "service", "reply", "response", "agent", "contact")),
    ("Features", ("feature", "function", "option", "integration", "export", "import", "add", "wish", "request")),
    ("Environment", ("noise", "clean", "temperature", "parking", "facility", "room", "building", "location")),
    ("Communication", ("email", "notification", "message", "newsletter", "announcement", "information", "update")),
)


@dataclass(frozen=True)
class ScoredTopic:
    """A candidate and the score an opinion reached against it."""

    index: int
    score: int


def tokenize(text: str) -> List[str]:
    """Lower-cased word tokens longer than one character, stop words dropped."""
    return [
        token for token in _WORD_RE.findall((text or "").lower())
        if len(token) > 1 and token not in STOP_WORDS
    ]


def derive_keywords(name: str, summary: str = "", limit: int = 5) -> List[str]:
    """Keywords for a topic that has none stored: first unique tokens of name and summary."""
    keywords: List[str] = []
    for token in tokenize(f"{strip_category_prefix(name)} {summary}"):
        if token not in keywords:
            keywords.append(token)
        if len(keywords) >= limit:
            break
    return keywords


def strip_category_prefix(name: str) -> str:
    """'[Pricing] Fees too high' -> 'Fees too high'."""
    return _CATEGORY_PREFIX_RE.sub("", name or "")


def _contains_term(text: str, words: Set[str], term: str) -> bool:
    """Whole-word match for single words (plural forms allowed), substring for phrases."""
    term = term.lower().strip()
    if not term:
        return False
    if " " in term or "'" in term:
        return term in text
    return term in words or f"{term}s" in words or f"{term}es" in words


def concept_bonus(label: str, text: str) -> int:
    """Bonus when the topic label and the opinion share a concept.

    A shared concept cluster is worth CONCEPT_CLUSTER_BONUS; failing that, a
    shared expression group is worth EXPRESSION_GROUP_BONUS.
    """
    label_lower = (label or "").lower()
    text_lower = (text or "").lower()
    label_words = set(_WORD_RE.findall(label_lower))
    text_words = set(_WORD_RE.findall(text_lower))

    for terms in CONCEPT_CLUSTERS.values():
        in_label = any(_contains_term(label_lower, label_words, t) for t in terms)
        if in_label and any(_contains_term(text_lower, text_words, t) for t in terms):
            return CONCEPT_CLUSTER_BONUS

    for phrases in EXPRESSION_GROUPS:
        in_label = any(p in label_lower for p in phrases)
        if in_label and any(p in text_lower for p in phrases):
            return EXPRESSION_GROUP_BONUS

    return 0


def score_topic_match(text: str, name: str, keywords: Sequence[str] = ()) -> int:
    """Similarity of an opinion to a topic.

    +10 per topic-name token appearing as a whole word in the opinion,
    +8 per topic keyword found in the opinion, plus the concept bonus.
    """
    text_lower = (text or "").lower()
    text_words = set(_WORD_RE.findall(text_lower))

    score = 0
    for token in set(tokenize(strip_category_prefix(name))):
        if token in text_words:
            score += NAME_TOKEN_WEIGHT

    for keyword in {k.lower().strip() for k in keywords if k and len(k.strip()) > 1}:
        if keyword in text_lower:
            score += KEYWORD_WEIGHT

    label = " ".join([name or ""] + list(keywords))
    score += concept_bonus(label, text_lower)
    return score


def rank_topics(text: str, topics: Sequence[Tuple[str, Sequence[str]]]) -> List[ScoredTopic]:
    """Score every (name, keywords) candidate, best first, ties by position."""
    scored = [
        ScoredTopic(index=i, score=score_topic_match(text, name, keywords))
        for i, (name, keywords) in enumerate(topics)
    ]
    return sorted(scored, key=lambda s: (-s.score, s.index))


def best_topic(text: str, topics: Sequence[Tuple[str, Sequence[str]]]) -> Optional[ScoredTopic]:
    ranked = rank_topics(text, topics)
    return ranked[0] if ranked else None


def is_valid_opinion(text: Optional[str]) -> bool:
    """Minimal quality gate for opinion text.

    Invalid: trimmed length under 2 or over 1000 characters, a single
    character repeated 10 or more times, or fewer than 2 distinct
    non-whitespace characters.
    """
    trimmed = (text or "").strip()
    if len(trimmed) < MIN_OPINION_LENGTH or len(trimmed) > MAX_OPINION_LENGTH:
        return False
    if _REPEATED_CHAR_RE.fullmatch(trimmed):
        return False
    if len({c for c in trimmed if not c.isspace()}) < 2:
        return False
    return True


def categorize(text: str) -> Tuple[str, List[str]]:
    """Category whose vocabulary the text matches first, with the matched terms."""
    text_lower = (text or "").lower()
    words = set(_WORD_RE.findall(text_lower))
    for category, terms in CATEGORY_KEYWORDS:
        matched = [t for t in terms if _contains_term(text_lower, words, t)]
        if matched:
            return category, matched[:5]
    return "Other", []


def heuristic_topic_name(text: str, max_words: int = 6, max_chars: int = 40) -> Tuple[str, str, List[str]]:
    """Name a topic from an opinion's own text.

    Returns (name, category, keywords), e.g.
    ('[Pricing] The fee is too high', 'Pricing', ['fee']).
    """
    category, matched = categorize(text)
    words = (text or "").split()
    snippet = " ".join(words[:max_words])
    if len(snippet) > max_chars:
        snippet = snippet[:max_chars].rstrip() + "..."
    elif len(words) > max_words:
        snippet += "..."
    if not snippet:
        snippet = "Unclassified"
    keywords = matched or tokenize(text)[:3]
    return f"[{category}] {snippet}", category, keywords

"""
Text helpers shared by the extractor, validator and conflict detector.

All matching is literal and keyword based: lowercase, split on anything
that is not a letter/digit/apostrophe, drop stop words.
"""

import re
from typing import Iterable, List

_TOKEN_RE = re.compile(r"[a-z0-9][a-z0-9+#']*")
_SENTENCE_RE = re.compile(r"[^.!?\n]+[.!?]?")

STOP_WORDS = frozenset([
    "i", "me", "my", "we", "our", "us", "you", "your", "they", "their", "it", "its",
    "the", "a", "an", "to", "and", "or", "but", "if", "then", "so", "than",
    "is", "are", "was", "were", "be", "been", "being", "am",
    "have", "has", "had", "do", "does", "did", "will", "would", "could", "should",
    "may", "might", "must", "can", "shall",
    "for", "of", "in", "on", "at", "by", "with", "from", "as", "into", "onto",
    "about", "over", "under", "after", "before", "up", "down", "out", "off",
    "this", "that", "these", "those", "there", "here", "what", "which", "who",
    "when", "where", "how", "why", "all", "any", "each", "every", "some",
    "just", "also", "very", "really", "only", "because", "since", "via",
    "let's", "lets", "it's", "i'm", "we're", "we've", "i've", "we'll",
])


def normalize_text(text: str) -> str:
    """Lowercase and normalize curly apostrophes."""
    return text.replace("’", "'").replace("‘", "'").lower()


def tokenize(text: str) -> List[str]:
    """Lowercased word tokens in order of appearance."""
    if not text:
        return []
    return [tok.strip("'") for tok in _TOKEN_RE.findall(normalize_text(text)) if tok.strip("'")]


def split_sentences(text: str) -> List[str]:
    """Split text into trimmed sentences; newlines also end a sentence."""
    if not text:
        return []
    return [s.strip() for s in _SENTENCE_RE.findall(text) if s.strip()]


def contains_any(text: str, keywords: Iterable[str]) -> bool:
    """Whole-word (or whole-phrase) keyword presence, case-insensitive."""
    lowered = normalize_text(text)
    for keyword in keywords:
        if re.search(r"(?<![a-z0-9])" + re.escape(keyword) + r"(?![a-z0-9])", lowered):
            return True
    return False


def count_keywords(text: str, keywords: Iterable[str]) -> int:
    """Number of distinct keywords present in text."""
    lowered = normalize_text(text)
    return sum(
        1 for keyword in keywords
        if re.search(r"(?<![a-z0-9])" + re.escape(keyword) + r"(?![a-z0-9])", lowered)
    )


def slugify(text: str, max_words: int = 5) -> str:
    """'Always use Poetry for packaging' -> 'always-use-poetry-for-packaging'"""
    words = tokenize(text)[:max_words]
    return "-".join(w.replace("'", "") for w in words)

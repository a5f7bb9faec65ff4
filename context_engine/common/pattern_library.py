"""
Pattern Library

Immutable catalogue of compiled trigger patterns, grouped by target
category. Built once (from context-triggers.md or the built-in set) and
passed explicitly to the Extractor; nothing mutates it afterwards.

Construction fails fast on malformed triggers.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Pattern, Tuple

from .errors import PatternError

logger = logging.getLogger("context_engine.pattern_library")


class TargetCategory(str, Enum):
    """What a trigger pattern detects"""
    DECISION = "decision"
    GOAL = "goal"
    PREFERENCE = "preference"
    ISSUE = "issue"


@dataclass(frozen=True)
class PatternEntry:
    """A single compiled trigger"""
    category: TargetCategory
    trigger: str
    weight: float
    regex: Pattern
    priority: str = "medium"

    def finditer(self, text: str):
        return self.regex.finditer(text)


def _compile_entry(raw: Mapping) -> PatternEntry:
    trigger = raw.get("pattern")
    if not isinstance(trigger, str) or not trigger.strip():
        raise PatternError(f"Trigger pattern must be a non-empty string: {raw!r}")

    try:
        category = TargetCategory(str(raw.get("category", "")).lower())
    except ValueError:
        raise PatternError(f"Unknown target category {raw.get('category')!r} for trigger {trigger!r}")

    try:
        weight = float(raw.get("weight"))
    except (TypeError, ValueError):
        raise PatternError(f"Trigger {trigger!r} has no numeric weight")
    if not 0.0 <= weight <= 1.0:
        raise PatternError(f"Trigger {trigger!r} weight {weight} is outside [0, 1]")

    try:
        regex = re.compile(trigger, re.IGNORECASE)
    except re.error as e:
        raise PatternError(f"Malformed trigger {trigger!r}: {e}") from e
    if regex.groups < 1:
        raise PatternError(f"Trigger {trigger!r} has no capture group for the payload")

    return PatternEntry(
        category=category,
        trigger=trigger,
        weight=weight,
        regex=regex,
        priority=raw.get("priority", "medium"),
    )


class PatternLibrary:
    """
    Immutable, loaded-once catalogue of trigger patterns.

    Patterns keep their declaration order within each category; the
    Extractor relies on that order for deterministic output.
    """

    def __init__(self, patterns: Iterable[Mapping]):
        """
        Compile and validate patterns.

        Args:
            patterns: Pattern dicts with keys pattern, category, weight and
                optional priority (as produced by pattern_parser)

        Raises:
            PatternError: On any malformed trigger
        """
        entries = tuple(_compile_entry(raw) for raw in patterns)
        by_category: Dict[TargetCategory, Tuple[PatternEntry, ...]] = {
            category: tuple(e for e in entries if e.category == category)
            for category in TargetCategory
        }
        self._patterns = entries
        self._by_category = MappingProxyType(by_category)

    @classmethod
    def from_markdown(cls, md_path: str) -> "PatternLibrary":
        """Build a library from a context-triggers.md file."""
        from ..scribe.pattern_parser import parse_context_triggers
        return cls(parse_context_triggers(md_path))

    @classmethod
    def default(cls, md_path: Optional[str] = None) -> "PatternLibrary":
        """Build a library from the default triggers file (or the built-in set)."""
        from ..scribe.pattern_parser import load_default_patterns
        library = cls(load_default_patterns(md_path))
        logger.info("Pattern library loaded: %d triggers", library.pattern_count)
        return library

    @property
    def pattern_count(self) -> int:
        return len(self._patterns)

    def patterns_for(self, category: TargetCategory) -> Tuple[PatternEntry, ...]:
        """Triggers for one category, in declaration order."""
        return self._by_category[TargetCategory(category)]

    def base_weight(self, category: TargetCategory) -> float:
        """Lowest base weight among the category's triggers (0.0 if none)."""
        entries = self.patterns_for(category)
        if not entries:
            return 0.0
        return min(e.weight for e in entries)

    def categories(self) -> List[TargetCategory]:
        """Categories that have at least one trigger."""
        return [c for c in TargetCategory if self._by_category[c]]

    def __iter__(self) -> Iterator[PatternEntry]:
        return iter(self._patterns)

    def __len__(self) -> int:
        return len(self._patterns)

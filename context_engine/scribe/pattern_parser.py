"""
Pattern Parser

Parses trigger patterns from patterns/context-triggers.md.
Extracts regex triggers organized by target category and priority.

File format:

    ## Decisions
    ### High Priority
    - `\\bwe decided to ([^.!?\\n]+)` (0.8)
    ### Medium Priority
    - `\\bgoing forward,? ([^.!?\\n]+)`

A trigger without an explicit weight gets the default weight of its
priority section.
"""

import logging
import re
from pathlib import Path
from typing import Dict, List, Optional

logger = logging.getLogger("context_engine.scribe.pattern_parser")

DEFAULT_PATTERNS_PATH = Path(__file__).parent.parent.parent / "patterns" / "context-triggers.md"

PRIORITY_WEIGHTS = {
    "high": 0.8,
    "medium": 0.6,
    "low": 0.4,
}

# Section names -> target category
CATEGORY_ALIASES = {
    "decision": "decision",
    "decisions": "decision",
    "choices": "decision",
    "goal": "goal",
    "goals": "goal",
    "objectives": "goal",
    "preference": "preference",
    "preferences": "preference",
    "issue": "issue",
    "issues": "issue",
    "known_issues": "issue",
    "problems": "issue",
}

# Payload capture shared by the built-in triggers; stops at a rationale clause
_PAYLOAD = r"([^.!?\n]+?)"
_UNTIL = r"(?=\s(?:because|since|so that|over)\b|[.!?\n]|$)"
_REST = r"([^.!?\n]+)"


def _normalize_category(raw_category: str) -> str:
    """Normalize category name to lowercase with underscores, then resolve aliases"""
    normalized = re.sub(r'[^a-zA-Z0-9\s]', '', raw_category.lower())
    normalized = re.sub(r'\s+', '_', normalized.strip())
    return CATEGORY_ALIASES.get(normalized, normalized)


def _detect_priority(section: str) -> str:
    """Detect priority from a ### section header"""
    section_lower = section.lower()
    if "high" in section_lower:
        return "high"
    if "low" in section_lower:
        return "low"
    return "medium"


def parse_context_triggers(md_path: str) -> List[Dict]:
    """
    Parse context-triggers.md into a structured pattern list.

    Args:
        md_path: Path to context-triggers.md file

    Returns:
        List of dicts with keys:
            - pattern: Regex trigger text (one capture group for the payload)
            - category: Target category (decision, goal, preference, issue)
            - weight: Base confidence weight
            - priority: "high", "medium", or "low"

    Regexes are not compiled here; PatternLibrary validates them.
    """
    path = Path(md_path)
    if not path.exists():
        raise FileNotFoundError(f"Pattern file not found: {md_path}")

    content = path.read_text(encoding='utf-8')
    patterns = []

    current_category: Optional[str] = None
    current_priority = "medium"
    in_comment = False

    for line in content.split('\n'):
        line_stripped = line.strip()

        # Skip empty lines and HTML comments
        if not line_stripped:
            continue
        if line_stripped.startswith('<!--'):
            in_comment = '-->' not in line_stripped
            continue
        if in_comment:
            in_comment = '-->' not in line_stripped
            continue

        # Category headers (## Category Name)
        if line_stripped.startswith('## '):
            current_category = _normalize_category(line_stripped[3:])
            current_priority = "medium"
            continue

        # Priority subsections (### High Priority)
        if line_stripped.startswith('### '):
            current_priority = _detect_priority(line_stripped[4:])
            continue

        # Trigger lines: - `regex` (weight)
        trigger_match = re.match(r'^[-*]\s*`([^`]+)`(?:\s*\(\s*([0-9]*\.?[0-9]+)\s*\))?', line_stripped)
        if trigger_match and current_category is not None:
            weight_text = trigger_match.group(2)
            weight = float(weight_text) if weight_text else PRIORITY_WEIGHTS[current_priority]
            patterns.append({
                "pattern": trigger_match.group(1),
                "category": current_category,
                "weight": weight,
                "priority": current_priority,
            })

    return patterns


def load_default_patterns(md_path: Optional[str] = None) -> List[Dict]:
    """
    Load patterns from context-triggers.md, falling back to the built-in set.

    Args:
        md_path: Optional override for the default patterns file location
    """
    path = Path(md_path) if md_path else DEFAULT_PATTERNS_PATH

    if not path.exists():
        logger.warning("Patterns file not found at %s, using built-in triggers", path)
        return get_builtin_patterns()

    patterns = parse_context_triggers(str(path))
    if not patterns:
        logger.warning("No triggers found in %s, using built-in triggers", path)
        return get_builtin_patterns()

    logger.debug("Loaded %d triggers from %s", len(patterns), path)
    return patterns


def get_builtin_patterns() -> List[Dict]:
    """
    Return built-in triggers when the patterns file is not available.

    These mirror patterns/context-triggers.md.
    """
    return [
        # Decisions
        {"pattern": r"\b(?:we|i)(?:'ve| have)? decided (?:to|on) " + _PAYLOAD + _UNTIL,
         "category": "decision", "weight": 0.8, "priority": "high"},
        {"pattern": r"\b(?:final |architecture |design )?decision:\s*" + _REST,
         "category": "decision", "weight": 0.85, "priority": "high"},
        {"pattern": r"\blet'?s go with " + _PAYLOAD + _UNTIL,
         "category": "decision", "weight": 0.75, "priority": "high"},
        {"pattern": r"\bwe (?:chose|picked|went with|settled on) " + _PAYLOAD + _UNTIL,
         "category": "decision", "weight": 0.75, "priority": "high"},
        {"pattern": r"\bgoing forward,? (?:we(?:'ll| will)? )?" + _REST,
         "category": "decision", "weight": 0.6, "priority": "medium"},

        # Goals
        {"pattern": r"\b(?:my|our) (?:main |primary )?goal is to " + _REST,
         "category": "goal", "weight": 0.85, "priority": "high"},
        {"pattern": r"\b(?:objective|milestone|goal):\s*" + _REST,
         "category": "goal", "weight": 0.8, "priority": "high"},
        {"pattern": r"\bwe (?:need|want|plan) to " + _REST,
         "category": "goal", "weight": 0.6, "priority": "medium"},
        {"pattern": r"\bi'?m (?:trying|aiming|planning) to " + _REST,
         "category": "goal", "weight": 0.6, "priority": "medium"},

        # Preferences
        {"pattern": r"\balways use " + _REST,
         "category": "preference", "weight": 0.85, "priority": "high"},
        {"pattern": r"\bnever use " + _REST,
         "category": "preference", "weight": 0.85, "priority": "high"},
        {"pattern": r"\bi (?:prefer|like) (?:to use |using )?" + _PAYLOAD + _UNTIL,
         "category": "preference", "weight": 0.8, "priority": "high"},
        {"pattern": r"\b(?:don'?t|do not) use " + _REST,
         "category": "preference", "weight": 0.7, "priority": "medium"},
        {"pattern": r"\bplease (?:use|stick (?:to|with)) " + _REST,
         "category": "preference", "weight": 0.6, "priority": "medium"},

        # Issues
        {"pattern": r"\b(?:known issue|bug|problem):\s*" + _REST,
         "category": "issue", "weight": 0.85, "priority": "high"},
        {"pattern": r"\b(?:bug|issue|problem) (?:with|in) " + _REST,
         "category": "issue", "weight": 0.7, "priority": "medium"},
        {"pattern": r"(?<![\w./-])([\w./-]{1,80}) (?:keeps failing|fails|crashes|is broken|times out|hangs)\b",
         "category": "issue", "weight": 0.65, "priority": "medium"},
        {"pattern": r"\berror:\s*" + _REST,
         "category": "issue", "weight": 0.6, "priority": "medium"},
    ]

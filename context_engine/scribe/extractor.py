"""
Context Extractor

Turns free-form conversation text into confidence-scored candidate
context items (decisions, goals, preferences, issues).

Algorithm:
1. Every trigger of each category is matched against the full text;
   every match yields one candidate (no deduplication).
2. A candidate's confidence starts at its trigger's base weight.
3. A second, stateless pass boosts candidates whose payload recurs
   elsewhere in the text (additive, capped, never above 1.0).
4. Kind-specific fields (category, priority, tags, severity, ...) are
   inferred from keywords over the full text.

Candidates are never persisted here; callers decide what to keep.
"""

import logging
import re
from dataclasses import asdict, dataclass, field, replace
from typing import Any, Dict, List, Optional, Tuple

from ..common.pattern_library import PatternLibrary, TargetCategory
from ..common.schemas import (
    DecisionCategory,
    IssueCategory,
    IssueSeverity,
    PreferenceType,
    clamp_confidence,
    clamp_priority,
)
from ..common.text_utils import contains_any, count_keywords, slugify, split_sentences, tokenize

logger = logging.getLogger("context_engine.scribe.extractor")


# ============================================================================
# Keyword vocabularies
# ============================================================================

# Ordered: on a score tie the earlier category wins
DECISION_CATEGORY_KEYWORDS = {
    DecisionCategory.PERFORMANCE: [
        "performance", "throughput", "latency", "fast", "faster", "speed", "async",
        "cache", "caching", "optimize", "optimization", "scalability", "concurrency",
        "parallel", "memory", "cpu",
    ],
    DecisionCategory.ARCHITECTURE: [
        "architecture", "design", "service", "services", "microservice", "microservices",
        "monolith", "module", "layer", "api", "database", "schema", "processing",
        "pipeline", "queue", "event", "events",
    ],
    DecisionCategory.SECURITY: [
        "security", "auth", "authentication", "authorization", "encryption", "encrypt",
        "secret", "secrets", "token", "vulnerability", "permission", "permissions",
        "compliance", "gdpr",
    ],
    DecisionCategory.TOOL_CHOICE: [
        "tool", "tools", "library", "framework", "package", "editor", "ide", "cli",
        "linter", "formatter", "sdk", "version",
    ],
    DecisionCategory.WORKFLOW: [
        "workflow", "process", "review", "deploy", "deployment", "ci", "release",
        "branch", "commit", "pull request", "standup", "sprint",
    ],
    DecisionCategory.CONSTRAINT: [
        "constraint", "requirement", "limit", "budget", "must", "only", "never",
        "mandatory", "required",
    ],
}

RATIONALE_PATTERNS = [
    r'\bbecause\s+([^.!?\n]{3,})',
    r'\bsince\s+([^.!?\n]{3,})',
    r'\bdue to\s+([^.!?\n]{3,})',
    r'\bso that\s+([^.!?\n]{3,})',
    r'\breason(?:ing)?(?:\s+is)?[:\s]+([^.!?\n]{3,})',
    r'\brationale[:\s]+([^.!?\n]{3,})',
]

GOAL_URGENCY_KEYWORDS = [
    (1, ["urgent", "urgently", "asap", "immediately", "critical", "top priority", "blocker"]),
    (2, ["important", "high priority", "soon", "this week", "by tomorrow"]),
    (4, ["eventually", "someday", "nice to have", "low priority", "when possible", "if time permits"]),
]

_MONTHS = r"(?:jan|feb|mar|apr|may|jun|jul|aug|sep|sept|oct|nov|dec)[a-z]*\.?"
_WEEKDAYS = r"(?:monday|tuesday|wednesday|thursday|friday|saturday|sunday)"
DATE_TOKEN_RE = re.compile(
    r"\b(?:\d{4}-\d{2}-\d{2}"
    r"|\d{1,2}/\d{1,2}(?:/\d{2,4})?"
    r"|" + _MONTHS + r" \d{1,2}(?:st|nd|rd|th)?"
    r"|\d{1,2}(?:st|nd|rd|th)? (?:of )?" + _MONTHS +
    r"|(?:by|before|until|due) (?:" + _WEEKDAYS + r"|tomorrow|tonight|eod|eow|q[1-4]"
    r"|end of (?:the )?(?:day|week|month|quarter|year|sprint)"
    r"|next (?:week|month|quarter|sprint))"
    r"|deadline|due date)\b",
    re.IGNORECASE,
)

STEP_TOKEN_RE = re.compile(
    r"\b(?:first(?:ly)?|second(?:ly)?|third(?:ly)?|finally|1st|2nd|3rd"
    r"|step \d+|phase \d+|stage \d+)\b"
    r"|(?:^|\n)[ \t]*(?:\d+[.)]|[-*•])\s+",
    re.IGNORECASE,
)

PREFERENCE_TYPE_KEYWORDS = {
    PreferenceType.FRAMEWORK: [
        "framework", "django", "flask", "fastapi", "react", "vue", "angular", "svelte",
        "rails", "spring", "express", "nextjs", "pydantic", "tokio",
    ],
    PreferenceType.TOOL: [
        "tool", "editor", "cli", "linter", "formatter", "poetry", "pip", "uv", "docker",
        "git", "vim", "vscode", "black", "ruff", "npm", "yarn", "pnpm", "pytest", "make",
        "cargo",
    ],
    PreferenceType.PATTERN: [
        "pattern", "style", "convention", "approach", "naming", "structure", "async",
        "sync", "functional", "immutable", "typed", "type hints",
    ],
    PreferenceType.CONSTRAINT: [
        "never", "must", "only", "avoid", "don't", "do not", "forbidden", "no",
    ],
}

STRONG_PREFERENCE_KEYWORDS = ["always", "never", "must", "strictly", "non-negotiable"]

# Fixed vocabulary of domain tags; synonyms map onto a tag
DOMAIN_TAGS = [
    "api", "async", "auth", "backend", "caching", "ci", "database", "deployment",
    "docker", "documentation", "formatting", "frontend", "git", "io", "javascript",
    "logging", "microservices", "migration", "monitoring", "monolith", "packaging",
    "performance", "python", "rust", "security", "testing", "typescript",
]

TAG_SYNONYMS = {
    "cache": "caching",
    "db": "database",
    "sql": "database",
    "postgres": "database",
    "postgresql": "database",
    "deploy": "deployment",
    "deploys": "deployment",
    "docs": "documentation",
    "log": "logging",
    "logs": "logging",
    "test": "testing",
    "tests": "testing",
    "pytest": "testing",
    "js": "javascript",
    "ts": "typescript",
    "authentication": "auth",
    "oauth": "auth",
    "poetry": "packaging",
    "pip": "packaging",
    "sync": "io",
    "asynchronous": "async",
    "formatter": "formatting",
    "black": "formatting",
    "ruff": "formatting",
}

ISSUE_SEVERITY_KEYWORDS = [
    (IssueSeverity.CRITICAL, [
        "critical", "outage", "data loss", "corrupted", "corruption", "production down",
        "security breach", "blocker",
    ]),
    (IssueSeverity.HIGH, [
        "severe", "major", "broken", "crash", "crashes", "crashing", "urgent",
        "high priority",
    ]),
    (IssueSeverity.LOW, [
        "minor", "cosmetic", "typo", "trivial", "low priority", "annoying",
    ]),
]

ISSUE_CATEGORY_KEYWORDS = {
    IssueCategory.INTEGRATION: [
        "integration", "api", "webhook", "third-party", "sdk", "oauth", "endpoint",
        "client", "connect", "connection",
    ],
    IssueCategory.PERFORMANCE: [
        "slow", "latency", "timeout", "times out", "memory", "cpu", "performance",
        "hangs", "leak",
    ],
    IssueCategory.DEPLOYMENT: [
        "deploy", "deployment", "build", "ci", "docker", "kubernetes", "release",
        "container",
    ],
    IssueCategory.DATA: [
        "data", "database", "migration", "schema", "corrupt", "corrupted", "query",
        "sql", "record",
    ],
    IssueCategory.WORKFLOW: [
        "workflow", "process", "review", "merge", "branch", "handoff",
    ],
}

FAILURE_KEYWORDS = [
    "fails", "failing", "failed", "failure", "error", "errors", "exception", "crash",
    "crashes", "crashed", "broken", "times out", "timeout", "hangs", "slow",
]

REMEDY_RE = re.compile(
    r"\b(?:workaround|work around (?:it|this) by|fix(?:ed)? (?:it|this) by|temporary fix"
    r"|to fix (?:it|this)|you can)\b\s*(?:is|was)?\s*[:\-]?\s*([^.!?\n]*)",
    re.IGNORECASE,
)

COMPONENT_RE = re.compile(
    r"(?<![\w-])([a-z0-9_][a-z0-9_-]{0,79} (?:service|module|component|server|api|endpoint|worker"
    r"|pipeline|database|db|queue|cache|client|cli))\b",
    re.IGNORECASE,
)
BACKTICK_RE = re.compile(r"`([^`\n]{2,60})`")


# ============================================================================
# Candidates
# ============================================================================

@dataclass(frozen=True)
class DecisionCandidate:
    """Unconfirmed decision"""
    text: Optional[str]
    confidence: float
    matched_pattern: str
    category: DecisionCategory = DecisionCategory.OTHER
    reason: Optional[str] = None
    span: Tuple[int, int] = (0, 0)

    def to_dict(self) -> Dict[str, Any]:
        return _candidate_dict(self)


@dataclass(frozen=True)
class GoalCandidate:
    """Unconfirmed goal"""
    text: Optional[str]
    confidence: float
    matched_pattern: str
    priority: int = 3
    has_deadline: bool = False
    has_steps: bool = False
    span: Tuple[int, int] = (0, 0)

    def to_dict(self) -> Dict[str, Any]:
        return _candidate_dict(self)


@dataclass(frozen=True)
class PreferenceCandidate:
    """Unconfirmed preference"""
    text: Optional[str]
    confidence: float
    matched_pattern: str
    statement: str = ""
    name: str = ""
    preference_type: PreferenceType = PreferenceType.OTHER
    priority: int = 3
    applies_to_automation: bool = True
    tags: Tuple[str, ...] = ()
    span: Tuple[int, int] = (0, 0)

    def to_dict(self) -> Dict[str, Any]:
        return _candidate_dict(self)


@dataclass(frozen=True)
class IssueCandidate:
    """Unconfirmed known issue"""
    text: Optional[str]
    confidence: float
    matched_pattern: str
    severity: IssueSeverity = IssueSeverity.MEDIUM
    category: IssueCategory = IssueCategory.OTHER
    symptoms: Tuple[str, ...] = ()
    workaround: Optional[str] = None
    affected_components: Tuple[str, ...] = ()
    span: Tuple[int, int] = (0, 0)

    def to_dict(self) -> Dict[str, Any]:
        return _candidate_dict(self)


def _candidate_dict(candidate) -> Dict[str, Any]:
    data = asdict(candidate)
    for key, value in data.items():
        if hasattr(value, "value"):
            data[key] = value.value
        elif isinstance(value, tuple):
            data[key] = list(value)
    return data


CANDIDATE_TYPES = {
    "decisions": DecisionCandidate,
    "goals": GoalCandidate,
    "preferences": PreferenceCandidate,
    "issues": IssueCandidate,
}

_ENUM_FIELDS = {
    "category": {DecisionCandidate: DecisionCategory, IssueCandidate: IssueCategory},
    "preference_type": {PreferenceCandidate: PreferenceType},
    "severity": {IssueCandidate: IssueSeverity},
}


def candidate_from_dict(kind: str, data: Dict[str, Any]):
    """Rebuild a candidate from its to_dict() form (e.g. a persisted queue item)."""
    cls = CANDIDATE_TYPES[kind]
    values = dict(data)
    for key, by_cls in _ENUM_FIELDS.items():
        if key in values and cls in by_cls:
            values[key] = by_cls[cls](values[key])
    for key in ("span", "tags", "symptoms", "affected_components"):
        if key in values and isinstance(values[key], list):
            values[key] = tuple(values[key])
    return cls(**values)


@dataclass
class ExtractionResult:
    """Candidates found in one piece of text, in discovery order"""
    decisions: List[DecisionCandidate] = field(default_factory=list)
    goals: List[GoalCandidate] = field(default_factory=list)
    preferences: List[PreferenceCandidate] = field(default_factory=list)
    issues: List[IssueCandidate] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.decisions) + len(self.goals) + len(self.preferences) + len(self.issues)

    def is_empty(self) -> bool:
        return self.total == 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "decisions": [c.to_dict() for c in self.decisions],
            "goals": [c.to_dict() for c in self.goals],
            "preferences": [c.to_dict() for c in self.preferences],
            "issues": [c.to_dict() for c in self.issues],
        }


# ============================================================================
# Secondary inference (full text)
# ============================================================================

def _best_by_keywords(text: str, table: Dict, default):
    best, best_score = default, 0
    for key, keywords in table.items():
        score = count_keywords(text, keywords)
        if score > best_score:
            best, best_score = key, score
    return best


def infer_decision_category(text: str) -> DecisionCategory:
    return _best_by_keywords(text, DECISION_CATEGORY_KEYWORDS, DecisionCategory.OTHER)


def extract_rationale(text: str, start: int = 0) -> Optional[str]:
    """Rationale clause at or after position start (falls back to anywhere)."""
    for scope in (text[start:], text):
        for pattern in RATIONALE_PATTERNS:
            match = re.search(pattern, scope, re.IGNORECASE)
            if match:
                return match.group(1).strip()
    return None


def infer_goal_priority(text: str) -> int:
    for priority, keywords in GOAL_URGENCY_KEYWORDS:
        if contains_any(text, keywords):
            return clamp_priority(priority)
    return 3


def has_deadline(text: str) -> bool:
    return DATE_TOKEN_RE.search(text) is not None


def has_steps(text: str) -> bool:
    return STEP_TOKEN_RE.search(text) is not None


def infer_preference_type(text: str) -> PreferenceType:
    return _best_by_keywords(text, PREFERENCE_TYPE_KEYWORDS, PreferenceType.OTHER)


def infer_preference_priority(text: str) -> int:
    return 2 if contains_any(text, STRONG_PREFERENCE_KEYWORDS) else 3


def extract_tags(text: str) -> Tuple[str, ...]:
    """Domain tags present in text, in vocabulary order."""
    found = set()
    for token in tokenize(text):
        if token in DOMAIN_TAGS:
            found.add(token)
        elif token in TAG_SYNONYMS:
            found.add(TAG_SYNONYMS[token])
    return tuple(tag for tag in DOMAIN_TAGS if tag in found)


def infer_issue_severity(text: str) -> IssueSeverity:
    for severity, keywords in ISSUE_SEVERITY_KEYWORDS:
        if contains_any(text, keywords):
            return severity
    return IssueSeverity.MEDIUM


def infer_issue_category(text: str) -> IssueCategory:
    return _best_by_keywords(text, ISSUE_CATEGORY_KEYWORDS, IssueCategory.OTHER)


def extract_symptoms(text: str) -> Tuple[str, ...]:
    """Sentences that mention a failure keyword."""
    symptoms = []
    for sentence in split_sentences(text):
        if contains_any(sentence, FAILURE_KEYWORDS):
            cleaned = sentence.rstrip(".!? ")
            if cleaned and cleaned not in symptoms:
                symptoms.append(cleaned)
    return tuple(symptoms)


def extract_workaround(text: str) -> Optional[str]:
    """Text after the first remedy keyword, or the sentence after it."""
    match = REMEDY_RE.search(text)
    if not match:
        return None
    remedy = match.group(1).strip(" :-")
    if remedy:
        return remedy
    following = split_sentences(text[match.end():])
    if following:
        return following[0].rstrip(".!? ") or None
    return None


def extract_components(text: str, payload: Optional[str] = None) -> Tuple[str, ...]:
    components: List[str] = []
    for match in BACKTICK_RE.finditer(text):
        components.append(match.group(1).strip())
    for match in COMPONENT_RE.finditer(text):
        components.append(match.group(1).strip().lower())
    if payload and len(payload.split()) == 1:
        components.append(payload.strip().lower())
    seen = set()
    unique = []
    for component in components:
        if component.lower() not in seen:
            seen.add(component.lower())
            unique.append(component)
    return tuple(unique)


# ============================================================================
# Extractor
# ============================================================================

def _clean_payload(raw: Optional[str]) -> Optional[str]:
    if raw is None:
        return None
    cleaned = raw.strip().strip(",;:").strip()
    return cleaned or None


class ContextExtractor:
    """
    Pattern-based extraction of context candidates.

    Stateless apart from its immutable configuration; safe to share
    across threads.
    """

    def __init__(
        self,
        library: PatternLibrary,
        frequency_boost: float = 0.1,
        max_frequency_boost: float = 0.2,
    ):
        """
        Initialize extractor.

        Args:
            library: Compiled trigger patterns
            frequency_boost: Confidence added per extra occurrence of a payload
            max_frequency_boost: Cap on the total repetition boost
        """
        self._library = library
        self._frequency_boost = frequency_boost
        self._max_frequency_boost = max_frequency_boost

    @property
    def library(self) -> PatternLibrary:
        return self._library

    def extract(self, text: str) -> ExtractionResult:
        """
        Extract candidate context items from text.

        Args:
            text: Raw conversation text

        Returns:
            ExtractionResult; empty when nothing matches or text is not a string
        """
        if not isinstance(text, str) or not text.strip():
            return ExtractionResult()

        normalized = text.replace("’", "'").replace("‘", "'")

        result = ExtractionResult(
            decisions=self._boost_by_frequency(self._extract_decisions(normalized), normalized),
            goals=self._boost_by_frequency(self._extract_goals(normalized), normalized),
            preferences=self._boost_by_frequency(self._extract_preferences(normalized), normalized),
            issues=self._boost_by_frequency(self._extract_issues(normalized), normalized),
        )
        logger.debug(
            "Extracted %d candidates (decisions=%d goals=%d preferences=%d issues=%d)",
            result.total, len(result.decisions), len(result.goals),
            len(result.preferences), len(result.issues),
        )
        return result

    def _matches(self, category: TargetCategory, text: str):
        for entry in self._library.patterns_for(category):
            for match in entry.finditer(text):
                yield entry, match

    def _extract_decisions(self, text: str) -> List[DecisionCandidate]:
        category = infer_decision_category(text)
        candidates = []
        for entry, match in self._matches(TargetCategory.DECISION, text):
            candidates.append(DecisionCandidate(
                text=_clean_payload(match.group(1)),
                confidence=clamp_confidence(entry.weight),
                matched_pattern=entry.trigger,
                category=category,
                reason=extract_rationale(text, match.start()),
                span=match.span(),
            ))
        return candidates

    def _extract_goals(self, text: str) -> List[GoalCandidate]:
        priority = infer_goal_priority(text)
        deadline = has_deadline(text)
        steps = has_steps(text)
        candidates = []
        for entry, match in self._matches(TargetCategory.GOAL, text):
            candidates.append(GoalCandidate(
                text=_clean_payload(match.group(1)),
                confidence=clamp_confidence(entry.weight),
                matched_pattern=entry.trigger,
                priority=priority,
                has_deadline=deadline,
                has_steps=steps,
                span=match.span(),
            ))
        return candidates

    def _extract_preferences(self, text: str) -> List[PreferenceCandidate]:
        tags = extract_tags(text)
        priority = infer_preference_priority(text)
        candidates = []
        for entry, match in self._matches(TargetCategory.PREFERENCE, text):
            payload = _clean_payload(match.group(1))
            statement = match.group(0).strip()
            candidates.append(PreferenceCandidate(
                text=payload,
                confidence=clamp_confidence(entry.weight),
                matched_pattern=entry.trigger,
                statement=statement,
                name=slugify(payload or statement),
                preference_type=infer_preference_type(statement),
                priority=priority,
                tags=tags,
                span=match.span(),
            ))
        return candidates

    def _extract_issues(self, text: str) -> List[IssueCandidate]:
        severity = infer_issue_severity(text)
        category = infer_issue_category(text)
        symptoms = extract_symptoms(text)
        workaround = extract_workaround(text)
        candidates = []
        for entry, match in self._matches(TargetCategory.ISSUE, text):
            payload = _clean_payload(match.group(1))
            candidates.append(IssueCandidate(
                text=payload,
                confidence=clamp_confidence(entry.weight),
                matched_pattern=entry.trigger,
                severity=severity,
                category=category,
                symptoms=symptoms,
                workaround=workaround,
                affected_components=extract_components(text, payload),
                span=match.span(),
            ))
        return candidates

    def _boost_by_frequency(self, candidates: List, text: str) -> List:
        """Return new candidates with repetition boosts applied."""
        lowered = text.lower()
        boosted = []
        for candidate in candidates:
            if not candidate.text:
                boosted.append(candidate)
                continue
            occurrences = lowered.count(candidate.text.lower())
            extra = max(0, occurrences - 1)
            boost = min(extra * self._frequency_boost, self._max_frequency_boost)
            if boost > 0:
                candidate = replace(candidate, confidence=clamp_confidence(candidate.confidence + boost))
            boosted.append(candidate)
        return boosted

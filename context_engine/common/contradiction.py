"""
Contradiction Predicate

Decides whether two short statements (preference values, decision texts,
a proposed action) are mutually exclusive for the same subject.

Heuristic:
1. Both statements must share a subject term (content words minus stop
   words, stance markers and generic verbs). Subject-level opposites such
   as async/sync count as the same subject.
2. Each statement has a stance: negative if it contains a negation marker
   (never, avoid, don't, no, ...), positive otherwise.
3. Every opposition pair split across the two statements (async in one,
   sync in the other) is one flip; a stance difference is one more flip.
   The statements contradict when the number of flips is odd.

So "always use X" / "never use X" contradict (stance flip), "use async io" /
"use sync io" contradict (pair flip), and "avoid sync io" / "use async io"
agree (two flips).

Decisions additionally treat an explicit change marker in the newer text
("instead of", "switch from", "no longer", ...) over a shared subject as a
contradiction of the older decision.
"""

from dataclasses import dataclass
from typing import FrozenSet, Iterable, Set

from .text_utils import STOP_WORDS, contains_any, tokenize

NEGATION_MARKERS = frozenset([
    "not", "no", "never", "don't", "dont", "doesn't", "didn't", "avoid", "avoiding",
    "without", "shouldn't", "mustn't", "can't", "cannot", "won't", "forbid",
    "forbidden", "prohibit", "prohibited", "ban", "banned", "nor",
])

# Opposites that name the subject itself; both words count as one subject term.
SUBJECT_OPPOSITES = [
    ("async", "sync"),
    ("asynchronous", "synchronous"),
    ("tabs", "spaces"),
    ("mutable", "immutable"),
    ("monolith", "microservices"),
    ("static", "dynamic"),
    ("sql", "nosql"),
    ("local", "remote"),
    ("manual", "automatic"),
    ("strict", "lenient"),
    ("blocking", "nonblocking"),
    ("serial", "parallel"),
    ("stateful", "stateless"),
    ("public", "private"),
    ("online", "offline"),
]

# Opposite actions applied to a subject; they flip stance but are not subjects.
ACTION_OPPOSITES = [
    ("enable", "disable"),
    ("enabled", "disabled"),
    ("include", "exclude"),
    ("add", "remove"),
    ("allow", "deny"),
    ("allow", "block"),
    ("accept", "reject"),
    ("keep", "drop"),
    ("increase", "decrease"),
    ("more", "less"),
    ("start", "stop"),
    ("like", "dislike"),
    ("favor", "oppose"),
    ("faster", "slower"),
    ("higher", "lower"),
]

STANCE_WORDS = frozenset(["always", "never", "usually", "rarely", "sometimes", "often"])

GENERIC_VERBS = frozenset([
    "use", "uses", "using", "used", "prefer", "prefers", "preferred", "like", "likes",
    "want", "wants", "go", "going", "choose", "chose", "chosen", "pick", "picked",
    "decide", "decided", "need", "needs", "make", "makes", "run", "runs", "running",
    "apply", "applies", "instead", "rather", "switch", "switched", "replace",
    "replaced", "migrate", "migrated", "longer", "stick", "stay",
])

SUPERSESSION_MARKERS = [
    "instead of", "rather than", "switch from", "switched from", "switch to",
    "switched to", "replace", "replaced", "replacing", "no longer", "migrate from",
    "migrated from", "move away from", "moved away from", "drop", "dropped",
]

_SUBJECT_CANON = {}
for _a, _b in SUBJECT_OPPOSITES:
    _key = f"{_a}|{_b}"
    _SUBJECT_CANON.setdefault(_a, _key)
    _SUBJECT_CANON.setdefault(_b, _key)

_ALL_PAIRS = SUBJECT_OPPOSITES + ACTION_OPPOSITES
_ACTION_WORDS = frozenset(w for pair in ACTION_OPPOSITES for w in pair)
_NON_SUBJECT = STOP_WORDS | NEGATION_MARKERS | STANCE_WORDS | GENERIC_VERBS | _ACTION_WORDS


@dataclass(frozen=True)
class StatementProfile:
    """Tokens of a statement split into subject terms and stance."""
    tokens: FrozenSet[str]
    subject_terms: FrozenSet[str]
    negative: bool


def profile(text: str) -> StatementProfile:
    tokens = tokenize(text or "")
    subject: Set[str] = set()
    for tok in tokens:
        if tok in _SUBJECT_CANON:
            subject.add(_SUBJECT_CANON[tok])
        elif tok not in _NON_SUBJECT:
            subject.add(tok)
    token_set = frozenset(tokens)
    return StatementProfile(
        tokens=token_set,
        subject_terms=frozenset(subject),
        negative=bool(token_set & NEGATION_MARKERS),
    )


def subject_overlap(a: str, b: str) -> Set[str]:
    """Subject terms shared by two statements."""
    return set(profile(a).subject_terms & profile(b).subject_terms)


def _pair_flips(a: FrozenSet[str], b: FrozenSet[str]) -> int:
    flips = 0
    for left, right in _ALL_PAIRS:
        a_left, a_right = left in a, right in a
        b_left, b_right = left in b, right in b
        # A pair only flips when each side commits to one word of it.
        if a_left != a_right and b_left != b_right and a_left != b_left:
            flips += 1
    return flips


def are_contradictory(a: str, b: str, extra_subject_terms: Iterable[str] = ()) -> bool:
    """
    True when statements a and b are mutually exclusive for a shared subject.

    Args:
        a, b: Statements to compare
        extra_subject_terms: Subject terms known to be shared from outside the
            text (e.g. common preference tags)
    """
    pa, pb = profile(a), profile(b)
    shared = (pa.subject_terms & pb.subject_terms) | set(extra_subject_terms)
    if not shared:
        return False
    flips = _pair_flips(pa.tokens, pb.tokens)
    if pa.negative != pb.negative:
        flips += 1
    return flips % 2 == 1


def has_supersession_marker(text: str) -> bool:
    return contains_any(text or "", SUPERSESSION_MARKERS)


def decisions_conflict(older: str, newer: str) -> bool:
    """Newer decision contradicts or explicitly replaces the older one."""
    if are_contradictory(older, newer):
        return True
    return bool(subject_overlap(older, newer)) and has_supersession_marker(newer)

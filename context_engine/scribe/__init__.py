"""
Scribe - Context Capture

Turns conversation text into candidate context items.

Key Components:
- ContextExtractor: Pattern-based candidate extraction
- ItemBuilder: Builds context items from confirmed candidates
- CandidateQueue: Holds candidates until they are confirmed or rejected

Rules:
1. Every trigger match yields a candidate; nothing is deduplicated
2. Extraction never writes to the store
3. Malformed input yields an empty result, never an error
4. PII/credentials are redacted before an item is stored
"""

from .extractor import ContextExtractor, ExtractionResult
from .item_builder import ItemBuilder
from .pattern_parser import parse_context_triggers
from .review_queue import CandidateQueue, CandidateItem

__all__ = [
    "ContextExtractor",
    "ExtractionResult",
    "ItemBuilder",
    "parse_context_triggers",
    "CandidateQueue",
    "CandidateItem",
]

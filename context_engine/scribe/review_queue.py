"""
Candidate Queue

Holds extracted candidates until a human or agent confirms them.
Extraction never persists context items; confirmation does.

Workflow:
1. Extracted candidates are queued for an owner
2. Each candidate is confirmed (becomes a stored context item) or rejected
3. Reviewed entries can be cleared from the queue
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..common.config import CANDIDATE_QUEUE_PATH
from ..common.errors import NotFound, StoreUnavailable
from ..common.schemas import ContextItem, ContextScope, generate_item_id
from ..common.store import ContextStore
from .extractor import CANDIDATE_TYPES, ExtractionResult, candidate_from_dict
from .item_builder import ItemBuilder

logger = logging.getLogger("context_engine.scribe.review_queue")

STATUS_PENDING = "pending"
STATUS_CONFIRMED = "confirmed"
STATUS_REJECTED = "rejected"


@dataclass
class CandidateItem:
    """Item in the candidate queue"""
    item_id: str
    kind: str  # decisions, goals, preferences, issues
    owner_id: str
    candidate_json: Dict[str, Any]
    confidence: float
    created_at: str
    status: str = STATUS_PENDING  # pending, confirmed, rejected
    stored_item_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "item_id": self.item_id,
            "kind": self.kind,
            "owner_id": self.owner_id,
            "candidate_json": self.candidate_json,
            "confidence": self.confidence,
            "created_at": self.created_at,
            "status": self.status,
            "stored_item_id": self.stored_item_id,
        }


class CandidateQueue:
    """
    Confirmation queue for extracted candidates.

    The queue is persisted to ~/.context-engine/candidate_queue.json.
    """

    def __init__(self, queue_path: Optional[Path] = None, builder: Optional[ItemBuilder] = None):
        """
        Initialize candidate queue.

        Args:
            queue_path: Path to queue file (default: ~/.context-engine/candidate_queue.json)
            builder: Item builder used on confirmation
        """
        self._queue_path = Path(queue_path) if queue_path else CANDIDATE_QUEUE_PATH
        self._builder = builder or ItemBuilder()
        self._queue: List[CandidateItem] = []
        self._load_queue()

    def _load_queue(self) -> None:
        """Load queue from disk"""
        if not self._queue_path.exists():
            self._queue = []
            return

        try:
            with open(self._queue_path) as f:
                data = json.load(f)

            self._queue = [
                CandidateItem(
                    item_id=item["item_id"],
                    kind=item["kind"],
                    owner_id=item["owner_id"],
                    candidate_json=item["candidate_json"],
                    confidence=item["confidence"],
                    created_at=item["created_at"],
                    status=item.get("status", STATUS_PENDING),
                    stored_item_id=item.get("stored_item_id"),
                )
                for item in data
            ]
        except (json.JSONDecodeError, IOError, KeyError) as e:
            logger.warning("Failed to load candidate queue: %s", e)
            self._queue = []

    def _save_queue(self) -> None:
        """Save queue to disk"""
        try:
            self._queue_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self._queue_path, "w") as f:
                json.dump([item.to_dict() for item in self._queue], f, indent=2, default=str)
        except OSError as e:
            raise StoreUnavailable(f"Cannot write candidate queue {self._queue_path}: {e}") from e

    def add(self, result: ExtractionResult, owner_id: str) -> List[str]:
        """
        Queue every candidate of an extraction result.

        Args:
            result: Extraction result
            owner_id: Owner the candidates belong to

        Returns:
            Queue item IDs, in extraction order
        """
        created_at = datetime.now(timezone.utc).isoformat()
        ids = []
        for kind in CANDIDATE_TYPES:
            for candidate in getattr(result, kind):
                item = CandidateItem(
                    item_id=generate_item_id(),
                    kind=kind,
                    owner_id=owner_id,
                    candidate_json=candidate.to_dict(),
                    confidence=candidate.confidence,
                    created_at=created_at,
                )
                self._queue.append(item)
                ids.append(item.item_id)

        if ids:
            self._save_queue()
            logger.info("Queued %d candidates for %s", len(ids), owner_id)
        return ids

    def get_pending(self, owner_id: Optional[str] = None) -> List[CandidateItem]:
        """Get pending items, optionally for one owner"""
        return [
            item for item in self._queue
            if item.status == STATUS_PENDING and (owner_id is None or item.owner_id == owner_id)
        ]

    def get_item(self, item_id: str) -> Optional[CandidateItem]:
        """Get a specific queue item by ID"""
        for item in self._queue:
            if item.item_id == item_id:
                return item
        return None

    def _require_pending(self, item_id: str) -> CandidateItem:
        item = self.get_item(item_id)
        if item is None:
            raise NotFound("candidate", item_id)
        if item.status != STATUS_PENDING:
            raise ValueError(f"Candidate {item_id} was already {item.status}")
        return item

    def confirm(
        self,
        item_id: str,
        store: ContextStore,
        scope: Optional[ContextScope] = None,
    ) -> ContextItem:
        """
        Confirm a candidate: build its context item and create it in the store.

        Raises:
            NotFound: If the item is not queued
            ValueError: If the item was already confirmed or rejected
        """
        item = self._require_pending(item_id)
        candidate = candidate_from_dict(item.kind, item.candidate_json)
        context_item = self._builder.build(item.kind, candidate, item.owner_id, scope)
        stored = store.create(context_item)

        item.status = STATUS_CONFIRMED
        item.stored_item_id = stored.id
        self._save_queue()

        logger.info("Candidate %s confirmed as %s %s", item_id, item.kind, stored.id)
        return stored

    def reject(self, item_id: str) -> CandidateItem:
        """Reject a candidate; nothing is written to the store"""
        item = self._require_pending(item_id)
        item.status = STATUS_REJECTED
        self._save_queue()
        logger.info("Candidate %s rejected", item_id)
        return item

    def remove(self, item_id: str) -> bool:
        """Remove an item from the queue"""
        for i, item in enumerate(self._queue):
            if item.item_id == item_id:
                del self._queue[i]
                self._save_queue()
                return True
        return False

    def clear_reviewed(self) -> int:
        """Clear all confirmed and rejected items from queue"""
        original_len = len(self._queue)
        self._queue = [item for item in self._queue if item.status == STATUS_PENDING]
        self._save_queue()
        return original_len - len(self._queue)

    def get_stats(self) -> Dict[str, int]:
        """Get queue statistics"""
        stats = {
            "total": len(self._queue),
            STATUS_PENDING: 0,
            STATUS_CONFIRMED: 0,
            STATUS_REJECTED: 0,
        }
        for item in self._queue:
            if item.status in stats:
                stats[item.status] += 1
        return stats

    def format_for_review(self, item: CandidateItem) -> str:
        """Format a queue item for display"""
        data = item.candidate_json

        lines = [
            "=" * 60,
            f"CANDIDATE: {item.item_id}",
            f"Kind: {item.kind}    Owner: {item.owner_id}",
            f"Confidence: {item.confidence:.2f}",
            f"Created: {item.created_at}",
            "=" * 60,
            "",
            f"Text: {(data.get('text') or 'N/A')[:200]}",
            f"Matched pattern: {data.get('matched_pattern', 'N/A')}",
        ]

        details = {
            "decisions": ["category", "reason"],
            "goals": ["priority", "has_deadline", "has_steps"],
            "preferences": ["name", "preference_type", "priority", "tags"],
            "issues": ["severity", "category", "workaround", "affected_components", "symptoms"],
        }.get(item.kind, [])
        for key in details:
            value = data.get(key)
            if isinstance(value, list):
                value = ", ".join(str(v) for v in value) or "(none)"
            lines.append(f"{key.replace('_', ' ').capitalize()}: {value if value is not None else 'N/A'}")

        lines.extend([
            "",
            "-" * 60,
            "Confirm to store this item, or reject to discard it.",
            "=" * 60,
        ])
        return "\n".join(lines)

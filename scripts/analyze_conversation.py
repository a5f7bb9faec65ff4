#!/usr/bin/env python3
"""
Conversation Analysis Script

Extracts candidate decisions, goals, preferences and known issues from a
conversation transcript. Nothing is stored unless --enqueue is given, in
which case the candidates are queued for confirmation.

Usage:
    python scripts/analyze_conversation.py transcript.txt [--owner alice] [--format json|text] [--enqueue]
"""

import sys
import json
import argparse
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))


def _print_text(result) -> None:
    sections = result.to_dict()
    for kind, candidates in sections.items():
        print(f"[Analyze] {kind}: {len(candidates)}")
        for candidate in candidates:
            text = candidate.get("text") or candidate.get("matched_pattern")
            print(f"  - ({candidate['confidence']:.2f}) {text}")


def main():
    parser = argparse.ArgumentParser(description="Extract context candidates from a conversation transcript")
    parser.add_argument("path", type=str, help="Transcript file ('-' for stdin)")
    parser.add_argument("--owner", type=str, default="default", help="Owner id of the candidates")
    parser.add_argument("--patterns", type=str, default=None, help="Markdown trigger catalogue")
    parser.add_argument("--format", choices=("json", "text"), default="text", help="Output format")
    parser.add_argument("--enqueue", action="store_true", help="Queue the candidates for confirmation")
    args = parser.parse_args()

    from context_engine.common.pattern_library import PatternLibrary
    from context_engine.scribe.extractor import ContextExtractor
    from context_engine.scribe.review_queue import CandidateQueue

    if args.path == "-":
        text = sys.stdin.read()
    else:
        path = Path(args.path)
        if not path.exists():
            print(f"[Analyze] ERROR: File not found: {path}")
            sys.exit(1)
        text = path.read_text(encoding="utf-8")

    extractor = ContextExtractor(PatternLibrary.default(args.patterns))
    result = extractor.extract(text)

    if args.format == "json":
        print(json.dumps(result.to_dict(), indent=2))
    else:
        _print_text(result)
        print(f"[Analyze] Total candidates: {result.total}")

    if args.enqueue and not result.is_empty():
        ids = CandidateQueue().add(result, args.owner)
        print(f"[Analyze] Queued {len(ids)} candidates for {args.owner}", file=sys.stderr)


if __name__ == "__main__":
    main()

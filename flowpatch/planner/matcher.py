# flowpatch/planner/matcher.py

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence

from flowpatch.planner.patterns import WORKFLOW_PATTERNS, WorkflowPattern


@dataclass
class MatchResult:
    pattern: WorkflowPattern
    score: float
    matched_keywords: List[str] = field(default_factory=list)

    @property
    def hits(self) -> int:
        return len(self.matched_keywords)

    @property
    def confidence(self) -> int:
        """Share of the template's keywords found in the prompt, in percent."""
        return round(100 * self.hits / max(1, len(self.pattern.keywords)))


def _normalize(text: str) -> str:
    return (text or "").strip().lower()


def contains_keyword(text: str, keyword: str) -> bool:
    """
    Case-insensitive keyword test. Short keywords ("ai", "if", "api"...) must
    match a whole word so they do not fire inside longer words.
    """
    kk = keyword.lower()
    if len(kk) <= 3:
        return re.search(rf"\b{re.escape(kk)}\b", text) is not None
    return kk in text


def contains_any(text: str, keywords: Iterable[str]) -> bool:
    t = _normalize(text)
    return any(contains_keyword(t, k) for k in keywords)


class PatternMatcher:
    """Keyword scoring over the template catalog."""

    def __init__(self, patterns: Optional[Sequence[WorkflowPattern]] = None) -> None:
        self.patterns = list(patterns if patterns is not None else WORKFLOW_PATTERNS)

    def score(self, pattern: WorkflowPattern, prompt: str) -> MatchResult:
        t = _normalize(prompt)
        matched = [k for k in pattern.keywords if contains_keyword(t, k)]
        # multi-word keywords are stronger evidence than single words
        score = float(sum(len(k.split()) for k in matched))
        return MatchResult(pattern=pattern, score=score, matched_keywords=matched)

    def find_matching_patterns(self, prompt: str) -> List[MatchResult]:
        """All templates with at least one hit, best first; ties keep catalog order."""
        results = [self.score(p, prompt) for p in self.patterns]
        results = [r for r in results if r.score > 0]
        return sorted(results, key=lambda r: -r.score)

    def best_match(self, prompt: str, min_hits: int = 2) -> Optional[MatchResult]:
        for r in self.find_matching_patterns(prompt):
            if r.hits >= min_hits:
                return r
        return None

    def suggest_by_category(self, category: str) -> List[WorkflowPattern]:
        c = _normalize(category)
        return [
            p for p in self.patterns
            if c in p.name.lower() or any(c in k for k in p.keywords)
        ]

    def get_categories(self) -> List[str]:
        """Name prefixes ("webhook", "scheduled"...) plus single-word keywords longer than 3 chars."""
        cats = set()
        for p in self.patterns:
            parts = p.name.split("-")
            if len(parts) > 1:
                cats.add(parts[0])
            for k in p.keywords:
                if len(k) > 3 and " " not in k:
                    cats.add(k)
        return sorted(cats)

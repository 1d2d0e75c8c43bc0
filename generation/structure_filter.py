"""
Structure name normalization and rejection rules.

Each ingestion endpoint owns a FilterRule. A rule rejects:
  - generic placeholders: the kind name followed by an ordinal ("Board 1",
    "Board A", "Chapter 12") or the word "placeholder"
  - mock fallback items
  - any of its forbidden substrings (case-insensitive)
"""

import re
from dataclasses import dataclass
from typing import Any, Optional, Tuple

from generation.ai_client import MOCK_MARKER

MAX_NAME_LENGTH = 200

NON_SCHOOL_KEYWORDS = (
    "university",
    "joint entrance",
    "entrance examination",
    "jee",
    "neet",
    "council of higher",
    "technical education",
    "medical",
    "engineering",
    "college",
    "polytechnic",
    "distance education",
    "open university",
    "deemed",
    "affiliated",
)


@dataclass(frozen=True)
class FilterRule:
    kind: str  # singular, lower-case ("board")
    forbidden: Tuple[str, ...] = ()
    # "Paper I" and "Paper 2" are real exam paper names
    reject_ordinals: bool = True

    @property
    def placeholder_pattern(self) -> "re.Pattern[str]":
        pattern = r"\bplaceholder\b"
        if self.reject_ordinals:
            pattern = rf"\b{re.escape(self.kind)}\s+(\d+|[a-z]|[ivx]+)\b|" + pattern
        return re.compile(pattern, re.IGNORECASE)

    def rejects(self, name: str) -> bool:
        lowered = name.lower()
        if MOCK_MARKER.lower() in lowered:
            return True
        if self.placeholder_pattern.search(name):
            return True
        return any(keyword in lowered for keyword in self.forbidden)


BOARD_RULE = FilterRule("board", NON_SCHOOL_KEYWORDS)
UNIVERSITY_RULE = FilterRule("university")
PAPER_RULE = FilterRule("paper", reject_ordinals=False)
SUBJECT_RULE = FilterRule("subject")
CHAPTER_RULE = FilterRule("chapter")


def normalize(candidate: Any, rule: FilterRule) -> Optional[str]:
    """Return the cleaned name, or None if the candidate is rejected."""
    if isinstance(candidate, dict):
        candidate = candidate.get("name")
    if not isinstance(candidate, str):
        return None

    name = candidate.strip()[:MAX_NAME_LENGTH].strip()
    if not name:
        return None
    if rule.rejects(name):
        return None
    return name

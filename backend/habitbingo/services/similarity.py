"""Near-duplicate detection for board task text."""
from __future__ import annotations

import unicodedata
from typing import Iterable, List, Optional, Set

from habitbingo.core.config import settings

MIN_CONTAINMENT_LENGTH = 4


def normalize(text: str) -> str:
    """Case-fold and drop whitespace, punctuation and symbols."""
    folded = unicodedata.normalize("NFKC", text or "").casefold()
    return "".join(char for char in folded if unicodedata.category(char)[0] not in {"Z", "P", "S", "C"})


def bigrams(text: str) -> Set[str]:
    if len(text) < 2:
        return {text} if text else set()
    return {text[index : index + 2] for index in range(len(text) - 1)}


def jaccard(left: Set[str], right: Set[str]) -> float:
    if not left and not right:
        return 0.0
    return len(left & right) / len(left | right)


def is_similar(first: str, second: str, threshold: Optional[float] = None) -> bool:
    threshold = settings.similarity_threshold if threshold is None else threshold
    a, b = normalize(first), normalize(second)
    if not a or not b:
        return False
    if a == b:
        return True
    if len(a) >= MIN_CONTAINMENT_LENGTH and len(b) >= MIN_CONTAINMENT_LENGTH and (a in b or b in a):
        return True
    return jaccard(bigrams(a), bigrams(b)) >= threshold


def reject_if_similar_to_any(candidate: str, corpus: Iterable[str], threshold: Optional[float] = None) -> bool:
    """True when the candidate is too close to any non-empty text in the corpus."""
    return any(is_similar(candidate, existing, threshold) for existing in corpus if existing and existing.strip())


def dedupe_titles(titles: Iterable[str], threshold: Optional[float] = None) -> List[str]:
    """Keep the first of every group of similar titles, in order."""
    kept: List[str] = []
    for title in titles:
        if not title or not title.strip():
            continue
        if not reject_if_similar_to_any(title, kept, threshold):
            kept.append(title)
    return kept

"""
Best-effort matching of a Wikidata label against spans of the utterance.

The display string of an entity value should be the way the utterance
mentions it, so labels are ranked against every contiguous token span with
a word-level similarity (stopwords removed, tokens stemmed).
"""

from __future__ import annotations

import re
from typing import Iterable, List, Optional, Set

from nltk.stem.porter import PorterStemmer

from .utils import remove_accent

SIMILARITY_MODES = ("f1", "jaccard")

STOPWORDS = frozenset(
    """
    a about above after again against all am an and any are as at be because been before being below
    between both but by can could did do does doing down during each few for from further had has have
    having he her here hers herself him himself his how i if in into is it its itself just me more most
    my myself no nor not now of off on once only or other our ours ourselves out over own same she
    should so some such than that the their theirs them themselves then there these they this those
    through to too under until up very was we were what when where which while who whom why will with
    would you your yours yourself yourselves
    """.split()
)

_stemmer = PorterStemmer()


def remove_end_punctuation(text: str) -> str:
    return re.sub(r"[.!?]$", "", text.strip())


def tokenize(text: str) -> List[str]:
    return remove_end_punctuation(text).split()


def spans(text: str) -> List[str]:
    """All contiguous token spans, shortest first, then by start position."""
    tokens = tokenize(text)
    result: List[str] = []
    for size in range(1, len(tokens) + 1):
        for idx in range(len(tokens) - size + 1):
            result.append(" ".join(tokens[idx : idx + size]))
    return result


def _stems(text: str) -> Set[str]:
    words = [w for w in text.lower().split() if w not in STOPWORDS]
    return {_stemmer.stem(remove_accent(w)) for w in words}


def similarity(a: str, b: str, mode: str = "f1") -> float:
    if mode not in SIMILARITY_MODES:
        raise ValueError(f"unknown similarity mode: {mode}")
    left = _stems(a)
    right = _stems(b)
    if not left or not right:
        return 0.0
    overlap = len(left & right)
    if mode == "jaccard":
        return overlap / len(left | right)
    precision = overlap / len(left)
    recall = overlap / len(right)
    if precision == 0 or recall == 0:
        return 0.0
    return 2 * precision * recall / (precision + recall)


def closest(
    target: str,
    candidates: Iterable[str],
    mode: str = "f1",
    threshold: float = 0.0,
) -> Optional[str]:
    best: Optional[str] = None
    best_score = -1.0
    for candidate in candidates:
        score = similarity(target, candidate, mode)
        if score <= threshold:
            continue
        if score > best_score:
            best_score = score
            best = candidate
    return best


def keyword_spans(keywords: Iterable[str]) -> List[str]:
    """Spans of every keyword, de-duplicated in first-seen order."""
    seen: Set[str] = set()
    result: List[str] = []
    for keyword in keywords:
        for span in spans(keyword):
            if span not in seen:
                seen.add(span)
                result.append(span)
    return result


__all__ = [
    "STOPWORDS",
    "remove_end_punctuation",
    "tokenize",
    "spans",
    "similarity",
    "closest",
    "keyword_spans",
]

"""
Fuzzy ticker matching.

``score`` is a pure function so ranking can be checked without a catalog
fetch. Higher is better and zero means no match.
"""

import re
from typing import Iterable, List, Optional, Tuple

WHOLE_WORD = 100
ALNUM_EXACT = 80
PREFIX = 60
CONTAINS = 40
CONTAINED = 20

MIN_CANDIDATE_LENGTH = 2

_NON_ALNUM = re.compile(r'[^A-Z0-9]+')


def _alnum(value: str) -> str:
    return _NON_ALNUM.sub('', value.upper())


def score(query: str, candidate: str) -> int:
    """Score how well ``candidate`` matches ``query``."""
    query = (query or '').strip().upper()
    candidate = (candidate or '').strip().upper()
    if not query or len(candidate) < MIN_CANDIDATE_LENGTH:
        return 0

    if re.search(r"(?<![A-Z0-9])" + re.escape(query) + r"(?![A-Z0-9])", candidate):
        return WHOLE_WORD

    q_norm, c_norm = _alnum(query), _alnum(candidate)
    if q_norm and q_norm == c_norm:
        return ALNUM_EXACT

    if candidate.startswith(query) or query.startswith(candidate):
        return PREFIX

    if query in candidate:
        return CONTAINS

    if candidate in query:
        return CONTAINED

    return 0


def rank(query: str, candidates: Iterable[str]) -> List[Tuple[str, int]]:
    """
    Rank candidates by score, best first.

    The sort is stable, so equal scores keep catalog order.
    """
    scored = [(candidate, score(query, candidate)) for candidate in candidates]
    matches = [item for item in scored if item[1] > 0]
    matches.sort(key=lambda item: item[1], reverse=True)
    return matches


def best_match(query: str, candidates: Iterable[str]) -> Optional[str]:
    ranked = rank(query, candidates)
    return ranked[0][0] if ranked else None

"""
Similarity scoring between positions of two tender versions.

Pure functions only: no I/O, no state. The weights and thresholds that
use these scores live in MatchingOptions.
"""

from dataclasses import dataclass
from typing import Optional

from rapidfuzz.distance import Levenshtein

from models.mapping import MatchingOptions
from models.position import Position
from utils.text_utils import normalize_text, normalize_number, split_number, parse_int

# Shared-prefix rule: names that agree on their first PREFIX_LENGTH
# characters (and that prefix is at least MIN_PREFIX_LENGTH long) are
# treated as the same work with an edited tail.
PREFIX_LENGTH = 30
MIN_PREFIX_LENGTH = 10
PREFIX_FLOOR = 0.7
CONTAINMENT_SCORE = 0.8

NO_CONTEXT_SCORE = 0.3

# Score by absolute difference of plain integer numbers
INTEGER_DISTANCE_SCORES = (
    (0, 1.0),
    (1, 0.85),
    (2, 0.7),
    (5, 0.5),
)

# Composite totals are rounded so that 0.6 + 0.3 lands on 0.9, not below it
SCORE_PRECISION = 6


@dataclass(frozen=True)
class MatchScore:
    """Composite score with its components."""
    total: float
    text: float
    context: float
    type: float


def edit_similarity(a: str, b: str) -> float:
    """1 - levenshtein(a, b) / max(len(a), len(b)), on already normalized text."""
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1.0 - Levenshtein.distance(a, b) / longest


def text_similarity(a: Optional[str], b: Optional[str]) -> float:
    """
    Similarity of two work names in [0, 1].

    Rules, in order:
    1. Equal after trim + lowercase → 1.0
    2. One side empty → 0.0
    3. Same first 30 characters, prefix at least 10 long → max(0.7, edit similarity)
    4. One contains the other → 0.8
    5. Otherwise → edit similarity
    """
    s1 = normalize_text(a)
    s2 = normalize_text(b)

    if s1 == s2:
        return 1.0

    if not s1 or not s2:
        return 0.0

    prefix = s1[:PREFIX_LENGTH]
    if prefix == s2[:PREFIX_LENGTH] and len(prefix) >= MIN_PREFIX_LENGTH:
        return max(PREFIX_FLOOR, edit_similarity(s1, s2))

    if s1 in s2 or s2 in s1:
        return CONTAINMENT_SCORE

    return edit_similarity(s1, s2)


def context_similarity(num_a: Optional[str], num_b: Optional[str]) -> float:
    """
    Similarity of two position numbers in [0, 1].

    - Missing either → 0.3
    - Equal → 1.0
    - Dotted numbers of equal depth → share of matching parts
    - Plain integers → by distance (0 → 1.0, 1 → 0.85, 2 → 0.7, ≤5 → 0.5)
    - Anything else → 0.3
    """
    n1 = normalize_number(num_a)
    n2 = normalize_number(num_b)

    if n1 is None or n2 is None:
        return NO_CONTEXT_SCORE

    if n1 == n2:
        return 1.0

    parts1 = split_number(n1)
    parts2 = split_number(n2)

    if len(parts1) > 1 and len(parts1) == len(parts2):
        matching = sum(1 for p1, p2 in zip(parts1, parts2) if p1 == p2)
        return matching / len(parts1)

    int1 = parse_int(n1)
    int2 = parse_int(n2)

    if int1 is not None and int2 is not None:
        diff = abs(int1 - int2)
        for max_diff, score in INTEGER_DISTANCE_SCORES:
            if diff <= max_diff:
                return score

    return NO_CONTEXT_SCORE


def type_similarity(kind_a: Optional[str], kind_b: Optional[str]) -> float:
    """Equal kinds → 1.0, one missing → 0.5, different → 0.0."""
    a = kind_a or None
    b = kind_b or None

    if a == b:
        return 1.0
    if a is None or b is None:
        return 0.5
    return 0.0


def composite_score(
    old: Position,
    new: Position,
    options: Optional[MatchingOptions] = None
) -> MatchScore:
    """
    Weighted similarity of two positions.

    total = text_weight * text + context_weight * context + type_weight * type

    Args:
        old: Position of the previous version
        new: Candidate position of the new version
        options: Weights (defaults 0.6 / 0.3 / 0.1)

    Returns:
        MatchScore with the rounded total and its components
    """
    options = options or MatchingOptions()

    text = text_similarity(old.name, new.name)
    context = context_similarity(old.number, new.number)
    kind = type_similarity(old.kind, new.kind)

    total = (
        options.text_weight * text
        + options.context_weight * context
        + options.type_weight * kind
    )

    return MatchScore(
        total=round(total, SCORE_PRECISION),
        text=text,
        context=context,
        type=kind,
    )

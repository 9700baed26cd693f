"""
Playback Matching Utilities

Text normalization and fuzzy scoring used to decide whether a catalog
candidate is the recording a user actually played.

Functions in this module are stateless and can be used independently.
"""

import re
import logging
from typing import Iterable, List, Optional
from rapidfuzz import fuzz

from models import MatchCandidate

logger = logging.getLogger(__name__)


# Relative weight of each field in a candidate's score (sums to 1.0)
RECORDING_TITLE_WEIGHT = 0.5
ARTIST_WEIGHT = 0.3
RELEASE_TITLE_WEIGHT = 0.2

# Below this similarity we retry without parenthetical content
PARENTHETICAL_FALLBACK_BELOW = 80

APOSTROPHE_VARIANTS = ["'", '’', '‘', 'ʼ', '`', '´']
DOUBLE_QUOTE_VARIANTS = ['"', '“', '”', '„', '«', '»']
DASH_VARIANTS = ['–', '—', '‐', '−']


def normalize_for_comparison(text: str) -> str:
    """
    Normalize text for fuzzy comparison
    Removes common variations that shouldn't affect matching

    Examples:
        "Don't Stop - Remastered 2011" -> "don t stop"
        "Song (feat. Someone)" -> "song"
        "Tom & Jerry" -> "tom and jerry"
    """
    if not text:
        return ""

    text = text.lower()

    # Apostrophes become spaces so "don't" matches catalogs spelling "Don T"
    for variant in APOSTROPHE_VARIANTS:
        text = text.replace(variant, ' ')
    for variant in DOUBLE_QUOTE_VARIANTS:
        text = text.replace(variant, '')
    for variant in DASH_VARIANTS:
        text = text.replace(variant, '-')

    # Featured artist annotations
    text = re.sub(r'\s*[\(\[](feat\.?|featuring|ft\.?|with)\s+[^\)\]]+[\)\]]', '', text)
    text = re.sub(r'\s*-\s*(feat\.?|featuring|ft\.?)\s+.*$', '', text)

    # Remaster annotations: "- Remastered", "- 2011 Remaster", "(Remastered 2009)"
    text = re.sub(r'\s*-\s*(\d{4}\s+)?remaster(ed)?(\s+\d{4})?.*$', '', text)
    text = re.sub(r'\s*[\(\[](\d{4}\s+)?remaster(ed)?(\s+\d{4})?(\s+version)?[\)\]]', '', text)

    # Live annotations: "- Live", "(Live)", "- Live at X", "(Live in X)"
    text = re.sub(r'\s*-\s*live(\s+(at|in|from)\s+.*)?$', '', text)
    text = re.sub(r'\s*[\(\[]live(\s+(at|in|from)\s+[^\)\]]*)?[\)\]]', '', text)

    # Normalize "and" vs "&"
    text = text.replace(' & ', ' and ')

    # Normalize spacing around dashes and slashes
    text = re.sub(r'\s*/\s*', ' ', text)
    text = re.sub(r'\s*-\s*', '-', text)

    # Remove extra whitespace
    text = ' '.join(text.split())

    return text


def calculate_similarity(text1: str, text2: str) -> float:
    """
    Calculate similarity between two strings using fuzzy matching.

    Handles parenthetical additions such as:
    - "Hurt" vs "Hurt (Quiet)"
    - "Heroes" vs "Heroes (Single Version)"

    Returns a score from 0-100
    """
    if not text1 or not text2:
        return 0

    norm1 = normalize_for_comparison(text1)
    norm2 = normalize_for_comparison(text2)

    score = fuzz.token_sort_ratio(norm1, norm2)

    if score < PARENTHETICAL_FALLBACK_BELOW:
        stripped1 = re.sub(r'\s*[\(\[][^\)\]]*[\)\]]\s*', ' ', norm1).strip()
        stripped2 = re.sub(r'\s*[\(\[][^\)\]]*[\)\]]\s*', ' ', norm2).strip()

        # Only use stripped comparison if something was actually removed
        if stripped1 != norm1 or stripped2 != norm2:
            stripped_score = fuzz.token_sort_ratio(stripped1, stripped2)
            if stripped_score > score:
                logger.debug(f"Parenthetical fallback: {score}% → {stripped_score}%")
                score = stripped_score

    return score


def artist_similarity(expected_artists: Iterable[str], credited_names: Iterable[str]) -> float:
    """
    Compare the submitted artist list against a catalog credit.

    token_set_ratio keeps "A, B" vs "B & A" and a missing featured artist
    from dragging the score down.

    Returns a score from 0-100
    """
    expected = ' '.join(normalize_for_comparison(a) for a in expected_artists if a)
    credited = ' '.join(normalize_for_comparison(n) for n in credited_names if n)
    if not expected or not credited:
        return 0
    return fuzz.token_set_ratio(expected, credited)


def score_candidate(recording_title: str, release_title: str, artists: List[str],
                    candidate_recording_title: str, candidate_release_title: str,
                    candidate_artists: List[str]) -> int:
    """
    Score a catalog candidate against the raw playback fields.

    Weighted average of recording title, artist and release title
    similarity, rounded to an integer between 0 and 100.
    """
    title_score = calculate_similarity(recording_title, candidate_recording_title)
    artist_score = artist_similarity(artists, candidate_artists)
    release_score = calculate_similarity(release_title, candidate_release_title)

    score = (
        RECORDING_TITLE_WEIGHT * title_score
        + ARTIST_WEIGHT * artist_score
        + RELEASE_TITLE_WEIGHT * release_score
    )
    score = max(0, min(100, round(score)))

    logger.debug(
        f"Scored '{candidate_recording_title}' / '{candidate_release_title}': "
        f"title={title_score:.0f} artist={artist_score:.0f} release={release_score:.0f} -> {score}"
    )
    return score


def select_best_match(candidates: List[MatchCandidate], threshold: int) -> Optional[MatchCandidate]:
    """
    Pick the highest scoring candidate if it reaches the threshold.

    Args:
        candidates: Scored candidates, in any order
        threshold: Minimum acceptable score (inclusive)

    Returns:
        The accepted candidate, or None when nothing scores high enough
    """
    if not candidates:
        return None

    best = max(candidates, key=lambda c: c.score)
    if best.score >= threshold:
        return best

    logger.debug(f"Best candidate scored {best.score}, below threshold {threshold}")
    return None

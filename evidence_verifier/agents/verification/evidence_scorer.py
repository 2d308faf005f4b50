"""Keyword and length heuristic scoring for evidence.

Score components (applied to lowercase source + " " + excerpt):
- Scholarly markers ("doi", "journal", "paper"): +4, counted once
- Book markers ("livro", "book"): +3, counted once
- "wikipedia": -2
- Excerpt longer than 250 characters: +2
- Excerpt shorter than 40 characters: -2

The total is clamped to [-5, 10]. Evidence with a score of at least 2 is
verified. Matching is plain substring search, so "ebook" counts as a book
marker and "paperback" as a scholarly one.
"""

from evidence_verifier.data_management.schemas.evidence_schema import SCORE_MAX, SCORE_MIN

SCHOLARLY_MARKERS = ("doi", "journal", "paper")
BOOK_MARKERS = ("livro", "book")
ENCYCLOPEDIA_MARKERS = ("wikipedia",)

SCHOLARLY_BONUS = 4
BOOK_BONUS = 3
ENCYCLOPEDIA_PENALTY = -2

LONG_EXCERPT_CHARS = 250
SHORT_EXCERPT_CHARS = 40
LONG_EXCERPT_BONUS = 2
SHORT_EXCERPT_PENALTY = -2

VERIFICATION_THRESHOLD = 2


def _contains_any(text: str, markers: tuple[str, ...]) -> bool:
    return any(marker in text for marker in markers)


def score_evidence(source: str, excerpt: str) -> int:
    """
    Compute the confidence score of a piece of evidence.

    Pure and deterministic: no I/O, no state between calls.

    Args:
        source: Where the evidence comes from (title, publisher, file name)
        excerpt: Text content of the evidence

    Returns:
        Integer score in [-5, 10]
    """
    text = f"{source} {excerpt}".lower()
    score = 0

    if _contains_any(text, SCHOLARLY_MARKERS):
        score += SCHOLARLY_BONUS
    if _contains_any(text, BOOK_MARKERS):
        score += BOOK_BONUS
    if _contains_any(text, ENCYCLOPEDIA_MARKERS):
        score += ENCYCLOPEDIA_PENALTY

    if len(excerpt) > LONG_EXCERPT_CHARS:
        score += LONG_EXCERPT_BONUS
    if len(excerpt) < SHORT_EXCERPT_CHARS:
        score += SHORT_EXCERPT_PENALTY

    return max(SCORE_MIN, min(SCORE_MAX, score))


def is_verified(score: int) -> bool:
    """Evidence is verified when its score reaches the threshold."""
    return score >= VERIFICATION_THRESHOLD

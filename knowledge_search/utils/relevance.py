"""Similarity score to relevance band mapping.

Vector search returns a cosine similarity in [0.0, 1.0].  Users get a
qualitative label next to each result so they can judge a hit without
interpreting raw numbers.
"""

from enum import Enum


class RelevanceBand(Enum):
    """Qualitative relevance tiers shown next to search results."""

    VERY_HIGH = "Very high relevance"  # >= 0.8
    HIGH = "High relevance"            # 0.7 - 0.8
    GOOD = "Good relevance"            # 0.6 - 0.7
    MODERATE = "Moderate relevance"    # 0.5 - 0.6
    LOW = "Low relevance"              # < 0.5


def relevance_band(score: float) -> RelevanceBand:
    """Map a similarity score to its :class:`RelevanceBand`.

    Args:
        score: Similarity score in [0.0, 1.0].

    Returns:
        The highest band whose lower threshold the score reaches.
    """
    if score >= 0.8:
        return RelevanceBand.VERY_HIGH
    if score >= 0.7:
        return RelevanceBand.HIGH
    if score >= 0.6:
        return RelevanceBand.GOOD
    if score >= 0.5:
        return RelevanceBand.MODERATE
    return RelevanceBand.LOW

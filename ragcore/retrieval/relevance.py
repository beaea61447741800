"""Relevance filtering and heading-aware reranking of search candidates."""

import logging
import re
from collections.abc import Sequence

from ragcore.exceptions import ConfigError
from ragcore.models.query_result import FilteredResults
from ragcore.models.record import RetrievedCandidate

logger = logging.getLogger(__name__)

HIGH_QUALITY_SCORE = 0.7
MEDIUM_QUALITY_SCORE = 0.5
OPTIMAL_RELEVANT_COUNT = 5

# Quality score weights
AVERAGE_WEIGHT = 0.6
COUNT_WEIGHT = 0.2
MAX_WEIGHT = 0.2

STOP_WORDS = frozenset(
    {
        "the", "and", "for", "are", "was", "were", "what", "which", "who",
        "whom", "when", "where", "why", "how", "does", "did", "can", "could",
        "with", "from", "into", "about", "this", "that", "these", "those",
        "there", "their", "have", "has", "had", "not", "but", "you", "your",
        "its", "any", "all", "some", "should", "would", "will", "tell",
    }
)

_WORD = re.compile(r"\w+")


def extract_keywords(text: str) -> list[str]:
    """Lowercased words longer than two characters, minus stop words."""
    return [
        word
        for word in _WORD.findall(text.lower())
        if len(word) > 2 and word not in STOP_WORDS
    ]


class RelevanceFilter:
    """Separates relevant candidates from noise and scores the result set.

    Candidates with ``similarity >= min_similarity_threshold`` are relevant;
    the rest are kept as ``filtered_out`` so callers can show them as
    alternatives.

    Args:
        min_similarity_threshold: Cut-off similarity, in [0, 1).

    Raises:
        ConfigError: If the threshold is outside [0, 1).
    """

    def __init__(self, min_similarity_threshold: float = 0.25) -> None:
        if not 0.0 <= min_similarity_threshold < 1.0:
            raise ConfigError(
                f"min_similarity_threshold must be within [0, 1), got {min_similarity_threshold}"
            )
        self._threshold = min_similarity_threshold

    @property
    def min_similarity_threshold(self) -> float:
        return self._threshold

    def filter_and_rank(
        self, candidates: Sequence[RetrievedCandidate], query: str
    ) -> FilteredResults:
        """Partition candidates by the threshold and assess the relevant set.

        Args:
            candidates: Search results, usually sorted by similarity.
            query: The query text (used only for logging).

        Returns:
            FilteredResults; ``relevant`` keeps the input order.
        """
        if not candidates:
            return FilteredResults(
                quality_score=0.0,
                suggestion="No results found. Try rephrasing the question.",
            )

        relevant = [c for c in candidates if c.similarity >= self._threshold]
        filtered_out = [c for c in candidates if c.similarity < self._threshold]

        quality_score = self.quality_score(relevant)
        suggestion = self._suggestion(relevant, filtered_out, quality_score)

        logger.info(
            "Filtered %d candidates for '%s': %d relevant, %d filtered out, quality %.3f",
            len(candidates),
            query[:100],
            len(relevant),
            len(filtered_out),
            quality_score,
        )

        return FilteredResults(
            relevant=relevant,
            filtered_out=filtered_out,
            quality_score=quality_score,
            suggestion=suggestion,
        )

    def quality_score(self, relevant: Sequence[RetrievedCandidate]) -> float:
        """Score a relevant set in [0, 1].

        ``0.6 * avg + 0.2 * min(n / 5, 1) + 0.2 * max``, where avg and max
        similarities are rescaled from [threshold, 1] to [0, 1].
        """
        if not relevant:
            return 0.0

        similarities = [c.similarity for c in relevant]
        average = sum(similarities) / len(similarities)
        count_score = min(len(relevant) / OPTIMAL_RELEVANT_COUNT, 1.0)

        score = (
            AVERAGE_WEIGHT * self._rescale(average)
            + COUNT_WEIGHT * count_score
            + MAX_WEIGHT * self._rescale(max(similarities))
        )
        return min(max(score, 0.0), 1.0)

    def rerank_with_heading_boost(
        self,
        candidates: Sequence[RetrievedCandidate],
        query: str,
        boost_factor: float = 0.15,
    ) -> list[RetrievedCandidate]:
        """Boost candidates whose heading context mentions query keywords.

        Each keyword found in the heading context adds ``boost_factor`` to
        the similarity, capped at 1.0. Results are re-sorted by the boosted
        similarity.
        """
        keywords = extract_keywords(query)
        boosted: list[RetrievedCandidate] = []

        for candidate in candidates:
            heading = candidate.heading_context.lower()
            matches = sum(1 for keyword in keywords if keyword in heading)
            if matches:
                similarity = min(candidate.similarity + boost_factor * matches, 1.0)
                candidate = candidate.model_copy(update={"similarity": similarity})
            boosted.append(candidate)

        boosted.sort(key=lambda c: c.similarity, reverse=True)
        return boosted

    def _rescale(self, similarity: float) -> float:
        return (similarity - self._threshold) / (1.0 - self._threshold)

    def _suggestion(
        self,
        relevant: Sequence[RetrievedCandidate],
        filtered_out: Sequence[RetrievedCandidate],
        quality_score: float,
    ) -> str:
        if not relevant:
            return (
                f"No relevant results (all below the {self._threshold} similarity threshold). "
                "Try rephrasing the question or adding details."
            )

        quality = f"{quality_score * 100:.1f}%"
        if quality_score >= HIGH_QUALITY_SCORE:
            return f"High quality results (quality: {quality})."
        if quality_score >= MEDIUM_QUALITY_SCORE:
            if filtered_out:
                return (
                    f"Medium relevance results (quality: {quality}). "
                    f"{len(filtered_out)} less relevant chunks were filtered out; "
                    "consider the alternative results."
                )
            return (
                f"Medium relevance results (quality: {quality}). "
                "Try refining the question for more precise results."
            )
        return (
            f"Low relevance results (quality: {quality}). "
            "Consider rephrasing the question or using different keywords."
        )

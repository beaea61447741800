"""Query-time retrieval: relevance filtering and the retrieval service."""

from ragcore.retrieval.relevance import RelevanceFilter, extract_keywords
from ragcore.retrieval.service import AnswerGenerator, RetrievalService, format_context

__all__ = [
    "AnswerGenerator",
    "RelevanceFilter",
    "RetrievalService",
    "extract_keywords",
    "format_context",
]

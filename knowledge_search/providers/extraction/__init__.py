"""Document text extraction."""

from knowledge_search.providers.extraction.local_text_extractor import LocalTextExtractor

__all__ = ["LocalTextExtractor"]

"""knowledge-search: local document ingestion and semantic retrieval.

Documents are extracted to text, split into overlapping word windows,
embedded with a local model and stored in a ChromaDB collection.  Queries
are embedded the same way and answered with ranked, snippet-enriched
passages.
"""

__version__ = "0.1.0"

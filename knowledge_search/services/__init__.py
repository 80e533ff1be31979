"""Service layer: chunking, embedding orchestration, and the search service."""

"""Command-line tools for the knowledge search service."""

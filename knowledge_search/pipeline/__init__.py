"""Ingest progress tracking."""

from knowledge_search.pipeline.progress_tracker import ProgressTracker, report_progress

__all__ = ["ProgressTracker", "report_progress"]

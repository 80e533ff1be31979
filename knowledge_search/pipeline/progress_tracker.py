"""Ingest progress tracking with callback-based listener notification.

The search service reports each processing stage to a
:class:`ProgressTracker`, which keeps the current
:class:`~knowledge_search.models.documents.ProcessingStatus` projection and
broadcasts every update:

    KnowledgeSearchService --update()--> ProgressTracker --callback()--> CLI printer
                                                          --> per-call on_progress

Listener errors are caught and logged so a broken listener cannot stall
an ingest.  Both sync and async listeners are supported.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable

import structlog

from knowledge_search.interfaces.embedding_service import ProgressCallback
from knowledge_search.models.documents import ProcessingStatus
from knowledge_search.utils.logging import get_logger

logger = structlog.get_logger(logger_name=__name__)

StatusListener = Callable[[ProcessingStatus, str | None], object]


def report_progress(
    callback: ProgressCallback | None,
    stage: str,
    progress: float,
    details: str | None = None,
) -> None:
    """Invoke a plain progress callback, logging and dropping its errors."""
    if callback is None:
        return
    try:
        callback(stage, progress, details)
    except Exception as exc:
        logger.warning("progress_callback_error", stage=stage, error=str(exc))


class ProgressTracker:
    """Tracks and broadcasts the status of the ingest in progress.

    Only one status is held; a new ingest overwrites the previous one.
    """

    def __init__(self) -> None:
        self._status = ProcessingStatus()
        self._listeners: list[StatusListener] = []
        self._logger: structlog.BoundLogger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def status(self) -> ProcessingStatus:
        return self._status

    async def start(self, filename: str) -> None:
        """Mark an ingest of *filename* as running."""
        self._status = ProcessingStatus(
            stage="Starting",
            progress=0.0,
            is_processing=True,
            current_file=filename,
        )
        await self._notify_listeners(None)

    async def update(
        self,
        stage: str,
        progress: float,
        details: str | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        """Record a stage update and notify listeners.

        Parameters
        ----------
        stage:
            Human-readable stage name.
        progress:
            Completion percentage, clamped to 0.0 - 100.0.
        details:
            Optional extra text, e.g. ``"8/10 chunks (80%)"``.
        on_progress:
            Per-call callback that also receives this update.
        """
        self._record(stage, progress, details, on_progress)
        await self._notify_listeners(details)

    def update_nowait(
        self,
        stage: str,
        progress: float,
        details: str | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        """Synchronous :meth:`update` for use inside plain progress callbacks.

        Must be called with an event loop running; async listeners are
        scheduled as tasks instead of awaited.
        """
        self._record(stage, progress, details, on_progress)
        for callback in list(self._listeners):
            try:
                result = callback(self._status, details)
                if asyncio.iscoroutine(result):
                    asyncio.ensure_future(result)
            except Exception as exc:
                self._logger.warning(
                    "listener_callback_error",
                    error=str(exc),
                    callback=getattr(callback, "__name__", repr(callback)),
                )

    async def finish(self) -> None:
        """Mark the running ingest as finished (successfully or not)."""
        self._status = self._status.model_copy(
            update={"is_processing": False, "current_file": None}
        )
        await self._notify_listeners(None)

    def register_listener(self, callback: StatusListener) -> None:
        """Register a sync or async callable accepting ``(status, details)``."""
        if callback not in self._listeners:
            self._listeners.append(callback)
            self._logger.debug("listener_registered", total_listeners=len(self._listeners))

    def unregister_listener(self, callback: StatusListener) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)
            self._logger.debug("listener_unregistered", remaining_listeners=len(self._listeners))

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _record(
        self,
        stage: str,
        progress: float,
        details: str | None,
        on_progress: ProgressCallback | None,
    ) -> None:
        progress = max(0.0, min(100.0, progress))
        self._status = self._status.model_copy(update={"stage": stage, "progress": progress})
        self._logger.debug(
            "progress_update",
            stage=stage,
            progress=round(progress, 1),
            details=details,
            current_file=self._status.current_file,
        )
        report_progress(on_progress, stage, progress, details)

    async def _notify_listeners(self, details: str | None) -> None:
        status = self._status
        for callback in list(self._listeners):
            try:
                result = callback(status, details)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as exc:
                self._logger.warning(
                    "listener_callback_error",
                    error=str(exc),
                    callback=getattr(callback, "__name__", repr(callback)),
                )

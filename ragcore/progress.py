"""Build progress tracking.

A build moves through ``loading -> chunking -> embedding -> saving`` and
ends in ``completed`` or ``error``. Each phase owns a slice of the overall
percentage:

    loading     0-20%
    chunking   20-50%
    embedding  50-90%
    saving     90-100%

``BuildProgressTracker.start_building()`` hands out a ``BuildSession`` that
the pipeline reports into; pollers read snapshots from the tracker. Only
one build may be active per tracker at a time.
"""

import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from uuid import uuid4

from ragcore.exceptions import BuildInProgressError
from ragcore.models.progress import BuildProgress, BuildStatus

logger = logging.getLogger(__name__)

MAX_LOG_LINES = 100
DEFAULT_HISTORY_SIZE = 10

PHASE_ORDER = [
    BuildStatus.LOADING,
    BuildStatus.CHUNKING,
    BuildStatus.EMBEDDING,
    BuildStatus.SAVING,
    BuildStatus.COMPLETED,
]

Clock = Callable[[], float]


def _phase_percent(base: int, span: int, processed: int, total: int) -> int:
    return base + processed * span // max(total, 1)


def _clamp(processed: int, total: int) -> int:
    return max(0, min(processed, total))


class BuildSession:
    """Handle for one build, returned by ``BuildProgressTracker.start_building``."""

    def __init__(self, tracker: "BuildProgressTracker", build_id: str) -> None:
        self._tracker = tracker
        self._build_id = build_id

    @property
    def build_id(self) -> str:
        return self._build_id

    @property
    def progress(self) -> BuildProgress:
        return self._tracker.get_progress(self._build_id)

    @property
    def is_finished(self) -> bool:
        return self.progress.status.is_terminal

    def update_documents_loaded(self, loaded: int, total: int) -> None:
        loaded = _clamp(loaded, total)
        self._tracker._apply(
            self._build_id,
            BuildStatus.LOADING,
            lambda _: {
                "current_step": f"Loading documents... ({loaded}/{total})",
                "total_documents": total,
                "loaded_documents": loaded,
                "progress_percent": _phase_percent(0, 20, loaded, total),
            },
        )

    def start_chunking(self, total: int) -> None:
        self._tracker._apply(
            self._build_id,
            BuildStatus.CHUNKING,
            lambda _: {
                "current_step": f"Splitting documents into chunks... (0/{total})",
                "total_chunks": total,
                "processed_chunks": 0,
                "progress_percent": 20,
            },
        )

    def update_chunking(self, processed: int, total: int) -> None:
        processed = _clamp(processed, total)
        self._tracker._apply(
            self._build_id,
            BuildStatus.CHUNKING,
            lambda _: {
                "current_step": f"Splitting documents into chunks... ({processed}/{total})",
                "total_chunks": total,
                "processed_chunks": processed,
                "progress_percent": _phase_percent(20, 30, processed, total),
            },
        )

    def start_embedding(self, total: int) -> None:
        self._tracker._apply(
            self._build_id,
            BuildStatus.EMBEDDING,
            lambda _: {
                "current_step": f"Generating embeddings... (0/{total})",
                "total_chunks": total,
                "processed_chunks": 0,
                "progress_percent": 50,
                "estimated_remaining_seconds": 0,
            },
        )

    def update_embedding(self, processed: int, total: int) -> None:
        processed = _clamp(processed, total)
        now = self._tracker.now_millis()

        def changes(current: BuildProgress) -> dict:
            update = {
                "current_step": f"Generating embeddings... ({processed}/{total})",
                "total_chunks": total,
                "processed_chunks": processed,
                "progress_percent": _phase_percent(50, 40, processed, total),
            }
            if processed > 0:
                elapsed = (now - current.start_time) / 1000
                update["estimated_remaining_seconds"] = round(
                    (total - processed) * (elapsed / processed)
                )
            return update

        self._tracker._apply(self._build_id, BuildStatus.EMBEDDING, changes)

    def start_saving(self, total: int) -> None:
        self._tracker._apply(
            self._build_id,
            BuildStatus.SAVING,
            lambda _: {
                "current_step": f"Saving to database... (0/{total})",
                "total_chunks": total,
                "processed_chunks": 0,
                "progress_percent": 90,
                "estimated_remaining_seconds": 0,
            },
        )

    def update_saving(self, processed: int, total: int) -> None:
        processed = _clamp(processed, total)
        self._tracker._apply(
            self._build_id,
            BuildStatus.SAVING,
            lambda _: {
                "current_step": f"Saving to database... ({processed}/{total})",
                "total_chunks": total,
                "processed_chunks": processed,
                "progress_percent": _phase_percent(90, 10, processed, total),
            },
        )

    def complete(self) -> None:
        self._tracker._apply(
            self._build_id,
            BuildStatus.COMPLETED,
            lambda current: {
                "current_step": "Knowledge base built successfully!",
                "progress_percent": 100,
                "processed_chunks": current.total_chunks,
                "loaded_documents": current.total_documents,
                "estimated_remaining_seconds": 0,
            },
        )

    def error(self, message: str) -> None:
        """Mark the build failed, keeping the percentage reached so far."""
        self._tracker._apply(
            self._build_id,
            BuildStatus.ERROR,
            lambda _: {"current_step": "Build failed!", "error_message": message},
        )

    def log(self, message: str) -> None:
        """Append a line to the build's detailed log (last 100 lines kept)."""
        self._tracker._append_log(self._build_id, message)


class BuildProgressTracker:
    """Holds the progress of builds and serialises updates to it.

    Snapshots are immutable and swapped in under a lock, so
    ``get_progress`` reads without locking.

    Args:
        clock: Time source in seconds (defaults to ``time.time``).
        history_size: Number of builds whose final state is remembered.
    """

    def __init__(self, clock: Clock = time.time, history_size: int = DEFAULT_HISTORY_SIZE) -> None:
        self._clock = clock
        self._history_size = history_size
        self._lock = threading.Lock()
        self._builds: OrderedDict[str, BuildProgress] = OrderedDict()
        self._latest = BuildProgress()
        self._active_id: str | None = None

    def now_millis(self) -> int:
        return int(self._clock() * 1000)

    @property
    def is_building(self) -> bool:
        return self._active_id is not None

    def start_building(self) -> BuildSession:
        """Begin a new build in the ``loading`` state.

        Raises:
            BuildInProgressError: If another build has not finished yet.
        """
        with self._lock:
            if self._active_id is not None:
                raise BuildInProgressError(f"Build {self._active_id} is already in progress")

            build_id = uuid4().hex
            progress = BuildProgress(
                build_id=build_id,
                status=BuildStatus.LOADING,
                current_step="Loading documents...",
                start_time=self.now_millis(),
                progress_percent=0,
            )
            self._remember(progress)
            self._active_id = build_id

        logger.info("Build %s started", build_id)
        return BuildSession(self, build_id)

    def get_progress(self, build_id: str | None = None) -> BuildProgress:
        """Snapshot of the latest build (or the given one).

        ``elapsed_seconds`` is computed live while the build runs and frozen
        once it has finished.

        Raises:
            KeyError: If ``build_id`` is unknown.
        """
        progress = self._latest if build_id is None else self._builds[build_id]
        if progress.start_time == 0 or progress.status.is_terminal:
            return progress
        return progress.model_copy(update={"elapsed_seconds": self._elapsed(progress)})

    def reset(self) -> None:
        """Return to ``idle`` and forget finished builds.

        Raises:
            BuildInProgressError: If a build is still running.
        """
        with self._lock:
            if self._active_id is not None:
                raise BuildInProgressError("Cannot reset while a build is in progress")
            self._builds.clear()
            self._latest = BuildProgress()

    def _elapsed(self, progress: BuildProgress) -> int:
        return max(0, (self.now_millis() - progress.start_time) // 1000)

    def _remember(self, progress: BuildProgress) -> None:
        self._builds[progress.build_id] = progress
        self._builds.move_to_end(progress.build_id)
        while len(self._builds) > self._history_size:
            self._builds.popitem(last=False)
        self._latest = progress

    def _apply(
        self,
        build_id: str,
        status: BuildStatus,
        compute: Callable[[BuildProgress], dict],
    ) -> None:
        with self._lock:
            current = self._builds[build_id]
            if current.status.is_terminal:
                logger.warning(
                    "Ignoring '%s' update for finished build %s", status.value, build_id
                )
                return
            if status is not BuildStatus.ERROR and PHASE_ORDER.index(status) < PHASE_ORDER.index(
                current.status
            ):
                raise ValueError(
                    f"Build {build_id} cannot move from {current.status.value} to {status.value}"
                )

            changes = compute(current)
            changes["status"] = status
            # Percent never goes backwards within a build
            changes["progress_percent"] = min(
                100, max(changes.get("progress_percent", 0), current.progress_percent)
            )
            if status.is_terminal:
                changes["elapsed_seconds"] = self._elapsed(current)

            updated = current.model_copy(update=changes)
            self._builds[build_id] = updated
            if self._latest.build_id == build_id:
                self._latest = updated
            if status.is_terminal:
                self._active_id = None

        if status.is_terminal:
            logger.info("Build %s finished with status %s", build_id, status.value)

    def _append_log(self, build_id: str, message: str) -> None:
        with self._lock:
            current = self._builds[build_id]
            elapsed = self._elapsed(current)
            line = f"[{elapsed // 60:02d}:{elapsed % 60:02d}] {message}"
            logs = [*current.detailed_logs, line][-MAX_LOG_LINES:]
            updated = current.model_copy(update={"detailed_logs": logs})
            self._builds[build_id] = updated
            if self._latest.build_id == build_id:
                self._latest = updated

"""Build progress data model."""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

PROGRESS_BAR_WIDTH = 20

# Keys exposed to progress pollers
POLLING_FIELDS = {
    "status",
    "current_step",
    "total_chunks",
    "processed_chunks",
    "total_documents",
    "loaded_documents",
    "progress_percent",
    "elapsed_seconds",
    "estimated_remaining_seconds",
    "error_message",
}


class BuildStatus(str, Enum):
    """States of the build state machine."""

    IDLE = "idle"
    LOADING = "loading"
    CHUNKING = "chunking"
    EMBEDDING = "embedding"
    SAVING = "saving"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (BuildStatus.COMPLETED, BuildStatus.ERROR)

    @property
    def is_active(self) -> bool:
        return self not in (BuildStatus.IDLE, BuildStatus.COMPLETED, BuildStatus.ERROR)


class BuildProgress(BaseModel):
    """Immutable snapshot of one build's progress.

    Trackers replace snapshots wholesale; readers may hold on to one without
    seeing later updates.
    """

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    build_id: str = ""
    status: BuildStatus = BuildStatus.IDLE
    current_step: str = "Waiting to start..."
    total_documents: int = 0
    loaded_documents: int = 0
    total_chunks: int = 0
    processed_chunks: int = 0
    progress_percent: int = 0
    start_time: int = 0  # epoch millis
    elapsed_seconds: int = 0
    estimated_remaining_seconds: int = 0
    error_message: str | None = None
    detailed_logs: list[str] = Field(default_factory=list)

    def progress_bar(self) -> str:
        """Render e.g. ``[██████░░░░░░░░░░░░░░] 30%``."""
        filled = self.progress_percent * PROGRESS_BAR_WIDTH // 100
        bar = "█" * filled + "░" * (PROGRESS_BAR_WIDTH - filled)
        return f"[{bar}] {self.progress_percent}%"

    def formatted_elapsed(self) -> str:
        minutes, seconds = divmod(self.elapsed_seconds, 60)
        return f"{minutes:02d}:{seconds:02d}"

    def formatted_eta(self) -> str:
        if self.estimated_remaining_seconds <= 0:
            return "calculating..."
        minutes, seconds = divmod(self.estimated_remaining_seconds, 60)
        return f"{minutes:02d}:{seconds:02d}"

    def to_polling_dict(self) -> dict:
        """Serialize to the camelCase shape returned to progress pollers."""
        data = self.model_dump(mode="json", by_alias=True, include=POLLING_FIELDS)
        if self.error_message is None:
            data.pop("errorMessage", None)
        return data

    def to_console_output(self) -> str:
        lines = [
            "=" * 60,
            " Knowledge base build progress",
            "-" * 60,
            f" Status: {self.status.value}",
            f" Current step: {self.current_step}",
            f" Documents: {self.loaded_documents}/{self.total_documents}",
            f" Chunks: {self.processed_chunks}/{self.total_chunks}",
            f" Progress: {self.progress_bar()}",
            f" Elapsed: {self.formatted_elapsed()} | ETA: {self.formatted_eta()}",
        ]
        if self.error_message is not None:
            lines.append(f" ERROR: {self.error_message}")
        lines.append("=" * 60)
        return "\n".join(lines)

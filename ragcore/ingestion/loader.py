"""Loads source documents from disk for indexing."""

import logging
from collections.abc import Callable
from pathlib import Path

import chardet

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


class DocumentLoader:
    """Reads text or Markdown files from a directory into memory.

    Files are keyed by file name. UTF-8 is tried first; other encodings are
    detected with chardet.
    """

    def load_directory(
        self,
        directory: str | Path,
        pattern: str = "*.md",
        on_progress: ProgressCallback | None = None,
    ) -> dict[str, str]:
        """Load every file matching ``pattern`` directly inside ``directory``.

        Args:
            directory: Directory to scan (not recursive).
            pattern: Glob pattern for file names.
            on_progress: Called as ``on_progress(loaded, total)`` after each file.

        Returns:
            Mapping of file name to text, ordered by file name.

        Raises:
            FileNotFoundError: If the directory does not exist.
            NotADirectoryError: If the path is not a directory.
        """
        path = Path(directory)
        if not path.exists():
            raise FileNotFoundError(f"Directory does not exist: {path}")
        if not path.is_dir():
            raise NotADirectoryError(f"Not a directory: {path}")

        files = sorted(p for p in path.glob(pattern) if p.is_file())
        documents: dict[str, str] = {}

        for loaded, file_path in enumerate(files, start=1):
            try:
                content = self.read_text(file_path)
            except OSError:
                logger.exception("Error loading document: %s", file_path.name)
            else:
                documents[file_path.name] = content
                logger.debug(
                    "Loaded document: %s (%d characters)", file_path.name, len(content)
                )
            if on_progress is not None:
                on_progress(loaded, len(files))

        logger.info("Loaded %d documents from %s", len(documents), path)
        return documents

    def read_text(self, file_path: Path) -> str:
        """Read a plain text or Markdown file with encoding detection.

        Args:
            file_path: Path to the text file.

        Returns:
            The file content as a string.
        """
        try:
            return file_path.read_text(encoding="utf-8")
        except UnicodeDecodeError:
            pass

        raw_bytes = file_path.read_bytes()
        detected = chardet.detect(raw_bytes)
        encoding = detected.get("encoding") or "utf-8"
        confidence = detected.get("confidence") or 0

        if confidence < 0.7:
            logger.warning(
                "Low confidence encoding detection for %s: %s (%.0f%%)",
                file_path,
                encoding,
                confidence * 100,
            )

        try:
            return raw_bytes.decode(encoding)
        except (UnicodeDecodeError, LookupError):
            logger.error("Failed to decode file: %s", file_path)
            return raw_bytes.decode("utf-8", errors="replace")

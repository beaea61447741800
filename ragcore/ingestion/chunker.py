"""Markdown-aware, sentence-preserving document chunker."""

import logging
import re
from collections.abc import Callable, Mapping

from ragcore.config import ChunkingConfig
from ragcore.exceptions import ConfigError
from ragcore.models.chunk import TextChunk, estimate_tokens
from ragcore.models.section import Section

logger = logging.getLogger(__name__)

TARGET_CHUNK_BOUNDS = (500, 1000)
OVERLAP_BOUNDS = (50, 100)

# Overlap limits when carrying trailing sentences into the next chunk
MAX_OVERLAP_SENTENCES = 5
MARKDOWN_OVERLAP_SENTENCES = 3

SENTENCE_END = re.compile(r"[.!?]+")
MARKDOWN_HEADING = re.compile(r"^(#{1,6})[ \t]+(.+?)(?:[ \t]+#+)?[ \t]*$", re.MULTILINE)
CODE_FENCE = re.compile(r"^(```|~~~).*?^\1[ \t]*$", re.MULTILINE | re.DOTALL)

Span = tuple[int, int]
OverlapPicker = Callable[[str, list[Span], int, int], int]


def looks_like_markdown(text: str) -> bool:
    """Return True if the text contains at least one ATX heading."""
    return MARKDOWN_HEADING.search(text) is not None


def _strip_span(text: str, start: int, end: int) -> Span | None:
    """Shrink [start, end) past surrounding whitespace; None if nothing is left."""
    while start < end and text[start].isspace():
        start += 1
    while end > start and text[end - 1].isspace():
        end -= 1
    if start >= end:
        return None
    return start, end


class DocumentChunker:
    """Splits documents into overlapping chunks for embedding.

    Chunking strategy:
    1. Markdown: split on heading boundaries, tagging each chunk with its
       heading path. Sections over the target size are split sentence by
       sentence, carrying the last three sentences into the next sub-chunk.
    2. Sentences: for plain text (or when markdown handling is disabled),
       accumulate sentences up to the target size and seed each new chunk
       with trailing sentences of the previous one, worth up to
       ``overlap_size`` tokens.

    Every chunk's text is an exact slice of its source document, so
    ``start_position``/``end_position`` always point back into it.

    Args:
        config: ChunkingConfig with target_chunk_size, overlap_size and
                markdown_aware settings.

    Raises:
        ConfigError: If the sizes are outside their bounds or the overlap
                     is not smaller than the target.
    """

    def __init__(self, config: ChunkingConfig | None = None) -> None:
        self._config = config or ChunkingConfig()
        self._validate(self._config)

    @staticmethod
    def _validate(config: ChunkingConfig) -> None:
        low, high = TARGET_CHUNK_BOUNDS
        if not low <= config.target_chunk_size <= high:
            raise ConfigError(
                f"target_chunk_size must be within {low}-{high} tokens, "
                f"got {config.target_chunk_size}"
            )
        low, high = OVERLAP_BOUNDS
        if not low <= config.overlap_size <= high:
            raise ConfigError(
                f"overlap_size must be within {low}-{high} tokens, got {config.overlap_size}"
            )
        if config.target_chunk_size <= config.overlap_size:
            raise ConfigError("target_chunk_size must be larger than overlap_size")

    @property
    def config(self) -> ChunkingConfig:
        return self._config

    def chunk(self, text: str, source_file: str) -> list[TextChunk]:
        """Split one document into chunks.

        Args:
            text: The document text.
            source_file: Name of the source file, stored on every chunk.

        Returns:
            Chunks in document order with chunk_index 0..n-1.
        """
        if not text.strip():
            return []

        logger.info("Chunking %s, total length: %d", source_file, len(text))

        if self._config.markdown_aware and looks_like_markdown(text):
            pieces = self._chunk_markdown(text)
        else:
            sentences = self._split_sentences(text, 0, len(text))
            spans = self._pack_sentences(text, sentences, self._overlap_by_tokens)
            pieces = [(start, end, "") for start, end in spans]

        chunks = [
            TextChunk(
                text=text[start:end],
                source_file=source_file,
                chunk_index=index,
                start_position=start,
                end_position=end,
                heading_context=heading,
            )
            for index, (start, end, heading) in enumerate(pieces)
        ]

        logger.info("Created %d chunks from %s", len(chunks), source_file)
        return chunks

    def chunk_documents(self, documents: Mapping[str, str]) -> list[TextChunk]:
        """Chunk several documents, keyed by file name.

        chunk_index restarts at 0 for each file.
        """
        all_chunks: list[TextChunk] = []
        for filename, content in documents.items():
            all_chunks.extend(self.chunk(content, filename))
        logger.info("Total chunks created: %d", len(all_chunks))
        return all_chunks

    # ── Markdown ────────────────────────────────────────────────────────────

    def _chunk_markdown(self, text: str) -> list[tuple[int, int, str]]:
        pieces: list[tuple[int, int, str]] = []

        for section in self._detect_sections(text):
            span = _strip_span(text, section.char_start, section.char_end)
            if span is None:
                continue
            start, end = span

            if estimate_tokens(text[start:end]) <= self._config.target_chunk_size:
                pieces.append((start, end, section.heading_path))
                continue

            logger.debug(
                "Section '%s' exceeds target size, splitting by sentences",
                section.heading_path,
            )
            sentences = self._split_sentences(text, start, end)
            for sub_start, sub_end in self._pack_sentences(
                text, sentences, self._overlap_by_count
            ):
                pieces.append((sub_start, sub_end, section.heading_path))

        return pieces

    def _detect_sections(self, text: str) -> list[Section]:
        """Split markdown text into sections, one per heading transition.

        Uses a heading stack: a heading at level N pops every entry at level
        >= N before being pushed, so the stack always holds the path from the
        top-level heading down to the current one. A heading with no body
        before the next heading is folded into the following section.

        Args:
            text: The markdown document.

        Returns:
            Sections in document order.
        """
        fences = [m.span() for m in CODE_FENCE.finditer(text)]
        headings = [
            m
            for m in MARKDOWN_HEADING.finditer(text)
            if not any(f_start <= m.start() < f_end for f_start, f_end in fences)
        ]

        sections: list[Section] = []
        first_heading = headings[0].start() if headings else len(text)
        if text[:first_heading].strip():
            sections.append(Section(title="", char_start=0, char_end=first_heading))

        stack: list[tuple[int, str]] = []
        pending_start: int | None = None

        for i, match in enumerate(headings):
            level = len(match.group(1))
            title = match.group(2).strip()

            while stack and stack[-1][0] >= level:
                stack.pop()
            stack.append((level, title))

            end = headings[i + 1].start() if i + 1 < len(headings) else len(text)
            start = match.start() if pending_start is None else pending_start

            is_last = i + 1 == len(headings)
            if not text[match.end():end].strip() and not is_last:
                pending_start = start
                continue
            pending_start = None

            sections.append(
                Section(
                    title=title,
                    level=level,
                    heading_path=" > ".join(t for _, t in stack),
                    char_start=start,
                    char_end=end,
                )
            )

        return sections

    # ── Sentences ───────────────────────────────────────────────────────────

    def _split_sentences(self, text: str, start: int, end: int) -> list[Span]:
        """Split text[start:end] into sentence spans.

        A run of ``.``, ``!`` or ``?`` ends a sentence; trailing text without
        a terminator is its own sentence.
        """
        sentences: list[Span] = []
        last_end = start

        for match in SENTENCE_END.finditer(text, start, end):
            span = _strip_span(text, last_end, match.end())
            if span is not None:
                sentences.append(span)
            last_end = match.end()

        remaining = _strip_span(text, last_end, end)
        if remaining is not None:
            sentences.append(remaining)

        return sentences

    def _pack_sentences(
        self, text: str, sentences: list[Span], pick_overlap: OverlapPicker
    ) -> list[Span]:
        """Group consecutive sentences into chunk spans.

        A chunk is closed when adding the next sentence would exceed the
        target size. The next chunk starts at the sentence index returned by
        ``pick_overlap``, unless carrying that overlap would itself push the
        next sentence over the target.

        Args:
            text: The full document text.
            sentences: Sentence spans in order.
            pick_overlap: Returns the first sentence index to carry over,
                given the closed chunk's first and last sentence indices.

        Returns:
            (start, end) spans into ``text``.
        """
        if not sentences:
            return []

        target = self._config.target_chunk_size
        spans: list[Span] = []
        first = 0

        for i in range(1, len(sentences)):
            chunk_start = sentences[first][0]
            if estimate_tokens(text[chunk_start:sentences[i][1]]) <= target:
                continue

            spans.append((chunk_start, sentences[i - 1][1]))
            logger.debug(
                "Created chunk %d: sentences %d-%d", len(spans) - 1, first, i - 1
            )

            overlap_first = pick_overlap(text, sentences, first, i - 1)
            if overlap_first < i:
                carried = text[sentences[overlap_first][0]:sentences[i][1]]
                if estimate_tokens(carried) > target:
                    overlap_first = i
            first = overlap_first

        spans.append((sentences[first][0], sentences[-1][1]))
        return spans

    def _overlap_by_tokens(
        self, text: str, sentences: list[Span], first: int, last: int
    ) -> int:
        """Walk back from the end of a closed chunk collecting overlap.

        Stops once ``overlap_size`` tokens are gathered, after five sentences,
        or before exceeding twice the overlap size. The chunk's first sentence
        is never carried.
        """
        budget = self._config.overlap_size
        tokens = 0
        count = 0
        index = last

        while index > first and tokens < budget and count < MAX_OVERLAP_SENTENCES:
            start, end = sentences[index]
            sentence_tokens = estimate_tokens(text[start:end])
            if tokens + sentence_tokens > budget * 2:
                break
            tokens += sentence_tokens
            count += 1
            index -= 1

        return index + 1

    def _overlap_by_count(
        self, text: str, sentences: list[Span], first: int, last: int
    ) -> int:
        """Carry the last three sentences of a closed section sub-chunk."""
        return max(first + 1, last + 1 - MARKDOWN_OVERLAP_SENTENCES)

# Fraglens – Strategy-selecting semantic retrieval over text fragments
# Copyright (c) 2026 4rce.com Digital Technologies GmbH.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""
Document -> Chunks, ready to become fragments.

Chunking strategies:
- "heading": Split at markdown headings, keeping the parent heading path
- "fixed":   Fixed chunk size with overlap, preferring sentence boundaries
- "hybrid":  Heading split + subdivide if chunk too large (default)

Chunks at or below min_chars are dropped.
"""
import re
from dataclasses import dataclass
from typing import Literal

ChunkStrategy = Literal["heading", "fixed", "hybrid"]

_HEADING_RE = re.compile(r"^(#{1,3})\s+(.*)")


@dataclass
class Chunk:
    text: str
    heading: str = ""
    heading_path: str = ""
    line_start: int = 1
    line_end: int = 1

    def custom_metadata(self) -> dict:
        d = {"line_start": self.line_start, "line_end": self.line_end}
        if self.heading:
            d["heading"] = self.heading
        if self.heading_path:
            d["heading_path"] = self.heading_path
        return d


class Chunker:
    def __init__(
        self, strategy: ChunkStrategy = "hybrid", max_chars: int = 2000,
        overlap: int = 200, min_chars: int = 50,
    ):
        if overlap >= max_chars:
            raise ValueError("chunk overlap must be smaller than max_chars")
        self.strategy = strategy
        self.max_chars = max_chars
        self.overlap = overlap
        self.min_chars = min_chars

    @classmethod
    def from_config(cls, config) -> "Chunker":
        return cls(
            strategy=config.chunk_strategy,
            max_chars=config.chunk_max_chars,
            overlap=config.chunk_overlap,
            min_chars=config.chunk_min_chars,
        )

    def chunk(self, text: str, strategy: ChunkStrategy | None = None) -> list[Chunk]:
        strategy = strategy or self.strategy
        if strategy == "fixed":
            return self._chunk_fixed_size(text)
        if strategy == "hybrid":
            return self._chunk_hybrid(text)
        return self._chunk_by_heading(text)

    def _chunk_by_heading(self, text: str) -> list[Chunk]:
        """Split at headings, preserving parent heading context."""
        chunks: list[Chunk] = []
        heading_stack: list[tuple[int, str]] = []
        current_lines: list[str] = []
        current_heading = ""
        current_heading_path = ""
        chunk_start_line = 1

        for line_num, line in enumerate(text.split("\n"), start=1):
            match = _HEADING_RE.match(line)
            if match:
                if current_lines:
                    self._flush(chunks, current_lines, current_heading,
                                current_heading_path, chunk_start_line)

                level = len(match.group(1))
                title = match.group(2).strip()

                heading_stack = [(l, t) for l, t in heading_stack if l < level]
                heading_stack.append((level, title))

                current_heading = title
                current_heading_path = " > ".join(t for _, t in heading_stack)
                current_lines = [line]
                chunk_start_line = line_num
            else:
                current_lines.append(line)

        if current_lines:
            self._flush(chunks, current_lines, current_heading,
                        current_heading_path, chunk_start_line)

        return chunks

    def _flush(
        self, chunks: list[Chunk], lines: list[str], heading: str,
        heading_path: str, line_start: int,
    ):
        raw = "\n".join(lines).strip()
        if len(raw) <= self.min_chars:
            return
        chunks.append(Chunk(
            text=raw,
            heading=heading,
            heading_path=heading_path,
            line_start=line_start,
            line_end=line_start + len(lines) - 1,
        ))

    def _chunk_fixed_size(self, text: str, line_offset: int = 0) -> list[Chunk]:
        chunks: list[Chunk] = []
        start = 0

        while start < len(text):
            end = start + self.max_chars
            chunk_text = text[start:end]

            if end < len(text):
                last_period = chunk_text.rfind(". ")
                if last_period > self.max_chars * 0.5:
                    chunk_text = chunk_text[: last_period + 1]
                    end = start + last_period + 1

            line_start = line_offset + text[:start].count("\n") + 1
            line_end = line_start + chunk_text.count("\n")

            stripped = chunk_text.strip()
            if len(stripped) > self.min_chars:
                chunks.append(Chunk(text=stripped, line_start=line_start, line_end=line_end))
            if end >= len(text):
                break
            start = max(end - self.overlap, start + 1)

        return chunks

    def _chunk_hybrid(self, text: str) -> list[Chunk]:
        final: list[Chunk] = []
        for chunk in self._chunk_by_heading(text):
            if len(chunk.text) <= self.max_chars:
                final.append(chunk)
                continue
            parts = self._chunk_fixed_size(chunk.text, line_offset=chunk.line_start - 1)
            for i, part in enumerate(parts):
                part.heading = f"{chunk.heading} (part {i + 1})" if chunk.heading else f"part {i + 1}"
                part.heading_path = chunk.heading_path
            final.extend(parts)
        return final

"""Tests for document chunking."""
import pytest

from fraglens.chunking import Chunker

DOC = """# Architecture

The service is split into an ingestion path and a query path.

## Ingestion

Documents are chunked, embedded in batches and written to the store.

### Deduplication

Content hashes are compared per owner before anything is written.

## Queries

Every query is analysed and routed to one of three search strategies.
"""


class TestHeadingChunking:
    def test_splits_at_headings(self):
        chunks = Chunker(strategy="heading", min_chars=10).chunk(DOC)
        assert [c.heading for c in chunks] == ["Architecture", "Ingestion", "Deduplication", "Queries"]

    def test_heading_path(self):
        chunks = Chunker(strategy="heading", min_chars=10).chunk(DOC)
        assert chunks[2].heading_path == "Architecture > Ingestion > Deduplication"
        assert chunks[3].heading_path == "Architecture > Queries"

    def test_line_ranges(self):
        chunks = Chunker(strategy="heading", min_chars=10).chunk(DOC)
        assert chunks[0].line_start == 1
        assert chunks[1].line_start == 5
        assert all(c.line_end >= c.line_start for c in chunks)

    def test_small_chunks_dropped(self):
        chunks = Chunker(strategy="heading", min_chars=80).chunk(DOC)
        assert all(len(c.text) > 80 for c in chunks)

    def test_custom_metadata(self):
        c = Chunker(strategy="heading", min_chars=10).chunk(DOC)[1]
        meta = c.custom_metadata()
        assert meta["heading"] == "Ingestion"
        assert meta["heading_path"] == "Architecture > Ingestion"
        assert meta["line_start"] == 5

    def test_no_headings(self):
        chunks = Chunker(strategy="heading", min_chars=5).chunk("just some plain text here")
        assert len(chunks) == 1
        assert chunks[0].heading == ""


class TestFixedChunking:
    def test_respects_max_chars(self):
        text = "word " * 1000
        chunks = Chunker(strategy="fixed", max_chars=300, overlap=50).chunk(text)
        assert len(chunks) > 1
        assert all(len(c.text) <= 300 for c in chunks)

    def test_prefers_sentence_boundary(self):
        text = ("This is a sentence that ends here. " * 20).strip()
        chunks = Chunker(strategy="fixed", max_chars=200, overlap=20, min_chars=10).chunk(text)
        assert chunks[0].text.endswith(".")

    def test_overlap(self):
        text = "".join(chr(ord("a") + i % 26) for i in range(1000))
        chunks = Chunker(strategy="fixed", max_chars=200, overlap=50, min_chars=10).chunk(text)
        assert chunks[0].text[-50:] == chunks[1].text[:50]

    def test_terminates_on_large_overlap(self):
        chunks = Chunker(strategy="fixed", max_chars=100, overlap=99, min_chars=1).chunk("x" * 500)
        assert chunks

    def test_overlap_must_be_smaller(self):
        with pytest.raises(ValueError):
            Chunker(max_chars=100, overlap=100)


class TestHybridChunking:
    def test_small_sections_unchanged(self):
        chunks = Chunker(strategy="hybrid", min_chars=10).chunk(DOC)
        assert len(chunks) == 4

    def test_oversize_section_subdivided(self):
        text = "# Big\n\n" + "Long sentence about retrieval quality. " * 100
        chunks = Chunker(strategy="hybrid", max_chars=500, overlap=50).chunk(text)
        assert len(chunks) > 1
        assert chunks[0].heading == "Big (part 1)"
        assert all(c.heading_path == "Big" for c in chunks)

    def test_strategy_override(self):
        chunker = Chunker(strategy="fixed", min_chars=10)
        assert [c.heading for c in chunker.chunk(DOC, strategy="heading")][0] == "Architecture"

    def test_empty_text(self):
        assert Chunker().chunk("") == []

# Fraglens – Strategy-selecting semantic retrieval over text fragments
# Copyright (c) 2026 4rce.com Digital Technologies GmbH.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""
MCP Server factory – creates a FastMCP instance with tools
that share one Retriever from the main process.

Tools:
  - retrieve: Adaptive search (strategy picked per query)
  - search: Plain relevance search
  - ingest_text: Chunk + embed + store a text
  - delete_fragments: Soft-delete by ids and/or filter
  - explain_query: Show which strategy a query would get and why
  - get_stats: Store, cache and health statistics
"""
from mcp.server.fastmcp import FastMCP

from . import __version__
from .errors import FraglensError
from .health import HealthTracker
from .models import FragmentInput, FragmentMetadata, ScoredFragment, SearchFilter
from .retriever import Retriever


def _split(value: str) -> tuple[str, ...]:
    return tuple(v.strip() for v in value.split(",") if v.strip())


def _make_filter(
    owner_id: str = "", project_id: str = "", document_ids: str = "",
    tags: str = "", sources: str = "",
) -> SearchFilter | None:
    if not any((owner_id, project_id, document_ids, tags, sources)):
        return None
    return SearchFilter(
        owner_id=owner_id or None,
        project_id=project_id or None,
        document_ids=_split(document_ids),
        tags=_split(tags),
        sources=_split(sources),
    )


def _format_fragment(sf: ScoredFragment) -> str:
    meta = sf.fragment.metadata
    loc = meta.document_id or sf.fragment.id
    if meta.chunk_index is not None and meta.total_chunks:
        loc += f" [{meta.chunk_index + 1}/{meta.total_chunks}]"
    heading = meta.custom_metadata.get("heading")
    head = f"**{loc}** > _{heading}_" if heading else f"**{loc}**"
    return (
        f"{head} (Score: {sf.score:.3f}, Source: {meta.source})\n\n"
        f"{sf.fragment.content}\n\n---"
    )


def create_mcp_server(retriever: Retriever, health: HealthTracker | None = None) -> FastMCP:
    """Factory: returns a configured FastMCP server bound to one Retriever."""

    mcp = FastMCP(
        "fraglens",
        instructions=(
            "Semantic retrieval over stored text fragments.\n\n"
            "WORKFLOW for the agent:\n"
            "1. Use retrieve() by default; it picks relevance, diversity or hybrid per query\n"
            "2. Use search() when you want only the closest matches\n"
            "3. Scope queries with owner_id / project_id when you know them\n"
            "4. ingest_text() to add knowledge, delete_fragments() to retire it\n"
            "5. explain_query() shows why a strategy was chosen"
        ),
    )

    @mcp.tool()
    def retrieve(
        query: str, owner_id: str = "", project_id: str = "",
        tags: str = "", sources: str = "", k: int = 0, rerank: bool = False,
        topic: str = "", recent_messages: str = "",
    ) -> str:
        """Adaptive retrieval: analyses the query and picks the best search strategy.

        Args:
            query: What you want to know (natural language)
            owner_id: Only fragments of this owner
            project_id: Only fragments of this project
            tags: Comma-separated tags, any of them matches
            sources: Comma-separated source labels
            k: Number of results (0 = chosen from query complexity)
            rerank: Boost term matches, recent and frequently used fragments
            topic: Current conversation topic (turns on context-aware retrieval)
            recent_messages: Recent conversation messages, one per line

        Returns:
            Matching fragments with score, plus the chosen strategy
        """
        try:
            search_filter = _make_filter(owner_id, project_id, tags=tags, sources=sources)
            if topic or recent_messages:
                result = retriever.retrieve_with_context(
                    query, recent_messages.splitlines(), topic or None,
                    k=k or None, filter=search_filter,
                )
            else:
                result = retriever.retrieve(
                    query, k=k or None, filter=search_filter, rerank=rerank,
                )
        except (FraglensError, ValueError) as e:
            return f"Error: {e}"

        if not result.fragments:
            return "No relevant fragments found. Try a different or more specific query."

        strategy = result.config.strategy.value if result.config else "relevance"
        header = f"Found {len(result.fragments)} fragments (strategy: {strategy}"
        if result.fallback_used:
            header += ", fallback"
        if result.cache_hit:
            header += ", cached"
        header += f", sources: {', '.join(result.sources) or '-'})\n"
        return "\n".join([header] + [_format_fragment(sf) for sf in result.fragments])

    @mcp.tool()
    def search(query: str, owner_id: str = "", project_id: str = "", top_k: int = 5) -> str:
        """Plain semantic search, closest matches first.

        Args:
            query: Search query
            owner_id: Only fragments of this owner
            project_id: Only fragments of this project
            top_k: Number of results (default: 5)
        """
        try:
            results = retriever.search(
                query, k=max(1, top_k), filter=_make_filter(owner_id, project_id),
            )
        except (FraglensError, ValueError) as e:
            return f"Error: {e}"
        if health:
            health.record_search("relevance", bool(results))
        if not results:
            return "No relevant fragments found."
        return "\n".join(_format_fragment(sf) for sf in results)

    @mcp.tool()
    def ingest_text(
        content: str, owner_id: str, project_id: str = "", document_id: str = "",
        source: str = "user-upload", tags: str = "", chunk: bool = True,
    ) -> str:
        """Store a text so it can be retrieved later. Long texts are chunked.

        Args:
            content: The text (markdown headings are used for chunking)
            owner_id: Owner of the fragments (required)
            project_id: Optional project scope
            document_id: Optional document id the chunks belong to
            source: Source label (e.g. "user-upload", "docs", "chat")
            tags: Comma-separated tags
            chunk: Split into chunks (True) or store as a single fragment
        """
        try:
            metadata = FragmentMetadata(
                owner_id=owner_id,
                project_id=project_id or None,
                document_id=document_id or None,
                source=source,
                tags=_split(tags),
            )
            if chunk:
                ids = retriever.ingest_document(content, metadata)
            else:
                ids = retriever.ingest([FragmentInput(content=content, metadata=metadata)])
        except (FraglensError, ValueError) as e:
            return f"Error: {e}"

        report = retriever.last_ingest_report
        if not ids:
            return "Nothing stored: text too short to form a fragment."
        dupes = report.duplicates if report else 0
        inserted = report.inserted if report else len(ids)
        return (
            f"Stored {inserted} of {len(ids)} fragments "
            f"({dupes} duplicates skipped)\nIds: {', '.join(ids)}"
        )

    @mcp.tool()
    def delete_fragments(
        ids: str = "", owner_id: str = "", project_id: str = "", document_ids: str = "",
    ) -> str:
        """Soft-delete fragments by ids and/or filter. Deleted fragments never match again.

        Args:
            ids: Comma-separated fragment ids
            owner_id: Delete fragments of this owner
            project_id: Delete fragments of this project
            document_ids: Comma-separated document ids
        """
        id_list = list(_split(ids)) or None
        try:
            search_filter = _make_filter(owner_id, project_id, document_ids)
            if id_list is None and search_filter is None:
                return "Error: give fragment ids or at least one filter."
            count = retriever.delete(ids=id_list, filter=search_filter)
        except (FraglensError, ValueError) as e:
            return f"Error: {e}"
        return f"Deleted {count} fragments."

    @mcp.tool()
    def explain_query(query: str) -> str:
        """Show which retrieval strategy a query gets, and why."""
        return retriever.explain_query(query)

    @mcp.tool()
    def get_stats(owner_id: str = "") -> str:
        """Show statistics about the fragment store."""
        try:
            stats = retriever.stats(_make_filter(owner_id))
        except (FraglensError, ValueError) as e:
            return f"Error: {e}"

        by_source = "\n".join(
            f"  - {s}: {c} fragments" for s, c in sorted(stats["by_source"].items())
        ) or "  (empty)"
        lines = [
            f"**Fraglens {__version__} statistics**\n",
            f"- **Active fragments:** {stats['active_fragments']}",
            f"- **Deleted fragments:** {stats['deleted_fragments']}",
            f"- **Embedding:** {retriever.config.embedding_provider} "
            f"({retriever.config.active_embedding_model}), dimension {stats['dimension']}",
        ]
        if "cache" in stats:
            c = stats["cache"]
            lines.append(f"- **Cache:** {c['entries']} entries, {c['hits']} hits, {c['misses']} misses")
        if "health" in stats:
            h = stats["health"]
            lines.append(
                f"- **Searches:** {h['searches_total']} "
                f"({h['searches_hits']} hits, {h['fallbacks']} fallbacks)"
            )
        lines.append(f"\n**By source:**\n{by_source}")
        return "\n".join(lines)

    return mcp

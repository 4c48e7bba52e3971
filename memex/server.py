#!/usr/bin/env python3
"""
Memex Memory MCP Server - local-first page memory with hybrid recall

Provides "remember this page" / "what did I read about X" tools using:
- FastMCP for clean, idiomatic MCP server patterns
- An Arrow-serialized memory store persisted in a LanceDB key-value table
- Hybrid search: cosine vector search (70%) fused with keyword search (30%)
- sentence-transformers all-MiniLM-L6-v2 embeddings (Ollama / Gemini / hash alternatives)
- Google Gemini for optional summarization and tagging
"""

from __future__ import annotations

import asyncio
import sys

from mcp.server.fastmcp import FastMCP

from memex.backup import read_backup, write_backup
from memex.config import CONFIG
from memex.errors import BackupError
from memex.service import MemoryService
from memex.utils import ms_to_iso

# =============================================================================
# Application root
# =============================================================================

_service: MemoryService | None = None


def get_service() -> MemoryService:
    """Get or create the memory service for this process."""
    global _service
    if _service is None:
        _service = MemoryService(CONFIG)
    return _service


def _validate_limit(limit: int) -> str | None:
    if limit <= 0:
        return f"Error: limit must be positive, got {limit}"
    if limit > CONFIG.max_limit:
        return f"Error: limit cannot exceed {CONFIG.max_limit}, got {limit}"
    return None


# =============================================================================
# FastMCP Server
# =============================================================================

mcp = FastMCP(
    "memex-memory",
    instructions="Personal page memory: remember pages, recall them with hybrid (vector + keyword) search",
)


@mcp.tool(
    annotations={
        "readOnlyHint": False,
        "destructiveHint": False,
        "idempotentHint": False,
    }
)
async def memory_remember(
    url: str,
    title: str,
    content: str,
    summary: str | None = None,
    tags: list[str] | None = None,
    summarize: bool = False,
) -> str:
    """Remember a page (or video transcript, or document) for later recall.

    Args:
        url: Origin of the content; a URL can only be remembered once
        title: Page title
        content: Extracted page text
        summary: Optional short summary (defaults to the first 200 characters)
        tags: Optional tags
        summarize: Use Gemini to write the summary and tags when none are given
    """
    if not content.strip():
        return "Error: content is required"
    result = await get_service().remember_page(url, title, content, summary, tags, summarize)
    if not result.success:
        return result.message
    return f"{result.message}\nID: {result.id}"


@mcp.tool(
    annotations={
        "readOnlyHint": True,
        "destructiveHint": False,
        "idempotentHint": True,
    }
)
async def memory_recall(query: str, limit: int = 5) -> str:
    """Recall remembered pages relevant to a natural-language query.

    Args:
        query: What you are looking for - works with keywords and semantic concepts
        limit: Max results (default 5, max 50)
    """
    if not query.strip():
        return "Error: query is required"
    error = _validate_limit(limit)
    if error:
        return error

    service = get_service()
    results = await service.recall_memories(query, limit)
    if not results:
        return f"No memories found for '{query}'"

    search_type = "hybrid (vector + keyword)" if service.is_ready else "keyword"
    lines = [f"Found {len(results)} memories ({search_type}):\n"]
    for i, r in enumerate(results, 1):
        lines.append(f"[{i}] {r.title} (ID: {r.id})")
        lines.append(f"    {r.url}")
        lines.append(f"    {r.summary}")
        if r.tags:
            lines.append(f"    Tags: {', '.join(r.tags)}")
        lines.append(f"    Relevance: {r.score:.2f} | {ms_to_iso(r.created_at)}")
        lines.append("")
    return "\n".join(lines)


@mcp.tool(
    annotations={
        "readOnlyHint": True,
        "destructiveHint": False,
        "idempotentHint": True,
    }
)
async def memory_related(url: str, content: str) -> str:
    """Find past memories related to the page currently being read.

    Args:
        url: URL of the current page (excluded from results)
        content: Text of the current page
    """
    related = await get_service().find_related(url, content)
    if not related:
        return "No related memories."
    lines = [f"{len(related)} related memories:"]
    for r in related:
        lines.append(f"- {r.title} ({r.url}) {r.score:.0%}")
    return "\n".join(lines)


@mcp.tool(
    annotations={
        "readOnlyHint": True,
        "destructiveHint": False,
        "idempotentHint": True,
    }
)
async def memory_list(tag: str | None = None) -> str:
    """List remembered pages, newest first.

    Args:
        tag: Optional tag filter
    """
    service = get_service()
    items = await service.memories_by_tag(tag) if tag else await service.list_memories()
    if not items:
        return "No memories stored yet." if not tag else f"No memories tagged '{tag}'"
    lines = [f"{len(items)} memories:"]
    for m in items:
        tags = f" [{', '.join(m.tags)}]" if m.tags else ""
        lines.append(f"- {m.id} | {ms_to_iso(m.created_at)} | {m.title}{tags}")
    return "\n".join(lines)


@mcp.tool(
    annotations={
        "readOnlyHint": False,
        "destructiveHint": True,
        "idempotentHint": True,
    }
)
async def memory_forget(memory_id: str) -> str:
    """Delete a memory by ID.

    Args:
        memory_id: The full ID of the memory to delete
    """
    if await get_service().forget_memory(memory_id):
        return f"Deleted memory {memory_id}"
    return f"Memory {memory_id} not found"


@mcp.tool(
    annotations={
        "readOnlyHint": False,
        "destructiveHint": True,
        "idempotentHint": True,
    }
)
async def memory_forget_all(confirm: bool = False) -> str:
    """Delete every memory.

    Args:
        confirm: Must be true
    """
    if not confirm:
        return "Error: pass confirm=true to delete all memories"
    service = get_service()
    count = await service.count()
    await service.forget_all()
    return f"Deleted {count} memories"


@mcp.tool(
    annotations={
        "readOnlyHint": True,
        "destructiveHint": False,
        "idempotentHint": False,
    }
)
async def memory_export(directory: str | None = None) -> str:
    """Export all memories to a memex-backup-<date>.json file.

    Args:
        directory: Target directory (defaults to MEMEX_BACKUP_DIR or ~/Downloads)
    """
    snapshot = await get_service().export_memories()
    path = await asyncio.to_thread(write_backup, snapshot, directory)
    return f"Exported {snapshot.memory_count} memories to {path}"


@mcp.tool(
    annotations={
        "readOnlyHint": False,
        "destructiveHint": True,
        "idempotentHint": False,
    }
)
async def memory_import(path: str, mode: str = "merge") -> str:
    """Import memories from a backup file.

    Args:
        path: Path to a memex backup JSON file
        mode: "merge" (skip URLs already stored) or "replace" (clear first)
    """
    if mode not in ("merge", "replace"):
        return f"Error: Invalid mode '{mode}'. Valid: merge, replace"
    try:
        data = await asyncio.to_thread(read_backup, path)
    except FileNotFoundError:
        return f"Error: Backup file not found: {path}"
    except BackupError as e:
        return f"Error: {e}"
    result = await get_service().import_memories(data, mode)
    if not result.success:
        return f"Error: {result.message}"
    return result.message


@mcp.tool(
    annotations={
        "readOnlyHint": True,
        "destructiveHint": False,
        "idempotentHint": True,
    }
)
async def memory_stats() -> str:
    """Get memory statistics - total and most used tags."""
    items = await get_service().list_memories()
    if not items:
        return "No memories stored yet."

    tag_counts: dict[str, int] = {}
    for m in items:
        for tag in m.tags:
            tag_counts[tag] = tag_counts.get(tag, 0) + 1
    top_tags = sorted(tag_counts.items(), key=lambda x: x[1], reverse=True)[:10]

    lines = [
        "=== Memory Statistics ===",
        f"Total: {len(items)} memories",
        f"Newest: {ms_to_iso(items[0].created_at)}",
        f"Oldest: {ms_to_iso(items[-1].created_at)}",
        "",
        "Top tags:",
    ]
    for tag, count in top_tags:
        lines.append(f"  {tag}: {count}")
    return "\n".join(lines)


@mcp.tool(
    annotations={
        "readOnlyHint": True,
        "destructiveHint": False,
        "idempotentHint": True,
    }
)
async def memory_health() -> str:
    """Get memory system health - embedding status, storage, configuration."""
    service = get_service()
    config = service.config
    status, error = await service.embeddings.status()
    total = await service.count()
    lines = [
        "=== Memory Health Status ===",
        f"\nTotal memories: {total}",
        f"Storage: {config.db_path} (key '{config.store_key}')",
        f"Embeddings: {status} ({config.embedding_provider}, {config.embedding_dim}D)",
        f"Search: {'Hybrid (vector 70% + keyword 30%)' if status == 'ready' else 'Keyword only'}",
    ]
    if error:
        lines.append(f"Embedding error: {error}")
    return "\n".join(lines)


# =============================================================================
# Server Entry Point
# =============================================================================


async def run_server():
    """Run the MCP server after loading the store and embedding runtime."""
    service = get_service()
    await service.start()
    print(f"[memex] Server ready ({await service.count()} memories)", file=sys.stderr)
    try:
        await mcp.run_stdio_async()
    finally:
        service.close()


def main():
    """Entry point."""
    asyncio.run(run_server())


if __name__ == "__main__":
    main()

#!/usr/bin/env python3
"""Web viewer for memories - accessible in browser."""

from __future__ import annotations

import asyncio

from flask import Flask, jsonify, render_template_string, request

from memex.config import CONFIG, Config
from memex.models import MemoryItem
from memex.retrieval import RetrievalEngine
from memex.storage import KeyValueStorage, LanceKeyValueStorage
from memex.utils import ms_to_iso
from memex.vector_db import MemoryStore

ITEMS_PER_PAGE = 10


def get_page_links(current: int, total: int) -> list:
    """Generate smart pagination links with ellipsis for gaps."""
    if total <= 7:
        return list(range(1, total + 1))

    links = []
    for p in range(1, total + 1):
        show_page = (
            p <= 3  # First 3 pages
            or p >= total - 2  # Last 3 pages
            or abs(p - current) <= 1  # Pages around current
        )
        if show_page:
            links.append(p)
        elif links[-1] != "...":
            links.append("...")
    return links


async def _load(storage: KeyValueStorage, config: Config) -> tuple[list[MemoryItem], RetrievalEngine]:
    # A fresh store per request always reflects the latest persisted state
    store = MemoryStore(storage, config)
    return await store.get_all_with_embeddings(), RetrievalEngine(store, config)


HTML = """
<!DOCTYPE html>
<html>
<head>
    <title>Memex</title>
    <style>
        body { font-family: system-ui; max-width: 900px; margin: 0 auto; padding: 20px; background: #1a1a2e; color: #eee; }
        h1 { color: #00d9ff; }
        a { color: #00d9ff; }
        .header { display: flex; justify-content: space-between; align-items: center; margin-bottom: 20px; flex-wrap: wrap; gap: 10px; }
        .pagination { display: flex; gap: 6px; align-items: center; flex-wrap: wrap; }
        .pagination a, .pagination span { padding: 6px 12px; background: #0f3460; color: #00d9ff; text-decoration: none; border-radius: 5px; display: inline-block; }
        .pagination a:hover { background: #16213e; }
        .pagination span.current { background: #00d9ff; color: #1a1a2e; font-weight: bold; }
        .pagination span.ellipsis { color: #888; background: transparent; }
        .pagination a.disabled { color: #666; pointer-events: none; }
        .memory { background: #16213e; padding: 15px; margin: 10px 0; border-radius: 8px; border-left: 4px solid #00d9ff; }
        .tags { margin-top: 8px; }
        .tag { background: #0f3460; padding: 2px 6px; border-radius: 3px; font-size: 11px; margin-right: 5px; }
        .meta { color: #888; font-size: 12px; margin-top: 8px; }
        .search { margin-bottom: 20px; }
        input { padding: 10px; width: 100%; border-radius: 5px; border: none; background: #0f3460; color: #fff; }
    </style>
</head>
<body>
    <div class="header">
        <h1>Memex</h1>
        <div class="pagination">
            {% if page > 1 %}
            <a href="/?page={{ page-1 }}">← Prev</a>
            {% else %}
            <a class="disabled">← Prev</a>
            {% endif %}

            {% for p in page_links %}
            {% if p == "..." %}
            <span class="ellipsis">...</span>
            {% elif p == page %}
            <span class="current">{{ p }}</span>
            {% else %}
            <a href="/?page={{ p }}">{{ p }}</a>
            {% endif %}
            {% endfor %}

            {% if page < total_pages %}
            <a href="/?page={{ page+1 }}">Next →</a>
            {% else %}
            <a class="disabled">Next →</a>
            {% endif %}
        </div>
    </div>
    <p>{{ total_memories }} memories total · <a href="/graph.json">graph.json</a></p>
    <div class="search">
        <input type="text" id="search" placeholder="Filter memories..." onkeyup="filterMemories()">
    </div>
    <div id="memories">
        {% for m in memories %}
        <div class="memory" data-content="{{ (m.title ~ ' ' ~ m.summary)|lower }}">
            <strong><a href="{{ m.url }}">{{ m.title or m.url }}</a></strong>
            <p>{{ m.summary }}</p>
            <div class="tags">
                {% for t in m.tags %}
                <span class="tag">{{ t }}</span>
                {% endfor %}
            </div>
            <div class="meta">{{ m.id }} | {{ m.created }}</div>
        </div>
        {% endfor %}
    </div>
    <script>
        function filterMemories() {
            const q = document.getElementById('search').value.toLowerCase();
            document.querySelectorAll('.memory').forEach(el => {
                el.style.display = el.dataset.content.includes(q) ? 'block' : 'none';
            });
        }
    </script>
</body>
</html>
"""


def create_app(storage: KeyValueStorage | None = None, config: Config = CONFIG) -> Flask:
    """Build the viewer app over a storage backend (LanceDB at config.db_path by default)."""
    app = Flask(__name__)
    storage = storage or LanceKeyValueStorage(config.db_path, config.kv_table_name)

    @app.route("/")
    def index():
        all_memories, _ = asyncio.run(_load(storage, config))
        total = len(all_memories)
        page = max(1, request.args.get("page", 1, type=int))
        start = (page - 1) * ITEMS_PER_PAGE
        end = start + ITEMS_PER_PAGE
        memories = [
            {**m.to_dict(), "created": ms_to_iso(m.created_at)} for m in all_memories[start:end]
        ]
        total_pages = (total + ITEMS_PER_PAGE - 1) // ITEMS_PER_PAGE
        page_links = get_page_links(page, total_pages)

        return render_template_string(
            HTML,
            memories=memories,
            page=page,
            total_pages=total_pages,
            total_memories=total,
            page_links=page_links,
        )

    @app.route("/graph.json")
    def graph():
        """Knowledge graph: one node per memory, links between similar memories."""
        threshold = request.args.get("threshold", config.graph_similarity_threshold, type=float)
        memories, engine = asyncio.run(_load(storage, config))
        links = asyncio.run(engine.similarity_links(memories, threshold))
        return jsonify(
            {
                "nodes": [
                    {"id": m.id, "title": m.title, "url": m.url, "tags": m.tags} for m in memories
                ],
                "links": [
                    {"source": l.source, "target": l.target, "similarity": round(l.similarity, 4)}
                    for l in links
                ],
                "threshold": threshold,
            }
        )

    return app


def main():
    print("Open http://localhost:5000 in your browser")
    create_app().run(port=5000)


if __name__ == "__main__":
    main()

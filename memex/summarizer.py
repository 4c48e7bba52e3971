"""Optional page summarization and tagging with Google Gemini."""

from __future__ import annotations

import asyncio
import json
import sys
import threading
from typing import TYPE_CHECKING, Any

from memex.config import CONFIG, Config
from memex.utils import get_api_key, normalize_whitespace

if TYPE_CHECKING:
    from google.genai import Client as GenAIClient

MAX_TAG_PROMPT_CONTENT_LENGTH = 1500


def fallback_summary(content: str, length: int = CONFIG.summary_length) -> str:
    """First `length` chars, whitespace collapsed, with an ellipsis."""
    return normalize_whitespace(content[:length]) + "..."


class Summarizer:
    """Lazily creates one GenAI client and asks it for a summary + tags."""

    def __init__(self, config: Config = CONFIG):
        self.config = config
        self._client: GenAIClient | None = None
        self._lock = threading.Lock()

    def _get_client(self) -> GenAIClient:
        """Get or create the GenAI client (thread-safe)."""
        if self._client is None:
            with self._lock:
                if self._client is None:  # Double-check after acquiring lock
                    from google import genai

                    self._client = genai.Client(api_key=get_api_key())
        return self._client

    def _summarize_sync(self, title: str, content: str) -> dict[str, Any]:
        """Synchronous summarization (for thread pool)."""
        try:
            client = self._get_client()
            prompt = f"""Summarize this page for a personal memory index. Return JSON only.

TITLE: {title}
CONTENT: {content[:MAX_TAG_PROMPT_CONTENT_LENGTH]}

Return: {{"summary": "two or three sentence summary", "tags": ["tag1", "tag2", "tag3"]}}"""

            response = client.models.generate_content(model=self.config.llm_model, contents=prompt)
            text = response.text.strip()
            if text.startswith("```"):
                text = text.split("```")[1].removeprefix("json").strip()
            result = json.loads(text)
            tags = [str(t).strip() for t in result.get("tags", []) if str(t).strip()]
            return {"summary": result.get("summary") or fallback_summary(content), "tags": tags}
        except Exception as e:
            print(f"[summarizer] Summarization error: {e}", file=sys.stderr)
            return {"summary": fallback_summary(content, self.config.summary_length), "tags": []}

    async def summarize(self, title: str, content: str) -> dict[str, Any]:
        """Summarize content asynchronously using the LLM."""
        return await asyncio.to_thread(self._summarize_sync, title, content)

"""
Embedding client: talks to an isolated embedding worker over messages.

The Embedder runs on a dedicated worker thread that only exchanges plain
dict messages with the event loop. Each request carries a unique id; the
client correlates responses through a pending-request map and fails any
request that gets no answer within CONFIG.request_timeout.

Message types:
    WORKER_READY                  worker -> client, once after start
    EMBEDDING_PROGRESS            worker -> client, document embedding progress (0-100)
    INIT_EMBEDDING                load the embedding runtime
    GET_STATUS                    idle | loading | ready | error
    GENERATE_EMBEDDING            short text (query) embedding
    GENERATE_DOCUMENT_EMBEDDING   long text (chunk + average) embedding
"""

from __future__ import annotations

import asyncio
import queue
import sys
import threading
from collections.abc import Callable
from typing import Any

from memex.config import CONFIG, Config
from memex.embeddings import Embedder, EmbeddingStatus
from memex.errors import (
    EmbeddingCancelled,
    EmbeddingError,
    EmbeddingTimeout,
    EmbeddingUnavailable,
)
from memex.utils import generate_id

VALID_MESSAGE_TYPES = frozenset(
    {
        "WORKER_READY",
        "EMBEDDING_PROGRESS",
        "INIT_EMBEDDING",
        "GET_STATUS",
        "GENERATE_EMBEDDING",
        "GENERATE_DOCUMENT_EMBEDDING",
    }
)


# =============================================================================
# Worker (runs on its own thread)
# =============================================================================


class EmbeddingWorker:
    """Owns an Embedder on a dedicated thread and answers request messages."""

    def __init__(self, embedder: Embedder, post: Callable[[dict[str, Any]], None]):
        self.embedder = embedder
        self._post = post
        self._inbox: queue.Queue[dict[str, Any] | None] = queue.Queue()
        self._thread = threading.Thread(target=self._run, name="memex-embedding-worker", daemon=True)

    @property
    def is_alive(self) -> bool:
        return self._thread.is_alive()

    def start(self) -> None:
        self._thread.start()

    def send(self, message: dict[str, Any]) -> None:
        self._inbox.put(message)

    def stop(self) -> None:
        self._inbox.put(None)

    def _run(self) -> None:
        self._post({"type": "WORKER_READY"})
        while True:
            message = self._inbox.get()
            if message is None:
                break
            self._post(self.handle(message))

    def handle(self, message: dict[str, Any]) -> dict[str, Any]:
        request_id = message.get("id")
        kind = message.get("type")
        response: dict[str, Any] = {"id": request_id, "type": kind}
        try:
            if kind == "INIT_EMBEDDING":
                self.embedder.init()
                response.update(success=True, status=self.embedder.status)
            elif kind == "GET_STATUS":
                response.update(success=True, status=self.embedder.status, error=self.embedder.error)
            elif kind == "GENERATE_EMBEDDING":
                vector = self.embedder.embed_text(message.get("text", ""))
                response.update(success=True, embedding=vector.tolist())
            elif kind == "GENERATE_DOCUMENT_EMBEDDING":

                def report(progress: int) -> None:
                    self._post({"type": "EMBEDDING_PROGRESS", "id": request_id, "progress": progress})

                vector = self.embedder.embed_document(message.get("content", ""), on_progress=report)
                response.update(success=True, embedding=vector.tolist())
            else:
                response.update(success=False, error=f"Unknown request type: {kind}", error_type="invalid")
        except EmbeddingUnavailable as e:
            response.update(success=False, error=str(e), error_type="unavailable", status=self.embedder.status)
        except Exception as e:
            print(f"[embedding-worker] {kind} failed: {e}", file=sys.stderr)
            response.update(success=False, error=str(e), error_type="error")
        return response


# =============================================================================
# Client (event loop side)
# =============================================================================


def _error_from(message: dict[str, Any]) -> EmbeddingError:
    error = message.get("error") or "Unknown error"
    if message.get("error_type") == "unavailable":
        return EmbeddingUnavailable(error)
    return EmbeddingError(error)


class EmbeddingClient:
    """Async request/response facade over an EmbeddingWorker."""

    def __init__(self, config: Config = CONFIG, embedder: Embedder | None = None):
        self.config = config
        self.embedder = embedder or Embedder(config)
        self._loop: asyncio.AbstractEventLoop | None = None
        self._worker: EmbeddingWorker | None = None
        self._worker_ready: asyncio.Future[None] | None = None
        self._start_task: asyncio.Task[None] | None = None
        self._init_task: asyncio.Task[bool] | None = None
        self._pending: dict[str, asyncio.Future[dict[str, Any]]] = {}
        self._status: EmbeddingStatus = "idle"
        self._error: str | None = None
        self._progress_callback: Callable[[int], None] | None = None

    @property
    def is_ready(self) -> bool:
        return self._status == "ready"

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def set_progress_callback(self, callback: Callable[[int], None] | None) -> None:
        self._progress_callback = callback

    # -- worker lifecycle -----------------------------------------------------

    def _post_from_worker(self, message: dict[str, Any]) -> None:
        """Called on the worker thread; hops onto the event loop."""
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            loop.call_soon_threadsafe(self._on_message, message)
        except RuntimeError:
            return  # loop closed between the check and the call

    async def _start_worker(self) -> None:
        self._loop = asyncio.get_running_loop()
        self._worker_ready = self._loop.create_future()
        self._worker = EmbeddingWorker(self.embedder, self._post_from_worker)
        print("[embedding-client] Starting embedding worker...", file=sys.stderr)
        self._worker.start()
        try:
            await asyncio.wait_for(asyncio.shield(self._worker_ready), timeout=self.config.init_timeout)
        except asyncio.TimeoutError as e:
            self._status = "error"
            self._error = "Embedding worker start timed out"
            raise EmbeddingTimeout(
                f"Embedding worker did not start within {self.config.init_timeout}s"
            ) from e

    async def _ensure_worker(self) -> None:
        # Concurrent callers share one start attempt
        if self._start_task is None:
            self._start_task = asyncio.ensure_future(self._start_worker())
        await asyncio.shield(self._start_task)

    def _on_message(self, message: Any) -> None:
        if not isinstance(message, dict):
            return
        kind = message.get("type")
        if kind is not None and kind not in VALID_MESSAGE_TYPES:
            print(f"[embedding-client] Invalid message type: {kind}", file=sys.stderr)
            return

        if kind == "WORKER_READY":
            if self._worker_ready is not None and not self._worker_ready.done():
                self._worker_ready.set_result(None)
            return

        if kind == "EMBEDDING_PROGRESS":
            progress = message.get("progress")
            if self._progress_callback and isinstance(progress, (int, float)):
                self._progress_callback(int(progress))
            return

        future = self._pending.pop(message.get("id"), None)
        if future is None or future.done():
            return  # timed out or cancelled already
        if message.get("success"):
            future.set_result(message)
        else:
            future.set_exception(_error_from(message))

    async def _request(self, kind: str, timeout: float | None = None, **payload: Any) -> dict[str, Any]:
        await self._ensure_worker()
        if self._loop is None or self._worker is None:
            raise EmbeddingUnavailable("Embedding worker is not running")

        request_id = generate_id("req")
        future: asyncio.Future[dict[str, Any]] = self._loop.create_future()
        self._pending[request_id] = future
        self._worker.send({"id": request_id, "type": kind, **payload})

        deadline = timeout if timeout is not None else self.config.request_timeout
        try:
            return await asyncio.wait_for(future, timeout=deadline)
        except asyncio.TimeoutError as e:
            raise EmbeddingTimeout(f"Embedding request {kind} timed out after {deadline}s") from e
        finally:
            self._pending.pop(request_id, None)

    # -- public API -----------------------------------------------------------

    async def init(self) -> bool:
        """Initialize the embedding runtime once; returns True when ready."""
        if self._status == "ready":
            return True
        if self._init_task is None:
            self._init_task = asyncio.ensure_future(self._initialize())
        return await asyncio.shield(self._init_task)

    async def _initialize(self) -> bool:
        self._status = "loading"
        print("[embedding-client] Initializing embedding runtime...", file=sys.stderr)
        try:
            response = await self._request("INIT_EMBEDDING")
        except EmbeddingError as e:
            self._status = "error"
            self._error = str(e)
            print(f"[embedding-client] Failed to initialize: {e}", file=sys.stderr)
            return False
        self._status = response.get("status", "ready")
        print(f"[embedding-client] Initialization result: {self._status}", file=sys.stderr)
        return self._status == "ready"

    async def status(self) -> tuple[EmbeddingStatus, str | None]:
        """Current runtime status and error, asked of the worker when it is running."""
        if self._worker is None or not self._worker.is_alive:
            return self._status, self._error
        try:
            response = await self._request("GET_STATUS")
        except EmbeddingError:
            return self._status, self._error
        return response.get("status", self._status), response.get("error")

    async def embed_text(self, text: str) -> list[float]:
        """Query embedding for short text."""
        if not self.is_ready:
            raise EmbeddingUnavailable("Embedding runtime is not ready")
        response = await self._request("GENERATE_EMBEDDING", text=text)
        return response["embedding"]

    async def embed_document(self, content: str) -> list[float]:
        """Document embedding (chunking + averaging happen in the worker)."""
        if not self.is_ready:
            raise EmbeddingUnavailable("Embedding runtime is not ready")
        print(f"[embedding-client] Generating document embedding ({len(content)} chars)", file=sys.stderr)
        response = await self._request("GENERATE_DOCUMENT_EMBEDDING", content=content)
        return response["embedding"]

    def close(self) -> None:
        """Reject every pending request and stop the worker."""
        self._progress_callback = None
        for request_id, future in list(self._pending.items()):
            if not future.done():
                future.set_exception(EmbeddingCancelled(f"Request {request_id} cancelled"))
        self._pending.clear()
        if self._worker is not None:
            self._worker.stop()
            self._worker = None
        self._start_task = None
        self._init_task = None
        self._worker_ready = None
        if self._status != "error":
            self._status = "idle"

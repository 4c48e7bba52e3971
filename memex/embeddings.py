"""
Embedding runtime: text -> fixed-dimension unit vectors.

Backends (selected by CONFIG.embedding_provider):
- local:  sentence-transformers all-MiniLM-L6-v2 (384-dim, mean pooling) via LanceDB's registry
- ollama: local Ollama server embeddings
- google: Google Gemini embeddings
- hash:   deterministic feature-hashed bag of words (no semantics, never fails)

Long documents are split on sentence boundaries into overlapping chunks,
embedded chunk by chunk, and averaged back into a single unit vector.
"""

from __future__ import annotations

import hashlib
import re
import sys
import threading
from collections.abc import Callable, Sequence
from typing import Any, Literal

import numpy as np

from memex.config import CONFIG, Config
from memex.errors import EmbeddingUnavailable
from memex.utils import get_api_key, normalize_whitespace

EmbeddingStatus = Literal["idle", "loading", "ready", "error"]
ProgressCallback = Callable[[int], None]

_SENTENCE_BOUNDARY = re.compile(r"(?<=[.!?。])\s+")
_TOKEN = re.compile(r"\w+", re.UNICODE)


# =============================================================================
# Vector math
# =============================================================================


def l2_normalize(vector: Sequence[float] | np.ndarray) -> np.ndarray:
    """Scale to unit length; the zero vector is returned unchanged."""
    arr = np.asarray(vector, dtype=np.float64)
    norm = np.linalg.norm(arr)
    return arr / norm if norm > 0 else arr


def fit_dimension(vector: Sequence[float] | np.ndarray, dim: int) -> np.ndarray:
    """Handle dimension mismatch by truncation/padding."""
    arr = np.asarray(vector, dtype=np.float64).ravel()
    if len(arr) > dim:
        return arr[:dim]
    if len(arr) < dim:
        return np.concatenate([arr, np.zeros(dim - len(arr))])
    return arr


def average_vectors(vectors: Sequence[Sequence[float]], dim: int = CONFIG.embedding_dim) -> np.ndarray:
    """Component-wise mean renormalized to unit length; zero vector for no input."""
    if len(vectors) == 0:
        return np.zeros(dim)
    mean = np.mean(np.asarray(vectors, dtype=np.float64), axis=0)
    return l2_normalize(mean)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity, 0.0 when either vector has zero norm."""
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    norm_a = np.linalg.norm(va)
    norm_b = np.linalg.norm(vb)
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return float(np.dot(va, vb) / (norm_a * norm_b))


# =============================================================================
# Chunking
# =============================================================================


def chunk_text(
    text: str,
    chunk_size: int = CONFIG.chunk_size,
    overlap_words: int = CONFIG.chunk_overlap_words,
) -> list[str]:
    """Split long text into sentence-aligned chunks with a word overlap.

    Sentences accumulate until adding the next one would exceed chunk_size;
    the next chunk then starts with the last overlap_words words of the
    previous chunk so context is carried across the boundary.
    """
    chunks: list[str] = []
    current = ""

    for sentence in _SENTENCE_BOUNDARY.split(text):
        sentence = sentence.strip()
        if not sentence:
            continue
        candidate = f"{current} {sentence}" if current else sentence
        if len(candidate) <= chunk_size:
            current = candidate
            continue
        if current:
            chunks.append(current)
            overlap = current.split()[-overlap_words:] if overlap_words > 0 else []
            current = " ".join([*overlap, sentence])
        else:
            current = sentence

    if current.strip():
        chunks.append(current.strip())

    if not chunks and text.strip():
        chunks.append(text[:chunk_size])
    return chunks


# =============================================================================
# Backends
# =============================================================================


class EmbeddingBackend:
    """A model runtime producing raw (not necessarily normalized) vectors."""

    name = "base"

    def load(self) -> None:
        """Load model weights / verify connectivity. May be slow."""

    def embed(self, text: str) -> Sequence[float]:
        raise NotImplementedError


class LocalBackend(EmbeddingBackend):
    """sentence-transformers model loaded through LanceDB's embedding registry."""

    name = "local"

    def __init__(self, model: str = CONFIG.embedding_model, device: str = "cpu"):
        self.model = model
        self.device = device
        self._func: Any = None

    def load(self) -> None:
        from lancedb.embeddings import get_registry

        self._func = (
            get_registry()
            .get("sentence-transformers")
            .create(name=self.model, device=self.device, normalize=True)
        )
        # Forces the weights to download/load now rather than on the first query.
        self._func.ndims()

    def embed(self, text: str) -> Sequence[float]:
        return self._func.compute_source_embeddings([text])[0]


class OllamaBackend(EmbeddingBackend):
    """Ollama server embeddings (local)."""

    name = "ollama"

    def __init__(self, model: str = CONFIG.embedding_model, base_url: str = CONFIG.ollama_base_url):
        self.model = model
        self.base_url = base_url.rstrip("/")

    def load(self) -> None:
        import requests

        response = requests.get(f"{self.base_url}/api/tags", timeout=5)
        response.raise_for_status()

    def embed(self, text: str) -> Sequence[float]:
        import requests

        response = requests.post(
            f"{self.base_url}/api/embeddings",
            json={"model": self.model, "prompt": text},
            timeout=30,
        )
        response.raise_for_status()
        return response.json().get("embedding", [])


class GoogleBackend(EmbeddingBackend):
    """Google Gemini embeddings."""

    name = "google"

    def __init__(self, model: str = "gemini-embedding-001", dim: int = CONFIG.embedding_dim):
        self.model = model
        self.dim = dim
        self._client: Any = None

    def load(self) -> None:
        from google import genai

        self._client = genai.Client(api_key=get_api_key())

    def embed(self, text: str) -> Sequence[float]:
        from google.genai import types

        response = self._client.models.embed_content(
            model=self.model,
            contents=text,
            config=types.EmbedContentConfig(
                task_type="SEMANTIC_SIMILARITY", output_dimensionality=self.dim
            ),
        )
        return response.embeddings[0].values


class HashBackend(EmbeddingBackend):
    """
    Deterministic hash-based embedding.
    Not real semantic meaning, but shares dimensions between texts with shared words.
    """

    name = "hash"

    def __init__(self, dim: int = CONFIG.embedding_dim):
        self.dim = dim

    def embed(self, text: str) -> Sequence[float]:
        vector = np.zeros(self.dim)
        tokens = _TOKEN.findall(text.lower())
        for token in tokens:
            digest = hashlib.blake2b(token.encode(), digest_size=8).digest()
            bucket = int.from_bytes(digest[:4], "little") % self.dim
            sign = 1.0 if digest[4] & 1 else -1.0
            vector[bucket] += sign
        # Mean pooling over tokens
        return vector / len(tokens) if tokens else vector


def create_backend(config: Config = CONFIG) -> EmbeddingBackend:
    provider = config.embedding_provider.lower()
    if provider == "local":
        return LocalBackend(config.embedding_model)
    if provider == "ollama":
        return OllamaBackend(config.embedding_model, config.ollama_base_url)
    if provider == "google":
        return GoogleBackend(dim=config.embedding_dim)
    if provider == "hash":
        return HashBackend(config.embedding_dim)
    raise ValueError(f"Unknown embedding provider '{config.embedding_provider}'. Valid: local, ollama, google, hash")


# =============================================================================
# Embedder
# =============================================================================


class Embedder:
    """Turns text into normalized vectors of dimension config.embedding_dim.

    init() must succeed before embed_text()/embed_document(); it is idempotent
    and thread-safe. A failed init is terminal for this instance.
    """

    def __init__(self, config: Config = CONFIG, backend: EmbeddingBackend | None = None):
        self.config = config
        self.dim = config.embedding_dim
        self.backend = backend or create_backend(config)
        self._lock = threading.Lock()
        self._status: EmbeddingStatus = "idle"
        self._error: str | None = None

    @property
    def status(self) -> EmbeddingStatus:
        return self._status

    @property
    def error(self) -> str | None:
        return self._error

    @property
    def is_ready(self) -> bool:
        return self._status == "ready"

    def init(self) -> bool:
        """Load the backend once. Raises EmbeddingUnavailable on failure."""
        if self._status == "ready":
            return True
        with self._lock:
            if self._status == "ready":  # Double-check after acquiring lock
                return True
            if self._status == "error":
                raise EmbeddingUnavailable(f"Embedding runtime failed to initialize: {self._error}")
            self._status = "loading"
            print(f"[embeddings] Loading {self.backend.name} backend...", file=sys.stderr)
            try:
                self.backend.load()
            except Exception as e:
                self._status = "error"
                self._error = str(e)
                print(f"[embeddings] Failed to load {self.backend.name} backend: {e}", file=sys.stderr)
                raise EmbeddingUnavailable(f"Embedding runtime failed to initialize: {e}") from e
            self._status = "ready"
            print(f"[embeddings] {self.backend.name} backend ready ({self.dim}D)", file=sys.stderr)
        return True

    def prepare_text(self, text: str) -> str:
        return normalize_whitespace(text)[: self.config.max_text_length]

    def embed_text(self, text: str) -> np.ndarray:
        """Embed a short text (query or chunk) into a unit vector."""
        if not self.is_ready:
            raise EmbeddingUnavailable("Embedding runtime not initialized; call init() first")
        prepared = self.prepare_text(text)
        if not prepared:
            return np.zeros(self.dim)
        raw = self.backend.embed(prepared)
        return l2_normalize(fit_dimension(raw, self.dim))

    def chunk_text(self, text: str) -> list[str]:
        return chunk_text(text, self.config.chunk_size, self.config.chunk_overlap_words)

    def embed_document(self, content: str, on_progress: ProgressCallback | None = None) -> np.ndarray:
        """Embed a document of any length: chunk, embed each chunk, average."""
        if not self.is_ready:
            raise EmbeddingUnavailable("Embedding runtime not initialized; call init() first")
        if len(content) <= self.config.chunk_size:
            vector = self.embed_text(content)
            if on_progress:
                on_progress(100)
            return vector

        chunks = self.chunk_text(content)
        if not chunks:
            return self.embed_text(content[: self.config.chunk_size])

        vectors = []
        for i, chunk in enumerate(chunks, 1):
            vectors.append(self.embed_text(chunk))
            if on_progress:
                on_progress(round(i / len(chunks) * 100))
        return self.average_vectors(vectors)

    def average_vectors(self, vectors: Sequence[Sequence[float]]) -> np.ndarray:
        return average_vectors(vectors, self.dim)

# ──────────────────────────────────────────────────────────────────────────────
# File: services/embeddings.py
# ──────────────────────────────────────────────────────────────────────────────
"""
Embedding generation with local-first providers.
- Primary provider: SentenceTransformers with all-MiniLM-L6-v2 (384 dims)
- Ollama embeddings API (http://localhost:11434)
- OpenAI embeddings API, only when AI_ALLOW_EXTERNAL=true
- Dev provider: deterministic pseudo-embedding (EMBEDDINGS_PROVIDER=none)

Input is truncated to a fixed character budget before it is submitted; the
model has a token ceiling and truncation, not chunking, is the tradeoff.
Failures are raised as EmbeddingServiceError, never papered over with a
partial or zero vector.
"""
from __future__ import annotations
import hashlib
import random
from pathlib import Path
from typing import Optional
import logging

import requests

from services.capture_errors import EmbeddingServiceError, InvalidInputError

logger = logging.getLogger(__name__)

# Default dimensions for all-MiniLM-L6-v2
DEFAULT_DIM = 384
DEFAULT_MAX_CHARS = 8000

LOCAL_PROVIDERS = {'sentence_transformers', 'ollama', 'none'}
EXTERNAL_PROVIDERS = {'openai'}


class Embeddings:
    def __init__(
        self,
        provider: str = 'sentence_transformers',
        model: str = 'all-MiniLM-L6-v2',
        dim: int = DEFAULT_DIM,
        max_chars: int = DEFAULT_MAX_CHARS,
        *,
        allow_external: bool = False,
        model_path: Optional[str] = None,
        ollama_url: str = 'http://localhost:11434/api/embeddings',
        openai_url: str = 'https://api.openai.com/v1/embeddings',
        openai_api_key: Optional[str] = None,
        timeout: int = 30,
    ):
        self.provider = provider
        self.model = model
        self.dim = dim
        self.max_chars = max_chars
        self.allow_external = allow_external
        self.model_path = model_path
        self.ollama_url = ollama_url
        self.openai_url = openai_url
        self.openai_api_key = openai_api_key
        self.timeout = timeout
        self._sentence_transformer = None

        self._check_external_allowed()

    @classmethod
    def from_settings(cls, settings) -> "Embeddings":
        return cls(
            provider=settings.embeddings_provider,
            model=settings.embeddings_model,
            dim=settings.embeddings_dim,
            max_chars=settings.embeddings_max_chars,
            allow_external=settings.ai_allow_external,
            model_path=settings.sentence_transformer_model_path,
            ollama_url=settings.ollama_embeddings_url,
            openai_url=settings.openai_embeddings_url,
            openai_api_key=settings.openai_api_key,
            timeout=settings.embeddings_timeout_seconds,
        )

    def _check_external_allowed(self):
        """Check if the current provider is allowed under local-first policy."""
        if self.provider in EXTERNAL_PROVIDERS and not self.allow_external:
            logger.warning(f"External embeddings provider '{self.provider}' not allowed (ai_allow_external=False). Switching to sentence_transformers.")
            self.provider = 'sentence_transformers'
        elif self.provider not in LOCAL_PROVIDERS | EXTERNAL_PROVIDERS:
            raise ValueError(f"Unknown embeddings provider '{self.provider}'")

    def prepare(self, text: str) -> str:
        """Validate and truncate text to the character budget."""
        if not text or not isinstance(text, str) or not text.strip():
            raise InvalidInputError("No text provided for embedding generation")
        return text[:self.max_chars]

    def embed(self, text: str) -> list[float]:
        """Return the embedding vector for ``text``."""
        payload = self.prepare(text)
        try:
            if self.provider == 'sentence_transformers':
                vec = self._sentence_transformers_embed(payload)
            elif self.provider == 'ollama':
                vec = self._ollama_embed(payload)
            elif self.provider == 'openai':
                vec = self._openai_embed(payload)
            else:
                vec = self._pseudo_embed(payload)
        except EmbeddingServiceError:
            raise
        except Exception as e:
            logger.error(f"Embedding generation failed with provider '{self.provider}': {e}")
            raise EmbeddingServiceError(f"Embedding generation failed: {e}") from e

        if not vec:
            raise EmbeddingServiceError(f"Embedding generation failed: empty vector from '{self.provider}'")
        return [float(x) for x in vec]

    def _sentence_transformers_embed(self, text: str) -> list[float]:
        """Generate embeddings using sentence-transformers."""
        if self._sentence_transformer is None:
            self._load_sentence_transformer()
        embedding = self._sentence_transformer.encode(text, convert_to_numpy=True)
        return embedding.tolist()

    def _load_sentence_transformer(self):
        """Load sentence transformer model."""
        from sentence_transformers import SentenceTransformer

        # Try to load local model first
        local_path = Path(self.model_path) if self.model_path else None
        if local_path and local_path.exists() and local_path.is_dir():
            logger.info(f"Loading local SentenceTransformer model from {local_path}")
            self._sentence_transformer = SentenceTransformer(str(local_path))
        else:
            logger.info(f"Loading SentenceTransformer model: {self.model}")
            self._sentence_transformer = SentenceTransformer(self.model)

        # Update dimensions based on loaded model
        if hasattr(self._sentence_transformer, 'get_sentence_embedding_dimension'):
            actual_dim = self._sentence_transformer.get_sentence_embedding_dimension()
            if actual_dim and actual_dim != self.dim:
                logger.info(f"Updating embedding dimensions from {self.dim} to {actual_dim}")
                self.dim = actual_dim

    def _ollama_embed(self, text: str) -> list[float]:
        resp = requests.post(
            self.ollama_url,
            json={"model": self.model, "prompt": text, "input": text},
            timeout=self.timeout,
        )
        resp.raise_for_status()
        payload = resp.json()
        vec = payload.get('embedding') or (payload.get('embeddings') or [None])[0]
        if not vec:
            raise EmbeddingServiceError('No embedding returned from Ollama')
        return vec

    def _openai_embed(self, text: str) -> list[float]:
        if not self.openai_api_key:
            raise EmbeddingServiceError('OPENAI_API_KEY is not configured')
        resp = requests.post(
            self.openai_url,
            headers={"Authorization": f"Bearer {self.openai_api_key}"},
            json={"model": self.model, "input": text},
            timeout=self.timeout,
        )
        resp.raise_for_status()
        data = resp.json().get('data') or [{}]
        vec = data[0].get('embedding')
        if not vec:
            raise EmbeddingServiceError('No embedding returned from OpenAI')
        return vec

    def _pseudo_embed(self, text: str) -> list[float]:
        # Stable pseudo-embedding using a hash; useful for offline dev
        h = hashlib.sha256(text.encode('utf-8')).digest()
        rng = random.Random(h)
        return [rng.uniform(-1.0, 1.0) for _ in range(self.dim)]

from __future__ import annotations

import hashlib

import numpy as np

from .util import toks


class EmbeddingModel:
    dim: int
    name: str = "base"

    def embed(self, text: str) -> np.ndarray:
        raise NotImplementedError


class HashEmbed(EmbeddingModel):
    """Offline feature-hashing embedding over unigrams and bigrams."""

    name = "hash"

    def __init__(self, dim: int = 384):
        self.dim = int(dim)

    def _h64(self, token: str) -> int:
        h = hashlib.blake2b(token.encode("utf-8"), digest_size=8).digest()
        return int.from_bytes(h, "little", signed=False)

    def _add(self, v: np.ndarray, feature: str, weight: float) -> None:
        hv = self._h64(feature)
        sign = 1.0 if ((hv >> 63) & 1) == 0 else -1.0
        v[hv % self.dim] += sign * weight

    def embed(self, text: str) -> np.ndarray:
        v = np.zeros((self.dim,), dtype=np.float32)
        ts = toks(text)
        if not ts:
            return v
        for t in ts:
            self._add(v, t, 1.0)
        # Bigrams sharpen similarity for short utterances that share word order.
        for a, b in zip(ts, ts[1:]):
            self._add(v, f"{a} {b}", 0.5)
        n = float(np.linalg.norm(v))
        if n > 0:
            v /= n
        return v


class SentenceTransformerEmbed(EmbeddingModel):
    name = "sentence_transformers"

    def __init__(self, model_name: str = "all-MiniLM-L6-v2"):
        try:
            from sentence_transformers import SentenceTransformer  # type: ignore
        except ImportError as e:
            raise ImportError("sentence-transformers not installed. pip install 'cogshell[st]'") from e
        self._st = SentenceTransformer(model_name)
        self.dim = int(self._st.get_sentence_embedding_dimension())

    def embed(self, text: str) -> np.ndarray:
        v = self._st.encode([text], normalize_embeddings=True)[0]
        return np.asarray(v, dtype=np.float32)


def make_embedder(kind: str, st_model: str = "all-MiniLM-L6-v2") -> EmbeddingModel:
    if kind == "st":
        return SentenceTransformerEmbed(st_model)
    return HashEmbed(384)


def to_blob(v: np.ndarray) -> tuple[bytes, int]:
    a = np.asarray(v, dtype=np.float32).reshape(-1)
    return a.tobytes(), int(a.shape[0])


def cosine_rank(query: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """Cosine similarity of `query` against every row of `matrix`."""
    q = np.asarray(query, dtype=np.float32).reshape(-1)
    qn = float(np.linalg.norm(q))
    if qn == 0.0 or matrix.size == 0:
        return np.zeros((matrix.shape[0] if matrix.ndim == 2 else 0,), dtype=np.float32)
    norms = np.linalg.norm(matrix, axis=1) * qn
    norms = np.where(norms == 0.0, 1e-12, norms)
    return (matrix @ q) / norms

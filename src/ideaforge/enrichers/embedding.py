"""Deterministic text -> vector embedding.

This is a character-position hash, not a semantic model: two texts that
share characters in the same positions land near each other, nothing more.
The interface (text in, fixed-length L2-normalized vector out) is what the
pipeline depends on, so a real embedding service can replace it.
"""

from __future__ import annotations

import numpy as np

EMBEDDING_MODEL = "simple-hash-v1"
EMBEDDING_DIM = 1536
MAX_CHARS = 8000


def embed(text: str) -> np.ndarray:
    """Return a normalized float32 vector of length EMBEDDING_DIM."""
    vec = np.zeros(EMBEDDING_DIM, dtype=np.float64)
    for idx, char in enumerate(text[:MAX_CHARS]):
        code = ord(char)
        vec[(code + idx) % EMBEDDING_DIM] += (code % 100) / 100

    norm = np.linalg.norm(vec)
    if norm > 0:
        vec /= norm
    return vec.astype(np.float32)


def generate_embedding(text: str) -> dict[str, object]:
    return {"vector": embed(text).tolist(), "model": EMBEDDING_MODEL}


def vector_to_bytes(vec) -> bytes:
    """Serialize a vector to bytes for SQLite storage."""
    return np.asarray(vec, dtype=np.float32).tobytes()


def bytes_to_vector(data: bytes) -> np.ndarray:
    """Deserialize bytes from SQLite back to numpy vector."""
    return np.frombuffer(data, dtype=np.float32)

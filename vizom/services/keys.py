"""
CacheKeyGenerator - Deterministic cache keys for requests and natural-language queries.
"""

import hashlib
import json
import re
from typing import Any, Iterable

STOP_WORDS = frozenset(
    {
        "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for",
        "of", "with", "by", "is", "are", "was", "were", "be", "been", "have",
        "has", "had", "do", "does", "did", "will", "would", "could", "should",
    }
)

_WS_RE = re.compile(r"\s+")


class CacheKeyGenerator:
    """
    Builds cache keys that are stable across processes.

    Usage:
        keys = CacheKeyGenerator()
        key = keys.generate_key("/chart/generate", {"prompt": "sales", "type": "bar"})
        sem = keys.generate_semantic_key("chart", "Show the monthly sales")
    """

    def __init__(self, hash_algorithm: str = "sha256", semantic_digest_size: int = 16):
        if hash_algorithm not in hashlib.algorithms_available:
            raise ValueError(f"Unsupported hash algorithm: {hash_algorithm}")
        self.hash_algorithm = hash_algorithm
        self.semantic_digest_size = semantic_digest_size

    def generate_key(
        self,
        endpoint: str,
        params: dict[str, Any] | None = None,
        *,
        include_headers: Iterable[str] | None = None,
        exclude_params: Iterable[str] | None = None,
        hash_algorithm: str | None = None,
    ) -> str:
        """
        Generate a cache key for an API request.

        Parameter order does not matter; excluded params are dropped before
        hashing and header names are included sorted.
        """
        excluded = set(exclude_params or ())
        filtered = {k: v for k, v in (params or {}).items() if k not in excluded}

        key_data = {
            "endpoint": endpoint,
            "params": dict(sorted(filtered.items())),
            "headers": sorted(include_headers) if include_headers else None,
        }
        return self._digest(self._canonical(key_data), hash_algorithm)

    def generate_semantic_key(
        self,
        query_type: str,
        content: str,
        *,
        normalize: bool = True,
        ignore_case: bool = True,
        remove_stop_words: bool = False,
    ) -> str:
        """
        Generate a key under which near-duplicate queries collide.

        The query type prefix keeps different kinds of queries apart.
        """
        processed = content or ""

        if ignore_case:
            processed = processed.lower()

        if remove_stop_words:
            processed = self.remove_stop_words(processed)

        if normalize:
            processed = _WS_RE.sub(" ", processed).strip()

        digest = self._digest(processed)[: self.semantic_digest_size]
        return f"{query_type}:{digest}"

    @staticmethod
    def remove_stop_words(text: str) -> str:
        return " ".join(word for word in _WS_RE.split(text) if word not in STOP_WORDS)

    @staticmethod
    def _canonical(data: Any) -> str:
        return json.dumps(
            data, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str
        )

    def _digest(self, payload: str, hash_algorithm: str | None = None) -> str:
        h = hashlib.new(hash_algorithm or self.hash_algorithm)
        h.update(payload.encode("utf-8"))
        return h.hexdigest()

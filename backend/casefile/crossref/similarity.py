"""Trigram similarity between normalized names.

Trigrams follow the PostgreSQL pg_trgm convention: each word is padded
with two spaces in front and one behind, and similarity is the Jaccard
overlap of the two trigram sets. An inverted index over reference names
finds every record sharing at least one trigram with a query, and the
shared-trigram count gives the similarity without a second pass.
"""

from __future__ import annotations

import re
from collections import defaultdict
from typing import Iterable

from casefile.entity.pairwise import normalize_name

_WORD_RE = re.compile(r"[a-z0-9]+")

__all__ = ["normalize_name", "trigrams", "trigram_similarity", "TrigramIndex"]


def trigrams(text: str) -> frozenset[str]:
    """Padded word trigrams of an already-normalized string."""
    grams: set[str] = set()
    for word in _WORD_RE.findall(text.lower()):
        padded = f"  {word} "
        grams.update(padded[i:i + 3] for i in range(len(padded) - 2))
    return frozenset(grams)


def trigram_similarity(a: str, b: str) -> float:
    """Jaccard overlap of the trigram sets of two normalized strings, in [0, 1]."""
    grams_a = trigrams(a)
    grams_b = trigrams(b)
    if not grams_a or not grams_b:
        return 0.0
    shared = len(grams_a & grams_b)
    return shared / (len(grams_a) + len(grams_b) - shared)


class TrigramIndex:
    """Inverted trigram index over (record id, normalized name) pairs."""

    def __init__(self, entries: Iterable[tuple[int, str]]) -> None:
        self._sizes: dict[int, int] = {}
        self._postings: dict[str, list[int]] = defaultdict(list)
        for record_id, name in entries:
            grams = trigrams(name)
            if not grams:
                continue
            self._sizes[record_id] = len(grams)
            for gram in grams:
                self._postings[gram].append(record_id)

    def __len__(self) -> int:
        return len(self._sizes)

    def search(self, query: str, threshold: float, limit: int) -> list[tuple[int, float]]:
        """Records scoring at least ``threshold``, best first, ties by id ascending."""
        grams = trigrams(query)
        if not grams or limit <= 0:
            return []
        shared: dict[int, int] = defaultdict(int)
        for gram in grams:
            for record_id in self._postings.get(gram, ()):
                shared[record_id] += 1

        hits: list[tuple[int, float]] = []
        for record_id, overlap in shared.items():
            score = overlap / (len(grams) + self._sizes[record_id] - overlap)
            if score >= threshold:
                hits.append((record_id, score))
        hits.sort(key=lambda hit: (-hit[1], hit[0]))
        return hits[:limit]

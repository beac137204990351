"""BM25 lexical scoring and hybrid re-ranking.

Scores are computed over the candidate set handed in (typically a couple
dozen vector-search hits), so document frequencies are local to that set.
"""

from __future__ import annotations

import math
import re
from collections import Counter
from collections.abc import Hashable, Mapping, Sequence
from typing import TypeVar

K = TypeVar("K", bound=Hashable)

# \W is Unicode-aware for str patterns: accented and non-Latin letters stay
# inside tokens, punctuation and whitespace split them.
_SPLIT_RE = re.compile(r"[\W_]+")


def tokenize(text: str) -> list[str]:
    """Lowercase word tokens longer than one character."""
    return [t for t in _SPLIT_RE.split(text.lower()) if len(t) > 1]


class Bm25Reranker:
    def __init__(self, k1: float = 1.2, b: float = 0.75) -> None:
        self.k1 = k1
        self.b = b

    def score(self, query: str, documents: Mapping[K, str]) -> dict[K, float]:
        """BM25 score of every document against ``query``."""
        # Repeated query terms count once per occurrence.
        query_terms = tokenize(query)
        terms = set(query_terms)
        tokenized = {key: tokenize(text) for key, text in documents.items()}
        if not terms or not tokenized:
            return {key: 0.0 for key in tokenized}

        n_docs = len(tokenized)
        avgdl = sum(len(toks) for toks in tokenized.values()) / n_docs
        doc_freq = Counter(t for toks in tokenized.values() for t in set(toks) & terms)
        idf = {
            t: math.log((n_docs - doc_freq[t] + 0.5) / (doc_freq[t] + 0.5) + 1.0) for t in terms
        }

        scores: dict[K, float] = {}
        for key, toks in tokenized.items():
            tf = Counter(toks)
            length_ratio = len(toks) / avgdl if avgdl > 0 else 0.0
            norm = self.k1 * (1.0 - self.b + self.b * length_ratio)
            total = 0.0
            for t in query_terms:
                f = tf.get(t, 0)
                if f:
                    total += idf[t] * (f * (self.k1 + 1.0)) / (f + norm)
            scores[key] = total
        return scores

    def rerank(self, query: str, documents: Mapping[K, str], limit: int) -> list[K]:
        """Top ``limit`` document keys by descending BM25 score.

        A query with no usable terms keeps the documents' given order.
        """
        if limit <= 0:
            return []
        if not tokenize(query):
            return list(documents)[:limit]
        scores = self.score(query, documents)
        order = {key: i for i, key in enumerate(documents)}
        ranked = sorted(scores, key=lambda key: (-scores[key], order[key]))
        return ranked[:limit]

    def hybrid_rerank(
        self,
        query: str,
        documents: Mapping[K, str],
        vector_ranking: Sequence[K],
        vector_weight: float = 0.7,
        limit: int = 5,
    ) -> list[K]:
        """Blend a vector ranking with max-normalized BM25 scores.

        Vector score decays linearly with rank: ``1 - rank / len(ranking)``.
        Documents absent from ``vector_ranking`` get a vector score of 0.
        Ties keep the vector order.
        """
        if limit <= 0:
            return []
        bm25 = self.score(query, documents)
        max_bm25 = max(bm25.values(), default=0.0)

        total = len(vector_ranking)
        vector_scores = {key: 1.0 - i / total for i, key in enumerate(vector_ranking)}

        keys = list(dict.fromkeys([*vector_ranking, *documents]))
        combined: dict[K, float] = {}
        for key in keys:
            lexical = bm25.get(key, 0.0) / max_bm25 if max_bm25 > 0 else 0.0
            combined[key] = (
                vector_weight * vector_scores.get(key, 0.0) + (1.0 - vector_weight) * lexical
            )

        order = {key: i for i, key in enumerate(keys)}
        ranked = sorted(combined, key=lambda key: (-combined[key], order[key]))
        return ranked[:limit]

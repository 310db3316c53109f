"""
Inverted keyword index with TF-IDF scoring and a phrase-match bonus.
"""

from __future__ import annotations

import math
from collections import Counter
from typing import Iterable, Sequence

MAX_PHRASE_WORDS = 4
MIN_PHRASE_CHARS = 4
# Bonus per word of a query phrase found in a chunk, and again when the exact
# word sequence is confirmed by positions.
PHRASE_WEIGHT = 2.0
EXACT_PHRASE_WEIGHT = 3.0


def normalize_word(word: str) -> str:
    return "".join(ch for ch in word.lower() if ch.isalnum())


def extract_words(text: str) -> list[str]:
    """Lower-cased alphanumeric words of *text*, single characters dropped."""
    words = (normalize_word(raw) for raw in text.split())
    return [word for word in words if len(word) > 1]


def extract_phrases(words: Sequence[str], max_words: int = MAX_PHRASE_WORDS) -> list[str]:
    """All 2..max_words word n-grams of *words* at least four characters long."""
    phrases: list[str] = []
    for length in range(2, min(max_words, len(words)) + 1):
        for start in range(len(words) - length + 1):
            phrase = " ".join(words[start : start + length])
            if len(phrase) >= MIN_PHRASE_CHARS:
                phrases.append(phrase)
    return phrases


def contains_exact_phrase(
    positions: dict[str, list[int]],
    phrase_words: Sequence[str],
) -> bool:
    """True if *phrase_words* occur at consecutive positions."""
    if not phrase_words:
        return False
    for start in positions.get(phrase_words[0], ()):
        if all(
            start + offset in positions.get(word, ())
            for offset, word in enumerate(phrase_words[1:], start=1)
        ):
            return True
    return False


class KeywordIndex:
    """Inverted index over chunk text.

    Keeps, per chunk, the term frequencies, word positions and the phrases it
    contains, and per term/phrase the set of chunk ids containing it. The
    structure performs no locking; `VectorStore` guards it with its own lock.
    """

    def __init__(self) -> None:
        self.term_frequency: dict[str, Counter[str]] = {}
        self.postings: dict[str, set[str]] = {}
        self.word_positions: dict[str, dict[str, list[int]]] = {}
        self.phrase_postings: dict[str, set[str]] = {}
        self._chunk_phrases: dict[str, set[str]] = {}

    def __len__(self) -> int:
        return len(self.term_frequency)

    def __contains__(self, chunk_id: object) -> bool:
        return chunk_id in self.term_frequency

    @property
    def total_chunks(self) -> int:
        return len(self.term_frequency)

    def document_frequency(self, term: str) -> int:
        return len(self.postings.get(term, ()))

    def add_chunk(self, chunk_id: str, content: str) -> None:
        if chunk_id in self.term_frequency:
            self.remove_chunk(chunk_id)

        words = extract_words(content)
        positions: dict[str, list[int]] = {}
        for position, word in enumerate(words):
            positions.setdefault(word, []).append(position)
            self.postings.setdefault(word, set()).add(chunk_id)

        phrases = set(extract_phrases(words))
        for phrase in phrases:
            self.phrase_postings.setdefault(phrase, set()).add(chunk_id)

        self.term_frequency[chunk_id] = Counter(words)
        self.word_positions[chunk_id] = positions
        self._chunk_phrases[chunk_id] = phrases

    def remove_chunk(self, chunk_id: str) -> None:
        tf_map = self.term_frequency.pop(chunk_id, None)
        if tf_map is None:
            return
        for word in tf_map:
            _discard_posting(self.postings, word, chunk_id)
        for phrase in self._chunk_phrases.pop(chunk_id, ()):
            _discard_posting(self.phrase_postings, phrase, chunk_id)
        self.word_positions.pop(chunk_id, None)

    def remove_chunks(self, chunk_ids: Iterable[str]) -> None:
        for chunk_id in chunk_ids:
            self.remove_chunk(chunk_id)

    def clear(self) -> None:
        self.term_frequency.clear()
        self.postings.clear()
        self.word_positions.clear()
        self.phrase_postings.clear()
        self._chunk_phrases.clear()

    def tf_idf_score(self, chunk_id: str, query_words: Sequence[str]) -> float:
        """Sum of ln(1 + tf) * ln(1 + N / df) over the query words in the chunk."""
        tf_map = self.term_frequency.get(chunk_id)
        if tf_map is None:
            return 0.0
        total = self.total_chunks
        score = 0.0
        for word in query_words:
            tf = tf_map.get(word, 0)
            df = self.document_frequency(word)
            if tf > 0 and df > 0:
                score += math.log1p(tf) * math.log1p(total / df)
        return score

    def phrase_scores(self, query: str) -> dict[str, float]:
        """Phrase bonus per chunk for every 2-4 word phrase of *query*."""
        scores: dict[str, float] = {}
        for phrase in dict.fromkeys(extract_phrases(extract_words(query))):
            phrase_words = phrase.split()
            for chunk_id in self.phrase_postings.get(phrase, ()):
                bonus = len(phrase_words) * PHRASE_WEIGHT
                if contains_exact_phrase(self.word_positions.get(chunk_id, {}), phrase_words):
                    bonus += len(phrase_words) * EXACT_PHRASE_WEIGHT
                scores[chunk_id] = scores.get(chunk_id, 0.0) + bonus
        return scores

    def search(
        self,
        query: str,
        k: int,
        *,
        candidates: Iterable[str] | None = None,
    ) -> list[tuple[str, float]]:
        """Return up to *k* (chunk id, score) pairs with score > 0, best first.

        Unknown query terms contribute nothing. Ties keep index order, or the
        order of *candidates* when given.
        """
        query_words = list(dict.fromkeys(extract_words(query)))
        if not query_words or k <= 0:
            return []

        phrase_scores = self.phrase_scores(query)
        pool: Iterable[str] = self.term_frequency if candidates is None else candidates
        scored: list[tuple[str, float]] = []
        for chunk_id in pool:
            if chunk_id not in self.term_frequency:
                continue
            score = self.tf_idf_score(chunk_id, query_words) + phrase_scores.get(chunk_id, 0.0)
            if score > 0.0:
                scored.append((chunk_id, score))
        scored.sort(key=lambda pair: -pair[1])
        return scored[:k]

    def rebuild(self, contents: Iterable[tuple[str, str]]) -> None:
        self.clear()
        for chunk_id, content in contents:
            self.add_chunk(chunk_id, content)


def _discard_posting(postings: dict[str, set[str]], key: str, chunk_id: str) -> None:
    chunk_ids = postings.get(key)
    if chunk_ids is None:
        return
    chunk_ids.discard(chunk_id)
    if not chunk_ids:
        del postings[key]

from __future__ import annotations

import math
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from relevance.locks import RWLock
from relevance.models import MessageRecord, MessageRef
from relevance.text_normalizer import normalize, normalize_word


class DocumentFrequencyStore:
    """
    Per-corpus document frequency statistics.

    ``document_word_counts[w]`` is the number of indexed messages containing
    ``w`` at least once. Each indexed message remembers its distinct words so
    an edit replaces the old contribution instead of adding a second one.
    """

    def __init__(
        self,
        document_count: int = 0,
        document_word_counts: Optional[Mapping[str, int]] = None,
        indexed_messages: Optional[Mapping[str, Iterable[str]]] = None,
    ) -> None:
        self._lock = RWLock()
        self._document_count = int(document_count)
        self._word_counts: Dict[str, int] = dict(document_word_counts or {})
        self._indexed: Dict[str, frozenset] = {
            key: frozenset(words) for key, words in (indexed_messages or {}).items()
        }
        # None signals the table must be rebuilt on the next read.
        self._idf: Optional[Dict[str, float]] = None

    # region mutations ---------------------------------------------------
    def process_message(self, message: Optional[MessageRecord]) -> bool:
        """Index a user-authored message. Returns True when statistics changed."""
        if message is None or not message.is_user_authored:
            return False
        words = frozenset(normalize(message.content))
        key = message.ref.pack()
        with self._lock.write():
            previous = self._indexed.get(key)
            if previous is not None and previous == words:
                return False
            if previous is None:
                self._document_count += 1
            else:
                self._subtract(previous)
            for word in words:
                self._word_counts[word] = self._word_counts.get(word, 0) + 1
            self._indexed[key] = words
            self._idf = None
        return True

    def forget_message(self, ref: MessageRef) -> bool:
        """Remove a previously indexed message. Returns False if it was never indexed."""
        key = ref.pack()
        with self._lock.write():
            previous = self._indexed.pop(key, None)
            if previous is None:
                return False
            self._subtract(previous)
            self._document_count -= 1
            self._idf = None
        return True

    def _subtract(self, words: Iterable[str]) -> None:
        for word in words:
            remaining = self._word_counts.get(word, 0) - 1
            if remaining > 0:
                self._word_counts[word] = remaining
            else:
                self._word_counts.pop(word, None)

    # region reads -------------------------------------------------------
    @property
    def document_count(self) -> int:
        with self._lock.read():
            return self._document_count

    def document_word_count(self, word: str) -> int:
        with self._lock.read():
            return self._word_counts.get(word, 0)

    def document_word_counts(self) -> Dict[str, int]:
        with self._lock.read():
            return dict(self._word_counts)

    def is_indexed(self, ref: MessageRef) -> bool:
        with self._lock.read():
            return ref.pack() in self._indexed

    def idf_table(self) -> Dict[str, float]:
        """IDF of every known word. The returned dict is shared; do not mutate it."""
        with self._lock.read():
            table = self._idf
        if table is not None:
            return table
        with self._lock.write():
            if self._idf is None:
                self._idf = self._build_idf()
            return self._idf

    def _build_idf(self) -> Dict[str, float]:
        total = float(self._document_count)
        return {word: _idf_value(total, count) for word, count in self._word_counts.items()}

    def idf(self, word: str) -> float:
        """
        Inverse document frequency ``log10(N / (df + 1))`` for word.

        The word may be stemmed or not. An empty corpus yields ``-inf``.
        Values below zero are expected for words present in most documents.
        """
        normalized = normalize_word(word) or (word or "").lower()
        table = self.idf_table()
        if normalized in table:
            return table[normalized]
        return _idf_value(float(self.document_count), 0)

    def top_document_words(self, count: int) -> List[Tuple[str, int]]:
        """Most widespread words, for diagnostics."""
        with self._lock.read():
            items = list(self._word_counts.items())
        items.sort(key=lambda item: (-item[1], item[0]))
        return items[:max(count, 0)]

    # region snapshots ---------------------------------------------------
    def snapshot(self) -> dict:
        with self._lock.read():
            return {
                "documentCount": self._document_count,
                "documentWordCounts": dict(self._word_counts),
                "indexedMessages": {key: sorted(words) for key, words in self._indexed.items()},
            }

    @classmethod
    def from_snapshot(cls, data: Mapping) -> DocumentFrequencyStore:
        document_count = data["documentCount"]
        word_counts = data["documentWordCounts"]
        indexed = data["indexedMessages"]
        if not isinstance(document_count, int) or document_count < 0:
            raise ValueError(f"invalid documentCount: {document_count!r}")
        if not isinstance(word_counts, dict) or not isinstance(indexed, dict):
            raise ValueError("documentWordCounts and indexedMessages must be objects")
        for word, count in word_counts.items():
            if not isinstance(count, int) or count < 0 or count > document_count:
                raise ValueError(f"invalid document count for {word!r}: {count!r}")
        if len(indexed) != document_count:
            raise ValueError(f"{len(indexed)} indexed messages but documentCount is {document_count}")
        # documentWordCounts must be exactly what the indexed word sets add up to.
        recounted: Dict[str, int] = {}
        for key, words in indexed.items():
            if not isinstance(words, list) or not all(isinstance(word, str) for word in words):
                raise ValueError(f"invalid word list for {key!r}")
            for word in set(words):
                recounted[word] = recounted.get(word, 0) + 1
        if recounted != {word: count for word, count in word_counts.items() if count}:
            raise ValueError("documentWordCounts disagrees with indexedMessages")
        return cls(document_count, recounted, indexed)


def _idf_value(total: float, count: int) -> float:
    if total <= 0:
        return float("-inf")
    return math.log10(total / (count + 1))

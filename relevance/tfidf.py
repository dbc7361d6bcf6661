from __future__ import annotations

import math
from typing import Dict, Iterable, List, Mapping, Sequence, Tuple

from relevance.document_frequency import DocumentFrequencyStore
from relevance.models import MessageRecord
from relevance.text_normalizer import normalize, restems_for_content

# Bonus added to a message's multiplier for each distinct reaction present.
REACTION_WEIGHTS: Mapping[str, float] = {
    "⭐": 1.0,
    "💯": 1.0,
    "🔥": 0.5,
    "❤": 0.5,
    "👍": 0.5,
}
_VARIATION_SELECTOR = "\ufe0f"


def reaction_multiplier(reactions: Mapping[str, int]) -> float:
    bonus = 0.0
    seen = set()
    for symbol, count in (reactions or {}).items():
        symbol = symbol.replace(_VARIATION_SELECTOR, "")
        if count <= 0 or symbol in seen:
            continue
        seen.add(symbol)
        bonus += REACTION_WEIGHTS.get(symbol, 0.0)
    return 1.0 + bonus


class TFIDF:
    """Scores of a batch of messages plus the messages themselves for re-surfacing words."""

    def __init__(self, values: Mapping[str, float], messages: Sequence[MessageRecord] = ()) -> None:
        self.values: Dict[str, float] = dict(values)
        self.messages: Tuple[MessageRecord, ...] = tuple(messages)

    def __repr__(self) -> str:
        return f"TFIDF(values={self.values!r}, messages={len(self.messages)})"

    def ranked(self) -> List[Tuple[str, float]]:
        # sorted() is stable, so equal scores keep discovery order.
        return sorted(self.values.items(), key=lambda item: item[1], reverse=True)

    def top_words(self, count: int) -> List[str]:
        """The count highest scoring words in their most common written form."""
        if count <= 0:
            return []
        return self.restem_words([word for word, _ in self.ranked()[:count]])

    def auto_top_words(self, max_count: int) -> List[str]:
        """
        A prefix of ``top_words(max_count)`` cut where the score drops the most.

        Yields a short title when a couple of words clearly stand out and a
        longer one when scores decline evenly.
        """
        ranked = self.ranked()[:max(max_count, 0)]
        if not ranked:
            return []
        cut = 1
        biggest_drop = 0.0
        for i in range(1, len(ranked)):
            drop = ranked[i - 1][1] - ranked[i][1]
            if drop > biggest_drop:
                biggest_drop = drop
                cut = i
        return self.restem_words([word for word, _ in ranked[:cut]])

    def restem_words(self, stemmed_words: Iterable[str]) -> List[str]:
        # stemmed word -> surface word -> count, insertion ordered by first sighting
        candidates: Dict[str, Dict[str, int]] = {}
        for message in self.messages:
            for stemmed, forms in restems_for_content(message.content).items():
                bucket = candidates.setdefault(stemmed, {})
                for surface, count in forms.items():
                    bucket[surface] = bucket.get(surface, 0) + count

        result = []
        for stemmed in stemmed_words:
            forms = candidates.get(stemmed)
            if not forms:
                result.append(stemmed)
                continue
            best, best_count = stemmed, 0
            for surface, count in forms.items():
                if count > best_count:
                    best, best_count = surface, count
            result.append(best)
        return result

    @classmethod
    def join(cls, *parts: TFIDF) -> TFIDF:
        values: Dict[str, float] = {}
        messages: List[MessageRecord] = []
        for part in parts:
            for word, value in part.values.items():
                values[word] = values.get(word, 0.0) + value
            messages.extend(part.messages)
        return cls(values, messages)


def score(store: DocumentFrequencyStore, messages: Iterable[MessageRecord]) -> TFIDF:
    """
    TF-IDF of a batch of messages against the corpus in store.

    Word counts accumulate across the batch and every message adds the whole
    accumulator scaled by its reaction multiplier, so words that show up early
    and keep recurring gain weight from later well-received messages.
    """
    messages = tuple(messages)
    accumulator: Dict[str, int] = {}
    raw: Dict[str, float] = {}
    for message in messages:
        multiplier = reaction_multiplier(message.reactions)
        for word in normalize(message.content):
            accumulator[word] = accumulator.get(word, 0) + 1
        for word, count in accumulator.items():
            raw[word] = raw.get(word, 0.0) + count * multiplier

    total = store.document_count
    if total == 0:
        return TFIDF({word: 0.0 for word in raw}, messages)

    idf = store.idf_table()
    # Words the corpus has never seen have a document frequency of zero.
    unseen = math.log10(total)
    values = {word: value * idf.get(word, unseen) for word, value in raw.items()}
    return TFIDF(values, messages)


def suggest_title(words: Iterable[str]) -> str:
    return "-".join(words)

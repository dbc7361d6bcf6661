from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Iterable, List, Optional

from relevance.config import AUTO_SAVE_INTERVAL_SECONDS
from relevance.document_frequency import DocumentFrequencyStore
from relevance.forks import ForkIndex
from relevance.models import MessageRecord, MessageRef
from relevance.scheduler import DebouncedTimer
from relevance.tfidf import TFIDF, score

if TYPE_CHECKING:
    from relevance.persistence import SnapshotStore


class IDFIndex:
    """
    Everything known about one corpus (a chat): document frequencies and forks.

    Mutations mark the index dirty and schedule a debounced save into store;
    an explicit persist() cancels the pending one.
    """

    def __init__(
        self,
        corpus_id: str,
        store: Optional[SnapshotStore] = None,
        frequencies: Optional[DocumentFrequencyStore] = None,
        forks: Optional[ForkIndex] = None,
        auto_save_interval: float = AUTO_SAVE_INTERVAL_SECONDS,
    ) -> None:
        self.corpus_id = str(corpus_id)
        self.store = store
        self.frequencies = frequencies or DocumentFrequencyStore()
        self.forks = forks or ForkIndex()
        self._state_lock = threading.Lock()
        self._dirty = False
        # Bumped on every mutation so a save only clears the flag for what it wrote.
        self._generation = 0
        self._auto_save = DebouncedTimer(auto_save_interval, self._auto_save_now, name=f"autosave-{self.corpus_id}")

    def __repr__(self) -> str:
        return f"IDFIndex({self.corpus_id!r}, documents={self.document_count})"

    # region corpus ------------------------------------------------------
    @property
    def document_count(self) -> int:
        return self.frequencies.document_count

    def process_message(self, message: Optional[MessageRecord]) -> bool:
        changed = self.frequencies.process_message(message)
        if changed:
            self.set_needs_persistence()
        return changed

    def process_messages(self, messages: Iterable[MessageRecord]) -> int:
        return sum(1 for message in messages if self.process_message(message))

    def forget_message(self, ref: MessageRef) -> bool:
        removed = self.frequencies.forget_message(ref)
        if removed:
            self.set_needs_persistence()
        return removed

    def idf(self, word: str) -> float:
        return self.frequencies.idf(word)

    def tfidf_for_messages(self, messages: Iterable[MessageRecord]) -> TFIDF:
        return score(self.frequencies, messages)

    # region forks -------------------------------------------------------
    def note_forked_message(self, source: MessageRef, fork: MessageRef) -> None:
        self.forks.note_fork(source, fork)
        self.set_needs_persistence()

    def message_forks(self, source: MessageRef) -> List[MessageRef]:
        return self.forks.forks_of(source)

    # region persistence -------------------------------------------------
    @property
    def dirty(self) -> bool:
        with self._state_lock:
            return self._dirty

    @property
    def auto_save_pending(self) -> bool:
        return self._auto_save.scheduled

    def set_needs_persistence(self) -> None:
        with self._state_lock:
            self._dirty = True
            self._generation += 1
        if self.store is not None:
            self._auto_save.schedule()

    def needs_persistence(self) -> bool:
        if self.dirty:
            return True
        return self.store is not None and not self.store.exists(self.corpus_id)

    def snapshot(self) -> tuple[int, dict]:
        with self._state_lock:
            generation = self._generation
        data = self.frequencies.snapshot()
        data["forkedMessageIndex"] = self.forks.snapshot()
        return generation, data

    def persist(self) -> None:
        """Write the index now. Raises PersistenceError; the index stays dirty on failure."""
        if self.store is None:
            raise RuntimeError(f"IDF index {self.corpus_id} has no snapshot store")
        self._auto_save.cancel()
        generation, data = self.snapshot()
        try:
            self.store.write(self.corpus_id, data)
        except Exception:
            # Still dirty; the autosave retries it.
            self._auto_save.schedule()
            raise
        with self._state_lock:
            if self._generation == generation:
                self._dirty = False
                return
        # Mutated while writing; let the autosave pick up the rest.
        self._auto_save.schedule()

    def persist_if_necessary(self) -> bool:
        if not self.needs_persistence():
            return False
        self.persist()
        return True

    def cancel_auto_save(self) -> None:
        self._auto_save.cancel()

    def _auto_save_now(self) -> None:
        # Don't log the autosave unless something is actually written.
        if not self.needs_persistence():
            return
        logging.info("Autosaving IDF index for %s", self.corpus_id)
        try:
            self.persist()
        except Exception:
            logging.exception("Couldn't autosave IDF index for %s, will retry", self.corpus_id)

from __future__ import annotations

import logging
import threading
from typing import Dict, Iterable, List, Optional, Tuple

from relevance.forks import ForkIndex
from relevance.idf_index import IDFIndex
from relevance.models import MessageRecord, MessageRef
from relevance.persistence import PersistenceError, SnapshotStore


class IndexRegistry:
    """Live IDF indexes by corpus id, backed by a SnapshotStore."""

    def __init__(self, store: SnapshotStore) -> None:
        self.store = store
        self._indexes: Dict[str, IDFIndex] = {}
        self._lock = threading.RLock()

    def corpus_ids(self) -> List[str]:
        with self._lock:
            return sorted(self._indexes)

    def get(self, corpus_id: str) -> Optional[IDFIndex]:
        with self._lock:
            return self._indexes.get(str(corpus_id))

    def index_for(self, corpus_id: str) -> IDFIndex:
        """The live index, the persisted one, or a fresh empty index, in that order."""
        corpus_id = str(corpus_id)
        index = self.get(corpus_id)
        if index is not None:
            return index
        # Disk I/O happens outside the lock; the first index registered wins.
        loaded = self.store.load(corpus_id) or self.store.new_index(corpus_id)
        with self._lock:
            index = self._indexes.setdefault(corpus_id, loaded)
        if index is not loaded:
            loaded.cancel_auto_save()
        return index

    def needs_rebuild(self, corpus_id: str) -> bool:
        return self.get(corpus_id) is None or self.store.is_stale(corpus_id)

    def corpora_needing_rebuild(self, corpus_ids: Iterable[str] = ()) -> List[str]:
        candidates = set(map(str, corpus_ids)) | set(self.corpus_ids())
        return sorted(cid for cid in candidates if self.needs_rebuild(cid))

    def rebuild(self, corpus_id: str, messages: Iterable[MessageRecord], forks: Iterable = ()) -> IDFIndex:
        """
        Build a fresh index from the full message history and swap it in.

        Fork edges of the index being replaced are carried over. forks holds
        (source, fork) MessageRef pairs detected while reading the history.
        """
        corpus_id = str(corpus_id)
        fresh = self.store.new_index(corpus_id)
        fresh.process_messages(messages)
        for source, fork in forks:
            fresh.forks.note_fork(source, fork)
        with self._lock:
            previous = self._indexes.get(corpus_id)
        if previous is not None:
            fresh.forks.merge(previous.forks)
            previous.cancel_auto_save()
        try:
            fresh.persist()
        except PersistenceError:
            logging.exception("Rebuilt IDF index for %s but couldn't persist it", corpus_id)
            fresh.set_needs_persistence()
        with self._lock:
            self._indexes[corpus_id] = fresh
        logging.info("Rebuilt IDF index for %s: %s documents", corpus_id, fresh.document_count)
        return fresh

    def merge_forks(self, pairs: Iterable[Tuple[MessageRef, MessageRef]]) -> int:
        """Record (source, fork) pairs in the source's corpus unless already known."""
        by_corpus: Dict[str, ForkIndex] = {}
        for source, fork in pairs:
            by_corpus.setdefault(source.channel_id, ForkIndex()).note_fork(source, fork)
        added = 0
        for corpus_id, forks in by_corpus.items():
            index = self.index_for(corpus_id)
            merged = index.forks.merge(forks)
            if merged:
                index.set_needs_persistence()
            added += merged
        return added

    def persist_all(self) -> List[str]:
        """Persist every index that needs it. Returns the corpus ids that failed."""
        failed = []
        with self._lock:
            indexes = list(self._indexes.values())
        for index in indexes:
            try:
                index.persist_if_necessary()
            except PersistenceError:
                # Continue on and try to save the other ones too
                logging.exception("Couldn't persist IDF index %s", index.corpus_id)
                failed.append(index.corpus_id)
        return failed

    def close(self) -> List[str]:
        """Flush pending state before the process exits."""
        with self._lock:
            indexes = list(self._indexes.values())
        for index in indexes:
            index.cancel_auto_save()
        return self.persist_all()

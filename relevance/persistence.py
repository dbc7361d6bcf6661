from __future__ import annotations

import json
import logging
import os
import re
import tempfile
import time
from pathlib import Path
from typing import Optional

from relevance.config import AUTO_SAVE_INTERVAL_SECONDS, IDF_CACHE_DIR, IDF_REBUILD_INTERVAL_SECONDS
from relevance.document_frequency import DocumentFrequencyStore
from relevance.forks import ForkIndex
from relevance.idf_index import IDFIndex

# Increment every time the JSON layout changes so old snapshots get discarded.
FORMAT_VERSION = 3

_CORPUS_ID_RE = re.compile(r"^[A-Za-z0-9_\-][A-Za-z0-9_\-.]*$")


class PersistenceError(Exception):
    """A snapshot could not be written. In-memory state is unaffected."""


class SnapshotStore:
    """One JSON snapshot per corpus inside directory."""

    def __init__(
        self,
        directory: str | os.PathLike = IDF_CACHE_DIR,
        max_age: float = IDF_REBUILD_INTERVAL_SECONDS,
        auto_save_interval: float = AUTO_SAVE_INTERVAL_SECONDS,
    ) -> None:
        self.directory = Path(directory)
        self.max_age = max_age
        self.auto_save_interval = auto_save_interval

    def path_for(self, corpus_id: str) -> Path:
        corpus_id = str(corpus_id)
        if not _CORPUS_ID_RE.match(corpus_id):
            raise ValueError(f"Invalid corpus id: {corpus_id!r}")
        return self.directory / f"{corpus_id}.json"

    def exists(self, corpus_id: str) -> bool:
        return self.path_for(corpus_id).exists()

    def new_index(self, corpus_id: str) -> IDFIndex:
        return IDFIndex(corpus_id, store=self, auto_save_interval=self.auto_save_interval)

    # region reading -----------------------------------------------------
    def load(self, corpus_id: str) -> Optional[IDFIndex]:
        """The persisted index, or None when there is nothing usable on disk."""
        path = self.path_for(corpus_id)
        if not path.exists():
            return None
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, ValueError) as exc:
            logging.warning("Couldn't read IDF snapshot for %s, discarding: %s", corpus_id, exc)
            return None
        if not isinstance(data, dict):
            logging.warning("IDF snapshot for %s is not an object, discarding", corpus_id)
            return None
        version = data.get("formatVersion")
        if version != FORMAT_VERSION:
            logging.info(
                "%s IDF snapshot had old version %s, expected %s, discarding",
                corpus_id,
                version,
                FORMAT_VERSION,
            )
            return None
        try:
            frequencies = DocumentFrequencyStore.from_snapshot(data)
            forks = ForkIndex.from_snapshot(data.get("forkedMessageIndex") or {})
        except (KeyError, TypeError, ValueError) as exc:
            logging.warning("IDF snapshot for %s is malformed, discarding: %s", corpus_id, exc)
            return None
        logging.info("Reloaded IDF snapshot for %s (%s documents)", corpus_id, frequencies.document_count)
        return IDFIndex(
            corpus_id,
            store=self,
            frequencies=frequencies,
            forks=forks,
            auto_save_interval=self.auto_save_interval,
        )

    def modified_at(self, corpus_id: str) -> Optional[float]:
        try:
            return self.path_for(corpus_id).stat().st_mtime
        except FileNotFoundError:
            return None

    def is_stale(self, corpus_id: str, now: Optional[float] = None) -> bool:
        """True when the snapshot is missing or older than max_age and should be rebuilt."""
        mtime = self.modified_at(corpus_id)
        if mtime is None:
            return True
        now = time.time() if now is None else now
        return now - mtime > self.max_age

    # region writing -----------------------------------------------------
    def save(self, index: IDFIndex) -> None:
        if index.store is self:
            index.persist()
            return
        _, data = index.snapshot()
        self.write(index.corpus_id, data)

    def write(self, corpus_id: str, data: dict) -> None:
        """Replace the snapshot file for corpus_id. Raises PersistenceError."""
        path = self.path_for(corpus_id)
        payload = dict(data)
        payload["formatVersion"] = FORMAT_VERSION
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{corpus_id}.", suffix=".tmp", dir=self.directory)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    json.dump(payload, fh, ensure_ascii=False, indent="\t")
                os.replace(tmp_name, path)
            except BaseException:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    pass
                raise
        except (OSError, TypeError, ValueError) as exc:
            raise PersistenceError(f"Couldn't persist IDF index {corpus_id}: {exc}") from exc
        logging.info("Persisted IDF index for %s to %s", corpus_id, path)

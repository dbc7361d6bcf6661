from __future__ import annotations

import logging
import threading
from typing import Dict, List, Mapping, Optional, Sequence

from relevance.models import MessageRef


class ForkIndex:
    """Packed source key -> packed keys of the messages copied from it."""

    def __init__(self, edges: Optional[Mapping[str, Sequence[str]]] = None) -> None:
        self._lock = threading.Lock()
        self._edges: Dict[str, List[str]] = {
            source: list(targets) for source, targets in (edges or {}).items()
        }

    def note_fork(self, source: MessageRef, fork: MessageRef) -> None:
        # Not idempotent: callers note each fork event exactly once.
        with self._lock:
            self._edges.setdefault(source.pack(), []).append(fork.pack())

    def forks_of(self, source: MessageRef) -> List[MessageRef]:
        with self._lock:
            targets = list(self._edges.get(source.pack(), ()))
        result = []
        for key in targets:
            ref = MessageRef.unpack(key)
            if ref is None:
                logging.warning("Skipping malformed fork reference %r of %s", key, source.pack())
                continue
            result.append(ref)
        return result

    def merge(self, other: ForkIndex) -> int:
        """Add the edges of other that this index lacks. Returns how many were added."""
        added = 0
        for source, targets in other.snapshot().items():
            with self._lock:
                known = self._edges.setdefault(source, [])
                for target in targets:
                    if target not in known:
                        known.append(target)
                        added += 1
                if not known:
                    del self._edges[source]
        return added

    def snapshot(self) -> Dict[str, List[str]]:
        with self._lock:
            return {source: list(targets) for source, targets in self._edges.items()}

    def __len__(self) -> int:
        with self._lock:
            return sum(len(targets) for targets in self._edges.values())

    @classmethod
    def from_snapshot(cls, data: Mapping) -> ForkIndex:
        if not isinstance(data, dict):
            raise ValueError("forkedMessageIndex must be an object")
        for source, targets in data.items():
            if not isinstance(targets, list) or not all(isinstance(t, str) for t in targets):
                raise ValueError(f"invalid fork targets for {source!r}")
        return cls(data)

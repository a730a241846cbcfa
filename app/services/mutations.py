"""Per-entry ordering of optimistic mutations."""

import itertools
from dataclasses import dataclass, field
from typing import Any


@dataclass
class PendingMutation:
    """A patch applied locally but not yet confirmed by the store."""

    seq: int
    patch: dict[str, Any]


@dataclass
class MutationTracker:
    """Sequence numbers and write marks for optimistic updates.

    Every mutation on an entry gets a sequence number. A store response is
    applied only when its sequence is newer than the last one applied for
    that entry, so a slow response can never overwrite a later write.

    Write marks record, on a single monotonic counter, when an entry was last
    confirmed. A sync that started before that mark must not replace the
    entry with what it fetched.
    """

    _counter: itertools.count = field(default_factory=lambda: itertools.count(1))
    _pending: dict[str, list[PendingMutation]] = field(default_factory=dict)
    _applied: dict[str, int] = field(default_factory=dict)
    _write_marks: dict[str, int] = field(default_factory=dict)

    def mark(self) -> int:
        """Take a point on the shared counter."""
        return next(self._counter)

    def begin(self, entry_id: str, patch: dict[str, Any]) -> int:
        """Register an in-flight mutation and return its sequence number."""
        seq = self.mark()
        self._pending.setdefault(entry_id, []).append(PendingMutation(seq, patch))
        return seq

    def finish(self, entry_id: str, seq: int) -> None:
        """Drop an in-flight mutation, confirmed or failed."""
        remaining = [m for m in self._pending.get(entry_id, []) if m.seq != seq]
        if remaining:
            self._pending[entry_id] = remaining
        else:
            self._pending.pop(entry_id, None)

    def accept(self, entry_id: str, seq: int) -> bool:
        """Record a confirmed response; False if a newer one was already applied."""
        if seq <= self._applied.get(entry_id, 0):
            return False
        self._applied[entry_id] = seq
        self._write_marks[entry_id] = self.mark()
        return True

    def touch(self, entry_id: str) -> None:
        """Record a confirmed write that had no tracked sequence (e.g. creation)."""
        self._write_marks[entry_id] = self.mark()

    def written_since(self, entry_id: str, mark: int) -> bool:
        """Whether the entry was confirmed after ``mark`` was taken."""
        return self._write_marks.get(entry_id, 0) > mark

    def pending_patch(self, entry_id: str) -> dict[str, Any]:
        """In-flight patches newer than the last applied response, merged in issue order."""
        applied = self._applied.get(entry_id, 0)
        merged: dict[str, Any] = {}
        for mutation in self._pending.get(entry_id, []):
            if mutation.seq > applied:
                merged.update(mutation.patch)
        return merged

    def forget(self, entry_id: str) -> None:
        """Drop all tracking for an entry."""
        self._pending.pop(entry_id, None)
        self._applied.pop(entry_id, None)
        self._write_marks.pop(entry_id, None)

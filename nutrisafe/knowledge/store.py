"""Versioned knowledge base store with atomic publication.

The store is the single writer of the "current snapshot" pointer. Queries pin
a snapshot through ``acquire()`` for their whole lifetime, so a publish that
happens mid-query never changes what that query sees. Retired snapshots are
closed once the last query holding them releases its pin.
"""

from __future__ import annotations

import datetime
import threading
from collections import OrderedDict
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass

from nutrisafe.exceptions import KnowledgeBaseValidationError, StaleKnowledgeBaseError
from nutrisafe.knowledge.base import InMemoryKnowledgeBase, KnowledgeBase, KnowledgeSnapshot
from nutrisafe.logging import get_logger

logger = get_logger(__name__)


@dataclass
class _Slot:
    kb: KnowledgeBase
    refcount: int = 0
    retired: bool = False
    deprecated: bool = False


class KnowledgeBaseStore:
    """Single-writer, many-reader holder of published knowledge bases.

    Args:
        retained_versions: How many versions besides the current one stay
            queryable by explicit version.
        max_age_days: Snapshots published longer ago than this are refused.
            ``None`` disables the age check.
        clock: Returns the current time; injectable for tests.
    """

    def __init__(
        self,
        retained_versions: int = 3,
        max_age_days: float | None = None,
        clock: Callable[[], datetime.datetime] | None = None,
    ) -> None:
        self.retained_versions = max(0, retained_versions)
        self.max_age_days = max_age_days
        self._clock = clock or (lambda: datetime.datetime.now(tz=datetime.UTC))
        self._lock = threading.Lock()
        self._slots: OrderedDict[str, _Slot] = OrderedDict()
        self._current: str | None = None
        self._released: set[str] = set()

    @property
    def current_version(self) -> str | None:
        return self._current

    def versions(self) -> list[str]:
        """Versions still queryable, oldest first."""
        with self._lock:
            return [v for v, slot in self._slots.items() if not slot.retired]

    def publish(self, snapshot: KnowledgeSnapshot | KnowledgeBase) -> KnowledgeBase:
        """Validate and index a snapshot, then make it current.

        Validation and indexing happen before the lock is taken; a snapshot
        that fails validation leaves the current pointer untouched. A published
        version is immutable: publishing it again with identical content makes
        it current, with different content it is refused.

        Raises:
            KnowledgeBaseValidationError: If the snapshot is invalid, or its
                version was already published with other content or released.
        """
        kb = snapshot if isinstance(snapshot, KnowledgeBase) else InMemoryKnowledgeBase(snapshot)
        to_close: list[KnowledgeBase] = []
        with self._lock:
            if kb.version in self._released:
                raise KnowledgeBaseValidationError(kb.version, ["version was already published and released"])
            existing = self._slots.get(kb.version)
            if existing is not None:
                if existing.retired:
                    raise KnowledgeBaseValidationError(kb.version, ["version was retired and cannot be republished"])
                if existing.kb.snapshot != kb.snapshot:
                    raise KnowledgeBaseValidationError(
                        kb.version, ["version is already published with different content"]
                    )
                if kb is not existing.kb:
                    to_close.append(kb)
                kb = existing.kb
                self._slots.move_to_end(kb.version)
            else:
                self._slots[kb.version] = _Slot(kb=kb)
            self._current = kb.version
            to_close.extend(self._retire_locked())

        for old in to_close:
            old.close()
        logger.info(
            "Published knowledge base",
            kb_version=kb.version,
            republished=existing is not None,
            retained=len(self._slots),
        )
        return kb

    def _retire_locked(self) -> list[KnowledgeBase]:
        older = [v for v in self._slots if v != self._current]
        excess = len(older) - self.retained_versions
        for version in older[: max(0, excess)]:
            self._slots[version].retired = True
        return self._collect_locked()

    def _collect_locked(self) -> list[KnowledgeBase]:
        released: list[KnowledgeBase] = []
        for version, slot in list(self._slots.items()):
            if slot.retired and slot.refcount == 0:
                del self._slots[version]
                self._released.add(version)
                released.append(slot.kb)
                logger.debug("Released knowledge base", kb_version=version)
        return released

    def deprecate(self, version: str) -> None:
        """Mark a version stale; queries against it are refused from now on."""
        with self._lock:
            slot = self._slots.get(version)
            if slot is None:
                raise StaleKnowledgeBaseError(version, "unknown or released version")
            slot.deprecated = True
        logger.warning("Deprecated knowledge base", kb_version=version)

    def _check_fresh(self, version: str, slot: _Slot) -> None:
        if slot.deprecated:
            raise StaleKnowledgeBaseError(version, "version has been deprecated")
        now = self._clock()
        snapshot = slot.kb.snapshot
        if snapshot.is_expired(now):
            raise StaleKnowledgeBaseError(version, f"expired at {snapshot.expires_at.isoformat()}")
        if self.max_age_days is not None and snapshot.age_days(now) > self.max_age_days:
            raise StaleKnowledgeBaseError(version, f"older than {self.max_age_days} days")

    @contextmanager
    def acquire(self, version: str | None = None) -> Iterator[KnowledgeBase]:
        """Pin a knowledge base for the duration of the ``with`` block.

        Raises:
            StaleKnowledgeBaseError: If nothing is published, the version is
                unknown, released, retired, deprecated, expired or too old.
        """
        with self._lock:
            target = version if version is not None else self._current
            if target is None:
                raise StaleKnowledgeBaseError(None, "no knowledge base has been published")
            slot = self._slots.get(target)
            if slot is None or slot.retired:
                reason = "version was released" if target in self._released or slot else "unknown version"
                raise StaleKnowledgeBaseError(target, reason)
            self._check_fresh(target, slot)
            slot.refcount += 1

        try:
            yield slot.kb
        finally:
            with self._lock:
                slot.refcount -= 1
                released = self._collect_locked()
            for kb in released:
                kb.close()

    def current(self) -> KnowledgeBase:
        """Return the current knowledge base without pinning it."""
        with self._lock:
            if self._current is None:
                raise StaleKnowledgeBaseError(None, "no knowledge base has been published")
            return self._slots[self._current].kb

    def in_flight(self, version: str) -> int:
        with self._lock:
            slot = self._slots.get(version)
            return slot.refcount if slot else 0


__all__ = ["KnowledgeBaseStore"]

"""In-memory holder for the currently loaded dataset."""

import logging
import threading
from typing import Optional, Set

from student_dashboard.models import IngestionResult

logger = logging.getLogger(__name__)


class DatasetStore:
    """
    The dataset from the most recent successful upload.

    Each upload takes a generation token with ``begin()`` before ingesting and
    hands it back to ``commit()``, or to ``abandon()`` if ingestion fails. A
    commit is refused when a newer upload is still in flight or has already
    committed, so an ingestion overtaken by a later upload is dropped instead
    of overwriting newer data. A failed ingestion never commits and leaves the
    previous dataset in place; once abandoned it no longer blocks older uploads.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._generation = 0
        self._committed = 0
        self._pending: Set[int] = set()
        self._result: Optional[IngestionResult] = None
        self._file_name: Optional[str] = None

    def begin(self) -> int:
        with self._lock:
            self._generation += 1
            self._pending.add(self._generation)
            return self._generation

    def abandon(self, token: int) -> None:
        with self._lock:
            self._pending.discard(token)

    def commit(self, token: int, result: IngestionResult, file_name: str) -> bool:
        with self._lock:
            self._pending.discard(token)
            newer_pending = any(t > token for t in self._pending)
            if token <= self._committed or newer_pending:
                logger.info("Discarding superseded ingestion of %r (generation %d, latest %d)",
                            file_name, token, self._generation)
                return False
            self._committed = token
            self._result = result
            self._file_name = file_name
            return True

    def clear(self) -> None:
        with self._lock:
            self._committed = self._generation
            self._pending.clear()
            self._result = None
            self._file_name = None

    @property
    def result(self) -> Optional[IngestionResult]:
        return self._result

    @property
    def file_name(self) -> Optional[str]:
        return self._file_name

    @property
    def records(self):
        return self._result.records if self._result is not None else []

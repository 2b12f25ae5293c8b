from __future__ import annotations

import copy
import logging
import threading
from pathlib import Path
from typing import Callable, Set

from allocation_tracker.io_utils import load_document, save_document
from allocation_tracker.lifecycle import AssignmentLifecycle, LifecycleResult, now_iso
from allocation_tracker.models import PlanningDocument, TrackerConfig
from allocation_tracker.tree import build_project_tree

logger = logging.getLogger(__name__)

Clock = Callable[[], str]
LifecycleEvent = Callable[[AssignmentLifecycle], LifecycleResult]


class DocumentStore:
    """Lock-guarded access to one planning document on disk.

    Pending (transient) member rows live only in memory and are lost on
    restart. Every event reloads the document, applies itself through an
    :class:`AssignmentLifecycle`, and writes back only when the ledger changed.
    """

    def __init__(
        self, path: Path, config: TrackerConfig | None = None, clock: Clock = now_iso
    ) -> None:
        self._path = Path(path)
        self._config = config or TrackerConfig()
        self._clock = clock
        self._transient: Set[str] = set()
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    @property
    def config(self) -> TrackerConfig:
        return self._config

    def load(self) -> PlanningDocument:
        with self._lock:
            return load_document(self._path)

    def transient_task_ids(self) -> Set[str]:
        with self._lock:
            return set(self._transient)

    def apply(self, event: LifecycleEvent) -> LifecycleResult:
        with self._lock:
            document = load_document(self._path)
            lifecycle = AssignmentLifecycle(
                document.assignments,
                tree=build_project_tree(document.projects),
                transient_task_ids=self._transient,
                clock=self._clock,
                epsilon=self._config.allocation_epsilon,
            )
            result = event(lifecycle)
            self._transient = set(lifecycle.transient_task_ids)
            if result.ok and result.outcome.writes_ledger:
                document.assignments = lifecycle.assignments
                document.metadata["lastModified"] = self._clock()
                save_document(document, self._path)
                logger.info("%s saved (%s)", self._path.name, result.outcome.value)
            return copy.deepcopy(result)

    def delete_task_assignments(self, task_id: str) -> int:
        with self._lock:
            document = load_document(self._path)
            lifecycle = AssignmentLifecycle(
                document.assignments, transient_task_ids=self._transient, clock=self._clock
            )
            removed = lifecycle.delete_by_task(task_id)
            self._transient = set(lifecycle.transient_task_ids)
            if removed:
                document.assignments = lifecycle.assignments
                document.metadata["lastModified"] = self._clock()
                save_document(document, self._path)
            return removed

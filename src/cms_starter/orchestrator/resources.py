"""Resource tracking and best-effort rollback."""

from __future__ import annotations

import logging
from typing import Callable, Dict, List, Mapping

from .models import ResourceHandle, ResourceKind, RollbackReport

logger = logging.getLogger(__name__)

Deleter = Callable[[ResourceHandle], None]


class ResourceTracker:
    """Ordered record of external resources created during a run."""

    def __init__(self) -> None:
        self._handles: List[ResourceHandle] = []

    def record(self, kind: ResourceKind, identifier: str, **metadata: str) -> ResourceHandle:
        handle = ResourceHandle(kind=kind, identifier=identifier, metadata=dict(metadata))
        self._handles.append(handle)
        logger.debug("Tracking %s", handle.describe())
        return handle

    @property
    def handles(self) -> List[ResourceHandle]:
        return list(self._handles)

    def __len__(self) -> int:
        return len(self._handles)


class RollbackCoordinator:
    """
    回滚协调器

    Deletes tracked resources newest-first. Each deletion is attempted
    independently: a failure is logged and recorded, then the next handle is
    tried. `compensate` never raises.
    """

    def __init__(self, deleters: Mapping[ResourceKind, Deleter]) -> None:
        self.deleters: Dict[ResourceKind, Deleter] = dict(deleters)

    def compensate(self, tracker: ResourceTracker) -> RollbackReport:
        report = RollbackReport()
        handles = tracker.handles
        if not handles:
            return report

        logger.info("↩️  Rolling back %d resource(s)", len(handles))
        for handle in reversed(handles):
            report.attempted.append(handle)
            deleter = self.deleters.get(handle.kind)
            if deleter is None:
                report.failures[handle.describe()] = f"No deleter registered for {handle.kind.value}"
                logger.warning("⚠️  Cannot roll back %s: no deleter", handle.describe())
                continue
            try:
                deleter(handle)
            except Exception as exc:
                report.failures[handle.describe()] = str(exc)
                logger.warning("⚠️  Rollback of %s failed: %s", handle.describe(), exc)
                continue
            report.deleted.append(handle)
            logger.info("   🗑️  Deleted %s", handle.describe())

        return report

"""Applies the operator's selection package by package."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Optional

from debloater.core.executor import ActionExecutor
from debloater.core.models import Package, PackageState
from debloater.core.selection import SelectionController

logger = logging.getLogger(__name__)

ProgressCallback = Callable[["BatchJob", "StepReport"], None]


@dataclass
class StepReport:
    name: str
    user_id: int
    target: PackageState
    success: bool
    commands: list[str] = field(default_factory=list)
    error: str = ""

    @property
    def skipped(self) -> bool:
        return self.success and not self.commands


class BatchJob:
    """Progress of one batch. Completion count only ever grows."""

    def __init__(self, total: int):
        self.total = total
        self.reports: list[StepReport] = []
        self.running = False
        self.done = False
        self._completed = 0
        self._cancel = threading.Event()
        self._lock = threading.Lock()

    @property
    def completed(self) -> int:
        return self._completed

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def cancel(self) -> None:
        """Stop before the next package; the one in flight runs to its end."""
        self._cancel.set()

    def _record(self, report: StepReport) -> None:
        with self._lock:
            self.reports.append(report)
            self._completed += 1

    @property
    def failures(self) -> list[StepReport]:
        return [r for r in self.reports if not r.success]


class BatchController:
    """Serializes the selected plans against one device."""

    def __init__(
        self,
        executor: ActionExecutor,
        selection: SelectionController,
        refresh: Optional[Callable[[], None]] = None,
        on_progress: Optional[ProgressCallback] = None,
    ):
        self.executor = executor
        self.selection = selection
        self.refresh = refresh
        self.on_progress = on_progress

    def targets(self) -> list[tuple[Package, PackageState]]:
        """Packages to act on, sorted by name, with their wanted state."""
        settings = self.executor.settings
        rows = self.selection.selected()
        if settings.multi_user_mode:
            # the fan-out already covers every user, one plan per name
            seen: dict[str, Package] = {}
            for p in rows:
                seen.setdefault(p.name, p)
            rows = list(seen.values())
        return [(p, p.state.opposite(settings.disable_mode)) for p in rows]

    def new_job(self) -> BatchJob:
        return BatchJob(total=len(self.targets()))

    def run(self, job: Optional[BatchJob] = None) -> BatchJob:
        targets = self.targets()
        job = job or BatchJob(total=len(targets))
        job.total = len(targets)
        job.running = True
        try:
            for package, target in targets:
                if job.cancelled:
                    logger.info("Batch cancelled after %d/%d packages", job.completed, job.total)
                    break
                report = self._apply(package, target)
                job._record(report)
                if self.on_progress is not None:
                    self.on_progress(job, report)
        finally:
            job.running = False
            job.done = True
            if self.refresh is not None:
                self.refresh()
        return job

    def _apply(self, package: Package, target: PackageState) -> StepReport:
        result = self.executor.apply(package, target)
        if result.success:
            self.selection.toggle(package.user_id, package.name, False)
        return StepReport(
            name=package.name,
            user_id=package.user_id,
            target=target,
            success=result.success,
            commands=result.commands_run,
            error=str(result.error) if result.error else "",
        )


def run_device_batches(
    controllers: list[BatchController],
    max_workers: Optional[int] = None,
) -> list[BatchJob]:
    """Run one batch per device in parallel; each device stays serialized."""
    if not controllers:
        return []
    jobs = [c.new_job() for c in controllers]
    with ThreadPoolExecutor(max_workers=max_workers or len(controllers)) as pool:
        futures = [pool.submit(c.run, job) for c, job in zip(controllers, jobs)]
        return [f.result() for f in futures]

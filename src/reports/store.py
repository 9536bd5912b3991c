"""Transient report store.

Reports are reconstructible from the entity store, so they live in memory
and are evicted after ``expires_at``. All mutation goes through
``transition``, which enforces the report lifecycle.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import replace
from datetime import UTC, datetime
from uuid import UUID

import structlog

from .models import ALLOWED_TRANSITIONS, Report, ReportStatus


logger = structlog.get_logger(__name__)


class InvalidTransitionError(Exception):
    """Report status change not allowed by the lifecycle."""

    def __init__(self, report_id: UUID, current: ReportStatus, target: ReportStatus):
        self.report_id = report_id
        self.current = current
        self.target = target
        super().__init__(
            f"Report {report_id} cannot move from {current.value} to {target.value}"
        )


class InMemoryReportStore:
    """Dict-backed report store with lazy expiry."""

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self._reports: dict[UUID, Report] = {}
        self._lock = asyncio.Lock()
        self._clock = clock or (lambda: datetime.now(UTC))

    def __len__(self) -> int:
        return len(self._reports)

    async def add(self, report: Report) -> Report:
        if report.status != ReportStatus.PENDING:
            msg = "New reports must be pending"
            raise ValueError(msg)
        async with self._lock:
            self._reports[report.id] = report
        return replace(report)

    async def get(self, report_id: UUID) -> Report | None:
        """Get a copy of a report; expired reports are evicted and not returned."""
        async with self._lock:
            report = self._reports.get(report_id)
            if report is None:
                return None
            if report.is_expired(self._clock()):
                del self._reports[report_id]
                logger.debug("report_evicted", report_id=str(report_id))
                return None
            return replace(report)

    async def transition(
        self,
        report_id: UUID,
        target: ReportStatus,
        *,
        payload: bytes | None = None,
        content_type: str | None = None,
        error: str | None = None,
        row_count: int | None = None,
    ) -> Report:
        """Move a report to ``target``.

        Raises:
            KeyError: If the report is unknown
            InvalidTransitionError: If the lifecycle forbids the change
        """
        async with self._lock:
            report = self._reports[report_id]
            if target not in ALLOWED_TRANSITIONS[report.status]:
                raise InvalidTransitionError(report_id, report.status, target)

            report.status = target
            if target == ReportStatus.READY:
                report.payload = payload
                report.content_type = content_type
                report.row_count = row_count
            if target == ReportStatus.FAILED:
                report.error = error or "Report generation failed"
            if target.is_terminal:
                report.completed_at = self._clock()
            return replace(report)

    async def purge_expired(self) -> int:
        """Evict every expired report. Returns the number evicted."""
        now = self._clock()
        async with self._lock:
            expired = [rid for rid, r in self._reports.items() if r.is_expired(now)]
            for report_id in expired:
                del self._reports[report_id]
        if expired:
            logger.info("reports_purged", count=len(expired))
        return len(expired)

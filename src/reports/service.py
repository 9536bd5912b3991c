"""Asynchronous report generation.

Requests are validated synchronously; an accepted request creates a pending
report and schedules a background task. The task loads data from the entity
store, renders in a worker thread so metric reads keep being served, and
checks the report's expiry before storing the payload.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from uuid import UUID

import structlog

from src.analytics.risk import RiskClassifier
from src.entities.models import UserRole
from src.entities.store import EntityStore

from .models import Report, ReportRequest, ReportStatus
from .renderers import ReportDataset, build_rows, render
from .store import InMemoryReportStore, InvalidTransitionError


logger = structlog.get_logger(__name__)

EXPIRED_CAUSE = "expired"


# ==============================================================================
# Custom Exceptions
# ==============================================================================


class ReportError(Exception):
    """Base report error."""

    def __init__(self, message: str, code: str = "report_error"):
        self.message = message
        self.code = code
        super().__init__(message)


class ReportValidationError(ReportError):
    """Report request rejected before any report was created."""

    def __init__(self, message: str):
        super().__init__(message, "validation_error")


class ReportNotFoundError(ReportError):
    """Report id unknown or expired."""

    def __init__(self, report_id: UUID):
        super().__init__(f"Report {report_id} not found", "report_not_found")
        self.report_id = report_id


class ReportNotReadyError(ReportError):
    """Report still pending or generating."""

    def __init__(self, report_id: UUID, status: ReportStatus):
        super().__init__(
            f"Report {report_id} is not ready (status: {status.value})",
            "report_not_ready",
        )
        self.report_id = report_id
        self.status = status


class ReportFailedError(ReportError):
    """Report generation failed; carries the cause."""

    def __init__(self, report_id: UUID, cause: str):
        super().__init__(f"Report generation failed: {cause}", "report_failed")
        self.report_id = report_id
        self.cause = cause


class ReportTooLargeError(Exception):
    """Report exceeds the configured row cap."""


# ==============================================================================
# Generator
# ==============================================================================


class ReportGenerator:
    """Validates report requests and runs their generation tasks."""

    def __init__(
        self,
        store: EntityStore,
        reports: InMemoryReportStore,
        classifier: RiskClassifier | None = None,
        ttl_seconds: int = 3600,
        max_rows: int = 50_000,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store
        self.reports = reports
        self.classifier = classifier or RiskClassifier()
        self.ttl_seconds = ttl_seconds
        self.max_rows = max_rows
        self._clock = clock or (lambda: datetime.now(UTC))
        self._tasks: dict[UUID, asyncio.Task] = {}

    async def request(self, report_request: ReportRequest) -> Report:
        """Validate a request and schedule its generation.

        Returns:
            The pending report; its payload is produced in the background

        Raises:
            ReportValidationError: On a bad date range or unknown filter id
        """
        await self.validate(report_request)
        await self.reports.purge_expired()

        now = self._clock()
        report = await self.reports.add(
            Report(
                request=report_request,
                created_at=now,
                expires_at=now + timedelta(seconds=self.ttl_seconds),
            )
        )
        task = asyncio.create_task(
            self._generate(report.id), name=f"report-generate:{report.id}"
        )
        self._tasks[report.id] = task
        task.add_done_callback(lambda _t, rid=report.id: self._tasks.pop(rid, None))

        logger.info(
            "report_requested",
            report_id=str(report.id),
            report_type=report_request.type.value,
            format=report_request.format.value,
        )
        return report

    async def validate(self, report_request: ReportRequest) -> None:
        date_range = report_request.date_range
        if date_range.start > date_range.end:
            msg = "date_range.start must not be after date_range.end"
            raise ReportValidationError(msg)

        filters = report_request.filters
        for course_id in filters.course_ids:
            if await self.store.get_course(course_id) is None:
                msg = f"Unknown course id in filters: {course_id}"
                raise ReportValidationError(msg)
        for user_id in filters.user_ids:
            if await self.store.get_user(user_id) is None:
                msg = f"Unknown user id in filters: {user_id}"
                raise ReportValidationError(msg)
        for instructor_id in filters.instructor_ids:
            instructor = await self.store.get_user(instructor_id)
            if instructor is None:
                msg = f"Unknown instructor id in filters: {instructor_id}"
                raise ReportValidationError(msg)
            if instructor.role != UserRole.INSTRUCTOR:
                msg = f"User {instructor_id} in instructor filters is not an instructor"
                raise ReportValidationError(msg)

    async def get(self, report_id: UUID) -> Report:
        """Get a report's current state.

        Raises:
            ReportNotFoundError: If unknown or expired
        """
        report = await self.reports.get(report_id)
        if report is None:
            raise ReportNotFoundError(report_id)
        return report

    async def download(self, report_id: UUID) -> Report:
        """Get a ready report with its payload.

        Raises:
            ReportNotFoundError: If unknown or expired
            ReportNotReadyError: If pending or generating
            ReportFailedError: If generation failed
        """
        report = await self.get(report_id)
        if report.status == ReportStatus.FAILED:
            raise ReportFailedError(report_id, report.error or "unknown error")
        if report.status != ReportStatus.READY:
            raise ReportNotReadyError(report_id, report.status)
        return report

    async def wait(self, report_id: UUID) -> None:
        """Wait for a report's generation task, if one is running."""
        task = self._tasks.get(report_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    async def aclose(self) -> None:
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

    # ==========================================================================
    # Generation task
    # ==========================================================================

    async def _generate(self, report_id: UUID) -> None:
        log = logger.bind(report_id=str(report_id))
        try:
            report = await self.reports.get(report_id)
            if report is None:
                log.info("report_abandoned", reason="expired_before_start")
                return
            await self.reports.transition(report_id, ReportStatus.GENERATING)

            dataset = await self._load_dataset()
            generated_at = self._clock()
            payload, row_count = await asyncio.to_thread(
                self._render, report.request, dataset, generated_at
            )

            if report.is_expired(self._clock()):
                await self.reports.transition(
                    report_id, ReportStatus.FAILED, error=EXPIRED_CAUSE
                )
                log.info("report_abandoned", reason=EXPIRED_CAUSE)
                return

            await self.reports.transition(
                report_id,
                ReportStatus.READY,
                payload=payload,
                content_type=report.request.format.media_type,
                row_count=row_count,
            )
            log.info("report_ready", row_count=row_count, size_bytes=len(payload))
        except asyncio.CancelledError:
            await self._fail_quietly(report_id, "cancelled")
            raise
        except (KeyError, InvalidTransitionError) as e:
            # Report evicted or already finalized
            log.warning("report_transition_rejected", error=str(e))
        except Exception as e:
            log.exception("report_generation_failed", error_type=type(e).__name__)
            await self._fail_quietly(report_id, str(e) or type(e).__name__)

    def _render(
        self, request: ReportRequest, dataset: ReportDataset, generated_at: datetime
    ) -> tuple[bytes, int]:
        rows = build_rows(request, dataset, generated_at, self.classifier)
        if len(rows) > self.max_rows:
            msg = f"Report has {len(rows)} rows, limit is {self.max_rows}"
            raise ReportTooLargeError(msg)
        return render(request, rows, generated_at), len(rows)

    async def _load_dataset(self) -> ReportDataset:
        return ReportDataset(
            users=await self.store.list_users(),
            courses=await self.store.list_courses(),
            modules=await self.store.list_modules(),
            enrollments=await self.store.list_enrollments(),
            progress=await self.store.list_module_progress(),
            feedback=await self.store.list_feedback(),
        )

    async def _fail_quietly(self, report_id: UUID, cause: str) -> None:
        try:
            await self.reports.transition(report_id, ReportStatus.FAILED, error=cause)
        except (KeyError, InvalidTransitionError) as e:
            logger.debug(
                "report_fail_transition_skipped", report_id=str(report_id), error=str(e)
            )

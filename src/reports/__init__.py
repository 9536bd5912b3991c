"""Report generation module.

Provides:
- Asynchronous, filterable report generation (ReportGenerator)
- Transient report storage with a guarded lifecycle
- JSON and CSV rendering

Note: router is imported separately in main.py.
"""

from .models import (
    DateRange,
    Report,
    ReportFilters,
    ReportFormat,
    ReportRequest,
    ReportStatus,
    ReportType,
)
from .service import (
    ReportError,
    ReportFailedError,
    ReportGenerator,
    ReportNotFoundError,
    ReportNotReadyError,
    ReportValidationError,
)
from .store import InMemoryReportStore, InvalidTransitionError


__all__ = [
    "DateRange",
    "InMemoryReportStore",
    "InvalidTransitionError",
    "Report",
    "ReportError",
    "ReportFailedError",
    "ReportFilters",
    "ReportFormat",
    "ReportGenerator",
    "ReportNotFoundError",
    "ReportNotReadyError",
    "ReportRequest",
    "ReportStatus",
    "ReportType",
    "ReportValidationError",
]

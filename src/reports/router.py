"""Admin report API endpoints.

Provides routes for:
- Report generation requests (asynchronous)
- Report status
- Report download
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Response, status

from src.auth.dependencies import require_admin

from .dependencies import ReportGeneratorDep, handle_report_error
from .schemas import (
    ReportAcceptedResponse,
    ReportGenerateRequest,
    ReportStatusResponse,
)
from .service import ReportError


router = APIRouter(
    prefix="/api/admin/reports",
    tags=["admin-reports"],
    dependencies=[Depends(require_admin())],
)


@router.post(
    "/generate",
    response_model=ReportAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Request a report",
)
async def generate_report(
    data: ReportGenerateRequest,
    generator: ReportGeneratorDep,
) -> ReportAcceptedResponse:
    """Validate the request and schedule generation.

    Returns the report id immediately; poll the status endpoint or the
    download endpoint for the result.
    """
    try:
        report = await generator.request(data.to_domain())
    except ReportError as e:
        raise handle_report_error(e) from e
    return ReportAcceptedResponse(report_id=report.id, status=report.status)


@router.get(
    "/{report_id}",
    response_model=ReportStatusResponse,
    summary="Get report status",
)
async def get_report_status(
    report_id: UUID,
    generator: ReportGeneratorDep,
) -> ReportStatusResponse:
    try:
        report = await generator.get(report_id)
    except ReportError as e:
        raise handle_report_error(e) from e
    return ReportStatusResponse.from_report(report)


@router.get(
    "/{report_id}/download",
    summary="Download a ready report",
    responses={
        404: {"description": "Unknown or expired report"},
        409: {"description": "Report still pending or generating"},
        422: {"description": "Report generation failed"},
    },
)
async def download_report(
    report_id: UUID,
    generator: ReportGeneratorDep,
) -> Response:
    try:
        report = await generator.download(report_id)
    except ReportError as e:
        raise handle_report_error(e) from e

    return Response(
        content=report.payload or b"",
        media_type=report.content_type or report.request.format.media_type,
        headers={"Content-Disposition": f'attachment; filename="{report.filename}"'},
    )

"""
Tender versioning API routes.

Upload new versions, review the position mappings between versions and
carry BOQ data over.
"""

from fastapi import APIRouter, File, Form, Query, UploadFile
from fastapi.responses import JSONResponse
import structlog

from models.mapping import (
    AutoMatchRequest,
    Mapping,
    MappingListResponse,
    MappingReassign,
    MappingStatistics,
    MappingStatusUpdate,
)
from models.tender import (
    Tender,
    VersionComparison,
    VersionInfo,
    VersionUploadRequest,
    VersionUploadResult,
)
from models.transfer import TransferResult
from parsers.position_parser import parse_position_upload
from services.matching_service import get_matching_service
from services.reconciliation_service import get_reconciliation_service
from services.transfer_service import get_transfer_service
from services.version_service import get_version_service
from exceptions import AppError

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/tender-versions", tags=["Tender Versions"])


# ===================
# EXCEPTION HANDLER
# ===================

def handle_error(e: Exception) -> JSONResponse:
    """Convert exception to JSON response."""
    if isinstance(e, AppError):
        return JSONResponse(
            status_code=e.status_code,
            content=e.to_dict()
        )
    logger.error("unexpected_error", error=str(e), type=type(e).__name__)
    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "INTERNAL_ERROR",
                "message": "An unexpected error occurred"
            }
        }
    )


# ===================
# VERSION ROUTES
# ===================

@router.get("/compare", response_model=VersionComparison)
async def compare_versions(
    old_tender_id: str = Query(..., description="Previous version"),
    new_tender_id: str = Query(..., description="New version"),
):
    """Count added, removed and modified positions between two versions."""
    try:
        service = get_version_service()
        return service.compare_versions(old_tender_id, new_tender_id)

    except Exception as e:
        return handle_error(e)


@router.post("/{parent_tender_id}/versions", response_model=VersionUploadResult, status_code=201)
async def upload_version(parent_tender_id: str, request: VersionUploadRequest):
    """
    Upload positions as a new version of a tender.

    With auto_match (default) the new version is matched against the
    parent and BOQ data is transferred right away.
    """
    try:
        service = get_version_service()
        return service.upload_as_new_version(
            parent_tender_id,
            request.rows,
            auto_match=request.auto_match,
            options=request.options,
        )

    except Exception as e:
        return handle_error(e)


@router.post("/{parent_tender_id}/versions/upload", response_model=VersionUploadResult, status_code=201)
async def upload_version_file(
    parent_tender_id: str,
    file: UploadFile = File(..., description="BOQ workbook (.xlsx)"),
    auto_match: bool = Form(True),
):
    """
    Upload a customer workbook as a new version of a tender.

    Reads the first sheet (number, type, work name, unit, volume, note)
    after a header row. Rejects the whole upload if any row is invalid.
    """
    try:
        contents = await file.read()
        rows = parse_position_upload(contents)

        logger.info(
            "version_file_received",
            parent_tender_id=parent_tender_id,
            filename=file.filename,
            rows=len(rows)
        )

        service = get_version_service()
        return service.upload_as_new_version(parent_tender_id, rows, auto_match=auto_match)

    except Exception as e:
        return handle_error(e)


@router.get("/{tender_id}/history", response_model=list[Tender])
async def get_version_history(tender_id: str):
    """All versions of the tender's family, oldest first."""
    try:
        service = get_version_service()
        return service.get_version_history(tender_id)

    except Exception as e:
        return handle_error(e)


@router.get("/{tender_id}/is-version", response_model=VersionInfo)
async def check_if_version(tender_id: str):
    """Whether the tender is a version of another tender."""
    try:
        service = get_version_service()
        return service.check_if_version(tender_id)

    except Exception as e:
        return handle_error(e)


# ===================
# MAPPING ROUTES
# ===================

@router.post("/auto-match", response_model=MappingListResponse)
async def auto_match(request: AutoMatchRequest):
    """
    Match positions of two versions.

    With save (default) the mappings are stored; replace discards
    existing unapplied mappings of the new version first.
    """
    try:
        service = get_matching_service()
        mappings = service.auto_match(
            request.old_tender_id,
            request.new_tender_id,
            request.options,
        )

        if request.save:
            mappings = service.save_mappings(
                request.new_tender_id,
                mappings,
                replace=request.replace,
            )

        return MappingListResponse(
            data=mappings,
            statistics=MappingStatistics.of(mappings),
        )

    except Exception as e:
        return handle_error(e)


@router.get("/{new_tender_id}/mappings", response_model=MappingListResponse)
async def get_mappings(new_tender_id: str):
    """Stored mappings of a version, highest confidence first."""
    try:
        service = get_matching_service()
        mappings = service.get_mappings(new_tender_id)

        return MappingListResponse(
            data=mappings,
            statistics=service.statistics(mappings),
        )

    except Exception as e:
        return handle_error(e)


@router.patch("/mappings/{mapping_id}/status", response_model=Mapping)
async def update_mapping_status(mapping_id: str, request: MappingStatusUpdate):
    """Confirm or reject a mapping."""
    try:
        service = get_reconciliation_service()
        return service.set_status(mapping_id, request.status)

    except Exception as e:
        return handle_error(e)


@router.post("/mappings/{mapping_id}/reassign", response_model=Mapping)
async def reassign_mapping(mapping_id: str, request: MappingReassign):
    """
    Point a mapping at another new position, or unbind it (null).

    Mappings holding the target position are freed in the same commit.
    """
    try:
        service = get_reconciliation_service()
        return service.reassign(mapping_id, request.new_position_id)

    except Exception as e:
        return handle_error(e)


# ===================
# TRANSFER ROUTES
# ===================

@router.post("/{new_tender_id}/apply", response_model=TransferResult)
async def apply_mappings(new_tender_id: str):
    """Transfer BOQ items and links for all confirmed mappings."""
    try:
        service = get_transfer_service()
        result = service.apply_all(new_tender_id)

        logger.info(
            "apply_mappings_requested",
            new_tender_id=new_tender_id,
            success=result.success
        )
        return result

    except Exception as e:
        return handle_error(e)

"""API routes for merging observations into shared workbooks.

- POST /merges/teacher: clone the teacher template, fill it, upload
- POST /merges/admin: same with the admin template
- POST /merges/{teacher,admin}/observation: same, from raw observation data
  (the export model and default sheet name are built here)
- GET /merges/ping: liveness for the merge service

The caller's Microsoft Graph token comes in the Authorization header and is
only used for the duration of the request.
"""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from fastapi.responses import JSONResponse

from models.schemas import (
    MergeErrorResponse,
    MergeRequest,
    MergeRequestBody,
    MergeResponse,
    ObservationMergeBody,
)
from services.errors import (
    DocumentFormatError,
    DownloadError,
    InvalidSheetNameError,
    LockedError,
    MergeError,
    ResolutionError,
    SheetNameConflictError,
    TemplateNotFoundError,
    UploadError,
)
from services.merge_engine import MergeOrchestrator, build_observation_request


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/merges", tags=["merges"])


ERROR_STATUS = {
    InvalidSheetNameError: 400,
    ResolutionError: 400,
    DownloadError: 502,
    DocumentFormatError: 422,
    TemplateNotFoundError: 422,
    SheetNameConflictError: 409,
    LockedError: 423,
    UploadError: 502,
}


# =============================================================================
# DEPENDENCIES
# =============================================================================

def get_merge_orchestrator(request: Request) -> MergeOrchestrator:
    """The orchestrator built at startup (see main.lifespan)."""
    return request.app.state.merge_orchestrator


def get_bearer_token(authorization: Optional[str] = Header(None)) -> str:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(401, "Missing bearer token")
    token = authorization[7:].strip()
    if not token:
        raise HTTPException(401, "Missing bearer token")
    return token


def _error_response(error: MergeError) -> JSONResponse:
    status = next(
        (code for cls, code in ERROR_STATUS.items() if isinstance(error, cls)),
        500,
    )
    body = MergeErrorResponse(kind=error.kind, error=error.user_message, detail=str(error))
    return JSONResponse(status_code=status, content=body.model_dump())


def _merge(
    request: MergeRequest,
    token: str,
    orchestrator: MergeOrchestrator,
):
    try:
        result = orchestrator.merge(request, token)
    except MergeError as e:
        logger.warning(f"[ROUTE] /merges/{request.kind} failed: {e.kind}")
        return _error_response(e)

    return MergeResponse(
        sheet_url=result.sheet_url,
        sheet_name=result.sheet_name,
        skipped_indicators=result.skipped_indicators,
        skipped_header_fields=result.skipped_header_fields,
    ).model_dump(by_alias=True)


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.get("/ping")
def ping():
    return {"ok": True, "service": "merges"}


@router.post("/teacher")
def merge_teacher(
    body: MergeRequestBody,
    token: str = Depends(get_bearer_token),
    orchestrator: MergeOrchestrator = Depends(get_merge_orchestrator),
):
    """Clone the teacher template into a new sheet and fill it."""
    return _merge(body.to_request("teacher"), token, orchestrator)


@router.post("/admin")
def merge_admin(
    body: MergeRequestBody,
    token: str = Depends(get_bearer_token),
    orchestrator: MergeOrchestrator = Depends(get_merge_orchestrator),
):
    """Clone the admin template into a new sheet and fill it."""
    return _merge(body.to_request("admin"), token, orchestrator)


@router.post("/teacher/observation")
def merge_teacher_observation(
    body: ObservationMergeBody,
    token: str = Depends(get_bearer_token),
    orchestrator: MergeOrchestrator = Depends(get_merge_orchestrator),
):
    """Build the teacher export model from an observation, then merge it."""
    return _merge(build_observation_request("teacher", body), token, orchestrator)


@router.post("/admin/observation")
def merge_admin_observation(
    body: ObservationMergeBody,
    token: str = Depends(get_bearer_token),
    orchestrator: MergeOrchestrator = Depends(get_merge_orchestrator),
):
    """Build the admin export model from an observation, then merge it."""
    return _merge(build_observation_request("admin", body), token, orchestrator)

"""Error taxonomy for the workbook merge pipeline.

Every component raises one of these and the orchestrator lets it through
unchanged, so callers can tell a broken link from a locked file from a
template problem.
"""
from __future__ import annotations

from typing import Optional


class MergeError(Exception):
    """Base class for all merge failures."""

    kind = "merge_error"
    default_user_message = "The workbook could not be updated."

    def __init__(
        self,
        message: str,
        *,
        user_message: Optional[str] = None,
        remote_status: Optional[int] = None,
    ):
        super().__init__(message)
        self.user_message = user_message or self.default_user_message
        self.remote_status = remote_status


class InvalidSheetNameError(MergeError):
    kind = "invalid_sheet_name"
    default_user_message = "The sheet name is not allowed in Excel."


class ResolutionError(MergeError):
    kind = "resolution_failed"
    default_user_message = (
        "The workbook link could not be opened. Check that the link is "
        "configured and still shared."
    )


class DownloadError(MergeError):
    kind = "download_failed"
    default_user_message = "The workbook could not be downloaded."


class DocumentFormatError(MergeError):
    kind = "invalid_document"
    default_user_message = "The linked file is not an Excel workbook."


class TemplateNotFoundError(MergeError):
    kind = "template_not_found"
    default_user_message = "The template sheet is missing from the workbook."


class SheetNameConflictError(MergeError):
    kind = "sheet_exists"
    default_user_message = "A sheet with this name already exists in the workbook."


class LockedError(MergeError):
    kind = "locked"
    default_user_message = (
        "The workbook is open elsewhere. Close it and try again."
    )


class UploadError(MergeError):
    kind = "upload_failed"
    default_user_message = "The updated workbook could not be saved."

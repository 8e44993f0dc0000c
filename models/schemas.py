from __future__ import annotations

from typing import Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


MergeKind = Literal["teacher", "admin"]
SupportType = Literal["Training", "LVA", "Visit"]


# =============================================================================
# EXPORT MODEL: what gets written into the cloned sheet
# =============================================================================

class IndicatorValues(BaseModel):
    """Values for one indicator row. Unset fields fall back to the layout default."""

    model_config = ConfigDict(populate_by_name=True)

    label: Optional[str] = None
    description: Optional[str] = None
    rating: Optional[Union[str, float]] = None  # Dropdown text or a numeric score
    strengths: Optional[str] = None
    growth: Optional[str] = None


class ExportModel(BaseModel):
    """Header fields plus indicator values keyed by indicator number (e.g. "1.1")."""

    header: Dict[str, str] = {}
    indicators: Dict[str, IndicatorValues] = {}


# =============================================================================
# OBSERVATION INPUT: source data for the export model builders
# =============================================================================

class ObservationMeta(BaseModel):
    """Observation details shown in the sheet header."""

    model_config = ConfigDict(populate_by_name=True)

    teacher_name: str = Field("", alias="teacherName")
    school_name: str = Field("", alias="schoolName")
    campus: str = ""
    unit: str = ""
    lesson: str = ""
    support_type: str = Field("Visit", alias="supportType")
    date: Optional[str] = None  # ISO date
    trainer_name: str = Field("", alias="trainerName")


class IndicatorState(BaseModel):
    """A trainer's marks and comment for one indicator."""

    model_config = ConfigDict(populate_by_name=True)

    number: str
    title: str = ""
    description: str = ""
    good: bool = False
    growth: bool = False
    comment_text: str = Field("", alias="commentText")


# =============================================================================
# MERGE REQUEST / RESULT
# =============================================================================

class MergeRequest(BaseModel):
    """One template-to-sheet merge. The bearer token travels separately."""

    kind: MergeKind
    share_url: str
    target_sheet_name: str
    template_sheet_name: Optional[str] = None
    export_model: ExportModel = ExportModel()


class MergeResult(BaseModel):
    sheet_url: str
    sheet_name: str
    skipped_indicators: List[str] = []
    skipped_header_fields: List[str] = []
    upload_attempts: int = 1


# =============================================================================
# HTTP BODIES
# =============================================================================

class MergeRequestBody(BaseModel):
    """POST /merges/{kind} body."""

    model_config = ConfigDict(populate_by_name=True)

    workbook_url: str = Field(..., alias="workbookUrl", min_length=1)
    sheet_name: str = Field(..., alias="sheetName")
    template_sheet_name: Optional[str] = Field(None, alias="templateSheetName")
    model: ExportModel = ExportModel()

    def to_request(self, kind: MergeKind) -> MergeRequest:
        return MergeRequest(
            kind=kind,
            share_url=self.workbook_url,
            target_sheet_name=self.sheet_name,
            template_sheet_name=self.template_sheet_name,
            export_model=self.model,
        )


class ObservationMergeBody(BaseModel):
    """POST /merges/{kind}/observation body: the observation itself.

    The export model is built server-side. Without ``sheetName`` the sheet
    is named after the observation (month, teacher, support type).
    """

    model_config = ConfigDict(populate_by_name=True)

    workbook_url: str = Field(..., alias="workbookUrl", min_length=1)
    sheet_name: Optional[str] = Field(None, alias="sheetName")
    template_sheet_name: Optional[str] = Field(None, alias="templateSheetName")
    meta: ObservationMeta
    indicators: List[IndicatorState] = []
    trainer_summary: Optional[str] = Field(None, alias="trainerSummary")


class MergeResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    ok: bool = True
    sheet_url: str = Field(..., alias="sheetUrl")
    sheet_name: str = Field(..., alias="sheetName")
    skipped_indicators: List[str] = Field([], alias="skippedIndicators")
    skipped_header_fields: List[str] = Field([], alias="skippedHeaderFields")


class MergeErrorResponse(BaseModel):
    ok: bool = False
    kind: str
    error: str
    detail: Optional[str] = None

"""Export model builders.

Turn an observation (meta + per-indicator marks and comments) into the
ExportModel the row mapper writes, and build the default sheet names.

Rating from the trainer's marks:

    good  growth   teacher            admin
    ----  ------   ----------------   -------------
     -      -      Not applicable     Không áp dụng
     x      -      Good               Tốt
     -      x      Need some work     Cần cải thiện
     x      x      Good               Rất tốt
"""
from __future__ import annotations

import re
from datetime import date, datetime
from typing import Iterable, Optional

from models.schemas import (
    ExportModel,
    IndicatorState,
    IndicatorValues,
    MergeKind,
    MergeRequest,
    ObservationMergeBody,
    ObservationMeta,
)
from services.excel_engine.naming import MAX_SHEET_NAME_LENGTH, sanitize_sheet_name
from services.excel_engine.package import strip_illegal_xml_chars

from .layouts import ADMIN_LAYOUT, TEACHER_LAYOUT


TEACHER_RATINGS = {
    "none": "Not applicable",
    "good": "Good",
    "growth": "Need some work",
    "both": "Good",
}

ADMIN_RATINGS = {
    "none": "Không áp dụng",
    "good": "Tốt",
    "growth": "Cần cải thiện",
    "both": "Rất tốt",
}

TEACHER_SHEET_FALLBACK = "Teacher Report"

_OCR_MARKER = re.compile(r"\[OCR\]\s*", re.IGNORECASE)
_BLANK_LINES = re.compile(r"\n{3,}")


def clean_ocr_text(text: Optional[str]) -> str:
    """Drop '[OCR]' markers left by handwriting recognition and squeeze blank lines.

    Control characters pasted in with OCR output are removed too.
    """
    if not text:
        return ""
    cleaned = _OCR_MARKER.sub("", strip_illegal_xml_chars(text))
    cleaned = _BLANK_LINES.sub("\n\n", cleaned)
    return cleaned.strip()


def _mark(state: Optional[IndicatorState]) -> str:
    if state is None or not (state.good or state.growth):
        return "none"
    if state.good and state.growth:
        return "both"
    return "good" if state.good else "growth"


def _parse_date(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.strip().replace("Z", "+00:00")).date()
    except ValueError:
        return None


def _month_year(value: Optional[str]) -> Optional[str]:
    parsed = _parse_date(value)
    if parsed is None:
        return None
    return f"{parsed.month:02d}.{parsed.year}"


def build_teacher_sheet_name(date_iso: Optional[str]) -> str:
    """'MM.YYYY' for the observation date, or 'Teacher Report' without one."""
    return _month_year(date_iso) or TEACHER_SHEET_FALLBACK


def build_admin_sheet_name(
    teacher_name: Optional[str],
    date_iso: Optional[str],
    support_type: Optional[str],
) -> str:
    """'TeacherName MM.YYYY SupportType', e.g. 'Lan 11.2025 Visit'.

    A long teacher name is shortened so the result fits Excel's limit.
    """
    teacher = sanitize_sheet_name(teacher_name or "") or "Teacher"
    support = sanitize_sheet_name(support_type or "") or "Visit"
    period = _month_year(date_iso) or "Unknown"
    suffix = f" {period} {support}"
    room = max(1, MAX_SHEET_NAME_LENGTH - len(suffix))
    return (teacher[:room].rstrip() + suffix)[:MAX_SHEET_NAME_LENGTH]


def build_teacher_header(meta: ObservationMeta) -> str:
    return "\n".join([
        f"GrapeSEED Trainer: {meta.trainer_name}",
        f"School: {meta.school_name} – {meta.campus}",
        f"Support type: {meta.support_type}",
        f"Unit {meta.unit} – Lesson {meta.lesson}",
        f"Teacher: {meta.teacher_name}",
        f"Date: {meta.date or ''}",
    ])


def build_teacher_export_model(
    meta: ObservationMeta,
    indicators: Iterable[IndicatorState],
) -> ExportModel:
    """Every teacher layout row gets a rating; the comment goes to strengths or growth."""
    by_number = {state.number: state for state in indicators}
    rows = {}

    for entry in TEACHER_LAYOUT.entries:
        state = by_number.pop(entry.key, None)
        mark = _mark(state)
        comment = clean_ocr_text(state.comment_text) if state else ""
        rows[entry.key] = IndicatorValues(
            rating=TEACHER_RATINGS[mark],
            strengths=comment if mark in ("good", "both") else "",
            growth=comment if mark == "growth" else "",
        )

    # Indicators without a row pass through so the mapper reports them
    for number, state in by_number.items():
        rows[number] = IndicatorValues(strengths=clean_ocr_text(state.comment_text))

    return ExportModel(header={"header_block": build_teacher_header(meta)}, indicators=rows)


def build_admin_export_model(
    meta: ObservationMeta,
    indicators: Iterable[IndicatorState],
    trainer_summary: Optional[str] = None,
) -> ExportModel:
    """Admin rows carry the Vietnamese rating and the trainer's notes."""
    by_number = {state.number: state for state in indicators}
    rows = {}

    for entry in ADMIN_LAYOUT.entries:
        state = by_number.pop(entry.key, None)
        rows[entry.key] = IndicatorValues(
            rating=ADMIN_RATINGS[_mark(state)],
            strengths=clean_ocr_text(state.comment_text) if state else "",
        )

    for number, state in by_number.items():
        rows[number] = IndicatorValues(strengths=clean_ocr_text(state.comment_text))

    header = {
        "header_left": "\n".join([
            f"Trường: {meta.school_name} – {meta.campus}",
            f"Giáo viên: {meta.teacher_name}",
            f"Unit {meta.unit} – Lesson {meta.lesson}",
        ]),
        "header_right": "\n".join([
            f"Trainer: {meta.trainer_name}",
            f"Hình thức: {meta.support_type}",
            f"Ngày: {meta.date or ''}",
        ]),
        "teacher_label": f"GV: {meta.teacher_name}",
    }
    summary = clean_ocr_text(trainer_summary)
    if summary:
        header["trainer_summary"] = summary

    return ExportModel(header=header, indicators=rows)


def build_observation_request(kind: MergeKind, body: ObservationMergeBody) -> MergeRequest:
    """Merge request for an observation body: built export model, default sheet name."""
    meta = body.meta
    if kind == "teacher":
        model = build_teacher_export_model(meta, body.indicators)
        default_name = build_teacher_sheet_name(meta.date)
    else:
        model = build_admin_export_model(meta, body.indicators, body.trainer_summary)
        default_name = build_admin_sheet_name(meta.teacher_name, meta.date, meta.support_type)

    return MergeRequest(
        kind=kind,
        share_url=body.workbook_url,
        target_sheet_name=body.sheet_name or default_name,
        template_sheet_name=body.template_sheet_name,
        export_model=model,
    )

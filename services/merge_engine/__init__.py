"""Merge Engine - Observation data into a template-preserving workbook sheet.

This module handles:
1. Row layouts of the teacher and admin templates
2. Building export models from observations
3. Writing an export model into a cloned sheet
4. Orchestrating resolve -> download -> clone -> map -> upload
"""

from .layouts import (
    ADMIN_LAYOUT,
    TEACHER_LAYOUT,
    LayoutEntry,
    RowLayout,
    layout_for,
)
from .row_mapper import MappingReport, map_rows
from .export_models import (
    build_admin_export_model,
    build_admin_sheet_name,
    build_observation_request,
    build_teacher_export_model,
    build_teacher_sheet_name,
    clean_ocr_text,
)
from .orchestrator import MergeOrchestrator, MergeRun, MergeState, build_sheet_url

__all__ = [
    # Layouts
    "ADMIN_LAYOUT",
    "TEACHER_LAYOUT",
    "LayoutEntry",
    "RowLayout",
    "layout_for",
    # Mapping
    "MappingReport",
    "map_rows",
    # Export models
    "build_admin_export_model",
    "build_admin_sheet_name",
    "build_observation_request",
    "build_teacher_export_model",
    "build_teacher_sheet_name",
    "clean_ocr_text",
    # Orchestration
    "MergeOrchestrator",
    "MergeRun",
    "MergeState",
    "build_sheet_url",
]

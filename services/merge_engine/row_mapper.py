"""Row mapper - Writes an export model into a cloned sheet by layout.

Each written cell keeps the style the clone gave it; only the horizontal
alignment (center for the rating, left for text), top vertical alignment and
wrap text are applied on top.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List

from models.schemas import ExportModel
from services.excel_engine.package import SheetPart, WorkbookPackage
from services.excel_engine.writer import set_cell_alignment, set_cell_value

from .layouts import FIELD_ROLES, RATING, RowLayout


logger = logging.getLogger(__name__)


@dataclass
class MappingReport:
    written_rows: List[int] = field(default_factory=list)
    skipped_indicators: List[str] = field(default_factory=list)
    skipped_header_fields: List[str] = field(default_factory=list)


def _horizontal_for(role: str) -> str:
    return "center" if role == RATING else "left"


def map_rows(
    package: WorkbookPackage,
    sheet: SheetPart,
    export_model: ExportModel,
    layout: RowLayout,
) -> MappingReport:
    """Write header fields and indicator rows into ``sheet``.

    Indicator keys and header fields the layout does not know are skipped
    and reported, never raised.
    """
    report = MappingReport()

    for field_name, text in export_model.header.items():
        ref = layout.header_cells.get(field_name)
        if ref is None:
            report.skipped_header_fields.append(field_name)
            continue
        set_cell_value(package, sheet, ref, text)

    for key, values in export_model.indicators.items():
        entry = layout.entry(key)
        if entry is None:
            report.skipped_indicators.append(key)
            continue

        defaults = {"label": entry.label, "description": entry.description}
        written = False
        for role in FIELD_ROLES:
            column = layout.columns.get(role)
            if column is None:
                continue
            value = getattr(values, role)
            if value is None:
                value = defaults.get(role)
            if value is None:
                continue
            ref = f"{column}{entry.row}"
            set_cell_value(package, sheet, ref, value)
            set_cell_alignment(package, sheet, ref, _horizontal_for(role), "top", True)
            written = True
        if written:
            report.written_rows.append(entry.row)

    if report.skipped_indicators:
        logger.warning(
            f"[MAP] Layout '{layout.name}' has no row for indicators: {report.skipped_indicators}"
        )
    if report.skipped_header_fields:
        logger.warning(
            f"[MAP] Layout '{layout.name}' has no cell for header fields: {report.skipped_header_fields}"
        )
    logger.info(f"[MAP] Wrote {len(report.written_rows)} rows into '{sheet.name}'")
    return report

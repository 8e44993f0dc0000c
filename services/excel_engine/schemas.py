"""Pydantic schemas for the inspection snapshot of a workbook.

The snapshot is a read-only, comparable view of a worksheet:
- Column definitions and row dimensions
- Cells with resolved values and resolved styles
- Merged cells
- Data validation (dropdowns)
- Conditional formatting
- Page setup

Two sheets are structurally identical when their snapshots compare equal
with the name and position excluded (see ``SheetSnapshot.structure``).
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel


class CellDataType(str, Enum):
    """Excel cell data types."""
    STRING = "s"  # Shared string
    NUMBER = "n"  # Number
    BOOLEAN = "b"  # Boolean
    ERROR = "e"  # Error
    INLINE_STRING = "inlineStr"  # Inline string (not shared)
    FORMULA = "str"  # Formula result as string
    DATE = "d"  # Date (ISO 8601)


class CellFont(BaseModel):
    """Font styling for a cell."""
    name: Optional[str] = None
    size: Optional[float] = None
    bold: bool = False
    italic: bool = False
    underline: bool = False
    strike: bool = False
    color: Optional[str] = None  # ARGB hex e.g. "FFFF0000", or "theme:1"


class CellFill(BaseModel):
    """Fill/background for a cell."""
    pattern_type: Optional[str] = None  # "solid", "none", etc.
    fg_color: Optional[str] = None
    bg_color: Optional[str] = None


class CellBorder(BaseModel):
    """Border for a single edge."""
    style: Optional[str] = None  # "thin", "medium", "thick", "dashed", etc.
    color: Optional[str] = None


class CellBorders(BaseModel):
    """All borders for a cell."""
    left: Optional[CellBorder] = None
    right: Optional[CellBorder] = None
    top: Optional[CellBorder] = None
    bottom: Optional[CellBorder] = None
    diagonal: Optional[CellBorder] = None


class CellAlignment(BaseModel):
    """Text alignment in a cell."""
    horizontal: Optional[str] = None  # "left", "center", "right", "justify"
    vertical: Optional[str] = None  # "top", "center", "bottom"
    wrap_text: bool = False
    text_rotation: Optional[int] = None  # 0-180 degrees
    indent: Optional[int] = None


class CellStyle(BaseModel):
    """Resolved cell style."""
    font: Optional[CellFont] = None
    fill: Optional[CellFill] = None
    borders: Optional[CellBorders] = None
    alignment: Optional[CellAlignment] = None
    number_format: Optional[str] = None  # Format code like "0.00" or "yyyy-mm-dd"


class CellSnapshot(BaseModel):
    """A single cell, including empty cells that only carry a style."""
    ref: str  # Cell reference e.g. "A1", "B2"
    row: int  # 1-indexed
    col: int  # 1-indexed

    value: Optional[Any] = None
    data_type: Optional[CellDataType] = None
    formula: Optional[str] = None  # Without the leading '='

    style_index: Optional[int] = None  # Index into cellXfs
    style: Optional[CellStyle] = None


class ColumnInfo(BaseModel):
    """Column dimension/formatting info (one <col> span)."""
    min_col: int
    max_col: int
    width: Optional[float] = None
    hidden: bool = False
    custom_width: bool = False
    style_index: Optional[int] = None


class RowInfo(BaseModel):
    """Row dimension info plus the row's cells in sheet order."""
    row: int
    height: Optional[float] = None
    hidden: bool = False
    custom_height: bool = False
    style_index: Optional[int] = None
    cells: List[CellSnapshot] = []


class MergedCellRange(BaseModel):
    """A merged cell range in a worksheet."""
    ref: str  # Range reference e.g. "B2:F6"
    start_row: int
    start_col: int
    end_row: int
    end_col: int


class DataValidationRule(BaseModel):
    """Data validation rule (dropdowns, input constraints)."""
    sqref: str  # Cell reference(s) this applies to e.g. "D20" or "A1:A10"
    validation_type: str  # "list", "whole", "decimal", "date", "time", "textLength", "custom"

    formula1: Optional[str] = None  # List source: '"a,b,c"' or a range
    formula2: Optional[str] = None  # For between/notBetween

    allow_blank: bool = False
    show_input_message: bool = False
    show_error_message: bool = False
    error_style: Optional[str] = None  # "stop", "warning", "information"
    operator: Optional[str] = None

    # Parsed list options (if type is "list" with a literal source)
    options: List[str] = []

    # True for rules stored in the x14 extension list
    extension: bool = False


class ConditionalFormatRule(BaseModel):
    """A single conditional format rule."""
    type: str  # "cellIs", "colorScale", "dataBar", "iconSet", "expression", etc.
    priority: int = 1
    operator: Optional[str] = None
    formulas: List[str] = []
    dxf_id: Optional[int] = None  # Differential format ID
    stop_if_true: bool = False

    color_scale: Optional[Dict[str, Any]] = None
    data_bar: Optional[Dict[str, Any]] = None
    icon_set: Optional[Dict[str, Any]] = None


class ConditionalFormatting(BaseModel):
    """Conditional formatting for a range."""
    sqref: str  # Cell range(s) e.g. "A1:A10" or "A1:A10 B1:B10"
    rules: List[ConditionalFormatRule] = []
    extension: bool = False


class PageMargins(BaseModel):
    left: Optional[float] = None
    right: Optional[float] = None
    top: Optional[float] = None
    bottom: Optional[float] = None
    header: Optional[float] = None
    footer: Optional[float] = None


class PageSetup(BaseModel):
    orientation: Optional[str] = None  # "portrait", "landscape"
    paper_size: Optional[int] = None
    scale: Optional[int] = None
    fit_to_width: Optional[int] = None
    fit_to_height: Optional[int] = None
    margins: Optional[PageMargins] = None


class SheetSnapshot(BaseModel):
    """A single worksheet in a workbook."""
    name: str  # Sheet tab name
    sheet_index: int  # 0-indexed position in workbook
    is_hidden: bool = False

    columns: List[ColumnInfo] = []
    rows: List[RowInfo] = []

    merged_cells: List[MergedCellRange] = []
    data_validations: List[DataValidationRule] = []
    conditional_formatting: List[ConditionalFormatting] = []
    page_setup: Optional[PageSetup] = None

    def structure(self) -> Dict[str, Any]:
        """Everything except identity (name and position)."""
        return self.model_dump(exclude={"name", "sheet_index"})

    def get_cell(self, ref: str) -> Optional[CellSnapshot]:
        """Get a cell by reference (e.g., 'A1')."""
        for row in self.rows:
            for cell in row.cells:
                if cell.ref == ref:
                    return cell
        return None

    def get_row(self, row_number: int) -> Optional[RowInfo]:
        for row in self.rows:
            if row.row == row_number:
                return row
        return None

    def hidden_columns(self) -> List[int]:
        hidden: List[int] = []
        for col in self.columns:
            if col.hidden:
                hidden.extend(range(col.min_col, col.max_col + 1))
        return hidden


class WorkbookSnapshot(BaseModel):
    """Top-level snapshot of a workbook package."""
    sheets: List[SheetSnapshot] = []
    active_sheet_index: int = 0

    def get_sheet(self, name: str) -> Optional[SheetSnapshot]:
        """Get a sheet by name."""
        for sheet in self.sheets:
            if sheet.name == name:
                return sheet
        return None

    @property
    def sheet_names(self) -> List[str]:
        return [sheet.name for sheet in self.sheets]

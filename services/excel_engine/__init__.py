"""Excel Engine - In-memory XLSX packages and template sheet cloning.

This module handles:
1. Reading and writing XLSX packages without touching unmodified parts
2. Cloning a template sheet with its formatting, merges, validation and
   conditional formatting
3. Writing cell values and alignment in place
4. Snapshotting sheets into comparable structures
"""

from .schemas import (
    # Snapshot
    WorkbookSnapshot,
    SheetSnapshot,
    CellSnapshot,
    RowInfo,
    ColumnInfo,
    MergedCellRange,
    DataValidationRule,
    ConditionalFormatting,
    ConditionalFormatRule,
    PageSetup,
    PageMargins,
    CellStyle,
    CellAlignment,
    CellBorder,
    CellFill,
    CellFont,
)
from .package import SheetPart, WorkbookPackage
from .parser import snapshot_sheet, snapshot_workbook
from .naming import (
    CollisionPolicy,
    MAX_SHEET_NAME_LENGTH,
    resolve_sheet_name,
    sanitize_sheet_name,
    validate_sheet_name,
)
from .cloner import clone_sheet
from .writer import read_cell_value, set_cell_alignment, set_cell_value

__all__ = [
    # Snapshot schemas
    "WorkbookSnapshot",
    "SheetSnapshot",
    "CellSnapshot",
    "RowInfo",
    "ColumnInfo",
    "MergedCellRange",
    "DataValidationRule",
    "ConditionalFormatting",
    "ConditionalFormatRule",
    "PageSetup",
    "PageMargins",
    "CellStyle",
    "CellAlignment",
    "CellBorder",
    "CellFill",
    "CellFont",
    # Package
    "WorkbookPackage",
    "SheetPart",
    # Functions
    "snapshot_sheet",
    "snapshot_workbook",
    "clone_sheet",
    "set_cell_value",
    "set_cell_alignment",
    "read_cell_value",
    # Naming
    "CollisionPolicy",
    "MAX_SHEET_NAME_LENGTH",
    "resolve_sheet_name",
    "sanitize_sheet_name",
    "validate_sheet_name",
]

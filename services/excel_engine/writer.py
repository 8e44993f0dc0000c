"""XLSX Writer - Writes cell values and alignment into a worksheet.

Only the addressed cells change:
1. Existing cells keep their style; only the value is replaced
2. Missing rows/cells are inserted in sheet order, inheriting the row or
   column style the way Excel does when you type into an empty cell
3. Text goes to the shared string table
4. Alignment changes produce a cellXfs variant; the original style entry
   is never mutated, since other cells may share it
"""

from __future__ import annotations

from typing import Any, Optional, Union

from xml.etree import ElementTree as ET

from .package import SheetPart, WorkbookPackage
from .parser import NS, col_index_to_letter, parse_cell_ref, parse_range_ref

CellValue = Union[str, int, float, bool, None]


def _find_or_insert_row(sheet_data: ET.Element, row_num: int) -> ET.Element:
    ns = NS["main"]
    position = 0
    for i, row_el in enumerate(sheet_data.findall(f"{{{ns}}}row")):
        r = int(row_el.get("r", 0))
        if r == row_num:
            return row_el
        if r > row_num:
            break
        position = i + 1

    row_el = ET.Element(f"{{{ns}}}row", {"r": str(row_num)})
    sheet_data.insert(position, row_el)
    return row_el


def _column_style(root: ET.Element, col_num: int) -> Optional[str]:
    ns = NS["main"]
    cols_el = root.find(f"{{{ns}}}cols")
    if cols_el is None:
        return None
    for col in cols_el.findall(f"{{{ns}}}col"):
        if int(col.get("min", 0)) <= col_num <= int(col.get("max", 0)):
            return col.get("style")
    return None


def _expand_dimension(root: ET.Element, row_num: int, col_num: int) -> None:
    ns = NS["main"]
    dimension = root.find(f"{{{ns}}}dimension")
    if dimension is None or not dimension.get("ref"):
        return
    try:
        start_row, start_col, end_row, end_col = parse_range_ref(dimension.get("ref"))
    except ValueError:
        return
    if start_row <= row_num <= end_row and start_col <= col_num <= end_col:
        return
    start_row, start_col = min(start_row, row_num), min(start_col, col_num)
    end_row, end_col = max(end_row, row_num), max(end_col, col_num)
    dimension.set(
        "ref",
        f"{col_index_to_letter(start_col)}{start_row}:{col_index_to_letter(end_col)}{end_row}",
    )


def get_or_create_cell(sheet: SheetPart, ref: str) -> ET.Element:
    """Find a cell element, inserting it (and its row) in order when missing."""
    ns = NS["main"]
    _, col_num, row_num = parse_cell_ref(ref)
    ref = f"{col_index_to_letter(col_num)}{row_num}"

    sheet_data = sheet.root.find(f"{{{ns}}}sheetData")
    if sheet_data is None:
        raise ValueError(f"Worksheet '{sheet.name}' has no sheetData")

    row_el = _find_or_insert_row(sheet_data, row_num)

    position = 0
    for i, cell_el in enumerate(row_el.findall(f"{{{ns}}}c")):
        try:
            _, existing_col, _ = parse_cell_ref(cell_el.get("r", ""))
        except ValueError:
            continue
        if existing_col == col_num:
            return cell_el
        if existing_col > col_num:
            break
        position = i + 1

    cell_el = ET.Element(f"{{{ns}}}c", {"r": ref})
    if row_el.get("customFormat") in ("1", "true") and row_el.get("s"):
        style = row_el.get("s")
    else:
        style = _column_style(sheet.root, col_num)
    if style and style != "0":
        cell_el.set("s", style)
    row_el.insert(position, cell_el)

    # Keep the row's spans hint valid, or drop it
    spans = row_el.get("spans")
    if spans:
        try:
            low, high = (int(x) for x in spans.split(":"))
            if not low <= col_num <= high:
                row_el.set("spans", f"{min(low, col_num)}:{max(high, col_num)}")
        except ValueError:
            del row_el.attrib["spans"]

    _expand_dimension(sheet.root, row_num, col_num)
    return cell_el


def set_cell_value(
    package: WorkbookPackage,
    sheet: SheetPart,
    ref: str,
    value: CellValue,
) -> None:
    """Replace a cell's value, keeping its style.

    ``None`` and ``""`` leave the cell blank. Any formula is dropped.
    """
    ns = NS["main"]
    cell_el = get_or_create_cell(sheet, ref)

    for tag in ("f", "v", "is"):
        for el in cell_el.findall(f"{{{ns}}}{tag}"):
            cell_el.remove(el)
    if "t" in cell_el.attrib:
        del cell_el.attrib["t"]

    if value is None or value == "":
        package.touch_sheet(sheet)
        return

    v_el = ET.Element(f"{{{ns}}}v")
    if isinstance(value, bool):
        cell_el.set("t", "b")
        v_el.text = "1" if value else "0"
    elif isinstance(value, (int, float)):
        v_el.text = repr(value) if isinstance(value, float) else str(value)
    else:
        ss_index = package.shared_strings.add(str(value))
        cell_el.set("t", "s")
        v_el.text = str(ss_index)

    # Remaining children can only be extLst, which comes last
    cell_el.insert(0, v_el)
    package.touch_sheet(sheet)


def set_cell_alignment(
    package: WorkbookPackage,
    sheet: SheetPart,
    ref: str,
    horizontal: str,
    vertical: Optional[str] = "top",
    wrap_text: bool = True,
) -> int:
    """Point a cell at a style equal to its own plus the given alignment."""
    cell_el = get_or_create_cell(sheet, ref)
    current = int(cell_el.get("s", 0))
    new_index = package.styles.with_alignment(current, horizontal, vertical, wrap_text)
    if new_index != current:
        cell_el.set("s", str(new_index))
        package.touch_sheet(sheet)
    return new_index


def read_cell_value(package: WorkbookPackage, sheet: SheetPart, ref: str) -> Any:
    """Current value of a cell, with shared strings resolved."""
    ns = NS["main"]
    _, col_num, row_num = parse_cell_ref(ref)
    sheet_data = sheet.root.find(f"{{{ns}}}sheetData")
    if sheet_data is None:
        return None
    for row_el in sheet_data.findall(f"{{{ns}}}row"):
        if int(row_el.get("r", 0)) != row_num:
            continue
        for cell_el in row_el.findall(f"{{{ns}}}c"):
            try:
                _, existing_col, _ = parse_cell_ref(cell_el.get("r", ""))
            except ValueError:
                continue
            if existing_col != col_num:
                continue
            cell_type = cell_el.get("t")
            if cell_type == "inlineStr":
                return "".join(t.text or "" for t in cell_el.iter(f"{{{ns}}}t"))
            v_el = cell_el.find(f"{{{ns}}}v")
            if v_el is None or v_el.text is None:
                return None
            if cell_type == "s":
                return package.shared_strings.text(int(v_el.text))
            if cell_type == "b":
                return v_el.text == "1"
            if cell_type in ("str", "e"):
                return v_el.text
            try:
                number = float(v_el.text)
            except ValueError:
                return v_el.text
            return int(number) if number.is_integer() and "." not in v_el.text else number
    return None

"""XLSX Parser - Reads a workbook package into comparable snapshots.

Handles the worksheet features a template sheet carries:
- Multiple worksheets
- Column widths, row heights, hidden rows/columns
- Cell values and resolved styles (including empty styled cells)
- Merged cells
- Data validation (dropdowns), including the x14 extension list
- Conditional formatting, including the x14 extension list
- Page setup and margins
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple
from xml.etree import ElementTree as ET

from .schemas import (
    CellAlignment,
    CellBorder,
    CellBorders,
    CellDataType,
    CellFill,
    CellFont,
    CellSnapshot,
    CellStyle,
    ColumnInfo,
    ConditionalFormatRule,
    ConditionalFormatting,
    DataValidationRule,
    MergedCellRange,
    PageMargins,
    PageSetup,
    RowInfo,
    SheetSnapshot,
    WorkbookSnapshot,
)

if TYPE_CHECKING:
    from .package import SharedStringTable, WorkbookPackage


# =============================================================================
# NAMESPACES
# =============================================================================

NS = {
    "main": "http://schemas.openxmlformats.org/spreadsheetml/2006/main",
    "r": "http://schemas.openxmlformats.org/officeDocument/2006/relationships",
    "mc": "http://schemas.openxmlformats.org/markup-compatibility/2006",
    "x14": "http://schemas.microsoft.com/office/spreadsheetml/2009/9/main",
    "x14ac": "http://schemas.microsoft.com/office/spreadsheetml/2009/9/ac",
    "x15": "http://schemas.microsoft.com/office/spreadsheetml/2010/11/main",
    "x15ac": "http://schemas.microsoft.com/office/spreadsheetml/2010/11/ac",
    "xm": "http://schemas.microsoft.com/office/excel/2006/main",
    "xr": "http://schemas.microsoft.com/office/spreadsheetml/2014/revision",
    "xr2": "http://schemas.microsoft.com/office/spreadsheetml/2015/revision2",
    "xr3": "http://schemas.microsoft.com/office/spreadsheetml/2016/revision3",
    "xr6": "http://schemas.microsoft.com/office/spreadsheetml/2016/revision6",
    "xr10": "http://schemas.microsoft.com/office/spreadsheetml/2016/revision10",
    "rel": "http://schemas.openxmlformats.org/package/2006/relationships",
    "ct": "http://schemas.openxmlformats.org/package/2006/content-types",
}


# =============================================================================
# UTILITIES
# =============================================================================

def local_name(tag: str) -> str:
    """Tag without its namespace: '{ns}sheetData' -> 'sheetData'."""
    return tag.rsplit("}", 1)[-1]


def col_letter_to_index(col: str) -> int:
    """Convert column letter(s) to 1-indexed number. A=1, B=2, ..., Z=26, AA=27."""
    result = 0
    for char in col.upper():
        result = result * 26 + (ord(char) - ord('A') + 1)
    return result


def col_index_to_letter(index: int) -> str:
    """Convert 1-indexed column number to letter(s). 1=A, 2=B, ..., 27=AA."""
    result = ""
    while index > 0:
        index -= 1
        result = chr(ord('A') + (index % 26)) + result
        index //= 26
    return result


def parse_cell_ref(ref: str) -> Tuple[str, int, int]:
    """Parse cell reference like 'A1' or 'AA100' into (col_letter, col_num, row_num)."""
    match = re.match(r'^\$?([A-Z]+)\$?(\d+)$', ref.upper())
    if not match:
        raise ValueError(f"Invalid cell reference: {ref}")
    col_letter = match.group(1)
    row = int(match.group(2))
    return col_letter, col_letter_to_index(col_letter), row


def parse_range_ref(ref: str) -> Tuple[int, int, int, int]:
    """Parse range like 'B2:F6' into (start_row, start_col, end_row, end_col)."""
    parts = ref.split(':')
    if len(parts) == 1:
        parts = [parts[0], parts[0]]
    if len(parts) != 2:
        raise ValueError(f"Invalid range reference: {ref}")

    _, start_col, start_row = parse_cell_ref(parts[0])
    _, end_col, end_row = parse_cell_ref(parts[1])
    return start_row, start_col, end_row, end_col


def _flag(value: Optional[str]) -> bool:
    return value in ("1", "true")


def _int_or_none(value: Optional[str]) -> Optional[int]:
    return int(value) if value not in (None, "") else None


def _float_or_none(value: Optional[str]) -> Optional[float]:
    return float(value) if value not in (None, "") else None


def _color(el: Optional[ET.Element]) -> Optional[str]:
    if el is None:
        return None
    if el.get("rgb"):
        return el.get("rgb")
    if el.get("theme") is not None:
        return f"theme:{el.get('theme')}"
    if el.get("indexed") is not None:
        return f"indexed:{el.get('indexed')}"
    return None


# =============================================================================
# STYLES
# =============================================================================

@dataclass
class StyleInfo:
    """Parsed style tables from styles.xml."""
    fonts: List[Dict[str, Any]] = field(default_factory=list)
    fills: List[Dict[str, Any]] = field(default_factory=list)
    borders: List[Dict[str, Any]] = field(default_factory=list)
    cell_xfs: List[Dict[str, Any]] = field(default_factory=list)
    number_formats: Dict[int, str] = field(default_factory=dict)


def parse_styles(root: Optional[ET.Element]) -> StyleInfo:
    """Parse a styles.xml root for cell formatting."""
    style_info = StyleInfo()
    if root is None:
        return style_info
    ns = NS["main"]

    fonts_el = root.find(f"{{{ns}}}fonts")
    if fonts_el is not None:
        for font_el in fonts_el.findall(f"{{{ns}}}font"):
            font_dict: Dict[str, Any] = {}
            name_el = font_el.find(f"{{{ns}}}name")
            if name_el is not None:
                font_dict["name"] = name_el.get("val")
            sz_el = font_el.find(f"{{{ns}}}sz")
            if sz_el is not None:
                font_dict["size"] = float(sz_el.get("val", 11))
            for tag, key in (("b", "bold"), ("i", "italic"), ("u", "underline"), ("strike", "strike")):
                el = font_el.find(f"{{{ns}}}{tag}")
                if el is not None and el.get("val") not in ("0", "false"):
                    font_dict[key] = True
            font_dict["color"] = _color(font_el.find(f"{{{ns}}}color"))
            style_info.fonts.append(font_dict)

    fills_el = root.find(f"{{{ns}}}fills")
    if fills_el is not None:
        for fill_el in fills_el.findall(f"{{{ns}}}fill"):
            fill_dict: Dict[str, Any] = {}
            pattern_el = fill_el.find(f"{{{ns}}}patternFill")
            if pattern_el is not None:
                fill_dict["patternType"] = pattern_el.get("patternType")
                fill_dict["fgColor"] = _color(pattern_el.find(f"{{{ns}}}fgColor"))
                fill_dict["bgColor"] = _color(pattern_el.find(f"{{{ns}}}bgColor"))
            style_info.fills.append(fill_dict)

    borders_el = root.find(f"{{{ns}}}borders")
    if borders_el is not None:
        for border_el in borders_el.findall(f"{{{ns}}}border"):
            border_dict: Dict[str, Any] = {}
            for side in ["left", "right", "top", "bottom", "diagonal"]:
                side_el = border_el.find(f"{{{ns}}}{side}")
                if side_el is not None and side_el.get("style"):
                    border_dict[side] = {
                        "style": side_el.get("style"),
                        "color": _color(side_el.find(f"{{{ns}}}color")),
                    }
            style_info.borders.append(border_dict)

    cell_xfs_el = root.find(f"{{{ns}}}cellXfs")
    if cell_xfs_el is not None:
        for xf in cell_xfs_el.findall(f"{{{ns}}}xf"):
            xf_dict: Dict[str, Any] = {
                "fontId": int(xf.get("fontId", 0)),
                "fillId": int(xf.get("fillId", 0)),
                "borderId": int(xf.get("borderId", 0)),
                "numFmtId": int(xf.get("numFmtId", 0)),
            }
            alignment_el = xf.find(f"{{{ns}}}alignment")
            if alignment_el is not None:
                xf_dict["alignment"] = {
                    "horizontal": alignment_el.get("horizontal"),
                    "vertical": alignment_el.get("vertical"),
                    "wrapText": _flag(alignment_el.get("wrapText")),
                    "textRotation": alignment_el.get("textRotation"),
                    "indent": alignment_el.get("indent"),
                }
            style_info.cell_xfs.append(xf_dict)

    num_fmts_el = root.find(f"{{{ns}}}numFmts")
    if num_fmts_el is not None:
        for num_fmt in num_fmts_el.findall(f"{{{ns}}}numFmt"):
            style_info.number_formats[int(num_fmt.get("numFmtId", 0))] = num_fmt.get("formatCode", "")

    return style_info


def build_cell_style(style_index: int, style_info: StyleInfo) -> Optional[CellStyle]:
    """Build a CellStyle from style index and parsed style info."""
    if style_index < 0 or style_index >= len(style_info.cell_xfs):
        return None

    xf = style_info.cell_xfs[style_index]
    style = CellStyle()

    font_id = xf.get("fontId", 0)
    if font_id < len(style_info.fonts):
        font_data = style_info.fonts[font_id]
        style.font = CellFont(
            name=font_data.get("name"),
            size=font_data.get("size"),
            bold=font_data.get("bold", False),
            italic=font_data.get("italic", False),
            underline=font_data.get("underline", False),
            strike=font_data.get("strike", False),
            color=font_data.get("color"),
        )

    fill_id = xf.get("fillId", 0)
    if fill_id < len(style_info.fills):
        fill_data = style_info.fills[fill_id]
        style.fill = CellFill(
            pattern_type=fill_data.get("patternType"),
            fg_color=fill_data.get("fgColor"),
            bg_color=fill_data.get("bgColor"),
        )

    border_id = xf.get("borderId", 0)
    if border_id < len(style_info.borders):
        border_data = style_info.borders[border_id]
        borders = CellBorders()
        for side in ["left", "right", "top", "bottom", "diagonal"]:
            if side in border_data:
                setattr(borders, side, CellBorder(
                    style=border_data[side].get("style"),
                    color=border_data[side].get("color"),
                ))
        style.borders = borders

    if "alignment" in xf:
        align = xf["alignment"]
        style.alignment = CellAlignment(
            horizontal=align.get("horizontal"),
            vertical=align.get("vertical"),
            wrap_text=align.get("wrapText", False),
            text_rotation=_int_or_none(align.get("textRotation")),
            indent=_int_or_none(align.get("indent")),
        )

    num_fmt_id = xf.get("numFmtId", 0)
    if num_fmt_id in style_info.number_formats:
        style.number_format = style_info.number_formats[num_fmt_id]
    elif num_fmt_id:
        style.number_format = f"builtin:{num_fmt_id}"

    return style


# =============================================================================
# WORKSHEET PARSING
# =============================================================================

def _parse_merged_cells(sheet_el: ET.Element) -> List[MergedCellRange]:
    """Parse merged cell ranges from a worksheet."""
    merged_cells: List[MergedCellRange] = []
    ns = NS["main"]

    merge_cells_el = sheet_el.find(f"{{{ns}}}mergeCells")
    if merge_cells_el is None:
        return merged_cells

    for merge_cell in merge_cells_el.findall(f"{{{ns}}}mergeCell"):
        ref = merge_cell.get("ref")
        if not ref:
            continue
        try:
            start_row, start_col, end_row, end_col = parse_range_ref(ref)
        except ValueError:
            continue
        merged_cells.append(MergedCellRange(
            ref=ref,
            start_row=start_row,
            start_col=start_col,
            end_row=end_row,
            end_col=end_col,
        ))

    return merged_cells


def _list_options(val_type: str, formula1: Optional[str]) -> List[str]:
    if val_type != "list" or not formula1:
        return []
    if formula1.startswith('"') and formula1.endswith('"'):
        return [opt.strip() for opt in formula1.strip('"').split(",")]
    # Range or named range source
    return [formula1]


def _parse_data_validations(sheet_el: ET.Element) -> List[DataValidationRule]:
    """Parse data validation rules (dropdowns, etc.) from a worksheet."""
    validations: List[DataValidationRule] = []
    ns = NS["main"]

    dv_el = sheet_el.find(f"{{{ns}}}dataValidations")
    if dv_el is not None:
        for dv in dv_el.findall(f"{{{ns}}}dataValidation"):
            val_type = dv.get("type", "none")
            formula1_el = dv.find(f"{{{ns}}}formula1")
            formula2_el = dv.find(f"{{{ns}}}formula2")
            formula1 = formula1_el.text if formula1_el is not None and formula1_el.text else None
            formula2 = formula2_el.text if formula2_el is not None and formula2_el.text else None

            validations.append(DataValidationRule(
                sqref=dv.get("sqref", ""),
                validation_type=val_type,
                formula1=formula1,
                formula2=formula2,
                allow_blank=_flag(dv.get("allowBlank")),
                show_input_message=_flag(dv.get("showInputMessage")),
                show_error_message=_flag(dv.get("showErrorMessage")),
                error_style=dv.get("errorStyle"),
                operator=dv.get("operator"),
                options=_list_options(val_type, formula1),
            ))

    # Rules that reference other sheets live in the x14 extension
    x14, xm = NS["x14"], NS["xm"]
    for dv in sheet_el.iter(f"{{{x14}}}dataValidation"):
        val_type = dv.get("type", "none")
        formulas = []
        for tag in ("formula1", "formula2"):
            f_el = dv.find(f"{{{x14}}}{tag}/{{{xm}}}f")
            formulas.append(f_el.text if f_el is not None else None)
        sqref_el = dv.find(f"{{{xm}}}sqref")
        validations.append(DataValidationRule(
            sqref=sqref_el.text if sqref_el is not None and sqref_el.text else "",
            validation_type=val_type,
            formula1=formulas[0],
            formula2=formulas[1],
            allow_blank=_flag(dv.get("allowBlank")),
            show_input_message=_flag(dv.get("showInputMessage")),
            show_error_message=_flag(dv.get("showErrorMessage")),
            error_style=dv.get("errorStyle"),
            operator=dv.get("operator"),
            options=_list_options(val_type, formulas[0]),
            extension=True,
        ))

    return validations


def _parse_columns(sheet_el: ET.Element) -> List[ColumnInfo]:
    """Parse column information from a worksheet."""
    columns: List[ColumnInfo] = []
    ns = NS["main"]

    cols_el = sheet_el.find(f"{{{ns}}}cols")
    if cols_el is None:
        return columns

    for col in cols_el.findall(f"{{{ns}}}col"):
        columns.append(ColumnInfo(
            min_col=int(col.get("min", 1)),
            max_col=int(col.get("max", 1)),
            width=_float_or_none(col.get("width")),
            hidden=_flag(col.get("hidden")),
            custom_width=_flag(col.get("customWidth")),
            style_index=_int_or_none(col.get("style")),
        ))

    return columns


def _cell_value(
    cell_el: ET.Element,
    data_type: Optional[CellDataType],
    shared_strings: Optional["SharedStringTable"],
) -> Any:
    ns = NS["main"]

    if data_type == CellDataType.INLINE_STRING:
        is_el = cell_el.find(f"{{{ns}}}is")
        if is_el is None:
            return None
        return "".join(t.text or "" for t in is_el.iter(f"{{{ns}}}t"))

    v_el = cell_el.find(f"{{{ns}}}v")
    raw_value = v_el.text if v_el is not None else None
    if raw_value is None:
        return None

    if data_type == CellDataType.STRING:
        try:
            ss_index = int(raw_value)
        except ValueError:
            return raw_value
        text = shared_strings.text(ss_index) if shared_strings is not None else None
        return text if text is not None else raw_value
    if data_type == CellDataType.BOOLEAN:
        return raw_value == "1"
    if data_type in (CellDataType.ERROR, CellDataType.FORMULA, CellDataType.DATE):
        return raw_value

    try:
        if "." in raw_value or "E" in raw_value.upper():
            return float(raw_value)
        return int(raw_value)
    except ValueError:
        return raw_value


def _parse_rows(
    sheet_el: ET.Element,
    shared_strings: Optional["SharedStringTable"],
    style_info: StyleInfo,
) -> List[RowInfo]:
    """Parse rows and their cells from sheetData."""
    rows: List[RowInfo] = []
    ns = NS["main"]

    sheet_data = sheet_el.find(f"{{{ns}}}sheetData")
    if sheet_data is None:
        return rows

    for row_el in sheet_data.findall(f"{{{ns}}}row"):
        row_num = int(row_el.get("r", 0))
        row_style = _int_or_none(row_el.get("s")) if _flag(row_el.get("customFormat")) else None
        row_info = RowInfo(
            row=row_num,
            height=_float_or_none(row_el.get("ht")),
            hidden=_flag(row_el.get("hidden")),
            custom_height=_flag(row_el.get("customHeight")),
            style_index=row_style,
        )

        for cell_el in row_el.findall(f"{{{ns}}}c"):
            cell_ref = cell_el.get("r")
            if not cell_ref:
                continue
            try:
                _, col_num, row_num_parsed = parse_cell_ref(cell_ref)
            except ValueError:
                continue

            data_type = None
            data_type_str = cell_el.get("t")
            if data_type_str:
                try:
                    data_type = CellDataType(data_type_str)
                except ValueError:
                    data_type = None

            f_el = cell_el.find(f"{{{ns}}}f")
            style_index = int(cell_el.get("s", 0))

            row_info.cells.append(CellSnapshot(
                ref=cell_ref,
                row=row_num_parsed,
                col=col_num,
                value=_cell_value(cell_el, data_type, shared_strings),
                data_type=data_type,
                formula=f_el.text if f_el is not None else None,
                style_index=style_index,
                style=build_cell_style(style_index, style_info),
            ))

        rows.append(row_info)

    return rows


def _parse_cf_rule(rule_el: ET.Element, formula_tag: str) -> ConditionalFormatRule:
    ns = NS["main"]
    # Extension rules keep child elements in the x14 namespace
    rule_ns = rule_el.tag[1:].split("}", 1)[0] if rule_el.tag.startswith("{") else ns

    color_scale = None
    cs_el = rule_el.find(f"{{{rule_ns}}}colorScale")
    if cs_el is not None:
        color_scale = {
            "cfvos": [
                {"type": cfvo.get("type"), "val": cfvo.get("val")}
                for cfvo in cs_el.findall(f"{{{rule_ns}}}cfvo")
            ],
            "colors": [_color(color) for color in cs_el.findall(f"{{{rule_ns}}}color")],
        }

    data_bar = None
    db_el = rule_el.find(f"{{{rule_ns}}}dataBar")
    if db_el is not None:
        data_bar = {
            "min_length": db_el.get("minLength"),
            "max_length": db_el.get("maxLength"),
            "show_value": db_el.get("showValue") != "0",
            "color": _color(db_el.find(f"{{{rule_ns}}}color")),
        }

    icon_set = None
    is_el = rule_el.find(f"{{{rule_ns}}}iconSet")
    if is_el is not None:
        icon_set = {
            "icon_set": is_el.get("iconSet", "3TrafficLights1"),
            "show_value": is_el.get("showValue") != "0",
            "reverse": _flag(is_el.get("reverse")),
            "cfvos": [
                {"type": cfvo.get("type"), "val": cfvo.get("val")}
                for cfvo in is_el.findall(f"{{{rule_ns}}}cfvo")
            ],
        }

    return ConditionalFormatRule(
        type=rule_el.get("type", ""),
        priority=int(rule_el.get("priority", 1)),
        operator=rule_el.get("operator"),
        formulas=[f.text or "" for f in rule_el.iter(formula_tag)],
        dxf_id=_int_or_none(rule_el.get("dxfId")),
        stop_if_true=_flag(rule_el.get("stopIfTrue")),
        color_scale=color_scale,
        data_bar=data_bar,
        icon_set=icon_set,
    )


def _parse_conditional_formatting(sheet_el: ET.Element) -> List[ConditionalFormatting]:
    """Parse conditional formatting blocks, main and x14 extension."""
    cf_list: List[ConditionalFormatting] = []
    ns = NS["main"]

    for cf_el in sheet_el.findall(f"{{{ns}}}conditionalFormatting"):
        cf_list.append(ConditionalFormatting(
            sqref=cf_el.get("sqref", ""),
            rules=[
                _parse_cf_rule(rule_el, f"{{{ns}}}formula")
                for rule_el in cf_el.findall(f"{{{ns}}}cfRule")
            ],
        ))

    x14, xm = NS["x14"], NS["xm"]
    for cf_el in sheet_el.iter(f"{{{x14}}}conditionalFormatting"):
        sqref_el = cf_el.find(f"{{{xm}}}sqref")
        cf_list.append(ConditionalFormatting(
            sqref=sqref_el.text if sqref_el is not None and sqref_el.text else "",
            rules=[
                _parse_cf_rule(rule_el, f"{{{xm}}}f")
                for rule_el in cf_el.findall(f"{{{x14}}}cfRule")
            ],
            extension=True,
        ))

    return cf_list


def _parse_page_setup(sheet_el: ET.Element) -> Optional[PageSetup]:
    ns = NS["main"]
    setup_el = sheet_el.find(f"{{{ns}}}pageSetup")
    margins_el = sheet_el.find(f"{{{ns}}}pageMargins")
    if setup_el is None and margins_el is None:
        return None

    page_setup = PageSetup()
    if setup_el is not None:
        page_setup.orientation = setup_el.get("orientation")
        page_setup.paper_size = _int_or_none(setup_el.get("paperSize"))
        page_setup.scale = _int_or_none(setup_el.get("scale"))
        page_setup.fit_to_width = _int_or_none(setup_el.get("fitToWidth"))
        page_setup.fit_to_height = _int_or_none(setup_el.get("fitToHeight"))
    if margins_el is not None:
        page_setup.margins = PageMargins(**{
            side: _float_or_none(margins_el.get(side))
            for side in ("left", "right", "top", "bottom", "header", "footer")
        })
    return page_setup


def parse_sheet(
    sheet_el: ET.Element,
    sheet_name: str,
    sheet_index: int,
    shared_strings: Optional["SharedStringTable"],
    style_info: StyleInfo,
    is_hidden: bool = False,
) -> SheetSnapshot:
    """Parse a single worksheet element."""
    return SheetSnapshot(
        name=sheet_name,
        sheet_index=sheet_index,
        is_hidden=is_hidden,
        columns=_parse_columns(sheet_el),
        rows=_parse_rows(sheet_el, shared_strings, style_info),
        merged_cells=_parse_merged_cells(sheet_el),
        data_validations=_parse_data_validations(sheet_el),
        conditional_formatting=_parse_conditional_formatting(sheet_el),
        page_setup=_parse_page_setup(sheet_el),
    )


# =============================================================================
# WORKBOOK PARSING
# =============================================================================

def _load_style_info(package: "WorkbookPackage") -> StyleInfo:
    return parse_styles(package.styles.root if package.has_styles() else None)


def snapshot_sheet(package: "WorkbookPackage", name: str) -> SheetSnapshot:
    """Snapshot one sheet of a package by name."""
    info = package.sheet_info(name)
    if info is None:
        raise KeyError(name)
    sheet = package.get_sheet(name)
    return parse_sheet(
        sheet.root,
        name,
        sheet.index,
        package.existing_shared_strings(),
        _load_style_info(package),
        is_hidden=info.state in ("hidden", "veryHidden"),
    )


def snapshot_workbook(package: "WorkbookPackage") -> WorkbookSnapshot:
    """Snapshot every sheet of a package.

    Handles:
    - Multiple worksheets, in tab order
    - Hidden sheets
    - The active tab
    """
    shared_strings = package.existing_shared_strings()
    style_info = _load_style_info(package)

    sheets: List[SheetSnapshot] = []
    for name in package.sheet_names:
        info = package.sheet_info(name)
        sheet = package.get_sheet(name)
        sheets.append(parse_sheet(
            sheet.root,
            name,
            sheet.index,
            shared_strings,
            style_info,
            is_hidden=info.state in ("hidden", "veryHidden"),
        ))

    ns = NS["main"]
    active_sheet = 0
    book_views = package.workbook_root.find(f"{{{ns}}}bookViews")
    if book_views is not None:
        wv = book_views.find(f"{{{ns}}}workbookView")
        if wv is not None:
            active_sheet = int(wv.get("activeTab", 0))

    return WorkbookSnapshot(sheets=sheets, active_sheet_index=active_sheet)

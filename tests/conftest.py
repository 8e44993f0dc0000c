"""Shared fixtures: template workbooks generated with openpyxl.

The teacher template mirrors the real one closely enough to exercise every
preserved feature: a bold red merged header, fixed row heights, a hidden
column, a rating dropdown, conditional formatting on the rating column,
landscape page setup and bordered empty cells waiting for values.
"""

import os
import re
import sys
import zipfile
from io import BytesIO
from pathlib import Path

import pytest
from openpyxl import Workbook
from openpyxl.formatting.rule import CellIsRule
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.worksheet.datavalidation import DataValidation
from openpyxl.worksheet.page import PageMargins

# Add project root to path (tests/ -> project root)
sys.path.insert(0, str(Path(__file__).parent.parent))

# Route tests share one app; rate limiting is tested on its own app
os.environ.setdefault("DISABLE_RATE_LIMIT", "1")


TEACHER_SHEET_PATH = "xl/worksheets/sheet1.xml"

THIN = Side(style="thin", color="FF000000")
BOX = Border(left=THIN, right=THIN, top=THIN, bottom=THIN)

X14_CF_RULE_ID = "{0F1E2D3C-4B5A-6978-8796-A5B4C3D2E1F0}"
SHEET_UID = "{00000000-0001-0000-0000-000000000000}"
WORKBOOK_DOCUMENT_ID = "C3E1A7B2-5D4F-4E6A-9B8C-0D1E2F3A4B5C"


def _style_table(ws, first_row: int, last_row: int) -> None:
    for r in range(first_row, last_row + 1):
        for col in "BCDEF":
            cell = ws[f"{col}{r}"]
            cell.border = BOX
            cell.font = Font(name="Calibri", size=10)


def build_template_workbook() -> Workbook:
    wb = Workbook()

    ws = wb.active
    ws.title = "TeacherTemplate"
    ws["A1"] = "Teacher observation"
    ws["A1"].font = Font(bold=True, color="FFFF0000")
    ws.merge_cells("A1:B1")
    ws["C3"] = "Checklist"
    ws["C3"].fill = PatternFill(fill_type="solid", fgColor="FFB5E6A2")
    ws["G2"] = "Notes"
    ws.merge_cells("G2:G3")

    for r in range(1, 22):
        ws.row_dimensions[r].height = 15 + r
    ws.column_dimensions["B"].width = 28
    ws.column_dimensions["C"].width = 70
    ws.column_dimensions["D"].width = 14
    ws.column_dimensions["H"].hidden = True

    _style_table(ws, 4, 21)
    ws["D4"].alignment = Alignment(vertical="center")
    ws["B4"] = "placeholder"

    dv = DataValidation(
        type="list",
        formula1='"Good,Need some work,Not applicable"',
        allow_blank=True,
    )
    dv.add("D4:D21")
    ws.add_data_validation(dv)

    ws.conditional_formatting.add(
        "D4:D21",
        CellIsRule(
            operator="equal",
            formula=['"Need some work"'],
            fill=PatternFill(fill_type="solid", bgColor="FFFFC7CE"),
        ),
    )

    ws.page_setup.orientation = "landscape"
    ws.page_setup.paperSize = ws.PAPERSIZE_A4
    ws.page_margins = PageMargins(left=0.3, right=0.3, top=0.5, bottom=0.5, header=0.2, footer=0.2)
    ws.print_area = "A1:F21"

    other = wb.create_sheet("Other")
    other["A1"] = "keep me"
    other["B2"] = 42
    other["A1"].font = Font(italic=True)
    other.merge_cells("A3:C3")
    other_dv = DataValidation(type="whole", operator="between", formula1="1", formula2="10")
    other_dv.add("B2:B9")
    other.add_data_validation(other_dv)
    other.conditional_formatting.add(
        "B2:B9",
        CellIsRule(operator="greaterThan", formula=["5"], font=Font(bold=True)),
    )

    admin = wb.create_sheet("AdminTemplate")
    admin["A3"] = "HƯỚNG DẪN CÁC KHÍA CẠNH GIẢNG DẠY GRAPESEED HIỆU QUẢ"
    admin.merge_cells("A1:C2")
    admin.merge_cells("D1:E2")
    admin.merge_cells("D4:E4")
    _style_table(admin, 6, 23)
    admin_dv = DataValidation(
        type="list",
        formula1='"Không áp dụng,Cần cải thiện,Tốt,Rất tốt"',
        allow_blank=True,
    )
    admin_dv.add("D6:D23")
    admin.add_data_validation(admin_dv)

    return wb


def workbook_bytes(wb: Workbook) -> bytes:
    buffer = BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


def rewrite_parts(xlsx: bytes, transforms: dict, new_parts: dict = None) -> bytes:
    """Copy a package, passing parts' text through ``transforms`` and appending ``new_parts``."""
    out = BytesIO()
    with zipfile.ZipFile(BytesIO(xlsx)) as zin, zipfile.ZipFile(out, "w", zipfile.ZIP_DEFLATED) as zout:
        for item in zin.infolist():
            data = zin.read(item.filename)
            if item.filename in transforms:
                data = transforms[item.filename](data.decode("utf-8")).encode("utf-8")
            zout.writestr(item, data)
        for name, text in (new_parts or {}).items():
            zout.writestr(name, text.encode("utf-8"))
    return out.getvalue()


def rewrite_part(xlsx: bytes, part_name: str, transform) -> bytes:
    """Copy a package, passing one part's text through ``transform``."""
    return rewrite_parts(xlsx, {part_name: transform})


_INLINE_STRING_CELL = re.compile(
    r'<c ([^>]*?)t="inlineStr"([^>]*)><is><t(?:\s[^>]*)?>(.*?)</t></is></c>', re.S
)


def use_shared_strings(xlsx: bytes) -> bytes:
    """Move every inline string cell into a shared string table, the way Excel saves.

    openpyxl writes strings inline, so the table is built here, one entry per
    distinct text in order of first use.
    """
    with zipfile.ZipFile(BytesIO(xlsx)) as zf:
        names = zf.namelist()
    if "xl/sharedStrings.xml" in names:
        raise AssertionError("workbook already has a shared string table")
    sheet_parts = sorted(n for n in names if re.match(r"xl/worksheets/sheet\d+\.xml$", n))

    entries = []
    references = [0]

    def to_shared(match):
        before, after, text = match.groups()
        if text not in entries:
            entries.append(text)
        references[0] += 1
        return f'<c {before}t="s"{after}><v>{entries.index(text)}</v></c>'

    def convert(sheet_xml: str) -> str:
        return _INLINE_STRING_CELL.sub(to_shared, sheet_xml)

    def add_relationship(rels_xml: str) -> str:
        return rels_xml.replace(
            "</Relationships>",
            '<Relationship Id="rIdStrings" Type="http://schemas.openxmlformats.org/officeDocument/'
            '2006/relationships/sharedStrings" Target="sharedStrings.xml"/></Relationships>',
        )

    def add_override(types_xml: str) -> str:
        return types_xml.replace(
            "</Types>",
            '<Override PartName="/xl/sharedStrings.xml" ContentType="application/'
            'vnd.openxmlformats-officedocument.spreadsheetml.sharedStrings+xml"/></Types>',
        )

    # Convert the sheets first so the table knows its entries
    converted = {}
    with zipfile.ZipFile(BytesIO(xlsx)) as zf:
        for name in sheet_parts:
            converted[name] = convert(zf.read(name).decode("utf-8"))

    sst = (
        '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>\r\n'
        '<sst xmlns="http://schemas.openxmlformats.org/spreadsheetml/2006/main"'
        f' count="{references[0]}" uniqueCount="{len(entries)}">'
        + "".join(f"<si><t>{text}</t></si>" for text in entries)
        + "</sst>"
    )
    transforms = {name: (lambda _xml, _name=name: converted[_name]) for name in sheet_parts}
    transforms["xl/_rels/workbook.xml.rels"] = add_relationship
    transforms["[Content_Types].xml"] = add_override
    return rewrite_parts(xlsx, transforms, {"xl/sharedStrings.xml": sst})


def excel_workbook_xml(workbook_xml: str) -> str:
    """Give workbook.xml what Excel 365 writes: mc/x15/xr namespaces, an
    ``mc:AlternateContent`` block with the file path and a revision pointer."""
    workbook_xml = re.sub(
        r"<workbook\b",
        '<workbook xmlns:mc="http://schemas.openxmlformats.org/markup-compatibility/2006"'
        ' xmlns:x15="http://schemas.microsoft.com/office/spreadsheetml/2010/11/main"'
        ' xmlns:xr="http://schemas.microsoft.com/office/spreadsheetml/2014/revision"'
        ' xmlns:xr6="http://schemas.microsoft.com/office/spreadsheetml/2016/revision6"'
        ' xmlns:xr10="http://schemas.microsoft.com/office/spreadsheetml/2016/revision10"'
        ' xmlns:xr2="http://schemas.microsoft.com/office/spreadsheetml/2015/revision2"'
        ' mc:Ignorable="x15 xr xr6 xr10 xr2"',
        workbook_xml,
        count=1,
    )
    excel_blocks = (
        '<mc:AlternateContent xmlns:mc="http://schemas.openxmlformats.org/markup-compatibility/2006">'
        '<mc:Choice Requires="x15">'
        '<x15ac:absPath xmlns:x15ac="http://schemas.microsoft.com/office/spreadsheetml/2010/11/ac"'
        ' url="C:\\Users\\trainer\\Documents\\"/>'
        "</mc:Choice>"
        "</mc:AlternateContent>"
        f'<xr:revisionPtr revIDLastSave="0" documentId="8_{{{WORKBOOK_DOCUMENT_ID}}}"'
        ' xr6:coauthVersionLast="47" xr6:coauthVersionMax="47"'
        ' xr10:uidLastSave="{00000000-0000-0000-0000-000000000000}"/>'
    )
    updated, count = re.subn(r"(<workbookPr\b[^>]*?/>)", lambda m: m.group(1) + excel_blocks, workbook_xml, count=1)
    if not count:
        raise AssertionError("workbook.xml has no <workbookPr/> to anchor the Excel blocks")
    return updated


def add_excel_extensions(sheet_xml: str) -> str:
    """Give a worksheet the root namespaces Excel writes plus an x14 extension list."""
    sheet_xml = re.sub(
        r"<worksheet\b",
        '<worksheet xmlns:mc="http://schemas.openxmlformats.org/markup-compatibility/2006"'
        ' xmlns:x14ac="http://schemas.microsoft.com/office/spreadsheetml/2009/9/ac"'
        ' xmlns:xr="http://schemas.microsoft.com/office/spreadsheetml/2014/revision"'
        ' mc:Ignorable="x14ac xr"'
        f' xr:uid="{SHEET_UID}"',
        sheet_xml,
        count=1,
    )
    ext_lst = (
        "<extLst>"
        '<ext xmlns:x14="http://schemas.microsoft.com/office/spreadsheetml/2009/9/main"'
        ' uri="{78C0D931-6437-407d-A8EE-F0AAD7539E65}">'
        "<x14:conditionalFormattings>"
        '<x14:conditionalFormatting xmlns:xm="http://schemas.microsoft.com/office/excel/2006/main">'
        f'<x14:cfRule type="dataBar" priority="5" id="{X14_CF_RULE_ID}">'
        '<x14:dataBar minLength="0" maxLength="100"/>'
        "</x14:cfRule>"
        "<xm:sqref>E4:E21</xm:sqref>"
        "</x14:conditionalFormatting>"
        "</x14:conditionalFormattings>"
        "</ext>"
        '<ext xmlns:x14="http://schemas.microsoft.com/office/spreadsheetml/2009/9/main"'
        ' uri="{05C60535-1F16-4fd2-B633-F4F36F0B64E0}">'
        "<x14:sparklineGroups/>"
        "</ext>"
        "</extLst>"
    )
    return sheet_xml.replace("</worksheet>", ext_lst + "</worksheet>")


@pytest.fixture
def template_xlsx() -> bytes:
    return workbook_bytes(build_template_workbook())


@pytest.fixture
def extended_template_xlsx(template_xlsx) -> bytes:
    return rewrite_part(template_xlsx, TEACHER_SHEET_PATH, add_excel_extensions)


@pytest.fixture
def shared_strings_xlsx(template_xlsx) -> bytes:
    return use_shared_strings(template_xlsx)


@pytest.fixture
def excel_saved_xlsx(extended_template_xlsx) -> bytes:
    """Template as Excel saves it: shared strings, extension lists and an Excel workbook.xml."""
    xlsx = use_shared_strings(extended_template_xlsx)
    return rewrite_part(xlsx, "xl/workbook.xml", excel_workbook_xml)

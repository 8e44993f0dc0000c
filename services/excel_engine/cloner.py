"""Sheet cloner - Duplicates a template worksheet inside the same workbook.

The new worksheet is built from the template's XML, element by element in
schema order:
- Columns, rows (heights, hidden flags, every cell including empty styled
  cells) and merged ranges are copied as-is
- Conditional formatting and data validation are copied to the same sqref,
  including rules stored in the x14 extension list
- Page setup, margins, print options, header/footer and page breaks are copied,
  plus the template's print area / print titles defined names
- Parts reachable only through relationships (drawings, comments, tables,
  external hyperlinks, printer settings) are not copied

Cell style indices point into the shared cellXfs table, so copying the index
copies the full font/fill/border/alignment.
"""

from __future__ import annotations

import copy
import logging
import re
from typing import Callable, Dict, Optional

from xml.etree import ElementTree as ET

from services.errors import TemplateNotFoundError

from .naming import CollisionPolicy, resolve_sheet_name
from .package import SheetPart, WorkbookPackage, extract_root_tag, new_guid
from .parser import NS, local_name


logger = logging.getLogger(__name__)


# x14 extensions that only hold sheet-local data
_CF_EXT_URI = "{78C0D931-6437-407d-A8EE-F0AAD7539E65}"
_DV_EXT_URI = "{CCE6A557-97BC-4b89-ADB6-D9C93CAAB3DF}"
_COPYABLE_EXT_URIS = {_CF_EXT_URI.upper(), _DV_EXT_URI.upper()}

_SHEET_SCOPED_NAMES = {"_xlnm.Print_Area", "_xlnm.Print_Titles"}

_R_ID = f"{{{NS['r']}}}id"
_XR_UID = f"{{{NS['xr']}}}uid"


# =============================================================================
# ELEMENT COPIERS
# =============================================================================

def _copy_as_is(el: ET.Element) -> Optional[ET.Element]:
    return copy.deepcopy(el)


def _copy_sheet_pr(el: ET.Element) -> Optional[ET.Element]:
    new_el = copy.deepcopy(el)
    # codeName must be unique per workbook (VBA module name)
    new_el.attrib.pop("codeName", None)
    return new_el


def _copy_sheet_views(el: ET.Element) -> Optional[ET.Element]:
    new_el = copy.deepcopy(el)
    for view in new_el.findall(f"{{{NS['main']}}}sheetView"):
        view.attrib.pop("tabSelected", None)
    return new_el


def _copy_hyperlinks(el: ET.Element) -> Optional[ET.Element]:
    new_el = copy.deepcopy(el)
    dropped = 0
    for link in list(new_el):
        if link.get(_R_ID):
            new_el.remove(link)
            dropped += 1
    if dropped:
        logger.debug(f"[CLONE] Dropped {dropped} external hyperlink(s)")
    return new_el if len(new_el) else None


def _copy_page_setup(el: ET.Element) -> Optional[ET.Element]:
    new_el = copy.deepcopy(el)
    # Printer settings live in a related binary part
    new_el.attrib.pop(_R_ID, None)
    return new_el


def _copy_ext_lst(el: ET.Element) -> Optional[ET.Element]:
    new_el = copy.deepcopy(el)
    for ext in list(new_el):
        if (ext.get("uri") or "").upper() not in _COPYABLE_EXT_URIS:
            logger.debug(f"[CLONE] Skipping extension {ext.get('uri')}")
            new_el.remove(ext)
    return new_el if len(new_el) else None


_COPIERS: Dict[str, Callable[[ET.Element], Optional[ET.Element]]] = {
    "sheetPr": _copy_sheet_pr,
    "dimension": _copy_as_is,
    "sheetViews": _copy_sheet_views,
    "sheetFormatPr": _copy_as_is,
    "cols": _copy_as_is,
    "sheetData": _copy_as_is,
    "sheetCalcPr": _copy_as_is,
    "sheetProtection": _copy_as_is,
    "protectedRanges": _copy_as_is,
    "mergeCells": _copy_as_is,
    "phoneticPr": _copy_as_is,
    "conditionalFormatting": _copy_as_is,
    "dataValidations": _copy_as_is,
    "hyperlinks": _copy_hyperlinks,
    "printOptions": _copy_as_is,
    "pageMargins": _copy_as_is,
    "pageSetup": _copy_page_setup,
    "headerFooter": _copy_as_is,
    "rowBreaks": _copy_as_is,
    "colBreaks": _copy_as_is,
    "ignoredErrors": _copy_as_is,
    "extLst": _copy_ext_lst,
}


def _regenerate_ids(root: ET.Element) -> None:
    """Give the copy fresh GUIDs where Excel expects workbook-unique ones."""
    x14 = NS["x14"]
    id_map: Dict[str, str] = {}
    for rule in root.iter(f"{{{x14}}}cfRule"):
        old_id = rule.get("id")
        if old_id:
            id_map[old_id] = new_guid()
            rule.set("id", id_map[old_id])
    # Main cfRules link to their x14 counterpart through <x14:id>
    for id_el in root.iter(f"{{{x14}}}id"):
        if id_el.text in id_map:
            id_el.text = id_map[id_el.text]

    for el in root.iter():
        if _XR_UID in el.attrib:
            el.set(_XR_UID, new_guid())


def _new_root_tag_source(template_xml: bytes) -> bytes:
    xml_decl, root_open, root_close = extract_root_tag(template_xml)
    root_open = re.sub(
        rb'(\s[A-Za-z_][\w.-]*:uid=")\{[0-9A-Fa-f-]+\}(")',
        lambda m: m.group(1) + new_guid().encode("ascii") + m.group(2),
        root_open,
    )
    return xml_decl + b"\r\n" + root_open + root_close


# =============================================================================
# DEFINED NAMES
# =============================================================================

def _quote_sheet(name: str) -> str:
    return "'" + name.replace("'", "''") + "'"


def _copy_sheet_scoped_names(
    package: WorkbookPackage,
    template: SheetPart,
    new_sheet: SheetPart,
) -> int:
    ns = NS["main"]
    defined_names = package.workbook_root.find(f"{{{ns}}}definedNames")
    if defined_names is None:
        return 0

    template_ref = re.compile(
        r"(?:'" + re.escape(template.name.replace("'", "''")) + r"'|"
        + r"(?<![\w.'])" + re.escape(template.name) + r")!"
    )
    copied = 0
    for dn in list(defined_names.findall(f"{{{ns}}}definedName")):
        if dn.get("name") not in _SHEET_SCOPED_NAMES:
            continue
        if dn.get("localSheetId") != str(template.index):
            continue
        new_dn = copy.deepcopy(dn)
        new_dn.set("localSheetId", str(new_sheet.index))
        new_dn.text = template_ref.sub(
            lambda _m: _quote_sheet(new_sheet.name) + "!", dn.text or ""
        )
        defined_names.append(new_dn)
        copied += 1

    if copied:
        package.mark_dirty(package.workbook_path)
    return copied


# =============================================================================
# CLONE
# =============================================================================

def _find_template(package: WorkbookPackage, template_name: str) -> str:
    if package.sheet_info(template_name) is not None:
        return template_name
    folded = template_name.casefold()
    for name in package.sheet_names:
        if name.casefold() == folded:
            return name
    raise TemplateNotFoundError(
        f"Template sheet {template_name!r} not found; sheets: {package.sheet_names}",
        user_message=f"The template sheet '{template_name}' is missing from the workbook.",
    )


def clone_sheet(
    package: WorkbookPackage,
    template_name: str,
    new_name: str,
    collision: CollisionPolicy = CollisionPolicy.REJECT,
) -> SheetPart:
    """Copy a template sheet into a new sheet appended to the workbook.

    Raises:
        TemplateNotFoundError: no sheet called ``template_name``
        InvalidSheetNameError: ``new_name`` breaks Excel's naming rules
        SheetNameConflictError: ``new_name`` is taken and the policy is reject
    """
    template_name = _find_template(package, template_name)
    target_name = resolve_sheet_name(new_name, package.sheet_names, collision)
    template = package.get_sheet(template_name)

    new_root = ET.Element(
        template.root.tag,
        {k: v for k, v in template.root.attrib.items() if not k.startswith("{")},
    )
    skipped = []
    for child in template.root:
        tag = local_name(child.tag)
        copier = _COPIERS.get(tag)
        if copier is None:
            skipped.append(tag)
            continue
        new_child = copier(child)
        if new_child is not None:
            new_root.append(new_child)
    if skipped:
        logger.debug(f"[CLONE] Not copied from '{template_name}': {', '.join(skipped)}")

    _regenerate_ids(new_root)

    new_sheet = package.add_worksheet(
        target_name,
        new_root,
        _new_root_tag_source(package.read_part(template.path)),
    )
    names = _copy_sheet_scoped_names(package, template, new_sheet)

    logger.info(
        f"[CLONE] '{template_name}' -> '{target_name}' "
        f"({len(new_root)} elements, {names} print names)"
    )
    return new_sheet

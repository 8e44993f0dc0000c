"""XLSX package - the workbook held in memory as its zip parts.

Preserves structural fidelity by:
1. Keeping every part as raw bytes until something asks to change it
2. Re-serializing only the XML parts that were modified
3. Keeping the original root element opening tag of every rewritten part,
   so namespace declarations that ElementTree drops survive
   (Excel needs them, e.g. for mc:Ignorable)
4. Writing untouched parts back byte-for-byte, in their original order and
   with their original compression

The package also owns the workbook-level registries that sheet cloning and
cell writing need: the sheet list, workbook relationships, content types,
the shared string table and the cellXfs style table.
"""

from __future__ import annotations

import copy
import logging
import posixpath
import re
import uuid
import zipfile
from dataclasses import dataclass
from io import BytesIO
from typing import Dict, List, Optional, Tuple
from xml.etree import ElementTree as ET

from services.errors import DocumentFormatError

from .parser import NS


logger = logging.getLogger(__name__)


CONTENT_TYPES_PATH = "[Content_Types].xml"
ROOT_RELS_PATH = "_rels/.rels"
DEFAULT_WORKBOOK_PATH = "xl/workbook.xml"

REL_OFFICE_DOCUMENT = "http://schemas.openxmlformats.org/officeDocument/2006/relationships/officeDocument"
REL_WORKSHEET = "http://schemas.openxmlformats.org/officeDocument/2006/relationships/worksheet"
REL_SHARED_STRINGS = "http://schemas.openxmlformats.org/officeDocument/2006/relationships/sharedStrings"
REL_STYLES = "http://schemas.openxmlformats.org/officeDocument/2006/relationships/styles"

CT_WORKSHEET = "application/vnd.openxmlformats-officedocument.spreadsheetml.worksheet+xml"
CT_SHARED_STRINGS = "application/vnd.openxmlformats-officedocument.spreadsheetml.sharedStrings+xml"

_XML_DECLARATION = b'<?xml version="1.0" encoding="UTF-8" standalone="yes"?>'
_XML_SPACE = "{http://www.w3.org/XML/1998/namespace}space"


# Register namespaces (main as the default, no prefix)
for _prefix, _uri in NS.items():
    ET.register_namespace(_prefix if _prefix != "main" else "", _uri)

# Characters XML 1.0 cannot carry, even escaped
ILLEGAL_XML_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\ud800-\udfff\ufffe\uffff]")


def strip_illegal_xml_chars(text: str) -> str:
    return ILLEGAL_XML_CHARS.sub("", text)


# =============================================================================
# XML SERIALIZATION
# =============================================================================

def _namespace_of(tag: str) -> str:
    if tag.startswith("{"):
        return tag[1:].split("}", 1)[0]
    return ""


def extract_root_tag(xml_bytes: bytes) -> Tuple[bytes, bytes, bytes]:
    """Extract the original root element opening/closing tags from XML.

    Returns:
        (xml_declaration, root_open_tag, root_close_tag)

    A self-closing root (e.g. an empty ``<sst .../>``) is turned into an
    open/close pair so children can be added.
    """
    xml_str = xml_bytes.decode("utf-8-sig")

    decl_match = re.match(r"\s*(<\?xml[^?]*\?>)\s*", xml_str)
    if decl_match:
        xml_decl = decl_match.group(1).encode("utf-8")
        rest = xml_str[decl_match.end():]
    else:
        xml_decl = _XML_DECLARATION
        rest = xml_str

    # Skip comments/processing instructions before the root
    rest = re.sub(r"^(\s*(<!--.*?-->|<\?.*?\?>))*\s*", "", rest, flags=re.S)

    root_match = re.match(r"<([A-Za-z_][\w.:-]*)(?:\s[^>]*?)?(/?)>", rest, flags=re.S)
    if not root_match:
        raise DocumentFormatError("XML part has no root element")

    qname = root_match.group(1)
    open_tag = root_match.group(0)
    if root_match.group(2):
        open_tag = open_tag[:-2].rstrip() + ">"
    return xml_decl, open_tag.encode("utf-8"), f"</{qname}>".encode("utf-8")


def _sync_root_attributes(root_open: bytes, root: ET.Element) -> bytes:
    """Write plain (un-namespaced) root attribute values back into the tag."""
    tag = root_open.decode("utf-8")
    for name, value in root.attrib.items():
        if name.startswith("{"):
            continue
        escaped = (
            value.replace("&", "&amp;").replace('"', "&quot;").replace("<", "&lt;")
        )
        pattern = re.compile(rf'(?<=\s){re.escape(name)}=("[^"]*"|\'[^\']*\')')
        if pattern.search(tag):
            tag = pattern.sub(lambda _m: f'{name}="{escaped}"', tag, count=1)
        else:
            tag = tag[:-1] + f' {name}="{escaped}">'
    return tag.encode("utf-8")


_NS_DECLARATION = re.compile(r' xmlns(?::([\w.-]+))?="([^"]*)"')


def _root_declarations(root_open: bytes) -> Dict[str, str]:
    """prefix -> uri declared on the preserved root tag ("" for the default)."""
    tag = root_open.decode("utf-8").replace("'", '"')
    return {prefix: uri for prefix, uri in _NS_DECLARATION.findall(tag)}


def serialize_children(element: ET.Element, root_open: bytes) -> bytes:
    """Serialize an element's children (no root tag).

    ElementTree declares namespaces on the start tag of every child it
    writes. Declarations the preserved root tag already makes are stripped.
    When the root declares the element's namespace as the default, children
    are written unprefixed; this also covers parts whose default is not the
    main namespace (relationships, content types).
    """
    ns = _namespace_of(element.tag)
    root_ns = _root_declarations(root_open)
    use_default = bool(ns) and root_ns.get("") == ns

    buffer = BytesIO()
    for child in element:
        child_str = ET.tostring(child, encoding="unicode")
        # ElementTree escapes ">" in attribute values
        start_end = child_str.index(">")
        start, rest = child_str[:start_end], child_str[start_end:]
        for prefix, uri in _NS_DECLARATION.findall(start):
            declaration = f' xmlns:{prefix}="{uri}"' if prefix else f' xmlns="{uri}"'
            if use_default and uri == ns:
                start = start.replace(declaration, "", 1)
                if prefix:
                    pattern = re.compile(rf"<(/?){re.escape(prefix)}:")
                    start = pattern.sub(r"<\1", start)
                    rest = pattern.sub(r"<\1", rest)
            elif prefix and root_ns.get(prefix) == uri:
                start = start.replace(declaration, "", 1)
        buffer.write((start + rest).encode("utf-8"))
    return buffer.getvalue()


def serialize_xml_part(root: ET.Element, original_xml: bytes) -> bytes:
    """Serialize a parsed part, keeping the original root tag and declaration."""
    xml_decl, root_open, root_close = extract_root_tag(original_xml)
    root_open = _sync_root_attributes(root_open, root)
    inner = serialize_children(root, root_open)
    return xml_decl + b"\r\n" + root_open + inner + root_close


def new_guid() -> str:
    return "{" + str(uuid.uuid4()).upper() + "}"


# =============================================================================
# REGISTRIES
# =============================================================================

@dataclass
class SheetInfo:
    """One <sheet> entry of workbook.xml, resolved to its part path."""
    name: str
    sheet_id: int
    r_id: str
    path: str
    state: Optional[str] = None


@dataclass
class SheetPart:
    """A parsed worksheet part."""
    name: str
    path: str
    index: int
    root: ET.Element


class SharedStringTable:
    """Shared strings (xl/sharedStrings.xml), read and appended in place."""

    def __init__(self, package: "WorkbookPackage", path: str, root: ET.Element):
        self._package = package
        self.path = path
        self.root = root
        ns = NS["main"]
        self._texts: List[str] = []
        self._plain_index: Dict[str, int] = {}
        for i, si in enumerate(root.findall(f"{{{ns}}}si")):
            t_el = si.find(f"{{{ns}}}t")
            if t_el is not None:
                text = t_el.text or ""
                self._plain_index.setdefault(text, i)
            else:
                # Rich text (multiple <r> runs)
                text = "".join(t.text or "" for t in si.iter(f"{{{ns}}}t"))
            self._texts.append(text)

    def __len__(self) -> int:
        return len(self._texts)

    def text(self, index: int) -> Optional[str]:
        if 0 <= index < len(self._texts):
            return self._texts[index]
        return None

    def add(self, text: str) -> int:
        """Get or create the index of a plain (non-rich) string.

        Control characters XML cannot hold are dropped first.
        """
        text = strip_illegal_xml_chars(text)
        if text in self._plain_index:
            index = self._plain_index[text]
        else:
            ns = NS["main"]
            si = ET.SubElement(self.root, f"{{{ns}}}si")
            t = ET.SubElement(si, f"{{{ns}}}t")
            t.text = text
            if text and (text[0].isspace() or text[-1].isspace()):
                t.set(_XML_SPACE, "preserve")
            index = len(self._texts)
            self._texts.append(text)
            self._plain_index[text] = index
            self.root.set("uniqueCount", str(len(self._texts)))

        # count is the number of references; it only needs to stay >= uniqueCount
        count = int(self.root.get("count", "0") or 0) + 1
        self.root.set("count", str(max(count, len(self._texts))))
        self._package.mark_dirty(self.path)
        return index


class StyleTable:
    """The cellXfs table of xl/styles.xml."""

    def __init__(self, package: "WorkbookPackage", path: str, root: ET.Element):
        self._package = package
        self.path = path
        self.root = root
        ns = NS["main"]
        cell_xfs = root.find(f"{{{ns}}}cellXfs")
        if cell_xfs is None:
            raise DocumentFormatError("Style part has no cellXfs table")
        self.cell_xfs = cell_xfs
        self._variants: Dict[Tuple[int, str, Optional[str], bool], int] = {}

    def __len__(self) -> int:
        return len(self.cell_xfs.findall(f"{{{NS['main']}}}xf"))

    def xf(self, index: int) -> Optional[ET.Element]:
        xfs = self.cell_xfs.findall(f"{{{NS['main']}}}xf")
        if 0 <= index < len(xfs):
            return xfs[index]
        return None

    def with_alignment(
        self,
        style_index: int,
        horizontal: str,
        vertical: Optional[str] = None,
        wrap_text: bool = True,
    ) -> int:
        """Index of a cellXfs entry equal to ``style_index`` but with this alignment.

        Font, fill, border and number format are kept. Reuses the entry
        itself when it already matches, and reuses variants created earlier.
        """
        key = (style_index, horizontal, vertical, wrap_text)
        if key in self._variants:
            return self._variants[key]

        ns = NS["main"]
        base = self.xf(style_index)
        if base is None:
            base = self.xf(0)
            if base is None:
                raise DocumentFormatError("Style part has an empty cellXfs table")

        alignment = base.find(f"{{{ns}}}alignment")
        if alignment is not None and _alignment_matches(alignment, horizontal, vertical, wrap_text):
            self._variants[key] = style_index
            return style_index

        variant = copy.deepcopy(base)
        alignment = variant.find(f"{{{ns}}}alignment")
        if alignment is None:
            # alignment is the first child of CT_Xf
            alignment = ET.Element(f"{{{ns}}}alignment")
            variant.insert(0, alignment)
        alignment.set("horizontal", horizontal)
        if vertical:
            alignment.set("vertical", vertical)
        if wrap_text:
            alignment.set("wrapText", "1")
        elif "wrapText" in alignment.attrib:
            del alignment.attrib["wrapText"]
        variant.set("applyAlignment", "1")

        self.cell_xfs.append(variant)
        new_index = len(self) - 1
        self.cell_xfs.set("count", str(new_index + 1))
        self._variants[key] = new_index
        self._package.mark_dirty(self.path)
        return new_index


def _alignment_matches(
    alignment: ET.Element,
    horizontal: str,
    vertical: Optional[str],
    wrap_text: bool,
) -> bool:
    if alignment.get("horizontal") != horizontal:
        return False
    if vertical and alignment.get("vertical") != vertical:
        return False
    return (alignment.get("wrapText") in ("1", "true")) == wrap_text


# =============================================================================
# PACKAGE
# =============================================================================

class WorkbookPackage:
    """An XLSX workbook held in memory as its zip parts."""

    def __init__(self, entries: List[zipfile.ZipInfo], parts: Dict[str, bytes]):
        self._entries = entries
        self._parts = parts
        self._trees: Dict[str, ET.Element] = {}
        self._dirty: set[str] = set()
        self._new_parts: List[str] = []
        self._sheet_parts: Dict[str, SheetPart] = {}
        self._shared_strings: Optional[SharedStringTable] = None
        self._styles: Optional[StyleTable] = None

        self.workbook_path = self._find_workbook_path()
        if self.workbook_path not in self._parts:
            raise DocumentFormatError(f"Workbook part not found: {self.workbook_path}")
        self.workbook_rels_path = _rels_path_for(self.workbook_path)
        self._sheets = self._read_sheet_list()

    # -------------------------------------------------------------------------
    # Codec
    # -------------------------------------------------------------------------

    @classmethod
    def from_bytes(cls, data: bytes) -> "WorkbookPackage":
        """Parse raw XLSX bytes."""
        try:
            with zipfile.ZipFile(BytesIO(data), "r") as zf:
                entries = zf.infolist()
                parts = {item.filename: zf.read(item.filename) for item in entries}
        except zipfile.BadZipFile as e:
            raise DocumentFormatError(f"Not a zip package: {e}") from e

        if CONTENT_TYPES_PATH not in parts:
            raise DocumentFormatError("Package has no [Content_Types].xml")

        package = cls(entries, parts)
        logger.debug(
            f"[PACKAGE] Parsed {len(entries)} parts, sheets={package.sheet_names}"
        )
        return package

    def to_bytes(self) -> bytes:
        """Serialize the package, re-writing only modified parts."""
        updated: Dict[str, bytes] = {}
        for path in self._dirty:
            updated[path] = serialize_xml_part(self._trees[path], self._parts[path])

        buffer = BytesIO()
        with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as zf_out:
            for item in self._entries:
                data = updated.get(item.filename, self._parts[item.filename])
                if item.filename in updated:
                    zf_out.writestr(
                        item.filename,
                        data,
                        compress_type=item.compress_type or zipfile.ZIP_DEFLATED,
                    )
                else:
                    # Copy original bytes exactly, keeping the entry metadata
                    zf_out.writestr(item, data)
            for path in self._new_parts:
                zf_out.writestr(
                    path,
                    updated.get(path, self._parts[path]),
                    compress_type=zipfile.ZIP_DEFLATED,
                )

        logger.debug(
            f"[PACKAGE] Serialized: {len(updated)} rewritten, {len(self._new_parts)} new parts"
        )
        return buffer.getvalue()

    # -------------------------------------------------------------------------
    # Parts
    # -------------------------------------------------------------------------

    @property
    def part_names(self) -> List[str]:
        return [item.filename for item in self._entries] + list(self._new_parts)

    def has_part(self, path: str) -> bool:
        return path in self._parts

    def read_part(self, path: str) -> bytes:
        """Current bytes of a part (serialized if it was modified)."""
        if path in self._dirty:
            return serialize_xml_part(self._trees[path], self._parts[path])
        return self._parts[path]

    def xml(self, path: str) -> ET.Element:
        """Parsed root of an XML part (cached; mutations need ``mark_dirty``)."""
        if path not in self._trees:
            try:
                self._trees[path] = ET.fromstring(self._parts[path])
            except KeyError as e:
                raise DocumentFormatError(f"Part not found: {path}") from e
            except ET.ParseError as e:
                raise DocumentFormatError(f"Malformed XML in {path}: {e}") from e
        return self._trees[path]

    def mark_dirty(self, path: str) -> None:
        self._dirty.add(path)

    def add_part(self, path: str, root: ET.Element, root_tag_source: bytes) -> None:
        """Register a new XML part whose root tag is taken from ``root_tag_source``."""
        if path in self._parts:
            raise ValueError(f"Part already exists: {path}")
        self._parts[path] = root_tag_source
        self._trees[path] = root
        self._new_parts.append(path)
        self._dirty.add(path)

    # -------------------------------------------------------------------------
    # Sheets
    # -------------------------------------------------------------------------

    @property
    def sheet_names(self) -> List[str]:
        return [info.name for info in self._sheets]

    def sheet_info(self, name: str) -> Optional[SheetInfo]:
        for info in self._sheets:
            if info.name == name:
                return info
        return None

    def sheet_index(self, name: str) -> int:
        for i, info in enumerate(self._sheets):
            if info.name == name:
                return i
        raise KeyError(name)

    def has_sheet(self, name: str) -> bool:
        """Whether a sheet name is taken; Excel compares names case-insensitively."""
        folded = name.casefold()
        return any(info.name.casefold() == folded for info in self._sheets)

    def get_sheet(self, name: str) -> SheetPart:
        info = self.sheet_info(name)
        if info is None:
            raise KeyError(name)
        if name not in self._sheet_parts:
            self._sheet_parts[name] = SheetPart(
                name=name,
                path=info.path,
                index=self.sheet_index(name),
                root=self.xml(info.path),
            )
        return self._sheet_parts[name]

    def touch_sheet(self, sheet: SheetPart) -> None:
        """Mark a sheet's XML as modified."""
        self.mark_dirty(sheet.path)

    def add_worksheet(self, name: str, root: ET.Element, root_tag_source: bytes) -> SheetPart:
        """Append a worksheet part and register it in workbook.xml, rels and content types."""
        ns = NS["main"]
        path = self._next_part_path("xl/worksheets/sheet{}.xml")
        r_id = self._add_workbook_relationship(REL_WORKSHEET, path)
        self._add_content_type_override(path, CT_WORKSHEET)

        sheet_id = max((info.sheet_id for info in self._sheets), default=0) + 1
        wb_root = self.xml(self.workbook_path)
        sheets_el = wb_root.find(f"{{{ns}}}sheets")
        if sheets_el is None:
            raise DocumentFormatError("workbook.xml has no <sheets> element")
        ET.SubElement(
            sheets_el,
            f"{{{ns}}}sheet",
            {"name": name, "sheetId": str(sheet_id), f"{{{NS['r']}}}id": r_id},
        )
        self.mark_dirty(self.workbook_path)

        self.add_part(path, root, root_tag_source)
        self._sheets.append(SheetInfo(name=name, sheet_id=sheet_id, r_id=r_id, path=path))
        sheet = SheetPart(name=name, path=path, index=len(self._sheets) - 1, root=root)
        self._sheet_parts[name] = sheet
        logger.debug(f"[PACKAGE] Added worksheet '{name}' at {path} ({r_id}, sheetId={sheet_id})")
        return sheet

    # -------------------------------------------------------------------------
    # Workbook-level tables
    # -------------------------------------------------------------------------

    @property
    def workbook_root(self) -> ET.Element:
        return self.xml(self.workbook_path)

    @property
    def shared_strings(self) -> SharedStringTable:
        if self._shared_strings is None:
            path = self._workbook_target(REL_SHARED_STRINGS)
            if path is None or path not in self._parts:
                path = self._create_shared_strings()
            self._shared_strings = SharedStringTable(self, path, self.xml(path))
        return self._shared_strings

    @property
    def styles(self) -> StyleTable:
        if self._styles is None:
            path = self._workbook_target(REL_STYLES)
            if path is None or path not in self._parts:
                raise DocumentFormatError("Workbook has no style part")
            self._styles = StyleTable(self, path, self.xml(path))
        return self._styles

    def has_styles(self) -> bool:
        path = self._workbook_target(REL_STYLES)
        return path is not None and path in self._parts

    def existing_shared_strings(self) -> Optional[SharedStringTable]:
        """The shared string table, without creating one when absent."""
        path = self._workbook_target(REL_SHARED_STRINGS)
        if path is None or path not in self._parts:
            return None
        return self.shared_strings

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _find_workbook_path(self) -> str:
        if ROOT_RELS_PATH not in self._parts:
            return DEFAULT_WORKBOOK_PATH
        for rel in self.xml(ROOT_RELS_PATH).findall(f"{{{NS['rel']}}}Relationship"):
            if rel.get("Type") == REL_OFFICE_DOCUMENT and rel.get("Target"):
                return _resolve_target("", rel.get("Target"))
        return DEFAULT_WORKBOOK_PATH

    def _relationships(self) -> ET.Element:
        return self.xml(self.workbook_rels_path)

    def _workbook_target(self, rel_type: str) -> Optional[str]:
        if self.workbook_rels_path not in self._parts:
            return None
        base_dir = posixpath.dirname(self.workbook_path)
        for rel in self._relationships().findall(f"{{{NS['rel']}}}Relationship"):
            if rel.get("Type") == rel_type and rel.get("Target"):
                return _resolve_target(base_dir, rel.get("Target"))
        return None

    def _read_sheet_list(self) -> List[SheetInfo]:
        ns = NS["main"]
        r_ns = NS["r"]
        base_dir = posixpath.dirname(self.workbook_path)

        id_to_target: Dict[str, str] = {}
        if self.workbook_rels_path in self._parts:
            for rel in self._relationships().findall(f"{{{NS['rel']}}}Relationship"):
                rel_id = rel.get("Id")
                target = rel.get("Target")
                if rel_id and target:
                    id_to_target[rel_id] = _resolve_target(base_dir, target)

        sheets: List[SheetInfo] = []
        sheets_el = self.workbook_root.find(f"{{{ns}}}sheets")
        if sheets_el is None:
            return sheets
        for sheet in sheets_el.findall(f"{{{ns}}}sheet"):
            name = sheet.get("name")
            r_id = sheet.get(f"{{{r_ns}}}id")
            path = id_to_target.get(r_id or "")
            if not name or not path:
                continue
            sheets.append(SheetInfo(
                name=name,
                sheet_id=int(sheet.get("sheetId", 0) or 0),
                r_id=r_id,
                path=path,
                state=sheet.get("state"),
            ))
        return sheets

    def _next_part_path(self, pattern: str) -> str:
        n = 1
        while pattern.format(n) in self._parts:
            n += 1
        return pattern.format(n)

    def _add_workbook_relationship(self, rel_type: str, path: str) -> str:
        rels = self._relationships()
        taken = {rel.get("Id") for rel in rels.findall(f"{{{NS['rel']}}}Relationship")}
        n = len(taken) + 1
        while f"rId{n}" in taken:
            n += 1
        r_id = f"rId{n}"
        target = posixpath.relpath(path, posixpath.dirname(self.workbook_path))
        ET.SubElement(
            rels,
            f"{{{NS['rel']}}}Relationship",
            {"Id": r_id, "Type": rel_type, "Target": target},
        )
        self.mark_dirty(self.workbook_rels_path)
        return r_id

    def _add_content_type_override(self, path: str, content_type: str) -> None:
        types = self.xml(CONTENT_TYPES_PATH)
        ET.SubElement(
            types,
            f"{{{NS['ct']}}}Override",
            {"PartName": f"/{path}", "ContentType": content_type},
        )
        self.mark_dirty(CONTENT_TYPES_PATH)

    def _create_shared_strings(self) -> str:
        ns = NS["main"]
        path = posixpath.join(posixpath.dirname(self.workbook_path), "sharedStrings.xml")
        root = ET.Element(f"{{{ns}}}sst", {"count": "0", "uniqueCount": "0"})
        tag_source = _XML_DECLARATION + f'\r\n<sst xmlns="{ns}" count="0" uniqueCount="0"/>'.encode("utf-8")
        self._add_workbook_relationship(REL_SHARED_STRINGS, path)
        self._add_content_type_override(path, CT_SHARED_STRINGS)
        self.add_part(path, root, tag_source)
        logger.debug(f"[PACKAGE] Created shared string table at {path}")
        return path


def _rels_path_for(part_path: str) -> str:
    directory, filename = posixpath.split(part_path)
    return posixpath.join(directory, "_rels", f"{filename}.rels")


def _resolve_target(base_dir: str, target: str) -> str:
    if target.startswith("/"):
        return target[1:]
    return posixpath.normpath(posixpath.join(base_dir, target))

"""Excel sheet-name rules.

Excel refuses a tab name that is empty, longer than 31 characters, contains
any of ``: \\ / ? * [ ]``, starts or ends with an apostrophe, or is
"History". Names are unique case-insensitively within a workbook.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Iterable

from services.errors import InvalidSheetNameError, SheetNameConflictError


MAX_SHEET_NAME_LENGTH = 31
INVALID_SHEET_CHARS = re.compile(r"[:\\/?*\[\]]")
CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")
RESERVED_SHEET_NAMES = {"history"}


class CollisionPolicy(str, Enum):
    """What to do when the target sheet name is already taken."""
    REJECT = "reject"
    SUFFIX = "suffix"


def sanitize_sheet_name(name: str) -> str:
    """Replace forbidden characters with spaces and tidy whitespace.

    Does not truncate; length is left to ``validate_sheet_name``.
    """
    cleaned = INVALID_SHEET_CHARS.sub(" ", name or "")
    cleaned = CONTROL_CHARS.sub(" ", cleaned)
    cleaned = re.sub(r"\s+", " ", cleaned).strip()
    return cleaned.strip("'").strip()


def validate_sheet_name(name: str) -> None:
    """Raise ``InvalidSheetNameError`` if Excel would refuse ``name``."""
    if not name or not name.strip():
        raise InvalidSheetNameError("Sheet name is empty", user_message="Enter a sheet name.")
    if len(name) > MAX_SHEET_NAME_LENGTH:
        raise InvalidSheetNameError(
            f"Sheet name is {len(name)} characters: {name!r}",
            user_message=f"Sheet names can be at most {MAX_SHEET_NAME_LENGTH} characters.",
        )
    bad = sorted(set(INVALID_SHEET_CHARS.findall(name)))
    if bad:
        raise InvalidSheetNameError(
            f"Sheet name {name!r} contains {' '.join(bad)}",
            user_message="Sheet names cannot contain : \\ / ? * [ or ].",
        )
    if CONTROL_CHARS.search(name):
        raise InvalidSheetNameError(
            f"Sheet name {name!r} contains control characters",
            user_message="Sheet names cannot contain control characters.",
        )
    if name.startswith("'") or name.endswith("'"):
        raise InvalidSheetNameError(
            f"Sheet name {name!r} starts or ends with an apostrophe",
            user_message="Sheet names cannot start or end with an apostrophe.",
        )
    if name.casefold() in RESERVED_SHEET_NAMES:
        raise InvalidSheetNameError(f"Sheet name {name!r} is reserved by Excel")


def resolve_sheet_name(
    name: str,
    existing: Iterable[str],
    policy: CollisionPolicy = CollisionPolicy.REJECT,
) -> str:
    """Validate ``name`` and apply the collision policy against ``existing``."""
    validate_sheet_name(name)
    taken = {n.casefold() for n in existing}
    if name.casefold() not in taken:
        return name

    if policy == CollisionPolicy.REJECT:
        raise SheetNameConflictError(f"Sheet {name!r} already exists")

    n = 2
    while True:
        suffix = f" ({n})"
        candidate = name[: MAX_SHEET_NAME_LENGTH - len(suffix)].rstrip() + suffix
        if candidate.casefold() not in taken:
            return candidate
        n += 1

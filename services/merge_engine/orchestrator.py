"""Merge orchestrator - One template-to-sheet merge, start to finish.

Pipeline:
    RESOLVING -> FETCHING -> PARSING -> CLONING -> MAPPING -> SERIALIZING
    -> UPLOADING -> DONE

Any stage can end the run in FAILED. A run never goes back to an earlier
stage; a retry from the caller is a new run that downloads a fresh copy.
"""
from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING, List, Optional, Tuple
from urllib.parse import quote

from models.schemas import MergeRequest, MergeResult
from services.errors import MergeError
from services.excel_engine.cloner import clone_sheet
from services.excel_engine.naming import validate_sheet_name
from services.excel_engine.package import WorkbookPackage
from services.graph_client import GraphClient

from .layouts import layout_for
from .row_mapper import map_rows

if TYPE_CHECKING:
    from services.merge_config import MergeSettings


logger = logging.getLogger(__name__)


class MergeState(str, Enum):
    PENDING = "pending"
    RESOLVING = "resolving"
    FETCHING = "fetching"
    PARSING = "parsing"
    CLONING = "cloning"
    MAPPING = "mapping"
    SERIALIZING = "serializing"
    UPLOADING = "uploading"
    DONE = "done"
    FAILED = "failed"


class MergeRun:
    """State of a single merge invocation."""

    def __init__(self, request: MergeRequest):
        self.request = request
        self.state = MergeState.PENDING
        self.history: List[MergeState] = [MergeState.PENDING]
        self.failure: Optional[str] = None

    def advance(self, state: MergeState) -> None:
        if state in self.history:
            raise RuntimeError(f"Merge run re-entered state {state.value}")
        if self.state in (MergeState.DONE, MergeState.FAILED):
            raise RuntimeError(f"Merge run already finished ({self.state.value})")
        self.state = state
        self.history.append(state)
        logger.debug(f"[MERGE] -> {state.value}")

    def fail(self, reason: str) -> None:
        self.failure = reason
        self.state = MergeState.FAILED
        self.history.append(MergeState.FAILED)


def build_sheet_url(base_url: str, sheet_name: str) -> str:
    """Link that opens the workbook on the given sheet."""
    base = base_url.split("#", 1)[0]
    return f"{base}#sheet={quote(sheet_name, safe='')}"


class MergeOrchestrator:
    """Runs merges against one Graph client with one set of settings."""

    def __init__(self, client: GraphClient, settings: "MergeSettings"):
        self.client = client
        self.settings = settings

    def merge(self, request: MergeRequest, token: str) -> MergeResult:
        result, _ = self.run(request, token)
        return result

    def run(self, request: MergeRequest, token: str) -> Tuple[MergeResult, MergeRun]:
        """Merge and also return the run record (states visited)."""
        run = MergeRun(request)
        layout = layout_for(request.kind)
        template_name = request.template_sheet_name or self.settings.template_for(request.kind)

        # Fail on a bad name before touching the network
        validate_sheet_name(request.target_sheet_name)

        logger.info(
            f"[MERGE] {request.kind}: '{template_name}' -> '{request.target_sheet_name}'"
        )
        try:
            run.advance(MergeState.RESOLVING)
            ref = self.client.resolve_share_url(request.share_url, token)

            run.advance(MergeState.FETCHING)
            data = self.client.download(ref, token)

            run.advance(MergeState.PARSING)
            package = WorkbookPackage.from_bytes(data)

            run.advance(MergeState.CLONING)
            sheet = clone_sheet(
                package,
                template_name,
                request.target_sheet_name,
                collision=self.settings.collision_policy,
            )

            run.advance(MergeState.MAPPING)
            report = map_rows(package, sheet, request.export_model, layout)

            run.advance(MergeState.SERIALIZING)
            output = package.to_bytes()

            run.advance(MergeState.UPLOADING)
            outcome = self.client.upload(ref, output, token)

            run.advance(MergeState.DONE)
        except MergeError as e:
            run.fail(e.kind)
            logger.error(f"[MERGE] Failed while {run.history[-2].value}: {e.kind}: {e}")
            raise
        except Exception as e:
            run.fail(type(e).__name__)
            logger.exception(f"[MERGE] Unexpected error while {run.history[-2].value}")
            raise

        result = MergeResult(
            sheet_url=build_sheet_url(ref.web_url or request.share_url, sheet.name),
            sheet_name=sheet.name,
            skipped_indicators=report.skipped_indicators,
            skipped_header_fields=report.skipped_header_fields,
            upload_attempts=outcome.attempts,
        )
        logger.info(f"[MERGE] Done: {result.sheet_url}")
        return result, run

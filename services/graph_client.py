"""Microsoft Graph client for shared workbooks.

Three calls, one per pipeline stage:
1. Resolve a share link to a drive item (GET /shares/{id}/driveItem)
2. Download the item's content
3. Upload new content, retrying while another editor holds the file

Errors are reported as the merge error of the stage that failed, with the
transport exception chained as the cause.
"""
from __future__ import annotations

import base64
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

import requests

from services.errors import (
    DownloadError,
    LockedError,
    ResolutionError,
    UploadError,
)


logger = logging.getLogger(__name__)

DEFAULT_GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"
XLSX_CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


@dataclass(frozen=True)
class RetryPolicy:
    """Fixed-delay retry for uploads rejected because the file is in use."""
    max_attempts: int = 3
    delay_seconds: float = 2.0
    retryable_statuses: frozenset = field(default_factory=lambda: frozenset({409, 423, 503}))


@dataclass(frozen=True)
class DriveItemRef:
    """Identity of a file in a drive."""
    drive_id: str
    item_id: str
    web_url: Optional[str] = None
    name: Optional[str] = None


@dataclass(frozen=True)
class UploadOutcome:
    attempts: int
    status_code: int


def encode_share_url(share_url: str) -> str:
    """Graph share id: 'u!' + unpadded base64url of the link."""
    encoded = base64.urlsafe_b64encode(share_url.strip().encode("utf-8")).decode("ascii")
    return "u!" + encoded.rstrip("=")


def _graph_error_message(response: requests.Response) -> str:
    """Best-effort 'error.message' from a Graph error body."""
    try:
        body = response.json()
    except ValueError:
        return (response.text or "")[:200]
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
    return ""


class GraphClient:
    """Thin wrapper over a ``requests.Session`` for the Graph drive endpoints.

    Usage:
        client = GraphClient(retry_policy=settings.retry_policy())
        ref = client.resolve_share_url(url, token)
        data = client.download(ref, token)
        client.upload(ref, new_data, token)
        client.close()
    """

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        base_url: str = DEFAULT_GRAPH_BASE_URL,
        retry_policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], None] = time.sleep,
        timeout: Optional[float] = None,
    ):
        self._owns_session = session is None
        self.session = session or requests.Session()
        self.base_url = base_url.rstrip("/")
        self.retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep
        self.timeout = timeout

    def close(self) -> None:
        if self._owns_session:
            self.session.close()

    @staticmethod
    def _auth(token: str) -> dict:
        return {"Authorization": f"Bearer {token}"}

    def _content_url(self, ref: DriveItemRef) -> str:
        return f"{self.base_url}/drives/{ref.drive_id}/items/{ref.item_id}/content"

    # -------------------------------------------------------------------------
    # Resolve
    # -------------------------------------------------------------------------

    def resolve_share_url(self, share_url: str, token: str) -> DriveItemRef:
        """Resolve a sharing link to the drive item it points at."""
        url = f"{self.base_url}/shares/{encode_share_url(share_url)}/driveItem"
        logger.info("[GRAPH] Resolving share link")
        try:
            response = self.session.get(url, headers=self._auth(token), timeout=self.timeout)
        except requests.RequestException as e:
            raise ResolutionError(f"Share link resolution failed: {e}") from e

        if not response.ok:
            detail = _graph_error_message(response)
            logger.warning(f"[GRAPH] Resolve failed: {response.status_code} {detail}")
            raise ResolutionError(
                f"Share link resolution returned {response.status_code}: {detail}",
                remote_status=response.status_code,
            )

        try:
            item = response.json()
        except ValueError as e:
            raise ResolutionError("Share link resolution returned invalid JSON") from e
        if not isinstance(item, dict):
            raise ResolutionError("Share link resolution returned an unexpected body")

        parent = item.get("parentReference") or {}
        drive_id = parent.get("driveId")
        item_id = item.get("id")
        if not drive_id or not item_id:
            raise ResolutionError("Drive item is missing driveId or id")

        ref = DriveItemRef(
            drive_id=drive_id,
            item_id=item_id,
            web_url=item.get("webUrl"),
            name=item.get("name"),
        )
        logger.info(f"[GRAPH] Resolved to item {ref.item_id} ({ref.name})")
        return ref

    # -------------------------------------------------------------------------
    # Download
    # -------------------------------------------------------------------------

    def download(self, ref: DriveItemRef, token: str) -> bytes:
        """Fetch the raw bytes of a drive item."""
        try:
            response = self.session.get(
                self._content_url(ref), headers=self._auth(token), timeout=self.timeout
            )
        except requests.RequestException as e:
            raise DownloadError(f"Download failed: {e}") from e

        if not response.ok:
            detail = _graph_error_message(response)
            logger.warning(f"[GRAPH] Download failed: {response.status_code} {detail}")
            raise DownloadError(
                f"Download returned {response.status_code}: {detail}",
                remote_status=response.status_code,
            )

        logger.info(f"[GRAPH] Downloaded {len(response.content)} bytes")
        return response.content

    # -------------------------------------------------------------------------
    # Upload
    # -------------------------------------------------------------------------

    def upload(self, ref: DriveItemRef, data: bytes, token: str) -> UploadOutcome:
        """Replace a drive item's content.

        Statuses in the retry policy (file locked, edit conflict, service busy)
        are retried after a fixed delay. Anything else fails immediately.
        """
        policy = self.retry_policy
        headers = {**self._auth(token), "Content-Type": XLSX_CONTENT_TYPE}
        url = self._content_url(ref)

        last_status = 0
        last_detail = ""
        for attempt in range(1, policy.max_attempts + 1):
            try:
                response = self.session.put(url, data=data, headers=headers, timeout=self.timeout)
            except requests.RequestException as e:
                raise UploadError(f"Upload failed on attempt {attempt}: {e}") from e

            if response.ok:
                logger.info(f"[GRAPH] Uploaded {len(data)} bytes (attempt {attempt})")
                return UploadOutcome(attempts=attempt, status_code=response.status_code)

            last_status = response.status_code
            last_detail = _graph_error_message(response)
            if last_status not in policy.retryable_statuses:
                logger.warning(f"[GRAPH] Upload failed: {last_status} {last_detail}")
                raise UploadError(
                    f"Upload returned {last_status}: {last_detail}",
                    remote_status=last_status,
                )

            logger.warning(
                f"[GRAPH] Upload attempt {attempt}/{policy.max_attempts} got {last_status}"
            )
            if attempt < policy.max_attempts:
                self._sleep(policy.delay_seconds)

        raise LockedError(
            f"Upload still rejected after {policy.max_attempts} attempts: {last_status} {last_detail}",
            remote_status=last_status,
        )

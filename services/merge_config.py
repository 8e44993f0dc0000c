"""Merge service configuration.

Reads from environment variables with sensible defaults. Settings are loaded
once at application startup and passed to the components that need them.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Literal

from services.excel_engine.naming import CollisionPolicy
from services.graph_client import DEFAULT_GRAPH_BASE_URL, RetryPolicy
from services.merge_engine.layouts import ADMIN_LAYOUT, TEACHER_LAYOUT

MergeKind = Literal["teacher", "admin"]


@dataclass
class MergeSettings:
    """Merge settings loaded from environment.

    Usage:
        settings = load_merge_settings()
        print(settings.template_for("teacher"))  # "TeacherTemplate"
        client = GraphClient(retry_policy=settings.retry_policy())
    """
    graph_base_url: str = DEFAULT_GRAPH_BASE_URL

    # Upload retry while the workbook is locked by another editor
    upload_max_attempts: int = 3
    upload_retry_delay: float = 2.0
    retryable_statuses: frozenset = field(default_factory=lambda: frozenset({409, 423, 503}))

    collision_policy: CollisionPolicy = CollisionPolicy.REJECT

    teacher_template_sheet: str = TEACHER_LAYOUT.default_template
    admin_template_sheet: str = ADMIN_LAYOUT.default_template

    # Per client address; the middleware also applies a general limit
    rate_limit_enabled: bool = True
    merge_requests_per_minute: int = 10
    merge_requests_per_hour: int = 200

    log_level: str = "INFO"

    def template_for(self, kind: MergeKind) -> str:
        if kind == "admin":
            return self.admin_template_sheet
        return self.teacher_template_sheet

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.upload_max_attempts,
            delay_seconds=self.upload_retry_delay,
            retryable_statuses=self.retryable_statuses,
        )


def load_merge_settings() -> MergeSettings:
    """Load merge settings from environment variables."""
    settings = MergeSettings()

    settings.graph_base_url = os.getenv("GRAPH_BASE_URL", settings.graph_base_url).rstrip("/")

    if os.getenv("MERGE_UPLOAD_MAX_ATTEMPTS"):
        settings.upload_max_attempts = max(1, int(os.getenv("MERGE_UPLOAD_MAX_ATTEMPTS")))
    if os.getenv("MERGE_UPLOAD_RETRY_DELAY"):
        settings.upload_retry_delay = max(0.0, float(os.getenv("MERGE_UPLOAD_RETRY_DELAY")))

    collision = os.getenv("MERGE_SHEET_COLLISION", "").strip().lower()
    if collision:
        settings.collision_policy = CollisionPolicy(collision)

    settings.teacher_template_sheet = os.getenv("TEACHER_TEMPLATE_SHEET", settings.teacher_template_sheet)
    settings.admin_template_sheet = os.getenv("ADMIN_TEMPLATE_SHEET", settings.admin_template_sheet)

    # Can be disabled in dev with DISABLE_RATE_LIMIT=1
    settings.rate_limit_enabled = not os.getenv("DISABLE_RATE_LIMIT")
    if os.getenv("MERGE_RATE_LIMIT_PER_MINUTE"):
        settings.merge_requests_per_minute = max(1, int(os.getenv("MERGE_RATE_LIMIT_PER_MINUTE")))
    if os.getenv("MERGE_RATE_LIMIT_PER_HOUR"):
        settings.merge_requests_per_hour = max(1, int(os.getenv("MERGE_RATE_LIMIT_PER_HOUR")))

    settings.log_level = os.getenv("LOG_LEVEL", settings.log_level).upper()

    return settings

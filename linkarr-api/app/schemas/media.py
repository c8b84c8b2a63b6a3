# app/schemas/media.py
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict


class TimestampSource(str, Enum):
    """Where a capture time came from."""
    EMBEDDED_METADATA = "embedded_metadata"
    FILESYSTEM_TIME = "filesystem_time"


class WorkItem(BaseModel):
    """
    One accepted file travelling through the pipeline.
    Traversal creates it without a content key; the digest stage returns a copy with
    the key set. Frozen, so a stage can only hand it on, never edit it in place.
    """
    model_config = ConfigDict(frozen=True)

    source_path: str
    timestamp: datetime
    timestamp_source: TimestampSource
    content_key: Optional[bytes] = None

    def with_key(self, key: bytes) -> "WorkItem":
        return self.model_copy(update={"content_key": key})

    @property
    def file_token(self) -> str:
        """Short id for log lines (first 8 hex chars of the key)."""
        return self.content_key.hex()[:8] if self.content_key else "-"


# ---- read-only API shapes ----

class PlacementInfo(BaseModel):
    content_key: str
    state: str
    run_id: Optional[str] = None
    source_path: Optional[str] = None
    target_path: Optional[str] = None
    updated_at: Optional[str] = None


class RunInfo(BaseModel):
    id: str
    input_root: Optional[str] = None
    output_root: Optional[str] = None
    started_at: Optional[str] = None
    finished_at: Optional[str] = None
    status: Optional[str] = None


class StoreSummary(BaseModel):
    discovered: int
    copied: int
    cached_paths: int
    runs: List[RunInfo]

"""
Job document model.

A job is persisted as one JSON file per job (camelCase keys) and loaded back
into this pydantic model. Python code uses snake_case attributes.
"""

from __future__ import annotations

import secrets
import time
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
PRECISE_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S.%f"


class JobStatus(str, Enum):
    """Lifecycle states of a translation job."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"


ACTIVE_STATUSES = (JobStatus.PENDING, JobStatus.PROCESSING)


class Strategy(str, Enum):
    """Whether a job translates every eligible field or only changed ones."""
    FULL = "full"
    DIFF = "diff"


def now_timestamp(precise: bool = False) -> str:
    """Local wall-clock timestamp in the job document format."""
    return datetime.now().strftime(PRECISE_TIMESTAMP_FORMAT if precise else TIMESTAMP_FORMAT)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse a job timestamp (with or without microseconds). None if unparseable."""
    if not value:
        return None
    for fmt in (PRECISE_TIMESTAMP_FORMAT, TIMESTAMP_FORMAT):
        try:
            return datetime.strptime(value, fmt)
        except ValueError:
            continue
    return None


def new_job_id() -> str:
    """Opaque time+random id, e.g. ``job_1736846400_9f1c2b7a0d3e4f51``."""
    return f"job_{int(time.time())}_{secrets.token_hex(8)}"


class _Document(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class JobProgress(_Document):
    current: int = 0
    total: int = 0
    current_field: Optional[str] = Field(None, alias="currentField")
    percentage: int = 0


class JobResult(_Document):
    translated_fields: int = Field(0, alias="translatedFields")
    tokens_used: int = Field(0, alias="tokensUsed")
    prompt_tokens: int = Field(0, alias="promptTokens")
    completion_tokens: int = Field(0, alias="completionTokens")
    cost: Optional[float] = 0.0


class Job(_Document):
    """A unit of translation work for one page and one translation target."""
    id: str = Field(default_factory=new_job_id)
    page_id: str = Field(..., alias="pageId")
    page_title: Optional[str] = Field(None, alias="pageTitle")
    page_uuid: Optional[str] = Field(None, alias="pageUuid")
    variant_code: str = Field(..., alias="variantCode")
    status: JobStatus = JobStatus.PENDING
    is_manual: bool = Field(True, alias="isManual")
    source_snapshot: Dict[str, Any] = Field(default_factory=dict, alias="sourceSnapshot")
    strategy: Optional[Strategy] = None
    fields_to_translate: List[str] = Field(default_factory=list, alias="fieldsToTranslate")
    progress: JobProgress = Field(default_factory=JobProgress)
    result: JobResult = Field(default_factory=JobResult)
    error: Optional[str] = None
    created_at: str = Field(default_factory=lambda: now_timestamp(precise=True), alias="createdAt")
    started_at: Optional[str] = Field(None, alias="startedAt")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Job:
        return cls.model_validate(data)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")

    @property
    def display_title(self) -> str:
        return self.page_title or self.page_id

    @property
    def created_datetime(self) -> Optional[datetime]:
        return parse_timestamp(self.created_at)

    @property
    def started_datetime(self) -> Optional[datetime]:
        return parse_timestamp(self.started_at)

"""Generation job records tracked by the orchestrator."""

import asyncio
import uuid
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, computed_field

from .generation import GenerationMode


class JobStatus(str, Enum):
    LOADING = "loading"
    COMPLETE = "complete"
    ERROR = "error"


def new_job_id() -> str:
    return f"gen-{uuid.uuid4().hex[:12]}"


class Job(BaseModel):
    """Immutable snapshot of one generation job.

    The orchestrator never mutates a job in place: every transition produces
    a new value via ``model_copy(update=...)`` and the job list is replaced
    as a whole.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    id: str = Field(default_factory=new_job_id)
    sequence: int
    status: JobStatus = JobStatus.LOADING
    progress: float = 0.0

    mode: GenerationMode = GenerationMode.VIRTUAL_TRY_ON
    prompt: str
    aspect_ratio: str = "square"

    # Snapshot labels, not references into the upload lists
    model_index: int | None = None
    product_index: int | None = None

    result_url: str | None = None
    description: str = ""
    error_message: str | None = None
    cancelled: bool = False

    # Owned by the job while loading, None once terminal
    cancel_event: asyncio.Event | None = Field(default=None, exclude=True, repr=False)

    created_at: datetime = Field(default_factory=datetime.now)
    thumbnail_loaded: bool = False

    @computed_field
    @property
    def is_terminal(self) -> bool:
        return self.status != JobStatus.LOADING

    def download_filename(self) -> str:
        """File name used when saving the result locally."""
        if self.model_index is not None and self.product_index is not None:
            return f"virtual-tryon-model{self.model_index}-product{self.product_index}.png"
        return f"{self.mode.value}-{self.id}.png"

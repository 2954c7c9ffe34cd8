"""Records stored in the pending queue, content registry and chat ledgers.

Files keep camelCase keys so they read the same as the bot's other JSON
databases; attributes are snake_case.  Validation happens whenever rows are
loaded from disk, see :func:`parse_rows`.
"""

from __future__ import annotations

from datetime import date
from enum import Enum
from typing import Literal, TypeVar

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    ValidationInfo,
    field_validator,
)
from pydantic.alias_generators import to_camel

DEFAULT_MAX_RETRIES = 5


class MediaType(str, Enum):
    PHOTO = "photo"
    VIDEO = "video"
    AUDIO = "audio"
    DOCUMENT = "document"


class _Record(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_json(self) -> dict:
        """Return the on-disk representation."""
        return self.model_dump(mode="json", by_alias=True)


class Job(_Record):
    """One media message waiting to be downloaded."""

    id: str = Field(min_length=1)
    chat_id: str = Field(min_length=1)
    message_id: int
    timestamp: int
    retry_count: int = Field(default=0, ge=0)
    max_retries: int = Field(default=DEFAULT_MAX_RETRIES, ge=0)
    media_type: MediaType
    mime_type: str = ""
    sequence_number: int = Field(ge=0)

    @field_validator("sequence_number")
    @classmethod
    def _committed_sequence(cls, value: int, info: ValidationInfo) -> int:
        # drafts carry 0 until enqueue_jobs numbers them
        if info.context and info.context.get("stored") and value < 1:
            raise ValueError("stored rows must have a sequence number of at least 1")
        return value

    @property
    def key(self) -> tuple[str, int]:
        return self.chat_id, self.message_id


class ContentFlags(_Record):
    watermark: bool = False
    encrypted: bool = False


class ContentRecord(_Record):
    """Catalog row for one stored file."""

    id: int = Field(ge=1)
    downloaded: bool = True
    source_chat_id: str
    captured_date: date
    media_type: MediaType
    caption: str = ""
    stored_file_name: str
    human_size: str
    mime_type: str = ""
    storage_path: str
    content_hash: str = Field(pattern=r"^[0-9a-f]{64}$")
    flags: ContentFlags = Field(default_factory=ContentFlags)


class LedgerEntry(Job):
    """A completed job as remembered in its chat's ledger."""

    completed: Literal[True] = True
    registry_id: int = Field(ge=1)
    stored_file_name: str
    storage_path: str

    @classmethod
    def from_job(
        cls, job: Job, *, registry_id: int, stored_file_name: str, storage_path: str
    ) -> "LedgerEntry":
        return cls(
            **job.model_dump(),
            registry_id=registry_id,
            stored_file_name=stored_file_name,
            storage_path=storage_path,
        )


R = TypeVar("R", bound=_Record)


def parse_rows(model: type[R], rows: list) -> tuple[list[R], list[tuple[object, str]]]:
    """Split raw JSON ``rows`` into valid records and rejected rows.

    Rows are checked as persisted records, so an unnumbered job is rejected.
    Each rejected item is ``(row, reason)``.
    """
    good: list[R] = []
    bad: list[tuple[object, str]] = []
    for row in rows:
        if not isinstance(row, dict):
            bad.append((row, "not an object"))
            continue
        try:
            good.append(model.model_validate(row, context={"stored": True}))
        except ValidationError as exc:
            bad.append((row, "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
                for err in exc.errors()
            )))
    return good, bad

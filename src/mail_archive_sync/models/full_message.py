"""Full message documents kept next to the month partitions."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from mail_archive_sync.models.mail_item import AttachmentInfo


class FullMessage(BaseModel):
    """The complete provider message for one non-ignored item."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str
    snippet: str = ""
    payload: dict[str, Any] | None = Field(default=None, description="Provider MIME payload")
    thread_id: str | None = Field(default=None, alias="threadId")
    label_ids: list[str] | None = Field(default=None, alias="labelIds")
    internal_date: str | None = Field(default=None, alias="internalDate")
    size_estimate: int | None = Field(default=None, alias="sizeEstimate")
    attachments: list[AttachmentInfo] | None = Field(default=None)
    stored_date: str = Field(alias="storedDate", description="When this document was written")

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class StorageStats(BaseModel):
    """Disk usage of the partition directory."""

    total_size: int = Field(default=0, description="Bytes under the partition directory")
    full_data_size: int = Field(default=0, description="Bytes used by full message documents")
    index_size: int = Field(default=0, description="Everything that is not full message data")
    total_files: int = 0
    full_data_files: int = 0
    index_file_count: int = Field(default=0, description="gmail-export-*.json documents")
    by_year: dict[str, dict[str, int]] = Field(
        default_factory=dict, description="Full data files and bytes per year"
    )
    orphaned_files: list[str] = Field(
        default_factory=list, description="Full data files no stored message refers to"
    )


class CleanupError(BaseModel):
    file: str
    error: str


class CleanupResult(BaseModel):
    """Outcome of deleting a batch of full data files."""

    deleted: list[str] = Field(default_factory=list)
    errors: list[CleanupError] = Field(default_factory=list)

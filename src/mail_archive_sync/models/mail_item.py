"""Synchronized message model.

A MailItem is what ends up in a monthly partition: the identifiers, a short
excerpt of the body, the raw headers and a handful of parsed header values.
Fields this model does not know about (e.g. a ``payload`` block in documents
written by older exports) are kept so that a read/write cycle never loses data.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr


class AttachmentInfo(BaseModel):
    """A file attached to a message, as described by its MIME part."""

    model_config = ConfigDict(populate_by_name=True)

    filename: str
    mime_type: str = Field(default="application/octet-stream", alias="mimeType")
    size: int = 0
    attachment_id: str | None = Field(default=None, alias="attachmentId")


class MailHeader(BaseModel):
    """A single raw header name/value pair."""

    name: str = Field(description="Header name as sent by the provider")
    value: str = Field(description="Header value")


class MailItem(BaseModel):
    """One message record. Identity is ``id`` alone."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str = Field(description="Provider message ID")
    thread_id: str | None = Field(default=None, alias="threadId", description="Thread ID")
    date: str | None = Field(default=None, description="ISO-8601 timestamp of the message")
    snippet: str = Field(default="", description="Short body excerpt")

    sender: str | None = Field(default=None, alias="from", description="Raw From header")
    subject: str | None = Field(default=None, description="Subject header")
    to: str | None = Field(default=None, description="Raw To header")

    headers: list[MailHeader] = Field(default_factory=list, description="Raw headers")
    label_ids: list[str] = Field(default_factory=list, alias="labelIds", description="Label IDs")

    ignored: bool = Field(default=False, description="User-set flag, persisted across merges")

    has_attachments: bool | None = Field(default=None, alias="hasAttachments")
    attachment_count: int | None = Field(default=None, alias="attachmentCount")
    full_data_path: str | None = Field(
        default=None,
        alias="fullDataPath",
        description="Location of the stored full message, relative to the partition directory",
    )

    _source: dict[str, Any] | None = PrivateAttr(default=None)

    @property
    def source(self) -> dict[str, Any] | None:
        """The provider message this item was parsed from, if still attached."""

        return self._source

    def attach_source(self, message: dict[str, Any]) -> None:
        self._source = message

    def all_headers(self) -> list[MailHeader]:
        """Return the top-level headers, falling back to ``payload.headers``."""

        if self.headers:
            return self.headers

        payload = (self.model_extra or {}).get("payload")
        if not isinstance(payload, dict):
            return []

        result: list[MailHeader] = []
        for h in payload.get("headers") or []:
            if isinstance(h, dict) and isinstance(h.get("name"), str) and isinstance(h.get("value"), str):
                result.append(MailHeader(name=h["name"], value=h["value"]))
        return result

    def header(self, name: str) -> str | None:
        """Case-insensitive lookup of the first header called ``name``."""

        wanted = name.lower()
        for h in self.all_headers():
            if h.name.lower() == wanted:
                return h.value
        return None

    def to_document(self) -> dict[str, Any]:
        """Serialize using the stored (camelCase) field names."""

        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

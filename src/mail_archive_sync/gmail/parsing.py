"""Helpers for parsing Gmail API messages into internal models."""

from __future__ import annotations

from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any

from mail_archive_sync.models import AttachmentInfo, FullMessage, MailHeader, MailItem


def _headers(message: dict[str, Any]) -> list[MailHeader]:
    payload = message.get("payload") or {}
    headers = payload.get("headers") or []
    result: list[MailHeader] = []
    for h in headers:
        name = h.get("name")
        value = h.get("value")
        if isinstance(name, str) and isinstance(value, str):
            result.append(MailHeader(name=name, value=value))
    return result


def _first(headers: list[MailHeader], name: str) -> str | None:
    wanted = name.lower()
    for h in headers:
        if h.name.lower() == wanted:
            # Gmail can include duplicates; keep the first.
            return h.value
    return None


def parse_date(value: str | None) -> datetime | None:
    """Parse a message timestamp.

    Accepts RFC 2822 (``Date`` header) and ISO-8601 (stored ``date`` field).
    Naive results are taken to be UTC.
    """

    if not value or not value.strip():
        return None

    raw = value.strip()
    parsed: datetime | None
    try:
        parsed = parsedate_to_datetime(raw)
    except (TypeError, ValueError, IndexError, OverflowError):
        parsed = None

    if parsed is None:
        # ISO-8601 parsing: allow trailing Z.
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError:
            return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_timestamp(value: datetime) -> str:
    """Render a timestamp the way it is stored in partition documents."""

    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def message_to_mail_item(message: dict[str, Any]) -> MailItem:
    """Convert a Gmail API message (format=full or metadata) to a MailItem.

    Args:
        message: Gmail API message dict.

    Returns:
        MailItem: Parsed message. ``date`` is None when the Date header is
        missing or cannot be parsed.
    """

    headers = _headers(message)

    label_ids = message.get("labelIds") or []
    if not isinstance(label_ids, list):
        label_ids = []

    parsed_date = parse_date(_first(headers, "date"))
    payload = message.get("payload")
    attachments = extract_attachments(payload) if isinstance(payload, dict) else []

    item = MailItem(
        id=str(message.get("id") or ""),
        thread_id=str(message.get("threadId") or "") or None,
        date=format_timestamp(parsed_date) if parsed_date else None,
        snippet=str(message.get("snippet") or ""),
        sender=_first(headers, "from"),
        subject=_first(headers, "subject"),
        to=_first(headers, "to"),
        headers=headers,
        label_ids=[str(x) for x in label_ids if isinstance(x, str)],
        has_attachments=bool(attachments),
        attachment_count=len(attachments),
    )
    item.attach_source(message)
    return item


def extract_attachments(payload: dict[str, Any]) -> list[AttachmentInfo]:
    """Collect the parts of a MIME payload that carry a filename."""

    found: list[AttachmentInfo] = []

    def walk_parts(part: dict[str, Any]) -> None:
        body = part.get("body") or {}
        filename = part.get("filename")
        if filename and isinstance(body, dict):
            found.append(
                AttachmentInfo(
                    filename=str(filename),
                    mime_type=part.get("mimeType") or "application/octet-stream",
                    size=int(body.get("size") or 0),
                    attachment_id=body.get("attachmentId"),
                )
            )
        for p in part.get("parts") or []:
            if isinstance(p, dict):
                walk_parts(p)

    walk_parts(payload)
    return found


def item_to_full_message(item: MailItem, *, stored_at: datetime) -> FullMessage:
    """Build the full message document for ``item``.

    Uses the provider message the item was parsed from when it is still
    attached; otherwise only the headers the item carries are kept.
    """

    source = item.source or {}
    payload = source.get("payload")
    if not isinstance(payload, dict):
        payload = {"headers": [h.model_dump() for h in item.all_headers()]}

    attachments = extract_attachments(payload)
    size_estimate = source.get("sizeEstimate")
    return FullMessage(
        id=item.id,
        snippet=str(source.get("snippet") or item.snippet),
        payload=payload,
        thread_id=source.get("threadId") or item.thread_id,
        label_ids=source.get("labelIds") or item.label_ids or None,
        internal_date=source.get("internalDate"),
        size_estimate=int(size_estimate) if size_estimate is not None else None,
        attachments=attachments or None,
        stored_date=format_timestamp(stored_at),
    )

"""Email provider contract and the Gmail implementation."""

from __future__ import annotations

import base64
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

from google.auth.exceptions import GoogleAuthError
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from pricememory.config import Settings
from pricememory.extraction.parsing import parse_email_date
from pricememory.mail.types import EmailMessage, MessagePage

logger = logging.getLogger(__name__)

GMAIL_READONLY_SCOPE = "https://www.googleapis.com/auth/gmail.readonly"


class EmailProviderError(RuntimeError):
    """Raised when the mailbox cannot be searched or a message cannot be fetched."""


class EmailProvider(Protocol):
    """Searchable mailbox returning raw message content."""

    def search_message_ids(
        self,
        keywords: list[str],
        *,
        after: datetime,
        before: datetime | None = None,
        page_token: str | None = None,
        page_size: int = 100,
    ) -> MessagePage:
        """Return one page of message ids matching the keyword filter and date range."""

    def fetch_message(self, message_id: str) -> EmailMessage:
        """Return headers and decoded body parts for one message."""


def build_search_query(keywords: list[str], *, after: datetime, before: datetime | None = None) -> str:
    """Gmail search expression for quotation-like messages in a date range."""

    terms = " OR ".join(keyword.strip() for keyword in keywords if keyword.strip())
    parts = [f"(subject:({terms}) OR body:({terms}))"] if terms else []
    parts.append(f"after:{after:%Y/%m/%d}")
    if before is not None:
        parts.append(f"before:{before:%Y/%m/%d}")
    return " ".join(parts)


class GmailProvider:
    """Read-only Gmail mailbox accessed with stored authorized-user credentials."""

    def __init__(self, service: Any, *, user_id: str = "me") -> None:
        self._service = service
        self._user_id = user_id

    @classmethod
    def from_token_file(cls, token_path: str | Path, *, user_id: str = "me") -> "GmailProvider":
        try:
            credentials = Credentials.from_authorized_user_file(str(token_path), scopes=[GMAIL_READONLY_SCOPE])
        except (OSError, ValueError) as exc:
            raise EmailProviderError(f"Gmail credentials could not be loaded from {token_path}") from exc
        service = build("gmail", "v1", credentials=credentials, cache_discovery=False)
        return cls(service, user_id=user_id)

    def search_message_ids(
        self,
        keywords: list[str],
        *,
        after: datetime,
        before: datetime | None = None,
        page_token: str | None = None,
        page_size: int = 100,
    ) -> MessagePage:
        query = build_search_query(keywords, after=after, before=before)
        try:
            response = (
                self._service.users()
                .messages()
                .list(userId=self._user_id, q=query, maxResults=page_size, pageToken=page_token)
                .execute()
            )
        except (HttpError, GoogleAuthError, OSError) as exc:
            raise EmailProviderError(f"Gmail search failed: {exc}") from exc
        return MessagePage(
            message_ids=[item["id"] for item in response.get("messages", []) if item.get("id")],
            next_page_token=response.get("nextPageToken"),
        )

    def fetch_message(self, message_id: str) -> EmailMessage:
        try:
            raw = (
                self._service.users()
                .messages()
                .get(userId=self._user_id, id=message_id, format="full")
                .execute()
            )
        except (HttpError, GoogleAuthError, OSError) as exc:
            raise EmailProviderError(f"Gmail fetch failed for {message_id}: {exc}") from exc
        return parse_gmail_message(raw)


def parse_gmail_message(raw: dict[str, Any]) -> EmailMessage:
    """Convert a Gmail API `format=full` message into an EmailMessage."""

    payload = raw.get("payload") or {}
    headers = {header.get("name", "").lower(): header.get("value", "") for header in payload.get("headers", [])}
    html_parts: list[str] = []
    text_parts: list[str] = []
    _walk_parts(payload, html_parts, text_parts)

    sent_at = parse_email_date(headers.get("date"))
    if sent_at is None and raw.get("internalDate"):
        sent_at = datetime.fromtimestamp(int(raw["internalDate"]) / 1000, tz=timezone.utc)
    return EmailMessage(
        message_id=raw.get("id", ""),
        thread_id=raw.get("threadId"),
        subject=headers.get("subject", ""),
        sender=headers.get("from", ""),
        recipient=headers.get("to", ""),
        sent_at=sent_at,
        html_body="\n".join(html_parts),
        text_body="\n".join(text_parts),
    )


def _walk_parts(part: dict[str, Any], html_parts: list[str], text_parts: list[str]) -> None:
    mime_type = (part.get("mimeType") or "").lower()
    data = (part.get("body") or {}).get("data")
    if data and not part.get("filename"):
        if mime_type == "text/html":
            html_parts.append(_decode_body(data))
        elif mime_type == "text/plain":
            text_parts.append(_decode_body(data))
    for child in part.get("parts", []) or []:
        _walk_parts(child, html_parts, text_parts)


def _decode_body(data: str) -> str:
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8", errors="replace")


def build_email_provider(settings: Settings) -> GmailProvider | None:
    """Gmail provider when a token file is configured, otherwise None."""

    token_path = Path(settings.gmail_token_path)
    if not token_path.is_file():
        logger.warning("mail.provider_unavailable token_path=%s", token_path)
        return None
    return GmailProvider.from_token_file(token_path, user_id=settings.gmail_user_id)

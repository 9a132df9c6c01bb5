"""Unit tests for Gmail message parsing and the provider wrapper."""

from __future__ import annotations

import base64
import unittest
from datetime import datetime, timezone

import httplib2
from googleapiclient.errors import HttpError

from pricememory.mail.provider import (
    EmailProviderError,
    GmailProvider,
    build_search_query,
    parse_gmail_message,
)


def _encode(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii").rstrip("=")


class _Request:
    def __init__(self, response: dict | None = None, error: Exception | None = None) -> None:
        self._response = response
        self._error = error

    def execute(self) -> dict:
        if self._error is not None:
            raise self._error
        return self._response


class _Messages:
    def __init__(self, service: "_StubService") -> None:
        self._service = service

    def list(self, **kwargs) -> _Request:  # noqa: ANN003
        self._service.list_calls.append(kwargs)
        return _Request(self._service.list_response, self._service.error)

    def get(self, **kwargs) -> _Request:  # noqa: ANN003
        self._service.get_calls.append(kwargs)
        return _Request(self._service.get_response, self._service.error)


class _Users:
    def __init__(self, service: "_StubService") -> None:
        self._service = service

    def messages(self) -> _Messages:
        return _Messages(self._service)


class _StubService:
    def __init__(self, *, list_response=None, get_response=None, error=None) -> None:  # noqa: ANN001
        self.list_response = list_response
        self.get_response = get_response
        self.error = error
        self.list_calls: list[dict] = []
        self.get_calls: list[dict] = []

    def users(self) -> _Users:
        return _Users(self)


MULTIPART_MESSAGE = {
    "id": "18c2f0a",
    "threadId": "18c2f00",
    "internalDate": "1767225600000",
    "payload": {
        "mimeType": "multipart/mixed",
        "headers": [
            {"name": "Subject", "value": "Quotation - refractories"},
            {"name": "From", "value": "Sales <sales@supplier.example>"},
            {"name": "To", "value": "purchase@acme-steel.co.in"},
            {"name": "Date", "value": "Tue, 03 Mar 2026 10:15:00 +0530"},
        ],
        "parts": [
            {
                "mimeType": "multipart/alternative",
                "parts": [
                    {"mimeType": "text/plain", "body": {"data": _encode("Rate: Rs 45.50 per brick")}},
                    {"mimeType": "text/html", "body": {"data": _encode("<table><tr><td>Rate</td></tr></table>")}},
                ],
            },
            {"mimeType": "text/plain", "filename": "terms.txt", "body": {"data": _encode("attachment")}},
        ],
    },
}


class ParseGmailMessageTests(unittest.TestCase):
    def test_multipart_bodies_and_headers_are_decoded(self) -> None:
        message = parse_gmail_message(MULTIPART_MESSAGE)

        self.assertEqual(message.message_id, "18c2f0a")
        self.assertEqual(message.thread_id, "18c2f00")
        self.assertEqual(message.subject, "Quotation - refractories")
        self.assertEqual(message.recipient, "purchase@acme-steel.co.in")
        self.assertEqual(message.text_body, "Rate: Rs 45.50 per brick")
        self.assertEqual(message.html_body, "<table><tr><td>Rate</td></tr></table>")
        self.assertEqual(message.body, message.html_body)
        self.assertEqual(message.sent_at, datetime(2026, 3, 3, 4, 45, tzinfo=timezone.utc))
        self.assertEqual(message.sender_address, ("Sales", "sales@supplier.example"))

    def test_internal_date_is_used_when_date_header_is_missing(self) -> None:
        raw = {
            "id": "m2",
            "internalDate": "1767225600000",
            "payload": {"mimeType": "text/plain", "headers": [], "body": {"data": _encode("hello")}},
        }

        message = parse_gmail_message(raw)

        self.assertEqual(message.sent_at, datetime(2026, 1, 1, tzinfo=timezone.utc))
        self.assertEqual(message.text_body, "hello")
        self.assertEqual(message.html_body, "")


class BuildSearchQueryTests(unittest.TestCase):
    def test_keywords_and_date_range(self) -> None:
        query = build_search_query(
            ["quotation", " price ", ""],
            after=datetime(2025, 4, 18, tzinfo=timezone.utc),
            before=datetime(2026, 10, 18, tzinfo=timezone.utc),
        )

        self.assertEqual(
            query,
            "(subject:(quotation OR price) OR body:(quotation OR price)) after:2025/04/18 before:2026/10/18",
        )

    def test_without_keywords_only_dates_remain(self) -> None:
        self.assertEqual(build_search_query([], after=datetime(2026, 1, 2)), "after:2026/01/02")


class GmailProviderTests(unittest.TestCase):
    def test_search_returns_ids_and_next_page(self) -> None:
        service = _StubService(list_response={"messages": [{"id": "a"}, {"id": "b"}, {}], "nextPageToken": "p2"})
        provider = GmailProvider(service, user_id="me")

        page = provider.search_message_ids(["quote"], after=datetime(2026, 1, 1), page_size=25, page_token="p1")

        self.assertEqual(page.message_ids, ["a", "b"])
        self.assertEqual(page.next_page_token, "p2")
        call = service.list_calls[0]
        self.assertEqual(call["maxResults"], 25)
        self.assertEqual(call["pageToken"], "p1")
        self.assertIn("after:2026/01/01", call["q"])

    def test_empty_search_result(self) -> None:
        provider = GmailProvider(_StubService(list_response={"resultSizeEstimate": 0}))

        page = provider.search_message_ids(["quote"], after=datetime(2026, 1, 1))

        self.assertEqual(page.message_ids, [])
        self.assertIsNone(page.next_page_token)

    def test_fetch_parses_full_message(self) -> None:
        service = _StubService(get_response=MULTIPART_MESSAGE)

        message = GmailProvider(service).fetch_message("18c2f0a")

        self.assertEqual(message.subject, "Quotation - refractories")
        self.assertEqual(service.get_calls[0]["format"], "full")

    def test_api_errors_are_wrapped(self) -> None:
        error = HttpError(httplib2.Response({"status": 500, "reason": "Backend Error"}), b"{}")
        provider = GmailProvider(_StubService(error=error))

        with self.assertRaises(EmailProviderError):
            provider.search_message_ids(["quote"], after=datetime(2026, 1, 1))
        with self.assertRaises(EmailProviderError):
            provider.fetch_message("x")


if __name__ == "__main__":
    unittest.main()

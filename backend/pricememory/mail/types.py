"""Provider-neutral email shapes."""

from dataclasses import dataclass, field
from datetime import datetime
from email.utils import getaddresses, parseaddr


@dataclass(slots=True)
class EmailMessage:
    """One fetched message with decoded body parts."""

    message_id: str
    thread_id: str | None = None
    subject: str = ""
    sender: str = ""
    recipient: str = ""
    sent_at: datetime | None = None
    html_body: str = ""
    text_body: str = ""

    @property
    def body(self) -> str:
        return self.html_body or self.text_body

    @property
    def sender_address(self) -> tuple[str, str]:
        return _first_address(self.sender)

    @property
    def recipient_address(self) -> tuple[str, str]:
        return _first_address(self.recipient)


@dataclass(slots=True)
class MessagePage:
    message_ids: list[str] = field(default_factory=list)
    next_page_token: str | None = None


def _first_address(header: str) -> tuple[str, str]:
    """Return (display name, lower-cased address) of the first mailbox in a header."""

    if not header:
        return "", ""
    addresses = getaddresses([header])
    name, address = addresses[0] if addresses else parseaddr(header)
    return name.strip().strip('"'), address.strip().lower()

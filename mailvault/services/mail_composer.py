"""
Build transport-ready MIME messages from send requests and templates.
"""

from __future__ import annotations

import base64
import re
import secrets
from dataclasses import dataclass
from email.header import Header
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formatdate, make_msgid
from typing import Optional

from bs4 import BeautifulSoup

from mailvault.models.mail import MessageTemplate
from mailvault.schemas import SendEmailRequest
from mailvault.services.templates import TemplateRenderer

_HEADER_BREAKS = re.compile(r"[\r\n]+")
_BLANK_LINES = re.compile(r"\n\s*\n")
_SPACES = re.compile(r"[ \t]+")


def _header_value(value: str) -> str:
    return _HEADER_BREAKS.sub(" ", value).strip()


def html_to_text(html: str) -> str:
    """Plain-text rendering of an HTML body for the text/plain alternative."""
    if not html:
        return ""

    soup = BeautifulSoup(html, "html.parser")
    for element in soup(["script", "style", "head"]):
        element.decompose()
    for br in soup.find_all("br"):
        br.replace_with("\n")
    for paragraph in soup.find_all(["p", "div", "tr"]):
        paragraph.insert_after("\n\n")
    for header in soup.find_all(["h1", "h2", "h3", "h4", "h5", "h6"]):
        header.insert_before("\n")
        header.insert_after("\n")
    for item in soup.find_all("li"):
        item.insert_before("- ")
        item.insert_after("\n")
    for link in soup.find_all("a", href=True):
        label = link.get_text()
        href = link["href"]
        if href != label:
            link.replace_with(f"{label} ({href})")

    text = soup.get_text()
    text = _BLANK_LINES.sub("\n\n", text)
    text = _SPACES.sub(" ", text)
    return "\n".join(line.strip() for line in text.strip().splitlines())


@dataclass(slots=True)
class ComposedMessage:
    """A rendered message together with its wire form."""

    subject: str
    body_text: str
    body_html: Optional[str]
    boundary: str
    mime: bytes

    @property
    def raw(self) -> str:
        """Base64url form expected by the Gmail send endpoint."""
        return base64.urlsafe_b64encode(self.mime).decode("ascii").rstrip("=")


class MessageComposer:
    """Render templates and assemble multipart/alternative messages."""

    def __init__(self, renderer: TemplateRenderer | None = None) -> None:
        self._renderer = renderer or TemplateRenderer()

    @staticmethod
    def new_boundary() -> str:
        return f"----=_Part_{secrets.token_hex(16)}"

    def compose(
        self,
        request: SendEmailRequest,
        *,
        sender: Optional[str] = None,
        template: Optional[MessageTemplate] = None,
    ) -> ComposedMessage:
        subject = request.subject
        body_text = request.body
        body_html = request.body_html
        if template is not None:
            rendered = self._renderer.render(template, request.person)
            subject = rendered.subject
            body_text = rendered.body_text or request.body
            body_html = rendered.body_html or None
        # The text/plain part is never blank while an HTML part exists.
        if not body_text.strip() and body_html:
            body_text = html_to_text(body_html)

        boundary = self.new_boundary()
        message = MIMEMultipart("alternative", boundary=boundary)
        if sender:
            message["From"] = _header_value(sender)
        message["To"] = ", ".join(request.to)
        if request.cc:
            message["Cc"] = ", ".join(request.cc)
        if request.bcc:
            message["Bcc"] = ", ".join(request.bcc)
        message["Subject"] = Header(_header_value(subject), "utf-8")
        message["Date"] = formatdate(localtime=False)
        message["Message-ID"] = make_msgid()

        message.attach(MIMEText(body_text, "plain", "utf-8"))
        if body_html:
            message.attach(MIMEText(body_html, "html", "utf-8"))

        return ComposedMessage(
            subject=subject,
            body_text=body_text,
            body_html=body_html,
            boundary=boundary,
            mime=message.as_bytes(),
        )


__all__ = ["ComposedMessage", "MessageComposer", "html_to_text"]

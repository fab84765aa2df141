"""
Transactional email: a Resend-backed sender and an in-memory outbox.
"""

from __future__ import annotations

import html
import logging
from dataclasses import dataclass, field
from typing import List, Protocol

import requests

from messconnect.errors import UpstreamServiceError

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"
REQUEST_TIMEOUT = 15  # seconds


class EmailSender(Protocol):
    def send(self, to: str, subject: str, html_body: str) -> None:
        ...


@dataclass
class InMemoryEmailSender:
    """Collects messages instead of sending them."""

    outbox: List[dict] = field(default_factory=list)

    def send(self, to: str, subject: str, html_body: str) -> None:
        logger.info("Queued email to %s: %s", to, subject)
        self.outbox.append({"to": to, "subject": subject, "html": html_body})


@dataclass
class ResendEmailSender:
    api_key: str
    sender: str
    url: str = RESEND_API_URL

    def send(self, to: str, subject: str, html_body: str) -> None:
        try:
            response = requests.post(
                self.url,
                json={"from": self.sender, "to": [to], "subject": subject, "html": html_body},
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=REQUEST_TIMEOUT,
            )
            response.raise_for_status()
        except requests.RequestException as exc:
            raise UpstreamServiceError(f"Resend request failed: {exc}") from exc


def send_quietly(sender: EmailSender, to: str, subject: str, html_body: str) -> bool:
    """Send a notification whose failure must not fail the caller."""
    try:
        sender.send(to, subject, html_body)
    except UpstreamServiceError:
        logger.exception("Failed to send email %r to %s", subject, to)
        return False
    return True


def _wrap(title: str, body_html: str) -> str:
    return (
        "<div style=\"font-family:sans-serif;max-width:560px\">"
        f"<h2>{html.escape(title)}</h2>{body_html}"
        "<p style=\"color:#888\">Mess Connect</p></div>"
    )


def verification_email(name: str, link: str) -> str:
    return _wrap(
        "Verify your email",
        f"<p>Hi {html.escape(name)},</p>"
        "<p>Confirm your email address to finish registering.</p>"
        f"<p><a href=\"{html.escape(link)}\">Verify email</a></p>",
    )


def reset_password_email(name: str, link: str) -> str:
    return _wrap(
        "Reset your password",
        f"<p>Hi {html.escape(name)},</p>"
        "<p>Use the link below to choose a new password. "
        "If you did not ask for this, ignore this email.</p>"
        f"<p><a href=\"{html.escape(link)}\">Reset password</a></p>",
    )


def status_email(name: str, approved: bool) -> str:
    if approved:
        text = "Your registration has been approved. You can now log in."
    else:
        text = (
            "Your registration has been rejected. "
            "Please contact the mess manager if you believe this is an error."
        )
    return _wrap(
        "Registration update", f"<p>Hi {html.escape(name)},</p><p>{text}</p>"
    )


def message_email(subject: str, message: str) -> str:
    paragraphs = "".join(
        f"<p>{html.escape(line)}</p>" for line in message.splitlines() if line.strip()
    )
    return _wrap(subject, paragraphs)

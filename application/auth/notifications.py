"""Outbound email payloads.

This service never talks to a mail provider. It builds messages and hands
them to an :class:`EmailOutbox`; delivery is owned by an external worker.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import List, Optional, Protocol
from urllib.parse import urlencode

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EmailMessage:
    to: str
    subject: str
    body: str
    kind: str
    created_at: float = field(default_factory=time.time)


class EmailOutbox(Protocol):
    def put(self, message: EmailMessage) -> None: ...


class InMemoryOutbox:
    """Outbox holding messages until a delivery worker drains them."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._messages: List[EmailMessage] = []

    def put(self, message: EmailMessage) -> None:
        with self._lock:
            self._messages.append(message)
        logger.info("Queued %s email", message.kind)

    def drain(self) -> List[EmailMessage]:
        with self._lock:
            messages, self._messages = self._messages, []
        return messages

    def peek(self) -> List[EmailMessage]:
        with self._lock:
            return list(self._messages)


def _link(base_url: str, token: str, user_type: str) -> str:
    return f"{base_url}?{urlencode({'token': token, 'type': user_type})}"


def password_reset_message(to: str, token: str, user_type: str, base_url: str, ttl_seconds: int) -> EmailMessage:
    minutes = max(1, ttl_seconds // 60)
    body = (
        "A password reset was requested for your Itinera account.\n\n"
        f"Open this link to choose a new password:\n{_link(base_url, token, user_type)}\n\n"
        f"The link is valid for {minutes} minutes. If you did not request it, ignore this email."
    )
    return EmailMessage(to=to, subject="Reset your Itinera password", body=body, kind="password_reset")


def mfa_reset_message(to: str, token: str, user_type: str, base_url: str, ttl_seconds: int) -> EmailMessage:
    minutes = max(1, ttl_seconds // 60)
    body = (
        "A two-factor authentication reset was requested for your Itinera account.\n\n"
        f"Open this link to remove the authenticator from your account:\n{_link(base_url, token, user_type)}\n\n"
        f"The link is valid for {minutes} minutes. If you did not request it, change your password now."
    )
    return EmailMessage(to=to, subject="Reset your Itinera two-factor authentication", body=body, kind="mfa_reset")


def outbox_size(outbox: Optional[EmailOutbox]) -> int:
    peek = getattr(outbox, "peek", None)
    return len(peek()) if callable(peek) else 0

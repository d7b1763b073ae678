"""Recipient and greeting helpers shared by the mailer and delivery service."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterator, Sequence
from email.utils import formataddr, parseaddr

logger = logging.getLogger("certbatch.mailer")

_SEPARATORS = re.compile(r"[;,]")
_ADDRESS_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _tokens(recipients: Sequence[str] | str | None) -> Iterator[str]:
    if not recipients:
        return
    values = _SEPARATORS.split(recipients) if isinstance(recipients, str) else recipients
    for value in values:
        token = str(value or "").strip()
        if token:
            yield token


def normalize_recipients(recipients: Sequence[str] | str | None) -> tuple[list[str], str]:
    """Split, validate and dedupe recipients.

    Returns the bare SMTP envelope addresses and the ``To`` header value. Entries
    may carry a display name (``"Jane Doe <jane@x.com>"``); it is kept in the
    header only. Duplicates are matched case-insensitively, first one wins.
    """
    envelope: list[str] = []
    header_parts: list[str] = []
    seen: set[str] = set()
    for token in _tokens(recipients):
        display, address = parseaddr(token)
        if not _ADDRESS_RE.match(address or ""):
            logger.warning("[MAIL-INVALID-RECIPIENT] token=%s", token)
            continue
        key = address.lower()
        if key in seen:
            continue
        seen.add(key)
        envelope.append(address)
        header_parts.append(formataddr((display, address)) if display else address)
    return envelope, ", ".join(header_parts)


def title_case_name(full_name: str) -> str:
    """``"jANE doe"`` -> ``"Jane Doe"``; used for email greetings."""
    return " ".join(
        word[:1].upper() + word[1:].lower() for word in (full_name or "").split(" ")
    )

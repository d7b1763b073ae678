import json
import logging
import os
import smtplib
import sys
from email.message import EmailMessage
from email.utils import make_msgid
from typing import NamedTuple, Sequence

from .shared.mail_utils import normalize_recipients

logger = logging.getLogger("certbatch.mailer")
if not logger.handlers:
    handler = logging.StreamHandler(sys.stdout)
    logger.addHandler(handler)
logger.setLevel(logging.INFO)


class Attachment(NamedTuple):
    filename: str
    content: bytes
    mimetype: str = "application/octet-stream"


def _stringify_envelope(recipients: Sequence[str]) -> str:
    return json.dumps(list(recipients))


def smtp_config() -> dict:
    from .models import Settings  # local import to avoid circular import at module load

    settings = Settings.get()
    return {
        "host": settings.smtp_host if settings and settings.smtp_host else os.getenv("SMTP_HOST"),
        "port": settings.smtp_port if settings and settings.smtp_port else os.getenv("SMTP_PORT"),
        "user": settings.smtp_user if settings and settings.smtp_user else os.getenv("SMTP_USER"),
        "from_addr": (
            settings.smtp_from_default
            if settings and settings.smtp_from_default
            else os.getenv("SMTP_FROM_DEFAULT")
        ),
        "from_name": (
            settings.smtp_from_name
            if settings and settings.smtp_from_name
            else os.getenv("SMTP_FROM_NAME", "")
        ),
        "password": (
            settings.get_smtp_pass()
            if settings and settings.get_smtp_pass()
            else os.getenv("SMTP_PASS")
        ),
    }


def send(
    recipients: Sequence[str] | str | None,
    subject: str,
    body: str,
    html: str | None = None,
    attachments: Sequence[Attachment] | None = None,
    timeout: float | None = None,
):
    cfg = smtp_config()
    host = cfg["host"]
    port = cfg["port"]
    from_addr = cfg["from_addr"]
    from_name = cfg["from_name"]

    envelope, header = normalize_recipients(recipients)
    mode = "real"
    if not host or not port or not from_addr:
        mode = "stub"
        logger.info(
            "[MAIL-OUT] mode=%s to_header=%s envelope=%s subject=\"%s\" host=%s result=stub",
            mode,
            header,
            _stringify_envelope(envelope),
            subject,
            host,
        )
        return {"ok": False, "detail": "stub: missing config", "message_id": None}

    if not envelope:
        logger.warning(
            "[MAIL-NO-RECIPIENTS] subject=\"%s\" host=%s", subject, host
        )
        return {"ok": False, "detail": "no valid recipients", "message_id": None}

    msg = EmailMessage()
    msg["Subject"] = subject
    if header:
        msg["To"] = header
    msg["From"] = f"{from_name} <{from_addr}>" if from_name else from_addr
    message_id = make_msgid(domain=from_addr.split("@")[-1])
    msg["Message-ID"] = message_id
    msg.set_content(body)
    if html:
        msg.add_alternative(html, subtype="html")
    for attachment in attachments or ():
        maintype, _, subtype = attachment.mimetype.partition("/")
        msg.add_attachment(
            attachment.content,
            maintype=maintype,
            subtype=subtype or "octet-stream",
            filename=attachment.filename,
        )

    smtp_kwargs = {"timeout": timeout} if timeout else {}
    try:
        port_int = int(port)
        if port_int == 465:
            server = smtplib.SMTP_SSL(host, port_int, **smtp_kwargs)
        else:
            server = smtplib.SMTP(host, port_int, **smtp_kwargs)
            if port_int == 587:
                server.starttls()
        with server:
            if cfg["user"] and cfg["password"]:
                server.login(cfg["user"], cfg["password"])
            server.sendmail(from_addr, envelope, msg.as_string())
        logger.info(
            "[MAIL-OUT] mode=%s to_header=%s envelope=%s subject=\"%s\" host=%s result=sent message_id=%s",
            mode,
            header,
            _stringify_envelope(envelope),
            subject,
            host,
            message_id,
        )
        return {"ok": True, "detail": "sent", "message_id": message_id}
    except (OSError, smtplib.SMTPException, ValueError) as e:
        logger.info(
            "[MAIL-OUT] mode=%s to_header=%s envelope=%s subject=\"%s\" host=%s result=%s",
            mode,
            header,
            _stringify_envelope(envelope),
            subject,
            host,
            e,
        )
        return {"ok": False, "detail": str(e) or e.__class__.__name__, "message_id": None}

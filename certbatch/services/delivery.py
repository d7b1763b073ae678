from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Iterable

from flask import current_app, render_template

from .. import emailer
from ..app import db
from ..models import (
    EMAIL_STATUS_FAILED,
    EMAIL_STATUS_SUCCESS,
    Certificate,
)
from ..shared.errors import DeliveryFailure
from ..shared.mail_utils import title_case_name
from ..shared.storage import artifact_exists, read_artifact
from ..shared.time import now_utc

__all__ = [
    "DEFAULT_MESSAGE",
    "DeliveryOutcome",
    "DispatchReport",
    "dispatch_certificates",
    "find_certificate_by_id",
    "update_delivery_state",
]

OUTCOME_SENT = "sent"
OUTCOME_FAILED = "failed"
OUTCOME_SKIPPED = "skipped"
OUTCOME_ERROR = "error"

DEFAULT_MESSAGE = (
    "We are pleased to present you with your certificate from "
    "{issuer}."
)


@dataclass
class DeliveryOutcome:
    id: object
    status: str
    full_name: str | None = None
    email: str | None = None
    reason: str | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        payload = {"id": self.id, "status": self.status}
        for key, value in (
            ("fullName", self.full_name),
            ("email", self.email),
            ("reason", self.reason),
            ("error", self.error),
        ):
            if value is not None:
                payload[key] = value
        return payload


@dataclass
class DispatchReport:
    results: list[DeliveryOutcome] = field(default_factory=list)

    @property
    def summary(self) -> dict:
        statuses = [r.status for r in self.results]
        return {
            "total": len(self.results),
            "sent": statuses.count(OUTCOME_SENT),
            "failed": statuses.count(OUTCOME_FAILED) + statuses.count(OUTCOME_ERROR),
            "skipped": statuses.count(OUTCOME_SKIPPED),
        }

    def to_dict(self) -> dict:
        return {
            "results": [r.to_dict() for r in self.results],
            "summary": self.summary,
        }


def find_certificate_by_id(cert_id) -> Certificate | None:
    try:
        key = int(cert_id)
    except (TypeError, ValueError):
        return None
    return db.session.get(Certificate, key)


def update_delivery_state(
    cert: Certificate, state: str, error: str | None = None, sent_at=None
) -> None:
    cert.email_status = state
    cert.email_error = error
    if sent_at is not None:
        cert.email_sent_at = sent_at
    db.session.commit()


def _compose_email(cert: Certificate, custom_message: str | None) -> tuple[str, str, str]:
    issuer = current_app.config["ISSUER_NAME"]
    verify_url = f"{current_app.config['APP_URL']}/verify/id/{cert.id}"
    context = {
        "name": title_case_name(cert.full_name),
        "message": (custom_message or "").strip()
        or DEFAULT_MESSAGE.format(issuer=issuer),
        "verify_url": verify_url,
        "issuer": issuer,
        "certificate_number": cert.certificate_number,
    }
    subject = f"Your Certificate from {issuer} - {cert.certificate_number}"
    html_body = render_template("email/certificate_delivery.html", **context)
    text_body = render_template("email/certificate_delivery.txt", **context)
    return subject, text_body, html_body


def _deliver(cert: Certificate, custom_message: str | None, send: Callable, timeout) -> None:
    subject, text_body, html_body = _compose_email(cert, custom_message)
    attachment = emailer.Attachment(
        filename=f"{cert.certificate_number}.png",
        content=read_artifact(cert.image_path),
        mimetype="image/png",
    )
    result = send(
        cert.email,
        subject,
        text_body,
        html=html_body,
        attachments=[attachment],
        timeout=timeout,
    )
    if not result.get("ok"):
        raise DeliveryFailure(str(result.get("detail") or "Unknown error"))


def _dispatch_one(
    cert_id, custom_message: str | None, send: Callable, timeout
) -> DeliveryOutcome:
    cert = find_certificate_by_id(cert_id)
    if not cert:
        return DeliveryOutcome(id=cert_id, status=OUTCOME_ERROR, error="Certificate not found")

    if not cert.email or not cert.email.strip():
        return DeliveryOutcome(
            id=cert.id,
            status=OUTCOME_SKIPPED,
            full_name=cert.full_name,
            reason="No email address",
        )

    if cert.email_status == EMAIL_STATUS_SUCCESS:
        return DeliveryOutcome(
            id=cert.id,
            status=OUTCOME_SKIPPED,
            full_name=cert.full_name,
            email=cert.email,
            reason="Already sent",
        )

    if not artifact_exists(cert.image_path):
        current_app.logger.warning(
            "[CERT-MISSING] id=%s path=%s", cert.id, cert.image_path
        )
        return DeliveryOutcome(
            id=cert.id,
            status=OUTCOME_ERROR,
            full_name=cert.full_name,
            error="Certificate image not found",
        )

    try:
        _deliver(cert, custom_message, send, timeout)
    except DeliveryFailure as exc:
        update_delivery_state(cert, EMAIL_STATUS_FAILED, error=exc.detail)
        current_app.logger.warning(
            "[MAIL-FAIL] id=%s number=%s error=%s",
            cert.id,
            cert.certificate_number,
            exc.detail,
        )
        return DeliveryOutcome(
            id=cert.id,
            status=OUTCOME_FAILED,
            full_name=cert.full_name,
            email=cert.email,
            error=exc.detail,
        )

    update_delivery_state(cert, EMAIL_STATUS_SUCCESS, error=None, sent_at=now_utc())
    current_app.logger.info(
        "[MAIL-SENT] id=%s number=%s to=%s", cert.id, cert.certificate_number, cert.email
    )
    return DeliveryOutcome(
        id=cert.id,
        status=OUTCOME_SENT,
        full_name=cert.full_name,
        email=cert.email,
    )


def dispatch_certificates(
    certificate_ids: Iterable,
    custom_message: str | None = None,
    *,
    send: Callable | None = None,
    timeout: float | None = None,
) -> DispatchReport:
    """Email each certificate's image to its recipient.

    Certificates already in ``SUCCESS`` are never sent again; ``FAILED`` ones
    are retried. One outcome is reported per requested id, in order.
    """
    send = send or emailer.send
    if timeout is None:
        timeout = current_app.config.get("MAIL_TIMEOUT")
    report = DispatchReport()
    for cert_id in certificate_ids:
        try:
            outcome = _dispatch_one(cert_id, custom_message, send, timeout)
        except Exception as exc:
            db.session.rollback()
            current_app.logger.exception("[MAIL-FAIL] id=%s", cert_id)
            outcome = DeliveryOutcome(
                id=cert_id, status=OUTCOME_ERROR, error=str(exc) or "Unknown error"
            )
        report.results.append(outcome)
    return report

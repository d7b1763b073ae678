from __future__ import annotations

import os
import secrets
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from datetime import date
from typing import Sequence
from urllib.parse import quote

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..app import db
from ..models import Certificate, Template
from .compositor import Typography, compose_certificate, template_dimensions
from .errors import NotFoundError, RowProcessingError, ValidationError
from .ingest_store import IngestStore, get_ingest_store
from .placement import resolve_placement
from .roster import RecipientRow
from .storage import artifact_path_for, read_artifact, write_artifact

STATUS_CREATED = "created"
STATUS_SKIPPED = "skipped"
STATUS_ERROR = "error"

RANDOM_DIGITS = 9


@dataclass
class IssueResult:
    full_name: str
    status: str
    certificate_number: str | None = None
    id: int | None = None
    image_path: str | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        payload = {
            "certificateNumber": self.certificate_number,
            "status": self.status,
            "fullName": self.full_name,
        }
        if self.id is not None:
            payload["id"] = self.id
        if self.image_path:
            payload["imageUrl"] = self.image_path
        if self.error:
            payload["error"] = self.error
        return payload


@dataclass(frozen=True)
class TemplateSnapshot:
    """Detached copy of a template row, safe to hand to render threads."""

    id: int
    template_path: str
    name_x: int
    name_y: int
    qr_x: int
    qr_y: int
    qr_size: int | None
    typography: Typography

    @classmethod
    def from_template(cls, template: Template) -> "TemplateSnapshot":
        return cls(
            id=template.id,
            template_path=template.template_path,
            name_x=template.name_x or 0,
            name_y=template.name_y or 0,
            qr_x=template.qr_x or 0,
            qr_y=template.qr_y or 0,
            qr_size=template.qr_size,
            typography=Typography.from_template(template),
        )


class TemplateSource:
    """Reads the template image once per batch and remembers a failure."""

    def __init__(self, snapshot: TemplateSnapshot):
        self.snapshot = snapshot
        self._data: bytes | None = None
        self._error: str | None = None

    def read(self) -> bytes:
        if self._data is not None:
            return self._data
        if self._error is None:
            try:
                self._data = read_artifact(self.snapshot.template_path)
                return self._data
            except OSError as exc:
                self._error = f"Template image unreadable: {exc}"
        raise RowProcessingError(self._error)


@dataclass
class _PendingIssue:
    row: RecipientRow
    certificate_number: str
    verify_url: str
    future: Future


def make_certificate_number(prefix: str | None = None, year: int | None = None) -> str:
    """Return ``PREFIX-YYYY-NNNNNNNNN`` with a uniformly random 9-digit tail."""
    if prefix is None:
        prefix = current_app.config["CERT_PREFIX"]
    year = year or date.today().year
    rand = secrets.randbelow(10**RANDOM_DIGITS)
    return f"{prefix}-{year:04d}-{rand:0{RANDOM_DIGITS}d}"


def verification_url(certificate_number: str) -> str:
    base = current_app.config["APP_URL"]
    return f"{base}/verify/{quote(certificate_number, safe='')}"


def find_certificate_by_number(number: str) -> Certificate | None:
    return (
        db.session.query(Certificate)
        .filter(Certificate.certificate_number == number)
        .one_or_none()
    )


def find_template_by_id(template_id) -> Template | None:
    try:
        key = int(template_id)
    except (TypeError, ValueError):
        return None
    return db.session.get(Template, key)


def create_certificate(**fields) -> Certificate:
    """Add and flush a certificate row; raises IntegrityError on a duplicate number."""
    cert = Certificate(**fields)
    db.session.add(cert)
    db.session.flush()
    return cert


def list_recent_certificates(limit: int = 100) -> list[Certificate]:
    return (
        db.session.query(Certificate)
        .order_by(Certificate.issued_at.desc(), Certificate.id.desc())
        .limit(limit)
        .all()
    )


def _is_cert_number_conflict(error: IntegrityError) -> bool:
    details = str(error.orig) if getattr(error, "orig", None) is not None else ""
    if not details:
        details = str(error)
    lowered = details.lower()
    return "certificate_number" in lowered or "uq_certificates_certificate_number" in lowered


def render_certificate_image(
    template_bytes: bytes,
    snapshot: TemplateSnapshot,
    full_name: str,
    verify_url: str,
    font_dir: str | None = None,
) -> bytes:
    width, height = template_dimensions(template_bytes)
    placement = resolve_placement(snapshot, width, height)
    return compose_certificate(
        template_bytes,
        placement,
        full_name,
        snapshot.typography,
        verify_url,
        font_dir=font_dir,
    )


def _render_job(source: TemplateSource, full_name: str, verify_url: str, font_dir):
    return render_certificate_image(
        source.read(), source.snapshot, full_name, verify_url, font_dir
    )


def _begin_issue(
    row: RecipientRow, source: TemplateSource, executor: ThreadPoolExecutor
) -> _PendingIssue | IssueResult:
    certificate_number = make_certificate_number()
    if find_certificate_by_number(certificate_number) is not None:
        current_app.logger.info(
            "[CERT-SKIP] number=%s reason=exists", certificate_number
        )
        return IssueResult(
            full_name=row.full_name,
            status=STATUS_SKIPPED,
            certificate_number=certificate_number,
        )
    verify_url = verification_url(certificate_number)
    future = executor.submit(
        _render_job,
        source,
        row.full_name,
        verify_url,
        current_app.config.get("FONT_DIR"),
    )
    return _PendingIssue(
        row=row,
        certificate_number=certificate_number,
        verify_url=verify_url,
        future=future,
    )


def _finish_issue(
    pending: _PendingIssue, template_id: int, render_timeout: float | None
) -> IssueResult:
    row = pending.row
    number = pending.certificate_number
    try:
        png_bytes = pending.future.result(timeout=render_timeout)
    except FutureTimeoutError:
        pending.future.cancel()
        current_app.logger.warning(
            "[CERT-FAIL] name=%s number=%s stage=render timeout=%s",
            row.full_name,
            number,
            render_timeout,
        )
        return _row_error(row, number, f"Rendering timed out after {render_timeout}s")
    except Exception as exc:
        current_app.logger.exception(
            "[CERT-FAIL] name=%s number=%s stage=render", row.full_name, number
        )
        return _row_error(row, number, str(exc) or exc.__class__.__name__)

    image_path = artifact_path_for(number)
    try:
        # the unique constraint decides before any file is touched
        cert = create_certificate(
            certificate_number=number,
            template_id=template_id,
            full_name=row.full_name,
            email=row.email,
            qr_data=pending.verify_url,
            image_path=image_path,
        )
    except IntegrityError as exc:
        db.session.rollback()
        if _is_cert_number_conflict(exc):
            current_app.logger.info(
                "[CERT-SKIP] number=%s reason=unique_constraint", number
            )
            return IssueResult(
                full_name=row.full_name,
                status=STATUS_SKIPPED,
                certificate_number=number,
            )
        current_app.logger.exception(
            "[CERT-FAIL] name=%s number=%s stage=store", row.full_name, number
        )
        return _row_error(row, number, str(exc.orig or exc))

    written = False
    try:
        write_artifact(image_path, png_bytes)
        written = True
        db.session.commit()
    except Exception as exc:
        db.session.rollback()
        if written and os.path.exists(image_path):
            os.remove(image_path)
        current_app.logger.exception(
            "[CERT-FAIL] name=%s number=%s stage=persist", row.full_name, number
        )
        return _row_error(row, number, str(exc) or exc.__class__.__name__)

    current_app.logger.info(
        "[CERT] number=%s name=%s path=%s", number, row.full_name, image_path
    )
    return IssueResult(
        full_name=row.full_name,
        status=STATUS_CREATED,
        certificate_number=number,
        id=cert.id,
        image_path=image_path,
    )


def _row_error(row: RecipientRow, number: str | None, message: str) -> IssueResult:
    return IssueResult(
        full_name=row.full_name,
        status=STATUS_ERROR,
        certificate_number=number,
        error=message or "Unknown error",
    )


def _new_executor(workers: int) -> ThreadPoolExecutor:
    return ThreadPoolExecutor(max_workers=max(1, workers), thread_name_prefix="certrender")


def issue_certificate(
    row: RecipientRow,
    template: Template,
    *,
    source: TemplateSource | None = None,
    executor: ThreadPoolExecutor | None = None,
    render_timeout: float | None = None,
) -> IssueResult:
    """Issue one certificate for ``row``.

    A generated number that already exists is reported as ``skipped``; no
    replacement number is drawn. Rendering or storage failures come back as an
    ``error`` result rather than an exception.
    """
    if render_timeout is None:
        render_timeout = current_app.config.get("RENDER_TIMEOUT")
    source = source or TemplateSource(TemplateSnapshot.from_template(template))
    own_executor = executor is None
    pool = executor or _new_executor(1)
    try:
        started = _begin_issue(row, source, pool)
        if isinstance(started, IssueResult):
            return started
        return _finish_issue(started, template.id, render_timeout)
    except Exception as exc:
        db.session.rollback()
        current_app.logger.exception("[CERT-FAIL] name=%s", row.full_name)
        return _row_error(row, None, str(exc))
    finally:
        if own_executor:
            pool.shutdown(wait=False, cancel_futures=True)


def _chunks(rows: Sequence[RecipientRow], size: int):
    for start in range(0, len(rows), size):
        yield rows[start : start + size]


def issue_batch(
    batch_id: str,
    template_id,
    rows: Sequence[RecipientRow] | None = None,
    *,
    ingest_store: IngestStore | None = None,
    chunk_size: int | None = None,
    render_timeout: float | None = None,
) -> list[IssueResult]:
    """Issue certificates for every row of a batch, one result per row.

    Rows come from ``rows`` when given, otherwise from the ingest store; in the
    latter case the cached batch is invalidated once the run completes.
    Results keep input order whatever happens to individual rows.
    """
    if not batch_id or not template_id:
        raise ValidationError("batchId and templateId required")
    store = ingest_store if ingest_store is not None else get_ingest_store()
    from_cache = rows is None
    if from_cache:
        rows = store.get(batch_id)
    if not rows:
        raise ValidationError("No rows found for batch")
    template = find_template_by_id(template_id)
    if not template:
        raise NotFoundError("Template not found")

    chunk_size = chunk_size or current_app.config.get("BATCH_CHUNK_SIZE", 10)
    if render_timeout is None:
        render_timeout = current_app.config.get("RENDER_TIMEOUT")
    source = TemplateSource(TemplateSnapshot.from_template(template))
    results: list[IssueResult] = []
    executor = _new_executor(chunk_size)
    try:
        for chunk in _chunks(list(rows), chunk_size):
            started: list[_PendingIssue | IssueResult] = []
            for row in chunk:
                try:
                    started.append(_begin_issue(row, source, executor))
                except Exception as exc:
                    db.session.rollback()
                    current_app.logger.exception("[CERT-FAIL] name=%s", row.full_name)
                    started.append(_row_error(row, None, str(exc)))
            for item in started:
                if isinstance(item, IssueResult):
                    results.append(item)
                    continue
                try:
                    results.append(_finish_issue(item, template.id, render_timeout))
                except Exception as exc:
                    db.session.rollback()
                    current_app.logger.exception(
                        "[CERT-FAIL] name=%s number=%s",
                        item.row.full_name,
                        item.certificate_number,
                    )
                    results.append(_row_error(item.row, item.certificate_number, str(exc)))
    finally:
        executor.shutdown(wait=False, cancel_futures=True)

    if from_cache:
        store.invalidate(batch_id)

    counts = {STATUS_CREATED: 0, STATUS_SKIPPED: 0, STATUS_ERROR: 0}
    for result in results:
        counts[result.status] += 1
    current_app.logger.info(
        "[BATCH] batch=%s template=%s total=%s created=%s skipped=%s errors=%s",
        batch_id,
        template.id,
        len(results),
        counts[STATUS_CREATED],
        counts[STATUS_SKIPPED],
        counts[STATUS_ERROR],
    )
    return results

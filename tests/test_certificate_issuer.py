import os
import re
from datetime import date
from io import BytesIO

from PIL import Image

from certbatch.app import db
from certbatch.models import EMAIL_STATUS_NOT_SENT, Certificate
from certbatch.shared import certificates as issuer
from certbatch.shared.certificates import (
    STATUS_CREATED,
    STATUS_ERROR,
    STATUS_SKIPPED,
    issue_batch,
    issue_certificate,
    make_certificate_number,
    verification_url,
)
from certbatch.shared.roster import RecipientRow
from certbatch.shared.storage import images_dir

NUMBER_RE = re.compile(r"^AAU-\d{4}-\d{9}$")


def test_certificate_number_format(app):
    number = make_certificate_number()

    assert NUMBER_RE.match(number)
    assert number.split("-")[1] == f"{date.today().year:04d}"


def test_certificate_number_custom_prefix_and_year(app):
    number = make_certificate_number(prefix="XYZ", year=2031)

    assert re.match(r"^XYZ-2031-\d{9}$", number)


def test_verification_url_uses_app_url(app):
    assert (
        verification_url("AAU-2025-000000042")
        == "https://certs.example.edu/verify/AAU-2025-000000042"
    )


def test_end_to_end_single_recipient(app, make_template, caplog):
    caplog.set_level("INFO")
    template = make_template(
        2000, 1600, qr_size=300, qr_x=50, qr_y=50, name_x=1000, name_y=1400, font_size=48
    )
    rows = [RecipientRow(full_name="Jane Doe", email="jane@x.com")]

    results = issue_batch("batch-1", template.id, rows)

    assert len(results) == 1
    result = results[0]
    assert result.status == STATUS_CREATED
    assert NUMBER_RE.match(result.certificate_number)
    with Image.open(result.image_path) as image:
        assert image.size == (2000, 1600)

    cert = db.session.get(Certificate, result.id)
    assert cert.full_name == "Jane Doe"
    assert cert.email == "jane@x.com"
    assert cert.template_id == template.id
    assert cert.email_status == EMAIL_STATUS_NOT_SENT
    assert cert.qr_data == verification_url(result.certificate_number)
    assert os.path.dirname(cert.image_path) == images_dir()
    assert "[CERT] number=" in caplog.text


def test_existing_number_is_skipped_without_touching_record(app, make_template, monkeypatch):
    template = make_template()
    monkeypatch.setattr(issuer, "make_certificate_number", lambda: "AAU-2025-123456789")

    first = issue_certificate(RecipientRow("Jane Doe", "jane@x.com"), template)
    assert first.status == STATUS_CREATED
    with open(first.image_path, "rb") as fh:
        original_bytes = fh.read()
    original_mtime = os.stat(first.image_path).st_mtime_ns

    second = issue_certificate(RecipientRow("John Roe", "john@x.com"), template)

    assert second.status == STATUS_SKIPPED
    assert second.certificate_number == "AAU-2025-123456789"
    assert second.id is None
    assert db.session.query(Certificate).count() == 1
    cert = db.session.query(Certificate).one()
    assert cert.full_name == "Jane Doe"
    with open(first.image_path, "rb") as fh:
        assert fh.read() == original_bytes
    assert os.stat(first.image_path).st_mtime_ns == original_mtime
    assert sorted(os.listdir(images_dir())) == ["AAU-2025-123456789.png"]


def test_unique_constraint_collision_is_skipped(app, make_template, monkeypatch, caplog):
    caplog.set_level("INFO")
    template = make_template()
    monkeypatch.setattr(issuer, "make_certificate_number", lambda: "AAU-2025-555555555")
    monkeypatch.setattr(issuer, "find_certificate_by_number", lambda number: None)
    rows = [RecipientRow("Ada"), RecipientRow("Bob"), RecipientRow("Cy")]

    first = issue_certificate(rows[0], template)
    artifact = first.image_path
    with open(artifact, "rb") as fh:
        original_bytes = fh.read()
    original_mtime = os.stat(artifact).st_mtime_ns

    results = [first] + issue_batch("b-race", template.id, rows[1:])

    assert [(r.full_name, r.status) for r in results] == [
        ("Ada", STATUS_CREATED),
        ("Bob", STATUS_SKIPPED),
        ("Cy", STATUS_SKIPPED),
    ]
    assert all(r.certificate_number == "AAU-2025-555555555" for r in results)
    assert db.session.query(Certificate).count() == 1
    assert db.session.query(Certificate).one().full_name == "Ada"
    with open(artifact, "rb") as fh:
        assert fh.read() == original_bytes
    assert os.stat(artifact).st_mtime_ns == original_mtime
    assert "reason=unique_constraint" in caplog.text


def test_render_failure_is_reported_and_nothing_persisted(app, make_template, monkeypatch):
    template = make_template()

    def boom(*args, **kwargs):
        raise RuntimeError("font exploded")

    monkeypatch.setattr(issuer, "render_certificate_image", boom)

    result = issue_certificate(RecipientRow("Jane Doe"), template)

    assert result.status == STATUS_ERROR
    assert result.error == "font exploded"
    assert db.session.query(Certificate).count() == 0
    assert not os.path.isdir(images_dir()) or not os.listdir(images_dir())


def test_unreadable_template_is_row_error(app, make_template):
    template = make_template()
    os.remove(template.template_path)

    result = issue_certificate(RecipientRow("Jane Doe"), template)

    assert result.status == STATUS_ERROR
    assert "Template image unreadable" in result.error


def test_render_timeout_is_row_error(app, make_template, monkeypatch):
    import threading

    template = make_template()
    release = threading.Event()

    def slow(*args, **kwargs):
        release.wait(5)
        return b""

    monkeypatch.setattr(issuer, "render_certificate_image", slow)
    try:
        result = issue_certificate(RecipientRow("Jane Doe"), template, render_timeout=0.05)
    finally:
        release.set()

    assert result.status == STATUS_ERROR
    assert "timed out" in result.error
    assert db.session.query(Certificate).count() == 0


def test_result_payload_shape(app, make_template):
    template = make_template()

    result = issue_certificate(RecipientRow("Jane Doe", "jane@x.com"), template)
    payload = result.to_dict()

    assert payload["status"] == "created"
    assert payload["fullName"] == "Jane Doe"
    assert payload["certificateNumber"] == result.certificate_number
    assert payload["id"] == result.id
    assert payload["imageUrl"] == result.image_path
    assert "error" not in payload

import os
import pathlib
import sys
from io import BytesIO

import pytest
from PIL import Image

PROJECT_ROOT = pathlib.Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from certbatch.app import create_app, db
from certbatch.models import Template

SMTP_ENV = (
    "SMTP_HOST",
    "SMTP_PORT",
    "SMTP_USER",
    "SMTP_PASS",
    "SMTP_FROM_DEFAULT",
    "SMTP_FROM_NAME",
)


def pytest_collection_modifyitems(config, items):
    for item in items:
        if "slow" in item.keywords or "quarantine" in item.keywords:
            continue
        item.add_marker("full")
        if "no_smoke" in item.keywords:
            continue
        item.add_marker("smoke")


@pytest.fixture
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "sqlite:///:memory:")
    monkeypatch.setenv("CERT_STORE_ROOT", str(tmp_path / "store"))
    monkeypatch.setenv("APP_URL", "https://certs.example.edu")
    for name in SMTP_ENV:
        monkeypatch.delenv(name, raising=False)
    application = create_app()
    with application.app_context():
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


def png_bytes(width=400, height=300, mode="RGB", color=(255, 255, 255)):
    image = Image.new(mode, (width, height), color)
    out = BytesIO()
    image.save(out, format="PNG")
    return out.getvalue()


@pytest.fixture
def make_template(app, tmp_path):
    def _make(width=400, height=300, **fields):
        path = tmp_path / f"template-{width}x{height}.png"
        path.write_bytes(png_bytes(width, height))
        values = {
            "template_path": str(path),
            "name_x": width // 2,
            "name_y": height // 2,
            "qr_x": 10,
            "qr_y": 10,
            "qr_size": 64,
            "font_size": 24,
        }
        values.update(fields)
        template = Template(**values)
        db.session.add(template)
        db.session.commit()
        return template

    return _make

import os

from certbatch.app import db
from certbatch.models import Certificate
from certbatch.services import delivery
from certbatch.shared.storage import images_dir, write_artifact

import manage


def runner(app):
    return app.test_cli_runner()


def test_issue_command_from_csv(app, make_template, tmp_path):
    template = make_template()
    roster = tmp_path / "roster.csv"
    roster.write_text("Full Name,Email\nJane Doe,jane@x.com\nJohn Roe,\n", encoding="utf-8")

    result = runner(app).invoke(
        manage.issue, ["--template", str(template.id), "--csv", str(roster)]
    )

    assert result.exit_code == 0, result.output
    lines = result.output.strip().splitlines()
    assert [line.split("\t")[0] for line in lines] == ["created", "created"]
    assert db.session.query(Certificate).count() == 2


def test_issue_command_unknown_template(app, tmp_path):
    roster = tmp_path / "roster.csv"
    roster.write_text("Name\nJane Doe\n", encoding="utf-8")

    result = runner(app).invoke(manage.issue, ["--template", "77", "--csv", str(roster)])

    assert result.exit_code == 1
    assert "Template not found" in result.output


def test_send_emails_command(app, make_template, tmp_path, monkeypatch):
    template = make_template()
    roster = tmp_path / "roster.csv"
    roster.write_text("Full Name,Email\nJane Doe,jane@x.com\n", encoding="utf-8")
    runner(app).invoke(manage.issue, ["--template", str(template.id), "--csv", str(roster)])
    cert = db.session.query(Certificate).one()
    monkeypatch.setattr(
        delivery.emailer,
        "send",
        lambda *args, **kwargs: {"ok": True, "detail": "sent", "message_id": "<m@x>"},
    )

    result = runner(app).invoke(manage.send_emails, ["--id", str(cert.id)])

    assert result.exit_code == 0, result.output
    assert f"{cert.id}\tsent" in result.output
    assert "total=1 sent=1 failed=0 skipped=0" in result.output


def test_purge_orphan_images(app, make_template, tmp_path, monkeypatch):
    monkeypatch.delenv("APP_ENV", raising=False)
    template = make_template()
    roster = tmp_path / "roster.csv"
    roster.write_text("Name\nJane Doe\n", encoding="utf-8")
    runner(app).invoke(manage.issue, ["--template", str(template.id), "--csv", str(roster)])
    kept = db.session.query(Certificate).one().image_path
    orphan = os.path.join(images_dir(), "AAU-2020-000000001.png")
    write_artifact(orphan, b"\x89PNG")

    dry = runner(app).invoke(manage.purge_orphan_images, ["--dry-run"])
    assert "scanned=2 deleted=0 kept=1 errors=0" in dry.output
    assert os.path.exists(orphan)

    real = runner(app).invoke(manage.purge_orphan_images, [])
    assert "deleted=1" in real.output
    assert not os.path.exists(orphan)
    assert os.path.exists(kept)


def test_purge_refuses_in_production(app, monkeypatch):
    monkeypatch.setenv("APP_ENV", "production")
    monkeypatch.delenv("ALLOW_CERT_PURGE", raising=False)
    os.makedirs(images_dir(), exist_ok=True)

    result = runner(app).invoke(manage.purge_orphan_images, [])

    assert "Refusing to delete" in result.output


def test_mail_settings_command_writes_settings_row(app):
    from certbatch import emailer
    from certbatch.models import Settings

    result = runner(app).invoke(
        manage.mail_settings,
        [
            "--host", "smtp.example.edu",
            "--port", "465",
            "--from-addr", "certs@example.edu",
            "--password", "s3cret",
        ],
    )

    assert result.exit_code == 0, result.output
    assert "host=smtp.example.edu port=465" in result.output
    assert "password=set" in result.output
    settings = Settings.get()
    assert settings.smtp_pass_enc != "s3cret"
    cfg = emailer.smtp_config()
    assert cfg["host"] == "smtp.example.edu"
    assert cfg["port"] == 465
    assert cfg["password"] == "s3cret"

    runner(app).invoke(manage.mail_settings, ["--user", "mailer"])

    cfg = emailer.smtp_config()
    assert cfg["user"] == "mailer"
    assert cfg["host"] == "smtp.example.edu"
    assert cfg["password"] == "s3cret"

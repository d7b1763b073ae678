from certbatch.app import create_app, db
import os
import uuid

from flask_migrate import Migrate
from flask.cli import FlaskGroup
import click
from flask import current_app
from certbatch import emailer
from certbatch.models import Certificate, Settings
from certbatch.services.delivery import dispatch_certificates
from certbatch.shared.certificates import issue_batch
from certbatch.shared.errors import CertbatchError
from certbatch.shared.roster import read_csv_rows
from certbatch.shared.storage import images_dir


migrate = Migrate()


def create_certbatch_app():
    app = create_app()
    migrate.init_app(app, db)
    return app


cli = FlaskGroup(create_app=create_certbatch_app)


@cli.command("issue")
@click.option("--template", "template_id", required=True, type=int)
@click.option("--csv", "csv_path", required=True, type=click.Path(exists=True, dir_okay=False))
@click.option("--batch-id", "batch_id", default=None)
def issue(template_id: int, csv_path: str, batch_id: str | None):
    """Issue certificates for every row of a CSV roster."""
    batch_id = batch_id or str(uuid.uuid4())
    try:
        rows = read_csv_rows(csv_path)
        results = issue_batch(batch_id, template_id, rows)
    except CertbatchError as exc:
        click.echo(str(exc), err=True)
        raise SystemExit(1)
    for result in results:
        line = f"{result.status}\t{result.certificate_number or '-'}\t{result.full_name}"
        if result.error:
            line += f"\t{result.error}"
        click.echo(line)


@cli.command("send_emails")
@click.option("--id", "certificate_ids", multiple=True, required=True, type=int)
@click.option("--message", "custom_message", default=None)
def send_emails(certificate_ids: tuple[int, ...], custom_message: str | None):
    """Email issued certificates to their recipients."""
    report = dispatch_certificates(list(certificate_ids), custom_message)
    for outcome in report.results:
        detail = outcome.reason or outcome.error or ""
        click.echo(f"{outcome.id}\t{outcome.status}\t{detail}".rstrip())
    summary = report.summary
    click.echo(
        f"total={summary['total']} sent={summary['sent']} "
        f"failed={summary['failed']} skipped={summary['skipped']}"
    )


@cli.command("mail_settings")
@click.option("--host", default=None)
@click.option("--port", type=int, default=None)
@click.option("--user", default=None)
@click.option("--from-addr", "from_addr", default=None)
@click.option("--from-name", "from_name", default=None)
@click.option("--password", default=None, help="Stored obfuscated with SECRET_KEY")
def mail_settings(host, port, user, from_addr, from_name, password):
    """Create or update the SMTP settings row; omitted options are left as-is."""
    settings = Settings.get()
    if not settings:
        settings = Settings(
            id=1,
            smtp_host=os.getenv("SMTP_HOST", ""),
            smtp_port=int(os.getenv("SMTP_PORT") or 0) or None,
            smtp_user=os.getenv("SMTP_USER", ""),
            smtp_from_default=os.getenv("SMTP_FROM_DEFAULT", ""),
            smtp_from_name=os.getenv("SMTP_FROM_NAME", ""),
        )
    if host is not None:
        settings.smtp_host = host
    if port is not None:
        settings.smtp_port = port
    if user is not None:
        settings.smtp_user = user
    if from_addr is not None:
        settings.smtp_from_default = from_addr
    if from_name is not None:
        settings.smtp_from_name = from_name
    if password:
        settings.set_smtp_pass(password)
    settings = db.session.merge(settings)
    db.session.commit()
    click.echo(
        f"host={settings.smtp_host or '-'} port={settings.smtp_port or '-'} "
        f"user={settings.smtp_user or '-'} from={settings.smtp_from_default or '-'} "
        f"password={'set' if settings.smtp_pass_enc else 'unset'}"
    )


@cli.command("mail_check")
def mail_check():
    """Send a test message to the configured SMTP user."""
    to_addr = emailer.smtp_config()["user"]
    if not to_addr:
        click.echo("SMTP_USER is not set", err=True)
        return
    result = emailer.send(
        to_addr,
        "Test Certificate Email",
        "It works! This is a test email from the certificate generator.",
        html="<h1>It works!</h1><p>This is a test email from the certificate generator.</p>",
        timeout=current_app.config.get("MAIL_TIMEOUT"),
    )
    click.echo(f"ok={result['ok']} detail={result['detail']} message_id={result['message_id']}")


@cli.command("purge_orphan_images")
@click.option(
    "--dry-run", is_flag=True, help="List orphaned certificate images without deleting"
)
def purge_orphan_images(dry_run: bool):
    image_root = images_dir()
    if not os.path.isdir(image_root):
        click.echo("Certificate image directory missing", err=True)
        return
    if (
        not dry_run
        and os.getenv("APP_ENV") == "production"
        and os.getenv("ALLOW_CERT_PURGE") != "1"
    ):
        click.echo(
            "Refusing to delete in production without ALLOW_CERT_PURGE=1", err=True
        )
        return

    total = deleted = kept = errors = 0
    samples: list[str] = []
    for name in sorted(os.listdir(image_root)):
        if not name.lower().endswith(".png"):
            continue
        full_path = os.path.join(image_root, name)
        total += 1
        exists = (
            db.session.query(Certificate.id).filter_by(image_path=full_path).first()
        )
        if exists:
            kept += 1
            continue
        if len(samples) < 5:
            samples.append(full_path)
        if dry_run:
            continue
        try:
            os.remove(full_path)
            deleted += 1
        except OSError:
            errors += 1
            current_app.logger.exception(
                "[CERT-PURGE] failed to remove %s", full_path
            )
    summary = f"scanned={total} deleted={deleted} kept={kept} errors={errors}"
    for path in samples:
        click.echo(path)
    click.echo(summary)
    current_app.logger.info("[CERT-PURGE] %s", summary)


if __name__ == "__main__":
    cli()

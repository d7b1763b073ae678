import logging
import os

from flask import Flask, current_app, jsonify
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

from .models import Certificate, Settings, Template  # noqa: E402,F401
from .shared.errors import CertbatchError  # noqa: E402
from .shared.ingest_store import IngestStore  # noqa: E402


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logging.warning("ignoring non-integer %s=%r", name, raw)
        return default


def create_app():
    app = Flask(__name__, template_folder="templates")
    app.secret_key = os.getenv("SECRET_KEY", "dev")

    DB_USER = os.getenv("DB_USER", "certbatch")
    DB_PASSWORD = os.getenv("POSTGRES_PASSWORD", "postgres")
    DB_HOST = os.getenv("DB_HOST", "db")
    DB_NAME = os.getenv("DB_NAME", "certbatch")
    DATABASE_URL = os.getenv(
        "DATABASE_URL",
        f"postgresql+psycopg2://{DB_USER}:{DB_PASSWORD}@{DB_HOST}/{DB_NAME}",
    )

    app.config["SQLALCHEMY_DATABASE_URI"] = DATABASE_URL
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
    app.config["MAX_CONTENT_LENGTH"] = 25 * 1024 * 1024

    app.config["CERT_STORE_ROOT"] = os.path.abspath(
        os.getenv("CERT_STORE_ROOT", os.path.join(os.getcwd(), "certificate-store"))
    )
    app.config["APP_URL"] = os.getenv("APP_URL", "http://localhost:3000").rstrip("/")
    app.config["CERT_PREFIX"] = os.getenv("CERT_PREFIX", "AAU")
    app.config["ISSUER_NAME"] = os.getenv("ISSUER_NAME", "Addis Ababa University")
    app.config["TEMPLATE_QR_MIN"] = _env_int("TEMPLATE_QR_MIN", 64)
    app.config["TEMPLATE_QR_MAX"] = _env_int("TEMPLATE_QR_MAX", 1024)
    app.config["BATCH_CHUNK_SIZE"] = max(1, _env_int("BATCH_CHUNK_SIZE", 10))
    app.config["RENDER_TIMEOUT"] = _env_int("RENDER_TIMEOUT", 30)
    app.config["MAIL_TIMEOUT"] = _env_int("MAIL_TIMEOUT", 30)
    app.config["FONT_DIR"] = os.getenv("FONT_DIR")

    db.init_app(app)
    app.extensions["ingest_store"] = IngestStore()

    @app.get("/health")
    def health():  # pragma: no cover - simple healthcheck
        return "OK", 200

    @app.get("/verify/<certificate_number>")
    def verify(certificate_number: str):
        cert = (
            db.session.query(Certificate)
            .filter_by(certificate_number=certificate_number)
            .one_or_none()
        )
        return _verification_response(cert)

    @app.get("/verify/id/<int:cert_id>")
    def verify_by_id(cert_id: int):
        return _verification_response(db.session.get(Certificate, cert_id))

    from .routes.templates import bp as templates_bp
    from .routes.sheets import bp as sheets_bp
    from .routes.certificates import bp as certificates_bp

    app.register_blueprint(templates_bp)
    app.register_blueprint(sheets_bp)
    app.register_blueprint(certificates_bp)

    @app.errorhandler(CertbatchError)
    def pipeline_error(exc: CertbatchError):
        return jsonify({"error": str(exc)}), exc.status_code

    @app.errorhandler(404)
    def not_found(exc):
        return jsonify({"error": "not found"}), 404

    @app.errorhandler(500)
    def internal_error(exc):
        original = getattr(exc, "original_exception", None) or exc
        app.logger.error("[HTTP-500] %s", original, exc_info=original)
        return jsonify({"error": "Internal Server Error"}), 500

    return app


def _verification_response(cert: "Certificate | None"):
    if not cert:
        return jsonify({"ok": False, "status": "Invalid"}), 404
    return jsonify(
        {
            "ok": True,
            "full_name": cert.full_name,
            "certificate_number": cert.certificate_number,
            "issuer": current_app.config["ISSUER_NAME"],
            "issued_at": cert.issued_at.isoformat() if cert.issued_at else None,
            "status": "Valid",
        }
    )

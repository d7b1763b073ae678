from __future__ import annotations

import base64

from flask import current_app
from sqlalchemy.orm import validates

from .app import db

EMAIL_STATUS_NOT_SENT = "NOT_SENT"
EMAIL_STATUS_SUCCESS = "SUCCESS"
EMAIL_STATUS_FAILED = "FAILED"
EMAIL_STATUSES = (EMAIL_STATUS_NOT_SENT, EMAIL_STATUS_SUCCESS, EMAIL_STATUS_FAILED)


class Settings(db.Model):
    __tablename__ = "settings"
    id = db.Column(db.Integer, primary_key=True, default=1)
    smtp_host = db.Column(db.String(255))
    smtp_port = db.Column(db.Integer)
    smtp_user = db.Column(db.String(255))
    smtp_from_default = db.Column(db.String(255))
    smtp_from_name = db.Column(db.String(255))
    smtp_pass_enc = db.Column(db.Text)
    updated_at = db.Column(
        db.DateTime, server_default=db.func.now(), onupdate=db.func.now()
    )

    # always enforce singleton row id=1
    @staticmethod
    def get() -> "Settings | None":
        return db.session.get(Settings, 1)

    def set_smtp_pass(self, plain: str) -> None:
        if not plain:
            self.smtp_pass_enc = None
            return
        key = current_app.config.get("SECRET_KEY", "").encode()
        data = plain.encode()
        xored = bytes([b ^ key[i % len(key)] for i, b in enumerate(data)])
        self.smtp_pass_enc = base64.b64encode(xored).decode()

    def get_smtp_pass(self) -> str | None:
        if not self.smtp_pass_enc:
            return None
        try:
            key = current_app.config.get("SECRET_KEY", "").encode()
            raw = base64.b64decode(self.smtp_pass_enc.encode())
            data = bytes([b ^ key[i % len(key)] for i, b in enumerate(raw)])
            return data.decode()
        except (ValueError, UnicodeDecodeError):
            return None


class Template(db.Model):
    """Background image plus placement and typography for the name and QR."""

    __tablename__ = "templates"

    id = db.Column(db.Integer, primary_key=True)
    template_path = db.Column(db.String(1024), nullable=False)
    name_x = db.Column(db.Integer, nullable=False, default=0)
    name_y = db.Column(db.Integer, nullable=False, default=0)
    qr_x = db.Column(db.Integer, nullable=False, default=0)
    qr_y = db.Column(db.Integer, nullable=False, default=0)
    qr_size = db.Column(db.Integer, nullable=False, default=200)
    font_family = db.Column(db.String(120), nullable=False, default="Inter")
    font_size = db.Column(db.Integer, nullable=False, default=48)
    font_weight = db.Column(db.String(20), nullable=False, default="600")
    font_color = db.Column(db.String(20), nullable=False, default="#000000")
    created_at = db.Column(db.DateTime, server_default=db.func.now())

    certificates = db.relationship("Certificate", back_populates="template")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "templateUrl": self.template_path,
            "nameX": self.name_x,
            "nameY": self.name_y,
            "qrX": self.qr_x,
            "qrY": self.qr_y,
            "qrSize": self.qr_size,
            "fontFamily": self.font_family,
            "fontSize": self.font_size,
            "fontWeight": self.font_weight,
            "fontColor": self.font_color,
        }


class Certificate(db.Model):
    __tablename__ = "certificates"

    id = db.Column(db.Integer, primary_key=True)
    certificate_number = db.Column(db.String(64), nullable=False)
    template_id = db.Column(
        db.Integer, db.ForeignKey("templates.id", ondelete="SET NULL")
    )
    full_name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255))
    qr_data = db.Column(db.String(1024))
    image_path = db.Column(db.String(1024))
    issued_at = db.Column(db.DateTime, server_default=db.func.now())
    email_status = db.Column(
        db.String(16),
        nullable=False,
        default=EMAIL_STATUS_NOT_SENT,
        server_default=EMAIL_STATUS_NOT_SENT,
    )
    email_error = db.Column(db.Text)
    email_sent_at = db.Column(db.DateTime(timezone=True))
    __table_args__ = (
        db.UniqueConstraint(
            "certificate_number", name="uq_certificates_certificate_number"
        ),
    )

    template = db.relationship("Template", back_populates="certificates")

    @validates("email_status")
    def check_email_status(self, key, value):
        if value not in EMAIL_STATUSES:
            raise ValueError(f"Unknown email status: {value!r}")
        return value

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "certificateNumber": self.certificate_number,
            "templateId": self.template_id,
            "fullName": self.full_name,
            "email": self.email,
            "qrData": self.qr_data,
            "imagePath": self.image_path,
            "issuedAt": self.issued_at.isoformat() if self.issued_at else None,
            "emailStatus": self.email_status,
            "emailError": self.email_error,
            "emailSentAt": (
                self.email_sent_at.isoformat() if self.email_sent_at else None
            ),
        }

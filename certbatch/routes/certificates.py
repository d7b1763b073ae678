from __future__ import annotations

import os

from flask import Blueprint, jsonify, request, send_file

from ..services.delivery import dispatch_certificates
from ..shared.certificates import issue_batch, list_recent_certificates
from ..shared.errors import ValidationError
from ..shared.roster import rows_from_payload
from ..shared.storage import images_dir, is_within

bp = Blueprint("certificates", __name__, url_prefix="/api")

LIST_LIMIT = 100


def _json_body() -> dict:
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise ValidationError("Invalid request payload.")
    return payload


@bp.post("/certificates/generate")
def generate():
    payload = _json_body()
    batch_id = payload.get("batchId")
    template_id = payload.get("templateId")
    if not batch_id or not template_id:
        raise ValidationError("batchId and templateId required")
    raw_rows = payload.get("rows")
    rows = rows_from_payload(raw_rows) if raw_rows is not None else None
    results = issue_batch(batch_id, template_id, rows)
    return jsonify({"results": [result.to_dict() for result in results]})


@bp.post("/certificates/list")
def list_certificates():
    payload = _json_body()
    if not payload.get("batchId"):
        raise ValidationError("batchId required")
    # certificates carry no batch id, so this lists the most recent ones
    certificates = list_recent_certificates(LIST_LIMIT)
    return jsonify({"certificates": [cert.to_dict() for cert in certificates]})


@bp.post("/certificates/send-emails")
def send_emails():
    payload = _json_body()
    certificate_ids = payload.get("certificateIds")
    if not isinstance(certificate_ids, list):
        raise ValidationError("certificateIds array required")
    custom_message = payload.get("customMessage")
    if custom_message is not None and not isinstance(custom_message, str):
        raise ValidationError("customMessage must be a string")
    report = dispatch_certificates(certificate_ids, custom_message)
    return jsonify(report.to_dict())


@bp.get("/files")
def serve_file():
    target = request.args.get("path")
    if not target:
        return jsonify({"error": "path required"}), 400
    if not is_within(images_dir(), target):
        return jsonify({"error": "unauthorized"}), 403
    resolved = os.path.realpath(target)
    if not os.path.isfile(resolved):
        return jsonify({"error": "not found"}), 404
    resp = send_file(resolved, mimetype="image/png")
    resp.headers["Cache-Control"] = "private, max-age=0, must-revalidate"
    return resp
